# shopfloor/permissions.py
from __future__ import annotations

from rest_framework.permissions import SAFE_METHODS, BasePermission

from shopfloor.access.resolver import user_roles
from shopfloor.access.roles import STEP_OPERATOR_ROLES, Role


def user_can_operate_steps(user) -> bool:
    if not user or not user.is_authenticated:
        return False
    return bool(user_roles(user) & STEP_OPERATOR_ROLES)


class IsStepOperatorOrReadOnly(BasePermission):
    """
    Read: any authenticated user (results are filtered by visibility)
    Write: requires a role that may change step status

    Per-step machine access is enforced by the executor, which answers 403
    for steps the user cannot see.
    """

    message = "Your role may not change step status."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False

        if request.method in SAFE_METHODS:
            return True

        return user_can_operate_steps(user)


def _has_any_role(user, roles) -> bool:
    if not user or not user.is_authenticated:
        return False
    return bool(user_roles(user) & roles)


class IsShopfloorAdmin(BasePermission):
    """Admin role only (superusers count as admin)."""

    message = "Admin role required."

    def has_permission(self, request, view):
        return _has_any_role(getattr(request, "user", None), {Role.ADMIN})


class IsAdminOrPlanner(BasePermission):
    message = "Admin or planner role required."

    def has_permission(self, request, view):
        return _has_any_role(getattr(request, "user", None), {Role.ADMIN, Role.PLANNER})
