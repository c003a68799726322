# shopfloor/access/assignments.py
"""
Operator <-> machine assignment. These rows are the machine scope that
resolve_user_machine_ids reads.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from django.contrib.auth import get_user_model
from django.db import transaction

from rest_framework.exceptions import NotFound, ValidationError

from shopfloor.access.machines import coerce_machine_id
from shopfloor.models import Machine, UserMachine

logger = logging.getLogger(__name__)


def _user_or_404(user_id):
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound(f"User {user_id} not found.")
    return user


def _machine_ids(values: Iterable) -> List[str]:
    out: List[str] = []
    for value in values or ():
        machine_id = coerce_machine_id(value)
        if machine_id is None:
            raise ValidationError({"machine_ids": f"Invalid machine id: {value!r}"})
        if machine_id not in out:
            out.append(machine_id)
    if not out:
        raise ValidationError({"machine_ids": "At least one machine id is required."})
    return out


def assign_machines(user_id, machine_ids: Iterable, *, assigned_by=None) -> dict:
    """
    Give a user active assignments to the machines. Existing inactive
    assignments are reactivated; unknown machines fail the whole call.
    """
    user = _user_or_404(user_id)
    wanted = _machine_ids(machine_ids)

    found = set(Machine.objects.filter(pk__in=wanted).values_list("pk", flat=True))
    missing = [m for m in wanted if m not in found]
    if missing:
        raise NotFound(f"Machines not found: {', '.join(missing)}")

    if assigned_by is not None and not assigned_by.is_authenticated:
        assigned_by = None

    created = reactivated = 0
    with transaction.atomic():
        for machine_id in wanted:
            assignment, was_created = UserMachine.objects.get_or_create(
                user=user,
                machine_id=machine_id,
                defaults={"assigned_by": assigned_by, "is_active": True},
            )
            if was_created:
                created += 1
            elif not assignment.is_active:
                assignment.is_active = True
                assignment.assigned_by = assigned_by
                assignment.save(update_fields=["is_active", "assigned_by", "updated_at"])
                reactivated += 1

    logger.info(
        "Assigned machines %s to %s (%d new, %d reactivated)",
        ", ".join(wanted),
        user.get_username(),
        created,
        reactivated,
    )
    return {
        "user_id": user.pk,
        "assigned_machines": wanted,
        "created": created,
        "reactivated": reactivated,
    }


def remove_machines(user_id, machine_ids: Iterable) -> dict:
    user = _user_or_404(user_id)
    wanted = _machine_ids(machine_ids)

    removed, _ = UserMachine.objects.filter(user=user, machine_id__in=wanted).delete()

    logger.info("Removed machines %s from %s (%d rows)", ", ".join(wanted), user.get_username(), removed)
    return {"user_id": user.pk, "removed_machines": wanted, "count": removed}


def active_assignments(user_id):
    user = _user_or_404(user_id)
    return (
        UserMachine.objects.filter(user=user, is_active=True)
        .select_related("machine")
        .order_by("-created_at", "-id")
    )
