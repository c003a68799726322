# shopfloor/access/policy.py
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable

from shopfloor.workflows.rules import STEP_NAMES

from .roles import BASE_BYPASS_ROLES, Role, RoleSet, mapped_step_names

PAPERSTORE_MAPPED = "mapped"
PAPERSTORE_INVENTORY = "inventory"
PAPERSTORE_UNRESTRICTED = "unrestricted"

PAPERSTORE_MODES = {PAPERSTORE_MAPPED, PAPERSTORE_INVENTORY, PAPERSTORE_UNRESTRICTED}


@dataclass(frozen=True)
class AccessPolicy:
    """
    Immutable visibility policy.

    paperstore_visibility:
      mapped       -> PaperStore + DispatchProcess, machine gated
      inventory    -> every step name, machine gated
      unrestricted -> same as a bypass role
    """

    bypass_roles: RoleSet = BASE_BYPASS_ROLES
    paperstore_visibility: str = PAPERSTORE_MAPPED

    def __post_init__(self):
        if self.paperstore_visibility not in PAPERSTORE_MODES:
            raise ValueError(
                f"Unknown paperstore visibility mode: {self.paperstore_visibility!r}. "
                f"Use one of: {', '.join(sorted(PAPERSTORE_MODES))}"
            )
        object.__setattr__(self, "bypass_roles", frozenset(self.bypass_roles))

    @classmethod
    def build(
        cls,
        *,
        qc_manager_bypass: bool = False,
        paperstore_visibility: str = PAPERSTORE_MAPPED,
    ) -> "AccessPolicy":
        bypass = set(BASE_BYPASS_ROLES)
        if qc_manager_bypass:
            bypass.add(Role.QC_MANAGER)
        return cls(
            bypass_roles=frozenset(bypass),
            paperstore_visibility=str(paperstore_visibility or "").strip().lower(),
        )

    def is_bypass(self, roles: Iterable[Role]) -> bool:
        roles = frozenset(roles)
        if roles & self.bypass_roles:
            return True
        return (
            self.paperstore_visibility == PAPERSTORE_UNRESTRICTED
            and Role.PAPERSTORE in roles
        )

    def step_names_for(self, roles: Iterable[Role]) -> FrozenSet[str]:
        roles = frozenset(roles)
        if self.paperstore_visibility == PAPERSTORE_INVENTORY and Role.PAPERSTORE in roles:
            return frozenset(STEP_NAMES)
        return mapped_step_names(roles)


DEFAULT_POLICY = AccessPolicy()


def policy_from_settings(settings_obj=None) -> AccessPolicy:
    if settings_obj is None:
        from django.conf import settings as settings_obj

    return AccessPolicy.build(
        qc_manager_bypass=bool(getattr(settings_obj, "SHOPFLOOR_QC_MANAGER_BYPASS", False)),
        paperstore_visibility=getattr(
            settings_obj, "SHOPFLOOR_PAPERSTORE_VISIBILITY", PAPERSTORE_MAPPED
        ),
    )
