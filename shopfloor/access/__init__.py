# shopfloor/access/__init__.py
from __future__ import annotations

from .machines import MachineRef, coerce_machine_id, machine_ids, parse_machine_refs
from .policy import (
    DEFAULT_POLICY,
    PAPERSTORE_INVENTORY,
    PAPERSTORE_MAPPED,
    PAPERSTORE_UNRESTRICTED,
    AccessPolicy,
    policy_from_settings,
)
from .roles import (
    BASE_BYPASS_ROLES,
    ROLE_STEP_MAP,
    STEP_OPERATOR_ROLES,
    Role,
    RoleSet,
    mapped_step_names,
    normalize_role,
    parse_role_set,
    serialize_role_set,
)
from .visibility import (
    BYPASS,
    JobSnapshot,
    StepSnapshot,
    filtered_job_numbers,
    is_job_visible,
    is_step_visible,
    visible_steps,
)


__all__ = [
    "MachineRef",
    "coerce_machine_id",
    "machine_ids",
    "parse_machine_refs",
    "DEFAULT_POLICY",
    "PAPERSTORE_INVENTORY",
    "PAPERSTORE_MAPPED",
    "PAPERSTORE_UNRESTRICTED",
    "AccessPolicy",
    "policy_from_settings",
    "BASE_BYPASS_ROLES",
    "ROLE_STEP_MAP",
    "STEP_OPERATOR_ROLES",
    "Role",
    "RoleSet",
    "mapped_step_names",
    "normalize_role",
    "parse_role_set",
    "serialize_role_set",
    "BYPASS",
    "JobSnapshot",
    "StepSnapshot",
    "filtered_job_numbers",
    "is_job_visible",
    "is_step_visible",
    "visible_steps",
]
