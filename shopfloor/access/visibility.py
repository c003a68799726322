# shopfloor/access/visibility.py
"""
Role / step / machine visibility engine.

Answers two questions over data already loaded by the persistence layer:

- is_step_visible: may this user see (and act on) this step?
- filtered_job_numbers: which jobs may this user see at all?

Everything here is a pure function of its arguments. The caller supplies
the parsed role set, the user's machine scope and job snapshots; nothing
is read from the database and nothing is cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from shopfloor.workflows.rules import ACTION_START, STATUS_PLANNED, can_transition

from .machines import MachineRef, coerce_machine_id, machine_ids
from .policy import DEFAULT_POLICY, AccessPolicy
from .roles import Role, RoleSet, parse_role_set

logger = logging.getLogger(__name__)

DEMAND_NORMAL = "normal"
DEMAND_HIGH = "high"


class _Bypass:
    """No machine filtering at all. Distinct from an empty machine set."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "BYPASS"


BYPASS = _Bypass()

MachineScope = Union[FrozenSet[str], _Bypass]


@dataclass(frozen=True)
class StepSnapshot:
    step_no: int
    step_name: str
    status: str = STATUS_PLANNED
    machines: Tuple[MachineRef, ...] = ()

    @property
    def machine_ids(self) -> FrozenSet[str]:
        return machine_ids(self.machines)


@dataclass(frozen=True)
class JobSnapshot:
    """
    One job as seen by the engine.

    job_demand is the Job row's tier and is None when no Job row exists;
    planning_demand is only consulted in that case.
    """

    nrc_job_no: str
    job_demand: Optional[str] = None
    planning_demand: Optional[str] = None
    machine_id: Optional[str] = None
    steps: Tuple[StepSnapshot, ...] = ()

    @property
    def demand(self) -> str:
        raw = self.job_demand if self.job_demand is not None else self.planning_demand
        return str(raw or DEMAND_NORMAL).strip().lower()

    @property
    def is_high_demand(self) -> bool:
        return self.demand == DEMAND_HIGH


def normalize_machine_scope(scope: Any) -> MachineScope:
    if scope is BYPASS:
        return BYPASS
    if scope is None:
        raise ValueError("machine scope is required; pass BYPASS for unrestricted access")
    if isinstance(scope, str):
        scope = [scope]
    return frozenset(i for i in (coerce_machine_id(v) for v in scope) if i)


def _as_roles(roles: Any) -> RoleSet:
    if isinstance(roles, frozenset) and all(isinstance(r, Role) for r in roles):
        return roles
    return parse_role_set(roles)


def is_step_visible(
    step: StepSnapshot,
    job: JobSnapshot,
    roles: Iterable[Role],
    machine_scope: MachineScope,
    *,
    policy: AccessPolicy = DEFAULT_POLICY,
    log: Optional[logging.Logger] = None,
) -> bool:
    """
    A step is visible when any of these hold:
      - the user is unrestricted (bypass scope or bypass role)
      - the job is high demand and the step is mapped to the user's role
      - the step is mapped to the user's role and has no machine assigned
      - the step's machines intersect the user's machines
    """
    log = log or logger
    roles = _as_roles(roles)
    scope = normalize_machine_scope(machine_scope)

    if scope is BYPASS or policy.is_bypass(roles):
        return True

    mapped = step.step_name in policy.step_names_for(roles)
    assigned = step.machine_ids

    if mapped and job.is_high_demand:
        return True
    if mapped and not assigned:
        return True
    if assigned & scope:
        return True

    log.debug(
        "Step %s of job %s hidden (mapped=%s, assigned=%s)",
        step.step_name,
        job.nrc_job_no,
        mapped,
        sorted(assigned),
    )
    return False


def visible_steps(
    job: JobSnapshot,
    roles: Iterable[Role],
    machine_scope: MachineScope,
    *,
    policy: AccessPolicy = DEFAULT_POLICY,
    log: Optional[logging.Logger] = None,
) -> List[StepSnapshot]:
    return [
        s for s in job.steps
        if is_step_visible(s, job, roles, machine_scope, policy=policy, log=log)
    ]


def is_job_visible(
    job: JobSnapshot,
    roles: Iterable[Role],
    machine_scope: MachineScope,
    *,
    policy: AccessPolicy = DEFAULT_POLICY,
    log: Optional[logging.Logger] = None,
) -> bool:
    log = log or logger
    roles = _as_roles(roles)
    scope = normalize_machine_scope(machine_scope)

    if scope is BYPASS or policy.is_bypass(roles):
        return True

    job_level = job.is_high_demand or (
        job.machine_id is not None and job.machine_id in scope
    )
    if not job_level and not visible_steps(job, roles, scope, policy=policy, log=log):
        return False

    # Hide jobs that have not reached any of the user's own stations yet.
    mapped = policy.step_names_for(roles)
    role_steps = [s for s in job.steps if s.step_name in mapped]
    if not role_steps:
        return True

    for step in role_steps:
        if can_transition(job.steps, step.step_name, ACTION_START, log=log).allowed:
            return True

    log.debug("Job %s not yet ready for any of the user's stations", job.nrc_job_no)
    return False


def filtered_job_numbers(
    machine_scope: MachineScope,
    roles: Iterable[Role],
    jobs: Iterable[JobSnapshot],
    *,
    policy: AccessPolicy = DEFAULT_POLICY,
    log: Optional[logging.Logger] = None,
) -> Set[str]:
    """
    Job numbers the user may see. Bypass users get every job number in
    `jobs`; everyone else gets the jobs passing is_job_visible.
    """
    log = log or logger

    if jobs is None:
        raise ValueError("jobs is required")

    roles = _as_roles(roles)
    scope = normalize_machine_scope(machine_scope)
    jobs = list(jobs)

    if scope is BYPASS or policy.is_bypass(roles):
        return {j.nrc_job_no for j in jobs}

    out = {
        j.nrc_job_no for j in jobs
        if is_job_visible(j, roles, scope, policy=policy, log=log)
    }
    log.debug("%d of %d jobs visible for roles %s", len(out), len(jobs), sorted(r.value for r in roles))
    return out
