# shopfloor/access/resolver.py
"""
ORM adapter for the access engine.

Loads users, machine assignments, jobs and plannings from the database and
hands the engine plain snapshots. Role fields and step machine details are
parsed here, once.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set

from shopfloor.models import Job, JobPlanning, UserMachine
from shopfloor.workflows.planning import select_current_planning

from .machines import parse_machine_refs
from .policy import AccessPolicy, policy_from_settings
from .roles import EMPTY_ROLES, Role, RoleSet, parse_role_set
from .visibility import BYPASS, JobSnapshot, MachineScope, StepSnapshot, filtered_job_numbers

logger = logging.getLogger(__name__)


# ===============================================================
# Users
# ===============================================================
def user_roles(user) -> RoleSet:
    if not user or not getattr(user, "is_authenticated", False):
        return EMPTY_ROLES

    if user.is_superuser:
        return frozenset({Role.ADMIN})

    profile = getattr(user, "operator_profile", None)
    if profile is None:
        return EMPTY_ROLES
    return parse_role_set(profile.role)


def resolve_user_machine_ids(
    user,
    roles: Optional[RoleSet] = None,
    *,
    policy: Optional[AccessPolicy] = None,
) -> MachineScope:
    """
    BYPASS for unrestricted users, otherwise the ids of the user's active
    machine assignments (possibly empty).
    """
    policy = policy or policy_from_settings()
    roles = user_roles(user) if roles is None else roles

    if policy.is_bypass(roles):
        return BYPASS

    if not user or not getattr(user, "is_authenticated", False):
        return frozenset()

    ids = UserMachine.objects.filter(
        user=user,
        is_active=True,
    ).values_list("machine_id", flat=True)
    return frozenset(str(i) for i in ids)


# ===============================================================
# Jobs
# ===============================================================
def step_snapshot(step) -> StepSnapshot:
    return StepSnapshot(
        step_no=step.step_no,
        step_name=step.step_name,
        status=step.status,
        machines=parse_machine_refs(step.machine_details, log=logger),
    )


def snapshot_for_planning(planning, job: Optional[Job] = None) -> JobSnapshot:
    return JobSnapshot(
        nrc_job_no=planning.nrc_job_no,
        job_demand=job.job_demand if job is not None else None,
        planning_demand=planning.job_demand,
        machine_id=str(job.machine_id) if job is not None and job.machine_id else None,
        steps=tuple(step_snapshot(s) for s in planning.steps.all()),
    )


def current_plannings(job_numbers: Optional[Iterable[str]] = None) -> Dict[str, JobPlanning]:
    qs = JobPlanning.objects.prefetch_related("steps")
    if job_numbers is not None:
        qs = qs.filter(nrc_job_no__in=list(job_numbers))

    grouped: Dict[str, List[JobPlanning]] = {}
    for planning in qs:
        grouped.setdefault(planning.nrc_job_no, []).append(planning)

    return {no: select_current_planning(revs) for no, revs in grouped.items()}


def load_job_snapshots(job_numbers: Optional[Iterable[str]] = None) -> List[JobSnapshot]:
    """
    One snapshot per job number known to either the Job table or the
    planning table. A Job row's demand tier takes precedence; a job that
    only exists as a planning uses the planning's tier.
    """
    if job_numbers is not None:
        job_numbers = list(job_numbers)

    jobs_qs = Job.objects.all()
    if job_numbers is not None:
        jobs_qs = jobs_qs.filter(nrc_job_no__in=job_numbers)
    jobs = {j.nrc_job_no: j for j in jobs_qs}

    plannings = current_plannings(job_numbers)

    out: List[JobSnapshot] = []
    for no in sorted(set(jobs) | set(plannings)):
        job = jobs.get(no)
        planning = plannings.get(no)
        if planning is not None:
            out.append(snapshot_for_planning(planning, job))
        else:
            out.append(
                JobSnapshot(
                    nrc_job_no=no,
                    job_demand=job.job_demand,
                    machine_id=str(job.machine_id) if job.machine_id else None,
                )
            )
    return out


def job_snapshot(nrc_job_no: str) -> Optional[JobSnapshot]:
    snapshots = load_job_snapshots([nrc_job_no])
    return snapshots[0] if snapshots else None


def filtered_job_numbers_for_user(
    user,
    *,
    policy: Optional[AccessPolicy] = None,
    job_numbers: Optional[Iterable[str]] = None,
) -> Set[str]:
    policy = policy or policy_from_settings()
    roles = user_roles(user)
    scope = resolve_user_machine_ids(user, roles, policy=policy)
    return filtered_job_numbers(
        scope,
        roles,
        load_job_snapshots(job_numbers),
        policy=policy,
        log=logger,
    )
