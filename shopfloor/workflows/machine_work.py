# shopfloor/workflows/machine_work.py
"""
Per-machine work on a step.

A step planned on several machines is worked machine by machine; each run
is a JobStepMachine row. The step itself starts with its first machine and
stops once every machine has finished and its prerequisites allow it. The
step detail is accepted when every machine's work is completed.

Operators need an active assignment to the machine. High-demand jobs skip
that check, and bypass roles always pass it.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from shopfloor.access.machines import coerce_machine_id, machine_ids, parse_machine_refs
from shopfloor.access.policy import AccessPolicy, policy_from_settings
from shopfloor.access.resolver import resolve_user_machine_ids, snapshot_for_planning, user_roles
from shopfloor.access.roles import STEP_OPERATOR_ROLES, RoleSet
from shopfloor.access.visibility import BYPASS
from shopfloor.models import Job, JobStep, JobStepMachine, Machine, StepDetail, UserMachine
from shopfloor.workflows.executor import (
    StepTransitionBlocked,
    _audit,
    _job_for,
    update_job_machine_details_flag,
)
from shopfloor.workflows.legacy import DETAIL_ACCEPT, DETAIL_IN_PROGRESS
from shopfloor.workflows.rules import (
    ACTION_START,
    ACTION_STOP,
    STATUS_PLANNED,
    STATUS_START,
    STATUS_STOP,
    can_transition,
)

logger = logging.getLogger(__name__)

WorkStatus = JobStepMachine.Status

MACHINE_START = "start"
MACHINE_HOLD = "hold"
MACHINE_RESUME = "resume"
MACHINE_STOP = "stop"
MACHINE_COMPLETE = "complete"

MACHINE_ACTIONS = {MACHINE_START, MACHINE_HOLD, MACHINE_RESUME, MACHINE_STOP, MACHINE_COMPLETE}

FINISHED = (WorkStatus.STOP, WorkStatus.COMPLETED)


# ===============================================================
# Helpers
# ===============================================================
def _machine_id_or_400(value: Any) -> str:
    machine_id = coerce_machine_id(value)
    if machine_id is None:
        raise ValidationError({"machine": "No machine given for this step."})
    return machine_id


def _clean_form_data(form_data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if form_data is None:
        return {}
    if not isinstance(form_data, Mapping):
        raise ValidationError({"form_data": "Form data must be an object."})
    return dict(form_data)


def _detail_values(form_data: Mapping[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if form_data:
        values["data"] = dict(form_data)

    quantity = form_data.get("quantity", form_data.get("final_quantity"))
    if quantity not in (None, ""):
        try:
            values["quantity"] = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError({"form_data": "quantity must be a whole number."})

    for field in ("operator_name", "remarks"):
        if form_data.get(field):
            values[field] = str(form_data[field])
    return values


def _ensure_machine_access_or_403(
    step: JobStep,
    user,
    machine_id: str,
    *,
    policy: AccessPolicy,
) -> RoleSet:
    if not user or not user.is_authenticated:
        raise PermissionDenied("Authentication required.")

    roles = user_roles(user)
    if not roles & STEP_OPERATOR_ROLES:
        raise PermissionDenied("Your role may not work on machines.")

    job = snapshot_for_planning(step.planning, _job_for(step.planning.nrc_job_no))
    if job.is_high_demand:
        return roles

    scope = resolve_user_machine_ids(user, roles, policy=policy)
    if scope is BYPASS or machine_id in scope:
        return roles

    raise PermissionDenied(f"You do not have access to machine {machine_id}.")


def _lock_step(step: JobStep) -> JobStep:
    return JobStep.objects.select_for_update().select_related("planning").get(pk=step.pk)


def _lock_work(step: JobStep, machine_id: str, **filters) -> JobStepMachine:
    work = (
        JobStepMachine.objects.select_for_update()
        .filter(step=step, machine_id=machine_id, **filters)
        .first()
    )
    if work is None:
        raise NotFound(f"No work on machine {machine_id} for {step.step_name}.")
    return work


def _seed_planned_machines(step: JobStep) -> None:
    """Create an `available` row for every known machine planned on the step."""
    planned = machine_ids(parse_machine_refs(step.machine_details, log=logger))
    if not planned:
        return

    existing = set(step.machine_work.values_list("machine_id", flat=True))
    for machine_id in Machine.objects.filter(pk__in=planned).exclude(pk__in=existing).values_list("pk", flat=True):
        JobStepMachine.objects.create(
            step=step,
            machine_id=machine_id,
            nrc_job_no=step.planning.nrc_job_no,
            step_no=step.step_no,
        )


def _work_result(work: JobStepMachine, action: str, from_status: str, *, changed: bool = True, **extra) -> dict:
    result = {
        "changed": changed,
        "work_id": work.pk,
        "nrc_job_no": work.nrc_job_no,
        "step_no": work.step_no,
        "machine_id": work.machine_id,
        "action": action,
        "from_status": str(from_status),
        "to_status": str(work.status),
        "operator_id": work.operator_id,
    }
    result.update(extra)
    return result


def _finish_step_if_done(step: JobStep, user, roles: RoleSet) -> Dict[str, Any]:
    """
    Stop the step once every machine has finished, provided its
    prerequisites allow the stop. The caller holds the step lock.
    """
    statuses = list(step.machine_work.values_list("status", flat=True))
    finished = bool(statuses) and all(s in FINISHED for s in statuses)
    outcome: Dict[str, Any] = {
        "all_machines_finished": finished,
        "step_status": step.status,
        "blocking_step": None,
    }
    if not finished or step.status != STATUS_START:
        return outcome

    siblings = list(JobStep.objects.filter(planning_id=step.planning_id))
    decision = can_transition(siblings, step.step_name, ACTION_STOP, log=logger)
    if not decision.allowed:
        outcome["blocking_step"] = decision.blocking_step
        logger.info(
            "All machines finished on %s of job %s; step stop waits on %s",
            step.step_name,
            step.planning.nrc_job_no,
            decision.blocking_step,
        )
        return outcome

    step.status = STATUS_STOP
    step.ended_at = timezone.now()
    step.save(update_fields=["status", "ended_at", "updated_at"])
    _audit(
        step=step,
        action=ACTION_STOP,
        from_status=STATUS_START,
        to_status=STATUS_STOP,
        user=user,
        roles=roles,
        comment="all machines finished",
    )
    update_job_machine_details_flag(step.planning.nrc_job_no)

    outcome["step_status"] = STATUS_STOP
    return outcome


# ===============================================================
# Start
# ===============================================================
def start_machine_work(step: JobStep, user, machine_id, *, form_data=None, policy=None) -> dict:
    policy = policy or policy_from_settings()
    machine_id = _machine_id_or_400(machine_id)

    machine = Machine.objects.filter(pk=machine_id).first()
    if machine is None:
        raise NotFound(f"Machine {machine_id} not found.")

    roles = _ensure_machine_access_or_403(step, user, machine.pk, policy=policy)
    form_data = _clean_form_data(form_data)

    with transaction.atomic():
        locked = _lock_step(step)
        if locked.status == STATUS_STOP:
            raise ValidationError({"status": f"{locked.step_name} is already stopped."})

        siblings = list(JobStep.objects.filter(planning_id=locked.planning_id))
        decision = can_transition(siblings, locked.step_name, ACTION_START, log=logger)
        if not decision.allowed:
            raise StepTransitionBlocked(decision, step_name=locked.step_name, action=ACTION_START)

        _seed_planned_machines(locked)
        work, _ = JobStepMachine.objects.select_for_update().get_or_create(
            step=locked,
            machine=machine,
            defaults={"nrc_job_no": locked.planning.nrc_job_no, "step_no": locked.step_no},
        )

        previous = work.status
        if previous not in (WorkStatus.AVAILABLE, WorkStatus.STOP):
            raise ValidationError(
                {"status": f"Machine {machine.machine_code} is not available ({previous})."}
            )

        now = timezone.now()
        work.status = WorkStatus.IN_PROGRESS
        work.operator = user
        work.started_at = now
        work.completed_at = None
        work.form_data = form_data
        work.save()

        step_started = locked.status == STATUS_PLANNED
        if step_started:
            locked.status = STATUS_START
            locked.started_at = now
            locked.started_by = user
            locked.save(update_fields=["status", "started_at", "started_by", "updated_at"])

            step_detail, _ = StepDetail.objects.get_or_create(step=locked)
            step_detail.status = DETAIL_IN_PROGRESS
            step_detail.save()

            _audit(
                step=locked,
                action=ACTION_START,
                from_status=STATUS_PLANNED,
                to_status=STATUS_START,
                user=user,
                roles=roles,
                comment=f"machine {machine.machine_code}",
            )

    logger.info(
        "Machine %s started on %s of job %s by %s",
        machine.machine_code,
        locked.step_name,
        locked.planning.nrc_job_no,
        getattr(user, "username", None),
    )
    return _work_result(work, MACHINE_START, previous, step_started=step_started, step_status=locked.status)


def start_urgent_machine_work(step: JobStep, user, *, form_data=None, policy=None) -> dict:
    """
    High-demand jobs only: start the step on the operator's first active
    machine, whatever machines were planned.
    """
    if not user or not user.is_authenticated:
        raise PermissionDenied("Authentication required.")

    job = snapshot_for_planning(step.planning, _job_for(step.planning.nrc_job_no))
    if not job.is_high_demand:
        raise ValidationError({"job_demand": "Automatic machine assignment is only for high-demand jobs."})

    assignment = (
        UserMachine.objects.filter(user=user, is_active=True)
        .order_by("created_at", "id")
        .first()
    )
    if assignment is None:
        raise ValidationError({"machine": "No machines are assigned to you."})

    return start_machine_work(step, user, assignment.machine_id, form_data=form_data, policy=policy)


# ===============================================================
# Hold / resume
# ===============================================================
def hold_machine_work(step: JobStep, user, machine_id, remark: str = "", *, form_data=None, policy=None) -> dict:
    policy = policy or policy_from_settings()
    machine_id = _machine_id_or_400(machine_id)
    _ensure_machine_access_or_403(step, user, machine_id, policy=policy)
    form_data = _clean_form_data(form_data)

    with transaction.atomic():
        work = _lock_work(step, machine_id)
        previous = work.status
        if previous == WorkStatus.HOLD:
            return _work_result(work, MACHINE_HOLD, previous, changed=False)
        if previous != WorkStatus.IN_PROGRESS:
            raise ValidationError({"status": f"Machine {machine_id} is not running ({previous})."})

        work.status = WorkStatus.HOLD
        if remark:
            work.remarks = remark
        if form_data:
            work.form_data = {**(work.form_data or {}), **form_data}
        work.save()

        if remark:
            StepDetail.objects.filter(step_id=step.pk).update(hold_remark=remark, updated_at=timezone.now())

    logger.info("Machine %s held on job %s step %s", machine_id, work.nrc_job_no, work.step_no)
    return _work_result(work, MACHINE_HOLD, previous, hold_remark=work.remarks)


def resume_machine_work(step: JobStep, user, machine_id, *, form_data=None, policy=None) -> dict:
    policy = policy or policy_from_settings()
    machine_id = _machine_id_or_400(machine_id)
    _ensure_machine_access_or_403(step, user, machine_id, policy=policy)
    form_data = _clean_form_data(form_data)

    with transaction.atomic():
        work = _lock_work(step, machine_id)
        previous = work.status
        if previous == WorkStatus.IN_PROGRESS:
            return _work_result(work, MACHINE_RESUME, previous, changed=False)
        if previous != WorkStatus.HOLD:
            raise ValidationError({"status": f"Machine {machine_id} is not on hold ({previous})."})

        work.status = WorkStatus.IN_PROGRESS
        if form_data:
            work.form_data = {**(work.form_data or {}), **form_data}
        work.save()

    logger.info("Machine %s resumed on job %s step %s", machine_id, work.nrc_job_no, work.step_no)
    return _work_result(work, MACHINE_RESUME, previous)


# ===============================================================
# Stop / complete
# ===============================================================
def stop_machine_work(step: JobStep, user, machine_id, *, form_data=None, policy=None) -> dict:
    """
    Stop running or held work. When it was the last unfinished machine the
    step is stopped too, unless a prerequisite still blocks it; the result
    then names the blocking step.
    """
    policy = policy or policy_from_settings()
    machine_id = _machine_id_or_400(machine_id)
    roles = _ensure_machine_access_or_403(step, user, machine_id, policy=policy)
    form_data = _clean_form_data(form_data)

    with transaction.atomic():
        locked = _lock_step(step)
        work = _lock_work(locked, machine_id)
        previous = work.status

        if previous in FINISHED:
            return _work_result(work, MACHINE_STOP, previous, changed=False, step_status=locked.status)
        if previous not in (WorkStatus.IN_PROGRESS, WorkStatus.HOLD):
            raise ValidationError({"status": f"Machine {machine_id} is not running or on hold ({previous})."})

        work.status = WorkStatus.STOP
        work.completed_at = timezone.now()
        if form_data:
            work.form_data = {**(work.form_data or {}), **form_data}
        work.save()

        outcome = _finish_step_if_done(locked, user, roles)

    logger.info("Machine %s stopped on job %s step %s", machine_id, work.nrc_job_no, work.step_no)
    return _work_result(work, MACHINE_STOP, previous, **outcome)


def complete_machine_work(step: JobStep, user, machine_id, *, form_data=None, policy=None) -> dict:
    """
    Record the final form data of a stopped run. Only the operator who ran
    the machine may complete it. Once every machine is completed or stopped
    the step detail is accepted with the submitted quantities.
    """
    policy = policy or policy_from_settings()
    machine_id = _machine_id_or_400(machine_id)
    roles = _ensure_machine_access_or_403(step, user, machine_id, policy=policy)
    form_data = _clean_form_data(form_data)
    detail_values = _detail_values(form_data)

    with transaction.atomic():
        locked = _lock_step(step)
        work = _lock_work(locked, machine_id, operator=user)
        previous = work.status
        if previous not in FINISHED:
            raise ValidationError({"status": f"Machine {machine_id} must be stopped before it is completed."})

        work.status = WorkStatus.COMPLETED
        if form_data:
            work.form_data = {**(work.form_data or {}), **form_data}
        work.save()

        outcome = _finish_step_if_done(locked, user, roles)
        if outcome["all_machines_finished"]:
            step_detail, _ = StepDetail.objects.get_or_create(step=locked)
            step_detail.status = DETAIL_ACCEPT
            for field, value in detail_values.items():
                setattr(step_detail, field, value)
            step_detail.save()
            outcome["detail_status"] = DETAIL_ACCEPT

    logger.info("Machine %s completed on job %s step %s", machine_id, work.nrc_job_no, work.step_no)
    return _work_result(work, MACHINE_COMPLETE, previous, **outcome)


def perform_machine_action(
    step: JobStep,
    user,
    machine_id,
    action: str,
    *,
    data: Optional[Mapping] = None,
    policy=None,
) -> dict:
    action = str(action or "").strip().lower()
    data = data or {}
    form_data = data.get("form_data")

    if action == MACHINE_START:
        return start_machine_work(step, user, machine_id, form_data=form_data, policy=policy)
    if action == MACHINE_HOLD:
        return hold_machine_work(
            step, user, machine_id, str(data.get("remark") or ""), form_data=form_data, policy=policy
        )
    if action == MACHINE_RESUME:
        return resume_machine_work(step, user, machine_id, form_data=form_data, policy=policy)
    if action == MACHINE_STOP:
        return stop_machine_work(step, user, machine_id, form_data=form_data, policy=policy)
    if action == MACHINE_COMPLETE:
        return complete_machine_work(step, user, machine_id, form_data=form_data, policy=policy)

    raise ValidationError({"action": f"Unknown machine action: {action}"})


# ===============================================================
# Read side
# ===============================================================
def machine_work_summary(step: JobStep) -> Dict[str, Any]:
    counts = Counter(step.machine_work.values_list("status", flat=True))
    # Counter keys are the raw column values.
    available, running, held, stopped, completed = (
        counts[status.value]
        for status in (
            WorkStatus.AVAILABLE,
            WorkStatus.IN_PROGRESS,
            WorkStatus.HOLD,
            WorkStatus.STOP,
            WorkStatus.COMPLETED,
        )
    )
    return {
        "step_id": step.pk,
        "step_no": step.step_no,
        "step_name": step.step_name,
        "step_status": step.status,
        "total_machines": sum(counts.values()),
        "available": available,
        "in_progress": running,
        "hold": held,
        "stopped": stopped,
        "completed": completed,
        "finished": stopped + completed,
    }


def held_machine_work() -> List[Dict[str, Any]]:
    """Held machine runs grouped by job, then by step."""
    rows = (
        JobStepMachine.objects.filter(status=WorkStatus.HOLD)
        .select_related("machine", "operator", "step")
        .order_by("nrc_job_no", "step_no", "machine_id")
    )

    jobs: Dict[str, Dict[str, Any]] = {}
    for work in rows:
        entry = jobs.setdefault(
            work.nrc_job_no,
            {
                "nrc_job_no": work.nrc_job_no,
                "job_plan_id": work.step.planning_id,
                "job_demand": None,
                "total_held_machines": 0,
                "steps": {},
            },
        )
        step_entry = entry["steps"].setdefault(
            work.step_no,
            {
                "step_no": work.step_no,
                "step_name": work.step.step_name,
                "step_status": work.step.status,
                "held_machines": [],
            },
        )
        step_entry["held_machines"].append(
            {
                "machine_id": work.machine_id,
                "machine_code": work.machine.machine_code,
                "machine_type": work.machine.machine_type,
                "hold_remark": work.remarks,
                "held_at": work.updated_at,
                "started_at": work.started_at,
                "held_by": work.operator.username if work.operator is not None else None,
                "form_data": work.form_data,
            }
        )
        entry["total_held_machines"] += 1

    demands = dict(Job.objects.filter(nrc_job_no__in=list(jobs)).values_list("nrc_job_no", "job_demand"))
    out = []
    for nrc_job_no, entry in jobs.items():
        entry["job_demand"] = demands.get(nrc_job_no)
        entry["steps"] = list(entry["steps"].values())
        out.append(entry)
    return out
