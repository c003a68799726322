# shopfloor/workflows/executor.py
"""
Authoritative step mutation service.

All JobStep status changes MUST go through this module.
Never update step status directly in views or serializers.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from rest_framework.exceptions import PermissionDenied, ValidationError

from shopfloor.access.machines import parse_machine_refs
from shopfloor.access.policy import AccessPolicy, policy_from_settings
from shopfloor.access.resolver import (
    resolve_user_machine_ids,
    snapshot_for_planning,
    step_snapshot,
    user_roles,
)
from shopfloor.access.roles import STEP_OPERATOR_ROLES, RoleSet, serialize_role_set
from shopfloor.access.visibility import is_step_visible
from shopfloor.models import Job, JobPlanning, JobStep, StepDetail, StepTransition
from shopfloor.workflows.legacy import (
    DETAIL_ACCEPT,
    DETAIL_HOLD,
    DETAIL_IN_PROGRESS,
    DETAIL_REJECT,
    previous_step_accepted,
)
from shopfloor.workflows.planning import select_current_planning
from shopfloor.workflows.rules import (
    ACTION_START,
    ACTION_STOP,
    ACTION_TARGET_STATUS,
    STATUS_PLANNED,
    STATUS_START,
    STATUS_STOP,
    TransitionDecision,
    can_transition,
    normalize_action,
    validate_status_change,
)

logger = logging.getLogger(__name__)

ACTION_HOLD = "hold"
ACTION_RESUME = "resume"

STEP_MUTATIONS = {ACTION_START, ACTION_STOP, ACTION_HOLD, ACTION_RESUME}

# Detail fields a station may submit when stopping a step.
STOP_DETAIL_FIELDS = ("quantity", "operator_name", "remarks", "data")


class StepTransitionBlocked(ValidationError):
    """
    Raised when a step's prerequisites are not satisfied.

    Carries the TransitionDecision so callers outside HTTP can report the
    blocking step.
    """

    def __init__(self, decision: TransitionDecision, *, step_name: str, action: str):
        self.decision = decision
        self.step_name = step_name
        self.action = action

        detail = {"status": decision.reason, "step": step_name, "action": action}
        if decision.blocking_step:
            detail["blocking_step"] = decision.blocking_step
        super().__init__(detail)


# ===============================================================
# Helpers
# ===============================================================
def _legacy_gating_enabled() -> bool:
    return bool(getattr(settings, "SHOPFLOOR_LEGACY_ACCEPT_GATING", False))


def _job_for(nrc_job_no: str) -> Optional[Job]:
    return Job.objects.filter(nrc_job_no=nrc_job_no).first()


def _ensure_step_access_or_403(
    step: JobStep,
    user,
    *,
    policy: AccessPolicy,
    log: logging.Logger,
) -> RoleSet:
    if not user or not user.is_authenticated:
        raise PermissionDenied("Authentication required.")

    roles = user_roles(user)
    if not roles & STEP_OPERATOR_ROLES:
        raise PermissionDenied("Your role may not change step status.")

    scope = resolve_user_machine_ids(user, roles, policy=policy)
    job = snapshot_for_planning(step.planning, _job_for(step.planning.nrc_job_no))

    if not is_step_visible(step_snapshot(step), job, roles, scope, policy=policy, log=log):
        raise PermissionDenied(
            f"You do not have access to {step.step_name} of job {step.planning.nrc_job_no}."
        )
    return roles


def _detail_statuses(planning_id: int) -> Dict[str, str]:
    rows = StepDetail.objects.filter(step__planning_id=planning_id).values_list(
        "step__step_name", "status"
    )
    return {name: status for name, status in rows}


def _audit(
    *,
    step: JobStep,
    action: str,
    from_status: str,
    to_status: str,
    user,
    roles: Iterable[Any],
    comment: str = "",
) -> StepTransition:
    return StepTransition.objects.create(
        step=step,
        nrc_job_no=step.planning.nrc_job_no,
        step_name=step.step_name,
        action=action,
        from_status=from_status,
        to_status=to_status,
        performed_by=user if user and user.is_authenticated else None,
        roles=serialize_role_set(roles),
        comment=comment or "",
    )


def _result(step: JobStep, action: str, from_status: str, to_status: str, transition=None) -> dict:
    return {
        "changed": transition is not None,
        "step_id": step.pk,
        "nrc_job_no": step.planning.nrc_job_no,
        "step_no": step.step_no,
        "step_name": step.step_name,
        "action": action,
        "from_status": from_status,
        "to_status": to_status,
        "transition_id": transition.id if transition is not None else None,
    }


def _clean_stop_detail(detail: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if not detail:
        return {}
    if not isinstance(detail, Mapping):
        raise ValidationError({"detail": "Step detail must be an object."})

    out = {k: detail[k] for k in STOP_DETAIL_FIELDS if k in detail}
    if "data" in out and not isinstance(out["data"], Mapping):
        raise ValidationError({"detail": "Step detail data must be an object."})

    status = str(detail.get("status") or DETAIL_ACCEPT).strip().lower()
    if status not in (DETAIL_ACCEPT, DETAIL_REJECT):
        raise ValidationError({"detail": f"Completed step detail must be accept or reject, got {status!r}."})
    out["status"] = status
    return out


# ===============================================================
# Start / stop
# ===============================================================
def _transition_step(
    step: JobStep,
    user,
    action: str,
    *,
    detail: Optional[Mapping[str, Any]] = None,
    policy: Optional[AccessPolicy] = None,
    log: Optional[logging.Logger] = None,
) -> dict:
    log = log or logger
    policy = policy or policy_from_settings()
    action = normalize_action(action)
    target = ACTION_TARGET_STATUS[action]

    roles = _ensure_step_access_or_403(step, user, policy=policy, log=log)
    detail_values = _clean_stop_detail(detail) if action == ACTION_STOP else {}

    with transaction.atomic():
        locked = JobStep.objects.select_for_update().select_related("planning").get(pk=step.pk)
        current = locked.status

        # 1) Idempotent repeat
        if current == target:
            return _result(locked, action, current, target)

        # 2) Own status machine
        try:
            validate_status_change(current, target)
        except ValueError as e:
            raise ValidationError({"status": str(e)})

        # 3) Prerequisites, evaluated against the locked planning
        siblings = list(JobStep.objects.filter(planning_id=locked.planning_id))
        decision = can_transition(siblings, locked.step_name, action, log=log)
        if not decision.allowed:
            raise StepTransitionBlocked(decision, step_name=locked.step_name, action=action)

        if current == STATUS_PLANNED and _legacy_gating_enabled():
            legacy = previous_step_accepted(
                siblings, _detail_statuses(locked.planning_id), locked.step_name
            )
            if not legacy.allowed:
                raise StepTransitionBlocked(legacy, step_name=locked.step_name, action=action)

        # 4) Apply
        now = timezone.now()
        locked.status = target
        update_fields = ["status", "updated_at"]
        if action == ACTION_START:
            locked.started_at = now
            locked.started_by = user
            update_fields += ["started_at", "started_by"]
        else:
            locked.ended_at = now
            update_fields.append("ended_at")
        locked.save(update_fields=update_fields)

        step_detail, _ = StepDetail.objects.get_or_create(step=locked)
        if action == ACTION_START:
            step_detail.status = DETAIL_IN_PROGRESS
        else:
            step_detail.status = DETAIL_ACCEPT
            for field, value in detail_values.items():
                setattr(step_detail, field, value)
        step_detail.save()

        transition = _audit(
            step=locked,
            action=action,
            from_status=current,
            to_status=target,
            user=user,
            roles=roles,
        )

        if action == ACTION_STOP:
            update_job_machine_details_flag(locked.planning.nrc_job_no)

    log.info(
        "Step %s of job %s moved %s -> %s by %s",
        locked.step_name,
        locked.planning.nrc_job_no,
        current,
        target,
        getattr(user, "username", None),
    )
    return _result(locked, action, current, target, transition)


def start_step(step: JobStep, user, *, policy=None, log=None) -> dict:
    return _transition_step(step, user, ACTION_START, policy=policy, log=log)


def stop_step(step: JobStep, user, *, detail=None, policy=None, log=None) -> dict:
    """
    Complete a step. `detail` may carry quantity, operator_name, remarks,
    data and a final status of accept (default) or reject.
    """
    return _transition_step(step, user, ACTION_STOP, detail=detail, policy=policy, log=log)


# ===============================================================
# Hold / resume
# ===============================================================
def _set_detail_status(
    step: JobStep,
    user,
    action: str,
    *,
    expected: str,
    target: str,
    remark: str = "",
    policy: Optional[AccessPolicy] = None,
    log: Optional[logging.Logger] = None,
) -> dict:
    log = log or logger
    policy = policy or policy_from_settings()

    roles = _ensure_step_access_or_403(step, user, policy=policy, log=log)

    with transaction.atomic():
        locked = JobStep.objects.select_for_update().select_related("planning").get(pk=step.pk)

        if locked.status != STATUS_START:
            raise ValidationError(
                {"status": f"Only a started step can {action}; {locked.step_name} is {locked.status}."}
            )

        step_detail, _ = StepDetail.objects.get_or_create(step=locked)
        current = step_detail.status

        if current == target:
            return _result(locked, action, current, target)

        if current != expected:
            raise ValidationError(
                {"status": f"Cannot {action} {locked.step_name} while its detail is {current}."}
            )

        step_detail.status = target
        if target == DETAIL_HOLD:
            step_detail.hold_remark = remark or ""
        step_detail.save()

        transition = _audit(
            step=locked,
            action=action,
            from_status=current,
            to_status=target,
            user=user,
            roles=roles,
            comment=remark,
        )

    log.info("Step %s of job %s: %s", locked.step_name, locked.planning.nrc_job_no, action)
    return _result(locked, action, current, target, transition)


def hold_step(step: JobStep, user, remark: str = "", *, policy=None, log=None) -> dict:
    return _set_detail_status(
        step,
        user,
        ACTION_HOLD,
        expected=DETAIL_IN_PROGRESS,
        target=DETAIL_HOLD,
        remark=remark,
        policy=policy,
        log=log,
    )


def resume_step(step: JobStep, user, *, policy=None, log=None) -> dict:
    return _set_detail_status(
        step,
        user,
        ACTION_RESUME,
        expected=DETAIL_HOLD,
        target=DETAIL_IN_PROGRESS,
        policy=policy,
        log=log,
    )


def perform_step_action(step: JobStep, user, action: str, *, data: Optional[Mapping] = None, policy=None) -> dict:
    action = normalize_action(action)
    data = data or {}

    if action == ACTION_START:
        return start_step(step, user, policy=policy)
    if action == ACTION_STOP:
        return stop_step(step, user, detail=data.get("detail"), policy=policy)
    if action == ACTION_HOLD:
        return hold_step(step, user, str(data.get("remark") or ""), policy=policy)
    if action == ACTION_RESUME:
        return resume_step(step, user, policy=policy)

    raise ValidationError({"action": f"Unknown step action: {action}"})


# ===============================================================
# Maintenance
# ===============================================================
def update_job_machine_details_flag(nrc_job_no: str) -> Optional[bool]:
    """
    Recompute Job.is_machine_details_filled: true when any step of the
    current planning has a machine recorded. Planning-only jobs have no
    Job row and are skipped (returns None).
    """
    job = _job_for(nrc_job_no)
    if job is None:
        logger.debug("No Job row for %s; machine details flag not updated", nrc_job_no)
        return None

    planning = select_current_planning(
        JobPlanning.objects.filter(nrc_job_no=nrc_job_no).prefetch_related("steps__detail")
    )
    steps = list(planning.steps.all()) if planning is not None else []

    filled = False
    for s in steps:
        if parse_machine_refs(s.machine_details, log=logger):
            filled = True
            break
        d = getattr(s, "detail", None)
        if d is not None and isinstance(d.data, Mapping) and d.data.get("machine"):
            filled = True
            break

    if job.is_machine_details_filled != filled:
        Job.objects.filter(pk=job.pk).update(is_machine_details_filled=filled)
    return filled


def repair_step_states(planning: JobPlanning) -> int:
    """
    Bring step timestamps and statuses back in line:
      - ended_at set but not stopped -> stop
      - started without started_at -> started_at = now
      - stopped without ended_at -> ended_at = now

    Returns the number of steps changed.
    """
    now = timezone.now()
    fixed = 0

    with transaction.atomic():
        for step in JobStep.objects.select_for_update().filter(planning=planning):
            changes = {}

            if step.ended_at and step.status != STATUS_STOP:
                changes["status"] = STATUS_STOP
            if step.status == STATUS_START and not step.started_at:
                changes["started_at"] = now
            if step.status == STATUS_STOP and not step.ended_at:
                changes["ended_at"] = now

            if not changes:
                continue

            JobStep.objects.filter(pk=step.pk).update(updated_at=now, **changes)
            logger.info(
                "Repaired step %s of job %s: %s",
                step.step_name,
                planning.nrc_job_no,
                ", ".join(sorted(changes)),
            )
            fixed += 1

    return fixed
