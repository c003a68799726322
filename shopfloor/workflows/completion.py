# shopfloor/workflows/completion.py
"""
Job completion: archive a job once every step is stopped and dispatch has
been accepted.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from django.db import transaction
from django.forms.models import model_to_dict

from shopfloor.models import CompletedJob, Job, JobPlanning, StepDetail
from shopfloor.workflows.legacy import DETAIL_ACCEPT
from shopfloor.workflows.planning import select_current_planning
from shopfloor.workflows.rules import DISPATCH_PROCESS, STATUS_STOP

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionCheck:
    ready: bool
    reason: str = ""
    planning: Optional[Any] = None

    def __bool__(self) -> bool:
        return self.ready


def _current_planning(nrc_job_no: str):
    return select_current_planning(
        JobPlanning.objects.filter(nrc_job_no=nrc_job_no).prefetch_related("steps__detail", "steps__machine_work")
    )


def job_completion_readiness(planning) -> CompletionCheck:
    if planning is None:
        return CompletionCheck(False, "Job planning not found")

    steps = list(planning.steps.all())
    stopped = sum(1 for s in steps if s.status == STATUS_STOP)
    if stopped != len(steps):
        return CompletionCheck(
            False,
            f"Not all steps are stopped. {stopped}/{len(steps)} steps are stopped.",
        )

    dispatch = next((s for s in steps if s.step_name == DISPATCH_PROCESS), None)
    detail = getattr(dispatch, "detail", None) if dispatch is not None else None
    if detail is None:
        return CompletionCheck(False, "Dispatch process not found")
    if detail.status != DETAIL_ACCEPT:
        return CompletionCheck(False, "Dispatch process not accepted")

    return CompletionCheck(True, "", planning)


def _duration_days(steps) -> Optional[int]:
    starts = [s.started_at for s in steps if s.started_at]
    ends = [s.ended_at for s in steps if s.ended_at]
    if not starts or not ends:
        return None
    seconds = (max(ends) - min(starts)).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def _step_payload(step) -> dict:
    payload = model_to_dict(step, exclude=["planning"])
    payload["id"] = step.pk
    payload["started_at"] = step.started_at
    payload["ended_at"] = step.ended_at
    detail = getattr(step, "detail", None)
    payload["detail"] = model_to_dict(detail, exclude=["step"]) if detail is not None else None
    payload["machine_work"] = [
        dict(
            model_to_dict(w, exclude=["step"]),
            started_at=w.started_at,
            completed_at=w.completed_at,
        )
        for w in step.machine_work.all()
    ]
    return payload


def complete_job_if_ready(nrc_job_no: str, user=None) -> dict:
    """
    Archive the job into CompletedJob, delete its planning and steps and
    mark the Job INACTIVE. Returns {"completed": bool, ...}.

    The Job row is locked before the planning is read, so concurrent
    callers (dispatch stop, beat task) serialize and only one archives.
    """
    with transaction.atomic():
        job = Job.objects.select_for_update().filter(nrc_job_no=nrc_job_no).first()
        if job is None:
            return {"completed": False, "reason": "Job not found"}
        if job.status == Job.JobStatus.INACTIVE:
            return {"completed": False, "reason": "Job already completed"}

        planning = _current_planning(nrc_job_no)
        check = job_completion_readiness(planning)
        if not check.ready:
            return {"completed": False, "reason": check.reason}

        if not JobPlanning.objects.select_for_update().filter(pk=planning.pk).exists():
            return {"completed": False, "reason": "Job planning not found"}

        steps = list(planning.steps.all())
        job_details = model_to_dict(job)
        job_details["created_at"] = job.created_at

        completed = CompletedJob.objects.create(
            nrc_job_no=nrc_job_no,
            job_plan_id=planning.pk,
            job_demand=planning.job_demand,
            job_details=job_details,
            all_steps=[_step_payload(s) for s in steps],
            completed_by=user if user is not None and user.is_authenticated else None,
            total_duration_days=_duration_days(steps),
            final_status="completed",
            remarks="Automatically completed - all steps finished and dispatch accepted",
        )

        StepDetail.objects.filter(step__planning=planning).delete()
        planning.steps.all().delete()
        planning.delete()

        Job.objects.filter(pk=job.pk).update(status=Job.JobStatus.INACTIVE)

    logger.info("Job %s completed (archive #%s)", nrc_job_no, completed.pk)
    return {"completed": True, "completed_job_id": completed.pk}


def complete_ready_jobs(user=None) -> int:
    completed = 0
    numbers = (
        JobPlanning.objects.order_by("nrc_job_no")
        .values_list("nrc_job_no", flat=True)
        .distinct()
    )
    for nrc_job_no in list(numbers):
        result = complete_job_if_ready(nrc_job_no, user=user)
        if result["completed"]:
            completed += 1
        else:
            logger.debug("Job %s not completed: %s", nrc_job_no, result["reason"])

    logger.info("Auto-completion checked jobs; %d completed", completed)
    return completed
