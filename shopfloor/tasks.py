# shopfloor/tasks.py
from __future__ import annotations

import logging

from celery import shared_task
from django.contrib.auth import get_user_model

from shopfloor.workflows.completion import complete_ready_jobs as _complete_ready_jobs

logger = logging.getLogger(__name__)


@shared_task(name="shopfloor.tasks.complete_ready_jobs")
def complete_ready_jobs(completed_by_user_id: int | None = None) -> int:
    user = None
    if completed_by_user_id:
        User = get_user_model()
        user = User.objects.filter(id=completed_by_user_id).first()

    completed = _complete_ready_jobs(user=user)
    logger.info("complete_ready_jobs: %d job(s) completed", completed)
    return completed
