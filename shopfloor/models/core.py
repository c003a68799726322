# shopfloor/models/core.py

import uuid

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from shopfloor.access.roles import parse_role_set, serialize_role_set
from shopfloor.workflows.legacy import (
    DETAIL_ACCEPT,
    DETAIL_HOLD,
    DETAIL_IN_PROGRESS,
    DETAIL_REJECT,
)
from shopfloor.workflows.rules import (
    STATUS_PLANNED,
    STATUS_START,
    STATUS_STOP,
    STEP_NAMES,
)


def _new_machine_id() -> str:
    return uuid.uuid4().hex


# ============================================================
# Base
# ============================================================
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class JobDemand(models.TextChoices):
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"


# ============================================================
# Machines and operator assignment
# ============================================================
class Machine(TimeStampedModel):
    """
    A production machine. Authorization compares ids only; code and type
    are for display.
    """

    id = models.CharField(primary_key=True, max_length=64, default=_new_machine_id, editable=False)
    machine_code = models.CharField(max_length=64, unique=True)
    machine_type = models.CharField(max_length=100, blank=True)
    unit = models.CharField(max_length=64, blank=True)
    description = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=32, default="available")
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["machine_code"]

    def __str__(self):
        return self.machine_code


class UserMachine(TimeStampedModel):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="machine_assignments",
    )
    machine = models.ForeignKey(
        Machine,
        on_delete=models.CASCADE,
        related_name="user_assignments",
    )
    is_active = models.BooleanField(default=True)
    assigned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        unique_together = ("user", "machine")

    def __str__(self):
        state = "active" if self.is_active else "inactive"
        return f"{self.user} @ {self.machine} ({state})"


class OperatorProfile(TimeStampedModel):
    """
    Shop-floor identity of a user. `role` holds the stored role field:
    a bare tag or a JSON list of tags.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="operator_profile",
    )
    role = models.CharField(max_length=255, blank=True, default="")
    phone = models.CharField(max_length=50, blank=True)

    @property
    def roles(self):
        return parse_role_set(self.role)

    def set_roles(self, roles):
        self.role = serialize_role_set(roles)

    def __str__(self):
        return f"{self.user} [{self.role}]"


# ============================================================
# Jobs and planning
# ============================================================
class Job(TimeStampedModel):
    class JobStatus(models.TextChoices):
        ACTIVE = "ACTIVE", "Active"
        INACTIVE = "INACTIVE", "Inactive"

    nrc_job_no = models.CharField(max_length=100, unique=True)
    customer_name = models.CharField(max_length=255, blank=True)
    style_item_sku = models.CharField(max_length=255, blank=True)
    job_demand = models.CharField(
        max_length=10,
        choices=JobDemand.choices,
        default=JobDemand.NORMAL,
    )
    # Legacy job-level assignment, independent of step machines.
    machine = models.ForeignKey(
        Machine,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="jobs",
    )
    status = models.CharField(
        max_length=10,
        choices=JobStatus.choices,
        default=JobStatus.ACTIVE,
    )
    is_machine_details_filled = models.BooleanField(default=False)

    class Meta:
        ordering = ["nrc_job_no"]

    def __str__(self):
        return self.nrc_job_no


class JobPlanning(TimeStampedModel):
    """
    One revision of a job's step pipeline. Keyed by job number rather than
    a foreign key: urgent jobs are planned before a Job row exists.
    """

    nrc_job_no = models.CharField(max_length=100, db_index=True)
    job_demand = models.CharField(
        max_length=10,
        choices=JobDemand.choices,
        default=JobDemand.NORMAL,
    )
    purchase_order_ref = models.CharField(max_length=100, blank=True)

    class Meta:
        ordering = ["nrc_job_no", "-created_at", "-id"]

    def __str__(self):
        return f"{self.nrc_job_no} plan #{self.pk}"


class JobStep(TimeStampedModel):
    class StepName(models.TextChoices):
        PAPER_STORE = STEP_NAMES[0], "Paper store"
        PRINTING_DETAILS = STEP_NAMES[1], "Printing"
        CORRUGATION = STEP_NAMES[2], "Corrugation"
        FLUTE_LAMINATE = STEP_NAMES[3], "Flute lamination"
        PUNCHING = STEP_NAMES[4], "Punching"
        DIE_CUTTING = STEP_NAMES[5], "Die cutting"
        SIDE_FLAP_PASTING = STEP_NAMES[6], "Side flap pasting"
        QUALITY_DEPT = STEP_NAMES[7], "Quality check"
        DISPATCH_PROCESS = STEP_NAMES[8], "Dispatch"

    class Status(models.TextChoices):
        PLANNED = STATUS_PLANNED, "Planned"
        START = STATUS_START, "Started"
        STOP = STATUS_STOP, "Stopped"

    planning = models.ForeignKey(
        JobPlanning,
        on_delete=models.CASCADE,
        related_name="steps",
    )
    step_no = models.PositiveIntegerField()
    step_name = models.CharField(max_length=64, choices=StepName.choices)
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.PLANNED,
    )
    # Raw machine records as written by clients; parsed by
    # shopfloor.access.machines.parse_machine_refs.
    machine_details = models.JSONField(default=list, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    started_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="started_steps",
    )

    class Meta:
        ordering = ["step_no"]
        unique_together = ("planning", "step_no")

    @property
    def nrc_job_no(self) -> str:
        return self.planning.nrc_job_no

    def __str__(self):
        return f"{self.planning.nrc_job_no} #{self.step_no} {self.step_name} ({self.status})"


class StepDetail(TimeStampedModel):
    """
    Per-station record of a step: quantities, operator and the finer
    in_progress / hold / accept / reject status.
    """

    class Status(models.TextChoices):
        IN_PROGRESS = DETAIL_IN_PROGRESS, "In progress"
        HOLD = DETAIL_HOLD, "On hold"
        ACCEPT = DETAIL_ACCEPT, "Accepted"
        REJECT = DETAIL_REJECT, "Rejected"

    step = models.OneToOneField(
        JobStep,
        on_delete=models.CASCADE,
        related_name="detail",
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.IN_PROGRESS,
    )
    quantity = models.PositiveIntegerField(null=True, blank=True)
    operator_name = models.CharField(max_length=255, blank=True)
    hold_remark = models.TextField(blank=True)
    remarks = models.TextField(blank=True)
    data = models.JSONField(default=dict, blank=True)

    def __str__(self):
        return f"{self.step} detail ({self.status})"


class JobStepMachine(TimeStampedModel):
    """
    One machine's run on a step. A step planned on several machines is
    worked machine by machine:

        available -> in_progress <-> hold -> stop -> completed
    """

    class Status(models.TextChoices):
        AVAILABLE = "available", "Available"
        IN_PROGRESS = "in_progress", "In progress"
        HOLD = "hold", "On hold"
        STOP = "stop", "Stopped"
        COMPLETED = "completed", "Completed"

    step = models.ForeignKey(
        JobStep,
        on_delete=models.CASCADE,
        related_name="machine_work",
    )
    machine = models.ForeignKey(
        Machine,
        on_delete=models.CASCADE,
        related_name="step_work",
    )
    nrc_job_no = models.CharField(max_length=100, db_index=True)
    step_no = models.PositiveIntegerField()
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.AVAILABLE,
    )
    operator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="machine_work",
    )
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    form_data = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    remarks = models.TextField(blank=True)

    class Meta:
        ordering = ["nrc_job_no", "step_no", "id"]
        unique_together = ("step", "machine")

    @property
    def is_finished(self) -> bool:
        return self.status in (self.Status.STOP, self.Status.COMPLETED)

    def __str__(self):
        return f"{self.nrc_job_no} #{self.step_no} on {self.machine_id} ({self.status})"


class CompletedJob(TimeStampedModel):
    """Archive snapshot of a job whose every step finished."""

    nrc_job_no = models.CharField(max_length=100, db_index=True)
    job_plan_id = models.PositiveIntegerField()
    job_demand = models.CharField(max_length=10, choices=JobDemand.choices)
    job_details = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    all_steps = models.JSONField(default=list, blank=True, encoder=DjangoJSONEncoder)
    completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="completed_jobs",
    )
    total_duration_days = models.PositiveIntegerField(null=True, blank=True)
    final_status = models.CharField(max_length=32, default="completed")
    remarks = models.TextField(blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.nrc_job_no} completed"
