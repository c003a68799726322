from django.conf import settings
from django.db import models


class StepTransition(models.Model):
    """
    Immutable audit log for step actions.
    """

    step = models.ForeignKey(
        "shopfloor.JobStep",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="transitions",
    )
    # Copied so the row survives job completion, which deletes the steps.
    nrc_job_no = models.CharField(max_length=100, db_index=True)
    step_name = models.CharField(max_length=64)
    action = models.CharField(max_length=16)
    from_status = models.CharField(max_length=16)
    to_status = models.CharField(max_length=16)

    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="step_transitions",
    )
    roles = models.CharField(max_length=255, blank=True)
    comment = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["nrc_job_no", "step_name"], name="shopfloor_trans_job_step_idx"),
        ]

    def __str__(self):
        who = self.performed_by.username if self.performed_by else "system"
        return (
            f"{self.nrc_job_no} {self.step_name}: "
            f"{self.from_status} -> {self.to_status} by {who}"
        )
