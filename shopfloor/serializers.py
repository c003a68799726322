from __future__ import annotations

from typing import Any, Dict, List

from rest_framework import serializers

from shopfloor.access.resolver import snapshot_for_planning
from shopfloor.access.visibility import BYPASS, is_step_visible
from shopfloor.models import Machine, JobPlanning, JobStep, JobStepMachine, StepDetail, StepTransition, UserMachine
from shopfloor.workflows.legacy import DETAIL_ACCEPT, DETAIL_REJECT
from shopfloor.workflows.rules import (
    ACTION_START,
    ACTION_STOP,
    STATUS_PLANNED,
    STATUS_STOP,
    allowed_next_statuses,
    can_transition,
)


# ===============================================================
# Machines
# ===============================================================

class MachineSerializer(serializers.ModelSerializer):
    class Meta:
        model = Machine
        fields = ("id", "machine_code", "machine_type", "unit", "description", "status", "is_active")
        read_only_fields = fields


class UserMachineSerializer(serializers.ModelSerializer):
    machine = MachineSerializer(read_only=True)

    class Meta:
        model = UserMachine
        fields = ("id", "machine", "is_active", "created_at")
        read_only_fields = fields


# ===============================================================
# Steps
# ===============================================================

class StepDetailSerializer(serializers.ModelSerializer):
    class Meta:
        model = StepDetail
        fields = (
            "status",
            "quantity",
            "operator_name",
            "hold_remark",
            "remarks",
            "data",
            "updated_at",
        )
        read_only_fields = fields


class JobStepSerializer(serializers.ModelSerializer):
    detail = serializers.SerializerMethodField()
    allowed_next = serializers.SerializerMethodField()

    class Meta:
        model = JobStep
        fields = (
            "id",
            "step_no",
            "step_name",
            "status",
            "machine_details",
            "started_at",
            "ended_at",
            "started_by",
            "detail",
            "allowed_next",
        )
        read_only_fields = fields

    def get_detail(self, obj):
        detail = getattr(obj, "detail", None)
        return StepDetailSerializer(detail).data if detail is not None else None

    def get_allowed_next(self, obj) -> List[str]:
        return allowed_next_statuses(obj.status)


class JobPlanningSerializer(serializers.ModelSerializer):
    """
    Current planning of a job with per-step access flags for the caller.

    Expects `roles`, `machine_scope`, `policy` and `jobs` (job number -> Job)
    in the serializer context.
    """

    steps = serializers.SerializerMethodField()
    effective_demand = serializers.SerializerMethodField()

    class Meta:
        model = JobPlanning
        fields = (
            "id",
            "nrc_job_no",
            "job_demand",
            "effective_demand",
            "purchase_order_ref",
            "created_at",
            "steps",
        )
        read_only_fields = fields

    def _snapshot(self, obj):
        jobs = self.context.get("jobs") or {}
        return snapshot_for_planning(obj, jobs.get(obj.nrc_job_no))

    def get_effective_demand(self, obj) -> str:
        return self._snapshot(obj).demand

    def get_steps(self, obj) -> List[Dict[str, Any]]:
        roles = self.context.get("roles", frozenset())
        scope = self.context.get("machine_scope", BYPASS)
        policy = self.context["policy"]

        job = self._snapshot(obj)
        by_no = {s.step_no: s for s in job.steps}

        out = []
        for step in obj.steps.all():
            data = JobStepSerializer(step, context=self.context).data
            snap = by_no[step.step_no]
            visible = is_step_visible(snap, job, roles, scope, policy=policy)
            data["visible"] = visible
            data["can_start"] = (
                visible
                and step.status == STATUS_PLANNED
                and can_transition(job.steps, step.step_name, ACTION_START).allowed
            )
            data["can_stop"] = (
                visible
                and step.status != STATUS_STOP
                and can_transition(job.steps, step.step_name, ACTION_STOP).allowed
            )
            out.append(data)
        return out


class JobStepMachineSerializer(serializers.ModelSerializer):
    machine_code = serializers.CharField(source="machine.machine_code", read_only=True)
    operator_name = serializers.CharField(source="operator.username", read_only=True, default=None)

    class Meta:
        model = JobStepMachine
        fields = (
            "id",
            "machine",
            "machine_code",
            "status",
            "operator",
            "operator_name",
            "started_at",
            "completed_at",
            "form_data",
            "remarks",
            "updated_at",
        )
        read_only_fields = fields


class StepTransitionSerializer(serializers.ModelSerializer):
    performed_by = serializers.SerializerMethodField()

    class Meta:
        model = StepTransition
        fields = (
            "id",
            "nrc_job_no",
            "step_name",
            "action",
            "from_status",
            "to_status",
            "performed_by",
            "roles",
            "comment",
            "created_at",
        )
        read_only_fields = fields

    def get_performed_by(self, obj):
        return obj.performed_by.username if obj.performed_by else None


# ===============================================================
# Action payloads
# ===============================================================

class StopDetailSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[DETAIL_ACCEPT, DETAIL_REJECT], required=False)
    quantity = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    operator_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    remarks = serializers.CharField(required=False, allow_blank=True)
    data = serializers.DictField(required=False)


class StepActionSerializer(serializers.Serializer):
    remark = serializers.CharField(required=False, allow_blank=True)
    detail = StopDetailSerializer(required=False)
    job_plan_id = serializers.IntegerField(required=False, min_value=1)


class MachineWorkActionSerializer(serializers.Serializer):
    form_data = serializers.DictField(required=False)
    remark = serializers.CharField(required=False, allow_blank=True, default="")
    job_plan_id = serializers.IntegerField(required=False, min_value=1)


class MachineAssignmentSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(min_value=1)
    machine_ids = serializers.ListField(
        child=serializers.CharField(max_length=64),
        allow_empty=False,
    )
