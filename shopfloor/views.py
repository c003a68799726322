# shopfloor/views.py
from __future__ import annotations

import logging
from typing import Optional

from django.shortcuts import get_object_or_404

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import viewsets
from rest_framework.exceptions import NotAuthenticated, NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from shopfloor.access.assignments import active_assignments, assign_machines, remove_machines
from shopfloor.access.policy import policy_from_settings
from shopfloor.access.resolver import (
    current_plannings,
    filtered_job_numbers_for_user,
    job_snapshot,
    resolve_user_machine_ids,
    snapshot_for_planning,
    step_snapshot,
    user_roles,
)
from shopfloor.access.roles import ROLE_STEP_MAP
from shopfloor.access.visibility import BYPASS, is_step_visible
from shopfloor.models import Job, JobPlanning, JobStep, UserMachine
from shopfloor.permissions import IsAdminOrPlanner, IsShopfloorAdmin, IsStepOperatorOrReadOnly
from shopfloor.serializers import (
    JobPlanningSerializer,
    JobStepSerializer,
    JobStepMachineSerializer,
    MachineAssignmentSerializer,
    MachineWorkActionSerializer,
    StepActionSerializer,
    UserMachineSerializer,
)
from shopfloor.workflows.completion import complete_job_if_ready
from shopfloor.workflows.executor import STEP_MUTATIONS, perform_step_action
from shopfloor.workflows.machine_work import (
    MACHINE_ACTIONS,
    held_machine_work,
    machine_work_summary,
    perform_machine_action,
    start_urgent_machine_work,
)
from shopfloor.workflows.rules import (
    ACTION_START,
    ACTION_STOP,
    DISPATCH_PROCESS,
    STATUS_STOP,
    allowed_next_statuses,
    can_transition,
    workflow_definition,
)

logger = logging.getLogger(__name__)


# ===============================================================
# Utilities
# ===============================================================
def _require_auth(request):
    user = getattr(request, "user", None)
    if not user or not user.is_authenticated:
        raise NotAuthenticated("Authentication required.")
    return user


def _parse_plan_id(value) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError({"job_plan_id": "Must be an integer."})


def _resolve_planning(nrc_job_no: str, job_plan_id: Optional[int] = None) -> JobPlanning:
    if job_plan_id is not None:
        return get_object_or_404(JobPlanning, pk=job_plan_id, nrc_job_no=nrc_job_no)

    planning = current_plannings([nrc_job_no]).get(nrc_job_no)
    if planning is None:
        raise NotFound(f"No planning found for job {nrc_job_no}.")
    return planning


def _resolve_step(nrc_job_no: str, step_no: int, job_plan_id: Optional[int] = None) -> JobStep:
    planning = _resolve_planning(nrc_job_no, job_plan_id)
    return get_object_or_404(
        JobStep.objects.select_related("planning"),
        planning=planning,
        step_no=step_no,
    )


# ===============================================================
# Health
# ===============================================================
class HealthCheckView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(tags=["System"])
    def get(self, request):
        return Response({"status": "ok", "service": "boxtrack"})


# ===============================================================
# Jobs (visibility filtered)
# ===============================================================
class JobPlanningViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Current planning of every job the caller may see.
    """

    serializer_class = JobPlanningSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["job_demand"]
    lookup_field = "nrc_job_no"
    lookup_value_regex = "[^/]+"

    def get_queryset(self):
        user = _require_auth(self.request)
        policy = policy_from_settings()

        numbers = filtered_job_numbers_for_user(user, policy=policy)
        plannings = current_plannings(numbers)

        return (
            JobPlanning.objects.filter(pk__in=[p.pk for p in plannings.values()])
            .prefetch_related("steps__detail")
            .order_by("nrc_job_no")
        )

    def get_serializer_context(self):
        context = super().get_serializer_context()
        user = getattr(self.request, "user", None)
        if user is not None and user.is_authenticated:
            policy = policy_from_settings()
            roles = user_roles(user)
            context.update(
                {
                    "policy": policy,
                    "roles": roles,
                    "machine_scope": resolve_user_machine_ids(user, roles, policy=policy),
                    "jobs": {j.nrc_job_no: j for j in Job.objects.all()},
                }
            )
        return context


# ===============================================================
# Step readiness
# ===============================================================
class StepReadinessView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=["Steps"],
        responses={
            200: OpenApiResponse(description="Start/stop decisions for the step"),
            403: OpenApiResponse(description="Step not visible to the caller"),
            404: OpenApiResponse(description="Job or step not found"),
        },
    )
    def get(self, request, nrc_job_no: str, step_no: int):
        user = _require_auth(request)
        policy = policy_from_settings()

        step = _resolve_step(nrc_job_no, step_no, _parse_plan_id(request.query_params.get("job_plan_id")))
        job = snapshot_for_planning(step.planning, Job.objects.filter(nrc_job_no=nrc_job_no).first())

        roles = user_roles(user)
        scope = resolve_user_machine_ids(user, roles, policy=policy)
        if not is_step_visible(step_snapshot(step), job, roles, scope, policy=policy):
            raise PermissionDenied(f"You do not have access to {step.step_name} of job {nrc_job_no}.")

        return Response(
            {
                "nrc_job_no": nrc_job_no,
                "job_plan_id": step.planning_id,
                "step_no": step.step_no,
                "step_name": step.step_name,
                "status": step.status,
                "allowed_next": allowed_next_statuses(step.status),
                "start": can_transition(job.steps, step.step_name, ACTION_START).as_dict(),
                "stop": can_transition(job.steps, step.step_name, ACTION_STOP).as_dict(),
            }
        )


# ===============================================================
# Step actions
# ===============================================================
class StepActionView(APIView):
    permission_classes = [IsStepOperatorOrReadOnly]

    @extend_schema(
        tags=["Steps"],
        request=StepActionSerializer,
        responses={
            200: OpenApiResponse(description="Action applied (or idempotent no-op)"),
            400: OpenApiResponse(description="Illegal transition or unmet prerequisite"),
            403: OpenApiResponse(description="Role or machine access denied"),
            404: OpenApiResponse(description="Job or step not found"),
        },
    )
    def post(self, request, nrc_job_no: str, step_no: int, action: str):
        user = _require_auth(request)

        action = (action or "").strip().lower()
        if action not in STEP_MUTATIONS:
            raise NotFound(f"Unknown step action: {action}")

        payload = StepActionSerializer(data=request.data or {})
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        job_plan_id = data.get("job_plan_id") or _parse_plan_id(request.query_params.get("job_plan_id"))
        step = _resolve_step(nrc_job_no, step_no, job_plan_id)

        result = perform_step_action(step, user, action, data=data)

        response = {"result": result}
        if result["changed"] and action == ACTION_STOP and step.step_name == DISPATCH_PROCESS:
            response["job_completion"] = complete_job_if_ready(nrc_job_no, user=user)
            if response["job_completion"]["completed"]:
                # Steps are archived and deleted with the planning.
                return Response(response)

        step.refresh_from_db()
        response["step"] = JobStepSerializer(step).data
        return Response(response)


# ===============================================================
# Per-machine work
# ===============================================================
def _ensure_step_visible_or_403(user, step: JobStep, nrc_job_no: str) -> None:
    policy = policy_from_settings()
    job = snapshot_for_planning(step.planning, Job.objects.filter(nrc_job_no=nrc_job_no).first())
    roles = user_roles(user)
    scope = resolve_user_machine_ids(user, roles, policy=policy)
    if not is_step_visible(step_snapshot(step), job, roles, scope, policy=policy):
        raise PermissionDenied(f"You do not have access to {step.step_name} of job {nrc_job_no}.")


def _machine_work_response(step: JobStep) -> dict:
    step.refresh_from_db()
    return {
        "summary": machine_work_summary(step),
        "machines": JobStepMachineSerializer(
            step.machine_work.select_related("machine", "operator"), many=True
        ).data,
    }


class MachineWorkView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=["Machines"],
        responses={
            200: OpenApiResponse(description="Machine runs of the step with a status summary"),
            403: OpenApiResponse(description="Step not visible to the caller"),
            404: OpenApiResponse(description="Job or step not found"),
        },
    )
    def get(self, request, nrc_job_no: str, step_no: int):
        user = _require_auth(request)
        step = _resolve_step(nrc_job_no, step_no, _parse_plan_id(request.query_params.get("job_plan_id")))
        _ensure_step_visible_or_403(user, step, nrc_job_no)
        return Response(_machine_work_response(step))


def _completion_after_machine_action(response: dict, step: JobStep, result: dict, nrc_job_no: str, user) -> bool:
    if not (result["changed"] and step.step_name == DISPATCH_PROCESS and result.get("step_status") == STATUS_STOP):
        return False
    response["job_completion"] = complete_job_if_ready(nrc_job_no, user=user)
    return response["job_completion"]["completed"]


class MachineWorkActionView(APIView):
    permission_classes = [IsStepOperatorOrReadOnly]

    @extend_schema(
        tags=["Machines"],
        request=MachineWorkActionSerializer,
        responses={
            200: OpenApiResponse(description="Action applied (or idempotent no-op)"),
            400: OpenApiResponse(description="Illegal machine status or unmet prerequisite"),
            403: OpenApiResponse(description="Role or machine assignment missing"),
            404: OpenApiResponse(description="Job, step, machine or machine run not found"),
        },
    )
    def post(self, request, nrc_job_no: str, step_no: int, machine_id: str, action: str):
        user = _require_auth(request)

        action = (action or "").strip().lower()
        if action not in MACHINE_ACTIONS:
            raise NotFound(f"Unknown machine action: {action}")

        payload = MachineWorkActionSerializer(data=request.data or {})
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        job_plan_id = data.get("job_plan_id") or _parse_plan_id(request.query_params.get("job_plan_id"))
        step = _resolve_step(nrc_job_no, step_no, job_plan_id)

        result = perform_machine_action(step, user, machine_id, action, data=data)

        response = {"result": result}
        if _completion_after_machine_action(response, step, result, nrc_job_no, user):
            return Response(response)

        response.update(_machine_work_response(step))
        return Response(response)


class UrgentMachineStartView(APIView):
    """High-demand jobs: start the step on the caller's first assigned machine."""

    permission_classes = [IsStepOperatorOrReadOnly]

    @extend_schema(tags=["Machines"], request=MachineWorkActionSerializer)
    def post(self, request, nrc_job_no: str, step_no: int):
        user = _require_auth(request)

        payload = MachineWorkActionSerializer(data=request.data or {})
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        job_plan_id = data.get("job_plan_id") or _parse_plan_id(request.query_params.get("job_plan_id"))
        step = _resolve_step(nrc_job_no, step_no, job_plan_id)

        result = start_urgent_machine_work(step, user, form_data=data.get("form_data"))
        response = {"result": result}
        response.update(_machine_work_response(step))
        return Response(response)


class HeldMachinesView(APIView):
    permission_classes = [IsAdminOrPlanner]

    @extend_schema(tags=["Machines"])
    def get(self, request):
        jobs = held_machine_work()
        return Response(
            {
                "total_held_jobs": len(jobs),
                "total_held_machines": sum(j["total_held_machines"] for j in jobs),
                "jobs": jobs,
            }
        )


# ===============================================================
# Operator machine assignment (admin)
# ===============================================================
class AssignMachinesView(APIView):
    permission_classes = [IsShopfloorAdmin]

    @extend_schema(tags=["Machines"], request=MachineAssignmentSerializer)
    def post(self, request):
        payload = MachineAssignmentSerializer(data=request.data or {})
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        return Response(assign_machines(data["user_id"], data["machine_ids"], assigned_by=request.user))


class RemoveMachinesView(APIView):
    permission_classes = [IsShopfloorAdmin]

    @extend_schema(tags=["Machines"], request=MachineAssignmentSerializer)
    def post(self, request):
        payload = MachineAssignmentSerializer(data=request.data or {})
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        return Response(remove_machines(data["user_id"], data["machine_ids"]))


class UserMachinesView(APIView):
    permission_classes = [IsShopfloorAdmin]

    @extend_schema(tags=["Machines"], responses=UserMachineSerializer(many=True))
    def get(self, request, user_id: int):
        return Response(UserMachineSerializer(active_assignments(user_id), many=True).data)


# ===============================================================
# Workflow introspection
# ===============================================================
class WorkflowDefinitionView(APIView):
    """
    Returns the step graph, statuses and the role -> step map.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        policy = policy_from_settings()
        data = workflow_definition()
        data["role_steps"] = {
            role.value: sorted(names) for role, names in sorted(ROLE_STEP_MAP.items(), key=lambda kv: kv[0].value)
        }
        data["bypass_roles"] = sorted(r.value for r in policy.bypass_roles)
        data["paperstore_visibility"] = policy.paperstore_visibility
        return Response(data)


# ===============================================================
# Caller's access
# ===============================================================
class MyAccessView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        user = _require_auth(request)
        policy = policy_from_settings()

        roles = user_roles(user)
        scope = resolve_user_machine_ids(user, roles, policy=policy)
        assignments = UserMachine.objects.filter(user=user, is_active=True).select_related("machine")

        return Response(
            {
                "username": user.username,
                "roles": sorted(r.value for r in roles),
                "bypass": scope is BYPASS,
                "machine_ids": None if scope is BYPASS else sorted(scope),
                "step_names": sorted(policy.step_names_for(roles)),
                "machines": UserMachineSerializer(assignments, many=True).data,
            }
        )


class JobAccessView(APIView):
    """Whether the caller may see one job, with the per-step breakdown."""

    permission_classes = [IsAuthenticated]

    def get(self, request, nrc_job_no: str):
        user = _require_auth(request)
        policy = policy_from_settings()

        job = job_snapshot(nrc_job_no)
        if job is None:
            raise NotFound(f"Unknown job {nrc_job_no}.")

        roles = user_roles(user)
        scope = resolve_user_machine_ids(user, roles, policy=policy)
        visible = nrc_job_no in filtered_job_numbers_for_user(user, policy=policy, job_numbers=[nrc_job_no])

        return Response(
            {
                "nrc_job_no": nrc_job_no,
                "demand": job.demand,
                "visible": visible,
                "steps": [
                    {
                        "step_no": s.step_no,
                        "step_name": s.step_name,
                        "status": s.status,
                        "visible": is_step_visible(s, job, roles, scope, policy=policy),
                    }
                    for s in job.steps
                ],
            }
        )
