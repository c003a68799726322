# shopfloor/urls.py

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    AssignMachinesView,
    HealthCheckView,
    HeldMachinesView,
    JobAccessView,
    JobPlanningViewSet,
    MachineWorkActionView,
    MachineWorkView,
    MyAccessView,
    RemoveMachinesView,
    StepActionView,
    StepReadinessView,
    UrgentMachineStartView,
    UserMachinesView,
    WorkflowDefinitionView,
)

router = DefaultRouter()
router.register(r"jobs", JobPlanningViewSet, basename="job")

urlpatterns = [
    path("health/", HealthCheckView.as_view(), name="health"),

    # -------------------------------------------------
    # Workflow introspection
    # -------------------------------------------------
    path("workflow/", WorkflowDefinitionView.as_view(), name="workflow-definition"),

    # -------------------------------------------------
    # Caller access
    # -------------------------------------------------
    path("me/machines/", MyAccessView.as_view(), name="my-access"),
    path("jobs/<str:nrc_job_no>/access/", JobAccessView.as_view(), name="job-access"),

    # -------------------------------------------------
    # Machine assignment and held machines
    # -------------------------------------------------
    path("machines/held/", HeldMachinesView.as_view(), name="held-machines"),
    path("users/assign-machines/", AssignMachinesView.as_view(), name="assign-machines"),
    path("users/remove-machines/", RemoveMachinesView.as_view(), name="remove-machines"),
    path("users/<int:user_id>/machines/", UserMachinesView.as_view(), name="user-machines"),

    # -------------------------------------------------
    # Step readiness and actions
    # -------------------------------------------------
    path(
        "jobs/<str:nrc_job_no>/steps/<int:step_no>/readiness/",
        StepReadinessView.as_view(),
        name="step-readiness",
    ),

    # -------------------------------------------------
    # Per-machine work (before the generic step action)
    # -------------------------------------------------
    path(
        "jobs/<str:nrc_job_no>/steps/<int:step_no>/machines/",
        MachineWorkView.as_view(),
        name="step-machines",
    ),
    path(
        "jobs/<str:nrc_job_no>/steps/<int:step_no>/machines/<str:machine_id>/<str:action>/",
        MachineWorkActionView.as_view(),
        name="machine-action",
    ),
    path(
        "jobs/<str:nrc_job_no>/steps/<int:step_no>/urgent/start/",
        UrgentMachineStartView.as_view(),
        name="urgent-machine-start",
    ),
    path(
        "jobs/<str:nrc_job_no>/steps/<int:step_no>/<str:action>/",
        StepActionView.as_view(),
        name="step-action",
    ),

    path("", include(router.urls)),
]
