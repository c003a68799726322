# shopfloor/admin.py

from django.contrib import admin, messages
from django.utils.html import format_html

from .models import (
    CompletedJob,
    Job,
    JobPlanning,
    JobStep,
    JobStepMachine,
    Machine,
    OperatorProfile,
    StepDetail,
    StepTransition,
    UserMachine,
)
from .workflows.executor import repair_step_states


# =============================================================
# Step transitions (READ-ONLY AUDIT LOG)
# =============================================================

@admin.register(StepTransition)
class StepTransitionAdmin(admin.ModelAdmin):
    list_display = (
        "nrc_job_no",
        "step_name",
        "action",
        "from_status",
        "to_status",
        "performed_by",
        "created_at",
    )
    list_filter = (
        "step_name",
        "action",
        "to_status",
    )
    search_fields = (
        "nrc_job_no",
        "performed_by__username",
    )
    ordering = ("-created_at",)

    readonly_fields = [f.name for f in StepTransition._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================
# Machines and operators
# =============================================================

@admin.register(Machine)
class MachineAdmin(admin.ModelAdmin):
    list_display = ("machine_code", "machine_type", "unit", "status", "is_active")
    search_fields = ("machine_code", "machine_type", "id")
    list_filter = ("machine_type", "unit", "is_active")


@admin.register(UserMachine)
class UserMachineAdmin(admin.ModelAdmin):
    list_display = ("user", "machine", "is_active", "assigned_by", "created_at")
    list_filter = ("is_active",)
    search_fields = ("user__username", "machine__machine_code")
    autocomplete_fields = ("machine",)


@admin.register(OperatorProfile)
class OperatorProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "role", "parsed_roles")
    search_fields = ("user__username", "role")

    def parsed_roles(self, obj):
        roles = sorted(r.value for r in obj.roles)
        return ", ".join(roles) or "-"

    parsed_roles.short_description = "Roles"


# =============================================================
# Jobs and plannings
# =============================================================

@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ("nrc_job_no", "customer_name", "job_demand", "status", "is_machine_details_filled")
    list_filter = ("job_demand", "status")
    search_fields = ("nrc_job_no", "customer_name", "style_item_sku")


class JobStepInline(admin.TabularInline):
    model = JobStep
    extra = 0
    fields = ("step_no", "step_name", "status", "machine_details", "started_at", "ended_at")
    # Status changes go through the step action API.
    readonly_fields = ("status", "started_at", "ended_at")


@admin.register(JobPlanning)
class JobPlanningAdmin(admin.ModelAdmin):
    list_display = ("nrc_job_no", "job_demand", "demand_badge", "created_at")
    list_filter = ("job_demand",)
    search_fields = ("nrc_job_no", "purchase_order_ref")
    inlines = [JobStepInline]
    actions = ["repair_steps"]

    def demand_badge(self, obj):
        if obj.job_demand == "high":
            return format_html('<span style="color:#c62828;font-weight:bold;">HIGH</span>')
        return format_html('<span style="color:#2e7d32;">normal</span>')

    demand_badge.short_description = "Demand"

    @admin.action(description="Repair step states")
    def repair_steps(self, request, queryset):
        fixed = sum(repair_step_states(planning) for planning in queryset)
        self.message_user(request, f"Repaired {fixed} step(s).", level=messages.SUCCESS)


@admin.register(StepDetail)
class StepDetailAdmin(admin.ModelAdmin):
    list_display = ("step", "status", "quantity", "operator_name", "updated_at")
    list_filter = ("status",)
    search_fields = ("step__planning__nrc_job_no", "operator_name")


@admin.register(JobStepMachine)
class JobStepMachineAdmin(admin.ModelAdmin):
    list_display = ("nrc_job_no", "step_no", "machine", "status", "operator", "started_at", "completed_at")
    list_filter = ("status",)
    search_fields = ("nrc_job_no", "machine__machine_code", "operator__username")
    raw_id_fields = ("step",)


@admin.register(CompletedJob)
class CompletedJobAdmin(admin.ModelAdmin):
    list_display = ("nrc_job_no", "job_demand", "total_duration_days", "completed_by", "created_at")
    search_fields = ("nrc_job_no",)
    readonly_fields = [f.name for f in CompletedJob._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
