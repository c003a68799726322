import django.core.serializers.json
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import shopfloor.models.core


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Machine",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.CharField(
                        default=shopfloor.models.core._new_machine_id,
                        editable=False,
                        max_length=64,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("machine_code", models.CharField(max_length=64, unique=True)),
                ("machine_type", models.CharField(blank=True, max_length=100)),
                ("unit", models.CharField(blank=True, max_length=64)),
                ("description", models.CharField(blank=True, max_length=255)),
                ("status", models.CharField(default="available", max_length=32)),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["machine_code"],
            },
        ),
        migrations.CreateModel(
            name="JobPlanning",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("nrc_job_no", models.CharField(db_index=True, max_length=100)),
                (
                    "job_demand",
                    models.CharField(
                        choices=[("normal", "Normal"), ("high", "High")],
                        default="normal",
                        max_length=10,
                    ),
                ),
                ("purchase_order_ref", models.CharField(blank=True, max_length=100)),
            ],
            options={
                "ordering": ["nrc_job_no", "-created_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="CompletedJob",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("nrc_job_no", models.CharField(db_index=True, max_length=100)),
                ("job_plan_id", models.PositiveIntegerField()),
                (
                    "job_demand",
                    models.CharField(choices=[("normal", "Normal"), ("high", "High")], max_length=10),
                ),
                (
                    "job_details",
                    models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder),
                ),
                (
                    "all_steps",
                    models.JSONField(blank=True, default=list, encoder=django.core.serializers.json.DjangoJSONEncoder),
                ),
                ("total_duration_days", models.PositiveIntegerField(blank=True, null=True)),
                ("final_status", models.CharField(default="completed", max_length=32)),
                ("remarks", models.TextField(blank=True)),
                (
                    "completed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="completed_jobs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Job",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("nrc_job_no", models.CharField(max_length=100, unique=True)),
                ("customer_name", models.CharField(blank=True, max_length=255)),
                ("style_item_sku", models.CharField(blank=True, max_length=255)),
                (
                    "job_demand",
                    models.CharField(
                        choices=[("normal", "Normal"), ("high", "High")],
                        default="normal",
                        max_length=10,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("ACTIVE", "Active"), ("INACTIVE", "Inactive")],
                        default="ACTIVE",
                        max_length=10,
                    ),
                ),
                ("is_machine_details_filled", models.BooleanField(default=False)),
                (
                    "machine",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="jobs",
                        to="shopfloor.machine",
                    ),
                ),
            ],
            options={
                "ordering": ["nrc_job_no"],
            },
        ),
        migrations.CreateModel(
            name="JobStep",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("step_no", models.PositiveIntegerField()),
                (
                    "step_name",
                    models.CharField(
                        choices=[
                            ("PaperStore", "Paper store"),
                            ("PrintingDetails", "Printing"),
                            ("Corrugation", "Corrugation"),
                            ("FluteLaminateBoardConversion", "Flute lamination"),
                            ("Punching", "Punching"),
                            ("DieCutting", "Die cutting"),
                            ("SideFlapPasting", "Side flap pasting"),
                            ("QualityDept", "Quality check"),
                            ("DispatchProcess", "Dispatch"),
                        ],
                        max_length=64,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("planned", "Planned"), ("start", "Started"), ("stop", "Stopped")],
                        default="planned",
                        max_length=10,
                    ),
                ),
                ("machine_details", models.JSONField(blank=True, default=list)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("ended_at", models.DateTimeField(blank=True, null=True)),
                (
                    "planning",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="steps",
                        to="shopfloor.jobplanning",
                    ),
                ),
                (
                    "started_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="started_steps",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["step_no"],
                "unique_together": {("planning", "step_no")},
            },
        ),
        migrations.CreateModel(
            name="OperatorProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("role", models.CharField(blank=True, default="", max_length=255)),
                ("phone", models.CharField(blank=True, max_length=50)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="operator_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="StepDetail",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("in_progress", "In progress"),
                            ("hold", "On hold"),
                            ("accept", "Accepted"),
                            ("reject", "Rejected"),
                        ],
                        default="in_progress",
                        max_length=16,
                    ),
                ),
                ("quantity", models.PositiveIntegerField(blank=True, null=True)),
                ("operator_name", models.CharField(blank=True, max_length=255)),
                ("hold_remark", models.TextField(blank=True)),
                ("remarks", models.TextField(blank=True)),
                ("data", models.JSONField(blank=True, default=dict)),
                (
                    "step",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="detail",
                        to="shopfloor.jobstep",
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="StepTransition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("nrc_job_no", models.CharField(db_index=True, max_length=100)),
                ("step_name", models.CharField(max_length=64)),
                ("action", models.CharField(max_length=16)),
                ("from_status", models.CharField(max_length=16)),
                ("to_status", models.CharField(max_length=16)),
                ("roles", models.CharField(blank=True, max_length=255)),
                ("comment", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="step_transitions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "step",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="transitions",
                        to="shopfloor.jobstep",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [models.Index(fields=["nrc_job_no", "step_name"], name="shopfloor_trans_job_step_idx")],
            },
        ),
        migrations.CreateModel(
            name="UserMachine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "assigned_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "machine",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="user_assignments",
                        to="shopfloor.machine",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="machine_assignments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "unique_together": {("user", "machine")},
            },
        ),
    ]
