from __future__ import annotations

import pytest

from shopfloor.access.resolver import (
    filtered_job_numbers_for_user,
    load_job_snapshots,
    resolve_user_machine_ids,
    user_roles,
)
from shopfloor.access.roles import Role
from shopfloor.access.visibility import BYPASS
from shopfloor.models import Job, JobStep, OperatorProfile


@pytest.mark.django_db
def test_user_roles_from_profile(make_user):
    assert user_roles(make_user("p", role='["printer", "corrugator"]')) == {Role.PRINTER, Role.CORRUGATOR}
    assert user_roles(make_user("bad", role='["admin"')) == frozenset()
    assert user_roles(make_user("none")) == frozenset()
    assert user_roles(make_user("root", is_superuser=True)) == {Role.ADMIN}


@pytest.mark.django_db
def test_operator_profile_role_helpers(make_user):
    user = make_user("multi", role="printer")
    profile = OperatorProfile.objects.get(user=user)
    profile.set_roles([Role.PUNCHING_OPERATOR, "pasting_operator"])
    profile.save()

    profile.refresh_from_db()
    assert profile.role == '["pasting_operator", "punching_operator"]'
    assert profile.roles == {Role.PUNCHING_OPERATOR, Role.PASTING_OPERATOR}


@pytest.mark.django_db
def test_resolve_user_machine_ids(make_user, make_machine):
    m1 = make_machine("M1")
    m2 = make_machine("M2")
    printer = make_user("printer", role="printer", machines=[m1, m2])
    printer.machine_assignments.filter(machine=m2).update(is_active=False)

    assert resolve_user_machine_ids(printer) == frozenset({"M1"})
    assert resolve_user_machine_ids(make_user("planner", role="planner", machines=[m1])) is BYPASS
    assert resolve_user_machine_ids(make_user("idle", role="corrugator")) == frozenset()


@pytest.mark.django_db
def test_load_job_snapshots_uses_job_tier_and_current_planning(make_planning, make_machine):
    m1 = make_machine("M1")
    make_planning("JOB-A", [("PaperStore", "stop")], demand="high", job_demand="normal")
    make_planning("JOB-A", [("PaperStore", "stop"), ("PrintingDetails", "planned", [m1])])
    make_planning("JOB-B", [("PaperStore", "planned")], demand="high", with_job=False)
    Job.objects.create(nrc_job_no="JOB-C", job_demand="high")

    snapshots = {s.nrc_job_no: s for s in load_job_snapshots()}
    assert set(snapshots) == {"JOB-A", "JOB-B", "JOB-C"}

    # High-demand planning revision wins even though it is older.
    job_a = snapshots["JOB-A"]
    assert [s.step_name for s in job_a.steps] == ["PaperStore"]
    assert job_a.demand == "normal"

    assert snapshots["JOB-B"].job_demand is None
    assert snapshots["JOB-B"].demand == "high"

    assert snapshots["JOB-C"].steps == ()
    assert snapshots["JOB-C"].is_high_demand


@pytest.mark.django_db
def test_step_machine_details_are_parsed_once(make_planning):
    plan = make_planning("JOB-D", [("PaperStore", "stop"), ("Corrugation", "planned")])
    JobStep.objects.filter(planning=plan, step_name="Corrugation").update(
        machine_details=[{"machine": {"id": "M7"}}, {"machineCode": "no-id"}]
    )
    (job,) = load_job_snapshots(["JOB-D"])
    assert job.steps[1].machine_ids == frozenset({"M7"})


@pytest.mark.django_db
def test_filtered_job_numbers_for_user(make_user, make_machine, make_planning):
    m1 = make_machine("M1")
    m2 = make_machine("M2")
    make_planning("JOB-1", [("PaperStore", "stop"), ("Corrugation", "planned", [m1])])
    make_planning("JOB-2", [("PaperStore", "stop"), ("Corrugation", "planned", [m2])])

    corrugator = make_user("corrugator", role="corrugator", machines=[m1])
    assert filtered_job_numbers_for_user(corrugator) == {"JOB-1"}

    admin = make_user("root", is_superuser=True)
    assert filtered_job_numbers_for_user(admin) == {"JOB-1", "JOB-2"}
