from __future__ import annotations

import pytest
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from shopfloor.models import CompletedJob, Job, JobStep, JobStepMachine, StepDetail, StepTransition
from shopfloor.workflows.executor import StepTransitionBlocked
from shopfloor.workflows.machine_work import (
    complete_machine_work,
    held_machine_work,
    hold_machine_work,
    machine_work_summary,
    perform_machine_action,
    resume_machine_work,
    start_machine_work,
    start_urgent_machine_work,
    stop_machine_work,
)


def _step(planning, name) -> JobStep:
    return planning.steps.get(step_name=name)


def _work(step, machine) -> JobStepMachine:
    return JobStepMachine.objects.get(step=step, machine=machine)


def _machines_url(nrc_job_no: str, step_no: int, machine_id: str = "", action: str = "") -> str:
    url = f"/shopfloor/jobs/{nrc_job_no}/steps/{step_no}/machines/"
    if machine_id:
        url += f"{machine_id}/{action}/"
    return url


@pytest.fixture
def m1(make_machine):
    return make_machine("M1", machine_type="Printing")


@pytest.fixture
def m2(make_machine):
    return make_machine("M2", machine_type="Printing")


@pytest.fixture
def m3(make_machine):
    return make_machine("M3", machine_type="Corrugation")


@pytest.fixture
def printer(make_user, m1, m2):
    return make_user("printer", role="printer", machines=[m1, m2])


@pytest.fixture
def planning(make_planning, m1, m2, m3):
    """Printing runs on two machines; flute lamination waits on printing."""
    return make_planning(
        "JOB-MW",
        [
            ("PaperStore", "stop"),
            ("PrintingDetails", "planned", [m1, m2]),
            ("Corrugation", "planned", [m3]),
            ("FluteLaminateBoardConversion", "planned", [m1]),
        ],
    )


# ===============================================================
# Start
# ===============================================================

@pytest.mark.django_db
def test_first_machine_starts_the_step_and_seeds_planned_machines(planning, printer, m1, m2):
    step = _step(planning, "PrintingDetails")

    result = start_machine_work(step, printer, "M1", form_data={"shift": "A"})

    assert result["changed"] is True
    assert result["from_status"] == "available"
    assert result["to_status"] == "in_progress"
    assert result["step_started"] is True
    assert result["step_status"] == "start"

    step.refresh_from_db()
    assert step.status == "start"
    assert step.started_by == printer
    assert StepDetail.objects.get(step=step).status == "in_progress"

    assert _work(step, m1).status == "in_progress"
    assert _work(step, m1).operator == printer
    assert _work(step, m1).form_data == {"shift": "A"}
    assert _work(step, m2).status == "available"

    audit = StepTransition.objects.get(step=step)
    assert (audit.action, audit.to_status) == ("start", "start")
    assert m1.machine_code in audit.comment


@pytest.mark.django_db
def test_second_machine_joins_a_started_step(planning, printer):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")

    result = start_machine_work(step, printer, "M2")

    assert result["step_started"] is False
    assert StepTransition.objects.filter(step=step).count() == 1


@pytest.mark.django_db
def test_running_machine_cannot_be_started_again(planning, printer):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")

    with pytest.raises(ValidationError):
        start_machine_work(step, printer, "M1")


@pytest.mark.django_db
def test_unknown_machine_is_not_found(planning, printer):
    with pytest.raises(NotFound):
        start_machine_work(_step(planning, "PrintingDetails"), printer, "NOPE")


@pytest.mark.django_db
def test_start_is_blocked_by_unstarted_prerequisite(planning, make_user, m1):
    laminator = make_user("laminator", role="flutelaminator", machines=[m1])
    step = _step(planning, "FluteLaminateBoardConversion")

    with pytest.raises(StepTransitionBlocked) as exc:
        start_machine_work(step, laminator, "M1")

    assert exc.value.decision.blocking_step == "PrintingDetails"
    assert not JobStepMachine.objects.filter(step=step).exists()
    step.refresh_from_db()
    assert step.status == "planned"


@pytest.mark.django_db
def test_stopped_step_rejects_machine_work(make_planning, printer, m1):
    planning = make_planning("JOB-DONE", [("PaperStore", "stop"), ("PrintingDetails", "stop", [m1])])

    with pytest.raises(ValidationError):
        start_machine_work(_step(planning, "PrintingDetails"), printer, "M1")


# ===============================================================
# Machine assignment gate
# ===============================================================

@pytest.mark.django_db
def test_unassigned_machine_is_forbidden(planning, make_user, m1):
    corrugator = make_user("corrugator", role="corrugator", machines=[m1])

    with pytest.raises(PermissionDenied):
        start_machine_work(_step(planning, "Corrugation"), corrugator, "M3")


@pytest.mark.django_db
def test_inactive_assignment_is_forbidden(planning, printer):
    printer.machine_assignments.filter(machine_id="M2").update(is_active=False)

    with pytest.raises(PermissionDenied):
        start_machine_work(_step(planning, "PrintingDetails"), printer, "M2")


@pytest.mark.django_db
def test_high_demand_job_skips_machine_assignment(make_planning, make_user, m3):
    planning = make_planning(
        "JOB-HOT",
        [("PaperStore", "stop"), ("Corrugation", "planned", [m3])],
        demand="high",
    )
    corrugator = make_user("corrugator", role="corrugator")

    result = start_machine_work(_step(planning, "Corrugation"), corrugator, "M3")

    assert result["to_status"] == "in_progress"


@pytest.mark.django_db
def test_bypass_role_works_any_machine(planning, make_user):
    admin = make_user("boss", is_superuser=True)

    result = start_machine_work(_step(planning, "Corrugation"), admin, "M3")

    assert result["step_started"] is True


@pytest.mark.django_db
def test_flyingsquad_may_not_work_machines(planning, make_user):
    squad = make_user("squad", role="flyingsquad")

    with pytest.raises(PermissionDenied):
        start_machine_work(_step(planning, "PrintingDetails"), squad, "M1")


# ===============================================================
# Hold / resume
# ===============================================================

@pytest.mark.django_db
def test_hold_and_resume_with_remark(planning, printer, m1):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")

    held = hold_machine_work(step, printer, "M1", "ink shortage", form_data={"sheets": 120})
    assert held["to_status"] == "hold"
    assert held["hold_remark"] == "ink shortage"
    assert StepDetail.objects.get(step=step).hold_remark == "ink shortage"
    assert _work(step, m1).form_data == {"sheets": 120}

    again = hold_machine_work(step, printer, "M1")
    assert again["changed"] is False

    resumed = resume_machine_work(step, printer, "M1")
    assert (resumed["from_status"], resumed["to_status"]) == ("hold", "in_progress")
    assert resume_machine_work(step, printer, "M1")["changed"] is False


@pytest.mark.django_db
def test_hold_requires_running_machine(planning, printer):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")

    with pytest.raises(ValidationError):
        hold_machine_work(step, printer, "M2")

    with pytest.raises(ValidationError):
        resume_machine_work(step, printer, "M2")


@pytest.mark.django_db
def test_hold_without_a_run_is_not_found(planning, printer):
    with pytest.raises(NotFound):
        hold_machine_work(_step(planning, "PrintingDetails"), printer, "M1")


# ===============================================================
# Stop / complete
# ===============================================================

@pytest.mark.django_db
def test_step_stops_when_last_machine_stops(planning, printer, m1, m2):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")
    start_machine_work(step, printer, "M2")

    first = stop_machine_work(step, printer, "M1")
    assert first["all_machines_finished"] is False
    assert first["step_status"] == "start"

    hold_machine_work(step, printer, "M2")
    last = stop_machine_work(step, printer, "M2")
    assert last["from_status"] == "hold"
    assert last["all_machines_finished"] is True
    assert last["step_status"] == "stop"

    step.refresh_from_db()
    assert step.status == "stop"
    assert step.ended_at is not None
    assert _work(step, m2).completed_at is not None

    stop_audit = StepTransition.objects.get(step=step, action="stop")
    assert stop_audit.comment == "all machines finished"

    assert stop_machine_work(step, printer, "M2")["changed"] is False


@pytest.mark.django_db
def test_step_stop_waits_on_prerequisite(make_planning, printer, m1):
    planning = make_planning("JOB-WAIT", [("PaperStore", "start"), ("PrintingDetails", "planned", [m1])])
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")

    result = stop_machine_work(step, printer, "M1")

    assert result["to_status"] == "stop"
    assert result["all_machines_finished"] is True
    assert result["step_status"] == "start"
    assert result["blocking_step"] == "PaperStore"
    step.refresh_from_db()
    assert step.status == "start"


@pytest.mark.django_db
def test_complete_accepts_detail_once_all_machines_finished(planning, printer, m1, m2):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")
    start_machine_work(step, printer, "M2")
    stop_machine_work(step, printer, "M1")

    partial = complete_machine_work(step, printer, "M1", form_data={"quantity": 300})
    assert partial["to_status"] == "completed"
    assert partial["all_machines_finished"] is False
    assert "detail_status" not in partial
    assert StepDetail.objects.get(step=step).status == "in_progress"

    stop_machine_work(step, printer, "M2")
    done = complete_machine_work(
        step, printer, "M2", form_data={"quantity": "500", "operator_name": "Asha", "remarks": "clean run"}
    )
    assert done["detail_status"] == "accept"

    detail = StepDetail.objects.get(step=step)
    assert detail.status == "accept"
    assert detail.quantity == 500
    assert detail.operator_name == "Asha"
    assert detail.remarks == "clean run"
    assert detail.data["quantity"] == "500"
    assert _work(step, m2).form_data["operator_name"] == "Asha"


@pytest.mark.django_db
def test_complete_requires_stopped_machine(planning, printer):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")

    with pytest.raises(ValidationError):
        complete_machine_work(step, printer, "M1")


@pytest.mark.django_db
def test_only_the_running_operator_completes(planning, printer, make_user, m1):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")
    stop_machine_work(step, printer, "M1")
    colleague = make_user("colleague", role="printer", machines=[m1])

    with pytest.raises(NotFound):
        complete_machine_work(step, colleague, "M1")


@pytest.mark.django_db
def test_complete_rejects_non_numeric_quantity(planning, printer):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")
    stop_machine_work(step, printer, "M1")

    with pytest.raises(ValidationError):
        complete_machine_work(step, printer, "M1", form_data={"quantity": "lots"})


@pytest.mark.django_db
def test_form_data_must_be_an_object(planning, printer):
    with pytest.raises(ValidationError):
        start_machine_work(_step(planning, "PrintingDetails"), printer, "M1", form_data=["x"])


@pytest.mark.django_db
def test_perform_machine_action_dispatches_and_rejects_unknown(planning, printer):
    step = _step(planning, "PrintingDetails")

    assert perform_machine_action(step, printer, "M1", "START")["to_status"] == "in_progress"
    held = perform_machine_action(step, printer, "M1", "hold", data={"remark": "jam"})
    assert held["hold_remark"] == "jam"

    with pytest.raises(ValidationError):
        perform_machine_action(step, printer, "M1", "explode")


# ===============================================================
# Urgent start
# ===============================================================

@pytest.mark.django_db
def test_urgent_start_uses_first_assigned_machine(make_planning, printer, m1):
    planning = make_planning("JOB-URG", [("PaperStore", "stop"), ("PrintingDetails", "planned")], demand="high")
    step = _step(planning, "PrintingDetails")

    result = start_urgent_machine_work(step, printer)

    assert result["machine_id"] == "M1"
    assert result["step_started"] is True


@pytest.mark.django_db
def test_urgent_start_requires_high_demand(planning, printer):
    with pytest.raises(ValidationError) as exc:
        start_urgent_machine_work(_step(planning, "PrintingDetails"), printer)
    assert "job_demand" in exc.value.detail


@pytest.mark.django_db
def test_urgent_start_requires_an_assignment(make_planning, make_user):
    planning = make_planning("JOB-URG2", [("PaperStore", "stop"), ("PrintingDetails", "planned")], demand="high")
    loner = make_user("loner", role="printer")

    with pytest.raises(ValidationError) as exc:
        start_urgent_machine_work(_step(planning, "PrintingDetails"), loner)
    assert "machine" in exc.value.detail


# ===============================================================
# Read side
# ===============================================================

@pytest.mark.django_db
def test_summary_counts_each_status(planning, printer):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")
    start_machine_work(step, printer, "M2")
    stop_machine_work(step, printer, "M2")

    summary = machine_work_summary(step)

    assert summary["total_machines"] == 2
    assert summary["in_progress"] == 1
    assert summary["stopped"] == 1
    assert summary["finished"] == 1
    assert summary["available"] == 0


@pytest.mark.django_db
def test_held_machines_grouped_by_job_and_step(planning, printer, m1):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")
    start_machine_work(step, printer, "M2")
    hold_machine_work(step, printer, "M1", "paper jam")

    jobs = held_machine_work()

    assert len(jobs) == 1
    job = jobs[0]
    assert job["nrc_job_no"] == "JOB-MW"
    assert job["job_plan_id"] == planning.pk
    assert job["job_demand"] == "normal"
    assert job["total_held_machines"] == 1
    [step_entry] = job["steps"]
    assert step_entry["step_name"] == "PrintingDetails"
    [machine] = step_entry["held_machines"]
    assert machine["machine_code"] == m1.machine_code
    assert machine["hold_remark"] == "paper jam"
    assert machine["held_by"] == "printer"


# ===============================================================
# HTTP
# ===============================================================

@pytest.mark.django_db
def test_api_machine_lifecycle(api_client, planning, printer):
    api_client.login(username="printer", password="pass123")

    resp = api_client.post(_machines_url("JOB-MW", 2, "M1", "start"), {"form_data": {"shift": "B"}},
                           format="json", secure=True)
    assert resp.status_code == 200
    assert resp.data["result"]["step_started"] is True
    assert resp.data["summary"]["in_progress"] == 1
    codes = {row["machine"]: row["status"] for row in resp.data["machines"]}
    assert codes == {"M1": "in_progress", "M2": "available"}

    resp = api_client.post(_machines_url("JOB-MW", 2, "M1", "hold"), {"remark": "break"},
                           format="json", secure=True)
    assert resp.status_code == 200
    assert resp.data["result"]["hold_remark"] == "break"

    resp = api_client.get(_machines_url("JOB-MW", 2), secure=True)
    assert resp.status_code == 200
    assert resp.data["summary"]["hold"] == 1
    rows = {row["machine"]: row for row in resp.data["machines"]}
    assert rows["M1"]["operator_name"] == "printer"
    assert rows["M2"]["operator_name"] is None


@pytest.mark.django_db
def test_api_unknown_machine_action_is_404(api_client, planning, printer):
    api_client.login(username="printer", password="pass123")
    resp = api_client.post(_machines_url("JOB-MW", 2, "M1", "explode"), {}, format="json", secure=True)
    assert resp.status_code == 404


@pytest.mark.django_db
def test_api_machine_listing_hidden_step_is_403(api_client, planning, printer):
    api_client.login(username="printer", password="pass123")
    assert api_client.get(_machines_url("JOB-MW", 3), secure=True).status_code == 403


@pytest.mark.django_db
def test_api_machine_action_without_assignment_is_403(api_client, planning, make_user):
    make_user("corrugator", role="corrugator")
    api_client.login(username="corrugator", password="pass123")

    resp = api_client.post(_machines_url("JOB-MW", 3, "M3", "start"), {}, format="json", secure=True)
    assert resp.status_code == 403


@pytest.mark.django_db
def test_api_dispatch_machine_completion_archives_job(api_client, make_planning, make_user, m1):
    make_user("dispatcher", role="dispatch_executive", machines=[m1])
    make_planning(
        "JOB-SHIP",
        [("PaperStore", "stop"), ("QualityDept", "stop"), ("DispatchProcess", "planned", [m1])],
    )
    api_client.login(username="dispatcher", password="pass123")

    api_client.post(_machines_url("JOB-SHIP", 3, "M1", "start"), {}, format="json", secure=True)

    resp = api_client.post(_machines_url("JOB-SHIP", 3, "M1", "stop"), {}, format="json", secure=True)
    assert resp.status_code == 200
    assert resp.data["result"]["step_status"] == "stop"
    assert resp.data["job_completion"] == {"completed": False, "reason": "Dispatch process not accepted"}

    resp = api_client.post(_machines_url("JOB-SHIP", 3, "M1", "complete"),
                           {"form_data": {"quantity": 1000}}, format="json", secure=True)
    assert resp.status_code == 200
    assert resp.data["job_completion"]["completed"] is True

    archive = CompletedJob.objects.get(nrc_job_no="JOB-SHIP")
    dispatch = next(s for s in archive.all_steps if s["step_name"] == "DispatchProcess")
    assert dispatch["detail"]["quantity"] == 1000
    assert dispatch["machine_work"][0]["status"] == "completed"
    assert Job.objects.get(nrc_job_no="JOB-SHIP").status == Job.JobStatus.INACTIVE
    assert not JobStepMachine.objects.filter(nrc_job_no="JOB-SHIP").exists()


@pytest.mark.django_db
def test_api_urgent_start(api_client, make_planning, printer):
    make_planning("JOB-RUSH", [("PaperStore", "stop"), ("PrintingDetails", "planned")], demand="high")
    api_client.login(username="printer", password="pass123")

    resp = api_client.post("/shopfloor/jobs/JOB-RUSH/steps/2/urgent/start/", {}, format="json", secure=True)

    assert resp.status_code == 200
    assert resp.data["result"]["machine_id"] == "M1"
    assert resp.data["summary"]["total_machines"] == 1


@pytest.mark.django_db
def test_api_held_machines_for_planners_only(api_client, planning, printer, make_user):
    step = _step(planning, "PrintingDetails")
    start_machine_work(step, printer, "M1")
    hold_machine_work(step, printer, "M1", "waiting for ink")
    make_user("planner", role="planner")

    api_client.login(username="printer", password="pass123")
    assert api_client.get("/shopfloor/machines/held/", secure=True).status_code == 403

    api_client.logout()
    api_client.login(username="planner", password="pass123")
    resp = api_client.get("/shopfloor/machines/held/", secure=True)
    assert resp.status_code == 200
    assert resp.data["total_held_jobs"] == 1
    assert resp.data["total_held_machines"] == 1
    assert resp.data["jobs"][0]["steps"][0]["held_machines"][0]["hold_remark"] == "waiting for ink"
