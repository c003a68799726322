from __future__ import annotations

import pytest

from shopfloor.access.machines import MachineRef
from shopfloor.access.policy import AccessPolicy
from shopfloor.access.roles import Role
from shopfloor.access.visibility import (
    BYPASS,
    JobSnapshot,
    StepSnapshot,
    filtered_job_numbers,
    is_job_visible,
    is_step_visible,
)


def _step(no, name, status="planned", machines=()):
    return StepSnapshot(
        step_no=no,
        step_name=name,
        status=status,
        machines=tuple(MachineRef(id=m) for m in machines),
    )


def _job(no, steps, demand="normal", planning_demand=None, machine_id=None):
    return JobSnapshot(
        nrc_job_no=no,
        job_demand=demand,
        planning_demand=planning_demand,
        machine_id=machine_id,
        steps=tuple(steps),
    )


@pytest.fixture
def jobs():
    return [
        _job(
            "J-M1",
            [
                _step(1, "PaperStore", "stop"),
                _step(2, "PrintingDetails", "planned", ["M1"]),
            ],
        ),
        _job(
            "J-M2",
            [
                _step(1, "PaperStore", "stop"),
                _step(2, "PrintingDetails", "planned", ["M2"]),
            ],
        ),
        _job(
            "J-HIGH",
            [
                _step(1, "PaperStore", "stop"),
                _step(2, "PrintingDetails", "planned", ["M2"]),
            ],
            demand="high",
        ),
    ]


# ===============================================================
# Bypass
# ===============================================================

@pytest.mark.parametrize("role", [Role.ADMIN, Role.PLANNER, Role.FLYINGSQUAD])
def test_bypass_totality(jobs, role):
    everything = {j.nrc_job_no for j in jobs}
    assert filtered_job_numbers(frozenset(), {role}, jobs) == everything
    assert filtered_job_numbers(BYPASS, {role, Role.PRINTER}, jobs) == everything


def test_bypass_scope_marker_is_total(jobs):
    assert filtered_job_numbers(BYPASS, frozenset(), jobs) == {"J-M1", "J-M2", "J-HIGH"}


def test_bypass_is_not_an_empty_machine_set(jobs):
    assert filtered_job_numbers(frozenset(), {Role.PRINTER}, jobs) == {"J-HIGH"}


# ===============================================================
# Machine gating
# ===============================================================

def test_machine_gated_exclusion(jobs):
    visible = filtered_job_numbers(frozenset({"M1"}), {Role.PRINTER}, jobs)
    assert "J-M2" not in visible
    assert "J-M1" in visible


def test_high_demand_override(jobs):
    visible = filtered_job_numbers(frozenset({"M1"}), {Role.PRINTER}, jobs)
    assert "J-HIGH" in visible


def test_high_demand_job_level_bypass_applies_to_unmapped_roles(jobs):
    # Corrugator maps to no step here, so the readiness narrowing is skipped.
    visible = filtered_job_numbers(frozenset(), {Role.CORRUGATOR}, jobs)
    assert visible == {"J-HIGH"}


def test_planning_demand_is_only_a_fallback():
    steps = [_step(1, "PaperStore", "stop"), _step(2, "Corrugation", "planned", ["M9"])]
    job_row_normal = _job("J1", steps, demand="normal", planning_demand="high")
    planning_only_high = _job("J2", steps, demand=None, planning_demand="high")

    visible = filtered_job_numbers(frozenset(), {Role.CORRUGATOR}, [job_row_normal, planning_only_high])
    assert visible == {"J2"}


def test_job_level_machine_assignment():
    job = _job("J1", [_step(1, "Punching", "planned", ["M5"])], machine_id="M1")
    assert is_job_visible(job, {Role.PRINTER}, frozenset({"M1"}))
    assert not is_job_visible(job, {Role.PRINTER}, frozenset({"M2"}))


def test_machine_match_independent_of_role_mapping():
    job = _job("J1", [_step(1, "PaperStore", "stop"), _step(2, "Corrugation", "planned", ["M7"])])
    assert is_step_visible(job.steps[1], job, {Role.PRINTER}, frozenset({"M7"}))
    assert is_job_visible(job, {Role.PRINTER}, frozenset({"M7"}))


# ===============================================================
# Step-level rules
# ===============================================================

def test_corrugator_sees_unassigned_corrugation_step():
    job = _job("J1", [_step(1, "PaperStore", "stop"), _step(2, "Corrugation", "planned")])
    assert is_step_visible(job.steps[1], job, {Role.CORRUGATOR}, frozenset()) is True
    assert filtered_job_numbers(frozenset(), {Role.CORRUGATOR}, [job]) == {"J1"}


def test_mapped_step_on_foreign_machine_is_hidden():
    job = _job("J1", [_step(1, "Corrugation", "planned", ["M2"])])
    assert is_step_visible(job.steps[0], job, {Role.CORRUGATOR}, frozenset({"M1"})) is False


def test_no_roles_and_no_machines_sees_nothing(jobs):
    assert filtered_job_numbers(frozenset(), frozenset(), [j for j in jobs if j.nrc_job_no != "J-HIGH"]) == set()


def test_malformed_role_field_fails_closed(jobs):
    assert filtered_job_numbers(frozenset({"M1"}), '["admin"', jobs) == {"J-M1", "J-HIGH"}


# ===============================================================
# Readiness narrowing
# ===============================================================

def test_downstream_station_does_not_see_job_before_it_is_ready():
    job = _job(
        "J1",
        [
            _step(1, "PaperStore", "start"),
            _step(2, "PrintingDetails", "planned", ["M1"]),
            _step(3, "Corrugation", "planned", ["M1"]),
            _step(4, "FluteLaminateBoardConversion", "planned", ["M1"]),
        ],
    )
    # Machine M1 matches, but flute lamination needs printing and corrugation started.
    assert not is_job_visible(job, {Role.FLUTELAMINATOR}, frozenset({"M1"}))

    ready = _job(
        "J1",
        [
            _step(1, "PaperStore", "stop"),
            _step(2, "PrintingDetails", "start", ["M1"]),
            _step(3, "Corrugation", "start", ["M1"]),
            _step(4, "FluteLaminateBoardConversion", "planned", ["M1"]),
        ],
    )
    assert is_job_visible(ready, {Role.FLUTELAMINATOR}, frozenset({"M1"}))


def test_narrowing_skipped_when_role_matches_no_step():
    job = _job("J1", [_step(1, "PaperStore", "planned"), _step(2, "Punching", "planned", ["M3"])])
    assert is_job_visible(job, {Role.PRINTER}, frozenset({"M3"}))


def test_narrowing_passes_when_any_role_step_is_ready():
    job = _job(
        "J1",
        [
            _step(1, "PaperStore", "stop"),
            _step(2, "Punching", "planned"),
            _step(3, "DieCutting", "planned"),
            _step(4, "FluteLaminateBoardConversion", "start"),
        ],
    )
    assert is_job_visible(job, {Role.PUNCHING_OPERATOR}, frozenset())


# ===============================================================
# Policy variants
# ===============================================================

def test_paperstore_mapped_mode_is_machine_gated(jobs):
    visible = filtered_job_numbers(frozenset(), {Role.PAPERSTORE}, jobs)
    # PaperStore steps have no machines assigned, so they are visible by default.
    assert visible == {"J-M1", "J-M2", "J-HIGH"}

    gated = _job("J-GATED", [_step(1, "PaperStore", "planned", ["M8"])])
    assert filtered_job_numbers(frozenset(), {Role.PAPERSTORE}, [gated]) == set()


def test_paperstore_unrestricted_mode():
    gated = _job("J-GATED", [_step(1, "PaperStore", "planned", ["M8"])])
    policy = AccessPolicy.build(paperstore_visibility="unrestricted")
    assert filtered_job_numbers(frozenset(), {Role.PAPERSTORE}, [gated], policy=policy) == {"J-GATED"}


def test_paperstore_inventory_mode_maps_every_step():
    job = _job("J1", [_step(1, "PaperStore", "stop"), _step(2, "Corrugation", "planned")])
    policy = AccessPolicy.build(paperstore_visibility="inventory")
    assert is_step_visible(job.steps[1], job, {Role.PAPERSTORE}, frozenset(), policy=policy)
    assert not is_step_visible(job.steps[1], job, {Role.PAPERSTORE}, frozenset())


def test_qc_manager_bypass_variant(jobs):
    policy = AccessPolicy.build(qc_manager_bypass=True)
    assert filtered_job_numbers(frozenset(), {Role.QC_MANAGER}, jobs, policy=policy) == {"J-M1", "J-M2", "J-HIGH"}


# ===============================================================
# Contract
# ===============================================================

def test_contract_violations_raise(jobs):
    with pytest.raises(ValueError):
        filtered_job_numbers(frozenset(), {Role.PRINTER}, None)
    with pytest.raises(ValueError):
        filtered_job_numbers(None, {Role.PRINTER}, jobs)


def test_bypass_marker_is_a_singleton():
    from shopfloor.access.visibility import _Bypass

    assert _Bypass() is BYPASS
    assert repr(BYPASS) == "BYPASS"
