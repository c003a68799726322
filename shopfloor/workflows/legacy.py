"""
Accept-based completion gating.

Older per-station controllers gated work on the previous station's detail
record being "accept"ed rather than on JobStep start/stop states. It is kept
as an opt-in extra check (SHOPFLOOR_LEGACY_ACCEPT_GATING) and is never
consulted by rules.can_transition.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from .rules import (
    CORRUGATION,
    DIE_CUTTING,
    DISPATCH_PROCESS,
    PAPER_STORE,
    PRINTING_DETAILS,
    PUNCHING,
    QUALITY_DEPT,
    SIDE_FLAP_PASTING,
    TransitionDecision,
    step_field,
)

DETAIL_IN_PROGRESS = "in_progress"
DETAIL_HOLD = "hold"
DETAIL_ACCEPT = "accept"
DETAIL_REJECT = "reject"

DETAIL_STATUSES = {DETAIL_IN_PROGRESS, DETAIL_HOLD, DETAIL_ACCEPT, DETAIL_REJECT}

PARALLEL_AFTER_PAPER_STORE = {PRINTING_DETAILS, CORRUGATION}

NEEDS_BOTH_BOARD_STEPS = {
    PUNCHING,
    DIE_CUTTING,
    SIDE_FLAP_PASTING,
    QUALITY_DEPT,
    DISPATCH_PROCESS,
}


def _sorted_steps(steps: Iterable[Any]):
    return sorted(steps, key=lambda s: int(step_field(s, "step_no") or 0))


def previous_step_accepted(
    steps: Iterable[Any],
    detail_statuses: Mapping[str, Optional[str]],
    target_step_name: str,
) -> TransitionDecision:
    """
    `detail_statuses` maps step name -> detail status; a name that is
    absent means the station has not recorded any detail yet.
    """
    if steps is None:
        raise ValueError("steps is required")

    ordered = _sorted_steps(steps)
    names = [str(step_field(s, "step_name") or "") for s in ordered]

    if target_step_name not in names:
        return TransitionDecision(False, None, f"{target_step_name} is not part of this planning")

    if names.index(target_step_name) == 0:
        return TransitionDecision(True, None, "First step can always proceed")

    if target_step_name in PARALLEL_AFTER_PAPER_STORE:
        if PAPER_STORE not in detail_statuses:
            return TransitionDecision(False, PAPER_STORE, "PaperStore step must be completed first")
        return TransitionDecision(True, None, "PaperStore step is completed")

    if target_step_name in NEEDS_BOTH_BOARD_STEPS:
        for name in (CORRUGATION, PRINTING_DETAILS):
            if name not in detail_statuses:
                return TransitionDecision(False, name, f"{name} step must be completed")
            if detail_statuses[name] != DETAIL_ACCEPT:
                return TransitionDecision(False, name, f"{name} step must be accepted")
        return TransitionDecision(True, None, "Both Corrugation and Printing steps are accepted")

    prev = names[names.index(target_step_name) - 1]
    if prev not in detail_statuses:
        return TransitionDecision(False, prev, f"Previous step ({prev}) must be completed first")
    if detail_statuses[prev] != DETAIL_ACCEPT:
        return TransitionDecision(False, prev, f"Previous step ({prev}) must be accepted before proceeding")
    return TransitionDecision(True, None, f"Previous step ({prev}) is accepted")
