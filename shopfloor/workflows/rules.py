"""
Authoritative step workflow rules for the production floor.

Defines:
- Canonical step names and the step dependency graph
- Step statuses and the per-step status machine
- Start/stop readiness of a step within one planning revision
- Introspection helpers used by UI and API

This module MUST remain free of ORM, serializers, or request logic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

logger = logging.getLogger(__name__)


# ===============================================================
# CANONICAL STEP NAMES
# ===============================================================
PAPER_STORE = "PaperStore"
PRINTING_DETAILS = "PrintingDetails"
CORRUGATION = "Corrugation"
FLUTE_LAMINATE = "FluteLaminateBoardConversion"
PUNCHING = "Punching"
DIE_CUTTING = "DieCutting"
SIDE_FLAP_PASTING = "SideFlapPasting"
QUALITY_DEPT = "QualityDept"
DISPATCH_PROCESS = "DispatchProcess"

# Pipeline order, used for display and default step numbering.
STEP_NAMES: Tuple[str, ...] = (
    PAPER_STORE,
    PRINTING_DETAILS,
    CORRUGATION,
    FLUTE_LAMINATE,
    PUNCHING,
    DIE_CUTTING,
    SIDE_FLAP_PASTING,
    QUALITY_DEPT,
    DISPATCH_PROCESS,
)


# ===============================================================
# STEP DEPENDENCY GRAPH
# ===============================================================
# Each step maps to a tuple of prerequisite groups. Every group must be
# satisfied (AND). A group with several members is satisfied by any one
# of them (OR).
STEP_PREREQUISITES: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    PAPER_STORE: (),
    PRINTING_DETAILS: ((PAPER_STORE,),),
    CORRUGATION: ((PAPER_STORE,),),
    FLUTE_LAMINATE: ((PRINTING_DETAILS,), (CORRUGATION,)),
    PUNCHING: ((FLUTE_LAMINATE,),),
    DIE_CUTTING: ((FLUTE_LAMINATE,),),
    SIDE_FLAP_PASTING: ((PUNCHING, DIE_CUTTING),),
    QUALITY_DEPT: ((SIDE_FLAP_PASTING,),),
    DISPATCH_PROCESS: ((QUALITY_DEPT,),),
}


# ===============================================================
# STEP STATUSES
# ===============================================================
STATUS_PLANNED = "planned"
STATUS_START = "start"
STATUS_STOP = "stop"

STEP_STATUSES: Set[str] = {STATUS_PLANNED, STATUS_START, STATUS_STOP}

# A planned step may be started, or skipped straight to stop.
STEP_STATUS_TRANSITIONS: Dict[str, Set[str]] = {
    STATUS_PLANNED: {STATUS_START, STATUS_STOP},
    STATUS_START: {STATUS_STOP},
    STATUS_STOP: set(),  # terminal
}


# ===============================================================
# ACTIONS
# ===============================================================
ACTION_START = "start"
ACTION_STOP = "stop"

STEP_ACTIONS: Set[str] = {ACTION_START, ACTION_STOP}

ACTION_TARGET_STATUS: Dict[str, str] = {
    ACTION_START: STATUS_START,
    ACTION_STOP: STATUS_STOP,
}

# Parallel start, sequential completion: starting needs prerequisites to
# have begun, completing needs them finished.
READY_STATUSES: Dict[str, Set[str]] = {
    ACTION_START: {STATUS_START, STATUS_STOP},
    ACTION_STOP: {STATUS_STOP},
}


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    blocking_step: Optional[str] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed

    def as_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "blocking_step": self.blocking_step,
            "reason": self.reason,
        }


# ===============================================================
# NORMALIZATION
# ===============================================================
def normalize_status(value: Any) -> str:
    return str(value or "").strip().lower()


def normalize_action(value: Any) -> str:
    return str(value or "").strip().lower()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def step_field(step: Any, name: str) -> Any:
    """
    Read a field from a step-like value.

    Accepts model instances and dataclasses (attribute access) as well as
    plain dicts, where the camelCase spelling ("stepName") is also accepted.
    """
    if isinstance(step, Mapping):
        if name in step:
            return step[name]
        return step.get(_camel(name))
    return getattr(step, name, None)


def _statuses_by_name(steps: Iterable[Any]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for step in steps:
        name = str(step_field(step, "step_name") or "").strip()
        if not name:
            continue
        out.setdefault(name, []).append(normalize_status(step_field(step, "status")))
    return out


# ===============================================================
# READINESS
# ===============================================================
def can_transition(
    steps: Optional[Iterable[Any]],
    target_step_name: str,
    action: str,
    *,
    log: Optional[logging.Logger] = None,
) -> TransitionDecision:
    """
    Decide whether `target_step_name` may be started or stopped given the
    states of the other steps in the SAME planning revision.

    Start needs every prerequisite group to have a member in start/stop.
    Stop needs every prerequisite group to have a member in stop.
    A prerequisite that is absent from `steps` is not ready.

    Raises ValueError only for caller contract violations (no step list,
    unknown action). Every other outcome is a TransitionDecision.
    """
    log = log or logger

    if steps is None:
        raise ValueError("steps is required; pass an empty list for a planning without steps")

    act = normalize_action(action)
    if act not in STEP_ACTIONS:
        raise ValueError(f"Unknown step action: {action!r}")

    target = str(target_step_name or "").strip()
    if target not in STEP_PREREQUISITES:
        log.debug("Rejecting %s on unknown step name %r", act, target)
        return TransitionDecision(
            allowed=False,
            blocking_step=None,
            reason=f"Unknown step name: {target or '<empty>'}",
        )

    groups = STEP_PREREQUISITES[target]
    if not groups:
        return TransitionDecision(allowed=True, reason=f"{target} has no prerequisites")

    ready = READY_STATUSES[act]
    wanted = " or ".join(sorted(ready))
    statuses = _statuses_by_name(steps)

    for group in groups:
        present = [name for name in group if name in statuses]

        if any(s in ready for name in present for s in statuses[name]):
            continue

        if not present:
            blocking = group[0]
            if len(group) == 1:
                reason = f"Prerequisite step {blocking} is missing from the planning"
            else:
                reason = f"None of {', '.join(group)} exists in the planning"
        else:
            blocking = present[0]
            if len(group) == 1:
                reason = f"{blocking} must be in {wanted} before {target} can {act}"
            else:
                reason = (
                    f"One of {', '.join(present)} must be in {wanted} "
                    f"before {target} can {act}"
                )

        log.debug("Blocked %s of %s: %s", act, target, reason)
        return TransitionDecision(allowed=False, blocking_step=blocking, reason=reason)

    return TransitionDecision(allowed=True, reason=f"All prerequisites of {target} are ready to {act}")


# ===============================================================
# STEP STATUS MACHINE
# ===============================================================
def allowed_next_statuses(current: str) -> List[str]:
    return sorted(STEP_STATUS_TRANSITIONS.get(normalize_status(current), set()))


def validate_status_change(old: str, new: str) -> None:
    """
    Raises ValueError if a step cannot move from `old` to `new`.
    Same-status requests are idempotent and always pass.
    """
    old = normalize_status(old)
    new = normalize_status(new)

    if old not in STEP_STATUSES:
        raise ValueError(f"Unknown step status: {old}")
    if new not in STEP_STATUSES:
        raise ValueError(f"Unknown step status: {new}")

    if old == new:
        return

    if new not in STEP_STATUS_TRANSITIONS[old]:
        allowed = ", ".join(allowed_next_statuses(old)) or "none"
        raise ValueError(
            f"Invalid step status transition: {old} -> {new}. Allowed: {allowed}"
        )


# ===============================================================
# INTROSPECTION HELPERS
# ===============================================================
def prerequisite_groups(step_name: str) -> List[List[str]]:
    return [list(group) for group in STEP_PREREQUISITES.get(step_name, ())]


def upstream_step_names(step_name: str) -> Set[str]:
    return {name for group in STEP_PREREQUISITES.get(step_name, ()) for name in group}


def workflow_definition() -> Dict[str, Any]:
    return {
        "steps": list(STEP_NAMES),
        "prerequisites": {name: prerequisite_groups(name) for name in STEP_NAMES},
        "statuses": sorted(STEP_STATUSES),
        "transitions": {k: sorted(v) for k, v in STEP_STATUS_TRANSITIONS.items()},
        "actions": sorted(STEP_ACTIONS),
        "terminal_statuses": sorted(
            status for status, nexts in STEP_STATUS_TRANSITIONS.items() if not nexts
        ),
    }


__all__ = [
    "STEP_NAMES",
    "STEP_PREREQUISITES",
    "STEP_STATUSES",
    "STEP_ACTIONS",
    "TransitionDecision",
    "can_transition",
    "allowed_next_statuses",
    "validate_status_change",
    "prerequisite_groups",
    "upstream_step_names",
    "workflow_definition",
]
