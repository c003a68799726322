# shopfloor/workflows/__init__.py
from __future__ import annotations

from .rules import (
    ACTION_START,
    ACTION_STOP,
    STATUS_PLANNED,
    STATUS_START,
    STATUS_STOP,
    STEP_ACTIONS,
    STEP_NAMES,
    STEP_PREREQUISITES,
    STEP_STATUSES,
    TransitionDecision,
    allowed_next_statuses,
    can_transition,
    normalize_action,
    normalize_status,
    prerequisite_groups,
    upstream_step_names,
    validate_status_change,
    workflow_definition,
)
from .planning import select_current_planning
from .legacy import previous_step_accepted


__all__ = [
    "ACTION_START",
    "ACTION_STOP",
    "STATUS_PLANNED",
    "STATUS_START",
    "STATUS_STOP",
    "STEP_ACTIONS",
    "STEP_NAMES",
    "STEP_PREREQUISITES",
    "STEP_STATUSES",
    "TransitionDecision",
    "allowed_next_statuses",
    "can_transition",
    "normalize_action",
    "normalize_status",
    "prerequisite_groups",
    "upstream_step_names",
    "validate_status_change",
    "workflow_definition",
    "select_current_planning",
    "previous_step_accepted",
]
