# shopfloor/workflows/planning.py
from __future__ import annotations

from typing import Any, Iterable, Optional

from .rules import step_field

HIGH_DEMAND = "high"


def _planning_key(planning: Any):
    demand = str(step_field(planning, "job_demand") or "").strip().lower()
    created_at = step_field(planning, "created_at")
    pk = step_field(planning, "pk") or step_field(planning, "id") or 0
    return (
        demand == HIGH_DEMAND,
        created_at is not None,
        created_at or 0,
        pk,
    )


def select_current_planning(plannings: Iterable[Any]) -> Optional[Any]:
    """
    Pick the planning revision that represents a job right now.

    Priority:
      1) High-demand revisions
      2) Most recently created
      3) Highest id
    """
    candidates = list(plannings or [])
    if not candidates:
        return None
    return max(candidates, key=_planning_key)
