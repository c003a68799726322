# shopfloor/access/machines.py
"""
Machine references attached to job steps.

Step machine details arrive as loosely shaped records written by several
generations of clients: {"machineId": ...}, {"id": ...},
{"machine_id": ...} or {"machine": {"id": ...}}. They are normalized here,
once, into MachineRef values. Authorization only ever compares ids.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

_ID_KEYS = ("machineId", "machine_id", "id")
_CODE_KEYS = ("machineCode", "machine_code", "code")
_TYPE_KEYS = ("machineType", "machine_type", "type")


@dataclass(frozen=True)
class MachineRef:
    id: str
    code: str = ""
    machine_type: str = ""
    unit: str = ""


def coerce_machine_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        text = str(value).strip()
        return text or None
    return None


def _first(record: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_machine_ref(record: Any) -> Optional[MachineRef]:
    if isinstance(record, MachineRef):
        return record

    if not isinstance(record, Mapping):
        machine_id = coerce_machine_id(record)
        return MachineRef(id=machine_id) if machine_id else None

    machine_id = coerce_machine_id(_first(record, _ID_KEYS))
    nested = record.get("machine")
    if machine_id is None and isinstance(nested, Mapping):
        inner = parse_machine_ref(nested)
        if inner is None:
            return None
        machine_id = inner.id
        record = {**nested, **record}

    if machine_id is None:
        return None

    return MachineRef(
        id=machine_id,
        code=str(_first(record, _CODE_KEYS) or ""),
        machine_type=str(_first(record, _TYPE_KEYS) or ""),
        unit=str(record.get("unit") or ""),
    )


def parse_machine_refs(records: Any, *, log: Optional[logging.Logger] = None) -> Tuple[MachineRef, ...]:
    """
    Tolerant parser for a step's machine details.

    Records without a usable id are dropped. Duplicate ids keep the first
    record. A single mapping is treated as a one-element list.
    """
    log = log or logger

    if records is None or records == "":
        return ()
    if isinstance(records, (Mapping, MachineRef)):
        records = [records]
    if isinstance(records, (str, bytes)) or not isinstance(records, Iterable):
        log.warning("Ignoring machine details of type %s", type(records).__name__)
        return ()

    out = []
    seen = set()
    for record in records:
        ref = parse_machine_ref(record)
        if ref is None:
            log.debug("Dropping machine record without id: %r", record)
            continue
        if ref.id in seen:
            continue
        seen.add(ref.id)
        out.append(ref)
    return tuple(out)


def machine_ids(refs: Iterable[MachineRef]) -> FrozenSet[str]:
    return frozenset(ref.id for ref in refs)
