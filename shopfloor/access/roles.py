# shopfloor/access/roles.py
"""
Role tags and the fixed role -> step mapping.

User role fields are stored either as a bare tag ("printer") or as a JSON
list ('["printer", "corrugator"]'). They are parsed once, at the adapter
edge, into a frozenset of Role values. Parsing fails closed: anything that
cannot be read yields the empty set, never a bypass role.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from shopfloor.workflows.rules import (
    CORRUGATION,
    DIE_CUTTING,
    DISPATCH_PROCESS,
    FLUTE_LAMINATE,
    PAPER_STORE,
    PRINTING_DETAILS,
    PUNCHING,
    QUALITY_DEPT,
    SIDE_FLAP_PASTING,
)

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    PLANNER = "planner"
    PRODUCTION_HEAD = "production_head"
    FLYINGSQUAD = "flyingsquad"
    QC_MANAGER = "qc_manager"
    DISPATCH_EXECUTIVE = "dispatch_executive"
    PAPERSTORE = "paperstore"
    PRINTER = "printer"
    CORRUGATOR = "corrugator"
    FLUTELAMINATOR = "flutelaminator"
    PUNCHING_OPERATOR = "punching_operator"
    PASTING_OPERATOR = "pasting_operator"


RoleSet = FrozenSet[Role]

EMPTY_ROLES: RoleSet = frozenset()

# Spellings seen in older user records.
ROLE_ALIASES: Dict[str, str] = {
    "flying_squad": "flyingsquad",
    "paper_store": "paperstore",
    "flute_laminator": "flutelaminator",
    "qc": "qc_manager",
    "qcmanager": "qc_manager",
    "superuser": "admin",
}

ROLE_STEP_MAP: Dict[Role, FrozenSet[str]] = {
    Role.PRINTER: frozenset({PRINTING_DETAILS}),
    Role.CORRUGATOR: frozenset({CORRUGATION}),
    Role.FLUTELAMINATOR: frozenset({FLUTE_LAMINATE}),
    Role.PUNCHING_OPERATOR: frozenset({PUNCHING, DIE_CUTTING}),
    Role.PASTING_OPERATOR: frozenset({SIDE_FLAP_PASTING}),
    Role.QC_MANAGER: frozenset({QUALITY_DEPT}),
    Role.DISPATCH_EXECUTIVE: frozenset({DISPATCH_PROCESS, PAPER_STORE}),
    Role.PAPERSTORE: frozenset({PAPER_STORE, DISPATCH_PROCESS}),
}

BASE_BYPASS_ROLES: RoleSet = frozenset({Role.ADMIN, Role.PLANNER, Role.FLYINGSQUAD})

# Roles allowed to move a step between planned/start/stop. Flying squad
# members audit quality only and never change step status.
STEP_OPERATOR_ROLES: RoleSet = frozenset(Role) - {Role.FLYINGSQUAD}


def normalize_role(value: Any) -> str:
    """
    Canonicalize a role tag.

    Steps:
    1) Lowercase and strip
    2) Convert whitespace and hyphens to underscores
    3) Collapse repeated underscores
    4) Apply alias mapping
    """
    r = str(value or "").strip().lower()
    if not r:
        return r
    r = re.sub(r"[\s\-]+", "_", r)
    r = re.sub(r"_+", "_", r)
    return ROLE_ALIASES.get(r, r)


def _role_from_tag(tag: Any, log: logging.Logger) -> Optional[Role]:
    if isinstance(tag, Role):
        return tag
    norm = normalize_role(tag)
    try:
        return Role(norm)
    except ValueError:
        log.debug("Ignoring unknown role tag %r", tag)
        return None


def _from_tags(tags: Iterable[Any], log: logging.Logger) -> RoleSet:
    tags = list(tags)
    if not all(isinstance(t, (str, Role)) for t in tags):
        log.warning("Role list contains non-string members; treating as no roles")
        return EMPTY_ROLES
    return frozenset(r for r in (_role_from_tag(t, log) for t in tags) if r is not None)


def parse_role_set(raw: Any, *, log: Optional[logging.Logger] = None) -> RoleSet:
    """
    Read a stored role field into a RoleSet.

    Accepted shapes: None, a Role, a bare tag, a JSON list of tags, or any
    iterable of tags. Unknown tags are dropped. Malformed input returns the
    empty set.
    """
    log = log or logger

    if raw is None:
        return EMPTY_ROLES

    if isinstance(raw, Role):
        return frozenset({raw})

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return EMPTY_ROLES

        if text[0] in "[{":
            try:
                decoded = json.loads(text)
            except ValueError:
                log.warning("Unparseable role field %r; treating as no roles", raw)
                return EMPTY_ROLES
            if not isinstance(decoded, list):
                log.warning("Role field %r is not a list; treating as no roles", raw)
                return EMPTY_ROLES
            return _from_tags(decoded, log)

        role = _role_from_tag(text, log)
        return frozenset({role}) if role is not None else EMPTY_ROLES

    if isinstance(raw, (list, tuple, set, frozenset)):
        return _from_tags(raw, log)

    log.warning("Unsupported role field type %s; treating as no roles", type(raw).__name__)
    return EMPTY_ROLES


def serialize_role_set(roles: Iterable[Any]) -> str:
    """Store roles the way newer user records do: a sorted JSON list."""
    parsed = parse_role_set(list(roles))
    return json.dumps(sorted(r.value for r in parsed))


def mapped_step_names(roles: Iterable[Role]) -> FrozenSet[str]:
    names = set()
    for role in roles:
        names |= ROLE_STEP_MAP.get(role, frozenset())
    return frozenset(names)
