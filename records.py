"""
Record and edge types shared by the relationship engine.

Jira issues become SourceRecords, OpenProject work packages become
TargetRecords.  Edges between them are expressed with CanonicalRelation,
the fixed OpenProject relation vocabulary.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import NamedTuple, Optional


OUTWARD = "outward"
INWARD  = "inward"


class CanonicalRelation(enum.Enum):
    """Directed relation kinds understood by OpenProject.

    The value is the OpenProject wire name used in relation payloads and
    filters.
    """
    BLOCKS        = "blocks"
    BLOCKED_BY    = "blocked"
    RELATES       = "relates"
    INCLUDES      = "includes"
    PART_OF       = "partof"
    DUPLICATES    = "duplicates"
    DUPLICATED_BY = "duplicated"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def inverse(self) -> "CanonicalRelation":
        return _INVERSES[self]

    @property
    def is_hierarchy(self) -> bool:
        # part-of lives on the work package's single parent link
        return self is CanonicalRelation.PART_OF


_LABELS = {
    CanonicalRelation.BLOCKS:        "blocks",
    CanonicalRelation.BLOCKED_BY:    "blocked-by",
    CanonicalRelation.RELATES:       "relates",
    CanonicalRelation.INCLUDES:      "includes",
    CanonicalRelation.PART_OF:       "part-of",
    CanonicalRelation.DUPLICATES:    "duplicates",
    CanonicalRelation.DUPLICATED_BY: "duplicated-by",
}

_INVERSES = {
    CanonicalRelation.BLOCKS:        CanonicalRelation.BLOCKED_BY,
    CanonicalRelation.BLOCKED_BY:    CanonicalRelation.BLOCKS,
    CanonicalRelation.RELATES:       CanonicalRelation.RELATES,
    CanonicalRelation.INCLUDES:      CanonicalRelation.PART_OF,
    CanonicalRelation.PART_OF:       CanonicalRelation.INCLUDES,
    CanonicalRelation.DUPLICATES:    CanonicalRelation.DUPLICATED_BY,
    CanonicalRelation.DUPLICATED_BY: CanonicalRelation.DUPLICATES,
}


@dataclass(frozen=True)
class LinkDescriptor:
    direction:     str                  # OUTWARD | INWARD, relative to the owner
    label:         str                  # Jira link-type phrase for that direction
    other_key:     str
    other_created: Optional[datetime] = None


@dataclass
class SourceRecord:
    key:        str
    links:      list = field(default_factory=list)
    parent_key: Optional[str] = None
    epic_key:   Optional[str] = None
    created:    Optional[datetime] = None
    summary:    str = ""


@dataclass
class TargetRecord:
    id:           int
    external_key: Optional[str] = None
    created:      Optional[datetime] = None
    parent_id:    Optional[int] = None
    subject:      str = ""


class DeferredEdge(NamedTuple):
    from_key: str
    to_key:   str
    relation: CanonicalRelation

    def __str__(self) -> str:
        return f"{self.from_key} {self.relation.label} {self.to_key}"


_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def created_sort_key(rec):
    """Sort key on `rec.created`; naive times count as UTC, undated records sort lowest."""
    created = rec.created
    if created is not None and created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (created is not None, created or _OLDEST)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Jira or OpenProject ISO-8601 timestamp; None when unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Jira sends "+0000"; fromisoformat wants "+00:00" on older interpreters
    if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = text[:-2] + ":" + text[-2:]
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None
