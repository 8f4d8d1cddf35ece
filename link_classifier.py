"""
Jira link → OpenProject relation classification.

Pure functions: no I/O besides the WARN lines printed for data-quality
anomalies (unknown link labels, conflicting hierarchy carriers).
"""

from typing import NamedTuple, Optional

from records import INWARD, OUTWARD, CanonicalRelation, LinkDescriptor, SourceRecord


# Jira link-type phrase (per direction) → canonical relation.
# Anything not listed falls back to DEFAULT_RELATION.
OUTWARD_RELATION_MAP: dict = {
    "blocks":        CanonicalRelation.BLOCKS,
    "relates to":    CanonicalRelation.RELATES,
    "is parent of":  CanonicalRelation.INCLUDES,
    "duplicates":    CanonicalRelation.DUPLICATES,
}

INWARD_RELATION_MAP: dict = {
    "is blocked by":    CanonicalRelation.BLOCKED_BY,
    "relates to":       CanonicalRelation.RELATES,
    "is child of":      CanonicalRelation.PART_OF,
    "is duplicated by": CanonicalRelation.DUPLICATED_BY,
}

DEFAULT_RELATION = CanonicalRelation.RELATES

_SYMMETRIC = (CanonicalRelation.DUPLICATES, CanonicalRelation.DUPLICATED_BY)


class Classification(NamedTuple):
    relation:  CanonicalRelation
    other_key: str
    skip:      bool


def _older(owner: SourceRecord, link: LinkDescriptor) -> bool:
    """True only when both timestamps are known and the owner is strictly older."""
    if owner.created is None or link.other_created is None:
        return False
    return owner.created < link.other_created


def classify(owner: SourceRecord, link: LinkDescriptor) -> Classification:
    """
    Map one Jira link of `owner` to (relation, other key, skip).

    A duplicate pair shows up on both issues (outward "duplicates" on one,
    inward "is duplicated by" on the other).  Only the newer issue issues
    the edge; when a timestamp is missing neither side skips and the
    existence check in the reconciler absorbs the second create.
    """
    label = (link.label or "").strip().lower()
    table = OUTWARD_RELATION_MAP if link.direction == OUTWARD else INWARD_RELATION_MAP
    if link.direction not in (OUTWARD, INWARD):
        print(f"  WARN  {owner.key}  link to {link.other_key} has direction "
              f"'{link.direction}'  →  treating as outward")

    relation = table.get(label)
    if relation is None:
        relation = DEFAULT_RELATION
        print(f"  WARN  {owner.key}  unknown link type '{link.label}' "
              f"to {link.other_key}  →  {relation.label}")

    skip = relation in _SYMMETRIC and _older(owner, link)
    return Classification(relation, link.other_key, skip)


def resolve_hierarchy(record: SourceRecord) -> Optional[str]:
    """
    Return the key of the record's hierarchy parent, or None.

    The explicit parent field and the epic link mean the same thing; when
    both are set and disagree the explicit parent wins.
    """
    parent = (record.parent_key or "").strip() or None
    epic   = (record.epic_key or "").strip() or None
    if parent and epic and parent != epic:
        print(f"  WARN  {record.key}  has parent {parent} and epic {epic}  "
              f"→  using parent {parent}")
    return parent or epic
