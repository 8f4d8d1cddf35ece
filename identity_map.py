"""Jira key ↔ OpenProject work package id lookup, built once per run."""

import threading
from typing import Iterable, Optional

from records import TargetRecord, created_sort_key


class IdentityMap:
    """
    Bidirectional key/id lookup.

    A key maps to at most one id.  Publishing an id for a key that is
    already present is ignored (the existing entry wins); the extra work
    package that caused it is what remove-duplicates later cleans up.
    """

    def __init__(self) -> None:
        self._by_key: dict = {}
        self._by_id:  dict = {}
        self._lock = threading.Lock()
        self.unkeyed = 0

    @classmethod
    def from_target_records(cls, records: Iterable[TargetRecord]) -> "IdentityMap":
        identity = cls()
        records = list(records)
        total = len(records)
        # newest first, so a key with duplicates maps to the copy that
        # remove-duplicates keeps
        ordered = sorted(records, key=created_sort_key, reverse=True)
        for rec in ordered:
            if not rec.external_key:
                identity.unkeyed += 1
                continue
            identity.publish(rec.external_key, rec.id)
        print("\n  Cache summary:")
        print(f"    Total work packages:          {total}")
        print(f"    Work packages with Jira key:  {total - identity.unkeyed}")
        print(f"    Work packages without key:    {identity.unkeyed}")
        print(f"    Distinct Jira keys cached:    {len(identity)}")
        return identity

    def publish(self, key: str, target_id: int) -> bool:
        """Record key → id.  Returns False when the key was already mapped."""
        with self._lock:
            if key in self._by_key:
                return False
            self._by_key[key] = target_id
            self._by_id[target_id] = key
            return True

    def get(self, key: str) -> Optional[int]:
        return self._by_key.get(key)

    def key_for(self, target_id: int) -> Optional[str]:
        return self._by_id.get(target_id)

    def __contains__(self, key: str) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)
