"""
In-memory stand-in for OpenProjectClient, used by the tests.

Keeps relations as (from, to, kind) triples and parents as a dict, and
records every mutating call so tests can count them.
"""

from typing import Optional

from records import CanonicalRelation, TargetRecord


class FakeOpenProject:
    def __init__(self, records: Optional[list] = None) -> None:
        self.records: list = list(records or [])
        self.relations: set = set()
        self.relation_ids: dict = {}        # (from, to, kind) -> relation id
        self.parents: dict = {r.id: r.parent_id for r in self.records if r.parent_id}
        self.calls: list = []
        self.fail_create: set = set()      # (from, to, kind) triples that raise once
        self.fail_delete: set = set()      # work package ids whose delete raises
        self.fail_detach: set = set()      # work package ids whose parent change raises

    # ── read side ────────────────────────────────────────────────────────────

    def fetch_target_records(self, project_id) -> list:
        self.calls.append(("fetch_target_records", project_id))
        return list(self.records)

    def find_existing_relation(self, from_id: int, to_id: int,
                               kind: CanonicalRelation) -> bool:
        self.calls.append(("find_existing_relation", from_id, to_id, kind))
        if kind.is_hierarchy:
            return self.parents.get(from_id) == to_id
        return ((from_id, to_id, kind) in self.relations
                or (to_id, from_id, kind.inverse) in self.relations)

    # ── write side ───────────────────────────────────────────────────────────

    def create_relation(self, from_id: int, to_id: int, kind: CanonicalRelation) -> dict:
        self.calls.append(("create_relation", from_id, to_id, kind))
        triple = (from_id, to_id, kind)
        if triple in self.fail_create:
            self.fail_create.discard(triple)
            raise Exception("OpenProject 500 POST relations: boom")
        return {"id": self.add_relation(*triple), "type": kind.value}

    def set_hierarchy_parent(self, child_id: int, parent_id: Optional[int]) -> None:
        self.calls.append(("set_hierarchy_parent", child_id, parent_id))
        if child_id in self.fail_detach:
            raise Exception("OpenProject 422 PATCH: locked")
        if parent_id is None:
            self.parents.pop(child_id, None)
        else:
            self.parents[child_id] = parent_id

    def delete_record(self, wp_id: int) -> None:
        self.calls.append(("delete_record", wp_id))
        if wp_id in self.fail_delete:
            raise Exception("OpenProject 422 DELETE: has children")
        self.records = [r for r in self.records if r.id != wp_id]

    def add_relation(self, from_id: int, to_id: int, kind: CanonicalRelation) -> int:
        triple = (from_id, to_id, kind)
        self.relations.add(triple)
        return self.relation_ids.setdefault(triple, len(self.relation_ids) + 1)

    def list_relations(self, wp_id: int) -> list:
        self.calls.append(("list_relations", wp_id))
        return [{"id": rel_id, "type": kind.value}
                for (from_id, to_id, kind), rel_id in sorted(self.relation_ids.items(),
                                                             key=lambda item: item[1])
                if wp_id in (from_id, to_id)]

    def delete_relation(self, relation_id: int) -> None:
        self.calls.append(("delete_relation", relation_id))
        for triple, rel_id in list(self.relation_ids.items()):
            if rel_id == relation_id:
                del self.relation_ids[triple]
                self.relations.discard(triple)

    # ── helpers for assertions ───────────────────────────────────────────────

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)

    def created(self) -> list:
        return [c[1:] for c in self.calls if c[0] == "create_relation"]


def wp(wp_id: int, key: Optional[str] = None, created=None,
       parent_id: Optional[int] = None, subject: str = "") -> TargetRecord:
    return TargetRecord(id=wp_id, external_key=key, created=created,
                        parent_id=parent_id, subject=subject or f"WP {wp_id}")
