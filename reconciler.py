"""
Relationship reconciliation: Jira hierarchy and issue links → OpenProject.

For each migrated Jira issue the reconciler resolves its outgoing edges
against the IdentityMap and creates them in OpenProject, hierarchy first,
then lateral links in listed order.  Every create is preceded by an
existence check, so re-running over the same project is safe.

Edges whose other endpoint has no work package yet are deferred into a
deduplicated pending set.  After the record pass the pending set is swept
exactly once; whatever is still unresolved is listed in the report and
dropped for this run.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from identity_map import IdentityMap
from link_classifier import classify, resolve_hierarchy
from records import CanonicalRelation, DeferredEdge, SourceRecord


def _describe(record: SourceRecord) -> str:
    return f"{record.key}  \"{record.summary[:50]}\"" if record.summary else record.key


UNRESOLVED = "unresolved"
PARTIAL    = "partially-resolved"
RESOLVED   = "resolved"


@dataclass
class ReconcileReport:
    records_processed: int = 0
    records_completed: int = 0
    records_skipped:   int = 0
    records_errored:   int = 0
    edges_created:     int = 0
    edges_existing:    int = 0
    edges_deferred:    int = 0
    edges_skipped:     int = 0
    edges_failed:      int = 0
    states:     dict = field(default_factory=dict)   # jira key → record state
    unresolved: list = field(default_factory=list)   # DeferredEdge
    failed:     list = field(default_factory=list)   # (DeferredEdge, reason)


class RelationshipReconciler:
    """
    One instance per run.

    `target` is the OpenProject collaborator: it must provide
    find_existing_relation, create_relation and set_hierarchy_parent.
    With hierarchy_only=True lateral links are ignored (parent migration).
    """

    def __init__(self, target, identity: IdentityMap,
                 hierarchy_only: bool = False) -> None:
        self.target         = target
        self.identity       = identity
        self.hierarchy_only = hierarchy_only
        self.pending: set   = set()
        self.report         = ReconcileReport()
        self._sweeping      = False

    # ── driver ───────────────────────────────────────────────────────────────

    def run(self, records: Iterable[SourceRecord],
            migrate: Optional[Callable[[SourceRecord], Optional[int]]] = None,
            ) -> ReconcileReport:
        """
        First pass over `records`, then one retry sweep.

        `migrate`, when given, is called for every record before its edges
        are resolved; a returned work package id is published to the
        IdentityMap so later records (and the sweep) can link to it.
        """
        for record in records:
            self.process_record(record, migrate)
        self.retry_pending()
        return self.report

    def process_record(self, record: SourceRecord,
                       migrate: Optional[Callable] = None) -> str:
        report = self.report
        report.records_processed += 1
        state = UNRESOLVED
        try:
            if migrate is not None:
                new_id = migrate(record)
                if new_id is not None and not self.identity.publish(record.key, new_id):
                    print(f"  WARN  {record.key}  created #{new_id} but already mapped "
                          f"to #{self.identity.get(record.key)}  →  keeping existing")

            if record.key not in self.identity:
                print(f"  SKIP  {_describe(record)}  (no work package: not migrated)")
                report.records_skipped += 1
                report.states[record.key] = state
                return state

            edges = self.edges_for(record)
            if not edges:
                if self.hierarchy_only:
                    print(f"  SKIP  {_describe(record)}  (no parent)")
                    report.records_skipped += 1
                    report.states[record.key] = state
                    return state
                report.records_completed += 1
                report.states[record.key] = RESOLVED
                return RESOLVED

            for edge in edges:
                state = PARTIAL
                self._resolve(edge)
            state = RESOLVED
            report.records_completed += 1
        except Exception as exc:
            print(f"  FAIL  {_describe(record)}  ({exc})")
            report.records_errored += 1
        report.states[record.key] = state
        return state

    # ── edge discovery ───────────────────────────────────────────────────────

    def edges_for(self, record: SourceRecord) -> list:
        """Outgoing edges of `record` in resolution order: hierarchy, then links."""
        edges: list = []
        parent_key = resolve_hierarchy(record)
        if parent_key:
            edges.append(DeferredEdge(record.key, parent_key, CanonicalRelation.PART_OF))
        if self.hierarchy_only:
            return edges

        for link in record.links:
            relation, other_key, skip = classify(record, link)
            if skip:
                print(f"  SKIP  {record.key} {relation.label} {other_key}  "
                      f"(issued by the newer issue)")
                self.report.edges_skipped += 1
                continue
            if relation.is_hierarchy and parent_key is not None:
                if other_key != parent_key:
                    print(f"  WARN  {record.key}  link 'is child of' {other_key} "
                          f"conflicts with parent {parent_key}  →  keeping {parent_key}")
                self.report.edges_skipped += 1
                continue
            if relation.is_hierarchy:
                parent_key = other_key
            edges.append(DeferredEdge(record.key, other_key, relation))
        return edges

    # ── resolution ───────────────────────────────────────────────────────────

    def _resolve(self, edge: DeferredEdge) -> None:
        from_id = self.identity.get(edge.from_key)
        to_id   = self.identity.get(edge.to_key)
        if from_id is None or to_id is None:
            missing = edge.from_key if from_id is None else edge.to_key
            self._defer(edge, f"{missing} not migrated yet")
            return
        self._issue(edge, from_id, to_id)

    def _defer(self, edge: DeferredEdge, reason: str) -> None:
        if edge in self.pending:
            return
        self.pending.add(edge)
        self.report.edges_deferred += 1
        print(f"  DEFER {edge}  ({reason})")

    def _issue(self, edge: DeferredEdge, from_id: int, to_id: int) -> bool:
        """Check-then-create one edge.  Returns True when it exists afterwards."""
        ids = f"#{from_id} → #{to_id}"
        try:
            if self.target.find_existing_relation(from_id, to_id, edge.relation):
                print(f"  EXIST {edge}  ({ids})")
                self.report.edges_existing += 1
                return True
            if edge.relation.is_hierarchy:
                self.target.set_hierarchy_parent(from_id, to_id)
            else:
                self.target.create_relation(from_id, to_id, edge.relation)
        except Exception as exc:
            if self._sweeping:
                print(f"  FAIL  {edge}  ({ids})  {exc}")
                self.report.edges_failed += 1
                self.report.failed.append((edge, str(exc)))
            else:
                print(f"  FAIL  {edge}  ({ids})  {exc}  →  will retry")
                self._defer(edge, "create failed")
            return False
        print(f"  OK    {edge}  ({ids})")
        self.report.edges_created += 1
        return True

    def retry_pending(self) -> None:
        """The single retry sweep.  Consumes the pending set; nothing is requeued."""
        if not self.pending:
            return
        batch = sorted(self.pending, key=str)
        self.pending.clear()
        print(f"\n  Retrying {len(batch)} deferred relationship(s)…")
        self._sweeping = True
        try:
            for edge in batch:
                from_id = self.identity.get(edge.from_key)
                to_id   = self.identity.get(edge.to_key)
                if from_id is None or to_id is None:
                    print(f"  MISS  {edge}  (still no work package)")
                    self.report.unresolved.append(edge)
                    continue
                self._issue(edge, from_id, to_id)
        finally:
            self._sweeping = False


# ─────────────────────────────────────────────────────────────────────────────
# Summary
# ─────────────────────────────────────────────────────────────────────────────

def print_report(report: ReconcileReport, title: str = "Relationship migration") -> None:
    print(f"\n  {title} summary:")
    print(f"    Records processed:    {report.records_processed}")
    print(f"    Records completed:    {report.records_completed}")
    print(f"    Records skipped:      {report.records_skipped}")
    print(f"    Records errored:      {report.records_errored}")
    print(f"    Edges created:        {report.edges_created}")
    print(f"    Edges already there:  {report.edges_existing}")
    print(f"    Edges deferred:       {report.edges_deferred}")
    print(f"    Edges skipped:        {report.edges_skipped}")
    print(f"    Edges failed:         {report.edges_failed}")
    print(f"    Edges unresolved:     {len(report.unresolved)}")

    if report.unresolved:
        print(f"\n  ✗  Unresolved after retry ({len(report.unresolved)}) — "
              f"migrate the missing issues and re-run:")
        for edge in report.unresolved:
            print(f"       {edge}")
    if report.failed:
        print(f"\n  ✗  Failed relationships ({len(report.failed)}):")
        for edge, reason in report.failed:
            print(f"       {edge}:  {reason[:80]}")
    if not report.unresolved and not report.failed and not report.records_errored:
        print("\n  ✓ All clean — no failures or unresolved relationships.")
