"""
Duplicate work package cleanup.

Running the migration more than once without an up-to-date identity map
leaves several work packages carrying the same Jira key.  This pass groups
them, keeps the newest in each group and, only when explicitly confirmed,
deletes the rest.
"""

from dataclasses import dataclass
from typing import Iterable

from records import TargetRecord, created_sort_key


def find_duplicates(records: Iterable[TargetRecord]) -> dict:
    """
    Return {jira_key: [TargetRecord, ...]} for every key held by more than
    one work package, newest first.  Index 0 is the copy to keep.
    """
    grouped: dict = {}
    with_key = without_key = 0
    for rec in records:
        if not rec.external_key:
            without_key += 1
            continue
        with_key += 1
        grouped.setdefault(rec.external_key, []).append(rec)

    print("\n  Analysis summary:")
    print(f"    Total work packages:          {with_key + without_key}")
    print(f"    Work packages with Jira key:  {with_key}")
    print(f"    Work packages without key:    {without_key}")

    duplicates: dict = {}
    for key, group in grouped.items():
        if len(group) > 1:
            duplicates[key] = sorted(group, key=created_sort_key, reverse=True)
    print(f"\n  Found {len(duplicates)} Jira key(s) with duplicate work packages")
    return duplicates


def children_by_parent(records: Iterable[TargetRecord]) -> dict:
    """{parent work package id: [child TargetRecord, ...]} over `records`."""
    children: dict = {}
    for rec in records:
        if rec.parent_id is not None:
            children.setdefault(rec.parent_id, []).append(rec)
    return children


def _new_parent(child: TargetRecord, keep: TargetRecord):
    # a kept copy cannot become its own parent
    return None if child.id == keep.id else keep.id


def print_plan(duplicates: dict, children: dict = None) -> None:
    children = children or {}
    for key, group in duplicates.items():
        keep = group[0]
        print(f"\n  Jira key: {key}  ({len(group)} work packages)")
        for index, rec in enumerate(group):
            tag = "KEEP  " if index == 0 else "DELETE"
            created = rec.created.isoformat() if rec.created else "—"
            print(f"    [{tag}]  #{rec.id}  created {created}  |  {rec.subject[:50]}")
            if index == 0:
                continue
            for child in children.get(rec.id, []):
                target = _new_parent(child, keep)
                moved = f"moves to #{target}" if target is not None else "parent cleared"
                print(f"               child #{child.id}  {moved}")


@dataclass
class CleanupReport:
    groups:     int = 0
    candidates: int = 0
    detached:   int = 0
    reparented: int = 0
    deleted:    int = 0
    failed:     int = 0


def _move_children(target, key: str, rec: TargetRecord, keep: TargetRecord,
                   children: list, report: CleanupReport) -> bool:
    """Re-point the candidate's children at the kept copy.  False if any move failed."""
    ok = True
    for child in children:
        new_parent = _new_parent(child, keep)
        try:
            target.set_hierarchy_parent(child.id, new_parent)
            report.reparented += 1
            moved = f"now under #{new_parent}" if new_parent is not None else "parent cleared"
            print(f"  OK    {key}  child #{child.id} of #{rec.id}  {moved}")
        except Exception as exc:
            print(f"  FAIL  {key}  child #{child.id} of #{rec.id}  ({exc})")
            report.failed += 1
            ok = False
    return ok


def delete_candidates(target, duplicates: dict, children: dict = None) -> CleanupReport:
    """
    Delete every record at index ≥ 1 of each group.

    OpenProject deletes a work package's descendants with it, so children
    of a candidate are first moved under the kept copy, and the candidate's
    own parent link is cleared.  Any failure there skips the delete.
    """
    children = children or {}
    report = CleanupReport(groups=len(duplicates))
    for key, group in duplicates.items():
        keep = group[0]
        for rec in group[1:]:
            report.candidates += 1
            if not _move_children(target, key, rec, keep, children.get(rec.id, []), report):
                print(f"  SKIP  {key}  #{rec.id}  not deleted (children still attached)")
                continue
            if rec.parent_id is not None:
                try:
                    target.set_hierarchy_parent(rec.id, None)
                    report.detached += 1
                    print(f"  OK    {key}  #{rec.id}  parent #{rec.parent_id} cleared")
                except Exception as exc:
                    print(f"  FAIL  {key}  #{rec.id}  clearing parent  ({exc})")
                    report.failed += 1
                    continue
            try:
                target.delete_record(rec.id)
                report.deleted += 1
                print(f"  OK    {key}  #{rec.id}  deleted")
            except Exception as exc:
                print(f"  FAIL  {key}  #{rec.id}  delete  ({exc})")
                report.failed += 1
    return report


def remove_duplicates(target, project_id, confirmed: bool) -> CleanupReport:
    """
    Scan `project_id`, print the keep/delete plan, and delete duplicates
    only when `confirmed` is True.  Fetch failures propagate; per-record
    failures are counted.
    """
    records    = target.fetch_target_records(project_id)
    duplicates = find_duplicates(records)
    if not duplicates:
        print("\n  No duplicates found. Nothing to do.")
        return CleanupReport()

    children = children_by_parent(records)
    print_plan(duplicates, children)
    n_candidates = sum(len(g) - 1 for g in duplicates.values())

    if not confirmed:
        print(f"\n  ⚠  {n_candidates} work package(s) would be deleted, keeping the "
              f"newest per Jira key.")
        print("     Review the plan above, then re-run with --confirm to delete.")
        return CleanupReport(groups=len(duplicates), candidates=n_candidates)

    print(f"\n  Removing {n_candidates} duplicate work package(s)…")
    report = delete_candidates(target, duplicates, children)
    print(f"\n  Cleanup — deleted: {report.deleted}  parents cleared: {report.detached}  "
          f"children moved: {report.reparented}  failed: {report.failed}")
    return report
