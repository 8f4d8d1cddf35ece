#!/usr/bin/env python3
"""
Jira → OpenProject Relationship Sync
====================================
Migrates the relationship graph of Jira issues onto work packages that were
already copied to OpenProject (each carrying its Jira key in a custom field).

What gets migrated:
  Jira parent / Epic Link      → OpenProject parent (single parent link)
  "blocks" / "is blocked by"   → blocks / blocked
  "relates to"                 → relates
  "is parent of"               → includes
  "duplicates" / "is dup. by"  → duplicates / duplicated (newer issue only)
  Any other link type          → relates

Commands:
  relationships JIRA_KEY OP_PROJECT_ID          parents + links, with one retry sweep
  parents JIRA_KEY OP_PROJECT_ID [KEYS]         parent links only
  remove-duplicates OP_PROJECT_ID [--confirm]   keep newest work package per Jira key
  delete-relationships OP_PROJECT_ID [--confirm]  wipe parents + relations
  list-users                                    Jira and OpenProject users
  list-projects                                 Jira and OpenProject projects

Credentials come from the environment or a .env file:
  JIRA_HOST  JIRA_EMAIL  JIRA_API_TOKEN  OPENPROJECT_HOST  OPENPROJECT_API_KEY
"""

import argparse
import sys
from typing import Optional

from duplicate_resolver import remove_duplicates
from errors import ApiError, ConfigError
from identity_map import IdentityMap
from jira_client import JiraClient
from openproject_client import OpenProjectClient
from reconciler import RelationshipReconciler, print_report
from sync_config import Settings, load_settings


W = 80


def banner(title: str) -> None:
    print()
    print("╔" + "═" * (W - 2) + "╗")
    print("║" + f"  {title}".center(W - 2) + "║")
    print("╚" + "═" * (W - 2) + "╝")


def rule(title: str) -> None:
    print("\n" + "─" * W)
    print(f"  {title}")


# ─────────────────────────────────────────────────────────────────────────────
# Setup  (every failure here aborts before anything is written)
# ─────────────────────────────────────────────────────────────────────────────

def connect_jira(settings: Settings) -> JiraClient:
    jira = JiraClient(settings.jira_host, settings.jira_email,
                      settings.jira_api_token, settings.epic_link_field)
    print("\n  Verifying Jira credentials…")
    me = jira.get_myself() or {}
    print(f"  ✓ {me.get('displayName', '?')} ({me.get('emailAddress', '?')})")
    return jira


def connect_openproject(settings: Settings) -> OpenProjectClient:
    op = OpenProjectClient(settings.openproject_host, settings.openproject_api_key,
                           settings.jira_key_field)
    print("\n  Verifying OpenProject credentials…")
    me = op.get_myself() or {}
    print(f"  ✓ {me.get('name', '?')} (login: {me.get('login', '?')})")
    return op


def print_openproject_projects(op: OpenProjectClient) -> None:
    projects = op.list_projects()
    print(f"\n  {len(projects)} OpenProject project(s) available:")
    for p in projects:
        print(f"    [{p.get('id')}]  {p.get('name')}")


def build_identity_map(op: OpenProjectClient, project_id) -> IdentityMap:
    print(f"\n  Caching work packages of OpenProject project {project_id}…")
    return IdentityMap.from_target_records(op.fetch_target_records(project_id))


def parse_issue_keys(raw: Optional[str]) -> Optional[list]:
    if not raw:
        return None
    keys = [k.strip().upper() for k in raw.split(",") if k.strip()]
    return keys or None


# ─────────────────────────────────────────────────────────────────────────────
# Phases
# ─────────────────────────────────────────────────────────────────────────────

def phase_relationships(jira: JiraClient, op: OpenProjectClient,
                        jira_project: str, op_project, hierarchy_only: bool = False,
                        issue_keys: Optional[list] = None):
    """Seed the identity map, fetch Jira issues, reconcile.  Returns the report."""
    identity = build_identity_map(op, op_project)

    what = f"{len(issue_keys)} selected issue(s)" if issue_keys else f"project {jira_project}"
    print(f"\n  Fetching Jira issues for {what}…")
    records = jira.fetch_source_records(jira_project, issue_keys)

    label = "Parent links" if hierarchy_only else "Relationships"
    rule(f"{label}: {len(records)} issue(s)")
    reconciler = RelationshipReconciler(op, identity, hierarchy_only=hierarchy_only)
    return reconciler.run(records)


def phase_delete_relationships(op: OpenProjectClient, project_id,
                               confirmed: bool) -> dict:
    """
    Clear every parent link and delete every relation object in the project.
    Relations show up on both endpoints, so each relation id is deleted once.
    """
    records = op.fetch_target_records(project_id)
    with_parent = [r for r in records if r.parent_id is not None]
    counts = {"work_packages": len(records), "parents_cleared": 0,
              "relations_deleted": 0, "failed": 0}

    if not confirmed:
        print(f"\n  ⚠  {len(with_parent)} parent link(s) and every relation of "
              f"{len(records)} work package(s) would be removed.")
        print("     Re-run with --confirm to delete.")
        return counts

    seen: set = set()
    for rec in records:
        if rec.parent_id is not None:
            try:
                op.set_hierarchy_parent(rec.id, None)
                counts["parents_cleared"] += 1
                print(f"  OK    #{rec.id}  parent #{rec.parent_id} cleared")
            except Exception as exc:
                print(f"  FAIL  #{rec.id}  clearing parent  ({exc})")
                counts["failed"] += 1
        try:
            relations = op.list_relations(rec.id)
        except Exception as exc:
            print(f"  FAIL  #{rec.id}  listing relations  ({exc})")
            counts["failed"] += 1
            continue
        for rel in relations:
            rel_id = rel.get("id")
            if rel_id is None or rel_id in seen:
                continue
            seen.add(rel_id)
            try:
                op.delete_relation(rel_id)
                counts["relations_deleted"] += 1
                print(f"  OK    relation {rel_id} ({rel.get('type', '?')}) deleted")
            except Exception as exc:
                print(f"  FAIL  relation {rel_id}  ({exc})")
                counts["failed"] += 1

    print(f"\n  Deletion — work packages: {counts['work_packages']}  "
          f"parents cleared: {counts['parents_cleared']}  "
          f"relations deleted: {counts['relations_deleted']}  "
          f"failed: {counts['failed']}")
    return counts


def phase_list_users(jira: JiraClient, op: OpenProjectClient) -> None:
    jira_users = jira.list_users()
    print(f"\n  Jira users ({len(jira_users)}):")
    for u in jira_users:
        print(f"    {u.get('displayName', '?'):<30}  {u.get('accountId', '?')}")
    op_users = op.list_users()
    print(f"\n  OpenProject users ({len(op_users)}):")
    for u in op_users:
        print(f"    {u.get('name', '?'):<30}  #{u.get('id', '?')}  {u.get('email') or ''}")


def phase_list_projects(jira: JiraClient, op: OpenProjectClient) -> None:
    jira_projects = jira.list_projects()
    print(f"\n  {len(jira_projects)} Jira project(s):")
    for p in jira_projects:
        print(f"    [{p.get('key')}]  {p.get('name')}")
    print_openproject_projects(op)


# ─────────────────────────────────────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jira-openproject-sync",
        description="Migrate Jira issue relationships onto OpenProject work packages.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("relationships", help="migrate parents and issue links")
    p.add_argument("jira_project", help="Jira project key, e.g. PROJ")
    p.add_argument("op_project", help="OpenProject project id or identifier")

    p = sub.add_parser("parents", help="migrate parent links only")
    p.add_argument("jira_project", help="Jira project key, e.g. PROJ")
    p.add_argument("op_project", help="OpenProject project id or identifier")
    p.add_argument("issue_keys", nargs="?", default=None,
                   help="comma-separated Jira keys to limit the run, e.g. PROJ-1,PROJ-7")

    p = sub.add_parser("remove-duplicates",
                       help="delete all but the newest work package per Jira key")
    p.add_argument("op_project", help="OpenProject project id or identifier")
    p.add_argument("--confirm", action="store_true",
                   help="actually delete; without it only the plan is printed")

    p = sub.add_parser("delete-relationships",
                       help="clear all parents and relations in a project")
    p.add_argument("op_project", help="OpenProject project id or identifier")
    p.add_argument("--confirm", action="store_true",
                   help="actually delete; without it only the counts are printed")

    sub.add_parser("list-users", help="list Jira and OpenProject users")
    sub.add_parser("list-projects", help="list Jira and OpenProject projects")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    needs_jira = args.command not in ("remove-duplicates", "delete-relationships")

    banner(f"JIRA → OPENPROJECT  ·  {args.command.upper()}")
    try:
        settings = load_settings(jira=needs_jira)
        jira = connect_jira(settings) if needs_jira else None
        op   = connect_openproject(settings)
    except (ConfigError, ApiError) as exc:
        print(f"  Error: {exc}")
        return 1

    try:
        if args.command in ("relationships", "parents"):
            hierarchy_only = args.command == "parents"
            keys = parse_issue_keys(getattr(args, "issue_keys", None))
            if hierarchy_only:
                print_openproject_projects(op)
            report = phase_relationships(jira, op, args.jira_project, args.op_project,
                                         hierarchy_only=hierarchy_only, issue_keys=keys)
            banner("Migration complete")
            print_report(report, "Parent migration" if hierarchy_only else "Relationship migration")
        elif args.command == "remove-duplicates":
            print(f"\n  Scanning OpenProject project {args.op_project}…")
            remove_duplicates(op, args.op_project, confirmed=args.confirm)
        elif args.command == "delete-relationships":
            print_openproject_projects(op)
            print(f"\n  Scanning OpenProject project {args.op_project}…")
            phase_delete_relationships(op, args.op_project, confirmed=args.confirm)
        elif args.command == "list-users":
            phase_list_users(jira, op)
        elif args.command == "list-projects":
            phase_list_projects(jira, op)
    except ApiError as exc:
        # fetch/setup-phase failures; per-edge failures never reach here
        print(f"\n  Error: {exc}")
        return 1

    print()
    return 0


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nAborted.")
        sys.exit(0)


if __name__ == "__main__":
    run()
