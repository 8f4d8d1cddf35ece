"""
Unit tests for jira_openproject_sync.py  (clients are mocked)

Run with:
    python -m pytest test_jira_openproject_sync.py -v
"""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import jira_openproject_sync as sync
from errors import ApiError, ConfigError
from fake_openproject import FakeOpenProject, wp
from records import CanonicalRelation, SourceRecord
from reconciler import ReconcileReport
from sync_config import Settings

R = CanonicalRelation

SETTINGS = Settings("acme.atlassian.net", "me@acme.com", "t", "https://op", "k")


# ─────────────────────────────────────────────────────────────────────────────
# 1. parse_issue_keys
# ─────────────────────────────────────────────────────────────────────────────

class TestParseIssueKeys:
    def test_none_and_empty(self):
        assert sync.parse_issue_keys(None) is None
        assert sync.parse_issue_keys("") is None
        assert sync.parse_issue_keys(" , ") is None

    def test_normalises(self):
        assert sync.parse_issue_keys("proj-1, PROJ-7 ,,") == ["PROJ-1", "PROJ-7"]


# ─────────────────────────────────────────────────────────────────────────────
# 2. phase_relationships
# ─────────────────────────────────────────────────────────────────────────────

class TestPhaseRelationships:
    def test_seeds_map_and_reconciles(self, capsys):
        op = FakeOpenProject([wp(1, "P-1"), wp(2, "P-2")])
        jira = MagicMock()
        jira.fetch_source_records.return_value = [SourceRecord("P-1", parent_key="P-2")]
        report = sync.phase_relationships(jira, op, "P", 7)
        assert op.parents[1] == 2
        assert report.edges_created == 1
        jira.fetch_source_records.assert_called_once_with("P", None)

    def test_issue_keys_forwarded(self, capsys):
        op = FakeOpenProject([])
        jira = MagicMock()
        jira.fetch_source_records.return_value = []
        sync.phase_relationships(jira, op, "P", 7, hierarchy_only=True,
                                 issue_keys=["P-1"])
        jira.fetch_source_records.assert_called_once_with("P", ["P-1"])
        assert "1 selected issue(s)" in capsys.readouterr().out


# ─────────────────────────────────────────────────────────────────────────────
# 3. phase_delete_relationships
# ─────────────────────────────────────────────────────────────────────────────

class TestPhaseDeleteRelationships:
    def _op(self):
        op = FakeOpenProject([wp(1, "P-1"), wp(2, "P-2", parent_id=1), wp(3, "P-3")])
        op.add_relation(1, 3, R.BLOCKS)
        op.add_relation(2, 3, R.RELATES)
        return op

    def test_unconfirmed_changes_nothing(self, capsys):
        op = self._op()
        counts = sync.phase_delete_relationships(op, 7, confirmed=False)
        assert op.count("delete_relation") == 0
        assert op.count("set_hierarchy_parent") == 0
        assert counts["work_packages"] == 3
        assert "--confirm" in capsys.readouterr().out

    def test_confirmed_clears_parents_and_relations(self, capsys):
        op = self._op()
        counts = sync.phase_delete_relationships(op, 7, confirmed=True)
        assert op.parents == {}
        assert op.relations == set()
        assert counts["parents_cleared"] == 1
        assert counts["relations_deleted"] == 2
        assert counts["failed"] == 0

    def test_each_relation_deleted_once(self, capsys):
        op = self._op()
        sync.phase_delete_relationships(op, 7, confirmed=True)
        deleted = [c[1] for c in op.calls if c[0] == "delete_relation"]
        assert sorted(deleted) == [1, 2]

    def test_parent_failure_counted(self, capsys):
        op = self._op()
        op.fail_detach.add(2)
        counts = sync.phase_delete_relationships(op, 7, confirmed=True)
        assert counts["failed"] == 1
        assert counts["relations_deleted"] == 2


# ─────────────────────────────────────────────────────────────────────────────
# 4. main  –  command dispatch and exit codes
# ─────────────────────────────────────────────────────────────────────────────

class TestMain:
    def test_config_error_exits_1(self, capsys):
        with patch.object(sync, "load_settings", side_effect=ConfigError("Missing configuration for: JIRA_HOST")):
            assert sync.main(["relationships", "P", "7"]) == 1
        assert "JIRA_HOST" in capsys.readouterr().out

    def test_auth_failure_exits_1_before_work(self, capsys):
        with patch.object(sync, "load_settings", return_value=SETTINGS), \
             patch.object(sync, "connect_jira", side_effect=ApiError("Jira authentication failed (401).", 401)), \
             patch.object(sync, "phase_relationships") as phase:
            assert sync.main(["relationships", "P", "7"]) == 1
        phase.assert_not_called()

    def test_relationships_dispatch(self, capsys):
        jira, op = MagicMock(), MagicMock()
        with patch.object(sync, "load_settings", return_value=SETTINGS), \
             patch.object(sync, "connect_jira", return_value=jira), \
             patch.object(sync, "connect_openproject", return_value=op), \
             patch.object(sync, "phase_relationships", return_value=ReconcileReport()) as phase:
            assert sync.main(["relationships", "P", "7"]) == 0
        phase.assert_called_once_with(jira, op, "P", "7", hierarchy_only=False, issue_keys=None)
        assert "All clean" in capsys.readouterr().out

    def test_parents_dispatch_with_keys(self, capsys):
        jira, op = MagicMock(), MagicMock()
        op.list_projects.return_value = []
        with patch.object(sync, "load_settings", return_value=SETTINGS), \
             patch.object(sync, "connect_jira", return_value=jira), \
             patch.object(sync, "connect_openproject", return_value=op), \
             patch.object(sync, "phase_relationships", return_value=ReconcileReport()) as phase:
            assert sync.main(["parents", "P", "7", "p-1,p-2"]) == 0
        phase.assert_called_once_with(jira, op, "P", "7", hierarchy_only=True,
                                      issue_keys=["P-1", "P-2"])

    def test_remove_duplicates_needs_no_jira(self, capsys):
        op = MagicMock()
        with patch.object(sync, "load_settings", return_value=SETTINGS) as load, \
             patch.object(sync, "connect_jira") as cj, \
             patch.object(sync, "connect_openproject", return_value=op), \
             patch.object(sync, "remove_duplicates") as rd:
            assert sync.main(["remove-duplicates", "7", "--confirm"]) == 0
        load.assert_called_once_with(jira=False)
        cj.assert_not_called()
        rd.assert_called_once_with(op, "7", confirmed=True)

    def test_delete_relationships_defaults_to_dry_run(self, capsys):
        op = MagicMock()
        op.list_projects.return_value = []
        with patch.object(sync, "load_settings", return_value=SETTINGS), \
             patch.object(sync, "connect_openproject", return_value=op), \
             patch.object(sync, "phase_delete_relationships") as phase:
            assert sync.main(["delete-relationships", "7"]) == 0
        phase.assert_called_once_with(op, "7", confirmed=False)

    def test_api_error_during_command_exits_1(self, capsys):
        op = MagicMock()
        with patch.object(sync, "load_settings", return_value=SETTINGS), \
             patch.object(sync, "connect_jira", return_value=MagicMock()), \
             patch.object(sync, "connect_openproject", return_value=op), \
             patch.object(sync, "phase_relationships",
                          side_effect=ApiError("OpenProject 500 GET /work_packages: boom", 500)):
            assert sync.main(["relationships", "P", "7"]) == 1
        assert "boom" in capsys.readouterr().out

    def test_list_projects(self, capsys):
        jira, op = MagicMock(), MagicMock()
        jira.list_projects.return_value = [{"key": "PROJ", "name": "Project"}]
        op.list_projects.return_value = [{"id": 7, "name": "Target"}]
        with patch.object(sync, "load_settings", return_value=SETTINGS), \
             patch.object(sync, "connect_jira", return_value=jira), \
             patch.object(sync, "connect_openproject", return_value=op):
            assert sync.main(["list-projects"]) == 0
        out = capsys.readouterr().out
        assert "[PROJ]  Project" in out
        assert "[7]  Target" in out

    def test_unknown_command_rejected(self, capsys):
        with pytest.raises(SystemExit):
            sync.main(["sync-everything"])

    def test_run_handles_ctrl_c(self, capsys):
        with patch.object(sync, "main", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc:
                sync.run()
        assert exc.value.code == 0
        assert "Aborted." in capsys.readouterr().out
