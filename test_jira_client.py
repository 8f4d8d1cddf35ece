"""
Unit tests for jira_client.py  (requests is mocked)

Run with:
    python -m pytest test_jira_client.py -v
"""

import os
import sys
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import jira_client as jc
from errors import ApiError
from records import INWARD, OUTWARD, LinkDescriptor, SourceRecord


def _resp(status=200, body=None):
    r = MagicMock()
    r.status_code = status
    r.json.return_value = body if body is not None else {}
    r.content = b"x" if body is not None else b""
    r.text = ""
    return r


def _issue(key, created="2024-01-01T00:00:00.000+0000", links=None,
           parent=None, epic=None):
    fields = {"summary": f"Issue {key}", "created": created,
              "issuelinks": links or []}
    if parent:
        fields["parent"] = {"key": parent}
    if epic is not None:
        fields[jc.EPIC_LINK_FIELD] = epic
    return {"key": key, "fields": fields}


@pytest.fixture
def client():
    return jc.JiraClient("acme.atlassian.net/", "me@acme.com", "tok")


# ─────────────────────────────────────────────────────────────────────────────
# 1. Setup and error mapping
# ─────────────────────────────────────────────────────────────────────────────

class TestClientSetup:
    def test_scheme_added_when_missing(self, client):
        assert client.base == "https://acme.atlassian.net/rest/api/3"

    def test_explicit_scheme_kept(self):
        c = jc.JiraClient("http://jira.local", "a", "b")
        assert c.base == "http://jira.local/rest/api/3"

    def test_issue_fields_include_epic_field(self):
        assert jc.issue_fields("customfield_999").endswith("customfield_999")

    def test_403_raises_api_error(self, client):
        with patch("requests.request", return_value=_resp(403)):
            with pytest.raises(ApiError, match="permission denied") as exc:
                client.get_myself()
        assert exc.value.status == 403


# ─────────────────────────────────────────────────────────────────────────────
# 2. search_issues  –  JQL and pagination
# ─────────────────────────────────────────────────────────────────────────────

class TestSearchIssues:
    def test_project_jql(self, client, capsys):
        with patch("requests.request", return_value=_resp(body={"issues": [], "isLast": True})) as req:
            client.search_issues("PROJ")
        assert req.call_args[1]["params"]["jql"] == "project = PROJ ORDER BY created DESC"

    def test_issue_key_jql(self, client, capsys):
        with patch("requests.request", return_value=_resp(body={"issues": [], "isLast": True})) as req:
            client.search_issues("PROJ", ["PROJ-1", "PROJ-7"])
        assert req.call_args[1]["params"]["jql"] == "key in (PROJ-1,PROJ-7)"

    def test_uses_enhanced_search_endpoint(self, client, capsys):
        with patch("requests.request", return_value=_resp(body={"issues": [], "isLast": True})) as req:
            client.search_issues("PROJ")
        assert req.call_args[0][1].endswith("/rest/api/3/search/jql")
        assert "nextPageToken" not in req.call_args[1]["params"]

    def test_pages_with_next_page_token_until_last(self, client, capsys):
        pages = [
            _resp(body={"issues": [_issue("P-1"), _issue("P-2")],
                        "nextPageToken": "tok-2", "isLast": False}),
            _resp(body={"issues": [_issue("P-3")], "isLast": True}),
        ]
        with patch("requests.request", side_effect=pages) as req:
            issues = client.search_issues("P")
        assert [i["key"] for i in issues] == ["P-1", "P-2", "P-3"]
        assert req.call_count == 2
        assert req.call_args_list[1][1]["params"]["nextPageToken"] == "tok-2"

    def test_stops_on_empty_page(self, client, capsys):
        pages = [_resp(body={"issues": [], "nextPageToken": "tok-2", "isLast": False})]
        with patch("requests.request", side_effect=pages) as req:
            assert client.search_issues("P") == []
        assert req.call_count == 1


# ─────────────────────────────────────────────────────────────────────────────
# 3. to_source_record
# ─────────────────────────────────────────────────────────────────────────────

class TestToSourceRecord:
    def test_links_in_both_directions(self, client):
        links = [
            {"type": {"inward": "is blocked by", "outward": "blocks"},
             "outwardIssue": {"key": "P-2", "fields": {"created": "2024-02-01T00:00:00.000+0000"}}},
            {"type": {"inward": "is duplicated by", "outward": "duplicates"},
             "inwardIssue": {"key": "P-3"}},
        ]
        rec = client.to_source_record(_issue("P-1", links=links))
        assert rec.links[0] == LinkDescriptor(
            OUTWARD, "blocks", "P-2", datetime(2024, 2, 1, tzinfo=timezone.utc))
        assert rec.links[1] == LinkDescriptor(INWARD, "is duplicated by", "P-3", None)

    def test_link_without_other_issue_dropped(self, client):
        rec = client.to_source_record(_issue("P-1", links=[{"type": {"outward": "blocks"}}]))
        assert rec.links == []

    def test_parent_and_epic_string(self, client):
        rec = client.to_source_record(_issue("P-1", parent="P-9", epic="P-5"))
        assert rec.parent_key == "P-9"
        assert rec.epic_key == "P-5"

    def test_epic_as_issue_object(self, client):
        rec = client.to_source_record(_issue("P-1", epic={"key": "P-5", "id": "100"}))
        assert rec.epic_key == "P-5"

    def test_created_and_summary(self, client):
        rec = client.to_source_record(_issue("P-1", created="2024-03-15T10:30:00.000+0000"))
        assert rec.created == datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)
        assert rec.summary == "Issue P-1"


# ─────────────────────────────────────────────────────────────────────────────
# 4. fill_link_timestamps
# ─────────────────────────────────────────────────────────────────────────────

class TestFillLinkTimestamps:
    def test_fills_from_batch(self):
        t = datetime(2024, 5, 1, tzinfo=timezone.utc)
        a = SourceRecord("A", links=[LinkDescriptor(OUTWARD, "duplicates", "B")])
        b = SourceRecord("B", created=t)
        jc.fill_link_timestamps([a, b])
        assert a.links[0].other_created == t

    def test_outside_batch_stays_none(self):
        a = SourceRecord("A", links=[LinkDescriptor(OUTWARD, "duplicates", "Z-1")])
        jc.fill_link_timestamps([a])
        assert a.links[0].other_created is None

    def test_existing_timestamp_kept(self):
        t1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
        t2 = datetime(2024, 9, 1, tzinfo=timezone.utc)
        a = SourceRecord("A", links=[LinkDescriptor(OUTWARD, "duplicates", "B", t1)])
        b = SourceRecord("B", created=t2)
        jc.fill_link_timestamps([a, b])
        assert a.links[0].other_created == t1

    def test_fetch_source_records_applies_fill(self, client, capsys):
        issues = [
            _issue("A", links=[{"type": {"outward": "duplicates"}, "outwardIssue": {"key": "B"}}]),
            _issue("B", created="2024-06-01T00:00:00.000+0000"),
        ]
        with patch.object(client, "search_issues", return_value=issues):
            records = client.fetch_source_records("P")
        assert records[0].links[0].other_created == datetime(2024, 6, 1, tzinfo=timezone.utc)
