"""Jira Cloud REST API v3 client: the source side of the migration."""

import base64
import json
from typing import Optional

import requests

from errors import ApiError
from records import INWARD, OUTWARD, LinkDescriptor, SourceRecord, parse_timestamp


PAGE_SIZE = 100
EPIC_LINK_FIELD = "customfield_10014"


def issue_fields(epic_field: str = EPIC_LINK_FIELD) -> str:
    return ",".join(["summary", "created", "issuelinks", "parent", epic_field])


class JiraClient:
    def __init__(self, host: str, email: str, api_token: str,
                 epic_field: str = EPIC_LINK_FIELD) -> None:
        host = host.rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = "https://" + host
        self.base = host + "/rest/api/3"
        raw = f"{email}:{api_token}".encode()
        self._auth = "Basic " + base64.b64encode(raw).decode()
        self.epic_field = epic_field

    def _request(self, method: str, path: str, *,
                 json_body=None, params=None,
                 expected=(200, 201)) -> Optional[dict]:
        url = f"{self.base}/{path.lstrip('/')}"
        headers = {"Authorization": self._auth, "Accept": "application/json"}
        if json_body is not None:
            headers["Content-Type"] = "application/json"
        try:
            resp = requests.request(method, url, headers=headers,
                                    json=json_body, params=params, timeout=60)
        except requests.exceptions.ConnectionError:
            raise ApiError(f"Connection error: {url}")
        except requests.exceptions.Timeout:
            raise ApiError(f"Timeout: {url}")
        if resp.status_code == 401:
            raise ApiError("Jira authentication failed (401).", 401)
        if resp.status_code == 403:
            raise ApiError(f"Jira permission denied (403): {method} {path}", 403)
        if resp.status_code == 204:
            return None
        if resp.status_code not in expected:
            try:
                msg = json.dumps(resp.json())[:400]
            except Exception:
                msg = resp.text[:400]
            raise ApiError(f"Jira {resp.status_code} {method} {path}: {msg}",
                           resp.status_code)
        return resp.json() if resp.content else None

    def get_myself(self) -> dict:
        return self._request("GET", "/myself")

    def list_projects(self) -> list:
        return self._request("GET", "/project") or []

    def list_users(self) -> list:
        users = []
        start = 0
        while True:
            page = self._request("GET", "/users/search",
                                 params={"maxResults": PAGE_SIZE, "startAt": start}) or []
            if not page:
                break
            users.extend(page)
            if len(page) < PAGE_SIZE:
                break
            start += len(page)
        return users

    def search_issues(self, project_key: str,
                      issue_keys: Optional[list] = None) -> list:
        """Raw issue dicts for the whole project, or only `issue_keys` when given."""
        if issue_keys:
            jql = f"key in ({','.join(issue_keys)})"
        else:
            jql = f"project = {project_key} ORDER BY created DESC"
        fields = issue_fields(self.epic_field)

        issues: list = []
        token: Optional[str] = None
        page = 1
        while True:
            print(f"    Page {page} ({len(issues)} issues collected)…")
            params = {"jql": jql, "maxResults": PAGE_SIZE, "fields": fields}
            if token:
                params["nextPageToken"] = token
            data = self._request("GET", "/search/jql", params=params) or {}
            batch = data.get("issues") or []
            issues.extend(batch)
            token = data.get("nextPageToken")
            if not batch or data.get("isLast") or not token:
                break
            page += 1
        print(f"    ✓ {len(issues)} Jira issue(s)")
        return issues

    def to_source_record(self, issue: dict) -> SourceRecord:
        fields = issue.get("fields") or {}
        links: list = []
        for link in fields.get("issuelinks") or []:
            link_type = link.get("type") or {}
            if link.get("outwardIssue"):
                other, direction, label = link["outwardIssue"], OUTWARD, link_type.get("outward")
            elif link.get("inwardIssue"):
                other, direction, label = link["inwardIssue"], INWARD, link_type.get("inward")
            else:
                continue
            links.append(LinkDescriptor(
                direction=direction,
                label=label or "",
                other_key=other.get("key", ""),
                other_created=parse_timestamp((other.get("fields") or {}).get("created")),
            ))

        epic = fields.get(self.epic_field)
        if isinstance(epic, dict):   # some sites return the epic as an issue object
            epic = epic.get("key")
        return SourceRecord(
            key=issue.get("key", ""),
            links=links,
            parent_key=(fields.get("parent") or {}).get("key"),
            epic_key=epic or None,
            created=parse_timestamp(fields.get("created")),
            summary=fields.get("summary") or "",
        )

    def fetch_source_records(self, project_key: str,
                             issue_keys: Optional[list] = None) -> list:
        records = [self.to_source_record(i) for i in self.search_issues(project_key, issue_keys)]
        fill_link_timestamps(records)
        return records


def fill_link_timestamps(records: list) -> None:
    """
    Jira does not return the linked issue's creation time inside issuelinks.
    Fill it in from the fetched batch so the duplicate tie-break can apply;
    links to issues outside the batch keep other_created=None.
    """
    created_by_key = {r.key: r.created for r in records if r.created is not None}
    for rec in records:
        rec.links = [
            LinkDescriptor(link.direction, link.label, link.other_key,
                           link.other_created or created_by_key.get(link.other_key))
            for link in rec.links
        ]
