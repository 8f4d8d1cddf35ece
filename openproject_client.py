"""OpenProject API v3 client: the target side of the migration."""

import base64
import json
import re
import time
from typing import Optional

import requests

from errors import ApiError
from records import CanonicalRelation, TargetRecord, parse_timestamp


PAGE_SIZE          = 100
PAGE_DELAY_SECONDS = 0.1
RELATION_DESCRIPTION = "Created by Jira migration"

_WP_HREF_RE = re.compile(r"/work_packages/(\d+)/?$")


def _id_from_href(href: Optional[str]) -> Optional[int]:
    m = _WP_HREF_RE.search(href or "")
    return int(m.group(1)) if m else None


def _text(value) -> str:
    """Plain text of a custom field value; long-text fields arrive as {format, raw, html}."""
    if value is None:
        return ""
    if isinstance(value, dict):
        return value.get("raw") or ""
    return str(value)


def _filters(**conditions) -> str:
    """OpenProject filter syntax: [{"name": {"operator": "=", "values": [...]}}]."""
    return json.dumps([
        {name: {"operator": "=", "values": [str(v) for v in values]}}
        for name, values in conditions.items()
    ])


class OpenProjectClient:
    def __init__(self, host: str, api_key: str, key_field: int = 1) -> None:
        self.base = host.rstrip("/") + "/api/v3"
        raw = f"apikey:{api_key}".encode()
        self._auth = "Basic " + base64.b64encode(raw).decode()
        self.key_attr = f"customField{key_field}"

    def _request(self, method: str, path: str, *,
                 json_body=None, params=None,
                 expected=(200, 201)) -> Optional[dict]:
        url = f"{self.base}/{path.lstrip('/')}"
        headers = {"Authorization": self._auth, "Accept": "application/hal+json"}
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
            raise ApiError("OpenProject authentication failed (401).", 401)
        if resp.status_code == 403:
            raise ApiError(f"OpenProject permission denied (403): {method} {path}", 403)
        if resp.status_code == 204:
            return None
        if resp.status_code not in expected:
            try:
                body = resp.json()
                msg = body.get("message") or json.dumps(body)
            except Exception:
                msg = resp.text
            raise ApiError(f"OpenProject {resp.status_code} {method} {path}: {msg[:400]}",
                           resp.status_code)
        return resp.json() if resp.content else None

    # ── setup / listing ──────────────────────────────────────────────────────

    def get_myself(self) -> dict:
        return self._request("GET", "/users/me")

    def list_projects(self) -> list:
        data = self._request("GET", "/projects", params={"pageSize": 500}) or {}
        return data.get("_embedded", {}).get("elements", [])

    def list_users(self) -> list:
        data = self._request("GET", "/users", params={"pageSize": 500}) or {}
        return data.get("_embedded", {}).get("elements", [])

    # ── work packages ────────────────────────────────────────────────────────

    def to_target_record(self, wp: dict) -> TargetRecord:
        links = wp.get("_links") or {}
        return TargetRecord(
            id=wp["id"],
            external_key=_text(wp.get(self.key_attr)).strip() or None,
            created=parse_timestamp(wp.get("createdAt")),
            parent_id=_id_from_href((links.get("parent") or {}).get("href")),
            subject=wp.get("subject") or "",
        )

    def fetch_work_packages(self, project_id) -> list:
        """
        Every work package of the project.  Stops at the reported total or
        on the first empty page, whichever comes first.
        """
        elements: list = []
        page = 1
        total: Optional[int] = None
        while True:
            print(f"    Page {page} ({len(elements)} work packages collected)…")
            data = self._request("GET", "/work_packages", params={
                "filters":  _filters(project=[project_id]),
                "offset":   page,
                "pageSize": PAGE_SIZE,
                "sortBy":   json.dumps([["id", "asc"]]),
            }) or {}
            if total is None:
                total = int(data.get("total") or 0)
                print(f"    Total work packages reported: {total}")
            batch = (data.get("_embedded") or {}).get("elements") or []
            if not batch:
                break
            elements.extend(batch)
            if len(elements) >= total:
                break
            page += 1
            time.sleep(PAGE_DELAY_SECONDS)
        print(f"    ✓ {len(elements)} work package(s) fetched")
        return elements

    def fetch_target_records(self, project_id) -> list:
        return [self.to_target_record(wp) for wp in self.fetch_work_packages(project_id)]

    def get_work_package(self, wp_id: int) -> dict:
        return self._request("GET", f"/work_packages/{wp_id}")

    def set_hierarchy_parent(self, child_id: int, parent_id: Optional[int]) -> None:
        """Point the child's parent link at `parent_id`; None clears it."""
        current = self.get_work_package(child_id)
        href = f"/api/v3/work_packages/{parent_id}" if parent_id is not None else None
        self._request("PATCH", f"/work_packages/{child_id}", json_body={
            "lockVersion": current.get("lockVersion"),
            "_links": {"parent": {"href": href}},
        })

    def delete_record(self, wp_id: int) -> None:
        self._request("DELETE", f"/work_packages/{wp_id}", expected=(200, 202, 204))

    # ── relations ────────────────────────────────────────────────────────────

    def _relation_count(self, from_id: int, to_id: int, type_name: str) -> int:
        data = self._request("GET", "/relations", params={
            "filters": _filters(**{"from": [from_id], "to": [to_id], "type": [type_name]}),
        }) or {}
        return int(data.get("total") or data.get("count") or 0)

    def find_existing_relation(self, from_id: int, to_id: int,
                               kind: CanonicalRelation) -> bool:
        """
        True when the edge is already present.  OpenProject may store a
        relation in its normalized direction (A blocked B as B blocks A), so
        the inverse triple is checked as well.
        """
        if kind.is_hierarchy:
            wp = self.get_work_package(from_id)
            parent_href = ((wp.get("_links") or {}).get("parent") or {}).get("href")
            return _id_from_href(parent_href) == to_id
        if self._relation_count(from_id, to_id, kind.value):
            return True
        return bool(self._relation_count(to_id, from_id, kind.inverse.value))

    def create_relation(self, from_id: int, to_id: int,
                        kind: CanonicalRelation) -> dict:
        if kind.is_hierarchy:
            raise ValueError("part-of is expressed through set_hierarchy_parent")
        return self._request("POST", f"/work_packages/{from_id}/relations", json_body={
            "type":        kind.value,
            "description": RELATION_DESCRIPTION,
            "lag":         0,
            "_links":      {"to": {"href": f"/api/v3/work_packages/{to_id}"}},
        })

    def list_relations(self, wp_id: int) -> list:
        data = self._request("GET", f"/work_packages/{wp_id}/relations") or {}
        return (data.get("_embedded") or {}).get("elements") or []

    def delete_relation(self, relation_id: int) -> None:
        self._request("DELETE", f"/relations/{relation_id}", expected=(200, 202, 204))
