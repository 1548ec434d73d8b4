"""
jira_client.py – Jira Cloud REST interactions.

Reads task records and sprint contents.  Descriptions arrive either as
plain text or as Atlassian Document Format (ADF); both are flattened to
text before the Figma / Confluence links are scraped out of them.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Any, Optional

import requests

from config import Settings
from models import TaskRecord
from rest_client import RestClient

logger = logging.getLogger("sprint-testgen")

_FIGMA_RE = re.compile(r"https?://(?:www\.)?figma\.com/[^\s)\]\"']+", re.IGNORECASE)
_CONFLUENCE_RE = re.compile(r"https?://[^\s]*atlassian\.net/wiki/[^\s)\]\"']+", re.IGNORECASE)


# ── Description helpers ─────────────────────────────────────────────────

def _strip_html(text: str) -> str:
    """Remove HTML tags and decode entities."""
    clean = re.sub(r"<[^>]+>", "", text)
    return html.unescape(clean).strip()


def _adf_to_text(node: Any) -> str:
    """Flatten an ADF document into plain text, keeping link targets."""
    if isinstance(node, list):
        return "".join(_adf_to_text(n) for n in node)
    if not isinstance(node, dict):
        return ""
    kind = node.get("type")
    if kind == "text":
        text = node.get("text", "")
        for mark in node.get("marks", []) or []:
            href = (mark.get("attrs") or {}).get("href")
            if mark.get("type") == "link" and href and href not in text:
                text = f"{text} ({href})"
        return text
    if kind == "hardBreak":
        return "\n"
    if kind in ("inlineCard", "blockCard", "embedCard"):
        return (node.get("attrs") or {}).get("url", "")
    inner = _adf_to_text(node.get("content", []))
    if kind in ("paragraph", "heading", "listItem", "codeBlock", "blockquote"):
        return inner.rstrip("\n") + "\n"
    return inner


def parse_description(description: Any) -> str:
    if not description:
        return ""
    if isinstance(description, str):
        return _strip_html(description)
    if isinstance(description, dict):
        return _adf_to_text(description).strip()
    return ""


def extract_figma_url(text: str) -> Optional[str]:
    match = _FIGMA_RE.search(text or "")
    return match.group(0) if match else None


def extract_confluence_url(text: str) -> Optional[str]:
    match = _CONFLUENCE_RE.search(text or "")
    return match.group(0) if match else None


def _field_text(value: Any) -> Optional[str]:
    text = parse_description(value)
    return text or None


# ── Main client ─────────────────────────────────────────────────────────

class JiraClient(RestClient):
    """Wraps every Jira interaction the pipeline needs."""

    not_found_text = "Task not found"

    def __init__(
        self,
        base_url: str | None = None,
        email: str | None = None,
        api_token: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            base_url or Settings.JIRA_BASE_URL,
            email or Settings.JIRA_EMAIL,
            api_token or Settings.JIRA_API_TOKEN,
            timeout=15.0,
            session=session,
        )
        self._root_cause_field = Settings.JIRA_ROOT_CAUSE_FIELD
        self._test_field = Settings.JIRA_TEST_DESCRIPTION_FIELD
        self._sprint_field = Settings.JIRA_SPRINT_FIELD

    # ── Tasks ───────────────────────────────────────────────────────────

    def get_task(self, task_id: str) -> TaskRecord:
        """Fetch a single task by key, e.g. ``PA-12345``."""
        issue = self._request(
            "GET", f"/rest/api/3/issue/{task_id}", f"Failed to get task {task_id}"
        ) or {}
        fields: dict[str, Any] = issue.get("fields", {}) or {}
        description = parse_description(fields.get("description"))
        task = TaskRecord(
            id=issue.get("key", task_id),
            title=fields.get("summary", "") or "",
            description=description,
            root_cause=_field_text(fields.get(self._root_cause_field)),
            test_intent=_field_text(fields.get(self._test_field)),
            design_url=extract_figma_url(description),
            docs_url=extract_confluence_url(description),
        )
        logger.debug("Fetched %s: %s", task.id, task.title)
        return task

    def get_task_sprint_name(self, task_id: str) -> Optional[str]:
        """Active sprint name, else the most recent one, else ``None``.

        Never raises: the sprint name only picks a test plan.
        """
        try:
            issue = self._request(
                "GET",
                f"/rest/api/3/issue/{task_id}",
                f"Failed to get sprint for {task_id}",
                params={"fields": self._sprint_field},
            )
        except Exception as exc:
            logger.warning("Could not get sprint info for %s: %s", task_id, exc)
            return None

        sprints = ((issue or {}).get("fields", {}) or {}).get(self._sprint_field) or []
        if not sprints:
            return None
        for sprint in sprints:
            if str(sprint.get("state", "")).lower() == "active":
                return sprint.get("name")
        return sprints[-1].get("name")

    # ── Sprints ─────────────────────────────────────────────────────────

    def get_sprint_tasks(self, sprint_id: str | int) -> list[tuple[str, str]]:
        """Return ``(key, summary)`` for every issue in the sprint."""
        issues: list[tuple[str, str]] = []
        start = 0
        while True:
            data = self._request(
                "GET",
                f"/rest/agile/1.0/sprint/{sprint_id}/issue",
                f"Failed to get tasks in sprint {sprint_id}",
                params={"startAt": start, "maxResults": 50, "fields": "summary"},
            ) or {}
            page = data.get("issues", []) or []
            for issue in page:
                key = issue.get("key")
                if not key:
                    logger.warning("Sprint %s returned an issue without a key; skipping", sprint_id)
                    continue
                issues.append((key, (issue.get("fields") or {}).get("summary", "")))
            start += len(page)
            total = data.get("total", start)
            if not page or start >= total:
                break
        logger.info("Sprint %s contains %d tasks", sprint_id, len(issues))
        return issues

    def get_tasks_in_sprint(self, sprint_id: str | int) -> list[str]:
        return [key for key, _ in self.get_sprint_tasks(sprint_id)]
