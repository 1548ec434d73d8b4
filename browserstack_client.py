"""
browserstack_client.py – BrowserStack Test Management REST interactions.

Folders, test cases, test plans and test runs for one project.  Errors are
tagged by :class:`rest_client.RestClient`, so duplicate-name conflicts
(409) and rate limiting (429) stay distinguishable from hard failures.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import requests

from config import Settings
from models import CreatedTestCase, Folder, GeneratedTestCase, TestRun
from rest_client import RestClient

logger = logging.getLogger("sprint-testgen")


def _run_from(data: dict[str, Any]) -> TestRun:
    return TestRun(
        identifier=str(data.get("identifier") or data.get("id") or ""),
        name=data.get("name") or data.get("title") or "",
        description=data.get("description") or "",
        test_plan_id=data.get("test_plan_id"),
    )


def _folder_from(data: dict[str, Any]) -> Folder:
    return Folder(id=int(data["id"]), name=data.get("name", ""), parent_id=data.get("parent_id"))


class BrowserStackClient(RestClient):
    """Wraps every BrowserStack Test Management call the pipeline needs."""

    def __init__(
        self,
        username: str | None = None,
        access_key: str | None = None,
        project_id: str | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            base_url or Settings.BROWSERSTACK_BASE_URL,
            username or Settings.BROWSERSTACK_USERNAME,
            access_key or Settings.BROWSERSTACK_ACCESS_KEY,
            timeout=10.0,
            session=session,
        )
        self._project = project_id or Settings.BROWSERSTACK_PROJECT_ID

    def _project_path(self, suffix: str) -> str:
        return f"/projects/{self._project}/{suffix.lstrip('/')}"

    # ── Folders ─────────────────────────────────────────────────────────

    def list_folders(self) -> list[Folder]:
        data = self._request("GET", self._project_path("folders"), "Failed to list folders") or {}
        return [_folder_from(f) for f in data.get("folders", []) or []]

    def find_subfolder(self, parent_id: int, name: str) -> Optional[Folder]:
        """Case-insensitive name match among *parent_id*'s children."""
        wanted = name.lower()
        for folder in self.list_folders():
            if folder.parent_id == parent_id and folder.name.lower() == wanted:
                return folder
        return None

    def create_folder(self, name: str, parent_id: int) -> Folder:
        data = self._request(
            "POST",
            self._project_path("folders"),
            f"Failed to create folder '{name}'",
            json={"folder": {"name": name, "parent_id": parent_id}},
        ) or {}
        folder = _folder_from(data.get("folder", data))
        logger.info("Created folder '%s' (id=%s)", folder.name, folder.id)
        return folder

    def find_or_create_subfolder(self, parent_id: int, name: str) -> Folder:
        """Idempotent: reuse an existing child folder with the same name."""
        existing = self.find_subfolder(parent_id, name)
        if existing:
            logger.info("Folder '%s' already exists (id=%s)", name, existing.id)
            return existing
        return self.create_folder(name, parent_id)

    # ── Test cases ──────────────────────────────────────────────────────

    def create_test_case(self, folder_id: int, tc: GeneratedTestCase) -> CreatedTestCase:
        data = self._request(
            "POST",
            self._project_path(f"folders/{folder_id}/test-cases"),
            f"Failed to create test case '{tc.name}'",
            json={"test_case": tc.to_payload()},
        ) or {}
        body = (data.get("data") or {}).get("test_case") or data.get("test_case") or {}
        created = CreatedTestCase(
            identifier=str(body.get("identifier") or body.get("id") or ""),
            title=body.get("title") or body.get("name") or tc.name,
            folder_id=folder_id,
        )
        logger.info("Created test case %s  →  '%s'", created.identifier, created.title)
        return created

    # ── Test plans / runs ───────────────────────────────────────────────

    def list_test_runs(self) -> list[TestRun]:
        data = self._request("GET", self._project_path("test-runs"), "Failed to list test runs") or {}
        return [_run_from(r) for r in data.get("test_runs", []) or []]

    def find_test_run_by_task_id(self, task_id: str) -> Optional[TestRun]:
        """Runs are named after the task ID; exact match preferred.

        The fallback only accepts the ID as a whole token, so ``PA-1`` never
        picks up the run of ``PA-12``.
        """
        runs = self.list_test_runs()
        for run in runs:
            if run.name == task_id:
                return run
        token = re.compile(rf"(?<![\w-]){re.escape(task_id)}(?![\w-])", re.IGNORECASE)
        for run in runs:
            if token.search(run.name):
                return run
        return None

    def find_test_plan_by_name(self, name: str) -> Optional[str]:
        """Return the identifier of the plan called *name*, if any."""
        try:
            data = self._request(
                "GET", self._project_path("test-plans"), "Failed to list test plans"
            ) or {}
        except Exception as exc:
            logger.warning("Could not search test plans: %s", exc)
            return None
        for plan in data.get("test_plans", []) or []:
            if str(plan.get("name", "")).lower() == name.lower():
                return plan.get("identifier")
        return None

    def create_test_run(
        self,
        name: str,
        description: str = "",
        test_plan_id: Optional[str] = None,
    ) -> TestRun:
        body: dict[str, Any] = {
            "name": name,
            "description": description or f"Test run for {name}",
        }
        if test_plan_id:
            body["test_plan_id"] = test_plan_id
        data = self._request(
            "POST",
            self._project_path("test-runs"),
            f"Failed to create test run '{name}'",
            json={"test_run": body},
        ) or {}
        run = _run_from(data.get("test_run", data))
        run.test_plan_id = run.test_plan_id or test_plan_id
        logger.info("Created test run %s – %s", run.identifier, run.name)
        return run

    def find_or_create_test_run(
        self,
        task_id: str,
        title: str = "",
        sprint_name: Optional[str] = None,
    ) -> TestRun:
        existing = self.find_test_run_by_task_id(task_id)
        if existing:
            logger.info("Using existing test run %s", existing.identifier)
            return existing

        plan_id = None
        if sprint_name:
            plan_id = self.find_test_plan_by_name(sprint_name)
            if plan_id:
                logger.info("Found test plan %s for sprint '%s'", plan_id, sprint_name)
            else:
                logger.info("No test plan named '%s'", sprint_name)
        return self.create_test_run(task_id, title, plan_id)

    def update_test_run_cases(self, run_id: str, case_ids: list[str]) -> None:
        """Replace the run's case list with *case_ids*."""
        self._request(
            "PATCH",
            self._project_path(f"test-runs/{run_id}/update"),
            f"Failed to update test run {run_id}",
            json={"test_run": {"test_cases": list(case_ids)}},
        )
        logger.debug("Test run %s now holds %d cases", run_id, len(case_ids))
