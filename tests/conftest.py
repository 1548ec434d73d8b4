from __future__ import annotations

import json
import re
import shlex
import sys
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest

from assistant import Responder
from catalog import Catalog
from config import Settings
from error_logger import ErrorLogger
from errors import ErrorKind, ServiceError
from models import CreatedTestCase, Folder, GeneratedTestCase, StepEvent, TaskRecord, TestRun
from orchestrator import Orchestrator
from prompt_generator import ArtifactStore
from retry import RetryPolicy

REPO_ROOT = Path(__file__).resolve().parents[1]
FAKE_CLAUDE = REPO_ROOT / "tests" / "fixtures" / "fake_claude_cli.py"

_PROMPT_TASK_RE = re.compile(r"^### Task \d+: (\S+)$", re.MULTILINE)


def case_dict(name: str, steps: int = 1) -> dict[str, Any]:
    return {
        "name": name,
        "description": f"Checks {name.lower()}",
        "test_case_steps": [
            {"step": f"Step {i}", "result": f"Result {i}"} for i in range(1, steps + 1)
        ],
        "tags": ["regression"],
    }


def prompt_task_ids(prompt: str) -> list[str]:
    """Task IDs listed in a rendered batch prompt."""
    return _PROMPT_TASK_RE.findall(prompt)


# ── Fakes ───────────────────────────────────────────────────────────────

class FakeJira:
    def __init__(self, tasks: dict[str, TaskRecord], sprint_name: Optional[str] = "Sprint 42") -> None:
        self.tasks = tasks
        self.sprint_name = sprint_name
        self.calls: list[str] = []

    def get_task(self, task_id: str) -> TaskRecord:
        self.calls.append(task_id)
        if task_id not in self.tasks:
            raise ServiceError(
                f"Failed to get task {task_id}: Task not found (404)", ErrorKind.NOT_FOUND, 404
            )
        return self.tasks[task_id]

    def get_task_sprint_name(self, task_id: str) -> Optional[str]:
        return self.sprint_name

    def get_sprint_tasks(self, sprint_id: str) -> list[tuple[str, str]]:
        return [(t.id, t.title) for t in self.tasks.values()]


class FakeBrowserStack:
    def __init__(
        self,
        reject: tuple[str, ...] = (),
        fail_link: bool = False,
        broken: Optional[dict[str, Exception]] = None,
    ) -> None:
        self.reject = set(reject)
        self.broken = broken or {}
        self.fail_link = fail_link
        self.folders: list[Folder] = []
        self.created: list[tuple[int, GeneratedTestCase]] = []
        self.linked: dict[str, list[str]] = {}

    def find_or_create_subfolder(self, parent_id: int, name: str) -> Folder:
        for folder in self.folders:
            if folder.parent_id == parent_id and folder.name.lower() == name.lower():
                return folder
        folder = Folder(id=900 + len(self.folders), name=name, parent_id=parent_id)
        self.folders.append(folder)
        return folder

    def create_test_case(self, folder_id: int, tc: GeneratedTestCase) -> CreatedTestCase:
        if tc.name in self.broken:
            raise self.broken[tc.name]
        if tc.name in self.reject:
            raise ServiceError(
                f"Failed to create test case '{tc.name}': Duplicate resource (conflict) (409)",
                ErrorKind.CONFLICT,
                409,
            )
        self.created.append((folder_id, tc))
        return CreatedTestCase(identifier=f"TC-{len(self.created)}", title=tc.name, folder_id=folder_id)

    def find_or_create_test_run(self, task_id: str, title: str = "", sprint_name: Optional[str] = None) -> TestRun:
        if self.fail_link:
            raise ServiceError("Failed to list test runs: Service unavailable (503)", ErrorKind.SERVER, 503)
        return TestRun(identifier=f"TR-{task_id}", name=task_id, test_plan_id="PL-1" if sprint_name else None)

    def update_test_run_cases(self, run_id: str, case_ids: list[str]) -> None:
        self.linked[run_id] = list(case_ids)


class FakeResponder(Responder):
    """Answers with a fixed document, or with ``reply(prompt)``."""

    name = "fake"

    def __init__(self, reply: Union[str, list, dict, Callable[[str], Any]]) -> None:
        self.reply = reply
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        body = self.reply(prompt) if callable(self.reply) else self.reply
        return body if isinstance(body, str) else json.dumps(body)


# ── Fixtures ────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def _fake_claude_cmd(monkeypatch: pytest.MonkeyPatch) -> None:
    cmd = f"{shlex.quote(sys.executable)} {shlex.quote(str(FAKE_CLAUDE))}"
    monkeypatch.setattr(Settings, "CLAUDE_CLI_CMD", cmd)
    monkeypatch.setattr(Settings, "CLAUDE_CLI_TIMEOUT_SEC", 10.0)


@pytest.fixture
def catalog() -> Catalog:
    return Catalog.load(
        REPO_ROOT / "config" / "rules.config.json",
        REPO_ROOT / "config" / "folders.config.json",
        base_dir=REPO_ROOT,
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def record_sleep(sleeps: list[float]) -> Callable[[float], None]:
    return sleeps.append


@pytest.fixture
def tasks() -> dict[str, TaskRecord]:
    return {
        "PA-1": TaskRecord(id="PA-1", title="Usage Analytics Export", description="Export usage data as CSV"),
        "PA-2": TaskRecord(id="PA-2", title="Homepage Analytics - Overall Performance"),
        "PA-3": TaskRecord(id="PA-3", title="Fix login button alignment"),
    }


@pytest.fixture
def events() -> list[StepEvent]:
    return []


@pytest.fixture
def make_orchestrator(
    tmp_path: Path,
    catalog: Catalog,
    tasks: dict[str, TaskRecord],
    record_sleep: Callable[[float], None],
    events: list[StepEvent],
):
    def factory(
        responder: Responder,
        browserstack: Optional[FakeBrowserStack] = None,
        chooser=None,
        jira: Optional[FakeJira] = None,
    ) -> Orchestrator:
        return Orchestrator(
            jira or FakeJira(tasks),
            browserstack or FakeBrowserStack(),
            catalog,
            responder,
            artifacts=ArtifactStore(tmp_path / "output"),
            error_logger=ErrorLogger(tmp_path / "errors"),
            retry_policy=RetryPolicy(max_retries=2, initial_delay=0.01, max_delay=0.02),
            listener=events.append,
            chooser=chooser,
            sleep=record_sleep,
        )

    return factory
