"""
models.py – Plain data-classes shared across every module.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

TASK_ID_RE = re.compile(r"^[A-Z][A-Z0-9]*-\d+$")


def is_task_id(value: str) -> bool:
    """True for Jira-style keys such as ``PA-12345``."""
    return bool(TASK_ID_RE.match(value))


class Category(str, Enum):
    """Product domain a task is filed under."""

    OVERALL = "overall"
    HOMEPAGE = "homepage"
    ONSITE = "onsite"
    USAGE = "usage"
    OTHER = "other"


@dataclass(frozen=True)
class TaskRecord:
    """A Jira work item, immutable once fetched."""

    id: str
    title: str
    description: str = ""
    root_cause: Optional[str] = None
    test_intent: Optional[str] = None
    design_url: Optional[str] = None
    docs_url: Optional[str] = None


@dataclass
class TestStep:
    """A single action + expected-result pair inside a test case."""

    __test__ = False

    step: str
    result: str


@dataclass
class GeneratedTestCase:
    """A test case produced by the responder and validated by the importer."""

    __test__ = False

    name: str
    description: str
    test_case_steps: list[TestStep] = field(default_factory=list)
    preconditions: Optional[str] = None
    tags: Optional[list[str]] = None

    def to_payload(self) -> dict[str, Any]:
        """Shape expected by the test-management API."""
        payload: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "test_case_steps": [
                {"step": s.step, "result": s.result} for s in self.test_case_steps
            ],
        }
        if self.preconditions is not None:
            payload["preconditions"] = self.preconditions
        if self.tags is not None:
            payload["tags"] = list(self.tags)
        return payload


@dataclass
class Folder:
    id: int
    name: str
    parent_id: Optional[int] = None


@dataclass
class TestRun:
    __test__ = False

    identifier: str
    name: str
    description: str = ""
    test_plan_id: Optional[str] = None


@dataclass
class CreatedTestCase:
    identifier: str
    title: str
    folder_id: int


@dataclass
class TaskResult:
    """Outcome of one task's trip through the pipeline."""

    task_id: str
    title: str = ""
    category: Optional[Category] = None
    folder_id: Optional[int] = None
    folder_name: str = ""
    prompt_file: str = ""
    response_file: str = ""
    test_cases: list[GeneratedTestCase] = field(default_factory=list)
    created_ids: list[str] = field(default_factory=list)
    failed_cases: list[str] = field(default_factory=list)
    test_run: Optional[TestRun] = None
    skipped: bool = False
    success: bool = False
    error: str = ""

    @property
    def created_count(self) -> int:
        return len(self.created_ids)

    @property
    def failed_count(self) -> int:
        return len(self.failed_cases)


@dataclass
class BatchSummary:
    """Aggregated outcome of a batch; never a single pass/fail flag."""

    results: list[TaskResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success and not r.skipped)

    @property
    def cases_created(self) -> int:
        return sum(r.created_count for r in self.results)

    @property
    def cases_failed(self) -> int:
        return sum(r.failed_count for r in self.results)

    def extend(self, other: "BatchSummary") -> None:
        self.results.extend(other.results)


@dataclass
class PromptResult:
    """A rendered prompt plus where it was written."""

    prompt: str
    prompt_file: str
    task_ids: list[str] = field(default_factory=list)
    task_title: str = ""
    category: Optional[Category] = None
    has_keyword_match: bool = True
    available_types: list[str] = field(default_factory=list)


@dataclass
class StepEvent:
    """Progress notification emitted by the orchestrator."""

    task_id: str
    step: int
    total: int
    message: str
    status: str = "in-progress"      # pending | in-progress | completed | failed | skipped
