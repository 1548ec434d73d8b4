"""
testcase_importer.py – Parse and validate responder output.

Two shapes are accepted:

* single – a JSON array of test case objects;
* batch  – a JSON object mapping each task ID to such an array.

Batch documents are validated key by key so one malformed task never hides
its siblings' cases.  Validation errors name the offending task and index
and are never retried.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from errors import ErrorKind, ResponseValidationError, ServiceError
from models import GeneratedTestCase, TestStep, is_task_id

logger = logging.getLogger("sprint-testgen")

_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)

REQUIRED_FIELDS = ("name", "description", "test_case_steps")


def strip_fences(raw: str) -> str:
    """Drop a surrounding Markdown code fence, if the responder added one."""
    raw = raw.strip()
    match = _FENCE_RE.search(raw)
    if match:
        return match.group(1).strip()
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[-1]
    if raw.endswith("```"):
        raw = raw.rsplit("```", 1)[0]
    return raw.strip()


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def validate_test_case(data: Any, index: int, task_id: Optional[str] = None) -> GeneratedTestCase:
    """Check one element and build a :class:`GeneratedTestCase`."""
    prefix = f"Task {task_id}, " if task_id else ""
    where = f"{prefix}Test case #{index + 1}"

    def fail(msg: str) -> ResponseValidationError:
        return ResponseValidationError(f"{where}: {msg}", task_id=task_id)

    if not isinstance(data, dict):
        raise fail(f"Expected object, got {_type_name(data)}")

    missing = [f for f in REQUIRED_FIELDS if f not in data]
    if missing:
        raise fail(f"Missing required fields: {', '.join(missing)}")

    if not isinstance(data["name"], str):
        raise fail("'name' must be a string")
    if not isinstance(data["description"], str):
        raise fail("'description' must be a string")
    preconditions = data.get("preconditions")
    if preconditions is not None and not isinstance(preconditions, str):
        raise fail("'preconditions' must be a string if provided")
    tags = data.get("tags")
    if tags is not None and not isinstance(tags, list):
        raise fail("'tags' must be an array if provided")

    raw_steps = data["test_case_steps"]
    if not isinstance(raw_steps, list):
        raise fail("'test_case_steps' must be an array")
    if not raw_steps:
        raise fail("'test_case_steps' must not be empty")

    steps: list[TestStep] = []
    for i, step in enumerate(raw_steps, 1):
        if not isinstance(step, dict):
            raise fail(f"Step #{i}: Expected object, got {_type_name(step)}")
        if not isinstance(step.get("step"), str):
            raise fail(f"Step #{i}: 'step' must be a string")
        if not isinstance(step.get("result"), str):
            raise fail(f"Step #{i}: 'result' must be a string")
        steps.append(TestStep(step=step["step"], result=step["result"]))

    return GeneratedTestCase(
        name=data["name"],
        description=data["description"],
        test_case_steps=steps,
        preconditions=preconditions,
        tags=[str(t) for t in tags] if tags is not None else None,
    )


def validate_case_list(data: Any, task_id: Optional[str] = None) -> list[GeneratedTestCase]:
    if not isinstance(data, list):
        label = f"for task {task_id}" if task_id else "at top level"
        raise ResponseValidationError(
            f"Expected array of test cases {label}, got {_type_name(data)}", task_id=task_id
        )
    return [validate_test_case(item, i, task_id) for i, item in enumerate(data)]


@dataclass
class BatchImport:
    """Per-task outcome of a batch document."""

    cases: dict[str, list[GeneratedTestCase]] = field(default_factory=dict)
    errors: dict[str, ResponseValidationError] = field(default_factory=dict)

    @property
    def task_ids(self) -> list[str]:
        return list(self.cases) + list(self.errors)

    def for_task(self, task_id: str) -> list[GeneratedTestCase]:
        """Cases for *task_id*; raises that task's own error otherwise."""
        if task_id in self.errors:
            raise self.errors[task_id]
        if task_id not in self.cases:
            raise ResponseValidationError(
                f"No test cases found for task {task_id} in batch response", task_id=task_id
            )
        return self.cases[task_id]


class TestCaseImporter:
    """Reads response artifacts written by the responder."""

    __test__ = False

    # ── Text ────────────────────────────────────────────────────────────

    @staticmethod
    def _load(raw: str, source: str) -> Any:
        text = strip_fences(raw)
        if not text:
            raise ResponseValidationError(f"Empty response in {source}")
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ResponseValidationError(f"Invalid JSON in {source}: {exc}") from exc

    def parse_single(self, raw: str, source: str = "response") -> list[GeneratedTestCase]:
        return validate_case_list(self._load(raw, source))

    def parse_batch(self, raw: str, source: str = "response") -> BatchImport:
        data = self._load(raw, source)
        if not isinstance(data, dict):
            raise ResponseValidationError(
                f"Expected JSON object with task IDs as keys, got {_type_name(data)} in {source}"
            )
        result = BatchImport()
        for task_id, items in data.items():
            try:
                result.cases[task_id] = validate_case_list(items, task_id)
            except ResponseValidationError as exc:
                logger.warning("Batch response: %s", exc)
                result.errors[task_id] = exc
        return result

    @staticmethod
    def is_batch_document(raw: str) -> bool:
        """True when *raw* is an object keyed by task IDs."""
        try:
            data = json.loads(strip_fences(raw))
        except json.JSONDecodeError:
            return False
        return isinstance(data, dict) and any(is_task_id(k) for k in data)

    # ── Files ───────────────────────────────────────────────────────────

    @staticmethod
    def _read(path: str | Path) -> str:
        target = Path(path)
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ServiceError(f"Response file not found: {target}", ErrorKind.NOT_FOUND) from None

    def import_single(self, path: str | Path) -> list[GeneratedTestCase]:
        cases = self.parse_single(self._read(path), str(path))
        logger.info("Imported %d test cases from %s", len(cases), path)
        return cases

    def import_batch(self, path: str | Path) -> BatchImport:
        result = self.parse_batch(self._read(path), str(path))
        logger.info(
            "Imported batch from %s: %d valid task(s), %d malformed",
            path,
            len(result.cases),
            len(result.errors),
        )
        return result
