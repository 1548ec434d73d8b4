from __future__ import annotations

import json
import re

import pytest

from conftest import case_dict
from errors import ErrorKind, ResponseValidationError, ServiceError
from testcase_importer import TestCaseImporter, strip_fences, validate_test_case


@pytest.fixture
def importer() -> TestCaseImporter:
    return TestCaseImporter()


def test_parse_single(importer: TestCaseImporter) -> None:
    cases = importer.parse_single(json.dumps([case_dict("Export CSV", steps=2), case_dict("Export XLSX")]))

    assert [c.name for c in cases] == ["Export CSV", "Export XLSX"]
    assert cases[0].test_case_steps[1].step == "Step 2"
    assert cases[0].tags == ["regression"]
    assert cases[0].preconditions is None


def test_missing_steps_rejects_whole_document(importer: TestCaseImporter) -> None:
    broken = case_dict("Second")
    del broken["test_case_steps"]
    raw = json.dumps([case_dict("First"), broken])

    with pytest.raises(ResponseValidationError) as exc_info:
        importer.parse_single(raw)
    assert str(exc_info.value) == "Test case #2: Missing required fields: test_case_steps"


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda d: d.update(name=5), "'name' must be a string"),
        (lambda d: d.update(test_case_steps=[]), "'test_case_steps' must not be empty"),
        (lambda d: d.update(test_case_steps="open it"), "'test_case_steps' must be an array"),
        (lambda d: d.update(test_case_steps=[{"step": 1, "result": "ok"}]), "Step #1: 'step' must be a string"),
        (lambda d: d.update(test_case_steps=[{"step": "open"}]), "Step #1: 'result' must be a string"),
        (lambda d: d.update(tags="smoke"), "'tags' must be an array if provided"),
        (lambda d: d.update(preconditions=["logged in"]), "'preconditions' must be a string if provided"),
    ],
)
def test_field_validation(mutate, message: str) -> None:
    data = case_dict("Broken")
    mutate(data)

    with pytest.raises(ResponseValidationError, match=re.escape(message)):
        validate_test_case(data, 0)


def test_non_object_case() -> None:
    with pytest.raises(ResponseValidationError, match="Expected object, got array"):
        validate_test_case([], 0, task_id="PA-1")


def test_batch_keeps_valid_tasks_when_one_is_malformed(importer: TestCaseImporter) -> None:
    bad = case_dict("Broken")
    bad["test_case_steps"] = []
    raw = json.dumps({"PA-1": [case_dict("Good")], "PA-2": [bad]})

    result = importer.parse_batch(raw)

    assert [c.name for c in result.for_task("PA-1")] == ["Good"]
    with pytest.raises(ResponseValidationError, match="Task PA-2, Test case #1") as exc_info:
        result.for_task("PA-2")
    assert exc_info.value.task_id == "PA-2"
    assert sorted(result.task_ids) == ["PA-1", "PA-2"]


def test_batch_missing_task(importer: TestCaseImporter) -> None:
    result = importer.parse_batch(json.dumps({"PA-1": [case_dict("Good")]}))

    with pytest.raises(ResponseValidationError, match="No test cases found for task PA-9"):
        result.for_task("PA-9")


def test_batch_requires_object(importer: TestCaseImporter) -> None:
    with pytest.raises(ResponseValidationError, match="Expected JSON object with task IDs as keys"):
        importer.parse_batch(json.dumps([case_dict("x")]))


def test_fenced_response_is_unwrapped(importer: TestCaseImporter) -> None:
    raw = "```json\n" + json.dumps([case_dict("Fenced")]) + "\n```"

    assert importer.parse_single(raw)[0].name == "Fenced"
    assert strip_fences("```\n[]\n```") == "[]"
    assert strip_fences("  []  ") == "[]"


def test_invalid_and_empty_json(importer: TestCaseImporter) -> None:
    with pytest.raises(ResponseValidationError, match="Invalid JSON in response"):
        importer.parse_single("[{")
    with pytest.raises(ResponseValidationError, match="Empty response"):
        importer.parse_single("   ")


def test_is_batch_document() -> None:
    assert TestCaseImporter.is_batch_document(json.dumps({"PA-1": []}))
    assert not TestCaseImporter.is_batch_document(json.dumps([case_dict("x")]))
    assert not TestCaseImporter.is_batch_document(json.dumps({"name": "x"}))
    assert not TestCaseImporter.is_batch_document("not json")


def test_import_from_files(importer: TestCaseImporter, tmp_path) -> None:
    single = tmp_path / "single.json"
    single.write_text(json.dumps([case_dict("From file")]), encoding="utf-8")
    batch = tmp_path / "batch.json"
    batch.write_text(json.dumps({"PA-1": [case_dict("A")]}), encoding="utf-8")

    assert importer.import_single(single)[0].name == "From file"
    assert importer.import_batch(batch).for_task("PA-1")[0].name == "A"


def test_missing_file_is_not_found(importer: TestCaseImporter, tmp_path) -> None:
    with pytest.raises(ServiceError, match="Response file not found") as exc_info:
        importer.import_single(tmp_path / "nope.json")
    assert exc_info.value.kind is ErrorKind.NOT_FOUND
