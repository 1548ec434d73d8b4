"""
orchestrator.py – The task pipeline.

Per task, in order:

  1. Fetch        task record from Jira                    (retried)
  2. Classify     title → category, operator may pick or skip
  3. Destination  rule document + "<id> - <title>" subfolder (retried)
  4. Prompt       render and persist prompt + empty response artifact
  5. Checkpoint   wait for the responder to fill the response
  6. Import       validate this task's test cases
  7. Create       one call per case (retried); failures isolated per case
  8. Link         replace the task's test run case list; warning only

Batch mode shares steps 4-5 across every prepared task.  Failures before
step 7 fail only the current task; authentication failures end the run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from assistant import Responder, build_responder
from browserstack_client import BrowserStackClient
from catalog import Catalog
from config import Settings
from error_logger import ErrorLogger
from errors import ErrorKind, ResponseValidationError, ServiceError
from folder_mapper import FolderMapper
from jira_client import JiraClient
from models import (
    BatchSummary,
    Category,
    Folder,
    GeneratedTestCase,
    PromptResult,
    StepEvent,
    TaskRecord,
    TaskResult,
)
from prompt_generator import ArtifactStore, PromptGenerator, TaskPromptData
from retry import RetryPolicy, with_retry
from rule_resolver import RuleResolver
from testcase_importer import TestCaseImporter

logger = logging.getLogger("sprint-testgen")

T = TypeVar("T")

TOTAL_STEPS = 8

Listener = Callable[[StepEvent], None]
Chooser = Callable[[TaskRecord, list[Category]], Optional[Category]]


def split_into_batches(items: Sequence[str], batch_size: int) -> list[list[str]]:
    if batch_size <= 0:
        raise ValueError("Batch size must be greater than 0")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


@dataclass
class _Prepared:
    task: TaskRecord
    category: Category
    folder: Folder
    rule_content: str
    result: TaskResult


class Orchestrator:
    """Runs tasks from Jira through the responder into BrowserStack."""

    def __init__(
        self,
        jira: JiraClient,
        browserstack: BrowserStackClient,
        catalog: Catalog,
        responder: Responder,
        *,
        prompts: Optional[PromptGenerator] = None,
        artifacts: Optional[ArtifactStore] = None,
        importer: Optional[TestCaseImporter] = None,
        error_logger: Optional[ErrorLogger] = None,
        retry_policy: Optional[RetryPolicy] = None,
        listener: Optional[Listener] = None,
        chooser: Optional[Chooser] = None,
        response_timeout: Optional[float] = 60.0,
        batch_response_timeout: Optional[float] = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.jira = jira
        self.browserstack = browserstack
        self.resolver = RuleResolver(catalog)
        self.folders = FolderMapper(catalog)
        self.responder = responder
        self.prompts = prompts or PromptGenerator()
        self.artifacts = artifacts or ArtifactStore()
        self.importer = importer or TestCaseImporter()
        self.errors = error_logger or ErrorLogger()
        self.retry_policy = retry_policy or RetryPolicy()
        self.listener = listener
        self.chooser = chooser
        self.response_timeout = response_timeout
        self.batch_response_timeout = batch_response_timeout
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        responder: Optional[Responder] = None,
        listener: Optional[Listener] = None,
        chooser: Optional[Chooser] = None,
    ) -> "Orchestrator":
        catalog = Catalog.load(Settings.RULES_CONFIG_PATH, Settings.FOLDERS_CONFIG_PATH)
        return cls(
            JiraClient(),
            BrowserStackClient(),
            catalog,
            responder or build_responder(),
            prompts=PromptGenerator(Settings.AI_MIN_TEST_CASES, Settings.AI_MAX_TEST_CASES),
            artifacts=ArtifactStore(Settings.OUTPUT_DIR),
            importer=TestCaseImporter(),
            error_logger=ErrorLogger(Settings.ERROR_LOG_DIR),
            retry_policy=RetryPolicy(
                max_retries=Settings.RETRY_MAX_RETRIES,
                initial_delay=Settings.RETRY_INITIAL_DELAY_SEC,
                max_delay=Settings.RETRY_MAX_DELAY_SEC,
                backoff_multiplier=Settings.RETRY_BACKOFF_MULTIPLIER,
            ),
            listener=listener,
            chooser=chooser,
            response_timeout=Settings.RESPONSE_TIMEOUT_SEC,
            batch_response_timeout=Settings.BATCH_RESPONSE_TIMEOUT_SEC,
        )

    # ── Plumbing ────────────────────────────────────────────────────────

    def _retry(self, operation: Callable[[], T], label: str) -> T:
        return with_retry(operation, self.retry_policy, sleep=self._sleep, label=label)

    def _emit(self, task_id: str, step: int, message: str, status: str = "in-progress") -> None:
        logger.debug("[%s] %d/%d %s", task_id, step, TOTAL_STEPS, message)
        if self.listener is not None:
            self.listener(StepEvent(task_id, step, TOTAL_STEPS, message, status))

    def _fail(
        self,
        result: TaskResult,
        exc: BaseException,
        operation: str,
        step: int,
        log: bool = True,
    ) -> TaskResult:
        result.success = False
        result.error = str(exc)
        logger.error("Task %s – %s failed: %s", result.task_id, operation, exc)
        if log:
            self.errors.log(exc, operation, result.task_id)
        self._emit(result.task_id, step, f"Error: {exc}", "failed")
        if isinstance(exc, ServiceError) and exc.kind is ErrorKind.AUTH:
            raise exc
        return result

    # ── Steps 1-3 ───────────────────────────────────────────────────────

    def _fetch(self, task_id: str) -> TaskRecord:
        return self._retry(lambda: self.jira.get_task(task_id), f"Fetch {task_id}")

    def _classify(self, task: TaskRecord, interactive: bool, batch: bool) -> Optional[Category]:
        if self.resolver.has_keyword_match(task.title):
            return self.resolver.resolve(task.title)
        if interactive and self.chooser is not None:
            return self.chooser(task, self.resolver.get_types())
        if batch:
            logger.info("%s: no keyword match, filing under 'other'", task.id)
            return Category.OTHER
        return self.resolver.get_default_type()

    def _ensure_folder(self, category: Category, task_id: str, title: str) -> Folder:
        return self.folders.ensure_task_folder(
            self.browserstack,
            category,
            task_id,
            title,
            retry=lambda call: self._retry(call, f"Folder for {task_id}"),
        )

    def _prepare(
        self,
        task_id: str,
        result: TaskResult,
        interactive: bool,
        batch: bool,
        category: Optional[Category] = None,
    ) -> Optional[_Prepared]:
        self._emit(task_id, 1, "Fetching task from Jira…")
        try:
            task = self._fetch(task_id)
        except Exception as exc:
            self._fail(result, exc, "Fetch task", 1)
            return None
        result.title = task.title
        self._emit(task_id, 1, f"Task fetched: {task.title}", "completed")

        self._emit(task_id, 2, "Resolving analytics type…")
        category = category or self._classify(task, interactive, batch)
        if category is None:
            result.skipped = True
            logger.info("%s skipped by operator", task_id)
            self._emit(task_id, 2, "Skipped", "skipped")
            return None
        result.category = category
        self._emit(task_id, 2, f"Analytics type: {category.value}", "completed")

        self._emit(task_id, 3, "Resolving destination folder…")
        try:
            rule_content = self.resolver.read_rule_document(category)
            folder = self._ensure_folder(category, task.id, task.title)
        except Exception as exc:
            self._fail(result, exc, "Resolve destination", 3)
            return None
        result.folder_id = folder.id
        result.folder_name = folder.name
        self._emit(task_id, 3, f"Folder: {folder.name} (id={folder.id})", "completed")
        return _Prepared(task, category, folder, rule_content, result)

    # ── Steps 7-8 ───────────────────────────────────────────────────────

    def _create_cases(self, task_id: str, folder_id: int, cases: Iterable[GeneratedTestCase], result: TaskResult) -> None:
        for tc in cases:
            try:
                created = self._retry(
                    lambda tc=tc: self.browserstack.create_test_case(folder_id, tc),
                    f"Create '{tc.name}'",
                )
            except Exception as exc:
                logger.error("  ✗ %s: %s", tc.name, exc)
                self.errors.log(exc, f"Create test case: {tc.name}", task_id)
                result.failed_cases.append(tc.name)
                continue
            result.created_ids.append(created.identifier)

    def _link_test_run(self, task_id: str, title: str, result: TaskResult) -> None:
        sprint_name = self.jira.get_task_sprint_name(task_id)
        try:
            run = self._retry(
                lambda: self.browserstack.find_or_create_test_run(task_id, title, sprint_name),
                f"Test run for {task_id}",
            )
            self._retry(
                lambda: self.browserstack.update_test_run_cases(run.identifier, result.created_ids),
                f"Link test run {run.identifier}",
            )
        except Exception as exc:
            logger.warning("Could not link test cases of %s to a test run: %s", task_id, exc)
            self.errors.log(exc, "Link test cases to test run", task_id)
            self._emit(task_id, 8, f"Test run not linked: {exc}", "skipped")
            return
        result.test_run = run
        self._emit(
            task_id, 8, f"Linked {result.created_count} cases to test run {run.identifier}", "completed"
        )

    def _finish(self, prepared: _Prepared, cases: list[GeneratedTestCase]) -> TaskResult:
        task, result = prepared.task, prepared.result
        result.test_cases = cases
        self._emit(task.id, 6, f"Imported {len(cases)} test cases", "completed")

        self._emit(task.id, 7, f"Creating {len(cases)} test cases in BrowserStack…")
        self._create_cases(task.id, prepared.folder.id, cases, result)
        result.success = True
        self._emit(
            task.id,
            7,
            f"{result.created_count} created, {result.failed_count} failed",
            "completed",
        )

        if result.created_ids:
            self._emit(task.id, 8, "Linking test run…")
            self._link_test_run(task.id, task.title, result)
        else:
            self._emit(task.id, 8, "No test cases to link", "skipped")
        return result

    # ── Public API ──────────────────────────────────────────────────────

    def process_task(self, task_id: str, interactive: bool = True) -> TaskResult:
        """Single-task mode: own prompt, own checkpoint."""
        logger.info("Processing task %s", task_id)
        result = TaskResult(task_id=task_id)
        prepared = self._prepare(task_id, result, interactive, batch=False)
        if prepared is None:
            return result

        try:
            prompt = self.prompts.generate_single_prompt(
                prepared.task, prepared.category, prepared.rule_content
            )
            prompt_path = self.artifacts.save_prompt(prompt, task_id)
            response_path = self.artifacts.prepare_response(task_id)
            result.prompt_file = str(prompt_path)
            result.response_file = str(response_path)
            self._emit(task_id, 4, f"Prompt saved: {prompt_path}", "completed")

            self._emit(task_id, 5, f"Waiting for response ({self.responder.name})…")
            self.responder.respond(prompt, prompt_path, response_path, self.response_timeout)
            self._emit(task_id, 5, "Response received", "completed")

            self._emit(task_id, 6, "Importing test cases…")
            cases = self.importer.import_single(response_path)
        except Exception as exc:
            return self._fail(result, exc, "Generate test cases", 5)

        return self._finish(prepared, cases)

    def process_batch(
        self,
        task_ids: Sequence[str],
        interactive: bool = True,
        categories: Optional[Mapping[str, Category]] = None,
    ) -> BatchSummary:
        """Batch mode: one shared prompt, response artifact and checkpoint.

        *categories* pins a task's category and bypasses classification.
        """
        logger.info("Processing batch of %d tasks", len(task_ids))
        summary = BatchSummary()
        prepared: list[_Prepared] = []
        for task_id in task_ids:
            result = TaskResult(task_id=task_id)
            summary.results.append(result)
            forced = (categories or {}).get(task_id)
            item = self._prepare(task_id, result, interactive, True, forced)
            if item is not None:
                prepared.append(item)

        if not prepared:
            logger.warning("No tasks left to generate in this batch")
            return summary

        ids = [p.task.id for p in prepared]
        try:
            prompt = self.prompts.generate_batch_prompt(
                [TaskPromptData(p.task, p.category, p.rule_content) for p in prepared]
            )
            prompt_path = self.artifacts.save_prompt(prompt)
            response_path = self.artifacts.prepare_response()
            for p in prepared:
                p.result.prompt_file = str(prompt_path)
                p.result.response_file = str(response_path)
                self._emit(p.task.id, 4, f"Batch prompt saved: {prompt_path}", "completed")
                self._emit(p.task.id, 5, "Waiting for batch response…")

            self.responder.respond(prompt, prompt_path, response_path, self.batch_response_timeout)
            batch = self.importer.import_batch(response_path)
        except Exception as exc:
            self.errors.log(exc, "Generate batch test cases", ", ".join(ids))
            for p in prepared:
                self._fail(p.result, exc, "Generate batch test cases", 5, log=False)
            return summary

        for p in prepared:
            self._emit(p.task.id, 5, "Response received", "completed")
            self._emit(p.task.id, 6, "Importing test cases…")
            try:
                cases = batch.for_task(p.task.id)
            except ResponseValidationError as exc:
                self._fail(p.result, exc, "Import test cases", 6)
                continue
            self._finish(p, cases)
        return summary

    def prepare_prompt(self, task_id: str) -> PromptResult:
        """UI flow, first half: fetch, classify, render and save a prompt."""
        task = self._fetch(task_id)
        category = self.resolver.resolve(task.title)
        rule_content = self.resolver.read_rule_document(category)
        prompt = self.prompts.generate_single_prompt(task, category, rule_content)
        path = self.artifacts.save_prompt(prompt, task_id)
        return PromptResult(
            prompt=prompt,
            prompt_file=str(path),
            task_ids=[task.id],
            task_title=task.title,
            category=category,
            has_keyword_match=self.resolver.has_keyword_match(task.title),
            available_types=[c.value for c in self.resolver.get_types()],
        )

    def prepare_batch_prompt(
        self, selections: Sequence[tuple[str, Optional[Category]]]
    ) -> PromptResult:
        """Batch prompt for ``(task_id, category)`` pairs; ``None`` classifies."""
        entries: list[TaskPromptData] = []
        for task_id, category in selections:
            task = self._fetch(task_id)
            chosen = category or self.resolver.resolve(task.title)
            entries.append(TaskPromptData(task, chosen, self.resolver.read_rule_document(chosen)))
        prompt = self.prompts.generate_batch_prompt(entries)
        path = self.artifacts.save_prompt(prompt)
        return PromptResult(
            prompt=prompt,
            prompt_file=str(path),
            task_ids=[e.task.id for e in entries],
            available_types=[c.value for c in self.resolver.get_types()],
        )

    def submit_response(
        self,
        task_id: str,
        text: str,
        title: Optional[str] = None,
        category: Optional[Category] = None,
    ) -> TaskResult:
        """UI flow, second half: import pasted JSON, create and link.

        Accepts a single-task array or a batch object keyed by task ID.
        Import and destination errors propagate to the caller.
        """
        result = TaskResult(task_id=task_id)
        result.response_file = str(self.artifacts.save_response(text, task_id))

        if self.importer.is_batch_document(text):
            cases = self.importer.parse_batch(text, result.response_file).for_task(task_id)
        else:
            cases = self.importer.parse_single(text, result.response_file)
        if not cases:
            raise ResponseValidationError(f"No test cases found for task {task_id}", task_id)

        if not title or category is None:
            task = self._fetch(task_id)
            title = title or task.title
            category = category or self.resolver.resolve(task.title)
        result.title = title
        result.category = category

        folder = self._ensure_folder(category, task_id, title)
        result.folder_id = folder.id
        result.folder_name = folder.name
        prepared = _Prepared(TaskRecord(id=task_id, title=title), category, folder, "", result)
        return self._finish(prepared, cases)
