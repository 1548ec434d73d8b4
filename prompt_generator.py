"""
prompt_generator.py – Render generation prompts and persist artifacts.

A single-task prompt asks for a JSON array of test cases.  A batch prompt
asks for one JSON object keyed by task ID; those keys are the only contract
between the batch pipeline and whoever answers the prompt, so they are
spelled out verbatim.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from models import Category, TaskRecord

logger = logging.getLogger("sprint-testgen")

_EXAMPLE_CASE = {
    "name": "Test case name (clear and descriptive)",
    "description": "What this test validates",
    "preconditions": "Optional: any setup required before the test",
    "test_case_steps": [
        {"step": "Action to perform", "result": "Expected outcome"},
    ],
    "tags": [],
}


@dataclass(frozen=True)
class TaskPromptData:
    task: TaskRecord
    category: Category
    rule_content: str


def _task_details(task: TaskRecord, category: Category, short_labels: bool = False) -> list[str]:
    parts = [
        f"**Title:** {task.title}",
        f"**Analytics Type:** {category.value}",
        f"**Description:**\n{task.description or '(none)'}",
    ]
    if task.root_cause:
        parts.append(f"**Root Cause:**\n{task.root_cause}")
    if task.test_intent:
        parts.append(f"**Test Case Description:**\n{task.test_intent}")
    if task.design_url:
        parts.append(f"**{'Figma' if short_labels else 'Figma Design'}:** {task.design_url}")
    if task.docs_url:
        parts.append(f"**{'Docs' if short_labels else 'Documentation'}:** {task.docs_url}")
    return parts


def _example(category: Category) -> dict:
    case = json.loads(json.dumps(_EXAMPLE_CASE))
    case["tags"] = [category.value, "tag2"]
    return case


class PromptGenerator:
    """Builds prompts for the responder."""

    def __init__(self, min_cases: int = 2, max_cases: int = 5) -> None:
        if min_cases < 1 or min_cases > max_cases:
            raise ValueError(f"Invalid test case range {min_cases}-{max_cases}")
        self.min_cases = min_cases
        self.max_cases = max_cases

    def generate_single_prompt(
        self, task: TaskRecord, category: Category, rule_content: str
    ) -> str:
        parts = [
            "# Test Case Generation Request",
            "Generate test cases for BrowserStack Test Management based on the "
            "task information below.",
            "## Task Information",
            f"**Task ID:** {task.id}",
            *_task_details(task, category),
            "## Product Rules",
            rule_content.strip(),
            "## Output Format",
            "Return **ONLY** valid JSON (no markdown, no code blocks, no explanation):",
            "```json\n" + json.dumps([_example(category)], indent=2) + "\n```",
            "**Important:**\n"
            f"- Generate {self.min_cases}-{self.max_cases} comprehensive test cases\n"
            "- Each test case should cover a different scenario\n"
            "- Steps should be clear and actionable\n"
            "- Expected results should be specific and verifiable\n"
            "- Include relevant tags for categorization",
        ]
        return "\n\n".join(parts) + "\n"

    def generate_batch_prompt(self, tasks: list[TaskPromptData]) -> str:
        if not tasks:
            raise ValueError("Cannot build a batch prompt without tasks")

        sections = []
        for index, data in enumerate(tasks, 1):
            section = [
                f"### Task {index}: {data.task.id}",
                *_task_details(data.task, data.category, short_labels=True),
                f"**Product Rules:**\n{data.rule_content.strip()}",
            ]
            sections.append("\n\n".join(section))

        example = {tasks[0].task.id: [_example(tasks[0].category)]}
        for data in tasks[1:]:
            example[data.task.id] = []
        keys = ", ".join(f'"{d.task.id}"' for d in tasks)

        parts = [
            "# Batch Test Case Generation Request",
            "Generate test cases for BrowserStack Test Management for "
            f"**{len(tasks)} tasks** below.",
            "## Tasks",
            "\n\n---\n\n".join(sections),
            "## Output Format",
            "Return **ONLY** valid JSON (no markdown, no code blocks, no explanation).",
            "The JSON must be an object where each key is a task ID and each value "
            "is an array of test cases:",
            "```json\n" + json.dumps(example, indent=2) + "\n```",
            "**Important:**\n"
            f"- Generate {self.min_cases}-{self.max_cases} comprehensive test cases per task\n"
            f"- Keys must be exact task IDs: {keys}\n"
            "- Each test case should cover a different scenario\n"
            "- Steps should be clear and actionable\n"
            "- Expected results should be specific and verifiable",
        ]
        return "\n\n".join(parts) + "\n"


class ArtifactStore:
    """Prompt and response files under ``<root>/prompts`` and ``<root>/responses``."""

    def __init__(self, root: str | Path = "output") -> None:
        self.root = Path(root)
        self.prompts_dir = self.root / "prompts"
        self.responses_dir = self.root / "responses"

    @staticmethod
    def _stamp() -> int:
        return int(time.time() * 1000)

    def save_prompt(self, prompt: str, task_id: Optional[str] = None) -> Path:
        self.prompts_dir.mkdir(parents=True, exist_ok=True)
        name = f"prompt-{task_id}-{self._stamp()}.md" if task_id else f"prompt-batch-{self._stamp()}.md"
        path = self.prompts_dir / name
        path.write_text(prompt, encoding="utf-8")
        logger.debug("Prompt saved to %s", path)
        return path

    def response_path(self, task_id: Optional[str] = None) -> Path:
        name = f"response-{task_id}.json" if task_id else f"response-batch-{self._stamp()}.json"
        return self.responses_dir / name

    def prepare_response(self, task_id: Optional[str] = None) -> Path:
        """Create an empty placeholder for the responder to fill in."""
        self.responses_dir.mkdir(parents=True, exist_ok=True)
        path = self.response_path(task_id)
        path.write_text("", encoding="utf-8")
        return path

    def save_response(self, text: str, task_id: str) -> Path:
        """Persist a response submitted directly (HTTP flow)."""
        self.responses_dir.mkdir(parents=True, exist_ok=True)
        path = self.responses_dir / f"response-{task_id}-{self._stamp()}.json"
        path.write_text(text, encoding="utf-8")
        return path
