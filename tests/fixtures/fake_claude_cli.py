"""Stand-in for the ``claude`` CLI: reads the prompt on stdin, prints JSON.

Behaviour is steered through the prompt text:
  FAIL_AUTH   → prints "Invalid API key" and exits 1
  FAIL_EMPTY  → prints nothing
  ANTHROPIC_API_KEY set → exits 3
  batch prompt ("### Task N: <id>" headings) → object keyed by task ID
  otherwise   → array with one case named after the "**Task ID:**"
"""

from __future__ import annotations

import json
import os
import re
import sys


def _case(task_id: str) -> dict:
    return {
        "name": f"Generated case for {task_id}",
        "description": "Generated by the fake CLI",
        "test_case_steps": [{"step": "Open the page", "result": "Page loads"}],
        "tags": ["fake"],
    }


def main() -> int:
    prompt = sys.stdin.read()
    if "--tools" not in sys.argv[1:] or "-p" not in sys.argv[1:]:
        print("unexpected arguments", file=sys.stderr)
        return 2
    if "FAIL_AUTH" in prompt:
        print("Invalid API key · Please run /login")
        return 1
    if "FAIL_EMPTY" in prompt:
        return 0
    if "ANTHROPIC_API_KEY" in os.environ:
        print("ANTHROPIC_API_KEY leaked into the CLI environment", file=sys.stderr)
        return 3

    batch_ids = re.findall(r"^### Task \d+: (\S+)$", prompt, re.MULTILINE)
    if batch_ids:
        body = {task_id: [_case(task_id)] for task_id in batch_ids}
    else:
        single = re.findall(r"\*\*Task ID:\*\* (\S+)", prompt) or ["UNKNOWN"]
        body = [_case(single[0])]

    print("Here are the test cases:")
    print("```json")
    print(json.dumps(body, indent=2))
    print("```")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
