#!/usr/bin/env python3
"""
run.py – CLI entry-point for Sprint-TestGen.

Usage:
    python run.py --tasks PA-12345
    python run.py --tasks PA-1,PA-2 PA-3 --batch-size 2
    python run.py --sprint-id 42 --mode manual
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from assistant import build_responder
from config import Settings
from models import BatchSummary, Category, StepEvent, TaskRecord, is_task_id
from orchestrator import TOTAL_STEPS, Orchestrator, split_into_batches

console = Console()

# ── Logging ─────────────────────────────────────────────────────────────

def _configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, markup=True)],
    )


# ── Argument helpers ────────────────────────────────────────────────────

def parse_task_ids(values: list[str]) -> list[str]:
    """Flatten space- and comma-separated IDs, keeping first occurrence order."""
    ids: list[str] = []
    for value in values:
        for part in re.split(r"[,\s]+", value):
            part = part.strip().upper()
            if part and part not in ids:
                ids.append(part)
    return ids


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")
    return number


# ── Pretty output helpers ──────────────────────────────────────────────

_STATUS_STYLE = {
    "in-progress": "[yellow]…[/]",
    "completed": "[green]✓[/]",
    "failed": "[red]✗[/]",
    "skipped": "[dim]↷[/]",
    "pending": "[dim]·[/]",
}


def _show_step(event: StepEvent) -> None:
    icon = _STATUS_STYLE.get(event.status, "")
    console.print(
        f"  {icon} [dim]{event.task_id}[/]  Step {event.step}/{event.total}: {event.message}"
    )


def _choose_category(task: TaskRecord, options: list[Category]) -> Optional[Category]:
    console.print(
        Panel(
            f"[bold cyan]{task.title}[/]\n\n"
            "No analytics keyword found in the title. Pick a category or skip.",
            title=f"Task {task.id}",
            border_style="yellow",
        )
    )
    choices = [c.value for c in options] + ["skip"]
    answer = Prompt.ask("Analytics type", choices=choices, default=Category.OTHER.value)
    return None if answer == "skip" else Category(answer)


def _wait_for_operator(prompt_path: Path, response_path: Path) -> None:
    console.print(
        Panel(
            "1. Open the prompt file:\n"
            f"   [cyan]{prompt_path}[/]\n"
            "2. Copy the entire content into Claude\n"
            "3. Copy the JSON response from Claude\n"
            "4. Save it as:\n"
            f"   [cyan]{response_path}[/]",
            title="⏸  Manual step required",
            border_style="cyan",
        )
    )
    console.input("[yellow]Press Enter when you have saved the response file...[/]")


def _show_sprint(sprint_id: str, tasks: list[tuple[str, str]]) -> None:
    table = Table(title=f"Sprint {sprint_id}", show_lines=False)
    table.add_column("#", style="dim", width=4)
    table.add_column("Task", style="bold", width=12)
    table.add_column("Title")
    for i, (key, title) in enumerate(tasks, 1):
        table.add_row(str(i), key, title)
    console.print(table)


def _show_results(summary: BatchSummary) -> None:
    table = Table(title="Tasks", show_lines=True)
    table.add_column("Task", style="bold", width=12)
    table.add_column("Type", width=10)
    table.add_column("Folder")
    table.add_column("Created", width=8, justify="right")
    table.add_column("Failed", width=8, justify="right")
    table.add_column("Status", width=10)
    for r in summary.results:
        status = "[dim]skipped[/]" if r.skipped else ("[green]ok[/]" if r.success else "[red]failed[/]")
        table.add_row(
            r.task_id,
            r.category.value if r.category else "—",
            r.folder_name or "—",
            str(r.created_count),
            str(r.failed_count),
            status,
        )
    console.print(table)

    total = summary.total
    console.print(
        Panel(
            f"[green bold]Successful:[/]  {summary.processed}/{total}\n"
            f"[red bold]Failed:[/]      {summary.failed}/{total}\n"
            f"[dim]Skipped:[/]     {summary.skipped}\n"
            f"[blue bold]Test cases:[/]  {summary.cases_created} created, "
            f"{summary.cases_failed} failed",
            title="Run Summary",
            border_style="green" if summary.failed == 0 else "red",
        )
    )


# ── Core orchestration ─────────────────────────────────────────────────

def run(
    task_ids: list[str],
    batch_size: int,
    orchestrator: Orchestrator,
    interactive: bool = True,
) -> BatchSummary:
    """Process *task_ids*, one sub-batch at a time."""
    summary = BatchSummary()
    if len(task_ids) == 1:
        console.rule(f"[bold blue]Task {task_ids[0]}")
        summary.results.append(orchestrator.process_task(task_ids[0], interactive))
        return summary

    batches = split_into_batches(task_ids, batch_size)
    for index, batch in enumerate(batches, 1):
        console.rule(f"[bold blue]Batch {index}/{len(batches)} · {', '.join(batch)}")
        summary.extend(orchestrator.process_batch(batch, interactive))
        if interactive and index < len(batches):
            if not Confirm.ask(f"Continue with batch {index + 1}/{len(batches)}?", default=True):
                console.print("[yellow]Stopped before the remaining batches.[/]")
                break
    return summary


# ── CLI ─────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sprint-testgen",
        description="Generate BrowserStack test cases from Jira tasks with Claude.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--tasks",
        nargs="+",
        metavar="TASK",
        help="Jira task IDs, space- and/or comma-separated (e.g. PA-1,PA-2 PA-3).",
    )
    source.add_argument(
        "--sprint-id",
        help="Process every task in this Jira sprint.",
    )
    parser.add_argument(
        "--batch-size",
        type=_positive_int,
        default=Settings.AI_BATCH_SIZE,
        help=f"Tasks sharing one prompt (default {Settings.AI_BATCH_SIZE}).",
    )
    parser.add_argument(
        "--mode",
        choices=["auto", "claude_cli", "llm", "manual"],
        default=None,
        help="Responder mode (default: RESPONDER_MODE or auto).",
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        default=False,
        help="Never prompt; unmatched titles use the default type ('other' in batches).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug-level logging.",
    )
    args = parser.parse_args()

    _configure_logging(args.verbose)

    console.print(
        Panel(
            "[bold white]Sprint-TestGen[/]  –  Jira → Claude → BrowserStack",
            border_style="bright_magenta",
        )
    )

    if args.mode:
        Settings.RESPONDER_MODE = args.mode
    Settings.validate()
    interactive = not args.non_interactive

    try:
        responder = build_responder(args.mode, signal=_wait_for_operator if interactive else None)
        console.print(f"  [dim]Responder:[/] {responder.status_message()}\n")
        orchestrator = Orchestrator.from_settings(
            responder=responder,
            listener=_show_step,
            chooser=_choose_category if interactive else None,
        )

        if args.sprint_id:
            sprint_tasks = orchestrator.jira.get_sprint_tasks(args.sprint_id)
            if not sprint_tasks:
                console.print(f"[yellow]Sprint {args.sprint_id} has no tasks.[/]")
                return
            _show_sprint(args.sprint_id, sprint_tasks)
            if interactive and not Confirm.ask(
                f"Process these {len(sprint_tasks)} tasks?", default=True
            ):
                console.print("[yellow]Cancelled.[/]")
                return
            task_ids = [key for key, _ in sprint_tasks]
        else:
            task_ids = parse_task_ids(args.tasks)
            invalid = [t for t in task_ids if not is_task_id(t)]
            if invalid:
                parser.error(f"invalid task ID(s): {', '.join(invalid)} (expected e.g. PA-12345)")

        console.print(
            f"  Processing [cyan]{len(task_ids)}[/] task(s), "
            f"{TOTAL_STEPS} steps each, batch size {args.batch_size}.\n"
        )
        summary = run(task_ids, args.batch_size, orchestrator, interactive)
        _show_results(summary)
    except KeyboardInterrupt:
        console.print("\n[red]Aborted by user.[/]")
        sys.exit(130)
    except Exception as exc:
        console.print(f"\n[red bold]Error:[/] {exc}")
        logging.getLogger("sprint-testgen").debug("Traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
