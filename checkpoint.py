"""
checkpoint.py – Wait for an external responder to signal completion.

The orchestrator only needs "block until ready or give up"; how readiness
is detected (a file appearing, a process exiting, an operator pressing
Enter) is the caller's predicate.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from errors import CheckpointTimeout

logger = logging.getLogger("sprint-testgen")


def wait_until(
    ready: Callable[[], bool],
    timeout: float | None,
    interval: float = 2.0,
    *,
    description: str = "external signal",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Poll *ready* every *interval* seconds until it returns True.

    ``timeout=None`` waits forever.  Raises :class:`CheckpointTimeout` once
    the deadline passes.
    """
    started = clock()
    while True:
        if ready():
            return
        if timeout is not None and clock() - started >= timeout:
            raise CheckpointTimeout(f"Timeout waiting for {description} after {timeout:g}s")
        sleep(interval)


def file_has_content(path: Path) -> bool:
    try:
        return path.is_file() and path.read_text(encoding="utf-8").strip() != ""
    except OSError:
        return False


def wait_for_file(
    path: str | Path,
    timeout: float | None = 300.0,
    interval: float = 2.0,
    *,
    require_content: bool = True,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Path:
    """Block until *path* exists (and, by default, is non-empty)."""
    target = Path(path)
    check = (lambda: file_has_content(target)) if require_content else target.exists
    logger.debug("Waiting for %s (timeout=%s)", target, timeout)
    wait_until(
        check,
        timeout,
        interval,
        description=f"file: {target}",
        sleep=sleep,
        clock=clock,
    )
    return target
