"""
error_logger.py – Append failures to a per-minute Markdown log.

Files land in ``ERROR_LOG_DIR/YYYY-MM-DD-HH-MM.md``; each entry is a
``## <Category> Error`` section with the task, the failing operation, the
message and the traceback.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from errors import ErrorKind, ServiceError

logger = logging.getLogger("sprint-testgen")

_CATEGORY_BY_KIND = {
    ErrorKind.AUTH: "API",
    ErrorKind.NOT_FOUND: "API",
    ErrorKind.RATE_LIMIT: "API",
    ErrorKind.CONFLICT: "API",
    ErrorKind.SERVER: "API",
    ErrorKind.ASSISTANT: "API",
    ErrorKind.VALIDATION: "Validation",
    ErrorKind.NETWORK: "Network",
    ErrorKind.TIMEOUT: "Network",
    ErrorKind.CONFIGURATION: "Configuration",
}


def categorize(exc: BaseException) -> str:
    if isinstance(exc, ServiceError) and exc.kind in _CATEGORY_BY_KIND:
        if exc.kind is ErrorKind.NOT_FOUND and "file" in str(exc).lower():
            return "File"
        return _CATEGORY_BY_KIND[exc.kind]
    if isinstance(exc, OSError):
        return "File"

    message = str(exc).lower()
    if any(s in message for s in ("authentication", "401", "403", "404", "429")):
        return "API"
    if any(s in message for s in ("enoent", "no such file", "file")):
        return "File"
    if any(s in message for s in ("validation", "missing required", "must be", "invalid json")):
        return "Validation"
    if any(s in message for s in ("network", "timeout", "econnrefused", "econnreset")):
        return "Network"
    return "Unknown"


class ErrorLogger:
    def __init__(
        self,
        directory: str | Path = "errors",
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.directory = Path(directory)
        self._now = now

    def log(
        self,
        exc: BaseException,
        operation: str,
        task_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Path:
        """Record *exc*; *message* overrides ``str(exc)`` when given."""
        stamp = self._now()
        details = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).strip()
        entry = [f"## {categorize(exc)} Error", "", f"**Time:** {stamp.isoformat()}"]
        if task_id:
            entry.append(f"**Task ID:** {task_id}")
        entry.append(f"**Operation:** {operation}")
        entry.append(f"**Message:** {message or exc}")
        if details:
            entry += ["", "**Details:**", "```", details, "```"]
        entry += ["", "---", ""]
        text = "\n".join(entry)

        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{stamp:%Y-%m-%d-%H-%M}.md"
        try:
            if path.exists():
                with path.open("a", encoding="utf-8") as fh:
                    fh.write("\n" + text)
            else:
                header = f"# Error Log - {stamp:%Y-%m-%d %H:%M:%S}\n\n"
                path.write_text(header + text, encoding="utf-8")
        except OSError as write_exc:
            logger.warning("Could not write error log %s: %s", path, write_exc)
        return path
