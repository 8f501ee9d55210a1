"""Console and file logging with per-task context."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


class TaskLogFormatter(logging.Formatter):
    """Plain formatter for log files, prefixing task and phase when present."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        return (
            f"{timestamp} {record.levelname:8s} {record.name}: "
            f"{_context_prefix(record)}{record.getMessage()}"
        )


class TaskContextFilter(logging.Filter):
    """Prepends task/phase context to the message for handlers that don't format it."""

    def filter(self, record: logging.LogRecord) -> bool:
        prefix = _context_prefix(record)
        if prefix and not getattr(record, "_context_applied", False):
            record.msg = f"{prefix}{record.msg}"
            record._context_applied = True
        return True


def _context_prefix(record: logging.LogRecord) -> str:
    if getattr(record, "_context_applied", False):
        return ""
    parts = []
    if getattr(record, "task_id", None):
        parts.append(f"[{record.task_id[:8]}]")
    if getattr(record, "phase", None):
        parts.append(f"[{record.phase}]")
    return " ".join(parts) + " " if parts else ""


class TaskLogger(logging.LoggerAdapter):
    """Logger adapter that stamps every record with a task id and current phase."""

    def __init__(self, logger: logging.Logger, task_id: str, phase: Optional[str] = None):
        super().__init__(logger, {})
        self.task_id = task_id
        self.phase = phase

    def with_phase(self, phase: str) -> "TaskLogger":
        return TaskLogger(self.logger, self.task_id, phase)

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["task_id"] = self.task_id
        if self.phase:
            extra["phase"] = self.phase
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Configure the ``agent_board`` logger hierarchy.

    Console output goes through rich; an optional log file receives plain
    lines without markup. Safe to call repeatedly: existing handlers are
    closed and replaced.
    """
    root = logging.getLogger("agent_board")
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    console_handler.addFilter(TaskContextFilter())
    root.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(TaskLogFormatter())
        root.addHandler(file_handler)

    root.propagate = False
    return root
