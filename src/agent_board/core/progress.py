"""Progress log appended to each repository root when a task finishes."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from .task import Task

PROGRESS_HEADER = (
    "# Progress Log\n\n"
    "Records of completed tasks, problems encountered, and lessons learned.\n"
)
NO_COMMIT = "(no commit)"


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_entry(
    task: Task,
    branch: Optional[str],
    commit: Optional[str],
    result_limit: int = 1000,
    now: Optional[datetime] = None,
) -> str:
    now = now or datetime.now(UTC)
    quoted_prompt = "\n".join(f"> {line}" for line in task.prompt.splitlines() or [""])
    result = truncate(task.result or "", result_limit)
    return (
        f"\n## Task: {task.short_id}\n\n"
        f"**Date**: {now.strftime('%Y-%m-%d %H:%M:%S UTC')}  \n"
        f"**Branch**: {branch or task.expected_branch}  \n"
        f"**Commit**: `{commit or NO_COMMIT}`\n\n"
        f"**Prompt**:\n{quoted_prompt}\n\n"
        f"**Result**:\n{result}\n\n"
        f"---\n"
    )


def append_progress(repo: Path, file_name: str, entry: str) -> Path:
    """Append entry to the log, writing the header first if the file is new."""
    path = Path(repo) / file_name
    is_new = not path.exists()
    with open(path, "a") as f:
        if is_new:
            f.write(PROGRESS_HEADER)
        f.write(entry)
    return path
