"""Input validation for values that end up in git arguments or filesystem paths."""

import re

# Branch names: alphanumeric, dash, underscore, slash, dot (no leading dash)
_BRANCH_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9/_.\-]*$")

# Task ids become directory names under the worktree root
_TASK_ID_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_\-]*$")


def validate_branch_name(branch_name: str) -> str:
    """Validate a branch name before passing it to git.

    Raises:
        ValueError: If the name is empty, starts with '-', or contains '..'
    """
    if not branch_name or not _BRANCH_RE.match(branch_name) or ".." in branch_name:
        raise ValueError(f"Invalid branch name: {branch_name!r}")
    return branch_name


def validate_task_id(task_id: str) -> str:
    """Validate a task id used as a path component."""
    if not task_id or not _TASK_ID_RE.match(task_id):
        raise ValueError(f"Invalid task id: {task_id!r}")
    return task_id
