"""Generated CLAUDE.md given to every agent working on a set of repositories.

One file per distinct set of configured repositories, stored under
``<data_dir>/instructions/<key>.md``. The file is written once from a
default template plus each repository's own CLAUDE.md; after that it
belongs to the user and is only rebuilt on an explicit reinit.
"""

import hashlib
import logging
from pathlib import Path
from typing import Iterable, List

from ..sandbox.launcher import BOARD_MOUNT, SIBLING_MOUNT_ROOT, WORKSPACE_ROOT
from ..utils.atomic_io import atomic_write_text

logger = logging.getLogger(__name__)

INSTRUCTIONS_DIRNAME = "instructions"
REPO_INSTRUCTIONS_FILE = "CLAUDE.md"
KEY_LENGTH = 16

DEFAULT_TEMPLATE = f"""# Workspace Instructions

This file provides guidance to the agent working on tasks in this workspace.

## General Notes

- You are running one agent-board task. Complete the task described in the prompt.
- Make focused, well-scoped changes. Prefer editing existing files over creating new ones.
- Only make changes that are requested or clearly necessary.
- Run the tests if there are any, to check your changes.
- Do not push, and do not switch away from the task branch.
- Do not add documentation files or README updates unless asked to.

## Board Context

A read-only board context is mounted at `{BOARD_MOUNT}/board.json`.
It lists every active task on the board with its prompt, status, result
and branch name. Your own task has `"is_self": true`.

Use it to avoid changes that conflict with sibling tasks, or to build on
finished work. Sibling worktrees that can be inspected are mounted
read-only under `{SIBLING_MOUNT_ROOT}/<short-id>/<repo>/`.
"""

WORKSPACE_LAYOUT_SECTION = f"""
## Workspace Layout

Repositories are mounted under `{WORKSPACE_ROOT}/<name>/`. **Every file you read,
write or create MUST be inside one of these directories.** Do not create files
or directories directly under `{WORKSPACE_ROOT}/`.

"""


def instructions_key(workspaces: Iterable[Path]) -> str:
    """Stable 16-hex-char key for a set of repositories, independent of their order."""
    joined = ":".join(sorted(str(w) for w in workspaces))
    return hashlib.sha256(joined.encode()).hexdigest()[:KEY_LENGTH]


def instructions_path(config_dir: Path, workspaces: Iterable[Path]) -> Path:
    return Path(config_dir) / INSTRUCTIONS_DIRNAME / f"{instructions_key(workspaces)}.md"


def build_content(workspaces: Iterable[Path]) -> str:
    """Default template, the workspace layout, then each repository's CLAUDE.md in order."""
    paths: List[Path] = [Path(w) for w in workspaces]
    parts = [DEFAULT_TEMPLATE, WORKSPACE_LAYOUT_SECTION]
    parts.extend(f"- `{WORKSPACE_ROOT}/{ws.name}/`\n" for ws in paths)
    parts.append("\n")

    for ws in paths:
        repo_file = ws / REPO_INSTRUCTIONS_FILE
        try:
            raw = repo_file.read_text()
        except OSError:
            continue
        parts.append(f"\n---\n\n## Instructions from `{ws.name}`\n\n")
        parts.append(raw)
        if raw and not raw.endswith("\n"):
            parts.append("\n")

    return "".join(parts)


def ensure_instructions(config_dir: Path, workspaces: Iterable[Path]) -> Path:
    """Create the instructions file if missing. An existing file is never touched."""
    workspaces = list(workspaces)
    path = instructions_path(config_dir, workspaces)
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_text(path, build_content(workspaces))
    logger.info(f"Created workspace instructions at {path}")
    return path


def reinit_instructions(config_dir: Path, workspaces: Iterable[Path]) -> Path:
    """Rebuild the instructions file from scratch, discarding any edits."""
    workspaces = list(workspaces)
    path = instructions_path(config_dir, workspaces)
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_text(path, build_content(workspaces))
    logger.info(f"Rebuilt workspace instructions at {path}")
    return path
