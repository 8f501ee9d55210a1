"""Worktree semantics for directories that are not git repositories.

A snapshot is a full copy of the workspace with a private git repository
initialized inside it, so commits and diffs work the same way as in a real
worktree. When the task finishes, the snapshot's files are copied back.
"""

import logging
import shutil
from pathlib import Path

from ..utils.subprocess_utils import check_command_exists, run_command, run_git_command

logger = logging.getLogger(__name__)

SNAPSHOT_USER_NAME = "agent-board"
SNAPSHOT_USER_EMAIL = "agent-board@localhost"
BASELINE_MESSAGE = "agent-board: initial snapshot"


class SnapshotManager:
    """Creates tracked snapshot copies and propagates their changes back."""

    def __init__(self, prefer_rsync: bool = True):
        self.prefer_rsync = prefer_rsync

    def create_snapshot(self, workspace: Path, target_path: Path) -> None:
        """Copy workspace (hidden files included) to target_path and commit a baseline.

        The baseline commit is created even when the workspace is empty.
        """
        workspace = Path(workspace)
        target_path = Path(target_path)
        target_path.parent.mkdir(parents=True, exist_ok=True)

        shutil.copytree(workspace, target_path, symlinks=True, dirs_exist_ok=True)

        run_git_command(["init", "-q"], cwd=target_path)
        run_git_command(["config", "user.email", SNAPSHOT_USER_EMAIL], cwd=target_path)
        run_git_command(["config", "user.name", SNAPSHOT_USER_NAME], cwd=target_path)
        run_git_command(["add", "-A"], cwd=target_path, timeout=120)
        run_git_command(
            ["commit", "-q", "--allow-empty", "-m", BASELINE_MESSAGE],
            cwd=target_path, timeout=120,
        )
        logger.info(f"Created snapshot of {workspace} at {target_path}")

    def extract_changes(self, snapshot_path: Path, target_path: Path) -> None:
        """Mirror the snapshot's current files back onto target_path.

        rsync with ``--checksum --delete`` propagates deletions and same-size
        edits. Without rsync, files are copied additively: deletions made in
        the snapshot are not propagated.
        """
        snapshot_path = Path(snapshot_path)
        target_path = Path(target_path)

        if self.prefer_rsync and check_command_exists("rsync"):
            run_command(
                [
                    "rsync", "-a", "--checksum", "--delete", "--exclude=.git",
                    f"{snapshot_path}/", f"{target_path}/",
                ],
                timeout=600,
            )
            logger.info(f"Extracted snapshot {snapshot_path} into {target_path} (rsync)")
            return

        logger.warning(
            f"rsync unavailable, copying {snapshot_path} additively; "
            "files deleted in the snapshot will remain in the workspace"
        )
        shutil.copytree(snapshot_path, target_path, symlinks=True, dirs_exist_ok=True)
        tracking_dir = target_path / ".git"
        if tracking_dir.exists():
            shutil.rmtree(tracking_dir)
        logger.info(f"Extracted snapshot {snapshot_path} into {target_path} (copy)")
