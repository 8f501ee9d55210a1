"""Per-task isolated working copies of every configured repository.

Git repositories get a git worktree on the task branch; plain directories get
a snapshot copy (see ``snapshot.py``). Everything for one task lives under
``<worktrees_dir>/<task id>/<repository name>``, so removing that directory
is always enough to drop a task's copies.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..core import git_operations
from ..core.task import WorkspaceKind, branch_name_for
from ..utils.error_handling import log_and_ignore
from ..utils.validators import validate_task_id
from .snapshot import SnapshotManager

logger = logging.getLogger(__name__)


class WorktreeSetupError(Exception):
    """An isolated copy could not be created; partial copies were removed."""

    def __init__(self, task_id: str, repo: Path, cause: Exception):
        self.task_id = task_id
        self.repo = Path(repo)
        self.cause = cause
        super().__init__(f"failed to set up workspace for {self.repo}: {cause}")


@dataclass
class WorkspaceSetup:
    """Result of ``WorktreeManager.setup``: where each repository's copy lives."""
    branch_name: str
    worktree_paths: Dict[str, str] = field(default_factory=dict)
    worktree_kinds: Dict[str, WorkspaceKind] = field(default_factory=dict)


class WorktreeManager:
    """Creates, reuses and destroys one isolated copy per (task, repository)."""

    def __init__(
        self,
        repositories: Iterable[Path],
        worktrees_dir: Path,
        snapshots: Optional[SnapshotManager] = None,
    ):
        self.repositories: List[Path] = [Path(r) for r in repositories]
        self.worktrees_dir = Path(worktrees_dir)
        self.snapshots = snapshots or SnapshotManager()
        self.worktrees_dir.mkdir(parents=True, exist_ok=True)

    def task_dir(self, task_id: str) -> Path:
        return self.worktrees_dir / validate_task_id(task_id)

    def worktree_path(self, task_id: str, repo: Path) -> Path:
        return self.task_dir(task_id) / Path(repo).name

    def kind_of(self, repo: Path) -> WorkspaceKind:
        return WorkspaceKind.GIT if git_operations.is_git_repo(repo) else WorkspaceKind.SNAPSHOT

    def setup(self, task_id: str) -> WorkspaceSetup:
        """Materialize a copy of every repository for task_id.

        Existing copies are reused, so calling this again for a waiting or
        resumed task is a no-op. If any repository fails, the copies created
        by this call are torn down before the error is raised.

        Raises:
            WorktreeSetupError: A copy could not be created
        """
        branch = branch_name_for(task_id)
        result = WorkspaceSetup(branch_name=branch)
        created: Dict[str, str] = {}

        for repo in self.repositories:
            path = self.worktree_path(task_id, repo)
            kind = self.kind_of(repo)
            result.worktree_paths[str(repo)] = str(path)
            result.worktree_kinds[str(repo)] = kind

            if path.exists():
                logger.debug(f"Reusing existing workspace copy {path}")
                continue

            try:
                if kind == WorkspaceKind.GIT:
                    git_operations.create_worktree(repo, path, branch)
                else:
                    self.snapshots.create_snapshot(repo, path)
            except Exception as e:
                logger.error(f"Workspace setup failed for {repo} (task {task_id[:8]}): {e}")
                created[str(repo)] = str(path)
                self._remove_copies(created, branch, result.worktree_kinds)
                raise WorktreeSetupError(task_id, repo, e) from e

            created[str(repo)] = str(path)

        return result

    def cleanup(
        self,
        task_id: str,
        worktree_paths: Dict[str, str],
        branch_name: Optional[str],
        worktree_kinds: Optional[Dict[str, WorkspaceKind]] = None,
    ) -> None:
        """Remove a task's copies and its branch. Never raises; safe to call twice."""
        self._remove_copies(worktree_paths, branch_name, worktree_kinds)

        task_dir = self.task_dir(task_id)
        if task_dir.exists():
            try:
                shutil.rmtree(task_dir)
            except OSError as e:
                log_and_ignore(e, f"Failed to remove {task_dir}", logger_instance=logger)
        logger.info(f"Cleaned up workspaces for task {task_id[:8]}")

    def _remove_copies(
        self,
        worktree_paths: Dict[str, str],
        branch_name: Optional[str],
        worktree_kinds: Optional[Dict[str, WorkspaceKind]] = None,
    ) -> None:
        kinds = worktree_kinds or {}
        for repo, path in worktree_paths.items():
            kind = kinds.get(repo) or self.kind_of(Path(repo))
            try:
                if kind == WorkspaceKind.GIT:
                    git_operations.remove_worktree(Path(repo), Path(path), branch_name)
                elif Path(path).exists():
                    shutil.rmtree(path)
            except Exception as e:
                log_and_ignore(e, f"Failed to remove workspace copy {path}", logger_instance=logger)

    def prune_orphans(self, known_task_ids: Iterable[str]) -> List[str]:
        """Delete task directories with no matching task, then prune git bookkeeping.

        Returns the names of the directories removed.
        """
        known = set(known_task_ids)
        removed = []
        for entry in sorted(self.worktrees_dir.iterdir()):
            if not entry.is_dir() or entry.name in known:
                continue
            try:
                shutil.rmtree(entry)
                removed.append(entry.name)
                logger.info(f"Pruned orphaned worktree directory {entry}")
            except OSError as e:
                log_and_ignore(e, f"Failed to prune {entry}", logger_instance=logger)

        for repo in self.repositories:
            if git_operations.is_git_repo(repo):
                git_operations.prune_worktrees(repo)
        return removed
