"""One integration contract for both kinds of task workspace.

The commit pipeline and sync only talk to ``TaskWorkspace``; whether the copy
is a git worktree or a snapshot is decided once at setup and recorded on the
task as its ``WorkspaceKind``.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from ..core import git_operations
from ..core.git_operations import RebaseConflictError
from ..core.task import WorkspaceKind
from ..safeguards.retry_handler import RetryHandler
from .snapshot import SnapshotManager

logger = logging.getLogger(__name__)

# Called between rebase attempts with the conflict and the failed attempt number
ConflictResolver = Callable[["GitWorkspace", RebaseConflictError, int], None]


class TaskWorkspace(ABC):
    """A task's isolated copy of one configured repository."""

    kind: WorkspaceKind

    def __init__(self, repo: Path, worktree: Path, branch: str):
        self.repo = Path(repo)
        self.worktree = Path(worktree)
        self.branch = branch

    @property
    def name(self) -> str:
        return self.repo.name

    def exists(self) -> bool:
        return self.worktree.exists()

    @abstractmethod
    def commit(self, message: str) -> bool:
        """Phase 1: stage and commit everything in the copy. False when there was nothing to commit."""

    @abstractmethod
    def integrate(self, resolver: Optional[ConflictResolver], retry: RetryHandler) -> Optional[str]:
        """Phase 2: bring the copy's changes into the repository.

        Returns the resulting commit hash on the default branch, or None when
        no commit was produced. Callers hold the repository lock.
        """

    @abstractmethod
    def record_progress(self, file_name: str, message: str) -> None:
        """Phase 3: commit the progress log at the repository root, if versioned."""

    @abstractmethod
    def sync(self, resolver: Optional[ConflictResolver], retry: RetryHandler) -> None:
        """Absorb upstream changes into the copy without integrating. Callers hold the lock."""


class GitWorkspace(TaskWorkspace):
    """A git worktree on the task branch."""

    kind = WorkspaceKind.GIT

    def __init__(self, repo: Path, worktree: Path, branch: str, default_branch: Optional[str] = None):
        super().__init__(repo, worktree, branch)
        self._default_branch_override = default_branch

    def default_branch(self) -> str:
        return git_operations.default_branch(self.repo, self._default_branch_override)

    def commit(self, message: str) -> bool:
        return git_operations.stage_and_commit(self.worktree, message)

    def _rebase(self, resolver: Optional[ConflictResolver], retry: RetryHandler, target: str) -> None:
        def attempt() -> None:
            # A resolver that gave up mid-rebase must not wedge the next attempt
            if git_operations.is_rebase_in_progress(self.worktree):
                git_operations.abort_rebase(self.worktree)
            git_operations.rebase_onto_default(self.repo, self.worktree, target)

        def resolve(error: Exception, attempt_number: int) -> None:
            if resolver is None:
                return
            try:
                resolver(self, error, attempt_number)
            except Exception:
                # The agent may have started its own rebase before its turn failed
                if git_operations.is_rebase_in_progress(self.worktree):
                    git_operations.abort_rebase(self.worktree)
                raise

        retry.run(attempt, resolve, description=f"rebase of {self.branch} onto {target} in {self.repo}")

    def integrate(self, resolver: Optional[ConflictResolver], retry: RetryHandler) -> Optional[str]:
        target = self.default_branch()
        if not git_operations.has_commits_ahead_of(self.worktree, target):
            logger.info(f"No commits on {self.branch} ahead of {target} in {self.repo}")
            return None

        self._rebase(resolver, retry, target)

        stashed = git_operations.stash_if_dirty(self.repo)
        try:
            git_operations.ff_merge(self.repo, self.branch, target)
        finally:
            if stashed:
                git_operations.stash_pop(self.repo)

        head = git_operations.commit_hash(self.repo, target)
        logger.info(f"Fast-forwarded {target} in {self.repo} to {head[:12]}")
        return head

    def record_progress(self, file_name: str, message: str) -> None:
        git_operations.commit_file(self.repo, file_name, message)

    def sync(self, resolver: Optional[ConflictResolver], retry: RetryHandler) -> None:
        git_operations.fetch(self.repo)
        target = self.default_branch()
        behind = git_operations.commits_behind(self.worktree, target)
        if behind == 0:
            logger.info(f"{self.branch} is up to date with {target} in {self.repo}")
            return
        logger.info(f"Rebasing {self.branch} onto {target} ({behind} commits behind)")
        # Idle tasks usually have uncommitted work, and rebase refuses a dirty tree
        stashed = git_operations.stash_if_dirty(self.worktree)
        try:
            self._rebase(resolver, retry, target)
        finally:
            if stashed:
                git_operations.stash_pop(self.worktree)


class SnapshotWorkspace(TaskWorkspace):
    """A tracked copy of a directory that is not a git repository."""

    kind = WorkspaceKind.SNAPSHOT

    def __init__(self, repo: Path, worktree: Path, branch: str, snapshots: Optional[SnapshotManager] = None):
        super().__init__(repo, worktree, branch)
        self.snapshots = snapshots or SnapshotManager()

    def commit(self, message: str) -> bool:
        return git_operations.stage_and_commit(self.worktree, message)

    def integrate(self, resolver: Optional[ConflictResolver], retry: RetryHandler) -> Optional[str]:
        self.snapshots.extract_changes(self.worktree, self.repo)
        return None

    def record_progress(self, file_name: str, message: str) -> None:
        # The original directory isn't versioned; the file on disk is the record
        return None

    def sync(self, resolver: Optional[ConflictResolver], retry: RetryHandler) -> None:
        logger.info(f"{self.repo} is not a git repository, nothing to sync")


def workspace_for(
    repo: Path,
    worktree: Path,
    branch: str,
    kind: Optional[WorkspaceKind] = None,
    default_branch: Optional[str] = None,
    snapshots: Optional[SnapshotManager] = None,
) -> TaskWorkspace:
    """Build the variant for a recorded workspace, detecting the kind for older records."""
    if kind is None:
        kind = WorkspaceKind.GIT if git_operations.is_git_repo(repo) else WorkspaceKind.SNAPSHOT
    if WorkspaceKind(kind) == WorkspaceKind.GIT:
        return GitWorkspace(repo, worktree, branch, default_branch=default_branch)
    return SnapshotWorkspace(repo, worktree, branch, snapshots=snapshots)
