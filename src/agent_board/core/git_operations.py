"""Stateless git primitives used by the worktree manager and the commit pipeline.

Every function shells out to the ``git`` binary through ``run_git_command``;
nothing here holds state or locks. Callers that move a repository's default
branch (rebase + fast-forward, sync) hold the repository lock themselves.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..utils.subprocess_utils import SubprocessError, get_command_output, run_git_command
from ..utils.validators import validate_branch_name

logger = logging.getLogger(__name__)

FALLBACK_DEFAULT_BRANCH = "main"

# Rebases and merges can touch many files; queries stay on the 30s default
LONG_GIT_TIMEOUT = 300


class RebaseConflictError(Exception):
    """A rebase stopped on conflicts and was aborted."""

    def __init__(self, repo: Path, output: str):
        self.repo = Path(repo)
        self.output = output
        super().__init__(f"rebase conflict in {self.repo}")


@dataclass
class WorkspaceStatus:
    """Branch position of a checkout relative to its upstream and the default branch."""
    path: str
    is_git: bool
    branch: Optional[str] = None
    has_remote: bool = False
    ahead: int = 0
    behind: int = 0
    main_branch: Optional[str] = None
    behind_main: int = 0


def is_git_repo(path: Path) -> bool:
    """True if path is inside a git work tree."""
    path = Path(path)
    if not path.is_dir():
        return False
    result = run_git_command(
        ["rev-parse", "--is-inside-work-tree"], cwd=path, check=False, timeout=10,
    )
    return result.returncode == 0 and result.stdout.strip() == "true"


def is_conflict_output(output: str) -> bool:
    """Detect rebase/merge conflicts from git's combined output."""
    if not output:
        return False
    # Covers "CONFLICT (content): ..." and "Merge conflict in ..."
    return "conflict" in output.lower()


def current_branch(path: Path) -> Optional[str]:
    """Checked-out branch name, or None when detached or unreadable."""
    result = run_git_command(["branch", "--show-current"], cwd=path, check=False, timeout=10)
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def remote_default_branch(repo: Path) -> Optional[str]:
    """Branch that ``origin/HEAD`` points at, without the ``origin/`` prefix."""
    result = run_git_command(
        ["symbolic-ref", "--short", "refs/remotes/origin/HEAD"],
        cwd=repo, check=False, timeout=10,
    )
    if result.returncode != 0:
        return None
    ref = result.stdout.strip()
    if ref.startswith("origin/"):
        ref = ref[len("origin/"):]
    return ref or None


def default_branch(repo: Path, override: Optional[str] = None) -> str:
    """Resolve the branch tasks integrate into.

    Order: explicit override, the repository's checked-out branch,
    ``origin/HEAD``, then ``main``.
    """
    if override:
        return override
    return current_branch(repo) or remote_default_branch(repo) or FALLBACK_DEFAULT_BRANCH


def commit_hash(path: Path, ref: str = "HEAD") -> str:
    return get_command_output(["git", "rev-parse", ref], cwd=path, timeout=10)


def commits_behind(path: Path, target: str) -> int:
    """Number of commits on target that HEAD does not have."""
    result = run_git_command(
        ["rev-list", "--count", f"HEAD..{target}"], cwd=path, check=False, timeout=30,
    )
    if result.returncode != 0:
        return 0
    return int(result.stdout.strip() or 0)


def has_commits_ahead_of(path: Path, base: str) -> bool:
    """True if HEAD has commits that base does not."""
    result = run_git_command(
        ["rev-list", "--count", f"{base}..HEAD"], cwd=path, check=False, timeout=30,
    )
    if result.returncode != 0:
        return False
    return int(result.stdout.strip() or 0) > 0


def merge_base(path: Path, a: str, b: str) -> Optional[str]:
    result = run_git_command(["merge-base", a, b], cwd=path, check=False, timeout=30)
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def has_changes(path: Path) -> bool:
    """True if the working tree has staged, unstaged or untracked changes."""
    result = run_git_command(["status", "--porcelain"], cwd=path, timeout=30)
    return bool(result.stdout.strip())


def stage_and_commit(path: Path, message: str) -> bool:
    """Stage everything and commit. Returns False (no commit) when there is nothing to commit."""
    if not has_changes(path):
        return False
    run_git_command(["add", "-A"], cwd=path, timeout=60)
    run_git_command(["commit", "-m", message], cwd=path, timeout=60)
    logger.info(f"Committed changes in {path}: {message}")
    return True


def commit_file(path: Path, file_name: str, message: str) -> None:
    """Commit a single file, leaving anything else staged in the checkout untouched."""
    run_git_command(["add", "--", file_name], cwd=path, timeout=30)
    run_git_command(["commit", "-m", message, "--", file_name], cwd=path, timeout=60)


# -- worktrees ----------------------------------------------------------------

def create_worktree(repo: Path, worktree_path: Path, branch: str) -> None:
    """Create worktree_path checked out on a new branch forked from the repo's HEAD.

    If the branch survives from an earlier run, it is checked out as-is.
    """
    validate_branch_name(branch)
    worktree_path = Path(worktree_path)
    worktree_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        run_git_command(
            ["worktree", "add", "-b", branch, str(worktree_path)],
            cwd=repo, timeout=LONG_GIT_TIMEOUT,
        )
    except SubprocessError as e:
        if "already exists" not in e.output:
            raise
        logger.info(f"Branch {branch} already exists in {repo}, reusing it")
        run_git_command(
            ["worktree", "add", str(worktree_path), branch],
            cwd=repo, timeout=LONG_GIT_TIMEOUT,
        )
    logger.info(f"Created worktree {worktree_path} on {branch}")


def remove_worktree(repo: Path, worktree_path: Path, branch: Optional[str]) -> None:
    """Remove a worktree and delete its branch. Each step only warns on failure."""
    worktree_path = Path(worktree_path)
    result = run_git_command(
        ["worktree", "remove", "--force", str(worktree_path)],
        cwd=repo, check=False, timeout=LONG_GIT_TIMEOUT,
    )
    if result.returncode != 0:
        logger.warning(f"git worktree remove failed for {worktree_path}: {result.stderr.strip()}")
        if worktree_path.exists():
            shutil.rmtree(worktree_path, ignore_errors=True)
        prune_worktrees(repo)

    if branch:
        result = run_git_command(["branch", "-D", branch], cwd=repo, check=False, timeout=30)
        if result.returncode != 0:
            logger.warning(f"Failed to delete branch {branch} in {repo}: {result.stderr.strip()}")


def prune_worktrees(repo: Path) -> None:
    """Drop stale worktree bookkeeping for directories that no longer exist."""
    result = run_git_command(["worktree", "prune"], cwd=repo, check=False, timeout=60)
    if result.returncode != 0:
        logger.warning(f"git worktree prune failed in {repo}: {result.stderr.strip()}")


# -- integration --------------------------------------------------------------

def rebase_onto_default(repo: Path, worktree_path: Path, target: str) -> None:
    """Rebase the worktree's branch onto target.

    A failed rebase is always aborted before returning, so the worktree is
    never left mid-rebase.

    Raises:
        RebaseConflictError: The rebase hit conflicts
        SubprocessError: Any other rebase failure
    """
    try:
        run_git_command(["rebase", target], cwd=worktree_path, timeout=LONG_GIT_TIMEOUT)
    except SubprocessError as e:
        abort_rebase(worktree_path)
        if is_conflict_output(e.output):
            raise RebaseConflictError(repo, e.output) from e
        raise


def abort_rebase(path: Path) -> None:
    """Abort a stopped rebase. Harmless when none is in progress."""
    result = run_git_command(["rebase", "--abort"], cwd=path, check=False, timeout=60)
    if result.returncode != 0:
        logger.debug(f"rebase --abort in {path}: {result.stderr.strip()}")


def ff_merge(repo: Path, branch: str, target: str) -> None:
    """Fast-forward target to branch in the main checkout. Never creates a merge commit."""
    if current_branch(repo) != target:
        run_git_command(["checkout", target], cwd=repo, timeout=LONG_GIT_TIMEOUT)
    run_git_command(["merge", "--ff-only", branch], cwd=repo, timeout=LONG_GIT_TIMEOUT)


def is_rebase_in_progress(path: Path) -> bool:
    """True if a rebase is stopped in this checkout (worktrees have their own git dir)."""
    result = run_git_command(["rev-parse", "--git-dir"], cwd=path, check=False, timeout=10)
    if result.returncode != 0:
        return False
    git_dir = Path(result.stdout.strip())
    if not git_dir.is_absolute():
        git_dir = Path(path) / git_dir
    return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()


def stash_if_dirty(repo: Path) -> bool:
    """Stash local changes (untracked included). Returns True if a stash was created."""
    if not has_changes(repo):
        return False
    result = run_git_command(
        ["stash", "push", "--include-untracked", "-m", "agent-board: auto-stash before merge"],
        cwd=repo, check=False, timeout=60,
    )
    if result.returncode != 0:
        logger.warning(f"Failed to stash changes in {repo}: {result.stderr.strip()}")
        return False
    return True


def stash_pop(repo: Path) -> None:
    """Restore the most recent stash. Failure is logged; the stash stays in the list."""
    result = run_git_command(["stash", "pop"], cwd=repo, check=False, timeout=60)
    if result.returncode != 0:
        logger.warning(
            f"Failed to restore stashed changes in {repo} (left in stash list): "
            f"{result.stderr.strip()}"
        )


def has_remote(path: Path) -> bool:
    result = run_git_command(["remote"], cwd=path, check=False, timeout=10)
    return result.returncode == 0 and bool(result.stdout.strip())


def fetch(repo: Path) -> None:
    """Fetch from origin. No-op without a remote; failure only warns."""
    if not has_remote(repo):
        return
    result = run_git_command(["fetch", "--prune", "origin"], cwd=repo, check=False, timeout=120)
    if result.returncode != 0:
        logger.warning(f"git fetch failed in {repo}: {result.stderr.strip()}")


def workspace_status(path: Path, main_branch: Optional[str] = None) -> WorkspaceStatus:
    """Branch, upstream ahead/behind counts and distance behind the default branch."""
    path = Path(path)
    if not is_git_repo(path):
        return WorkspaceStatus(path=str(path), is_git=False)

    status = WorkspaceStatus(path=str(path), is_git=True, branch=current_branch(path))
    status.has_remote = has_remote(path)

    if status.has_remote:
        counts = run_git_command(
            ["rev-list", "--left-right", "--count", "HEAD...@{u}"],
            cwd=path, check=False, timeout=30,
        )
        if counts.returncode == 0:
            parts = counts.stdout.split()
            if len(parts) == 2:
                status.ahead, status.behind = int(parts[0]), int(parts[1])

    status.main_branch = main_branch or remote_default_branch(path) or FALLBACK_DEFAULT_BRANCH
    if status.branch != status.main_branch:
        status.behind_main = commits_behind(path, status.main_branch)
    return status
