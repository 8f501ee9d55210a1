"""Reconcile a finished task's work into its repositories.

Four phases, entered from ``committing``:

1. Commit: stage and commit everything in each isolated copy
2. Integrate: under the repository lock, rebase onto the default branch and
   fast-forward it (git), or copy the snapshot back (non-git). Rebase
   conflicts go back to the agent on the task's own session, up to a fixed
   number of attempts
3. Progress log: append an entry at each repository root
4. Cleanup: remove the task's copies and branch

Only phases 1 and 2 can fail the task; phases 3 and 4 log and move on.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..safeguards.retry_handler import RetriesExhaustedError, RetryHandler
from ..sandbox.launcher import WORKSPACE_ROOT, AgentLaunchError
from ..sandbox.output import AgentOutputError
from ..store.locks import RepoLockRegistry
from ..store.task_store import FileTaskStore
from ..utils.error_handling import ErrorContext
from ..utils.rich_logging import TaskLogger
from ..utils.subprocess_utils import SubprocessError
from ..workspace.snapshot import SnapshotManager
from ..workspace.variants import GitWorkspace, TaskWorkspace, workspace_for
from ..workspace.worktree_manager import WorktreeManager
from .config import RunnerConfig
from .git_operations import RebaseConflictError
from .progress import append_progress, format_entry
from .task import InvalidTransitionError, Task, TaskStatus
from .turn_executor import TurnExecutor, TurnTimeoutError, deadline_for, remaining

logger = logging.getLogger(__name__)

AGENT_COMMIT_PROMPT = (
    "Your work on this task is complete. In every repository under "
    f"{WORKSPACE_ROOT}, stage and commit all of your changes on the current "
    "branch with a concise commit message. Do not push, rebase or switch branches."
)

# Failures that end the attempt and become the task's result text
PIPELINE_ERRORS = (
    SubprocessError,
    OSError,
    TurnTimeoutError,
    AgentLaunchError,
    AgentOutputError,
)


class ConflictResolver:
    """Asks the task's own agent session to resolve a rebase conflict."""

    def __init__(self, executor: TurnExecutor, task_id: str, deadline: float):
        self.executor = executor
        self.task_id = task_id
        self.deadline = deadline

    def prompt_for(self, workspace: GitWorkspace, error: RebaseConflictError, attempt: int) -> str:
        target = workspace.default_branch()
        return (
            f"Rebasing branch {workspace.branch} onto {target} failed with conflicts "
            f"(attempt {attempt}). The rebase was aborted, so the branch is unchanged.\n\n"
            f"Git output:\n{error.output}\n\n"
            f"In {WORKSPACE_ROOT}/{workspace.name}, run `git rebase {target}`, resolve every "
            "conflict while keeping the intent of both sides, stage the files and finish "
            "with `git rebase --continue`. Do not push."
        )

    def __call__(self, workspace: GitWorkspace, error: RebaseConflictError, attempt: int) -> None:
        session_id = self.executor.store.get_task(self.task_id).session_id
        log = TaskLogger(logger, self.task_id, phase="conflict")
        log.info(f"Asking agent to resolve conflicts in {workspace.repo} (attempt {attempt})")
        self.executor.invoke(
            self.task_id, self.prompt_for(workspace, error, attempt), session_id, self.deadline,
        )


class CommitPipeline:
    """Runs the four commit phases for tasks in ``committing``."""

    def __init__(
        self,
        store: FileTaskStore,
        worktrees: WorktreeManager,
        repo_locks: RepoLockRegistry,
        executor: TurnExecutor,
        config: RunnerConfig,
        snapshots: Optional[SnapshotManager] = None,
    ):
        self.store = store
        self.worktrees = worktrees
        self.repo_locks = repo_locks
        self.executor = executor
        self.config = config
        self.snapshots = snapshots or worktrees.snapshots

    def workspaces(self, task: Task) -> List[TaskWorkspace]:
        branch = task.branch_name or task.expected_branch
        return [
            workspace_for(
                Path(repo),
                Path(worktree),
                branch,
                kind=task.worktree_kinds.get(repo),
                default_branch=self.config.workspace.default_branch,
                snapshots=self.snapshots,
            )
            for repo, worktree in task.worktree_paths.items()
        ]

    def _retry(self) -> RetryHandler:
        return RetryHandler(
            max_attempts=self.config.task.max_rebase_attempts,
            recoverable=(RebaseConflictError,),
        )

    def commit_message(self, task: Task) -> str:
        summary = (task.prompt.strip().splitlines() or [""])[0][:60]
        return f"{self.config.task.commit_prefix}: {summary} (task {task.short_id})".strip()

    def commit(self, task_id: str, deadline: Optional[float] = None) -> Task:
        """Run all four phases. Returns the task as done or failed.

        Raises:
            InvalidTransitionError: The task is not in committing
        """
        task = self.store.get_task(task_id)
        if task.status != TaskStatus.COMMITTING:
            raise InvalidTransitionError(task_id, task.status, "commit")
        deadline = deadline if deadline is not None else deadline_for(task)
        log = TaskLogger(logger, task_id, phase="commit")
        workspaces = [ws for ws in self.workspaces(task) if ws.exists()]

        # Phase 1: commit inside each isolated copy
        try:
            self._commit_phase(task, workspaces, deadline, log)
        except PIPELINE_ERRORS as e:
            return self._fail(task_id, f"commit failed: {e}", log)

        # Phase 2: integrate, one repository lock at a time
        if remaining(deadline) <= 0:
            return self._fail(task_id, "task timeout exceeded before integration", log)

        resolver = ConflictResolver(self.executor, task_id, deadline)
        commits: Dict[str, Optional[str]] = {}
        for ws in workspaces:
            try:
                with self.repo_locks.hold(ws.repo):
                    commits[str(ws.repo)] = ws.integrate(resolver, self._retry())
            except RetriesExhaustedError as e:
                return self._fail(
                    task_id,
                    f"rebase conflicts in {ws.repo} not resolved after {e.attempts} attempts",
                    log,
                )
            except PIPELINE_ERRORS as e:
                return self._fail(task_id, f"integration failed for {ws.repo}: {e}", log)

        task = self.store.update_status(task_id, TaskStatus.DONE)
        log.info("Integrated into all repositories")

        # Phase 3: progress log, never fatal
        for ws in workspaces:
            with ErrorContext(
                f"progress log for {ws.repo}", raise_on_error=False, logger_instance=logger,
                log_level=logging.WARNING,
            ):
                self._record_progress(task, ws, commits.get(str(ws.repo)))

        # Phase 4: cleanup, never fatal
        self.worktrees.cleanup(task_id, task.worktree_paths, task.branch_name, task.worktree_kinds)
        return self.store.clear_worktrees(task_id)

    def _commit_phase(self, task: Task, workspaces: List[TaskWorkspace], deadline: float, log) -> None:
        if self.config.task.agent_commit and any(isinstance(ws, GitWorkspace) for ws in workspaces):
            try:
                self.executor.invoke(task.id, AGENT_COMMIT_PROMPT, task.session_id, deadline)
            except (TurnTimeoutError, AgentLaunchError, AgentOutputError) as e:
                log.warning(f"Agent commit turn failed, committing on the host instead: {e}")

        message = self.commit_message(task)
        for ws in workspaces:
            if ws.commit(message):
                log.info(f"Committed task changes in {ws.worktree}")
            else:
                log.info(f"No uncommitted changes in {ws.worktree}")

    def _record_progress(self, task: Task, ws: TaskWorkspace, commit: Optional[str]) -> None:
        file_name = self.config.workspace.progress_file
        entry = format_entry(
            task, ws.branch, commit, result_limit=self.config.task.result_truncate_chars,
        )
        with self.repo_locks.hold(ws.repo):
            append_progress(ws.repo, file_name, entry)
            ws.record_progress(
                file_name,
                f"{self.config.task.commit_prefix}: progress log for task {task.short_id}",
            )

    def _fail(self, task_id: str, cause: str, log) -> Task:
        log.error(cause)
        return self.store.fail_task(task_id, cause)
