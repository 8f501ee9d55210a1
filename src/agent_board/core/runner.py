"""Runner: the operations handlers call, wired to one store, launcher and lock registry."""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from ..sandbox.container_launcher import ContainerLauncher
from ..sandbox.launcher import AgentLauncher
from ..store.locks import RepoLockRegistry
from ..store.task_store import FileTaskStore
from ..utils.error_handling import log_and_ignore, safe_call
from ..utils.rich_logging import TaskLogger
from ..workspace.worktree_manager import WorkspaceSetup, WorktreeManager, WorktreeSetupError
from . import instructions
from .board import BoardContextBuilder
from .commit_pipeline import CommitPipeline
from .config import RunnerConfig
from .sync import TaskSyncer
from .task import InvalidTransitionError, Task, TaskStatus
from .turn_executor import TurnExecutor, deadline_for

logger = logging.getLogger(__name__)

RESUME_PROMPT = "Continue working on the task from where you left off."

RUNNABLE_STATUSES = (TaskStatus.BACKLOG, TaskStatus.IN_PROGRESS)
RETRYABLE_STATUSES = (TaskStatus.FAILED, TaskStatus.DONE, TaskStatus.CANCELLED)
ARCHIVABLE_STATUSES = (TaskStatus.DONE, TaskStatus.CANCELLED)
# Committing is left to finish on its own; cancelling it could strand a half-merged repository
CANCELLABLE_STATUSES = (
    TaskStatus.BACKLOG,
    TaskStatus.IN_PROGRESS,
    TaskStatus.WAITING,
    TaskStatus.FAILED,
)


class Runner:
    """
    Task execution engine.

    One thread per started task; each task's turns run strictly in sequence.
    All repository-mutating work goes through ``repo_locks``.
    """

    def __init__(
        self,
        config: RunnerConfig,
        store: Optional[FileTaskStore] = None,
        launcher: Optional[AgentLauncher] = None,
    ):
        self.config = config
        self.store = store or FileTaskStore(config.data_dir)
        self.launcher = launcher or ContainerLauncher(
            config.sandbox.image,
            base_url=config.sandbox.base_url,
            env_file=config.sandbox.env_file,
            network=config.sandbox.network,
            container_prefix=config.sandbox.container_prefix,
        )
        self.repo_locks = RepoLockRegistry()
        self.worktrees = WorktreeManager(
            config.workspace.repositories, config.workspace.worktrees_dir,
        )
        self.board = BoardContextBuilder(self.store.list_tasks)
        self.executor = TurnExecutor(self.store, self.launcher, self.board, config)
        self.pipeline = CommitPipeline(
            self.store, self.worktrees, self.repo_locks, self.executor, config,
        )
        self.syncer = TaskSyncer(self.store, self.pipeline, self.repo_locks)

        self._threads: Dict[str, threading.Thread] = {}
        self._threads_guard = threading.Lock()

    # -- workspaces -----------------------------------------------------------

    def setup(self, task_id: str) -> WorkspaceSetup:
        """Create (or reuse) the task's worktrees and record them on the task."""
        result = self.worktrees.setup(task_id)
        self.store.update_worktrees(
            task_id, result.worktree_paths, result.branch_name, result.worktree_kinds,
        )
        return result

    def cleanup(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        self.worktrees.cleanup(
            task_id, task.worktree_paths, task.branch_name or task.expected_branch, task.worktree_kinds,
        )
        return self.store.clear_worktrees(task_id)

    def prune_orphans(self) -> List[str]:
        """Startup housekeeping; failures are logged, never raised."""
        return safe_call(
            lambda: self.worktrees.prune_orphans(self.store.task_ids()),
            default=[],
            error_message="Failed to prune orphaned worktrees",
            logger_instance=logger,
        )

    def instructions_file(self) -> Optional[Path]:
        return self.executor.instructions_file()

    def reinit_instructions(self) -> Path:
        """Regenerate the instructions file, dropping any edits made to it."""
        if self.config.sandbox.instructions_path is not None:
            raise ValueError(
                f"sandbox.instructions_path is set to {self.config.sandbox.instructions_path}; edit that file instead"
            )
        return instructions.reinit_instructions(self.config.data_dir, self.config.workspace.repositories)

    # -- execution ------------------------------------------------------------

    def run(self, task_id: str, prompt: Optional[str] = None) -> Task:
        """Run a task to its next resting state: waiting, done, failed or cancelled.

        Covers setup, the turn loop and, when the agent finishes, the commit
        pipeline, all within the task's wall-clock budget.
        """
        task = self.store.get_task(task_id)
        if task.status not in RUNNABLE_STATUSES:
            raise InvalidTransitionError(task_id, task.status, "run")

        log = TaskLogger(logger, task_id)
        deadline = deadline_for(task)
        self.store.update_status(task_id, TaskStatus.IN_PROGRESS)

        try:
            self.setup(task_id)
        except WorktreeSetupError as e:
            log.error(str(e))
            return self.store.fail_task(task_id, str(e))

        task = self.executor.run(task_id, prompt=prompt, deadline=deadline)
        if task.status == TaskStatus.COMMITTING:
            task = self.pipeline.commit(task_id, deadline=deadline)
        log.info(f"Task is now {TaskStatus(task.status).value}")
        return task

    def start(self, task_id: str, prompt: Optional[str] = None) -> threading.Thread:
        """Run the task on its own thread. A task never has two runs in flight."""
        with self._threads_guard:
            existing = self._threads.get(task_id)
            if existing is not None and existing.is_alive():
                raise InvalidTransitionError(task_id, "running", "start")
            thread = threading.Thread(
                target=self._run_guarded,
                args=(task_id, prompt),
                name=f"task-{task_id[:8]}",
                daemon=True,
            )
            self._threads[task_id] = thread
        thread.start()
        return thread

    def _run_guarded(self, task_id: str, prompt: Optional[str]) -> None:
        try:
            self.run(task_id, prompt)
        except Exception as e:
            logger.exception(f"Task {task_id[:8]} crashed")
            self.store.fail_task(task_id, f"internal error: {e}")
        finally:
            with self._threads_guard:
                if self._threads.get(task_id) is threading.current_thread():
                    del self._threads[task_id]

    def wait(self, task_id: str, timeout: Optional[float] = None) -> None:
        with self._threads_guard:
            thread = self._threads.get(task_id)
        if thread is not None:
            thread.join(timeout)

    def commit(self, task_id: str) -> Task:
        return self.pipeline.commit(task_id)

    def sync(self, task_id: str) -> Task:
        return self.syncer.sync(task_id)

    # -- lifecycle ------------------------------------------------------------

    def submit_feedback(self, task_id: str, message: str, background: bool = True):
        """Answer a waiting task and run its next turn on the same session."""
        self._require(task_id, (TaskStatus.WAITING,), "send feedback to")
        self.store.update_status(task_id, TaskStatus.IN_PROGRESS)
        if background:
            return self.start(task_id, prompt=message)
        return self.run(task_id, prompt=message)

    def resume(self, task_id: str, background: bool = True):
        """Pick a failed task back up on its existing session."""
        self._require(task_id, (TaskStatus.FAILED,), "resume")
        self.store.update_status(task_id, TaskStatus.IN_PROGRESS)
        if background:
            return self.start(task_id, prompt=RESUME_PROMPT)
        return self.run(task_id, prompt=RESUME_PROMPT)

    def retry(self, task_id: str, keep_worktrees: bool = False) -> Task:
        """Send a finished task back to backlog with a fresh session."""
        self._require(task_id, RETRYABLE_STATUSES, "retry")
        if not keep_worktrees:
            self.cleanup(task_id)
        return self.store.update_task(task_id, lambda task: task.reset_for_retry())

    def cancel(self, task_id: str) -> Task:
        self._require(task_id, CANCELLABLE_STATUSES, "cancel")
        self.store.update_status(task_id, TaskStatus.CANCELLED)
        self.kill(task_id)
        return self.cleanup(task_id)

    def archive(self, task_id: str) -> Task:
        self._require(task_id, ARCHIVABLE_STATUSES, "archive")
        self.cleanup(task_id)
        return self.store.update_status(task_id, TaskStatus.ARCHIVED)

    def kill(self, task_id: str) -> None:
        """Stop the task's agent container if one is running. Never raises."""
        try:
            self.launcher.kill(self.executor.container_name(task_id))
        except Exception as e:
            log_and_ignore(e, f"Failed to kill agent for task {task_id[:8]}", logger_instance=logger)

    def _require(self, task_id: str, allowed, operation: str) -> Task:
        task = self.store.get_task(task_id)
        if task.status not in allowed:
            raise InvalidTransitionError(task_id, task.status, operation)
        return task
