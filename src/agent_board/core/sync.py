"""Rebase an idle task's worktrees onto the latest default branch."""

import logging

from ..safeguards.retry_handler import RetriesExhaustedError, RetryHandler
from ..store.locks import RepoLockRegistry
from ..store.task_store import FileTaskStore
from ..utils.rich_logging import TaskLogger
from .commit_pipeline import PIPELINE_ERRORS, CommitPipeline, ConflictResolver
from .git_operations import RebaseConflictError
from .task import InvalidTransitionError, Task, TaskStatus
from .turn_executor import deadline_for

logger = logging.getLogger(__name__)

SYNCABLE_STATUSES = (TaskStatus.WAITING, TaskStatus.FAILED)


class TaskSyncer:
    """
    Lets a waiting or failed task absorb upstream progress before more work.

    The task is shown as in_progress while syncing, then returns to its prior
    status, or becomes failed if the rebase could not be completed. Uses the
    same repository locks and conflict policy as the commit pipeline.
    """

    def __init__(self, store: FileTaskStore, pipeline: CommitPipeline, repo_locks: RepoLockRegistry):
        self.store = store
        self.pipeline = pipeline
        self.repo_locks = repo_locks

    def sync(self, task_id: str) -> Task:
        """
        Raises:
            InvalidTransitionError: The task is not waiting or failed
        """
        task = self.store.get_task(task_id)
        if task.status not in SYNCABLE_STATUSES:
            raise InvalidTransitionError(task_id, task.status, "sync")

        prior_status = TaskStatus(task.status)
        log = TaskLogger(logger, task_id, phase="sync")
        self.store.update_status(task_id, TaskStatus.IN_PROGRESS)

        resolver = ConflictResolver(self.pipeline.executor, task_id, deadline_for(task))
        retry = RetryHandler(
            max_attempts=self.pipeline.config.task.max_rebase_attempts,
            recoverable=(RebaseConflictError,),
        )

        for ws in self.pipeline.workspaces(task):
            if not ws.exists():
                log.warning(f"Worktree {ws.worktree} is missing, skipping")
                continue
            try:
                with self.repo_locks.hold(ws.repo):
                    ws.sync(resolver, retry)
            except RetriesExhaustedError as e:
                return self._fail(
                    task_id, f"sync: rebase conflicts in {ws.repo} not resolved after {e.attempts} attempts", log,
                )
            except PIPELINE_ERRORS as e:
                return self._fail(task_id, f"sync failed for {ws.repo}: {e}", log)
            except Exception as e:
                # Nothing else will move the task out of in_progress
                self._fail(task_id, f"sync failed for {ws.repo}: internal error: {e}", log)
                raise

        log.info(f"Sync complete, back to {prior_status.value}")
        return self.store.update_status(task_id, prior_status)

    def _fail(self, task_id: str, cause: str, log) -> Task:
        log.error(cause)
        return self.store.fail_task(task_id, cause)
