"""File-backed task store with per-task serialized updates and change notifications."""

import itertools
import json
import logging
import queue
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..core.task import Task, TaskStatus, TaskUsage, WorkspaceKind
from ..utils.atomic_io import atomic_write_model, atomic_write_text
from .locks import LockRegistry

logger = logging.getLogger(__name__)


class TaskNotFoundError(KeyError):
    """Raised when a task id has no record in the store."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class FileTaskStore:
    """
    Task records as JSON files under ``<data_dir>/tasks``.

    - Writes go through temp file + rename, so readers never see a torn record
    - Read-modify-write is serialized per task id
    - Every mutation signals each subscriber's queue without blocking
    - Raw agent output per turn is kept under ``<data_dir>/outputs/<task id>``
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.tasks_dir = self.data_dir / "tasks"
        self.outputs_dir = self.data_dir / "outputs"
        self.tasks_dir.mkdir(parents=True, exist_ok=True)
        self.outputs_dir.mkdir(parents=True, exist_ok=True)

        self._locks = LockRegistry()
        self._sub_guard = threading.Lock()
        self._subscribers: Dict[int, "queue.Queue[None]"] = {}
        self._sub_ids = itertools.count(1)

    def _task_file(self, task_id: str) -> Path:
        return self.tasks_dir / f"{task_id}.json"

    # -- reads ----------------------------------------------------------------

    def get_task(self, task_id: str) -> Task:
        task_file = self._task_file(task_id)
        try:
            return Task.model_validate_json(task_file.read_text())
        except FileNotFoundError:
            raise TaskNotFoundError(task_id) from None

    def list_tasks(self, include_archived: bool = False) -> List[Task]:
        """All tasks, oldest first. Unreadable records are skipped with a warning."""
        tasks = []
        for task_file in self.tasks_dir.glob("*.json"):
            try:
                task = Task.model_validate_json(task_file.read_text())
            except FileNotFoundError:
                continue
            except (ValidationError, json.JSONDecodeError, OSError) as e:
                logger.warning(f"Skipping unreadable task record {task_file.name}: {e}")
                continue
            if not include_archived and task.status == TaskStatus.ARCHIVED:
                continue
            tasks.append(task)
        tasks.sort(key=lambda t: t.created_at)
        return tasks

    def task_ids(self) -> List[str]:
        """Ids of every stored task, archived included."""
        return [p.stem for p in self.tasks_dir.glob("*.json")]

    # -- writes ---------------------------------------------------------------

    def create_task(self, prompt: str, timeout_minutes: int = 15) -> Task:
        task = Task(prompt=prompt, timeout_minutes=timeout_minutes)
        with self._locks.hold(task.id):
            atomic_write_model(self._task_file(task.id), task)
        logger.info(f"Created task {task.short_id}")
        self._notify()
        return task

    def update_task(self, task_id: str, mutator: Callable[[Task], None]) -> Task:
        """Apply mutator to the current record and persist it atomically."""
        with self._locks.hold(task_id):
            task = self.get_task(task_id)
            mutator(task)
            task.touch()
            atomic_write_model(self._task_file(task_id), task)
        self._notify()
        return task

    def update_status(self, task_id: str, status: TaskStatus) -> Task:
        def apply(task: Task) -> None:
            task.status = status
        logger.debug(f"Task {task_id[:8]} -> {TaskStatus(status).value}")
        return self.update_task(task_id, apply)

    def update_result(
        self,
        task_id: str,
        result: Optional[str],
        session_id: Optional[str] = None,
        stop_reason: Optional[str] = None,
    ) -> Task:
        """Record a turn's outcome. An empty session id never overwrites a known one."""
        def apply(task: Task) -> None:
            task.result = result
            task.stop_reason = stop_reason
            if session_id and not task.session_id:
                task.session_id = session_id
        return self.update_task(task_id, apply)

    def fail_task(self, task_id: str, cause: str) -> Task:
        logger.info(f"Task {task_id[:8]} failed: {cause}")
        return self.update_task(task_id, lambda task: task.mark_failed(cause))

    def record_turn(self, task_id: str, usage: Optional[TaskUsage] = None) -> Task:
        """Increment the turn counter and accumulate usage."""
        return self.update_task(task_id, lambda task: task.record_turn(usage))

    def accumulate_usage(self, task_id: str, delta: TaskUsage) -> Task:
        def apply(task: Task) -> None:
            task.usage = task.usage.add(delta)
        return self.update_task(task_id, apply)

    def update_worktrees(
        self,
        task_id: str,
        worktree_paths: Dict[str, str],
        branch_name: str,
        worktree_kinds: Optional[Dict[str, WorkspaceKind]] = None,
    ) -> Task:
        def apply(task: Task) -> None:
            task.worktree_paths = dict(worktree_paths)
            task.worktree_kinds = dict(worktree_kinds or {})
            task.branch_name = branch_name
        return self.update_task(task_id, apply)

    def clear_worktrees(self, task_id: str) -> Task:
        return self.update_task(task_id, lambda task: task.clear_worktrees())

    def delete_task(self, task_id: str) -> None:
        with self._locks.hold(task_id):
            self._task_file(task_id).unlink(missing_ok=True)
        self._notify()

    # -- traces ---------------------------------------------------------------

    def save_turn_output(self, task_id: str, turn: int, stdout: str, stderr: str = "") -> Path:
        """Keep a turn's raw agent output for diagnosis; returns the stdout file path."""
        out_dir = self.outputs_dir / task_id
        out_dir.mkdir(parents=True, exist_ok=True)
        stdout_file = out_dir / f"turn-{turn:04d}.json"
        atomic_write_text(stdout_file, stdout)
        if stderr:
            atomic_write_text(out_dir / f"turn-{turn:04d}.stderr.txt", stderr)
        return stdout_file

    # -- notifications --------------------------------------------------------

    def subscribe(self) -> Tuple[int, "queue.Queue[None]"]:
        """Register for change signals. At most one signal is pending per subscriber."""
        signals: "queue.Queue[None]" = queue.Queue(maxsize=1)
        with self._sub_guard:
            sub_id = next(self._sub_ids)
            self._subscribers[sub_id] = signals
        return sub_id, signals

    def unsubscribe(self, sub_id: int) -> None:
        with self._sub_guard:
            self._subscribers.pop(sub_id, None)

    def _notify(self) -> None:
        with self._sub_guard:
            subscribers = list(self._subscribers.values())
        for signals in subscribers:
            try:
                signals.put_nowait(None)
            except queue.Full:
                pass
