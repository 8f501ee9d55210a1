"""Board context: what every agent is told about the other tasks.

Each turn gets a fresh ``board.json`` listing all non-archived tasks, plus
read-only mounts of sibling worktrees that are safe to look at. Session ids
are never exposed, so one task's agent can't resume another task's session.
"""

import logging
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from ..sandbox.launcher import BOARD_MOUNT, SIBLING_MOUNT_ROOT, Mount
from .task import Task, TaskStatus, TaskUsage

logger = logging.getLogger(__name__)

BOARD_FILENAME = "board.json"


class BoardTask(BaseModel):
    """One task as seen by other agents."""

    id: str
    short_id: str
    prompt: str
    status: str
    is_self: bool = False
    turns: int = 0
    result: Optional[str] = None
    stop_reason: Optional[str] = None
    usage: TaskUsage = Field(default_factory=TaskUsage)
    branch_name: Optional[str] = None
    # Repository name -> where this task's worktree is mounted, when mountable
    worktree_mount: Optional[Dict[str, str]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BoardManifest(BaseModel):
    generated_at: datetime
    self_task_id: str
    tasks: List[BoardTask] = Field(default_factory=list)


def can_mount(status: str, worktree_paths: Dict[str, str]) -> bool:
    """Whether a task's worktrees may be mounted read-only into other agents.

    Waiting and failed tasks always qualify. Done tasks qualify only while a
    worktree directory still exists. Everything else is either not created
    yet, actively being written, or already cleaned up.
    """
    status = TaskStatus(status)
    if status in (TaskStatus.WAITING, TaskStatus.FAILED):
        return True
    if status == TaskStatus.DONE:
        return any(Path(p).exists() for p in worktree_paths.values())
    return False


def sibling_mount_path(short_id: str, repo: str) -> str:
    return f"{SIBLING_MOUNT_ROOT}/{short_id}/{Path(repo).name}"


class BoardContextBuilder:
    """Builds the manifest and sibling mounts from the current task listing."""

    def __init__(self, list_tasks):
        # Callable returning the non-archived tasks, e.g. FileTaskStore.list_tasks
        self._list_tasks = list_tasks

    def _tasks(self) -> List[Task]:
        return [t for t in self._list_tasks() if t.status != TaskStatus.ARCHIVED]

    def generate_manifest(self, self_task_id: str) -> bytes:
        manifest = BoardManifest(
            generated_at=datetime.now(UTC),
            self_task_id=self_task_id,
        )
        for task in self._tasks():
            is_self = task.id == self_task_id
            mount = None
            if not is_self and task.worktree_paths and can_mount(task.status, task.worktree_paths):
                mount = {
                    Path(repo).name: sibling_mount_path(task.short_id, repo)
                    for repo in task.worktree_paths
                }
            manifest.tasks.append(BoardTask(
                id=task.id,
                short_id=task.short_id,
                prompt=task.prompt,
                status=TaskStatus(task.status).value,
                is_self=is_self,
                turns=task.turns,
                result=task.result,
                stop_reason=task.stop_reason,
                usage=task.usage,
                branch_name=task.branch_name,
                worktree_mount=mount,
                created_at=task.created_at,
                updated_at=task.updated_at,
            ))
        return manifest.model_dump_json(indent=2).encode()

    def build_sibling_mounts(self, self_task_id: str) -> Optional[Dict[str, Dict[str, str]]]:
        """short id -> {repository root -> worktree path} for mountable siblings.

        Returns None, not an empty dict, when no sibling qualifies.
        """
        mounts: Dict[str, Dict[str, str]] = {}
        for task in self._tasks():
            if task.id == self_task_id or not task.worktree_paths:
                continue
            if not can_mount(task.status, task.worktree_paths):
                continue
            existing = {repo: path for repo, path in task.worktree_paths.items() if Path(path).exists()}
            if existing:
                mounts[task.short_id] = existing
        return mounts or None

    def prepare_board_dir(self, self_task_id: str) -> "BoardContext":
        """Write board.json into a fresh temp directory and collect the board mounts.

        Mount points for sibling worktrees are created inside the directory
        so the runtime can bind them under the read-only board mount.
        """
        board_dir = Path(tempfile.mkdtemp(prefix="agent-board-ctx-"))
        (board_dir / BOARD_FILENAME).write_bytes(self.generate_manifest(self_task_id))

        mounts = [Mount(source=board_dir, target=BOARD_MOUNT, read_only=True)]
        for short, repos in (self.build_sibling_mounts(self_task_id) or {}).items():
            for repo, worktree in repos.items():
                (board_dir / "worktrees" / short / Path(repo).name).mkdir(parents=True, exist_ok=True)
                mounts.append(Mount(
                    source=Path(worktree),
                    target=sibling_mount_path(short, repo),
                    read_only=True,
                ))
        return BoardContext(board_dir=board_dir, mounts=mounts)


class BoardContext:
    """A prepared board directory; remove it once the turn is over."""

    def __init__(self, board_dir: Path, mounts: Iterable[Mount]):
        self.board_dir = board_dir
        self.mounts = list(mounts)

    def __enter__(self) -> "BoardContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        shutil.rmtree(self.board_dir, ignore_errors=True)
