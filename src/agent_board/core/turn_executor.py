"""The per-task turn loop: run the agent, read its result, decide the next state."""

import logging
import time
from pathlib import Path
from typing import List, Optional

from ..sandbox.launcher import (
    INSTRUCTIONS_MOUNT,
    WORKSPACE_ROOT,
    AgentInvocation,
    AgentLaunchError,
    AgentLauncher,
    Mount,
)
from ..sandbox.output import AgentOutput, AgentOutputError, parse_agent_output
from ..store.task_store import FileTaskStore
from ..utils.error_handling import safe_call
from ..utils.rich_logging import TaskLogger
from .board import BoardContextBuilder
from .config import RunnerConfig
from .instructions import ensure_instructions
from .task import CONTINUE_STOP_REASONS, StopReason, Task, TaskStatus, WorkspaceKind

logger = logging.getLogger(__name__)


class TurnTimeoutError(Exception):
    """The task's wall-clock budget ran out."""


class TurnLimitError(Exception):
    """The configured maximum number of turns was reached."""


def deadline_for(task: Task) -> float:
    """Monotonic deadline for a task's turn loop plus commit pipeline."""
    return time.monotonic() + task.timeout_minutes * 60


def remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())


class TurnExecutor:
    """
    Drives one task through agent turns until it needs a person or is finished.

    Per turn:
    - mount the task's worktrees writable, the board context and eligible
      sibling worktrees read-only
    - run the agent with whatever is left of the task's time budget
    - record the session id (first turn only), result, stop reason and usage
    - map the stop reason to the next status
    """

    def __init__(
        self,
        store: FileTaskStore,
        launcher: AgentLauncher,
        board: BoardContextBuilder,
        config: RunnerConfig,
    ):
        self.store = store
        self.launcher = launcher
        self.board = board
        self.config = config

    def container_name(self, task_id: str) -> str:
        return f"{self.config.sandbox.container_prefix}-{task_id}"

    def workspace_mounts(self, task: Task) -> List[Mount]:
        """The task's own copies (writable) plus what git worktrees need to resolve."""
        mounts = []
        for repo, worktree in task.worktree_paths.items():
            mounts.append(Mount(source=Path(worktree), target=f"{WORKSPACE_ROOT}/{Path(repo).name}"))
            if task.worktree_kinds.get(repo) == WorkspaceKind.GIT:
                # The worktree's .git file points at the main repo's git dir by absolute path
                git_dir = Path(repo) / ".git"
                mounts.append(Mount(source=git_dir, target=str(git_dir)))

        instructions = self.instructions_file()
        if instructions is not None:
            mounts.append(Mount(source=instructions, target=INSTRUCTIONS_MOUNT, read_only=True))
        return mounts

    def instructions_file(self) -> Optional[Path]:
        """The configured instructions file, else the one generated for these repositories."""
        configured = self.config.sandbox.instructions_path
        if configured is not None:
            return Path(configured) if Path(configured).exists() else None
        return safe_call(
            ensure_instructions,
            self.config.data_dir,
            self.config.workspace.repositories,
            error_message="Failed to prepare workspace instructions",
            logger_instance=logger,
        )

    def invoke(
        self,
        task_id: str,
        prompt: str,
        session_id: Optional[str],
        deadline: float,
    ) -> AgentOutput:
        """Run exactly one agent turn and count it.

        Raises:
            TurnTimeoutError: No budget left, or the agent ran past it
            AgentLaunchError: The agent could not be started
            AgentOutputError: The agent's output held no result
        """
        budget = remaining(deadline)
        if budget <= 0:
            raise TurnTimeoutError("task timeout exceeded")

        task = self.store.get_task(task_id)
        log = TaskLogger(logger, task_id, phase="turn")

        with self.board.prepare_board_dir(task_id) as context:
            invocation = AgentInvocation(
                name=self.container_name(task_id),
                prompt=prompt,
                session_id=session_id,
                mounts=self.workspace_mounts(task) + context.mounts,
                timeout_seconds=budget,
            )
            log.info(f"Starting turn {task.turns + 1}" + (" (resumed session)" if session_id else ""))
            launch = self.launcher.launch(invocation)

        self.store.save_turn_output(task_id, task.turns + 1, launch.stdout, launch.stderr)

        if launch.timed_out:
            self.store.record_turn(task_id)
            raise TurnTimeoutError(f"agent exceeded the task timeout after {launch.duration_seconds:.0f}s")

        try:
            output = parse_agent_output(launch.stdout)
        except AgentOutputError:
            self.store.record_turn(task_id)
            if launch.exit_code != 0:
                raise AgentOutputError(
                    f"agent exited with code {launch.exit_code}: {launch.stderr.strip()[-500:]}"
                )
            raise

        if launch.exit_code != 0:
            log.warning(f"Agent exited with code {launch.exit_code} but reported a result")

        self.store.record_turn(task_id, output.usage)
        return output

    def run(
        self,
        task_id: str,
        prompt: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> Task:
        """Run turns until the task is committing, waiting or failed.

        Args:
            task_id: Task to run; it should already be in_progress with worktrees
            prompt: First prompt to send (defaults to the task prompt)
            deadline: Monotonic deadline shared with the commit pipeline

        Returns:
            The task record after the loop ends
        """
        task = self.store.get_task(task_id)
        deadline = deadline if deadline is not None else deadline_for(task)
        next_prompt = task.prompt if prompt is None else prompt
        session_id = task.session_id
        max_turns = self.config.task.max_turns
        turns_run = 0
        log = TaskLogger(logger, task_id)

        while True:
            try:
                if max_turns is not None and turns_run >= max_turns:
                    raise TurnLimitError(f"reached the maximum of {max_turns} turns")
                output = self.invoke(task_id, next_prompt, session_id, deadline)
            except (TurnTimeoutError, TurnLimitError, AgentLaunchError, AgentOutputError) as e:
                current = self.store.get_task(task_id)
                if current.status == TaskStatus.CANCELLED:
                    log.info("Task was cancelled during its turn")
                    return current
                log.error(f"Turn failed: {e}")
                return self.store.fail_task(task_id, str(e))
            turns_run += 1

            current = self.store.get_task(task_id)
            if current.status == TaskStatus.CANCELLED:
                log.info("Task was cancelled during its turn")
                return current

            session_id = session_id or output.session_id
            self.store.update_result(
                task_id, output.result, session_id=output.session_id, stop_reason=output.stop_reason,
            )

            if output.is_error:
                log.error(f"Agent reported an error ({output.subtype})")
                return self.store.update_status(task_id, TaskStatus.FAILED)

            if output.stop_reason == StopReason.END_TURN.value:
                log.info("Agent finished, moving to commit")
                return self.store.update_status(task_id, TaskStatus.COMMITTING)

            if output.stop_reason in CONTINUE_STOP_REASONS:
                log.info(f"Agent paused ({output.stop_reason}), continuing")
                next_prompt = ""
                continue

            log.info("Agent is waiting for feedback")
            return self.store.update_status(task_id, TaskStatus.WAITING)
