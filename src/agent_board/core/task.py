"""Task model shared by the store, the turn loop and the commit pipeline."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

BRANCH_PREFIX = "task/"
SHORT_ID_LENGTH = 8


class TaskStatus(str, Enum):
    """Task status values."""
    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    WAITING = "waiting"          # Agent needs human feedback before the next turn
    COMMITTING = "committing"    # Transient, resolved by the commit pipeline
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


class WorkspaceKind(str, Enum):
    """How a task's isolated copy of a repository was materialized."""
    GIT = "git"            # git worktree on the task branch
    SNAPSHOT = "snapshot"  # plain copy with a private tracking repository


class StopReason(str, Enum):
    """Stop reasons reported by the agent at the end of a turn."""
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    PAUSE_TURN = "pause_turn"


# Stop reasons that auto-continue the turn loop with an empty prompt
CONTINUE_STOP_REASONS = frozenset({StopReason.MAX_TOKENS.value, StopReason.PAUSE_TURN.value})


class TaskUsage(BaseModel):
    """Token and cost counters, summed across every turn of a task."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cost_usd: float = 0.0

    def add(self, other: "TaskUsage") -> "TaskUsage":
        return TaskUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
            cache_creation_input_tokens=(
                self.cache_creation_input_tokens + other.cache_creation_input_tokens
            ),
            cost_usd=self.cost_usd + other.cost_usd,
        )


def short_id(task_id: str) -> str:
    """First eight characters of the id, used in branch names and mount paths."""
    return task_id[:SHORT_ID_LENGTH]


def branch_name_for(task_id: str) -> str:
    """Deterministic task branch name: ``task/`` + short id."""
    return f"{BRANCH_PREFIX}{short_id(task_id)}"


def new_task_id() -> str:
    return str(uuid.uuid4())


class Task(BaseModel):
    """A unit of agent-executed work and its lifecycle state."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=new_task_id)
    prompt: str
    status: TaskStatus = TaskStatus.BACKLOG

    # One per agent invocation, never decreases
    turns: int = 0

    # Assigned by the agent on the first turn and reused until an explicit retry
    session_id: Optional[str] = None

    result: Optional[str] = None
    stop_reason: Optional[str] = None
    usage: TaskUsage = Field(default_factory=TaskUsage)

    # Repository root -> isolated working copy, present only while a copy exists
    worktree_paths: Dict[str, str] = Field(default_factory=dict)
    worktree_kinds: Dict[str, WorkspaceKind] = Field(default_factory=dict)
    branch_name: Optional[str] = None

    timeout_minutes: int = 15

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def short_id(self) -> str:
        return short_id(self.id)

    @property
    def expected_branch(self) -> str:
        return branch_name_for(self.id)

    @field_serializer("created_at", "updated_at")
    def serialize_datetime(self, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    def touch(self) -> None:
        self.updated_at = datetime.now(UTC)

    def record_turn(self, usage: Optional[TaskUsage] = None) -> None:
        """Count one agent invocation and fold its usage into the running totals."""
        self.turns += 1
        if usage is not None:
            self.usage = self.usage.add(usage)

    def clear_worktrees(self) -> None:
        self.worktree_paths = {}
        self.worktree_kinds = {}

    def mark_failed(self, cause: str) -> None:
        """Fail the task, keeping the cause as its result text."""
        self.status = TaskStatus.FAILED
        self.result = cause

    def reset_for_retry(self) -> None:
        """Back to backlog with a fresh session; usage and turn history are kept."""
        self.status = TaskStatus.BACKLOG
        self.session_id = None
        self.result = None
        self.stop_reason = None


class InvalidTransitionError(Exception):
    """The requested operation is not allowed from the task's current status."""

    def __init__(self, task_id: str, status: str, operation: str):
        self.task_id = task_id
        self.status = status
        self.operation = operation
        super().__init__(f"cannot {operation} task {task_id[:8]} in status {status}")
