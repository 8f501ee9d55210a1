"""Core models and configuration."""

from .task import InvalidTransitionError, Task, TaskStatus, TaskUsage, WorkspaceKind
from .config import RunnerConfig, load_config

__all__ = [
    "InvalidTransitionError",
    "Task",
    "TaskStatus",
    "TaskUsage",
    "WorkspaceKind",
    "RunnerConfig",
    "load_config",
]
