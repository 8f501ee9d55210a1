"""Isolated task workspaces: git worktrees and snapshot copies."""

from .snapshot import SnapshotManager
from .variants import GitWorkspace, SnapshotWorkspace, TaskWorkspace, workspace_for
from .worktree_manager import WorkspaceSetup, WorktreeManager, WorktreeSetupError

__all__ = [
    "SnapshotManager",
    "GitWorkspace",
    "SnapshotWorkspace",
    "TaskWorkspace",
    "workspace_for",
    "WorkspaceSetup",
    "WorktreeManager",
    "WorktreeSetupError",
]
