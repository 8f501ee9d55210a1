"""Agent process launcher interface.

The turn loop and conflict resolution only depend on ``AgentLauncher``;
tests substitute a fake that returns canned ``LaunchResult`` values.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

# Where the agent sees things inside its container
WORKSPACE_ROOT = "/workspace"
BOARD_MOUNT = f"{WORKSPACE_ROOT}/.tasks"
SIBLING_MOUNT_ROOT = f"{BOARD_MOUNT}/worktrees"
INSTRUCTIONS_MOUNT = f"{WORKSPACE_ROOT}/CLAUDE.md"


class AgentLaunchError(Exception):
    """The agent process could not be started."""


@dataclass
class Mount:
    """A host path exposed to the agent."""
    source: Path
    target: str
    read_only: bool = False


@dataclass
class AgentInvocation:
    """Everything needed to run one agent turn."""
    name: str
    prompt: str
    session_id: Optional[str] = None
    mounts: List[Mount] = field(default_factory=list)
    working_dir: str = WORKSPACE_ROOT
    env: Dict[str, str] = field(default_factory=dict)
    timeout_seconds: Optional[float] = None


@dataclass
class LaunchResult:
    """Raw outcome of an agent process."""
    exit_code: int
    stdout: str
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0


class AgentLauncher(ABC):
    """Runs the agent for one turn and can stop it by name."""

    @abstractmethod
    def launch(self, invocation: AgentInvocation) -> LaunchResult:
        """Run the agent to completion or timeout.

        Raises:
            AgentLaunchError: The process could not be started at all
        """

    @abstractmethod
    def kill(self, name: str) -> None:
        """Stop a running agent. A no-op if nothing with that name is running."""
