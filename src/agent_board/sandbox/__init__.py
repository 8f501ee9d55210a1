"""Agent process launching and output parsing."""

from .container_launcher import ContainerInfo, ContainerLauncher
from .launcher import (
    AgentInvocation,
    AgentLaunchError,
    AgentLauncher,
    LaunchResult,
    Mount,
)
from .output import AgentOutput, AgentOutputError, parse_agent_output

__all__ = [
    "ContainerInfo",
    "ContainerLauncher",
    "AgentInvocation",
    "AgentLaunchError",
    "AgentLauncher",
    "LaunchResult",
    "Mount",
    "AgentOutput",
    "AgentOutputError",
    "parse_agent_output",
]
