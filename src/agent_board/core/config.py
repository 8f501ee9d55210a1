"""Configuration loading and validation."""

import logging
import os
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("agent-board.yaml")


class SandboxConfig(BaseModel):
    """Agent container settings."""
    image: str = "agent-board-sandbox:latest"

    # Docker-compatible API endpoint; None uses DOCKER_HOST / the default socket.
    # Point at podman's socket to run under podman.
    base_url: Optional[str] = None

    env_file: Optional[Path] = None
    network: Optional[str] = None
    container_prefix: str = "agent-board"

    # Mounted read-only as the agent's instructions file; when unset, one is
    # generated under data_dir for the configured repositories
    instructions_path: Optional[Path] = None

    @field_validator("env_file", "instructions_path")
    @classmethod
    def expand_path(cls, v: Optional[Path]) -> Optional[Path]:
        return Path(v).expanduser() if v is not None else None


class WorkspaceConfig(BaseModel):
    """Repositories tasks operate on and where their isolated copies live."""
    repositories: List[Path] = Field(default_factory=list)
    worktrees_dir: Path = Field(default=Path("~/.agent-board/worktrees"))

    # Skip auto-detection and always integrate into this branch
    default_branch: Optional[str] = None

    progress_file: str = "PROGRESS.md"

    @field_validator("repositories")
    @classmethod
    def resolve_repositories(cls, v: List[Path]) -> List[Path]:
        return [Path(p).expanduser().resolve() for p in v]

    @field_validator("worktrees_dir")
    @classmethod
    def expand_worktrees_dir(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()


class TaskConfig(BaseModel):
    """Turn loop and commit pipeline settings."""
    default_timeout_minutes: int = 15

    # Optional ceiling on auto-continue turns; the wall-clock budget always applies
    max_turns: Optional[int] = None

    max_rebase_attempts: int = 3

    # Phase 1: ask the agent to commit its own work instead of a host-side commit
    agent_commit: bool = False

    commit_prefix: str = "agent-board"
    result_truncate_chars: int = 1000

    @field_validator("max_rebase_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_rebase_attempts must be >= 1, got {v}")
        return v


class RunnerConfig(BaseSettings):
    """Main agent-board configuration."""
    data_dir: Path = Field(default=Path("~/.agent-board/data"))
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    task: TaskConfig = Field(default_factory=TaskConfig)

    @field_validator("data_dir")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()

    class Config:
        env_prefix = "AGENT_BOARD_"
        env_nested_delimiter = "__"
        extra = "ignore"


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ``${VAR}`` references in config data.

    Args:
        data: Config data to process
        _path: Internal tracking for error messages (e.g., "sandbox.image")
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used, which may cause errors."
            )
            return data
        return value
    return data


def load_config(config_path: Path = DEFAULT_CONFIG_PATH, **overrides: Any) -> RunnerConfig:
    """Load configuration from a YAML file, falling back to defaults if it's missing.

    Keyword overrides replace top-level sections after the file is read.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning(
            f"Config file not found: {config_path}. Using default configuration. "
            "To customize settings, create a config file at this path."
        )
        return RunnerConfig(**overrides)

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    data = _expand_env_vars(data)
    data.update(overrides)
    return RunnerConfig(**data)
