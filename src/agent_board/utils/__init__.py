"""Shared utility functions for agent-board."""

from .atomic_io import atomic_write_model, atomic_write_text
from .error_handling import ErrorContext, log_and_ignore, safe_call
from .stream_parser import parse_json_records, parse_jsonl_to_dicts
from .subprocess_utils import (
    SubprocessError,
    check_command_exists,
    get_command_output,
    run_command,
    run_git_command,
)
from .validators import validate_branch_name, validate_task_id

__all__ = [
    # Atomic I/O
    "atomic_write_text",
    "atomic_write_model",
    # Error handling
    "log_and_ignore",
    "safe_call",
    "ErrorContext",
    # Stream parsing
    "parse_json_records",
    "parse_jsonl_to_dicts",
    # Subprocess utilities
    "SubprocessError",
    "run_command",
    "run_git_command",
    "check_command_exists",
    "get_command_output",
    # Validators
    "validate_branch_name",
    "validate_task_id",
]
