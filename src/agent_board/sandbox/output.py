"""Parse the agent's ``--output-format stream-json`` output into one turn result."""

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..core.task import TaskUsage
from ..utils.stream_parser import parse_json_records

logger = logging.getLogger(__name__)


class AgentOutputError(Exception):
    """The agent's output held no usable result event."""


class AgentOutput(BaseModel):
    """What one turn produced, as reported by the agent's final result event."""

    session_id: Optional[str] = None
    result: str = ""
    stop_reason: Optional[str] = None
    is_error: bool = False
    subtype: Optional[str] = None
    usage: TaskUsage = Field(default_factory=TaskUsage)


def _usage_from_event(event: Dict[str, Any]) -> TaskUsage:
    usage = event.get("usage") or {}
    return TaskUsage(
        input_tokens=int(usage.get("input_tokens") or 0),
        output_tokens=int(usage.get("output_tokens") or 0),
        cache_read_input_tokens=int(usage.get("cache_read_input_tokens") or 0),
        cache_creation_input_tokens=int(usage.get("cache_creation_input_tokens") or 0),
        cost_usd=float(event.get("total_cost_usd") or 0.0),
    )


def parse_agent_output(stdout: str) -> AgentOutput:
    """
    Extract session id, result text, stop reason and usage from agent output.

    Accepts a JSON array of events, a single result object, or a JSON Lines
    stream. The last ``result`` event wins; the session id falls back to the
    ``system``/``init`` event when the result event lacks one.

    Raises:
        AgentOutputError: No result event could be found
    """
    try:
        events: List[Dict[str, Any]] = parse_json_records(stdout)
    except json.JSONDecodeError as e:
        raise AgentOutputError(f"malformed agent output: {e}") from e

    session_id = None
    result_event = None
    for event in events:
        event_type = event.get("type")
        if event_type == "system" and event.get("subtype") == "init":
            session_id = event.get("session_id") or session_id
        elif event_type == "result":
            result_event = event
        elif event_type not in ("assistant", "user", "system"):
            logger.debug(f"Unknown stream-json event type: {event_type}")

    if result_event is None:
        raise AgentOutputError("no result event in agent output")

    return AgentOutput(
        session_id=result_event.get("session_id") or session_id,
        result=result_event.get("result") or "",
        stop_reason=result_event.get("stop_reason") or None,
        is_error=bool(result_event.get("is_error")),
        subtype=result_event.get("subtype"),
        usage=_usage_from_event(result_event),
    )
