"""Tests for turning agent stream-json output into a turn result."""

import json

import pytest

from agent_board.sandbox.output import AgentOutputError, parse_agent_output
from tests.unit.agent_fixtures import stream_output


class TestParseAgentOutput:
    def test_jsonl_stream(self):
        output = parse_agent_output(stream_output(
            result="All done", stop_reason="end_turn", session_id="abc",
            cost=0.25, input_tokens=10, output_tokens=4,
        ))
        assert output.session_id == "abc"
        assert output.result == "All done"
        assert output.stop_reason == "end_turn"
        assert output.is_error is False
        assert output.usage.cost_usd == 0.25
        assert output.usage.input_tokens == 10
        assert output.usage.output_tokens == 4

    def test_json_array(self):
        events = [
            {"type": "system", "subtype": "init", "session_id": "s-array"},
            {"type": "result", "result": "ok", "stop_reason": "end_turn"},
        ]
        output = parse_agent_output(json.dumps(events))
        assert output.session_id == "s-array"
        assert output.result == "ok"

    def test_single_result_object(self):
        event = {"type": "result", "result": "hi", "session_id": "s1", "stop_reason": None}
        output = parse_agent_output(json.dumps(event, indent=2))
        assert output.session_id == "s1"
        assert output.stop_reason is None

    def test_last_result_wins(self):
        lines = [
            json.dumps({"type": "result", "result": "first", "session_id": "s"}),
            json.dumps({"type": "result", "result": "second", "session_id": "s"}),
        ]
        assert parse_agent_output("\n".join(lines)).result == "second"

    def test_error_result(self):
        output = parse_agent_output(stream_output(result="crashed", is_error=True))
        assert output.is_error is True
        assert output.subtype == "error_during_execution"

    def test_no_result_event(self):
        with pytest.raises(AgentOutputError):
            parse_agent_output(json.dumps({"type": "system", "subtype": "init", "session_id": "s"}))

    def test_empty_output(self):
        with pytest.raises(AgentOutputError):
            parse_agent_output("")

    def test_malformed_array(self):
        with pytest.raises(AgentOutputError):
            parse_agent_output("[{")
