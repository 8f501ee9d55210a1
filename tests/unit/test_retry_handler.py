"""Tests for RetryHandler: bounded attempts with a resolver step in between."""

from unittest.mock import MagicMock

import pytest

from agent_board.safeguards.retry_handler import RetriesExhaustedError, RetryHandler


class Conflict(Exception):
    pass


class TestRetryHandler:
    def test_success_first_try(self):
        resolver = MagicMock()
        assert RetryHandler().run(lambda: "ok", resolver) == "ok"
        resolver.assert_not_called()

    def test_recovers_after_resolver(self):
        outcomes = [Conflict("first"), "merged"]

        def action():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        resolver = MagicMock()
        assert RetryHandler(recoverable=(Conflict,)).run(action, resolver) == "merged"
        resolver.assert_called_once()
        error, attempt = resolver.call_args.args
        assert str(error) == "first"
        assert attempt == 1

    def test_exhausts_after_max_attempts(self):
        action = MagicMock(side_effect=Conflict("always"))
        resolver = MagicMock()

        with pytest.raises(RetriesExhaustedError) as exc_info:
            RetryHandler(max_attempts=3, recoverable=(Conflict,)).run(action, resolver, "rebase")

        assert action.call_count == 3
        assert [c.args[1] for c in resolver.call_args_list] == [1, 2]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, Conflict)
        assert "rebase" in str(exc_info.value)

    def test_non_recoverable_errors_propagate(self):
        action = MagicMock(side_effect=ValueError("bad"))
        with pytest.raises(ValueError):
            RetryHandler(recoverable=(Conflict,)).run(action)
        assert action.call_count == 1

    def test_single_attempt_never_resolves(self):
        resolver = MagicMock()
        with pytest.raises(RetriesExhaustedError):
            RetryHandler(max_attempts=1, recoverable=(Conflict,)).run(
                MagicMock(side_effect=Conflict()), resolver,
            )
        resolver.assert_not_called()

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryHandler(max_attempts=0)
