"""Tests for syncing idle tasks onto the latest default branch."""

from unittest.mock import patch

import pytest

from agent_board.core.git_operations import RebaseConflictError
from agent_board.core.task import InvalidTransitionError, TaskStatus
from tests.unit.agent_fixtures import commit_file, git, mounted_path, stream_output


@pytest.fixture
def waiting_task(runner, store, launcher):
    """A task whose agent asked a question, leaving a committed change and an uncommitted one."""
    def agent(invocation):
        worktree = mounted_path(invocation, "repo")
        commit_file(worktree, "committed.txt", "committed\n")
        (worktree / "draft.txt").write_text("draft\n")
        return stream_output(result="Should I continue?", stop_reason=None)

    launcher.responses = [agent]
    task = runner.run(store.create_task("Start feature").id)
    assert task.status == TaskStatus.WAITING.value
    return task


class TestSync:
    def test_rebases_onto_main_and_restores_status(self, runner, repo, waiting_task):
        commit_file(repo, "upstream.txt", "upstream\n")
        worktree = waiting_task.worktree_paths[str(repo)]

        task = runner.sync(waiting_task.id)

        assert task.status == TaskStatus.WAITING.value
        assert (repo / "upstream.txt").exists()
        assert git(worktree, "rev-list", "--count", "HEAD..main") == "0"
        assert git(worktree, "log", "-1", "--format=%s") == "Add committed.txt"
        # uncommitted work survives the rebase
        assert "draft.txt" in git(worktree, "status", "--porcelain")

    def test_up_to_date_is_a_no_op(self, runner, repo, waiting_task):
        worktree = waiting_task.worktree_paths[str(repo)]
        head = git(worktree, "rev-parse", "HEAD")

        task = runner.sync(waiting_task.id)

        assert task.status == TaskStatus.WAITING.value
        assert git(worktree, "rev-parse", "HEAD") == head

    def test_failed_task_returns_to_failed(self, runner, store, repo, waiting_task):
        store.fail_task(waiting_task.id, "earlier failure")
        commit_file(repo, "upstream.txt", "upstream\n")

        assert runner.sync(waiting_task.id).status == TaskStatus.FAILED.value

    def test_unresolved_conflict_fails_task(self, runner, launcher, repo, waiting_task):
        commit_file(repo, "upstream.txt", "upstream\n")
        launcher.responses = [stream_output(result="tried")]
        conflict = RebaseConflictError(repo, "CONFLICT (content)")

        with patch("agent_board.core.git_operations.rebase_onto_default", side_effect=conflict) as rebase:
            task = runner.sync(waiting_task.id)

        assert rebase.call_count == 3
        assert task.status == TaskStatus.FAILED.value
        assert "sync" in task.result
        assert str(repo) in task.result
        assert git(repo, "stash", "list") == ""

    @pytest.mark.parametrize("status", [TaskStatus.BACKLOG, TaskStatus.DONE, TaskStatus.IN_PROGRESS])
    def test_only_waiting_or_failed(self, runner, store, status):
        task = store.create_task("x")
        store.update_status(task.id, status)
        with pytest.raises(InvalidTransitionError):
            runner.sync(task.id)

    def test_unexpected_error_does_not_strand_task(self, runner, store, repo, waiting_task):
        with patch("agent_board.core.git_operations.fetch", side_effect=RuntimeError("disk gone")):
            with pytest.raises(RuntimeError):
                runner.sync(waiting_task.id)

        task = store.get_task(waiting_task.id)
        assert task.status == TaskStatus.FAILED.value
        assert "disk gone" in task.result
