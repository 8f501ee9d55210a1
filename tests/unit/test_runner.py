"""Tests for the Runner lifecycle operations."""

from unittest.mock import patch

import pytest

from agent_board.core.runner import RESUME_PROMPT
from agent_board.core.task import InvalidTransitionError, TaskStatus
from tests.unit.agent_fixtures import agent_writes, git, mounted_path, stream_output


@pytest.fixture
def waiting(runner, store, launcher):
    launcher.responses = [stream_output(result="Which greeting?", stop_reason=None, session_id="s-wait")]
    task = runner.run(store.create_task("Create a greeting").id)
    assert task.status == TaskStatus.WAITING.value
    return task


class TestRun:
    def test_run_sets_up_worktrees(self, runner, store, launcher, repo):
        launcher.responses = [stream_output(stop_reason=None)]
        task = runner.run(store.create_task("x").id)

        assert task.branch_name == f"task/{task.short_id}"
        worktree = task.worktree_paths[str(repo)]
        assert git(worktree, "branch", "--show-current") == task.branch_name

    def test_setup_failure_fails_task(self, runner, store, launcher):
        with patch(
            "agent_board.core.git_operations.create_worktree", side_effect=RuntimeError("no space"),
        ):
            task = runner.run(store.create_task("x").id)

        assert task.status == TaskStatus.FAILED.value
        assert "no space" in task.result
        assert launcher.invocations == []

    def test_cannot_run_finished_task(self, runner, store):
        task = store.create_task("x")
        store.update_status(task.id, TaskStatus.DONE)
        with pytest.raises(InvalidTransitionError):
            runner.run(task.id)

    def test_start_runs_in_background(self, runner, store, launcher, repo):
        launcher.responses = [agent_writes("repo", {"bg.txt": "bg\n"})]
        task = store.create_task("Background work")

        thread = runner.start(task.id)
        runner.wait(task.id, timeout=60)

        assert not thread.is_alive()
        assert store.get_task(task.id).status == TaskStatus.DONE.value
        assert (repo / "bg.txt").exists()

    def test_background_crash_fails_task(self, runner, store):
        task = store.create_task("x")
        with patch.object(runner.executor, "run", side_effect=RuntimeError("boom")):
            runner.start(task.id)
            runner.wait(task.id, timeout=60)

        failed = store.get_task(task.id)
        assert failed.status == TaskStatus.FAILED.value
        assert "boom" in failed.result


class TestConcurrentTasks:
    def test_tasks_finishing_together_all_land_on_main(self, runner, store, launcher, repo):
        def agent(invocation):
            worktree = mounted_path(invocation, "repo")
            # worktrees live at <worktrees_dir>/<task id>/<repo name>
            (worktree / f"{worktree.parent.name[:8]}.txt").write_text("work\n")
            return stream_output()

        launcher.responses = [agent]
        tasks = [store.create_task(f"Parallel task {i}") for i in range(4)]

        for task in tasks:
            runner.start(task.id)
        for task in tasks:
            runner.wait(task.id, timeout=120)

        for task in tasks:
            assert store.get_task(task.id).status == TaskStatus.DONE.value
            assert git(repo, "show", f"main:{task.short_id}.txt") == "work"
        assert git(repo, "rev-list", "--merges", "--count", "main") == "0"
        assert git(repo, "status", "--porcelain") == ""
        assert git(repo, "stash", "list") == ""


class TestFeedbackAndResume:
    def test_feedback_continues_same_session(self, runner, launcher, repo, waiting):
        launcher.responses = [agent_writes("repo", {"greeting.txt": "Hi\n"})]

        task = runner.submit_feedback(waiting.id, "Use 'Hi'", background=False)

        invocation = launcher.invocations[-1]
        assert invocation.prompt == "Use 'Hi'"
        assert invocation.session_id == "s-wait"
        assert task.status == TaskStatus.DONE.value
        assert task.session_id == "s-wait"
        assert (repo / "greeting.txt").read_text() == "Hi\n"

    def test_feedback_requires_waiting(self, runner, store):
        task = store.create_task("x")
        with pytest.raises(InvalidTransitionError):
            runner.submit_feedback(task.id, "hello", background=False)

    def test_resume_failed_task(self, runner, store, launcher, waiting):
        store.fail_task(waiting.id, "task timeout exceeded")
        launcher.responses = [stream_output(stop_reason=None, session_id="s-wait")]

        task = runner.resume(waiting.id, background=False)

        assert launcher.invocations[-1].prompt == RESUME_PROMPT
        assert launcher.invocations[-1].session_id == "s-wait"
        assert task.status == TaskStatus.WAITING.value


class TestRetryCancelArchive:
    def test_retry_resets_session_and_worktrees(self, runner, store, repo, waiting):
        store.fail_task(waiting.id, "boom")

        task = runner.retry(waiting.id)

        assert task.status == TaskStatus.BACKLOG.value
        assert task.session_id is None
        assert task.worktree_paths == {}
        assert git(repo, "branch", "--list", "task/*") == ""

    def test_retry_keeping_worktrees(self, runner, store, repo, waiting):
        store.fail_task(waiting.id, "boom")
        task = runner.retry(waiting.id, keep_worktrees=True)
        assert task.worktree_paths == waiting.worktree_paths

    def test_retry_requires_finished_task(self, runner, waiting):
        with pytest.raises(InvalidTransitionError):
            runner.retry(waiting.id)

    def test_cancel_kills_and_cleans_up(self, runner, launcher, repo, waiting):
        task = runner.cancel(waiting.id)

        assert task.status == TaskStatus.CANCELLED.value
        assert launcher.killed == [f"agent-board-{waiting.id}"]
        assert task.worktree_paths == {}
        assert git(repo, "branch", "--list", "task/*") == ""

    def test_cannot_cancel_while_committing(self, runner, store):
        task = store.create_task("x")
        store.update_status(task.id, TaskStatus.COMMITTING)
        with pytest.raises(InvalidTransitionError):
            runner.cancel(task.id)

    def test_archive(self, runner, store, waiting):
        runner.cancel(waiting.id)
        task = runner.archive(waiting.id)

        assert task.status == TaskStatus.ARCHIVED.value
        assert [t.id for t in store.list_tasks()] == []

    def test_archive_requires_done_or_cancelled(self, runner, waiting):
        with pytest.raises(InvalidTransitionError):
            runner.archive(waiting.id)


class TestHousekeeping:
    def test_prune_orphans_keeps_known_tasks(self, runner, config, waiting):
        orphan = config.workspace.worktrees_dir / "deadbeef-orphan"
        (orphan / "repo").mkdir(parents=True)

        removed = runner.prune_orphans()

        assert removed == ["deadbeef-orphan"]
        assert runner.worktrees.task_dir(waiting.id).exists()

    def test_kill_never_raises(self, runner, launcher):
        with patch.object(launcher, "kill", side_effect=RuntimeError("daemon gone")):
            runner.kill("anything")

    def test_reinit_instructions_rebuilds_generated_file(self, runner):
        path = runner.instructions_file()
        path.write_text("edited\n")

        assert runner.reinit_instructions() == path
        assert path.read_text().startswith("# Workspace Instructions")

    def test_reinit_refuses_configured_instructions(self, runner, tmp_path):
        runner.config.sandbox.instructions_path = tmp_path / "mine.md"
        with pytest.raises(ValueError, match="instructions_path"):
            runner.reinit_instructions()
