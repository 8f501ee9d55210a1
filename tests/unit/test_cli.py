"""Tests for the agent-board CLI."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from agent_board.cli.main import cli
from agent_board.store.task_store import FileTaskStore
from tests.unit.agent_fixtures import FakeLauncher, agent_writes, stream_output


@pytest.fixture
def config_file(tmp_path, repo):
    path = tmp_path / "agent-board.yaml"
    path.write_text(
        f"data_dir: {tmp_path / 'data'}\n"
        "log_level: WARNING\n"
        "workspace:\n"
        f"  repositories: [{repo}]\n"
        f"  worktrees_dir: {tmp_path / 'worktrees'}\n"
    )
    return path


@pytest.fixture
def cli_store(tmp_path):
    return FileTaskStore(tmp_path / "data")


def invoke(config_file, *args, launcher=None):
    with patch("agent_board.core.runner.ContainerLauncher", return_value=launcher or FakeLauncher()):
        return CliRunner().invoke(cli, ["--config", str(config_file), *args])


class TestTaskCommands:
    def test_create_and_list(self, config_file, cli_store):
        result = invoke(config_file, "create", "Write a haiku", "--timeout", "5")
        assert result.exit_code == 0, result.output
        assert "Created task" in result.output

        task = cli_store.list_tasks()[0]
        assert task.timeout_minutes == 5

        result = invoke(config_file, "list")
        assert result.exit_code == 0
        assert task.short_id in result.output
        assert "backlog" in result.output

    def test_list_empty(self, config_file):
        result = invoke(config_file, "list")
        assert result.exit_code == 0
        assert "No tasks" in result.output

    def test_show_by_short_id(self, config_file, cli_store):
        task = cli_store.create_task("Explain the build")
        result = invoke(config_file, "show", task.short_id)
        assert result.exit_code == 0
        assert task.id in result.output
        assert "Explain the build" in result.output

    def test_unknown_task(self, config_file):
        result = invoke(config_file, "show", "zzzz")
        assert result.exit_code != 0
        assert "No task matches" in result.output

    def test_run_to_done(self, config_file, cli_store, repo):
        task = cli_store.create_task("Add cli.txt")
        launcher = FakeLauncher([agent_writes("repo", {"cli.txt": "from cli\n"})])

        result = invoke(config_file, "run", task.short_id, launcher=launcher)

        assert result.exit_code == 0, result.output
        assert "done" in result.output
        assert (repo / "cli.txt").exists()

    def test_feedback_on_non_waiting_task(self, config_file, cli_store):
        task = cli_store.create_task("x")
        result = invoke(config_file, "feedback", task.short_id, "more detail")
        assert result.exit_code != 0
        assert "cannot send feedback to" in result.output

    def test_run_then_cancel(self, config_file, cli_store):
        task = cli_store.create_task("Ask me something")
        launcher = FakeLauncher([stream_output(result="A question?", stop_reason=None)])

        assert invoke(config_file, "run", task.short_id, launcher=launcher).exit_code == 0
        assert cli_store.get_task(task.id).status == "waiting"

        result = invoke(config_file, "cancel", task.short_id, launcher=launcher)
        assert result.exit_code == 0
        assert cli_store.get_task(task.id).status == "cancelled"


class TestRepositoryCommands:
    def test_status(self, config_file, repo):
        result = invoke(config_file, "status")
        assert result.exit_code == 0, result.output
        assert "main" in result.output

    def test_prune_nothing(self, config_file):
        result = invoke(config_file, "prune")
        assert result.exit_code == 0
        assert "Nothing to prune" in result.output

    def test_containers_requires_container_launcher(self, config_file):
        result = invoke(config_file, "containers")
        assert result.exit_code != 0
        assert "does not run containers" in result.output


class TestInstructionsCommands:
    def test_show_creates_and_prints(self, config_file):
        result = invoke(config_file, "instructions", "show")
        assert result.exit_code == 0, result.output
        assert "# Workspace Instructions" in result.output
        assert "/workspace/repo/" in result.output

    def test_reinit_discards_edits(self, config_file, tmp_path):
        assert invoke(config_file, "instructions", "show").exit_code == 0
        (generated,) = (tmp_path / "data" / "instructions").glob("*.md")
        generated.write_text("edited\n")

        result = invoke(config_file, "instructions", "reinit")

        assert result.exit_code == 0, result.output
        assert "Rebuilt" in result.output
        assert generated.read_text().startswith("# Workspace Instructions")
