"""Shared fixtures for unit tests."""

import pytest

from agent_board.core.config import RunnerConfig, TaskConfig, WorkspaceConfig
from agent_board.core.runner import Runner
from agent_board.store.task_store import FileTaskStore
from tests.unit.agent_fixtures import FakeLauncher, init_repo


@pytest.fixture
def repo(tmp_path):
    """A git repository on main with one commit."""
    return init_repo(tmp_path / "repo")


@pytest.fixture
def plain_dir(tmp_path):
    """A directory that is not a git repository."""
    path = tmp_path / "plain"
    path.mkdir()
    (path / "notes.txt").write_text("original notes\n")
    (path / "sub").mkdir()
    (path / "sub" / "data.txt").write_text("nested\n")
    return path


@pytest.fixture
def make_config(tmp_path):
    def _make(repositories, **task_overrides):
        return RunnerConfig(
            data_dir=tmp_path / "data",
            workspace=WorkspaceConfig(
                repositories=list(repositories),
                worktrees_dir=tmp_path / "worktrees",
            ),
            task=TaskConfig(**task_overrides),
        )
    return _make


@pytest.fixture
def config(make_config, repo):
    return make_config([repo])


@pytest.fixture
def store(config):
    return FileTaskStore(config.data_dir)


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def runner(config, store, launcher):
    return Runner(config, store=store, launcher=launcher)
