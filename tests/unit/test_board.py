"""Tests for the board context shown to each agent."""

import json
from datetime import datetime

import pytest

from agent_board.core.board import BoardContextBuilder, can_mount, sibling_mount_path
from agent_board.core.task import Task, TaskStatus
from agent_board.sandbox.launcher import BOARD_MOUNT


def make_task(task_id, status, worktree_paths=None, **kwargs):
    return Task(
        id=task_id, prompt=f"prompt for {task_id}", status=status,
        worktree_paths=worktree_paths or {}, **kwargs,
    )


class TestCanMount:
    @pytest.mark.parametrize("status", [TaskStatus.WAITING, TaskStatus.FAILED])
    def test_waiting_and_failed_always_mountable(self, status):
        assert can_mount(status, {}) is True

    @pytest.mark.parametrize(
        "status",
        [TaskStatus.BACKLOG, TaskStatus.IN_PROGRESS, TaskStatus.COMMITTING, TaskStatus.CANCELLED],
    )
    def test_other_statuses_not_mountable(self, status, tmp_path):
        assert can_mount(status, {"/repo": str(tmp_path)}) is False

    def test_done_only_while_worktree_exists(self, tmp_path):
        assert can_mount(TaskStatus.DONE, {"/repo": str(tmp_path)}) is True
        assert can_mount(TaskStatus.DONE, {"/repo": str(tmp_path / "gone")}) is False
        assert can_mount("done", {}) is False


class TestManifest:
    def test_lists_tasks_without_session_ids(self, tmp_path):
        tasks = [
            make_task("aaaaaaaa-self", TaskStatus.IN_PROGRESS, session_id="secret-1"),
            make_task("bbbbbbbb-other", TaskStatus.WAITING, {"/src/api": str(tmp_path)}, session_id="secret-2"),
        ]
        builder = BoardContextBuilder(lambda: tasks)

        raw = builder.generate_manifest("aaaaaaaa-self")
        manifest = json.loads(raw)

        assert b"secret" not in raw
        assert manifest["self_task_id"] == "aaaaaaaa-self"
        assert [t["is_self"] for t in manifest["tasks"]] == [True, False]
        other = manifest["tasks"][1]
        assert other["status"] == "waiting"
        assert other["worktree_mount"] == {"api": sibling_mount_path("bbbbbbbb", "/src/api")}

    def test_self_task_gets_no_mount_path(self, tmp_path):
        tasks = [make_task("aaaaaaaa-self", TaskStatus.WAITING, {"/src/api": str(tmp_path)})]

        entry = json.loads(BoardContextBuilder(lambda: tasks).generate_manifest("aaaaaaaa-self"))["tasks"][0]

        assert entry["is_self"] is True
        assert entry["worktree_mount"] is None
        assert datetime.fromisoformat(entry["created_at"]) == tasks[0].created_at
        assert entry["updated_at"] is not None

    def test_archived_tasks_are_hidden(self):
        tasks = [
            make_task("aaaaaaaa-self", TaskStatus.IN_PROGRESS),
            make_task("cccccccc-old", TaskStatus.ARCHIVED),
        ]
        manifest = json.loads(BoardContextBuilder(lambda: tasks).generate_manifest("aaaaaaaa-self"))
        assert [t["id"] for t in manifest["tasks"]] == ["aaaaaaaa-self"]

    def test_empty_board_still_has_task_list(self):
        manifest = json.loads(BoardContextBuilder(lambda: []).generate_manifest("x"))
        assert manifest["tasks"] == []


class TestSiblingMounts:
    def test_none_when_no_sibling_qualifies(self, tmp_path):
        tasks = [
            make_task("aaaaaaaa-self", TaskStatus.WAITING, {"/r": str(tmp_path)}),
            make_task("bbbbbbbb-busy", TaskStatus.IN_PROGRESS, {"/r": str(tmp_path)}),
        ]
        assert BoardContextBuilder(lambda: tasks).build_sibling_mounts("aaaaaaaa-self") is None

    def test_only_existing_worktrees_of_mountable_siblings(self, tmp_path):
        present = tmp_path / "present"
        present.mkdir()
        tasks = [
            make_task("aaaaaaaa-self", TaskStatus.IN_PROGRESS),
            make_task("bbbbbbbb-wait", TaskStatus.WAITING, {"/r1": str(present), "/r2": str(tmp_path / "missing")}),
            make_task("cccccccc-done", TaskStatus.DONE, {"/r1": str(tmp_path / "cleaned")}),
        ]
        mounts = BoardContextBuilder(lambda: tasks).build_sibling_mounts("aaaaaaaa-self")
        assert mounts == {"bbbbbbbb": {"/r1": str(present)}}


class TestPrepareBoardDir:
    def test_writes_board_and_mount_points(self, tmp_path):
        sibling = tmp_path / "sibling-wt"
        sibling.mkdir()
        tasks = [
            make_task("aaaaaaaa-self", TaskStatus.IN_PROGRESS),
            make_task("bbbbbbbb-fail", TaskStatus.FAILED, {"/src/web": str(sibling)}),
        ]
        builder = BoardContextBuilder(lambda: tasks)

        with builder.prepare_board_dir("aaaaaaaa-self") as context:
            board_dir = context.board_dir
            assert json.loads((board_dir / "board.json").read_text())["self_task_id"] == "aaaaaaaa-self"
            assert (board_dir / "worktrees" / "bbbbbbbb" / "web").is_dir()

            board_mount, sibling_mount = context.mounts
            assert board_mount.target == BOARD_MOUNT
            assert board_mount.read_only is True
            assert sibling_mount.source == sibling
            assert sibling_mount.target == sibling_mount_path("bbbbbbbb", "/src/web")
            assert sibling_mount.read_only is True

        assert not board_dir.exists()
