from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeGit
from manifold.errors import ProjectNotFoundError, PtyNotFoundError, SessionNotFoundError
from manifold.git.worktree_meta import WorktreeMeta, meta_path, write_worktree_meta
from manifold.session.models import Project, Session
from manifold.session.teardown import (
    DEVELOPER_MODE_COMMIT_MESSAGE,
    SIMPLE_MODE_COMMIT_MESSAGE,
    SessionTeardown,
    StepResult,
    run_step,
)

PROJECT = Project(id="p1", name="webapp", path="/code/webapp", base_branch="main")


def _session(session_id: str, worktree: str, **kwargs) -> Session:
    defaults = dict(project_id="p1", runtime_id="claude", branch_name=f"webapp/{session_id}", pty_id=f"pty-{session_id}")
    defaults.update(kwargs)
    return Session(id=session_id, worktree_path=worktree, **defaults)


def _teardown(sessions: dict[str, Session], fake_git: FakeGit, project: Project | None = PROJECT):
    pool = MagicMock()
    projects = MagicMock()
    projects.get_project.return_value = project

    async def remove(session_id: str) -> None:
        sessions.pop(session_id, None)

    on_kill = AsyncMock(side_effect=remove)
    return SessionTeardown(sessions, pool, projects, on_kill, git=fake_git), pool, on_kill


@pytest.mark.asyncio
async def test_run_step_records_failures() -> None:
    async def broken() -> None:
        raise RuntimeError("disk full")

    assert await run_step("ok", lambda: None) == StepResult("ok", True)
    assert await run_step("bad", broken) == StepResult("bad", False, "disk full")


# ---------------------------------------------------------------------------
# non-interactive (simple mode)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_kill_non_interactive_sessions(fake_git: FakeGit) -> None:
    sessions = {
        "a": _session("a", "/code/webapp", non_interactive=True, no_worktree=True, dev_server_pty_id="dev-a"),
        "b": _session("b", "/wt/b", non_interactive=True),
        "c": _session("c", "/wt/c"),
        "d": _session("d", "/wt/d", project_id="p2", non_interactive=True),
    }
    fake_git.on("status", "--porcelain", stdout=" M app.py\n", cwd="/code/webapp")
    teardown, pool, on_kill = _teardown(sessions, fake_git)

    result = await teardown.kill_non_interactive_sessions("p1")

    assert result.killed_ids == ["a", "b"]
    assert result.branch_name == "webapp/b"
    assert result.failures == []
    assert set(sessions) == {"c", "d"}
    assert [c.args[0] for c in pool.kill.call_args_list] == ["pty-a", "dev-a", "pty-b"]
    assert fake_git.calls == [
        (("status", "--porcelain"), "/code/webapp"),
        (("add", "-A"), "/code/webapp"),
        (("commit", "-m", SIMPLE_MODE_COMMIT_MESSAGE), "/code/webapp"),
        (("status", "--porcelain"), "/wt/b"),
        (("checkout", "main"), "/code/webapp"),
    ]


@pytest.mark.asyncio
async def test_kill_non_interactive_without_targets_does_nothing(fake_git: FakeGit) -> None:
    sessions = {"c": _session("c", "/wt/c")}
    teardown, pool, on_kill = _teardown(sessions, fake_git)

    result = await teardown.kill_non_interactive_sessions("p1")

    assert result.killed_ids == [] and result.branch_name is None
    assert fake_git.calls == []
    on_kill.assert_not_awaited()


@pytest.mark.asyncio
async def test_kill_non_interactive_continues_after_failures(fake_git: FakeGit) -> None:
    sessions = {"a": _session("a", "/code/webapp", non_interactive=True, no_worktree=True)}
    fake_git.on("status", "--porcelain", stdout="?? new.txt\n")
    fake_git.on("commit", "-m", SIMPLE_MODE_COMMIT_MESSAGE, error="hook rejected commit")
    fake_git.on("checkout", "main", error="local changes would be overwritten")
    teardown, pool, on_kill = _teardown(sessions, fake_git)
    pool.kill.side_effect = PtyNotFoundError("pty-a")

    result = await teardown.kill_non_interactive_sessions("p1")

    assert result.killed_ids == ["a"]
    assert [f.name for f in result.failures] == ["kill-pty", "auto-commit", "checkout-base"]
    assert "hook rejected commit" in result.failures[1].error
    assert sessions == {}


@pytest.mark.asyncio
async def test_kill_non_interactive_skips_checkout_for_unknown_project(fake_git: FakeGit) -> None:
    sessions = {"a": _session("a", "/code/webapp", non_interactive=True, no_worktree=True)}
    teardown, _, _ = _teardown(sessions, fake_git, project=None)

    result = await teardown.kill_non_interactive_sessions("p1")

    assert result.killed_ids == ["a"]
    assert ("checkout", "main") not in fake_git.args_list()


# ---------------------------------------------------------------------------
# interactive (developer mode)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_kill_interactive_session_removes_worktree_keeps_branch(fake_git: FakeGit, tmp_path) -> None:
    worktree = str(tmp_path / "webapp-a")
    write_worktree_meta(worktree, WorktreeMeta(runtime_id="claude"))
    sessions = {"a": _session("a", worktree, task_description="Add login")}
    fake_git.on("status", "--porcelain", stdout=" M login.py\n")
    teardown, pool, on_kill = _teardown(sessions, fake_git)

    result = await teardown.kill_interactive_session("a")

    assert result.project_path == "/code/webapp"
    assert result.branch_name == "webapp/a"
    assert result.task_description == "Add login"
    assert result.failures == []
    pool.kill.assert_called_once_with("pty-a")
    on_kill.assert_awaited_once_with("a")
    assert fake_git.args_list() == [
        ("status", "--porcelain"),
        ("add", "-A"),
        ("commit", "-m", DEVELOPER_MODE_COMMIT_MESSAGE),
        ("worktree", "remove", worktree, "--force"),
    ]
    assert fake_git.calls[-1][1] == "/code/webapp"
    assert not meta_path(worktree).exists()
    assert not any(args[:2] == ("branch", "-D") for args in fake_git.args_list())


@pytest.mark.asyncio
async def test_kill_interactive_session_in_project_checkout(fake_git: FakeGit) -> None:
    sessions = {"a": _session("a", "/code/webapp", no_worktree=True)}
    teardown, _, _ = _teardown(sessions, fake_git)

    result = await teardown.kill_interactive_session("a")

    assert result.failures == []
    assert fake_git.args_list() == [("status", "--porcelain")]


@pytest.mark.asyncio
async def test_kill_interactive_session_reports_worktree_failure(fake_git: FakeGit) -> None:
    session = _session("a", "/wt/a")
    sessions = {"a": session}
    fake_git.on("worktree", "remove", "/wt/a", "--force", error="is locked")
    teardown, _, on_kill = _teardown(sessions, fake_git)

    result = await teardown.kill_interactive_session("a")

    assert [f.name for f in result.failures] == ["remove-worktree"]
    assert session.no_worktree is True
    on_kill.assert_awaited_once_with("a")


@pytest.mark.asyncio
async def test_kill_interactive_session_unknown_ids(fake_git: FakeGit) -> None:
    teardown, _, _ = _teardown({}, fake_git)
    with pytest.raises(SessionNotFoundError):
        await teardown.kill_interactive_session("ghost")


@pytest.mark.asyncio
async def test_kill_interactive_session_missing_project_still_tears_down(fake_git: FakeGit) -> None:
    sessions = {"a": _session("a", "/wt/a")}
    teardown, pool, on_kill = _teardown(sessions, fake_git, project=None)

    with pytest.raises(ProjectNotFoundError):
        await teardown.kill_interactive_session("a")

    pool.kill.assert_called_once_with("pty-a")
    on_kill.assert_awaited_once_with("a")
    assert sessions == {}
