"""Multi-step shutdown of sessions that tolerates partial failure.

Each cleanup step (PTY kill, auto-commit, worktree removal, branch
checkout) runs on its own; a failing step is logged and recorded in the
result and the remaining steps still run. Teardown therefore always
completes, and callers inspect ``failures`` if they care.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from manifold.agent.pty_pool import PtyPool
from manifold.errors import ProjectNotFoundError, SessionNotFoundError
from manifold.git.exec import GitRunner, git_exec
from manifold.git.operations import GitOperationsManager
from manifold.git.worktree_meta import remove_worktree_meta
from manifold.session.models import Project, Session
from manifold.session.project_registry import ProjectRegistry

SIMPLE_MODE_COMMIT_MESSAGE = "Auto-commit: work from simple mode"
DEVELOPER_MODE_COMMIT_MESSAGE = "Auto-commit: work from developer mode"

KillSessionCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class StepResult:
    name: str
    ok: bool
    error: Optional[str] = None


@dataclass
class BatchKillResult:
    killed_ids: list[str] = field(default_factory=list)
    branch_name: Optional[str] = None
    failures: list[StepResult] = field(default_factory=list)


@dataclass
class InteractiveKillResult:
    project_path: str
    branch_name: str
    task_description: Optional[str] = None
    failures: list[StepResult] = field(default_factory=list)


async def run_step(name: str, fn: Callable[[], Any]) -> StepResult:
    """Run one cleanup step, converting any failure into a StepResult."""
    try:
        outcome = fn()
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        logger.warning(f"[session] teardown step '{name}' failed: {exc}")
        return StepResult(name=name, ok=False, error=str(exc))
    return StepResult(name=name, ok=True)


class SessionTeardown:
    def __init__(
        self,
        sessions: dict[str, Session],
        pty_pool: PtyPool,
        projects: ProjectRegistry,
        on_kill_session: KillSessionCallback,
        git_ops: GitOperationsManager | None = None,
        git: GitRunner = git_exec,
    ) -> None:
        self._sessions = sessions
        self._pool = pty_pool
        self._projects = projects
        self._on_kill_session = on_kill_session
        self._git = git
        self._git_ops = git_ops or GitOperationsManager(git=git)

    async def kill_non_interactive_sessions(self, project_id: str) -> BatchKillResult:
        """Stop every print-mode session of a project and return the repo to its base branch."""
        result = BatchKillResult()
        targets = [s for s in list(self._sessions.values()) if s.project_id == project_id and s.non_interactive]

        for session in targets:
            result.branch_name = session.branch_name
            steps = self._kill_ptys(session)
            steps.append(await run_step(
                "auto-commit",
                lambda: self._auto_commit(session, SIMPLE_MODE_COMMIT_MESSAGE),
            ))
            steps.append(await run_step("remove-session", lambda: self._on_kill_session(session.id)))
            result.failures.extend(s for s in steps if not s.ok)
            result.killed_ids.append(session.id)

        project = self._projects.get_project(project_id)
        if result.branch_name is not None and project is not None:
            step = await run_step(
                "checkout-base",
                lambda: self._git(["checkout", project.base_branch], project.path),
            )
            if step.ok:
                logger.info(f"[session] switched {project.name} back to {project.base_branch}")
            else:
                result.failures.append(step)

        logger.info(
            f"[session] killed {len(result.killed_ids)} non-interactive sessions "
            f"for {project_id} ({len(result.failures)} failed steps)"
        )
        return result

    async def kill_interactive_session(self, session_id: str) -> InteractiveKillResult:
        """Stop one session and drop its worktree, keeping the branch for reuse."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        branch_name = session.branch_name
        task_description = session.task_description
        project = self._projects.get_project(session.project_id)

        steps = self._kill_ptys(session)
        steps.append(await run_step(
            "auto-commit",
            lambda: self._auto_commit(session, DEVELOPER_MODE_COMMIT_MESSAGE),
        ))
        if not session.no_worktree:
            steps.append(await run_step("remove-worktree", lambda: self._remove_worktree(session, project)))
            session.no_worktree = True
        steps.append(await run_step("remove-session", lambda: self._on_kill_session(session_id)))

        if project is None:
            raise ProjectNotFoundError(session.project_id)
        return InteractiveKillResult(
            project_path=project.path,
            branch_name=branch_name,
            task_description=task_description,
            failures=[s for s in steps if not s.ok],
        )

    # ------------------------------------------------------------------ #
    # Steps                                                                #
    # ------------------------------------------------------------------ #

    def _kill_ptys(self, session: Session) -> list[StepResult]:
        steps: list[StepResult] = []
        if session.pty_id:
            steps.append(self._kill_pty(session.pty_id, "kill-pty"))
            session.pty_id = ""
        if session.dev_server_pty_id:
            steps.append(self._kill_pty(session.dev_server_pty_id, "kill-dev-server"))
            session.dev_server_pty_id = None
        return steps

    def _kill_pty(self, pty_id: str, name: str) -> StepResult:
        try:
            self._pool.kill(pty_id)
        except Exception as exc:
            logger.warning(f"[session] teardown step '{name}' failed: {exc}")
            return StepResult(name=name, ok=False, error=str(exc))
        return StepResult(name=name, ok=True)

    async def _auto_commit(self, session: Session, message: str) -> None:
        if not await self._git_ops.has_uncommitted_changes(session.worktree_path):
            return
        await self._git_ops.commit(session.worktree_path, message)
        logger.info(f"[session] auto-committed changes on branch {session.branch_name}")

    async def _remove_worktree(self, session: Session, project: Project | None) -> None:
        if project is None:
            raise ProjectNotFoundError(session.project_id)
        await self._git(["worktree", "remove", session.worktree_path, "--force"], project.path)
        remove_worktree_meta(session.worktree_path)
