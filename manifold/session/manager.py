"""Session lifecycle: worktree, agent process, stream wiring and teardown."""

from __future__ import annotations

import threading
import uuid
from typing import Optional

from loguru import logger

from manifold.agent.backend import build_backend
from manifold.agent.chat_adapter import ChatAdapter, TimerFactory
from manifold.agent.pty_pool import BackendFactory, PtyPool
from manifold.agent.runtimes import get_runtime
from manifold.config.schema import Config
from manifold.errors import (
    DirtyWorkingTreeError,
    GitCommandError,
    ManifoldError,
    ProjectNotFoundError,
    PtyNotFoundError,
    SessionNotFoundError,
)
from manifold.git.branch_checkout import BranchCheckoutManager
from manifold.git.branch_namer import generate_branch_name
from manifold.git.exec import GitRunner, git_exec
from manifold.git.worktree_manager import WorktreeInfo, WorktreeManager
from manifold.git.worktree_meta import WorktreeMeta, read_worktree_meta, write_worktree_meta
from manifold.session import events
from manifold.session.events import EventHub
from manifold.session.models import Project, Session, SessionInfo, SpawnOptions
from manifold.session.project_registry import ProjectRegistry
from manifold.session.stream_wirer import SessionStreamWirer
from manifold.session.teardown import BatchKillResult, InteractiveKillResult, SessionTeardown

STREAM_JSON_ARGS = ("--output-format", "stream-json", "--verbose")


class SessionManager:
    """Owns the live sessions and coordinates their collaborators.

    PTY output and exit events arrive on the pool's reader threads and
    update session state from there.
    """

    def __init__(
        self,
        pty_pool: PtyPool,
        worktrees: WorktreeManager,
        projects: ProjectRegistry,
        chat: ChatAdapter | None = None,
        branch_checkout: BranchCheckoutManager | None = None,
        hub: EventHub | None = None,
        config: Config | None = None,
        git: GitRunner = git_exec,
    ) -> None:
        self._pool = pty_pool
        self._worktrees = worktrees
        self._projects = projects
        self._chat = chat
        self._branch_checkout = branch_checkout
        self._config = config
        self._git = git
        self.hub = hub or EventHub()
        self._sessions: dict[str, Session] = {}
        self._wirer = SessionStreamWirer(pty_pool, chat, self.hub, on_dirs_changed=self._persist_meta)
        self._teardown = SessionTeardown(self._sessions, pty_pool, projects, self.kill_session, git=git)

    # ------------------------------------------------------------------ #
    # Creation                                                             #
    # ------------------------------------------------------------------ #

    async def create_session(self, options: SpawnOptions) -> SessionInfo:
        """Prepare a working copy and start the runtime in it."""
        if options.no_worktree and any(
            s.no_worktree and s.project_id == options.project_id for s in self._sessions.values()
        ):
            raise ManifoldError(
                "A no-worktree agent is already running for this project. "
                "Only one no-worktree agent can run at a time per project."
            )

        project = self._require_project(options.project_id)
        runtime = get_runtime(options.runtime_id, self._config)

        if options.no_worktree:
            worktree = await self._checkout_in_project(project, options)
        elif options.pr_identifier and self._branch_checkout is not None:
            branch = await self._branch_checkout.fetch_pr_branch(project.path, options.pr_identifier)
            worktree = await self._branch_checkout.create_worktree_from_branch(project.path, branch, project.name)
        elif options.existing_branch and self._branch_checkout is not None:
            worktree = await self._branch_checkout.create_worktree_from_branch(
                project.path, options.existing_branch, project.name
            )
        else:
            worktree = await self._worktrees.create_worktree(
                project.path,
                project.base_branch,
                project.name,
                options.branch_name,
                options.prompt or None,
            )

        args = list(runtime.args)
        if options.ollama_model:
            args += ["--model", options.ollama_model]
        if options.non_interactive and options.prompt:
            args += ["-p", options.prompt, *STREAM_JSON_ARGS]
        logger.debug(f"[session] non_interactive={options.non_interactive} args={args}")

        handle = self._pool.spawn(
            runtime.binary,
            args,
            cwd=worktree.path,
            env=dict(runtime.env) or None,
            cols=options.cols,
            rows=options.rows,
        )
        session = Session(
            id=str(uuid.uuid4()),
            project_id=project.id,
            runtime_id=runtime.id,
            branch_name=worktree.branch,
            worktree_path=worktree.path,
            pty_id=handle.id,
            pid=handle.pid,
            status="running",
            task_description=options.prompt or None,
            non_interactive=options.non_interactive,
            no_worktree=options.no_worktree,
            ollama_model=options.ollama_model,
        )
        self._sessions[session.id] = session

        if options.non_interactive:
            self._wirer.wire_stream_json_output(handle.id, session)
            self._wirer.wire_print_mode_exit_handling(handle.id, session)
            first_message = options.user_message or options.prompt
            if self._chat is not None and first_message:
                self._chat.add_user_message(session.id, first_message)
        else:
            self._wirer.wire_output_streaming(handle.id, session)
            self._wirer.wire_exit_handling(handle.id, session)

        if not options.no_worktree:
            self._persist_meta(session)

        logger.info(f"[session] started {runtime.id} session {session.id} on {session.branch_name}")
        return session.snapshot()

    async def _checkout_in_project(self, project: Project, options: SpawnOptions) -> WorktreeInfo:
        status = await self._git(["status", "--porcelain"], project.path)
        if status.strip():
            raise DirtyWorkingTreeError(
                "Cannot switch branches: your working tree has uncommitted changes. "
                "Please commit or stash them before starting a no-worktree agent."
            )

        if options.existing_branch:
            branch = options.existing_branch
            await self._git(["checkout", branch], project.path)
        elif options.pr_identifier and self._branch_checkout is not None:
            branch = await self._branch_checkout.fetch_pr_branch(project.path, options.pr_identifier)
            await self._git(["checkout", branch], project.path)
        else:
            branch = options.branch_name or await generate_branch_name(
                project.path, options.prompt, git=self._git
            )
            await self._git(["checkout", "-b", branch], project.path)
        return WorktreeInfo(branch=branch, path=project.path)

    # ------------------------------------------------------------------ #
    # Interaction                                                          #
    # ------------------------------------------------------------------ #

    def send_input(self, session_id: str, text: str) -> None:
        """Write to the agent's terminal, or start a follow-up run in print mode."""
        session = self._require_session(session_id)
        if session.non_interactive:
            self._spawn_print_mode_follow_up(session, text.strip())
            return
        if not session.pty_id:
            return
        try:
            self._pool.write(session.pty_id, text)
        except PtyNotFoundError:
            logger.debug(f"[session] {session_id} input dropped, agent already exited")
            session.pty_id = ""

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        session = self._sessions.get(session_id)
        if session is None or not session.pty_id:
            return
        try:
            self._pool.resize(session.pty_id, cols, rows)
        except PtyNotFoundError:
            session.pty_id = ""

    def _spawn_print_mode_follow_up(self, session: Session, prompt: str) -> None:
        if not prompt:
            return
        if session.pty_id:
            self._pool.kill(session.pty_id)
            session.pty_id = ""

        runtime = get_runtime(session.runtime_id, self._config)
        args = [*runtime.args, "-c", "-p", prompt, *STREAM_JSON_ARGS]
        logger.debug(f"[session] print-mode follow-up args={args}")
        handle = self._pool.spawn(runtime.binary, args, cwd=session.worktree_path, env=dict(runtime.env) or None)

        session.pty_id = handle.id
        session.pid = handle.pid
        session.status = "running"
        session.output_buffer = ""
        self.hub.publish(events.STATUS, events.SessionStatusChanged(session.id, "running"))

        self._wirer.wire_stream_json_output(handle.id, session)
        self._wirer.wire_print_mode_exit_handling(handle.id, session)

    async def resume_session(self, session_id: str, runtime_id: str) -> SessionInfo:
        """Restart an agent in a dormant session's worktree."""
        session = self._require_session(session_id)
        if session.pty_id:
            return session.snapshot()

        if not session.ollama_model:
            meta = read_worktree_meta(session.worktree_path)
            if meta is not None and meta.ollama_model:
                session.ollama_model = meta.ollama_model

        runtime = get_runtime(runtime_id, self._config)
        args = list(runtime.args)
        if session.ollama_model:
            args += ["--model", session.ollama_model]

        handle = self._pool.spawn(runtime.binary, args, cwd=session.worktree_path, env=dict(runtime.env) or None)
        session.pty_id = handle.id
        session.pid = handle.pid
        session.runtime_id = runtime.id
        session.status = "running"
        session.output_buffer = ""
        session.detected_url = None

        self._wirer.wire_output_streaming(handle.id, session)
        self._wirer.wire_exit_handling(handle.id, session)
        return session.snapshot()

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        session = self._sessions.get(session_id)
        return session.snapshot() if session is not None else None

    def list_sessions(self) -> list[SessionInfo]:
        return [s.snapshot() for s in self._sessions.values()]

    def get_output_buffer(self, session_id: str) -> str:
        session = self._sessions.get(session_id)
        return session.output_buffer if session is not None else ""

    async def discover_sessions_for_project(self, project_id: str) -> list[SessionInfo]:
        """Adopt manifold worktrees left over from an earlier run as dormant sessions."""
        project = self._require_project(project_id)
        tracked = {s.worktree_path for s in self._sessions.values() if s.project_id == project_id}

        for worktree in await self._worktrees.list_worktrees(project.path):
            if worktree.path in tracked:
                continue
            meta = read_worktree_meta(worktree.path)
            session = Session(
                id=str(uuid.uuid4()),
                project_id=project_id,
                runtime_id=meta.runtime_id if meta else "",
                branch_name=worktree.branch,
                worktree_path=worktree.path,
                status="done",
                task_description=meta.task_description if meta else None,
                additional_dirs=list(meta.additional_dirs or []) if meta else [],
                ollama_model=meta.ollama_model if meta else None,
            )
            self._sessions[session.id] = session
            logger.debug(f"[session] discovered dormant session on {worktree.branch}")

        return [s.snapshot() for s in self._sessions.values() if s.project_id == project_id]

    async def discover_all_sessions(self) -> list[SessionInfo]:
        for project in self._projects.list_projects():
            if any(s.project_id == project.id for s in self._sessions.values()):
                continue
            try:
                await self.discover_sessions_for_project(project.id)
            except (GitCommandError, OSError) as exc:
                logger.debug(f"[session] skipping discovery for {project.path}: {exc}")
        return self.list_sessions()

    # ------------------------------------------------------------------ #
    # Teardown                                                             #
    # ------------------------------------------------------------------ #

    async def kill_session(self, session_id: str) -> None:
        """Stop the agent and remove the session's worktree (best-effort)."""
        session = self._require_session(session_id)
        # Drop first so nothing else resolves the worktree while it is removed.
        del self._sessions[session_id]

        if self._chat is not None:
            self._chat.clear_session(session_id)
        if session.pty_id:
            self._pool.kill(session.pty_id)
        if session.dev_server_pty_id:
            self._pool.kill(session.dev_server_pty_id)

        if session.project_id and not session.no_worktree:
            project = self._projects.get_project(session.project_id)
            if project is None:
                return
            try:
                await self._worktrees.remove_worktree(project.path, session.worktree_path)
            except (GitCommandError, OSError) as exc:
                logger.warning(f"[session] worktree cleanup for {session_id} failed: {exc}")

    def kill_all_sessions(self) -> None:
        for session in self._sessions.values():
            if session.pty_id:
                self._pool.kill(session.pty_id)
            if session.dev_server_pty_id:
                self._pool.kill(session.dev_server_pty_id)
        self._sessions.clear()

    async def kill_non_interactive_sessions(self, project_id: str) -> BatchKillResult:
        return await self._teardown.kill_non_interactive_sessions(project_id)

    async def kill_interactive_session(self, session_id: str) -> InteractiveKillResult:
        return await self._teardown.kill_interactive_session(session_id)

    # ------------------------------------------------------------------ #
    # Private helpers                                                      #
    # ------------------------------------------------------------------ #

    def _require_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _require_project(self, project_id: str) -> Project:
        project = self._projects.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def _persist_meta(self, session: Session) -> None:
        if session.no_worktree:
            return
        meta = WorktreeMeta(
            runtime_id=session.runtime_id,
            task_description=session.task_description,
            additional_dirs=list(session.additional_dirs) or None,
            ollama_model=session.ollama_model,
        )
        try:
            write_worktree_meta(session.worktree_path, meta)
        except OSError as exc:
            logger.warning(f"[session] could not write metadata for {session.worktree_path}: {exc}")


def build_session_manager(
    config: Config | None = None,
    backend_factory: BackendFactory = build_backend,
    timer_factory: TimerFactory = threading.Timer,
    git: GitRunner = git_exec,
) -> SessionManager:
    """Wire a ``SessionManager`` and its collaborators from ``config``."""
    if config is None:
        from manifold.config.loader import load_config

        config = load_config()
    storage = config.storage_dir
    pool = PtyPool(
        backend_factory=backend_factory,
        term_name=config.pty.term_name,
        default_cols=config.pty.cols,
        default_rows=config.pty.rows,
    )
    chat = ChatAdapter(flush_delay_s=config.chat.flush_delay_s, timer_factory=timer_factory)
    logger.debug(f"[session] manager storage={storage} term={config.pty.term_name}")
    return SessionManager(
        pool,
        WorktreeManager(storage, git=git),
        ProjectRegistry(storage, git=git),
        chat=chat,
        branch_checkout=BranchCheckoutManager(storage, git=git),
        config=config,
        git=git,
    )
