"""Error types raised by the orchestration core."""

from __future__ import annotations

from typing import Sequence


class ManifoldError(RuntimeError):
    """Base class for manifold errors."""


class PtyNotFoundError(ManifoldError, LookupError):
    """Raised when a PTY id is not (or no longer) tracked by the pool."""

    def __init__(self, pty_id: str) -> None:
        super().__init__(f"PTY not found: {pty_id}")
        self.pty_id = pty_id


class SessionNotFoundError(ManifoldError, LookupError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ProjectNotFoundError(ManifoldError, LookupError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class RuntimeNotFoundError(ManifoldError, LookupError):
    def __init__(self, runtime_id: str) -> None:
        super().__init__(f"Runtime not found: {runtime_id}")
        self.runtime_id = runtime_id


class GitCommandError(ManifoldError):
    """A git (or gh) invocation exited non-zero.

    ``stderr`` holds the failing stage's error output; git prints some
    conditions such as "nothing to commit" on stdout, so the message falls
    back to stdout when stderr is empty.
    """

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stderr: str = "",
        stdout: str = "",
        tool: str = "git",
    ) -> None:
        self.command_args = tuple(args)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        self.tool = tool
        subcommand = self.command_args[0] if self.command_args else ""
        detail = (stderr or stdout).strip()
        super().__init__(f"{tool} {subcommand} failed (code {returncode}): {detail}")


class PathTraversalError(ManifoldError, ValueError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Path traversal denied: {path} is outside the worktree")
        self.path = path


class BaseBranchMissingError(ManifoldError):
    def __init__(self, branch: str) -> None:
        super().__init__(f"Base branch does not exist: {branch}")
        self.branch = branch


class DirtyWorkingTreeError(ManifoldError):
    """Raised when a no-worktree session would switch branches over local edits."""


class GhUnavailableError(ManifoldError):
    """Raised when the GitHub CLI is missing or not authenticated."""
