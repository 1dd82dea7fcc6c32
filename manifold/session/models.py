"""Session and project records shared by the orchestration layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

SessionStatus = Literal["running", "waiting", "done", "error"]


@dataclass
class Project:
    """A repository registered with manifold."""

    id: str
    name: str
    path: str
    base_branch: str = "main"
    added_at: str = ""

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "baseBranch": self.base_branch,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            path=str(data.get("path", "")),
            base_branch=str(data.get("baseBranch") or "main"),
            added_at=str(data.get("addedAt", "")),
        )


@dataclass
class Session:
    """Live state of one agent session.

    ``pty_id`` is empty once the agent process has exited; a non-empty value
    always names a PTY that is still tracked by the pool.
    """

    id: str
    project_id: str
    runtime_id: str
    branch_name: str
    worktree_path: str
    pty_id: str = ""
    pid: Optional[int] = None
    status: SessionStatus = "running"
    dev_server_pty_id: Optional[str] = None
    task_description: Optional[str] = None
    non_interactive: bool = False
    no_worktree: bool = False
    output_buffer: str = ""
    additional_dirs: list[str] = field(default_factory=list)
    ollama_model: Optional[str] = None
    detected_url: Optional[str] = None
    stream_json_line_buffer: str = ""

    def snapshot(self) -> "SessionInfo":
        return SessionInfo(
            id=self.id,
            project_id=self.project_id,
            runtime_id=self.runtime_id,
            branch_name=self.branch_name,
            worktree_path=self.worktree_path,
            status=self.status,
            pid=self.pid,
            task_description=self.task_description,
            additional_dirs=tuple(self.additional_dirs),
            no_worktree=self.no_worktree,
            non_interactive=self.non_interactive,
        )


@dataclass(frozen=True)
class SessionInfo:
    """Read-only view of a session handed to callers."""

    id: str
    project_id: str
    runtime_id: str
    branch_name: str
    worktree_path: str
    status: SessionStatus
    pid: Optional[int]
    task_description: Optional[str]
    additional_dirs: tuple[str, ...]
    no_worktree: bool
    non_interactive: bool


@dataclass
class SpawnOptions:
    project_id: str
    runtime_id: str
    prompt: str = ""
    user_message: Optional[str] = None
    branch_name: Optional[str] = None
    existing_branch: Optional[str] = None
    pr_identifier: Optional[str] = None
    no_worktree: bool = False
    non_interactive: bool = False
    ollama_model: Optional[str] = None
    cols: Optional[int] = None
    rows: Optional[int] = None
