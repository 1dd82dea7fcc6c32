"""Sidecar metadata for manifold-managed worktrees.

The file sits next to the worktree directory (``<worktree>.manifold.json``),
never inside it, so the agent does not see it and it survives the worktree
being deleted underneath us. Its presence is what marks a worktree as ours.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from manifold.git.exec import PathLike

META_SUFFIX = ".manifold.json"


@dataclass
class WorktreeMeta:
    runtime_id: str
    task_description: str | None = None
    additional_dirs: list[str] | None = None
    ollama_model: str | None = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"runtimeId": self.runtime_id}
        if self.task_description is not None:
            data["taskDescription"] = self.task_description
        if self.additional_dirs is not None:
            data["additionalDirs"] = list(self.additional_dirs)
        if self.ollama_model is not None:
            data["ollamaModel"] = self.ollama_model
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "WorktreeMeta":
        dirs = data.get("additionalDirs")
        return cls(
            runtime_id=str(data.get("runtimeId", "")),
            task_description=data.get("taskDescription"),
            additional_dirs=[str(d) for d in dirs] if isinstance(dirs, list) else None,
            ollama_model=data.get("ollamaModel"),
        )


def meta_path(worktree_path: PathLike) -> Path:
    return Path(str(worktree_path) + META_SUFFIX)


def write_worktree_meta(worktree_path: PathLike, meta: WorktreeMeta) -> None:
    meta_path(worktree_path).write_text(json.dumps(meta.to_json()), encoding="utf-8")


def read_worktree_meta(worktree_path: PathLike) -> WorktreeMeta | None:
    """Return the sidecar for ``worktree_path``, or None if absent or unreadable."""
    path = meta_path(worktree_path)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.debug(f"[worktree] unreadable metadata {path}: {exc}")
        return None
    if not isinstance(data, dict):
        return None
    return WorktreeMeta.from_json(data)


def remove_worktree_meta(worktree_path: PathLike) -> None:
    meta_path(worktree_path).unlink(missing_ok=True)
