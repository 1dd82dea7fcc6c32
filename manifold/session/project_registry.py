"""Persistent registry of the repositories manifold manages."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from manifold.errors import GitCommandError
from manifold.git.exec import GitRunner, PathLike, git_exec
from manifold.session.models import Project
from manifold.utils.helpers import ensure_dir, get_data_path

_PROJECTS_FILE = "projects.json"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class ProjectRegistry:
    """Projects stored as a JSON array.

    File layout::

        ~/.manifold/
            projects.json
    """

    def __init__(self, storage_path: Path | None = None, git: GitRunner = git_exec) -> None:
        root = Path(storage_path).expanduser() if storage_path else get_data_path()
        self._file = root / _PROJECTS_FILE
        self._git = git
        self._projects: list[Project] = self._load()

    # ------------------------------------------------------------------ #
    # CRUD                                                                 #
    # ------------------------------------------------------------------ #

    def list_projects(self) -> list[Project]:
        return list(self._projects)

    def get_project(self, project_id: str) -> Project | None:
        return next((p for p in self._projects if p.id == project_id), None)

    async def add_project(self, project_path: PathLike) -> Project:
        """Register a repository; adding the same path twice returns the existing entry."""
        resolved = str(Path(project_path).expanduser().resolve())
        existing = next((p for p in self._projects if p.path == resolved), None)
        if existing is not None:
            return existing

        project = Project(
            id=str(uuid.uuid4()),
            name=Path(resolved).name,
            path=resolved,
            base_branch=await self.detect_base_branch(resolved),
            added_at=_now(),
        )
        self._projects.append(project)
        self._save()
        logger.info(f"[session] registered project {project.name} ({project.base_branch})")
        return project

    def update_project(self, project_id: str, **changes: Any) -> Project | None:
        """Apply ``name`` / ``base_branch`` changes; returns None for unknown ids."""
        project = self.get_project(project_id)
        if project is None:
            return None
        for key in ("name", "base_branch"):
            if key in changes and changes[key]:
                setattr(project, key, str(changes[key]))
        self._save()
        return project

    def remove_project(self, project_id: str) -> bool:
        project = self.get_project(project_id)
        if project is None:
            return False
        self._projects.remove(project)
        self._save()
        return True

    async def detect_base_branch(self, project_path: PathLike) -> str:
        """``main`` if present, else ``master``, else the current branch."""
        try:
            stdout = await self._git(["branch", "-a", "--format=%(refname:short)"], project_path)
            branches = {line.strip() for line in stdout.split("\n") if line.strip()}
            if "main" in branches:
                return "main"
            if "master" in branches:
                return "master"
            current = await self._git(["branch", "--show-current"], project_path)
            return current.strip() or "main"
        except (GitCommandError, OSError) as exc:
            logger.debug(f"[session] base branch detection failed for {project_path}: {exc}")
            return "main"

    # ------------------------------------------------------------------ #
    # Private helpers                                                      #
    # ------------------------------------------------------------------ #

    def _load(self) -> list[Project]:
        if not self._file.exists():
            return []
        try:
            data = json.loads(self._file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"[session] ignoring unreadable {self._file}: {exc}")
            return []
        if not isinstance(data, list):
            return []
        return [Project.from_json(item) for item in data if isinstance(item, dict)]

    def _save(self) -> None:
        ensure_dir(self._file.parent)
        self._file.write_text(
            json.dumps([p.to_json() for p in self._projects], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
