"""Create, enumerate and remove the git worktrees that back agent sessions."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from manifold.errors import BaseBranchMissingError, GitCommandError
from manifold.git.branch_namer import generate_branch_name, repo_prefix, slugify
from manifold.git.exec import GitRunner, PathLike, git_exec
from manifold.git.worktree_meta import meta_path, remove_worktree_meta
from manifold.utils.helpers import ensure_dir

INITIAL_COMMIT_MESSAGE = "Initial commit"


@dataclass(frozen=True)
class WorktreeInfo:
    branch: str
    path: str


def parse_worktree_porcelain(raw: str) -> list[WorktreeInfo]:
    """Parse ``git worktree list --porcelain``.

    Records are separated by blank lines and the last one may not be
    followed by one. Detached worktrees (no ``branch`` line) are skipped.
    """
    entries: list[WorktreeInfo] = []
    current_path: str | None = None
    current_branch: str | None = None

    for line in raw.split("\n"):
        line = line.rstrip("\r")
        if line.startswith("worktree "):
            current_path = line[len("worktree "):].strip()
        elif line.startswith("branch "):
            ref = line[len("branch "):].strip()
            current_branch = ref.removeprefix("refs/heads/")
        elif not line.strip():
            if current_path and current_branch:
                entries.append(WorktreeInfo(branch=current_branch, path=current_path))
            current_path = None
            current_branch = None

    if current_path and current_branch:
        entries.append(WorktreeInfo(branch=current_branch, path=current_path))
    return entries


def worktree_location(storage_path: PathLike, project_name: str, branch: str) -> Path:
    """`<storage>/worktrees/<project>/<branch with / mapped to ->`."""
    base = Path(storage_path).expanduser() / "worktrees" / (slugify(project_name) or "project")
    return base / branch.replace("/", "-")


def _same_path(a: PathLike, b: PathLike) -> bool:
    return os.path.realpath(str(a)) == os.path.realpath(str(b))


class WorktreeManager:
    """Worktrees live under ``<storage>/worktrees/<project>/<branch-with-dashes>``."""

    def __init__(self, storage_path: PathLike, git: GitRunner = git_exec) -> None:
        self._storage_path = Path(storage_path).expanduser()
        self._git = git

    async def create_worktree(
        self,
        repo_path: PathLike,
        base_branch: str,
        project_name: str,
        branch_name: str | None = None,
        task_description: str | None = None,
    ) -> WorktreeInfo:
        """Create a new branch off ``base_branch`` checked out in a fresh worktree.

        A repository without any commit is bootstrapped with an empty
        initial commit. A missing base branch in a repository that does
        have history raises BaseBranchMissingError.
        """
        await self._ensure_base_branch(repo_path, base_branch)

        branch = branch_name or await generate_branch_name(
            repo_path, task_description or "", git=self._git
        )
        worktree_path = worktree_location(self._storage_path, project_name, branch)
        ensure_dir(worktree_path.parent)

        await self._git(["worktree", "add", "-b", branch, str(worktree_path), base_branch], repo_path)
        logger.info(f"[worktree] created {worktree_path} on {branch} from {base_branch}")
        return WorktreeInfo(branch=branch, path=str(worktree_path))

    async def remove_worktree(self, repo_path: PathLike, worktree_path: PathLike) -> None:
        """Force-remove a worktree, its sidecar and, for our own branches, the branch.

        Removing a worktree that is already gone only clears the sidecar.
        """
        raw = await self._git(["worktree", "list", "--porcelain"], repo_path)
        target = next(
            (w for w in parse_worktree_porcelain(raw) if _same_path(w.path, worktree_path)),
            None,
        )

        if target is None and not Path(worktree_path).exists():
            remove_worktree_meta(worktree_path)
            logger.debug(f"[worktree] {worktree_path} already removed")
            return

        await self._git(["worktree", "remove", str(worktree_path), "--force"], repo_path)
        remove_worktree_meta(worktree_path)
        logger.info(f"[worktree] removed {worktree_path}")

        if target is not None and target.branch.startswith(repo_prefix(repo_path)):
            try:
                await self._git(["branch", "-D", target.branch], repo_path)
            except GitCommandError as exc:
                logger.debug(f"[worktree] branch {target.branch} left behind: {exc}")

    async def list_worktrees(self, repo_path: PathLike) -> list[WorktreeInfo]:
        """Worktrees of ``repo_path`` that carry a manifold sidecar file."""
        raw = await self._git(["worktree", "list", "--porcelain"], repo_path)
        return [w for w in parse_worktree_porcelain(raw) if meta_path(w.path).exists()]

    async def _ensure_base_branch(self, repo_path: PathLike, base_branch: str) -> None:
        if await self._ref_exists(repo_path, base_branch):
            return
        if await self._ref_exists(repo_path, "HEAD"):
            raise BaseBranchMissingError(base_branch)

        logger.info(f"[worktree] {repo_path} has no commits; creating an initial commit")
        await self._git(["commit", "--allow-empty", "-m", INITIAL_COMMIT_MESSAGE], repo_path)
        if not await self._ref_exists(repo_path, base_branch):
            # init.defaultBranch differs from the project's base branch
            await self._git(["branch", base_branch], repo_path)

    async def _ref_exists(self, repo_path: PathLike, ref: str) -> bool:
        try:
            await self._git(["rev-parse", "--verify", "--quiet", ref], repo_path)
        except GitCommandError:
            return False
        return True
