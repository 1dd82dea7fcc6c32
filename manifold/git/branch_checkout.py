"""Work on branches that already exist: local, remote or behind an open PR."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from manifold.errors import GitCommandError
from manifold.git.exec import GitRunner, PathLike, gh_exec, git_exec
from manifold.git.worktree_manager import WorktreeInfo, worktree_location
from manifold.utils.helpers import ensure_dir

BranchSource = Literal["local", "remote", "both"]

_PR_NUMBER_RE = re.compile(r"^\d+$")
_PR_URL_RE = re.compile(r"/pull/(\d+)")


@dataclass(frozen=True)
class BranchInfo:
    name: str
    source: BranchSource


@dataclass(frozen=True)
class PRInfo:
    number: int
    title: str
    head_ref_name: str
    author: str


def parse_pr_number(identifier: str) -> str:
    """Accept ``123`` or ``https://github.com/owner/repo/pull/123``."""
    value = identifier.strip()
    if _PR_NUMBER_RE.match(value):
        return value
    match = _PR_URL_RE.search(value)
    if match:
        return match.group(1)
    raise ValueError(f'Invalid PR identifier: "{identifier}". Use a PR number or GitHub URL.')


def secondary_worktree_branches(raw: str) -> set[str]:
    """Branches checked out in worktrees other than the main checkout.

    The first record of ``git worktree list --porcelain`` is always the
    repository's own working tree.
    """
    branches: set[str] = set()
    index = -1
    current: str | None = None
    for line in raw.split("\n"):
        if line.startswith("worktree "):
            if index > 0 and current:
                branches.add(current)
            index += 1
            current = None
        elif line.startswith("branch "):
            current = line[len("branch "):].strip().removeprefix("refs/heads/")
    if index > 0 and current:
        branches.add(current)
    return branches


def classify_branches(refs_output: str, excluded: set[str]) -> list[BranchInfo]:
    """Merge ``refs/heads`` and ``refs/remotes`` names into BranchInfo entries."""
    local: dict[str, None] = {}
    remote: dict[str, None] = {}
    for line in refs_output.split("\n"):
        ref = line.strip()
        if ref.startswith("refs/heads/"):
            name = ref[len("refs/heads/"):]
            if name not in excluded:
                local[name] = None
        elif ref.startswith("refs/remotes/"):
            if ref.endswith("/HEAD"):
                continue
            _, sep, name = ref[len("refs/remotes/"):].partition("/")
            if sep and name and name not in excluded:
                remote[name] = None

    branches: list[BranchInfo] = []
    for name in {**local, **remote}:
        if name in local and name in remote:
            source: BranchSource = "both"
        elif name in local:
            source = "local"
        else:
            source = "remote"
        branches.append(BranchInfo(name=name, source=source))
    return branches


class BranchCheckoutManager:
    def __init__(
        self,
        storage_path: PathLike,
        git: GitRunner = git_exec,
        gh: GitRunner = gh_exec,
    ) -> None:
        self._storage_path = storage_path
        self._git = git
        self._gh = gh

    async def list_branches(self, project_path: PathLike) -> list[BranchInfo]:
        """Local and remote branches that are free to check out."""
        try:
            await self._git(["fetch", "--all", "--prune"], project_path)
        except (GitCommandError, OSError) as exc:
            logger.debug(f"[git] fetch before branch listing failed: {exc}")

        raw = await self._git(["branch", "-a", "--format=%(refname)"], project_path)
        try:
            worktrees = await self._git(["worktree", "list", "--porcelain"], project_path)
        except (GitCommandError, OSError) as exc:
            logger.debug(f"[git] worktree list failed: {exc}")
            worktrees = ""
        return classify_branches(raw, secondary_worktree_branches(worktrees))

    async def list_open_prs(self, project_path: PathLike) -> list[PRInfo]:
        raw = await self._gh(
            ["pr", "list", "--state=open", "--json", "number,title,headRefName,author", "--limit", "50"],
            project_path,
        )
        return [
            PRInfo(
                number=int(item["number"]),
                title=item.get("title", ""),
                head_ref_name=item.get("headRefName", ""),
                author=(item.get("author") or {}).get("login", ""),
            )
            for item in json.loads(raw or "[]")
        ]

    async def fetch_pr_branch(self, project_path: PathLike, pr_identifier: str) -> str:
        """Resolve a PR to its head branch and fetch that branch from origin."""
        number = parse_pr_number(pr_identifier)
        out = await self._gh(
            ["pr", "view", number, "--json", "headRefName", "-q", ".headRefName"],
            project_path,
        )
        branch = out.strip()
        await self._git(["fetch", "origin", branch], project_path)
        return branch

    async def create_worktree_from_branch(
        self,
        project_path: PathLike,
        branch: str,
        project_name: str,
    ) -> WorktreeInfo:
        worktree_path = worktree_location(self._storage_path, project_name, branch)
        ensure_dir(worktree_path.parent)
        # no -b: the branch already exists
        await self._git(["worktree", "add", str(worktree_path), branch], project_path)
        logger.info(f"[worktree] checked out existing {branch} at {worktree_path}")
        return WorktreeInfo(branch=branch, path=str(worktree_path))
