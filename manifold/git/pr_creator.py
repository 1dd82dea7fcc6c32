"""Push a session branch and open a pull request with the GitHub CLI."""

from __future__ import annotations

from loguru import logger

from manifold.errors import GhUnavailableError, GitCommandError
from manifold.git.exec import GitRunner, PathLike, gh_exec, git_exec


def default_pr_title(branch_name: str) -> str:
    return f"Manifold: {branch_name}"


def default_pr_body(branch_name: str) -> str:
    return f"Automated PR created by Manifold from branch `{branch_name}`."


class PrCreator:
    def __init__(self, git: GitRunner = git_exec, gh: GitRunner = gh_exec) -> None:
        self._git = git
        self._gh = gh

    async def is_gh_available(self, cwd: PathLike = ".") -> bool:
        try:
            await self._gh(["--version"], cwd)
        except (GitCommandError, OSError):
            return False
        return True

    async def push_branch(self, worktree_path: PathLike, branch_name: str) -> None:
        await self._git(["push", "-u", "origin", branch_name], worktree_path)

    async def create_pr(
        self,
        worktree_path: PathLike,
        branch_name: str,
        base_branch: str,
        title: str | None = None,
        body: str | None = None,
    ) -> str:
        """Push ``branch_name`` and open a PR against ``base_branch``; returns the PR URL."""
        if not await self.is_gh_available(worktree_path):
            raise GhUnavailableError(
                "GitHub CLI (gh) is not installed or not authenticated. Install it from https://cli.github.com/"
            )
        await self.push_branch(worktree_path, branch_name)

        out = await self._gh(
            [
                "pr", "create",
                "--title", title if title is not None else default_pr_title(branch_name),
                "--body", body if body is not None else default_pr_body(branch_name),
                "--base", base_branch,
                "--head", branch_name,
            ],
            worktree_path,
        )
        url = out.strip()
        if not url.startswith("http"):
            raise GitCommandError(["pr", "create"], 0, stdout=f"Unexpected gh output: {url}", tool="gh")
        logger.info(f"[git] opened PR for {branch_name}: {url}")
        return url
