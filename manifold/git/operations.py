"""Stateless git helpers: committing, status, conflict resolution, PR context and base updates."""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from manifold.errors import GitCommandError, PathTraversalError
from manifold.git.exec import GitRunner, PathLike, git_exec

AI_GENERATE_TIMEOUT_S = 15.0
PR_DIFF_LIMIT = 6000
_KILL_GRACE_S = 2.0
_CONFLICT_CODES = frozenset({"UU", "AA", "DD"})
_PATH_SEPARATOR_RE = re.compile(r"[\\/]")


@dataclass(frozen=True)
class AheadBehind:
    ahead: int = 0
    behind: int = 0


@dataclass
class StatusDetail:
    """Paths from ``git status --porcelain`` grouped by state."""

    conflicts: list[str] = field(default_factory=list)
    staged: list[str] = field(default_factory=list)
    unstaged: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PRContext:
    commits: str = ""
    diff_stat: str = ""
    diff_patch: str = ""


@dataclass(frozen=True)
class FetchResult:
    updated_branch: str
    previous_ref: str
    current_ref: str
    commit_count: int


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------

def parse_ahead_behind(stdout: str) -> AheadBehind:
    """Parse ``rev-list --left-right --count base...HEAD`` (left=behind, right=ahead)."""
    parts = stdout.split()
    counts: list[int] = []
    for part in parts[:2]:
        try:
            counts.append(int(part))
        except ValueError:
            counts.append(0)
    counts.extend([0] * (2 - len(counts)))
    return AheadBehind(ahead=counts[1], behind=counts[0])


def _porcelain_path(xy: str, raw_path: str) -> str:
    path = raw_path
    if xy[0] in "RC" and " -> " in path:
        path = path.split(" -> ", 1)[1]
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        path = path[1:-1]
    return path


def parse_status_detail(porcelain: str) -> StatusDetail:
    """Group porcelain v1 lines into conflicts, staged and unstaged paths.

    A path modified in both index and worktree (``MM``) lands in both
    ``staged`` and ``unstaged``.
    """
    detail = StatusDetail()
    for line in porcelain.split("\n"):
        line = line.rstrip("\r")
        if len(line) < 4:
            continue
        xy = line[:2]
        path = _porcelain_path(xy, line[3:])

        if xy in _CONFLICT_CODES:
            detail.conflicts.append(path)
            continue
        if xy == "??":
            detail.unstaged.append(path)
            continue
        if xy[0] not in (" ", "?"):
            detail.staged.append(path)
        if xy[1] not in (" ", "?"):
            detail.unstaged.append(path)
    return detail


def parse_conflicts(porcelain: str) -> list[str]:
    return parse_status_detail(porcelain).conflicts


def _validate_relative_path(worktree_path: PathLike, relative_path: str) -> Path:
    if not relative_path or os.path.isabs(relative_path):
        raise PathTraversalError(relative_path)
    if ".." in _PATH_SEPARATOR_RE.split(relative_path):
        raise PathTraversalError(relative_path)
    root = Path(worktree_path).resolve()
    target = (root / relative_path).resolve()
    if target == root or root not in target.parents:
        raise PathTraversalError(relative_path)
    return target


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class GitOperationsManager:
    """Execute single git invocations against a worktree; holds no state between calls."""

    def __init__(
        self,
        git: GitRunner = git_exec,
        ai_timeout_s: float = AI_GENERATE_TIMEOUT_S,
        pr_diff_limit: int = PR_DIFF_LIMIT,
    ) -> None:
        self._git = git
        self._ai_timeout_s = ai_timeout_s
        self._pr_diff_limit = pr_diff_limit

    async def commit(self, worktree_path: PathLike, message: str) -> None:
        """Stage everything and commit; the failing stage's output is in the error."""
        await self._git(["add", "-A"], worktree_path)
        await self._git(["commit", "-m", message], worktree_path)

    async def has_uncommitted_changes(self, worktree_path: PathLike) -> bool:
        status = await self._git(["status", "--porcelain"], worktree_path)
        return bool(status.strip())

    async def get_ahead_behind(self, worktree_path: PathLike, base_branch: str) -> AheadBehind:
        try:
            stdout = await self._git(
                ["rev-list", "--left-right", "--count", f"{base_branch}...HEAD"],
                worktree_path,
            )
        except (GitCommandError, OSError) as exc:
            # Base branch missing or no common ancestor yet.
            logger.debug(f"[git] ahead/behind unavailable for {worktree_path}: {exc}")
            return AheadBehind()
        return parse_ahead_behind(stdout)

    async def get_status_detail(self, worktree_path: PathLike) -> StatusDetail:
        stdout = await self._git(["status", "--porcelain"], worktree_path)
        return parse_status_detail(stdout)

    async def get_conflicts(self, worktree_path: PathLike) -> list[str]:
        try:
            stdout = await self._git(["status", "--porcelain"], worktree_path)
        except (GitCommandError, OSError) as exc:
            logger.debug(f"[git] status failed for {worktree_path}: {exc}")
            return []
        return parse_conflicts(stdout)

    async def resolve_conflict(self, worktree_path: PathLike, relative_path: str, content: str) -> None:
        """Write the resolved file and stage exactly that path.

        Paths with ``..`` segments, absolute paths and anything that
        resolves outside the worktree are rejected before any write.
        """
        target = _validate_relative_path(worktree_path, relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")
        await self._git(["add", "--", relative_path], worktree_path)

    async def get_pr_context(self, worktree_path: PathLike, base_branch: str) -> PRContext:
        revs = f"{base_branch}..HEAD"
        try:
            commits, diff_stat, diff_patch = await asyncio.gather(
                self._git(["log", "--oneline", revs], worktree_path),
                self._git(["diff", "--stat", revs], worktree_path),
                self._git(["diff", revs], worktree_path),
            )
        except (GitCommandError, OSError) as exc:
            logger.debug(f"[git] PR context unavailable for {worktree_path}: {exc}")
            return PRContext()
        return PRContext(
            commits=commits.strip(),
            diff_stat=diff_stat.strip(),
            diff_patch=diff_patch.strip()[: self._pr_diff_limit],
        )

    async def fetch_and_update(self, project_path: PathLike, base_branch: str) -> FetchResult:
        """Fetch origin and fast-forward ``base_branch``; every failure propagates."""
        previous_ref = (await self._git(["rev-parse", base_branch], project_path)).strip()
        await self._git(["fetch", "origin"], project_path)

        current_branch: Optional[str]
        try:
            current_branch = (await self._git(["symbolic-ref", "--short", "HEAD"], project_path)).strip()
        except GitCommandError:
            current_branch = None  # detached HEAD

        if current_branch == base_branch:
            await self._git(["merge", "--ff-only", f"origin/{base_branch}"], project_path)
        else:
            await self._git(["fetch", "origin", f"{base_branch}:{base_branch}"], project_path)

        current_ref = (await self._git(["rev-parse", base_branch], project_path)).strip()
        count_out = await self._git(["rev-list", "--count", f"{previous_ref}..{current_ref}"], project_path)
        try:
            commit_count = int(count_out.strip() or 0)
        except ValueError:
            commit_count = 0

        logger.info(f"[git] updated {base_branch}: {previous_ref[:8]} -> {current_ref[:8]} ({commit_count} commits)")
        return FetchResult(
            updated_branch=base_branch,
            previous_ref=previous_ref,
            current_ref=current_ref,
            commit_count=commit_count,
        )

    async def ai_generate(
        self,
        binary_path: str,
        prompt: str,
        cwd: PathLike,
        extra_args: Optional[Sequence[str]] = None,
    ) -> str:
        """Run ``<binary> -p [extra_args]`` with ``prompt`` on stdin.

        Resolves with trimmed stdout whatever the exit code. Spawn errors
        and the timeout both resolve to ``""``; on timeout the child is
        terminated.
        """
        args = ["-p", *(extra_args or [])]
        try:
            proc = await asyncio.create_subprocess_exec(
                binary_path,
                *args,
                cwd=str(cwd),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.warning(f"[ai-generate] spawn failed for {binary_path}: {exc}")
            return ""

        try:
            stdout_b, _ = await asyncio.wait_for(
                proc.communicate(prompt.encode("utf-8")),
                timeout=self._ai_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[ai-generate] {binary_path} timed out after {self._ai_timeout_s}s")
            await _terminate(proc)
            return ""

        if proc.returncode != 0:
            logger.debug(f"[ai-generate] {binary_path} exited {proc.returncode}")
        return stdout_b.decode("utf-8", errors="replace").strip()


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=_KILL_GRACE_S)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
