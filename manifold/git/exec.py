"""One-shot git / gh invocations.

stdin is /dev/null and stdout/stderr are piped, so a command can never
block waiting on a terminal.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Sequence, Union

from loguru import logger

from manifold.errors import GitCommandError

PathLike = Union[str, Path]
GitRunner = Callable[[Sequence[str], PathLike], Awaitable[str]]


async def _run(tool: str, args: Sequence[str], cwd: PathLike) -> str:
    proc = await asyncio.create_subprocess_exec(
        tool,
        *args,
        cwd=str(cwd),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout_b, stderr_b = await proc.communicate()
    stdout = stdout_b.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        stderr = stderr_b.decode("utf-8", errors="replace")
        logger.debug(f"[git] {tool} {' '.join(args)} in {cwd} exited {proc.returncode}: {stderr.strip()}")
        raise GitCommandError(args, proc.returncode or 1, stderr=stderr, stdout=stdout, tool=tool)
    return stdout


async def git_exec(args: Sequence[str], cwd: PathLike) -> str:
    """Run ``git <args>`` in ``cwd`` and return stdout; raise on non-zero exit."""
    return await _run("git", args, cwd)


async def gh_exec(args: Sequence[str], cwd: PathLike) -> str:
    """Run ``gh <args>`` in ``cwd`` and return stdout; raise on non-zero exit."""
    return await _run("gh", args, cwd)
