"""PTY backends that host one agent process each.

The pool only needs a handful of operations from a backend: pull output,
push input, resize, kill and reap. pexpect provides them on POSIX and
pywinpty on Windows.
"""

from __future__ import annotations

import os
import subprocess
from typing import Any, Optional, Protocol, Sequence

from loguru import logger

READ_SIZE = 4096
READ_TIMEOUT_S = 0.1


class PTYBackend(Protocol):
    """What PtyPool's reader thread and control calls rely on."""

    pid: int

    def read(self) -> Optional[str]:
        """Next output chunk; ``""`` when nothing is ready, ``None`` at EOF."""

    def write(self, data: str) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def kill(self) -> None: ...

    def wait(self) -> tuple[int, Optional[int]]:
        """Reap the process and return ``(exit_code, signal)``."""


class _ProcessBackend:
    """Behaviour shared by pexpect ``spawn`` and winpty ``PtyProcess`` objects."""

    _proc: Any

    @property
    def pid(self) -> int:
        return self._proc.pid

    def resize(self, cols: int, rows: int) -> None:
        # both libraries take (rows, cols)
        self._proc.setwinsize(rows, cols)

    def kill(self) -> None:
        if self._proc.isalive():
            self._proc.terminate(force=True)


class UnixPexpectBackend(_ProcessBackend):
    def __init__(
        self,
        command: str,
        args: Sequence[str],
        cwd: str,
        env: dict[str, str],
        cols: int = 80,
        rows: int = 24,
    ) -> None:
        import pexpect

        self._eof = pexpect.EOF
        self._timeout = pexpect.TIMEOUT
        self._proc = pexpect.spawn(
            command,
            list(args),
            cwd=cwd,
            env=env,
            dimensions=(rows, cols),
            echo=False,
            encoding="utf-8",
            codec_errors="ignore",
        )

    def read(self) -> Optional[str]:
        try:
            return self._proc.read_nonblocking(size=READ_SIZE, timeout=READ_TIMEOUT_S)
        except self._timeout:
            return ""
        except self._eof:
            return None

    def write(self, data: str) -> None:
        self._proc.send(data)

    def wait(self) -> tuple[int, Optional[int]]:
        # close() reaps the child and fills exitstatus / signalstatus
        self._proc.close(force=True)
        return self._proc.exitstatus or 0, self._proc.signalstatus


class WinptyBackend(_ProcessBackend):
    def __init__(
        self,
        command: str,
        args: Sequence[str],
        cwd: str,
        env: dict[str, str],
        cols: int = 80,
        rows: int = 24,
    ) -> None:
        self._proc = _spawn_winpty([command, *args], cwd, env, cols, rows)

    def read(self) -> Optional[str]:
        try:
            return self._proc.read(READ_SIZE)
        except EOFError:
            return None

    def write(self, data: str) -> None:
        self._proc.write(data)

    def kill(self) -> None:
        pid = self.pid
        super().kill()
        # agents start their own children (shells, dev servers); take the whole tree
        try:
            subprocess.run(["taskkill", "/F", "/T", "/PID", str(pid)], capture_output=True, timeout=3)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug(f"[pty-pool] taskkill {pid} failed: {exc}")

    def wait(self) -> tuple[int, Optional[int]]:
        self._proc.wait()
        return self._proc.exitstatus or 0, None


def _spawn_winpty(argv: list[str], cwd: str, env: dict[str, str], cols: int, rows: int) -> Any:
    """Start ``argv`` under ConPTY, falling back to the legacy WinPTY agent."""
    from winpty import Backend, PtyProcess

    last_error: Optional[Exception] = None
    for extra in ({"backend": Backend.ConPTY}, {"backend": Backend.WinPTY}, {}):
        try:
            return PtyProcess.spawn(argv, cwd=cwd, env=env, dimensions=(rows, cols), **extra)
        except Exception as exc:  # pragma: no cover - platform specific
            logger.debug(f"[pty-pool] winpty launch {extra or 'default'} failed: {exc}")
            last_error = exc
    raise OSError(f"Failed to start PTY for {argv[0]}") from last_error


def build_backend(
    command: str,
    args: Sequence[str],
    cwd: str,
    env: dict[str, str],
    cols: int = 80,
    rows: int = 24,
) -> PTYBackend:
    """Backend for the current platform; the default ``PtyPool`` factory."""
    backend_cls = WinptyBackend if os.name == "nt" else UnixPexpectBackend
    backend = backend_cls(command, args, cwd=cwd, env=env, cols=cols, rows=rows)
    logger.debug(f"[pty-pool] {backend_cls.__name__} started {command} pid={backend.pid}")
    return backend
