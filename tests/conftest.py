from __future__ import annotations

import queue
from pathlib import Path
from typing import Callable, Optional, Union

import pytest

from manifold.errors import GitCommandError

Response = Union[str, Exception, list]


class FakeGit:
    """Scripted stand-in for ``git_exec`` / ``gh_exec``.

    Responses are keyed by the argument tuple, optionally narrowed by cwd.
    A list value is consumed one item per call. Unscripted calls return "".
    """

    def __init__(self) -> None:
        self.calls: list[tuple[tuple[str, ...], str]] = []
        self._responses: dict[object, Response] = {}

    def on(
        self,
        *args: str,
        stdout: str = "",
        error: Optional[str] = None,
        exc: Optional[Exception] = None,
        cwd: Optional[str] = None,
    ) -> None:
        value: Response = stdout
        if exc is not None:
            value = exc
        elif error is not None:
            value = GitCommandError(args, 1, stderr=error)
        self._add(args, value, cwd)

    def sequence(self, *args: str, outputs: list, cwd: Optional[str] = None) -> None:
        self._add(args, list(outputs), cwd)

    def _add(self, args: tuple[str, ...], value: Response, cwd: Optional[str]) -> None:
        key: object = (tuple(args), str(cwd)) if cwd is not None else tuple(args)
        self._responses[key] = value

    def args_list(self) -> list[tuple[str, ...]]:
        return [args for args, _ in self.calls]

    async def __call__(self, args, cwd) -> str:
        key = tuple(args)
        self.calls.append((key, str(cwd)))
        value = self._responses.get((key, str(cwd)), self._responses.get(key, ""))
        if isinstance(value, list):
            value = value.pop(0) if value else ""
        if isinstance(value, Exception):
            raise value
        return value


class FakeBackend:
    """PTY backend driven by the test instead of a real child process."""

    def __init__(self, command, args, cwd, env, cols, rows) -> None:
        self.command = command
        self.args = list(args)
        self.cwd = cwd
        self.env = env
        self.size = (cols, rows)
        self.pid = 4242
        self.written: list[str] = []
        self.killed = False
        self.exit_code = 0
        self._chunks: "queue.Queue[Optional[str]]" = queue.Queue()

    def emit(self, data: str) -> None:
        self._chunks.put(data)

    def finish(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self._chunks.put(None)

    def read(self) -> Optional[str]:
        try:
            return self._chunks.get(timeout=0.1)
        except queue.Empty:
            return ""

    def write(self, data: str) -> None:
        self.written.append(data)

    def resize(self, cols: int, rows: int) -> None:
        self.size = (cols, rows)

    def kill(self) -> None:
        self.killed = True
        self.exit_code = -1
        self._chunks.put(None)

    def wait(self):
        return self.exit_code, None


class BackendFactory:
    def __init__(self) -> None:
        self.created: list[FakeBackend] = []

    def __call__(self, command, args, cwd, env, cols, rows) -> FakeBackend:
        backend = FakeBackend(command, args, cwd, env, cols, rows)
        self.created.append(backend)
        return backend


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    import time

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def backends() -> BackendFactory:
    return BackendFactory()


@pytest.fixture
def git_identity(monkeypatch, tmp_path: Path) -> None:
    """Deterministic identity and config for tests that run the real git."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Manifold Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Manifold Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
    monkeypatch.delenv("GIT_DIR", raising=False)
    monkeypatch.delenv("GIT_WORK_TREE", raising=False)
