"""Registry of running pseudo-terminal processes, keyed by generated id."""

from __future__ import annotations

import os
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from loguru import logger

from manifold.agent.backend import PTYBackend, build_backend
from manifold.errors import PtyNotFoundError

DataListener = Callable[[str], None]
ExitListener = Callable[[int, Optional[int]], None]
BackendFactory = Callable[..., PTYBackend]

# Set when manifold itself runs inside a claude session; the spawned
# claude CLI then refuses to start, taking itself for a nested session.
_STRIPPED_ENV_VARS = ("CLAUDECODE",)

# Characters of early output held for the first data listener
BACKLOG_LIMIT = 100_000


@dataclass(frozen=True)
class PtyHandle:
    """Public handle returned by :meth:`PtyPool.spawn`."""

    id: str
    pid: int


@dataclass
class _PtyEntry:
    id: str
    backend: PTYBackend
    data_listeners: list[DataListener] = field(default_factory=list)
    exit_listeners: list[ExitListener] = field(default_factory=list)
    backlog: list[str] = field(default_factory=list)
    backlog_size: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock)
    reader: Optional[threading.Thread] = None


class PtyPool:
    """Own every live PTY and give identity-based access to it.

    Each PTY gets a reader thread that delivers output chunks to its data
    listeners in the order the OS produced them. Output that arrives before
    the first data listener is registered is held back and replayed to that
    listener; only the newest ``backlog_limit`` characters are kept. When
    the process exits, exit listeners fire first and the id is purged from
    the pool afterwards.
    """

    def __init__(
        self,
        backend_factory: BackendFactory = build_backend,
        term_name: str = "xterm-256color",
        default_cols: int = 80,
        default_rows: int = 24,
        backlog_limit: int = BACKLOG_LIMIT,
    ) -> None:
        self._backend_factory = backend_factory
        self._term_name = term_name
        self._default_cols = default_cols
        self._default_rows = default_rows
        self._backlog_limit = backlog_limit
        self._ptys: dict[str, _PtyEntry] = {}
        self._lock = threading.Lock()

    def spawn(
        self,
        command: str,
        args: Sequence[str],
        cwd: str,
        env: Optional[dict[str, str]] = None,
        cols: Optional[int] = None,
        rows: Optional[int] = None,
    ) -> PtyHandle:
        """Start ``command`` in a new PTY and register it under a fresh id."""
        pty_id = str(uuid.uuid4())
        merged_env = {**os.environ, **(env or {})}
        for name in _STRIPPED_ENV_VARS:
            merged_env.pop(name, None)
        merged_env["TERM"] = self._term_name

        cols = cols or self._default_cols
        rows = rows or self._default_rows
        logger.debug(f"[pty-pool] spawn file={command} args={list(args)} cwd={cwd} cols={cols} rows={rows}")

        backend = self._backend_factory(command, list(args), cwd=cwd, env=merged_env, cols=cols, rows=rows)
        logger.debug(f"[pty-pool] spawned pid={backend.pid}")

        entry = _PtyEntry(id=pty_id, backend=backend)
        with self._lock:
            self._ptys[pty_id] = entry
        entry.reader = threading.Thread(
            target=self._pump,
            args=(entry,),
            name=f"pty-{pty_id[:8]}",
            daemon=True,
        )
        entry.reader.start()
        return PtyHandle(id=pty_id, pid=backend.pid)

    def write(self, pty_id: str, data: str) -> None:
        self._get(pty_id).backend.write(data)

    def resize(self, pty_id: str, cols: int, rows: int) -> None:
        self._get(pty_id).backend.resize(cols, rows)

    def kill(self, pty_id: str) -> None:
        """Terminate a PTY; unknown or already-exited ids are a no-op."""
        with self._lock:
            entry = self._ptys.pop(pty_id, None)
        if entry is None:
            return
        try:
            entry.backend.kill()
        except OSError as exc:
            logger.debug(f"[pty-pool] kill {pty_id} raced with exit: {exc}")

    def kill_all(self) -> None:
        for pty_id in self.get_active_pty_ids():
            self.kill(pty_id)

    def on_data(self, pty_id: str, listener: DataListener) -> Callable[[], None]:
        """Register an output listener; returns a function that removes it."""
        entry = self._get(pty_id)
        with entry.lock:
            entry.data_listeners.append(listener)
            if entry.backlog:
                pending, entry.backlog = entry.backlog, []
                entry.backlog_size = 0
                for chunk in pending:
                    self._notify_data(entry, listener, chunk)

        def unsubscribe() -> None:
            with entry.lock:
                if listener in entry.data_listeners:
                    entry.data_listeners.remove(listener)

        return unsubscribe

    def on_exit(self, pty_id: str, listener: ExitListener) -> Callable[[], None]:
        """Register an exit listener receiving ``(exit_code, signal)``."""
        entry = self._get(pty_id)
        with entry.lock:
            entry.exit_listeners.append(listener)

        def unsubscribe() -> None:
            with entry.lock:
                if listener in entry.exit_listeners:
                    entry.exit_listeners.remove(listener)

        return unsubscribe

    def get_active_pty_ids(self) -> list[str]:
        with self._lock:
            return list(self._ptys)

    def has(self, pty_id: str) -> bool:
        with self._lock:
            return pty_id in self._ptys

    # ------------------------------------------------------------------ #
    # Private helpers                                                      #
    # ------------------------------------------------------------------ #

    def _get(self, pty_id: str) -> _PtyEntry:
        with self._lock:
            entry = self._ptys.get(pty_id)
        if entry is None:
            raise PtyNotFoundError(pty_id)
        return entry

    def _pump(self, entry: _PtyEntry) -> None:
        pid = entry.backend.pid
        first_chunk = True
        while True:
            try:
                chunk = entry.backend.read()
            except OSError as exc:
                logger.debug(f"[pty-pool] read failed pid={pid}: {exc}")
                break
            if chunk is None:
                break
            if not chunk:
                continue
            if first_chunk:
                logger.debug(f"[pty-pool] first data from pid={pid} len={len(chunk)}")
                first_chunk = False
            with entry.lock:
                if not entry.data_listeners:
                    self._hold_back(entry, chunk)
                    continue
                for listener in list(entry.data_listeners):
                    self._notify_data(entry, listener, chunk)

        try:
            exit_code, signal = entry.backend.wait()
        except OSError as exc:
            logger.debug(f"[pty-pool] wait failed pid={pid}: {exc}")
            exit_code, signal = -1, None
        logger.debug(f"[pty-pool] exit pid={pid} code={exit_code} signal={signal}")

        with entry.lock:
            listeners = list(entry.exit_listeners)
        for listener in listeners:
            try:
                listener(exit_code, signal)
            except Exception:
                logger.exception(f"[pty-pool] exit listener failed for {entry.id}")

        with self._lock:
            if self._ptys.get(entry.id) is entry:
                del self._ptys[entry.id]

    def _hold_back(self, entry: _PtyEntry, chunk: str) -> None:
        """Queue output for the first listener, keeping only the newest tail."""
        entry.backlog.append(chunk)
        entry.backlog_size += len(chunk)
        while entry.backlog_size > self._backlog_limit and len(entry.backlog) > 1:
            entry.backlog_size -= len(entry.backlog.pop(0))
        if entry.backlog_size > self._backlog_limit:
            entry.backlog[0] = entry.backlog[0][-self._backlog_limit:]
            entry.backlog_size = len(entry.backlog[0])

    @staticmethod
    def _notify_data(entry: _PtyEntry, listener: DataListener, chunk: str) -> None:
        try:
            listener(chunk)
        except Exception:
            logger.exception(f"[pty-pool] data listener failed for {entry.id}")
