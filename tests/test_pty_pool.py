from __future__ import annotations

import threading
import time

import pytest

from conftest import wait_until
from manifold.agent.pty_pool import PtyPool
from manifold.errors import PtyNotFoundError


@pytest.fixture
def pool(backends) -> PtyPool:
    return PtyPool(backend_factory=backends)


def test_spawn_registers_handle_with_defaults(pool, backends, monkeypatch) -> None:
    monkeypatch.setenv("CLAUDECODE", "1")
    monkeypatch.setenv("MANIFOLD_TEST_AMBIENT", "ambient")

    handle = pool.spawn("claude", ["--flag"], cwd="/tmp", env={"MANIFOLD_TEST_AMBIENT": "override"})

    backend = backends.created[0]
    assert handle.pid == 4242
    assert handle.id in pool.get_active_pty_ids()
    assert backend.command == "claude"
    assert backend.args == ["--flag"]
    assert backend.size == (80, 24)
    assert backend.env["TERM"] == "xterm-256color"
    assert backend.env["MANIFOLD_TEST_AMBIENT"] == "override"
    assert "CLAUDECODE" not in backend.env
    pool.kill_all()


def test_spawn_honours_geometry(pool, backends) -> None:
    pool.spawn("sh", [], cwd="/tmp", cols=120, rows=40)
    assert backends.created[0].size == (120, 40)
    pool.kill_all()


def test_each_spawn_gets_a_unique_id(pool) -> None:
    ids = {pool.spawn("sh", [], cwd="/tmp").id for _ in range(5)}
    assert len(ids) == 5
    pool.kill_all()


@pytest.mark.parametrize(
    "call",
    [
        lambda p: p.write("nope", "x"),
        lambda p: p.resize("nope", 80, 24),
        lambda p: p.on_data("nope", lambda _d: None),
        lambda p: p.on_exit("nope", lambda _c, _s: None),
    ],
)
def test_unknown_id_raises_not_found(pool, call) -> None:
    with pytest.raises(PtyNotFoundError, match="PTY not found: nope"):
        call(pool)


def test_kill_unknown_id_is_a_noop(pool) -> None:
    pool.kill("nope")


def test_write_and_resize_reach_the_backend(pool, backends) -> None:
    handle = pool.spawn("sh", [], cwd="/tmp")
    pool.write(handle.id, "ls\r")
    pool.resize(handle.id, 100, 30)

    backend = backends.created[0]
    assert backend.written == ["ls\r"]
    assert backend.size == (100, 30)
    pool.kill(handle.id)


def test_output_reaches_every_listener_in_order(pool, backends) -> None:
    handle = pool.spawn("sh", [], cwd="/tmp")
    first: list[str] = []
    second: list[str] = []
    pool.on_data(handle.id, first.append)
    pool.on_data(handle.id, second.append)

    backend = backends.created[0]
    for chunk in ("a", "b", "c"):
        backend.emit(chunk)

    assert wait_until(lambda: len(second) == 3)
    assert first == ["a", "b", "c"]
    assert second == ["a", "b", "c"]
    pool.kill(handle.id)


def test_output_before_first_listener_is_replayed(pool, backends) -> None:
    handle = pool.spawn("sh", [], cwd="/tmp")
    backends.created[0].emit("early")
    received: list[str] = []
    pool.on_data(handle.id, received.append)
    backends.created[0].emit("late")

    assert wait_until(lambda: received == ["early", "late"])
    pool.kill(handle.id)


def _drain(backend) -> None:
    assert wait_until(backend._chunks.empty)
    # the reader may still hold the last chunk it took off the queue
    time.sleep(0.2)


def test_backlog_keeps_only_newest_output(backends) -> None:
    pool = PtyPool(backend_factory=backends, backlog_limit=10)
    handle = pool.spawn("sh", [], cwd="/tmp")
    backend = backends.created[0]
    for chunk in ("aaaa", "bbbb", "cccc", "dddd"):
        backend.emit(chunk)
    _drain(backend)

    received: list[str] = []
    pool.on_data(handle.id, received.append)
    assert received == ["cccc", "dddd"]

    oversized = pool.spawn("sh", [], cwd="/tmp")
    backends.created[1].emit("x" * 15 + "tail")
    _drain(backends.created[1])
    tail: list[str] = []
    pool.on_data(oversized.id, tail.append)
    assert tail == ["xxxxxxtail"]
    pool.kill_all()


def test_unsubscribed_listener_stops_receiving(pool, backends) -> None:
    handle = pool.spawn("sh", [], cwd="/tmp")
    kept: list[str] = []
    dropped: list[str] = []
    pool.on_data(handle.id, kept.append)
    unsubscribe = pool.on_data(handle.id, dropped.append)
    unsubscribe()

    backends.created[0].emit("x")
    assert wait_until(lambda: kept == ["x"])
    assert dropped == []
    pool.kill(handle.id)


def test_exit_notifies_listeners_before_purging(pool, backends) -> None:
    handle = pool.spawn("sh", [], cwd="/tmp")
    seen: list[tuple] = []
    exited = threading.Event()

    def on_exit(code, signal) -> None:
        seen.append((code, signal, pool.has(handle.id)))
        exited.set()

    pool.on_exit(handle.id, on_exit)
    backends.created[0].finish(3)

    assert exited.wait(3)
    assert seen == [(3, None, True)]
    assert wait_until(lambda: handle.id not in pool.get_active_pty_ids())
    with pytest.raises(PtyNotFoundError):
        pool.write(handle.id, "late")


def test_failing_listener_does_not_stop_the_pump(pool, backends) -> None:
    handle = pool.spawn("sh", [], cwd="/tmp")
    received: list[str] = []

    def broken(_data) -> None:
        raise RuntimeError("listener bug")

    pool.on_data(handle.id, broken)
    pool.on_data(handle.id, received.append)
    backends.created[0].emit("one")
    backends.created[0].emit("two")

    assert wait_until(lambda: received == ["one", "two"])
    pool.kill(handle.id)


def test_kill_removes_id_and_is_idempotent(pool, backends) -> None:
    handle = pool.spawn("sh", [], cwd="/tmp")
    pool.kill(handle.id)

    assert backends.created[0].killed
    assert handle.id not in pool.get_active_pty_ids()
    pool.kill(handle.id)


def test_kill_all_terminates_everything(pool, backends) -> None:
    for _ in range(3):
        pool.spawn("sh", [], cwd="/tmp")
    pool.kill_all()

    assert pool.get_active_pty_ids() == []
    assert all(b.killed for b in backends.created)
