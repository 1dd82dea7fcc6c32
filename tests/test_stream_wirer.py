from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from manifold.agent.chat_adapter import ChatAdapter
from manifold.errors import PtyNotFoundError
from manifold.session import events
from manifold.session.events import EventHub
from manifold.session.models import Session
from manifold.session.stream_wirer import (
    OUTPUT_BUFFER_KEEP,
    SessionStreamWirer,
    detect_add_dir,
)


class ManualTimer:
    def __init__(self, interval, function, args=()):
        self.function = function
        self.args = args

    def start(self) -> None:
        pass

    def cancel(self) -> None:
        pass


@pytest.fixture
def session() -> Session:
    return Session(
        id="s1",
        project_id="p1",
        runtime_id="claude",
        branch_name="webapp/add-login",
        worktree_path="/wt",
        pty_id="pty-1",
        pid=100,
    )


@pytest.fixture
def chat() -> ChatAdapter:
    return ChatAdapter(timer_factory=ManualTimer)


@pytest.fixture
def hub_log():
    hub = EventHub()
    log: list[tuple[str, object]] = []
    for name in (events.STATUS, events.OUTPUT, events.EXIT, events.DIRS_CHANGED):
        hub.subscribe(name, lambda payload, name=name: log.append((name, payload)))
    return hub, log


def _pool() -> MagicMock:
    pool = MagicMock()
    pool.exit_listeners = []
    pool.on_exit.side_effect = lambda pty_id, listener: pool.exit_listeners.append(listener)
    return pool


# ---------------------------------------------------------------------------
# interactive output
# ---------------------------------------------------------------------------

def test_detect_add_dir() -> None:
    assert detect_add_dir("\x1b[32mAdded /home/me/lib/ as a working directory\x1b[0m") == "/home/me/lib"
    assert detect_add_dir("Added  /srv/data as a working directory for this session") == "/srv/data"
    assert detect_add_dir("Added lib as a working directory") is None
    assert detect_add_dir("nothing to see") is None


def test_wire_output_streaming_subscribes_to_pty(session: Session) -> None:
    pool = _pool()
    SessionStreamWirer(pool).wire_output_streaming("pty-1", session)
    pool.on_data.assert_called_once()
    assert pool.on_data.call_args.args[0] == "pty-1"


def test_output_updates_status_and_publishes(session: Session, chat: ChatAdapter, hub_log) -> None:
    hub, log = hub_log
    wirer = SessionStreamWirer(_pool(), chat=chat, hub=hub)

    wirer.handle_output(session, "Working... Interrupt to stop")
    wirer.handle_output(session, "\nDone.\n❯ ")

    assert session.status == "waiting"
    assert session.output_buffer == "Working... Interrupt to stop\nDone.\n❯ "
    statuses = [p.status for name, p in log if name == events.STATUS]
    assert statuses == ["waiting"]
    outputs = [p.data for name, p in log if name == events.OUTPUT]
    assert outputs == ["Working... Interrupt to stop", "\nDone.\n❯ "]

    message = chat.flush("s1")
    assert message is not None and "Done." in message.text


def test_output_buffer_is_capped(session: Session) -> None:
    wirer = SessionStreamWirer(_pool())
    wirer.handle_output(session, "a" * 99_990)
    wirer.handle_output(session, "b" * 20)

    assert len(session.output_buffer) == OUTPUT_BUFFER_KEEP
    assert session.output_buffer.endswith("b" * 20)


def test_add_dir_is_recorded_once(session: Session, hub_log) -> None:
    hub, log = hub_log
    changed: list[Session] = []
    wirer = SessionStreamWirer(_pool(), hub=hub, on_dirs_changed=changed.append)

    wirer.handle_output(session, "Added /srv/shared as a working directory\n")
    wirer.handle_output(session, "more output\n")

    assert session.additional_dirs == ["/srv/shared"]
    assert changed == [session]
    dirs_events = [p for name, p in log if name == events.DIRS_CHANGED]
    assert dirs_events == [events.SessionDirsChanged("s1", ("/srv/shared",))]


def test_exit_marks_session_done(session: Session, hub_log) -> None:
    hub, log = hub_log
    pool = _pool()
    SessionStreamWirer(pool, hub=hub).wire_exit_handling("pty-1", session)

    pool.exit_listeners[0](0, None)

    assert (session.status, session.pid, session.pty_id) == ("done", None, "")
    assert (events.EXIT, events.SessionExited("s1", 0)) in log
    assert (events.STATUS, events.SessionStatusChanged("s1", "done")) in log


def test_exit_before_subscription_is_handled(session: Session, hub_log) -> None:
    hub, log = hub_log
    pool = MagicMock()
    pool.on_exit.side_effect = PtyNotFoundError("pty-1")

    SessionStreamWirer(pool, hub=hub).wire_exit_handling("pty-1", session)

    assert session.status == "done"
    assert session.pty_id == ""
    assert (events.EXIT, events.SessionExited("s1", None)) in log


def test_exit_of_superseded_process_is_ignored(session: Session) -> None:
    pool = _pool()
    wirer = SessionStreamWirer(pool)
    wirer.wire_print_mode_exit_handling("pty-1", session)
    session.pty_id = "pty-2"
    session.status = "running"

    pool.exit_listeners[0](0, None)

    assert session.status == "running"
    assert session.pty_id == "pty-2"


# ---------------------------------------------------------------------------
# print mode
# ---------------------------------------------------------------------------

def _line(event: dict) -> str:
    return json.dumps(event) + "\n"


def test_stream_json_lines_may_span_chunks(session: Session, chat: ChatAdapter) -> None:
    wirer = SessionStreamWirer(_pool(), chat=chat)
    payload = _line({
        "type": "assistant",
        "message": {"content": [
            {"type": "text", "text": "First part."},
            {"type": "tool_use", "name": "Read"},
            {"type": "text", "text": "Second part."},
        ]},
    })

    wirer.handle_stream_json(session, payload[:25])
    assert chat.get_messages("s1") == []
    wirer.handle_stream_json(session, payload[25:])

    [message] = chat.get_messages("s1")
    assert (message.role, message.text) == ("agent", "First part.\nSecond part.")
    assert session.stream_json_line_buffer == ""


def test_result_is_fallback_only(session: Session, chat: ChatAdapter, hub_log) -> None:
    hub, log = hub_log
    wirer = SessionStreamWirer(_pool(), chat=chat, hub=hub)

    wirer.handle_stream_json(session, "not json\n" + _line({"type": "system", "subtype": "init"}))
    wirer.handle_stream_json(session, _line({"type": "result", "subtype": "success", "result": "All done"}))
    assert [m.text for m in chat.get_messages("s1")] == ["All done"]
    assert session.status == "waiting"
    assert (events.STATUS, events.SessionStatusChanged("s1", "waiting")) in log

    other = Session(id="s2", project_id="p1", runtime_id="claude", branch_name="b", worktree_path="/wt")
    wirer.handle_stream_json(other, _line({"type": "assistant", "message": {"content": [{"type": "text", "text": "Hi"}]}}))
    wirer.handle_stream_json(other, _line({"type": "result", "subtype": "success", "result": "Hi"}))
    assert [m.text for m in chat.get_messages("s2")] == ["Hi"]


def test_failed_result_still_reports_waiting(session: Session, chat: ChatAdapter) -> None:
    wirer = SessionStreamWirer(_pool(), chat=chat)
    wirer.handle_stream_json(session, _line({"type": "result", "subtype": "error_max_turns", "result": "x"}))
    assert session.status == "waiting"
    assert chat.get_messages("s1") == []


def test_print_mode_exit_leaves_session_waiting(session: Session) -> None:
    pool = _pool()
    wirer = SessionStreamWirer(pool)
    wirer.wire_stream_json_output("pty-1", session)
    wirer.wire_print_mode_exit_handling("pty-1", session)

    pool.exit_listeners[0](0, None)

    assert (session.status, session.pty_id, session.pid) == ("waiting", "", None)
