"""Connect PTY output and exit events to session state, chat and subscribers."""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Optional

from loguru import logger

from manifold.agent.chat_adapter import ChatAdapter
from manifold.agent.pty_pool import ExitListener, PtyPool
from manifold.agent.status_detector import detect_status
from manifold.errors import PtyNotFoundError
from manifold.session import events
from manifold.session.events import EventHub
from manifold.session.models import Session

OUTPUT_BUFFER_LIMIT = 100_000
OUTPUT_BUFFER_KEEP = 50_000
DETECTION_TAIL = 2000

_ADD_DIR_RE = re.compile(r"Added\s+(/[^\n]+?)\s+as a working directory")
_SIMPLE_CSI_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")


def detect_add_dir(output: str) -> Optional[str]:
    """Directory the agent reported adding with ``/add-dir``, if any."""
    match = _ADD_DIR_RE.search(_SIMPLE_CSI_RE.sub("", output))
    if match is None:
        return None
    return match.group(1).rstrip("/") or "/"


class SessionStreamWirer:
    """Subscribe session state to one PTY's data and exit events.

    Interactive sessions feed the raw terminal stream through status
    detection and the chat adapter. Print-mode sessions emit NDJSON
    (``--output-format stream-json``) which is parsed line by line instead.
    """

    def __init__(
        self,
        pty_pool: PtyPool,
        chat: ChatAdapter | None = None,
        hub: EventHub | None = None,
        on_dirs_changed: Callable[[Session], None] | None = None,
    ) -> None:
        self._pool = pty_pool
        self._chat = chat
        self._hub = hub
        self._on_dirs_changed = on_dirs_changed

    # ------------------------------------------------------------------ #
    # Interactive sessions                                                 #
    # ------------------------------------------------------------------ #

    def wire_output_streaming(self, pty_id: str, session: Session) -> None:
        self._pool.on_data(pty_id, lambda data: self.handle_output(session, data))

    def wire_exit_handling(self, pty_id: str, session: Session) -> None:
        def on_exit(code: int | None, _signal: int | None = None) -> None:
            if not self._owns(session, pty_id):
                return
            session.status = "done"
            session.pid = None
            session.pty_id = ""
            self._publish(events.STATUS, events.SessionStatusChanged(session.id, "done"))
            self._publish(events.EXIT, events.SessionExited(session.id, code))

        self._subscribe_exit(pty_id, on_exit)

    def handle_output(self, session: Session, data: str) -> None:
        session.output_buffer += data
        if len(session.output_buffer) > OUTPUT_BUFFER_LIMIT:
            session.output_buffer = session.output_buffer[-OUTPUT_BUFFER_KEEP:]

        status = detect_status(session.output_buffer, session.runtime_id)
        if status != session.status:
            session.status = status
            self._publish(events.STATUS, events.SessionStatusChanged(session.id, status))

        added = detect_add_dir(session.output_buffer[-DETECTION_TAIL:])
        if added and added not in session.additional_dirs:
            session.additional_dirs.append(added)
            logger.info(f"[session] {session.id} added working directory {added}")
            self._publish(
                events.DIRS_CHANGED,
                events.SessionDirsChanged(session.id, tuple(session.additional_dirs)),
            )
            if self._on_dirs_changed is not None:
                self._on_dirs_changed(session)

        if self._chat is not None:
            self._chat.process_pty_output(session.id, data)
        self._publish(events.OUTPUT, events.SessionOutput(session.id, data))

    # ------------------------------------------------------------------ #
    # Print mode (stream-json)                                             #
    # ------------------------------------------------------------------ #

    def wire_stream_json_output(self, pty_id: str, session: Session) -> None:
        session.stream_json_line_buffer = ""
        self._pool.on_data(pty_id, lambda data: self.handle_stream_json(session, data))

    def wire_print_mode_exit_handling(self, pty_id: str, session: Session) -> None:
        """Print-mode processes exit after every prompt; the session stays usable."""

        def on_exit(code: int | None, _signal: int | None = None) -> None:
            if not self._owns(session, pty_id):
                return
            session.status = "waiting"
            session.pid = None
            session.pty_id = ""
            logger.debug(f"[session] print-mode run of {session.id} exited with {code}")
            self._publish(events.STATUS, events.SessionStatusChanged(session.id, "waiting"))

        self._subscribe_exit(pty_id, on_exit)

    def handle_stream_json(self, session: Session, data: str) -> None:
        """Consume NDJSON; a trailing partial line waits for the next chunk."""
        lines = (session.stream_json_line_buffer + data).split("\n")
        session.stream_json_line_buffer = lines.pop()
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except ValueError:
                logger.debug(f"[session] non-JSON line from {session.id}: {line[:200]}")
                continue
            if isinstance(event, dict):
                self._handle_stream_event(session, event)

    def _handle_stream_event(self, session: Session, event: dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == "assistant":
            message = event.get("message") or {}
            content = message.get("content") if isinstance(message, dict) else None
            texts = [
                block["text"]
                for block in content or []
                if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
            ]
            if texts and self._chat is not None:
                self._chat.add_agent_message(session.id, "\n".join(texts))
        elif kind == "result":
            result = event.get("result")
            if result and event.get("subtype") == "success" and self._chat is not None:
                # Only when no assistant event already delivered the answer.
                if not any(m.role == "agent" for m in self._chat.get_messages(session.id)):
                    self._chat.add_agent_message(session.id, str(result))
            # The process may linger long after its result; report waiting now.
            session.status = "waiting"
            self._publish(events.STATUS, events.SessionStatusChanged(session.id, "waiting"))

    # ------------------------------------------------------------------ #
    # Private helpers                                                      #
    # ------------------------------------------------------------------ #

    def _subscribe_exit(self, pty_id: str, listener: ExitListener) -> None:
        try:
            self._pool.on_exit(pty_id, listener)
        except PtyNotFoundError:
            logger.debug(f"[session] pty {pty_id} exited before its exit handler was attached")
            listener(None, None)

    @staticmethod
    def _owns(session: Session, pty_id: str) -> bool:
        """False once the session has moved on to a newer process."""
        return not session.pty_id or session.pty_id == pty_id

    def _publish(self, name: str, payload: object) -> None:
        if self._hub is not None:
            self._hub.publish(name, payload)
