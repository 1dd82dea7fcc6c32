"""Turn raw PTY output into discrete chat messages.

Terminal output arrives as many small writes full of escape sequences.
The adapter strips those, accumulates the remaining text per session and
flushes it as a single agent message once the session has been quiet for
``flush_delay_s`` (300 ms by default).
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

from loguru import logger

from manifold.utils.helpers import now_ms

ChatRole = Literal["user", "agent", "system"]
MessageListener = Callable[["ChatMessage"], None]
TimerFactory = Callable[..., Any]

# ── Compiled patterns ─────────────────────────────────────────────────────────

# Cursor movement: CUU..CHA (A-G), CUP (H / f). Replaced with a space so
# words a TUI positions side by side do not fuse together.
CURSOR_MOVE_RE = re.compile(r"\x1b\[[0-9;]*[A-Hf]")
# CSI in general, including private "?" sequences like ?25l / ?2004h
CSI_RE = re.compile(r"\x1b\[[\x30-\x3f]*[\x20-\x2f]*[\x40-\x7e]")
# OSC terminated by BEL or ST
OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
# Character set selection: ESC ( B, ESC ) 0 ...
CHARSET_RE = re.compile(r"\x1b[()][A-Za-z0-9]")
# Keypad application / numeric mode, cursor save / restore
KEYPAD_RE = re.compile(r"\x1b[=>78]")
# CSI fragments left behind when a chunk boundary ate the ESC byte. A digit
# or "?" must follow the bracket so text like "[WIP]" or "[1]" survives.
ORPHAN_CURSOR_MOVE_RE = re.compile(r"\[[0-9][0-9;]*[A-Hf]")
ORPHAN_CSI_RE = re.compile(r"\[[0-9?][0-9;?]*[A-Za-z]")
CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
WHITESPACE_RE = re.compile(r"\s+")
# An escape sequence cut off at the very end of a chunk
PARTIAL_ESCAPE_RE = re.compile(r"\x1b(?:\[[\x30-\x3f]*[\x20-\x2f]*|\][^\x07\x1b]*|[()])?$")


def strip_ansi(text: str) -> str:
    """Strip terminal control sequences and normalize whitespace."""
    cleaned = CURSOR_MOVE_RE.sub(" ", text)
    cleaned = CSI_RE.sub("", cleaned)
    cleaned = OSC_RE.sub("", cleaned)
    cleaned = CHARSET_RE.sub("", cleaned)
    cleaned = KEYPAD_RE.sub("", cleaned)
    cleaned = cleaned.replace("\r", "")
    cleaned = ORPHAN_CURSOR_MOVE_RE.sub(" ", cleaned)
    cleaned = ORPHAN_CSI_RE.sub("", cleaned)
    cleaned = CONTROL_CHAR_RE.sub("", cleaned)
    return WHITESPACE_RE.sub(" ", cleaned).strip()


@dataclass(frozen=True)
class ChatMessage:
    """One immutable entry in a session's chat log."""

    id: str
    session_id: str
    role: ChatRole
    text: str
    timestamp: int


@dataclass
class _OutputBuffer:
    parts: list[str] = field(default_factory=list)
    timer: Any = None
    generation: int = 0


class ChatAdapter:
    """Per-session chat logs fed by PTY output and direct calls."""

    def __init__(
        self,
        flush_delay_s: float = 0.3,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._flush_delay_s = flush_delay_s
        self._timer_factory = timer_factory
        self._messages: dict[str, list[ChatMessage]] = {}
        self._listeners: dict[str, list[MessageListener]] = {}
        self._buffers: dict[str, _OutputBuffer] = {}
        self._carry: dict[str, str] = {}
        self._next_id = 1
        self._generation = 0
        self._lock = threading.RLock()

    def add_user_message(self, session_id: str, text: str) -> ChatMessage:
        return self._add_message(session_id, "user", text)

    def add_system_message(self, session_id: str, text: str) -> ChatMessage:
        return self._add_message(session_id, "system", text)

    def add_agent_message(self, session_id: str, text: str) -> ChatMessage:
        return self._add_message(session_id, "agent", text)

    def process_pty_output(self, session_id: str, raw_output: str) -> None:
        """Buffer one PTY chunk; every chunk restarts the flush timer."""
        with self._lock:
            data = self._carry.pop(session_id, "") + raw_output
            partial = PARTIAL_ESCAPE_RE.search(data)
            if partial:
                self._carry[session_id] = partial.group(0)
                data = data[: partial.start()]

            cleaned = strip_ansi(data)
            if not cleaned:
                return

            buffer = self._buffers.get(session_id)
            if buffer is None:
                buffer = _OutputBuffer()
                self._buffers[session_id] = buffer
            elif buffer.timer is not None:
                buffer.timer.cancel()
            buffer.parts.append(cleaned)
            self._generation += 1
            buffer.generation = self._generation

            timer = self._timer_factory(
                self._flush_delay_s, self._flush_if_current, (session_id, buffer.generation)
            )
            timer.daemon = True
            buffer.timer = timer
            timer.start()

    def flush(self, session_id: str) -> Optional[ChatMessage]:
        """Emit buffered output now as one agent message, if any."""
        return self._flush_if_current(session_id, None)

    def _flush_if_current(self, session_id: str, generation: Optional[int]) -> Optional[ChatMessage]:
        with self._lock:
            buffer = self._buffers.get(session_id)
            if buffer is None:
                return None
            # a timer that already fired before cancel() must not flush newer chunks
            if generation is not None and buffer.generation != generation:
                return None
            del self._buffers[session_id]
            if buffer.timer is not None:
                buffer.timer.cancel()
            text = WHITESPACE_RE.sub(" ", " ".join(buffer.parts)).strip()
        if not text:
            return None
        return self.add_agent_message(session_id, text)

    def get_messages(self, session_id: str) -> list[ChatMessage]:
        with self._lock:
            return list(self._messages.get(session_id, []))

    def on_message(self, session_id: str, listener: MessageListener) -> Callable[[], None]:
        """Subscribe to new messages of one session; returns an unsubscribe function."""
        with self._lock:
            self._listeners.setdefault(session_id, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(session_id)
                if listeners and listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def clear_session(self, session_id: str) -> None:
        """Drop log, listeners and any pending output of a session."""
        with self._lock:
            buffer = self._buffers.pop(session_id, None)
            if buffer is not None and buffer.timer is not None:
                buffer.timer.cancel()
            self._carry.pop(session_id, None)
            self._messages.pop(session_id, None)
            self._listeners.pop(session_id, None)

    def _add_message(self, session_id: str, role: ChatRole, text: str) -> ChatMessage:
        with self._lock:
            message = ChatMessage(
                id=f"msg-{self._next_id}",
                session_id=session_id,
                role=role,
                text=text,
                timestamp=now_ms(),
            )
            self._next_id += 1
            self._messages.setdefault(session_id, []).append(message)
            listeners = list(self._listeners.get(session_id, []))
        for listener in listeners:
            try:
                listener(message)
            except Exception:
                logger.exception(f"[chat] listener failed for session {session_id}")
        return message
