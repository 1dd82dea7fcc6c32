"""PTY-level runtime for agent sessions."""

from manifold.agent.backend import PTYBackend, build_backend
from manifold.agent.chat_adapter import ChatAdapter, ChatMessage, strip_ansi
from manifold.agent.pty_pool import PtyHandle, PtyPool
from manifold.agent.runtimes import BUILT_IN_RUNTIMES, AgentRuntime, get_runtime, list_runtimes
from manifold.agent.status_detector import detect_status

__all__ = [
    "AgentRuntime",
    "BUILT_IN_RUNTIMES",
    "ChatAdapter",
    "ChatMessage",
    "PTYBackend",
    "PtyHandle",
    "PtyPool",
    "build_backend",
    "detect_status",
    "get_runtime",
    "list_runtimes",
    "strip_ansi",
]
