"""Infer agent status (running / waiting / error) from recent terminal output."""

from __future__ import annotations

import re
from typing import Literal

from manifold.agent.runtimes import BUILT_IN_RUNTIMES

AgentStatus = Literal["running", "waiting", "done", "error"]

_TAIL_CHARS = 2000

_COMMON_ERROR_PATTERNS: tuple[tuple[re.Pattern[str], AgentStatus], ...] = (
    (re.compile(r"error:|Error:|ERROR:|fatal:|FATAL:|panic:|PANIC:"), "error"),
    (re.compile(r"Traceback \(most recent call last\)"), "error"),
    (re.compile(r"command not found"), "error"),
)

_RUNTIME_PATTERNS: dict[str, tuple[tuple[re.Pattern[str], AgentStatus], ...]] = {
    "claude": (
        (re.compile(r"❯"), "waiting"),
        (re.compile(r"waiting for input", re.IGNORECASE), "waiting"),
        (re.compile(r"Do you want to proceed", re.IGNORECASE), "waiting"),
        (re.compile(r"Interrupt to stop"), "running"),
    ),
    "codex": (
        (re.compile(r"> $"), "waiting"),
        (re.compile(r"codex>", re.IGNORECASE), "waiting"),
    ),
    "gemini": (
        (re.compile(r"❯"), "waiting"),
        (re.compile(r">>> $"), "waiting"),
    ),
}


def _patterns_for(runtime_id: str) -> list[tuple[re.Pattern[str], AgentStatus]]:
    patterns = list(_RUNTIME_PATTERNS.get(runtime_id, ()))
    runtime = BUILT_IN_RUNTIMES.get(runtime_id)
    if runtime is not None and runtime.waiting_pattern:
        for part in runtime.waiting_pattern.split("|"):
            if part.strip():
                patterns.append((re.compile(re.escape(part.strip())), "waiting"))
    # Runtime prompts take precedence over generic error markers.
    patterns.extend(_COMMON_ERROR_PATTERNS)
    return patterns


def detect_status(output: str, runtime_id: str) -> AgentStatus:
    """Return the status implied by the tail of ``output``."""
    recent = output[-_TAIL_CHARS:]
    for pattern, status in _patterns_for(runtime_id):
        if pattern.search(recent):
            return status
    return "running"
