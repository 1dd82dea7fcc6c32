"""Registry of supported agent CLIs."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field, replace
from typing import Optional

from manifold.config.schema import Config
from manifold.errors import RuntimeNotFoundError


@dataclass(frozen=True)
class AgentRuntime:
    """Agent CLI metadata."""

    id: str
    name: str
    binary: str
    args: tuple[str, ...] = ()
    waiting_pattern: str = ""
    env: dict[str, str] = field(default_factory=dict)
    installed: Optional[bool] = None


BUILT_IN_RUNTIMES: dict[str, AgentRuntime] = {
    "claude": AgentRuntime(
        id="claude",
        name="Claude Code",
        binary="claude",
        args=("--dangerously-skip-permissions",),
        waiting_pattern="❯|waiting for input|Interrupt to stop",
    ),
    "codex": AgentRuntime(
        id="codex",
        name="Codex",
        binary="codex",
        waiting_pattern="> |codex>",
    ),
    "gemini": AgentRuntime(
        id="gemini",
        name="Gemini CLI",
        binary="gemini",
        waiting_pattern="❯|>>> ",
    ),
}


def get_runtime(runtime_id: str, config: Optional[Config] = None) -> AgentRuntime:
    """Get a runtime by id, applying config overrides."""
    key = (runtime_id or "").strip().lower()
    runtime = BUILT_IN_RUNTIMES.get(key)
    if runtime is None:
        raise RuntimeNotFoundError(runtime_id)
    override = config.get_runtime_override(key) if config is not None else None
    if override is not None:
        if override.binary:
            runtime = replace(runtime, binary=override.binary)
        if override.args is not None:
            runtime = replace(runtime, args=tuple(override.args))
    return runtime


def list_runtimes(config: Optional[Config] = None) -> list[AgentRuntime]:
    return [get_runtime(key, config) for key in BUILT_IN_RUNTIMES]


def list_runtimes_with_status(config: Optional[Config] = None) -> list[AgentRuntime]:
    """Return runtimes with ``installed`` resolved against PATH."""
    return [
        replace(runtime, installed=shutil.which(runtime.binary) is not None)
        for runtime in list_runtimes(config)
    ]
