"""Configuration schema for manifold."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class PtyConfig(BaseModel):
    """Terminal settings applied to every spawned agent."""

    term_name: str = "xterm-256color"
    cols: int = 80
    rows: int = 24


class GitConfig(BaseModel):
    """Limits for git/gh helpers."""

    ai_generate_timeout_s: float = 15.0
    pr_diff_limit: int = 6000


class ChatConfig(BaseModel):
    """PTY-to-chat conversion settings."""

    flush_delay_s: float = 0.3


class RuntimeOverride(BaseModel):
    """User override for one agent runtime binary."""

    binary: str = ""
    args: list[str] | None = None


class RuntimesConfig(BaseModel):
    """Per-runtime overrides."""

    default: str = "claude"
    claude: RuntimeOverride = Field(default_factory=RuntimeOverride)
    codex: RuntimeOverride = Field(default_factory=RuntimeOverride)
    gemini: RuntimeOverride = Field(default_factory=RuntimeOverride)


class Config(BaseSettings):
    """Root configuration for manifold."""

    storage_path: str = "~/.manifold"
    log_level: str = "INFO"
    log_file: str = ""
    pty: PtyConfig = Field(default_factory=PtyConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    runtimes: RuntimesConfig = Field(default_factory=RuntimesConfig)

    @property
    def storage_dir(self) -> Path:
        """Get expanded storage path."""
        return Path(self.storage_path).expanduser()

    @property
    def worktrees_dir(self) -> Path:
        return self.storage_dir / "worktrees"

    def get_runtime_override(self, runtime_id: str) -> RuntimeOverride | None:
        """Get runtime-specific override by id."""
        key = (runtime_id or "").strip().lower()
        value = getattr(self.runtimes, key, None)
        return value if isinstance(value, RuntimeOverride) else None

    model_config = ConfigDict(
        env_prefix="MANIFOLD_",
        env_nested_delimiter="__",
        extra="ignore",
    )
