"""Session orchestration: projects, live sessions and their teardown."""

from manifold.session.events import EventHub
from manifold.session.manager import SessionManager, build_session_manager
from manifold.session.models import Project, Session, SessionInfo, SpawnOptions
from manifold.session.project_registry import ProjectRegistry
from manifold.session.stream_wirer import SessionStreamWirer
from manifold.session.teardown import (
    BatchKillResult,
    InteractiveKillResult,
    SessionTeardown,
    StepResult,
)

__all__ = [
    "BatchKillResult",
    "EventHub",
    "InteractiveKillResult",
    "Project",
    "ProjectRegistry",
    "Session",
    "SessionInfo",
    "SessionManager",
    "SessionStreamWirer",
    "SessionTeardown",
    "SpawnOptions",
    "StepResult",
    "build_session_manager",
]
