"""Agent implementations for the reel studio pipeline

Only the dependency-free core is imported eagerly. The roster pulls in the
backend and dispatcher, which import ``reelstudio.agents.base`` themselves,
so ``build_roster`` and ``ROSTER_ORDER`` are resolved lazily.
"""

from typing import TYPE_CHECKING

from .base import (
    Aborted,
    Agent,
    AgentContext,
    AuthUnavailable,
    BoardroomPhaseFailure,
    CancellationToken,
    ContentRejected,
    ErrorKind,
    MalformedStructuredResponse,
    QuotaExhausted,
    StrategistProducedInvalidArtifact,
    StudioError,
    TransportError,
    UnderspecifiedSceneDraft,
)
from .blackboard import BlackboardEntry, SharedBlackboard

if TYPE_CHECKING:
    from .registry import ROSTER_ORDER, build_roster

__all__ = [
    "Aborted",
    "Agent",
    "AgentContext",
    "AuthUnavailable",
    "BlackboardEntry",
    "BoardroomPhaseFailure",
    "CancellationToken",
    "ContentRejected",
    "ErrorKind",
    "MalformedStructuredResponse",
    "QuotaExhausted",
    "ROSTER_ORDER",
    "SharedBlackboard",
    "StrategistProducedInvalidArtifact",
    "StudioError",
    "TransportError",
    "UnderspecifiedSceneDraft",
    "build_roster",
]


def __getattr__(name: str):
    """Lazily expose the roster without importing the backend at package import."""
    if name in ("ROSTER_ORDER", "build_roster"):
        from . import registry

        return getattr(registry, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
