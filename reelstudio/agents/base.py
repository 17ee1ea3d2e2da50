"""Core agent contract for the reel studio pipeline

This module defines the error taxonomy shared by every component, the
cancellation token bound to a run, the Agent protocol and the mutable
AgentContext that agents read from and write to as the run progresses.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from reelstudio.schemas.dossier import Dossier, Strategy
from reelstudio.schemas.sequence import Box, Directive, SceneDraft, SequenceArtifact

if TYPE_CHECKING:
    from reelstudio.agents.blackboard import SharedBlackboard


class ErrorKind(str, Enum):
    """Machine-readable error codes, matched on by the orchestrator"""
    AUTH_UNAVAILABLE = "AUTH_UNAVAILABLE"
    QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    MALFORMED_STRUCTURED_RESPONSE = "MALFORMED_STRUCTURED_RESPONSE"
    STRATEGIST_PRODUCED_INVALID_ARTIFACT = "STRATEGIST_PRODUCED_INVALID_ARTIFACT"
    UNDERSPECIFIED_SCENE_DRAFT = "UNDERSPECIFIED_SCENE_DRAFT"
    BOARDROOM_PHASE_FAILURE = "BOARDROOM_PHASE_FAILURE"
    CONTENT_REJECTED = "CONTENT_REJECTED"
    ABORTED = "ABORTED"


class StudioError(Exception):
    """Base exception for every failure raised inside the studio

    Attributes:
        error_code: Machine-readable error code (an ErrorKind value)
        message: Human-readable error message
        context: Additional context about the failure
    """

    def __init__(self, error_code: str, message: str, context: Optional[Dict[str, Any]] = None):
        if isinstance(error_code, ErrorKind):
            error_code = error_code.value
        self.error_code = error_code
        self.message = message
        self.context = context or {}
        super().__init__(f"[{error_code}] {message}")

    @property
    def kind(self) -> Optional[ErrorKind]:
        """The ErrorKind for this error, or None for ad-hoc codes"""
        try:
            return ErrorKind(self.error_code)
        except ValueError:
            return None


class _KindedError(StudioError):
    """StudioError whose code is fixed by the subclass"""

    KIND: ErrorKind

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(self.KIND, message, context)


class AuthUnavailable(_KindedError):
    """The auth proxy could not supply a token"""
    KIND = ErrorKind.AUTH_UNAVAILABLE


class QuotaExhausted(_KindedError):
    """Every attempt was throttled with a 429"""
    KIND = ErrorKind.QUOTA_EXHAUSTED


class TransportError(_KindedError):
    """Network failure, 5xx after retries, non-retryable 4xx or a timeout"""
    KIND = ErrorKind.TRANSPORT_ERROR

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None
    ):
        self.status = status
        context = dict(context or {})
        if status is not None:
            context.setdefault("status", status)
        super().__init__(message, context)


class MalformedStructuredResponse(_KindedError):
    """No valid JSON value could be recovered from a model response"""
    KIND = ErrorKind.MALFORMED_STRUCTURED_RESPONSE


class StrategistProducedInvalidArtifact(_KindedError):
    """Strategist output was not an object with a non-empty angle"""
    KIND = ErrorKind.STRATEGIST_PRODUCED_INVALID_ARTIFACT


class UnderspecifiedSceneDraft(_KindedError):
    """Fewer than ten scenes or boxes were produced"""
    KIND = ErrorKind.UNDERSPECIFIED_SCENE_DRAFT


class BoardroomPhaseFailure(_KindedError):
    """A boardroom turn failed; ``phase`` names which one"""
    KIND = ErrorKind.BOARDROOM_PHASE_FAILURE

    def __init__(self, phase: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.phase = phase
        context = dict(context or {})
        context.setdefault("phase", phase)
        super().__init__(f"{phase} phase failed: {message}", context)


class ContentRejected(_KindedError):
    """The backend's safety filter refused to generate the content"""
    KIND = ErrorKind.CONTENT_REJECTED

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        rejection_reason: str = ""
    ):
        self.rejection_reason = rejection_reason
        context = dict(context or {})
        if rejection_reason:
            context.setdefault("rejection_reason", rejection_reason)
        super().__init__(message, context)


class Aborted(_KindedError):
    """The run was cancelled"""
    KIND = ErrorKind.ABORTED


class CancellationToken:
    """Cooperative cancellation flag shared by a run's components

    Setting the token never interrupts work already in flight. Components
    check it at their suspension points and raise Aborted.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        """Block until the token is cancelled"""
        await self._event.wait()

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise Aborted if the token has been cancelled

        Args:
            where: Name of the operation that was refused, for the error context

        Raises:
            Aborted: If the token is cancelled
        """
        if self._event.is_set():
            raise Aborted(
                f"run cancelled before {where}" if where else "run cancelled",
                {"operation": where} if where else None
            )


@runtime_checkable
class Agent(Protocol):
    """Interface every roster member satisfies

    Agents are plain values: a display name, a role and a coroutine that reads
    the context, calls the backend, records findings on the blackboard and
    returns the (mutated) context.
    """

    name: str
    role: str

    async def execute(self, ctx: "AgentContext") -> "AgentContext":
        """Perform the agent's task

        Args:
            ctx: Shared run context

        Returns:
            The same context, updated with this agent's contribution

        Raises:
            StudioError: For failures the orchestrator must handle
        """
        ...


@dataclass
class AgentContext:
    """Mutable state handed from agent to agent during one run

    Attributes:
        dossier: Product facts, always present
        blackboard: Shared append-only memory and dialogue stream
        cancellation: Token bound to the run
        strategy: Social strategy, set by the Strategist
        directive: Boardroom decision, set by the Director
        scene_draft: Ten scene concepts, set by the AssistantDirector
        boxes: Designed boxes, set by the GraphicsSoundDesigner
        title: Sequence title, set by the GraphicsSoundDesigner
        artifact: Assembled sequence, set by the assembler
        reference_images: Acquired product images as data URLs
        on_stage: Callback the Director uses to announce sub-stages
    """
    dossier: Dossier
    blackboard: "SharedBlackboard"
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    strategy: Optional[Strategy] = None
    directive: Optional[Directive] = None
    scene_draft: Optional[SceneDraft] = None
    boxes: List[Box] = field(default_factory=list)
    title: str = ""
    artifact: Optional[SequenceArtifact] = None
    reference_images: List[str] = field(default_factory=list)
    on_stage: Optional[Callable[[str], None]] = None

    def enter_stage(self, stage: str) -> None:
        """Announce a sub-stage to the driver, if it is listening"""
        if self.on_stage is not None:
            self.on_stage(stage)
