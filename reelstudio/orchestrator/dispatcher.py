"""Rate-limited dispatcher for generative backend calls.

Every backend call in a run goes through a single Dispatcher, which
serializes the calls onto one chain and paces them so the studio stays
under the backend's quota. The dispatcher provides:
- Strict FIFO ordering (priority changes the pacing gap, never the order)
- An adaptive penalty that grows on 429s and decays on success
- Exponential backoff with jitter for 429, transport and 5xx failures
- Round-robin region rotation across attempts
- One fallback attempt on a cheaper model when the primary is exhausted
- Cooperative cancellation between attempts
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import httpx

from reelstudio.agents.base import (
    CancellationToken,
    QuotaExhausted,
    StudioError,
    TransportError,
)


logger = logging.getLogger(__name__)


DEFAULT_REGIONS = ("us-central1", "us-east4", "europe-west4")

# Status codes retried with backoff; any other 4xx fails immediately
RATE_LIMIT_STATUS = 429
RETRYABLE_STATUS_CODES = {RATE_LIMIT_STATUS, 500, 502, 503, 504}


class Priority(Enum):
    """Who is waiting on a request; sets the pacing gap"""
    AGENT = "agent"
    USER = "user"


@dataclass
class DispatchPolicy:
    """Pacing and retry configuration for the dispatcher

    Attributes:
        agent_gap_seconds: Base gap before an agent-initiated attempt
        user_gap_seconds: Base gap before a user-initiated attempt
        penalty_step_seconds: Penalty added on every 429
        penalty_cap_seconds: Upper bound for the penalty
        penalty_decay_seconds: Penalty removed on every success
        max_attempts: Attempts per request before giving up
        backoff_base_seconds: Backoff unit; the n-th failure waits base * 2^n
        jitter_max_seconds: Upper bound of the random jitter added to backoff
    """
    agent_gap_seconds: float = 12.0
    user_gap_seconds: float = 6.0
    penalty_step_seconds: float = 5.0
    penalty_cap_seconds: float = 60.0
    penalty_decay_seconds: float = 2.0
    max_attempts: int = 5
    backoff_base_seconds: float = 1.0
    jitter_max_seconds: float = 2.0

    def gap_for(self, priority: Priority) -> float:
        if priority == Priority.USER:
            return self.user_gap_seconds
        return self.agent_gap_seconds


@dataclass
class BackendRequest:
    """One logical backend call

    Attributes:
        label: Name used in logs, e.g. "completion" or "image"
        invoke: Coroutine function performing one attempt against a region and model
        model: Primary model name
        fallback_model: Optional model tried once if the primary is exhausted
    """
    label: str
    invoke: Callable[[str, str], Awaitable[Any]]
    model: str = ""
    fallback_model: Optional[str] = None


def calculate_backoff_delay(
    failures: int,
    base_delay: float,
    jitter: float = 0.0
) -> float:
    """Calculate backoff delay after a failed attempt.

    Args:
        failures: Number of failed attempts so far (1-based)
        base_delay: Base delay in seconds
        jitter: Random jitter in seconds added on top

    Returns:
        Delay in seconds

    Examples:
        >>> calculate_backoff_delay(1, 1.0)
        2.0
        >>> calculate_backoff_delay(2, 1.0)
        4.0
        >>> calculate_backoff_delay(3, 1.0, jitter=0.5)
        8.5
    """
    return base_delay * (2 ** failures) + jitter


def status_of(error: Exception) -> Optional[int]:
    """Extract an HTTP status code from a backend or transport exception.

    Understands google-genai ``APIError`` (``code``), httpx
    ``HTTPStatusError`` (``response.status_code``) and anything exposing
    ``status`` or ``status_code``.
    """
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attribute in ("code", "status_code", "status"):
        value = getattr(error, attribute, None)
        if isinstance(value, int):
            return value
    return None


def is_transport_error(error: Exception) -> bool:
    """True for network-level failures that never produced a response"""
    return isinstance(error, (httpx.TransportError, ConnectionError, asyncio.TimeoutError))


class Dispatcher:
    """Global serializer for generative backend calls.

    ``submit`` links a request onto the chain synchronously, so the order in
    which requests are submitted is the order in which they reach the
    backend. Each request waits for the previous one to settle; a failed
    request never breaks the chain.

    Example:
        >>> dispatcher = Dispatcher()
        >>> result = await dispatcher.dispatch(
        ...     BackendRequest("completion", call_model, model="gemini-2.5-pro"),
        ...     Priority.AGENT
        ... )
    """

    def __init__(
        self,
        policy: Optional[DispatchPolicy] = None,
        regions: Sequence[str] = DEFAULT_REGIONS,
        cancellation: Optional[CancellationToken] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Optional[Callable[[], float]] = None
    ):
        """Initialize the dispatcher.

        Args:
            policy: Pacing and retry configuration (uses defaults if not provided)
            regions: Regions rotated round-robin, one per attempt
            cancellation: Token checked before submission and before every attempt
            sleep: Coroutine used for every wait; injectable for tests
            jitter: Returns the jitter added to backoff (defaults to uniform 0..jitter_max)
        """
        if not regions:
            raise ValueError("at least one region is required")
        self.policy = policy or DispatchPolicy()
        self.regions: List[str] = list(regions)
        self.cancellation = cancellation
        self._sleep = sleep
        self._jitter = jitter or (lambda: random.uniform(0.0, self.policy.jitter_max_seconds))
        self._penalty = 0.0
        self._region_index = 0
        self._tail: Optional[asyncio.Future] = None

    @property
    def penalty_seconds(self) -> float:
        """Current adaptive penalty added to every pacing gap"""
        return self._penalty

    def bind(self, cancellation: Optional[CancellationToken]) -> None:
        """Bind the dispatcher to a run's cancellation token"""
        self.cancellation = cancellation

    def submit(self, request: BackendRequest, priority: Priority = Priority.AGENT) -> "asyncio.Task":
        """Link a request onto the chain and return its task.

        Must be called from a running event loop.

        Raises:
            Aborted: If the bound cancellation token is already set
        """
        self._check_cancelled(request.label)
        previous = self._tail
        task = asyncio.ensure_future(self._run_after(previous, request, priority))
        self._tail = task
        return task

    async def dispatch(self, request: BackendRequest, priority: Priority = Priority.AGENT) -> Any:
        """Submit a request and wait for its result"""
        return await self.submit(request, priority)

    async def _run_after(
        self,
        previous: Optional[asyncio.Future],
        request: BackendRequest,
        priority: Priority
    ) -> Any:
        if previous is not None and not previous.done():
            # Settle the previous segment without propagating its outcome
            await asyncio.wait([previous])
        return await self._execute(request, priority)

    async def _execute(self, request: BackendRequest, priority: Priority) -> Any:
        try:
            return await self._execute_model(request, request.model, priority)
        except QuotaExhausted:
            if not request.fallback_model:
                raise
            logger.warning(
                f"{request.label} exhausted quota on {request.model}, "
                f"falling back to {request.fallback_model}"
            )
            return await self._execute_model(
                request, request.fallback_model, priority, max_attempts=1
            )

    async def _execute_model(
        self,
        request: BackendRequest,
        model: str,
        priority: Priority,
        max_attempts: Optional[int] = None
    ) -> Any:
        """Run up to ``max_attempts`` paced attempts of one request against one model.

        Raises:
            QuotaExhausted: If every attempt was throttled with a 429
            TransportError: On non-retryable 4xx, or retryable failures after the last attempt
            Aborted: If the run is cancelled between attempts
            StudioError: Passed through unchanged from ``invoke``
        """
        attempts = max_attempts or self.policy.max_attempts
        failures = 0

        for attempt in range(attempts):
            await self._sleep(self.policy.gap_for(priority) + self._penalty)
            self._check_cancelled(request.label)

            region = self._next_region()
            try:
                result = await request.invoke(region, model)
            except StudioError:
                raise
            except Exception as e:
                status = status_of(e)
                if status is None and not is_transport_error(e):
                    raise
                if status is not None and status not in RETRYABLE_STATUS_CODES:
                    logger.error(f"{request.label} failed with non-retryable status {status}")
                    raise TransportError(
                        f"{request.label} failed with status {status}: {e}",
                        {"region": region, "model": model},
                        status=status
                    ) from e

                failures += 1
                throttled = status == RATE_LIMIT_STATUS
                if throttled:
                    self._raise_penalty()

                if attempt == attempts - 1:
                    logger.error(f"{request.label} failed after {attempts} attempts")
                    context = {"region": region, "model": model, "attempts": attempts}
                    if throttled:
                        raise QuotaExhausted(
                            f"{request.label} was rate limited on every attempt",
                            context
                        ) from e
                    raise TransportError(
                        f"{request.label} failed after {attempts} attempts: {e}",
                        context,
                        status=status
                    ) from e

                delay = calculate_backoff_delay(
                    failures,
                    self.policy.backoff_base_seconds,
                    self._jitter()
                )
                logger.warning(
                    f"{request.label} failed with {status or type(e).__name__} in {region}, "
                    f"retrying in {delay:.2f}s (attempt {attempt + 2}/{attempts})"
                )
                await self._sleep(delay)
                continue

            self._decay_penalty()
            if attempt > 0:
                logger.info(f"{request.label} succeeded on attempt {attempt + 1}")
            return result

        # Unreachable: the last attempt either returns or raises
        raise TransportError(f"{request.label} made no attempts")

    def _next_region(self) -> str:
        region = self.regions[self._region_index % len(self.regions)]
        self._region_index += 1
        return region

    def _raise_penalty(self) -> None:
        previous = self._penalty
        self._penalty = min(self._penalty + self.policy.penalty_step_seconds, self.policy.penalty_cap_seconds)
        if self._penalty != previous:
            logger.warning(f"Rate limited; pacing penalty raised to {self._penalty:.0f}s")

    def _decay_penalty(self) -> None:
        previous = self._penalty
        self._penalty = max(0.0, self._penalty - self.policy.penalty_decay_seconds)
        if self._penalty != previous:
            logger.info(f"Pacing penalty lowered to {self._penalty:.0f}s")

    def _check_cancelled(self, label: str) -> None:
        if self.cancellation is not None:
            self.cancellation.raise_if_cancelled(label)
