"""Pipeline Orchestrator for product-to-video sequence generation.

This module implements the driver that walks a run through its states:
Researcher → Strategist → Director (boardroom, drafting, designing) →
Sequence Assembler → approval gate → Image Anchoring.

The orchestrator handles:
- Linear agent sequencing over one shared AgentContext
- A human approval gate before any image generation
- Cooperative cancellation at every suspension point
- Structured logging at each stage

Error Handling Strategy:
- **Abort**: Cancellation, rejection and approval timeout end the run in the
  ``aborted`` state with no slots
- **Fail**: Any other StudioError ends the run in the ``failed`` state and is
  raised as PipelineAbortError naming the stage and the cause
- **Wrap**: Unexpected exceptions inside a stage become UNEXPECTED_ERROR
- **Tolerate**: Anchor failures are recorded and the box proceeds without one

Retries and pacing are not handled here; every backend call is paced and
retried by the shared Dispatcher.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

import httpx

from reelstudio.agents.anchoring import MAX_REFERENCE_IMAGES, ImageAnchorer
from reelstudio.agents.base import Aborted, AgentContext, CancellationToken, StudioError
from reelstudio.agents.blackboard import SharedBlackboard
from reelstudio.agents.registry import ROSTER_ORDER, build_roster
from reelstudio.agents.renderer import BoxRenderer, RenderedClip
from reelstudio.agents.sequence_assembler import assemble_sequence, project_slots
from reelstudio.backend.auth import DEFAULT_AUTH_URL, TokenCache
from reelstudio.backend.base import GenerativeBackend
from reelstudio.backend.vertex import VertexBackend
from reelstudio.orchestrator.dispatcher import DEFAULT_REGIONS, DispatchPolicy, Dispatcher
from reelstudio.orchestrator.logger import StructuredJSONLogger
from reelstudio.schemas.dialogue import DialogueEvent
from reelstudio.schemas.dossier import Dossier, Strategy
from reelstudio.schemas.sequence import Box, Directive, SequenceArtifact, SequenceSlot


logger = logging.getLogger(__name__)


ProgressCallback = Callable[[str], None]
DialogueCallback = Callable[[DialogueEvent], None]


class PipelineState(str, Enum):
    """States a run moves through, in order, plus the two terminal outcomes"""
    INIT = "init"
    RESEARCHING = "researching"
    STRATEGIZING = "strategizing"
    BOARDROOM = "boardroom"
    DRAFTING = "drafting"
    DESIGNING = "designing"
    ASSEMBLING = "assembling"
    AWAITING_APPROVAL = "awaiting_approval"
    ANCHORING = "anchoring"
    FINISHED = "finished"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.FINISHED, PipelineState.FAILED, PipelineState.ABORTED)


def _env_list(value: Optional[str], default: Sequence[str]) -> List[str]:
    if not value:
        return list(default)
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or list(default)


def _env_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        seconds = float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric approval timeout {value!r}")
        return None
    return seconds if seconds > 0 else None


@dataclass
class PipelineConfig:
    """Configuration for pipeline execution.

    Attributes:
        auth_url: Auth proxy endpoint returning the bearer token
        regions: Backend regions rotated by the dispatcher
        completion_model: Primary text model
        fallback_model: Model tried once when the primary is exhausted
        image_model: Anchor image model
        video_model: Clip model
        speech_model: Voiceover model
        voice: Prebuilt voice name for voiceovers
        aspect_ratio: Aspect ratio for images and clips
        approval_timeout_seconds: How long to hold the sequence for approval
            (None waits indefinitely)
        output_directory: Where pipeline.log is written (None logs to console only)
        max_reference_images: Product images fetched for the editor
        dispatch: Pacing and retry policy for backend calls
    """
    auth_url: str = DEFAULT_AUTH_URL
    regions: List[str] = field(default_factory=lambda: list(DEFAULT_REGIONS))
    completion_model: str = "gemini-2.5-pro"
    fallback_model: Optional[str] = "gemini-2.5-flash"
    image_model: str = "imagen-4.0-generate-001"
    video_model: str = "veo-3.1-generate-preview"
    speech_model: str = "gemini-2.5-flash-preview-tts"
    voice: str = "Kore"
    aspect_ratio: str = "9:16"
    approval_timeout_seconds: Optional[float] = None
    output_directory: Optional[str] = None
    max_reference_images: int = MAX_REFERENCE_IMAGES
    dispatch: DispatchPolicy = field(default_factory=DispatchPolicy)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a configuration from ``REELSTUDIO_*`` environment variables.

        Unset or empty variables keep their defaults.

        Args:
            environ: Mapping to read instead of ``os.environ``
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def read(name: str, default: Any) -> Any:
            value = env.get(f"REELSTUDIO_{name}")
            return value.strip() if value and value.strip() else default

        return cls(
            auth_url=read("AUTH_URL", defaults.auth_url),
            regions=_env_list(env.get("REELSTUDIO_REGIONS"), defaults.regions),
            completion_model=read("COMPLETION_MODEL", defaults.completion_model),
            fallback_model=read("FALLBACK_MODEL", defaults.fallback_model),
            image_model=read("IMAGE_MODEL", defaults.image_model),
            video_model=read("VIDEO_MODEL", defaults.video_model),
            speech_model=read("SPEECH_MODEL", defaults.speech_model),
            voice=read("VOICE", defaults.voice),
            aspect_ratio=read("ASPECT_RATIO", defaults.aspect_ratio),
            approval_timeout_seconds=_env_float(env.get("REELSTUDIO_APPROVAL_TIMEOUT")),
            output_directory=read("OUTPUT_DIR", defaults.output_directory),
        )

    def summary(self) -> Dict[str, Any]:
        """Configuration fields worth recording at the start of a run"""
        return {
            "regions": list(self.regions),
            "completion_model": self.completion_model,
            "fallback_model": self.fallback_model,
            "image_model": self.image_model,
            "video_model": self.video_model,
            "speech_model": self.speech_model,
            "voice": self.voice,
            "aspect_ratio": self.aspect_ratio,
            "approval_timeout_seconds": self.approval_timeout_seconds,
        }


class PipelineAbortError(Exception):
    """Exception raised when a run fails with an unrecoverable error.

    Attributes:
        stage: Pipeline stage where the failure occurred
        error_code: Machine-readable error code
        message: Human-readable error message
        context: Additional context about the failure
    """

    def __init__(self, stage: str, error_code: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.stage = stage
        self.error_code = error_code
        self.message = message
        self.context = context or {}
        super().__init__(f"Pipeline aborted at {stage}: [{error_code}] {message}")


@dataclass
class OrchestrationResult:
    """Outcome of one run

    Attributes:
        state: Terminal state, ``finished`` or ``aborted``
        slots: Editor slots, empty unless the run finished
        dossier: Product facts gathered so far
        strategy: Social strategy, if one was produced
        directive: Boardroom decision, if one was reached
        dialogue: Every dialogue event emitted during the run
        artifact: Assembled sequence, None unless the run finished
        title: Sequence title
    """
    state: PipelineState
    slots: List[SequenceSlot]
    dossier: Dossier
    strategy: Optional[Strategy] = None
    directive: Optional[Directive] = None
    dialogue: List[DialogueEvent] = field(default_factory=list)
    artifact: Optional[SequenceArtifact] = None
    title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view for the editor"""
        return {
            "state": self.state.value,
            "title": self.title,
            "slots": [slot.model_dump(by_alias=True, mode="json") for slot in self.slots],
        }


class Orchestrator:
    """Main orchestrator for the product-to-sequence pipeline.

    The orchestrator sequences the roster over one AgentContext:
    1. Researcher - Build the product dossier
    2. Strategist - Pick the social angle
    3. Director - Run the boardroom, then drafting and designing
    4. Sequence Assembler - Rank the ten boxes
    5. Approval gate - Hold the sequence until approve() or reject()
    6. Image Anchorer - Fetch product images and generate one anchor per box

    One Orchestrator owns one Dispatcher; every backend call of every run
    goes through it. A run is started with ``orchestrate`` and can be
    cancelled from another task with ``cancel``.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        backend: Optional[GenerativeBackend] = None,
        dispatcher: Optional[Dispatcher] = None,
        tokens: Optional[TokenCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize the orchestrator.

        Args:
            config: Pipeline configuration (uses defaults if not provided)
            backend: Generative backend (a VertexBackend is built if not provided)
            dispatcher: Shared dispatcher (built from the config if not provided)
            tokens: Auth token cache for the default backend
            http_client: HTTP client used for product image acquisition
            sleep: Coroutine used for pacing waits; injectable for tests
        """
        self.config = config or PipelineConfig()
        self.dispatcher = dispatcher or Dispatcher(
            policy=self.config.dispatch,
            regions=self.config.regions,
            sleep=sleep
        )
        self.tokens = tokens
        if backend is None:
            self.tokens = tokens or TokenCache(self.config.auth_url)
            backend = VertexBackend(
                self.dispatcher,
                self.tokens,
                completion_model=self.config.completion_model,
                fallback_model=self.config.fallback_model,
                image_model=self.config.image_model,
                video_model=self.config.video_model,
                speech_model=self.config.speech_model,
                sleep=sleep
            )
        self.backend = backend

        self.agents = build_roster(backend)
        self.anchorer = ImageAnchorer(
            backend,
            aspect_ratio=self.config.aspect_ratio,
            http_client=http_client,
            max_reference_images=self.config.max_reference_images
        )
        self.renderer = BoxRenderer(backend, aspect_ratio=self.config.aspect_ratio, voice=self.config.voice)

        self.state = PipelineState.INIT
        self.artifact: Optional[SequenceArtifact] = None
        self._token: Optional[CancellationToken] = None
        self._approval: Optional[asyncio.Event] = None
        self._approved = False
        self._on_progress: Optional[ProgressCallback] = None
        self._structured_logger: Optional[StructuredJSONLogger] = None

    async def orchestrate(
        self,
        product_url: str,
        reference_video_url: str = "",
        on_progress: Optional[ProgressCallback] = None,
        on_dialogue: Optional[DialogueCallback] = None,
        description: Optional[str] = None
    ) -> OrchestrationResult:
        """Run the complete pipeline for one product.

        Args:
            product_url: Product page to research
            reference_video_url: Optional video whose style the sequence should echo
            on_progress: Called with the state name on every transition
            on_dialogue: Called with every dialogue event
            description: Optional product description supplied by the caller

        Returns:
            OrchestrationResult in state ``finished`` with ten slots, or in
            state ``aborted`` with no slots

        Raises:
            PipelineAbortError: If a stage fails with an unrecoverable error
        """
        if self._token is not None and not self.state.terminal and self.state != PipelineState.INIT:
            raise RuntimeError("a run is already in progress")

        token = CancellationToken()
        self._token = token
        self.dispatcher.bind(token)
        self._approval = asyncio.Event()
        self._approved = False
        self._on_progress = on_progress
        self.artifact = None
        self.state = PipelineState.INIT

        structured_logger = StructuredJSONLogger(output_directory=self.config.output_directory)
        self._structured_logger = structured_logger

        def observe(event: DialogueEvent) -> None:
            structured_logger.log_dialogue(event)
            if on_dialogue is not None:
                on_dialogue(event)

        blackboard = SharedBlackboard(observer=observe)
        dossier = Dossier(
            product_url=product_url,
            description=description or "",
            reference_video_urls=[reference_video_url] if reference_video_url else [],
        )
        ctx = AgentContext(
            dossier=dossier,
            blackboard=blackboard,
            cancellation=token,
            on_stage=self._enter_substage
        )

        run_start = time.time()
        structured_logger.log_pipeline_start(product_url, self.config.summary())

        try:
            for stage, agent_name in ROSTER_ORDER:
                ctx = await self._run_stage(
                    PipelineState(stage), ctx, self.agents[agent_name].execute
                )

            ctx = await self._run_stage(PipelineState.ASSEMBLING, ctx, self._assemble)
            self.artifact = ctx.artifact

            self._transition(PipelineState.AWAITING_APPROVAL)
            await self._await_approval(token)

            ctx = await self._run_stage(PipelineState.ANCHORING, ctx, self.anchorer.execute)

            slots = project_slots(ctx.artifact)
            self._transition(PipelineState.FINISHED)
            structured_logger.log_pipeline_complete(time.time() - run_start, self.state.value, len(slots))
            return self._result(ctx, slots)

        except Aborted as e:
            self.artifact = None
            self._transition(PipelineState.ABORTED)
            blackboard.record("Orchestrator", f"Run aborted: {e.message}", {"error": e.error_code})
            structured_logger.log_pipeline_complete(time.time() - run_start, self.state.value)
            ctx.artifact = None
            return self._result(ctx, [])

        except StudioError as e:
            stage = self.state.value
            self.artifact = None
            self._transition(PipelineState.FAILED)
            blackboard.record(
                "Orchestrator",
                f"Run failed during {stage}: {e.message}",
                {"stage": stage, "error": e.error_code, "context": e.context}
            )
            structured_logger.log_pipeline_error(type(e).__name__, str(e), stage=stage)
            raise PipelineAbortError(stage, e.error_code, e.message, e.context) from e

        finally:
            self._on_progress = None
            structured_logger.close()
            self._structured_logger = None

    def approve(self) -> bool:
        """Release the held sequence for anchoring.

        Returns:
            True if a sequence was awaiting approval
        """
        return self._decide(True)

    def reject(self) -> bool:
        """Reject the held sequence; the run ends in ``aborted``.

        Returns:
            True if a sequence was awaiting approval
        """
        return self._decide(False)

    def cancel(self) -> None:
        """Cancel the current run at its next suspension point.

        Work already in flight is allowed to finish; nothing new is started.
        """
        if self._token is None or self.state.terminal:
            logger.info("Cancel requested with no run in progress")
            return
        logger.info(f"Cancel requested during {self.state.value}")
        self._token.cancel()

    async def render_slot(
        self,
        box: Box,
        on_progress: Optional[Callable[[str], None]] = None
    ) -> RenderedClip:
        """Generate the clip and voiceover for one box of a finished run.

        Raises:
            RuntimeError: If the last run did not finish
            StudioError: For backend failures other than content rejection
        """
        if self.state != PipelineState.FINISHED:
            raise RuntimeError(f"render_slot requires a finished run (state is {self.state.value})")
        return await self.renderer.render(box, on_progress=on_progress)

    async def aclose(self) -> None:
        """Release the token cache's HTTP client, if this orchestrator owns one."""
        if self.tokens is not None:
            await self.tokens.aclose()

    async def _run_stage(
        self,
        stage: PipelineState,
        ctx: AgentContext,
        step: Callable[[AgentContext], Awaitable[AgentContext]]
    ) -> AgentContext:
        """Enter ``stage`` and run ``step`` with logging.

        Raises:
            StudioError: From the step, or UNEXPECTED_ERROR wrapping anything else
        """
        self._transition(stage)
        structured_logger = self._structured_logger
        input_summary = self._summarize(ctx)
        structured_logger.log_stage_start(stage.value, input_summary)
        start_time = time.time()

        try:
            ctx = await step(ctx)
        except Aborted:
            raise
        except StudioError as e:
            structured_logger.log_stage_failure(
                self.state.value,
                e.message,
                e.error_code,
                input_summary,
                duration_ms=(time.time() - start_time) * 1000
            )
            raise
        except Exception as e:
            structured_logger.log_stage_failure(
                self.state.value,
                str(e),
                "UNEXPECTED_ERROR",
                input_summary,
                duration_ms=(time.time() - start_time) * 1000
            )
            raise StudioError(
                "UNEXPECTED_ERROR",
                f"Unexpected error in {self.state.value}: {e}",
                {"error_type": type(e).__name__}
            ) from e

        structured_logger.log_stage_complete(
            stage.value,
            (time.time() - start_time) * 1000,
            self._summarize(ctx)
        )
        return ctx

    async def _assemble(self, ctx: AgentContext) -> AgentContext:
        ctx.artifact = assemble_sequence(
            ctx.boxes,
            ctx.dossier.product_name,
            title=ctx.title,
            reference_images=ctx.reference_images
        )
        return ctx

    async def _await_approval(self, token: CancellationToken) -> None:
        """Hold the run until approve(), reject(), cancel() or the timeout.

        Raises:
            Aborted: On rejection, cancellation or timeout
        """
        if not self._approval.is_set():
            decision = asyncio.ensure_future(self._approval.wait())
            cancelled = asyncio.ensure_future(token.wait())
            try:
                await asyncio.wait(
                    {decision, cancelled},
                    timeout=self.config.approval_timeout_seconds,
                    return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                decision.cancel()
                cancelled.cancel()

        token.raise_if_cancelled("anchoring")
        if not self._approval.is_set():
            raise Aborted(
                f"sequence was not approved within {self.config.approval_timeout_seconds}s",
                {"reason": "approval_timeout"}
            )
        if not self._approved:
            raise Aborted("sequence rejected", {"reason": "rejected"})
        logger.info("Sequence approved")

    def _decide(self, approved: bool) -> bool:
        if self.state != PipelineState.AWAITING_APPROVAL or self._approval is None or self._approval.is_set():
            logger.warning(f"Ignoring {'approval' if approved else 'rejection'} during {self.state.value}")
            return False
        self._approved = approved
        self._approval.set()
        return True

    def _enter_substage(self, stage: str) -> None:
        self._transition(PipelineState(stage))
        if self._structured_logger is not None:
            self._structured_logger.log_stage_start(stage, "delegated by Director")

    def _transition(self, state: PipelineState) -> None:
        """Move to ``state`` and notify the progress callback.

        Raises:
            Aborted: When entering a non-terminal state after cancellation
        """
        if not state.terminal and self._token is not None:
            self._token.raise_if_cancelled(state.value)
        self.state = state
        logger.info(f"Pipeline state: {state.value}")
        if self._on_progress is not None:
            try:
                self._on_progress(state.value)
            except Exception:
                logger.exception(f"Progress callback failed for {state.value}")

    def _result(self, ctx: AgentContext, slots: List[SequenceSlot]) -> OrchestrationResult:
        return OrchestrationResult(
            state=self.state,
            slots=slots,
            dossier=ctx.dossier,
            strategy=ctx.strategy,
            directive=ctx.directive,
            dialogue=list(ctx.blackboard.dialogue),
            artifact=ctx.artifact,
            title=ctx.artifact.title if ctx.artifact is not None else ctx.title
        )

    @staticmethod
    def _summarize(ctx: AgentContext) -> str:
        """Brief summary of the context for logging."""
        parts = [f"product={ctx.dossier.product_name or ctx.dossier.product_url}"]
        if ctx.strategy is not None:
            parts.append(f"angle={ctx.strategy.angle[:40]}")
        if ctx.directive is not None:
            parts.append(f"hook={ctx.directive.selected_hook[:40]}")
        if ctx.scene_draft is not None:
            parts.append(f"scenes={len(ctx.scene_draft.scenes)}")
        if ctx.boxes:
            parts.append(f"boxes={len(ctx.boxes)}")
        if ctx.artifact is not None:
            anchored = sum(1 for box in ctx.artifact.boxes if box.anchor_image is not None)
            parts.append(f"anchored={anchored}")
        return ", ".join(parts)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m reelstudio.orchestrator.pipeline",
        description="Turn a product page into a ten-box vertical video sequence"
    )
    parser.add_argument("product_url", help="Product page URL")
    parser.add_argument("reference_video_url", nargs="?", default="", help="Optional style reference video URL")
    parser.add_argument("--description", default=None, help="Product description to seed research with")
    parser.add_argument("--auto-approve", action="store_true", help="Approve the sequence without prompting")
    parser.add_argument("--output-dir", default=None, help="Directory for pipeline.log and slots.json")
    return parser


async def _run_cli(args: argparse.Namespace) -> int:
    config = PipelineConfig.from_env()
    if args.output_dir:
        config.output_directory = args.output_dir

    orchestrator = Orchestrator(config)
    loop = asyncio.get_running_loop()
    prompts: List[asyncio.Future] = []

    async def ask_for_approval() -> None:
        answer = await loop.run_in_executor(None, input, "Approve this sequence for anchoring? [y/N] ")
        if answer.strip().lower() in ("y", "yes"):
            orchestrator.approve()
        else:
            orchestrator.reject()

    def on_progress(status: str) -> None:
        print(f"== {status}")
        if status == PipelineState.AWAITING_APPROVAL.value:
            if args.auto_approve:
                orchestrator.approve()
            else:
                prompts.append(asyncio.ensure_future(ask_for_approval()))

    def on_dialogue(event: DialogueEvent) -> None:
        print(f"[{event.agent}] ({event.type.value}) {event.message}")

    try:
        result = await orchestrator.orchestrate(
            args.product_url,
            args.reference_video_url,
            on_progress=on_progress,
            on_dialogue=on_dialogue,
            description=args.description
        )
    except PipelineAbortError as e:
        print(f"Pipeline failed: {e}", file=sys.stderr)
        return 1
    finally:
        await orchestrator.aclose()

    if result.state != PipelineState.FINISHED:
        print(f"Pipeline ended in state {result.state.value}", file=sys.stderr)
        return 2

    payload = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    if config.output_directory:
        output_path = Path(config.output_directory) / "slots.json"
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(payload, encoding="utf-8")
        print(f"Wrote {len(result.slots)} slots to {output_path}")
    else:
        print(payload)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command line entry point.

    Returns:
        0 when the run finished, 1 when it failed, 2 when it was aborted
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return asyncio.run(_run_cli(args))


if __name__ == "__main__":
    sys.exit(main())
