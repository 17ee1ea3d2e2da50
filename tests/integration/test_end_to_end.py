"""Integration tests for the product-to-sequence pipeline.

Tests end-to-end execution including:
- A complete run producing ten ranked, anchored slots
- The structured pipeline.log written for a run
- Backend throttling absorbed by the shared dispatcher
- Fallback to the cheaper model when the primary quota is exhausted
- The command line entry point
"""

import asyncio
import io
import json
from collections import deque

import httpx
import pytest
from PIL import Image

from reelstudio.backend.base import GenerativeBackend
from reelstudio.orchestrator import pipeline
from reelstudio.orchestrator.dispatcher import BackendRequest, Dispatcher, Priority
from reelstudio.orchestrator.pipeline import Orchestrator, PipelineConfig, PipelineState


PRODUCT_URL = "https://www.example-store.com/products/aeropress-go"
VISUAL_DNA = "matte black polypropylene body, frosted chamber and orange logo"
SELECTED_HOOK = "The mug that hides a brewer"


def png_client() -> httpx.AsyncClient:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), "orange").save(buffer, format="PNG")
    body = buffer.getvalue()
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body)))


def auto_approve(orchestrator):
    def on_progress(state):
        if state == PipelineState.AWAITING_APPROVAL.value:
            orchestrator.approve()
    return on_progress


class Throttled(Exception):
    """Backend error carrying an HTTP status in ``code``, like google-genai's APIError"""

    def __init__(self, code: int):
        self.code = code
        super().__init__(f"{code} RESOURCE_EXHAUSTED")


class DispatchedBackend(GenerativeBackend):
    """Routes completions through a real Dispatcher before answering from a script

    ``throttles`` lists the statuses raised by the next attempts, in order.
    """

    def __init__(self, scripted, dispatcher: Dispatcher, throttles=()):
        self.scripted = scripted
        self.dispatcher = dispatcher
        self.throttles = deque(throttles)
        self.attempts = []

    async def completion(self, prompt, system_instruction, tools=(), json_mode=False,
                         priority=Priority.AGENT, media=()):
        async def invoke(region, model):
            self.attempts.append((region, model))
            if self.throttles:
                raise Throttled(self.throttles.popleft())
            return await self.scripted.completion(
                prompt, system_instruction, tools=tools, json_mode=json_mode, priority=priority, media=media
            )

        return await self.dispatcher.dispatch(
            BackendRequest("completion", invoke, "gemini-2.5-pro", "gemini-2.5-flash"),
            priority
        )

    async def image(self, prompt, aspect_ratio="9:16", reference_images=(), priority=Priority.AGENT):
        return await self.scripted.image(prompt, aspect_ratio, reference_images, priority)

    async def video(self, prompt, aspect_ratio="9:16", ambient_sound="", reference_image=None,
                    on_progress=None, priority=Priority.USER):
        return await self.scripted.video(prompt, aspect_ratio, ambient_sound, reference_image, on_progress, priority)

    async def speech(self, script, voice="Kore", priority=Priority.USER):
        return await self.scripted.speech(script, voice, priority)


def read_log(directory):
    with open(directory / "pipeline.log", "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


@pytest.mark.integration
class TestEndToEndPipeline:
    """Test complete end-to-end pipeline execution."""

    def test_happy_path(self, happy_backend, tmp_path):
        """Test a full run yields ten ranked slots carrying the visual DNA and the hook."""
        orchestrator = Orchestrator(
            PipelineConfig(output_directory=str(tmp_path)),
            backend=happy_backend,
            http_client=png_client()
        )
        states, events = [], []

        def on_progress(state):
            states.append(state)
            auto_approve(orchestrator)(state)

        result = asyncio.run(orchestrator.orchestrate(
            PRODUCT_URL,
            "https://www.youtube.com/watch?v=abc123",
            on_progress=on_progress,
            on_dialogue=events.append
        ))

        assert result.state == PipelineState.FINISHED
        assert states[-1] == "finished"
        slots = result.slots
        assert len(slots) == 10
        assert [slot.rank for slot in slots] == list(range(1, 11))
        assert [slot.id for slot in slots] == [f"slot-{rank:02d}" for rank in range(1, 11)]
        for slot in slots:
            assert slot.product_name == "AeroPress Go"
            assert VISUAL_DNA in slot.generated.image_prompt
            assert slot.generated.anchor_image == "data:image/png;base64,aW1hZ2U="
            assert len(slot.media.images) == 2
            assert slot.segment.duration == 8
        assert SELECTED_HOOK in slots[0].generated.video_prompt
        assert slots[0].category.value == "HOOK"
        assert slots[9].category.value == "OUTRO"

        # Seven completions, ten anchors and nothing rendered yet
        assert len(happy_backend.completion_calls) == 7
        assert len(happy_backend.image_calls) == 10
        assert [call for call in happy_backend.calls if call.kind in ("video", "speech")] == []

        agents = [event.agent for event in events]
        assert agents.index("Researcher") < agents.index("Strategist") < agents.index("Director")
        assert agents.index("AssistantDirector") < agents.index("GraphicsSoundDesigner") < agents.index("ImageAnchorer")

        entries = read_log(tmp_path)
        assert entries[0]["event"] == "pipeline_start"
        assert entries[0]["product_url"] == PRODUCT_URL
        assert entries[-1]["event"] == "pipeline_complete"
        assert entries[-1]["status"] == "finished"
        assert entries[-1]["slot_count"] == 10
        started = [entry["stage"] for entry in entries if entry["event"] == "stage_start"]
        assert started == ["researching", "strategizing", "boardroom", "drafting", "designing",
                           "assembling", "anchoring"]
        assert sum(1 for entry in entries if entry["event"] == "dialogue") == len(events)

    def test_failed_run_logged(self, make_backend, answers, tmp_path):
        """Test a failed run records the stage failure and the pipeline error."""
        backend = make_backend([answers["discovery"](), answers["sentiment"](), {"angle": ""}])
        orchestrator = Orchestrator(
            PipelineConfig(output_directory=str(tmp_path)), backend=backend, http_client=png_client()
        )

        with pytest.raises(pipeline.PipelineAbortError):
            asyncio.run(orchestrator.orchestrate(PRODUCT_URL))

        entries = read_log(tmp_path)
        failure = next(entry for entry in entries if entry["event"] == "stage_failure")
        assert failure["stage"] == "strategizing"
        assert failure["error_code"] == "STRATEGIST_PRODUCED_INVALID_ARTIFACT"
        assert entries[-1]["event"] == "pipeline_error"
        assert entries[-1]["stage"] == "strategizing"


@pytest.mark.integration
class TestThrottledPipeline:
    """Test runs whose backend calls are paced by a real Dispatcher."""

    def test_throttling_absorbed(self, happy_backend, fake_clock):
        """Test two 429s are retried with backoff and the penalty decays afterwards."""
        dispatcher = Dispatcher(sleep=fake_clock.sleep, jitter=lambda: 0.0)
        backend = DispatchedBackend(happy_backend, dispatcher, throttles=[429, 429])
        orchestrator = Orchestrator(backend=backend, dispatcher=dispatcher, http_client=png_client())

        result = asyncio.run(orchestrator.orchestrate(PRODUCT_URL, on_progress=auto_approve(orchestrator)))

        assert result.state == PipelineState.FINISHED
        assert len(result.slots) == 10
        # Discovery: gap, backoff, gap + 5, backoff, gap + 10; then the penalty decays by 2 per success
        assert fake_clock.sleeps == [12, 2, 17, 4, 22, 20, 18, 16, 14, 12, 12]
        assert dispatcher.penalty_seconds == 0
        assert [region for region, _ in backend.attempts[:4]] == [
            "us-central1", "us-east4", "europe-west4", "us-central1"
        ]

    def test_fallback_model_after_exhaustion(self, happy_backend, fake_clock):
        """Test five 429s exhaust the primary model and one fallback attempt succeeds."""
        dispatcher = Dispatcher(sleep=fake_clock.sleep, jitter=lambda: 0.0)
        backend = DispatchedBackend(happy_backend, dispatcher, throttles=[429] * 5)
        orchestrator = Orchestrator(backend=backend, dispatcher=dispatcher, http_client=png_client())

        result = asyncio.run(orchestrator.orchestrate(PRODUCT_URL, on_progress=auto_approve(orchestrator)))

        assert result.state == PipelineState.FINISHED
        models = [model for _, model in backend.attempts]
        assert models[:6] == ["gemini-2.5-pro"] * 5 + ["gemini-2.5-flash"]
        assert models[6:] == ["gemini-2.5-pro"] * 6
        assert fake_clock.sleeps[:10] == [12, 2, 17, 4, 22, 8, 27, 16, 32, 37]

    def test_cancel_stops_dispatch(self, happy_backend, fake_clock):
        """Test a cancel during pacing aborts before the next attempt reaches the backend."""
        dispatcher = Dispatcher(sleep=fake_clock.sleep, jitter=lambda: 0.0)
        backend = DispatchedBackend(happy_backend, dispatcher)
        orchestrator = Orchestrator(backend=backend, dispatcher=dispatcher, http_client=png_client())
        fake_clock.on_sleep = lambda seconds: orchestrator.cancel() if len(fake_clock.sleeps) == 3 else None

        result = asyncio.run(orchestrator.orchestrate(PRODUCT_URL))

        assert result.state == PipelineState.ABORTED
        assert result.slots == []
        assert len(backend.attempts) == 2


@pytest.mark.integration
class TestCommandLine:
    """Test the reelstudio command."""

    @pytest.fixture
    def patched_orchestrator(self, monkeypatch):
        def install(backend):
            def build(config):
                return Orchestrator(config, backend=backend, http_client=png_client())
            monkeypatch.setattr(pipeline, "Orchestrator", build)
        return install

    def test_auto_approve_writes_slots(self, patched_orchestrator, happy_backend, tmp_path, capsys):
        """Test an auto-approved run writes slots.json and exits 0."""
        patched_orchestrator(happy_backend)

        code = pipeline.main([PRODUCT_URL, "--auto-approve", "--output-dir", str(tmp_path)])

        assert code == 0
        payload = json.loads((tmp_path / "slots.json").read_text(encoding="utf-8"))
        assert payload["state"] == "finished"
        assert len(payload["slots"]) == 10
        assert (tmp_path / "pipeline.log").exists()
        assert "== awaiting_approval" in capsys.readouterr().out

    def test_failure_exit_code(self, patched_orchestrator, make_backend, answers, tmp_path, capsys):
        """Test a failed run exits 1 and reports the stage."""
        patched_orchestrator(make_backend([answers["discovery"](), answers["sentiment"](), {"angle": ""}]))

        code = pipeline.main([PRODUCT_URL, "--auto-approve", "--output-dir", str(tmp_path)])

        assert code == 1
        assert "strategizing" in capsys.readouterr().err
        assert not (tmp_path / "slots.json").exists()
