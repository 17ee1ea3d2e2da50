"""Shared fixtures: a scripted generative backend and a virtual clock.

The scripted backend answers completions from a queue in call order and
records every call, so tests can assert both what agents asked for and how
they reacted to each answer. The virtual clock stands in for asyncio.sleep
so dispatcher pacing and backoff are observed without waiting.
"""

import asyncio
import copy
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from reelstudio.backend.base import GenerativeBackend, Tool
from reelstudio.orchestrator.dispatcher import Priority
from reelstudio.schemas.sequence import AnchorImage


PRODUCT_URL = "https://www.example-store.com/products/aeropress-go"
REFERENCE_VIDEO_URL = "https://www.youtube.com/watch?v=abc123"
VISUAL_DNA = "matte black polypropylene body, frosted chamber and orange logo"
FEATURES = ["Brews in one minute", "Packs inside its own mug", "Micro-filter paper"]
HOOKS = ["Coffee in sixty seconds", "The mug that hides a brewer", "Stop buying airport coffee"]


class FakeClock:
    """Virtual clock whose sleep records the delay and returns at once"""

    def __init__(self, on_sleep: Optional[Callable[[float], None]] = None):
        self.now = 0.0
        self.sleeps: List[float] = []
        self.on_sleep = on_sleep

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(seconds)
        await asyncio.sleep(0)


@dataclass
class BackendCall:
    kind: str
    prompt: str
    system_instruction: str = ""
    tools: Sequence[Tool] = ()
    priority: Priority = Priority.AGENT
    extra: Dict[str, Any] = field(default_factory=dict)


class ScriptedBackend(GenerativeBackend):
    """GenerativeBackend that replays scripted answers

    Completion answers are consumed in order. An answer may be a value
    (returned as a deep copy), an exception (raised) or a callable taking
    ``(prompt, system_instruction)``. Image answers work the same way and
    fall back to a fixed anchor once the queue is empty.
    """

    def __init__(self, completions: Sequence[Any] = (), images: Sequence[Any] = ()):
        self.completions = deque(completions)
        self.images = deque(images)
        self.calls: List[BackendCall] = []
        self.default_image = AnchorImage(mime_type="image/png", data="aW1hZ2U=")
        self.video_result: Any = "gs://clips/box.mp4"
        self.speech_result: Any = "data:audio/wav;base64,UklGRg=="
        self.on_image: Optional[Callable[[int], None]] = None

    @property
    def completion_calls(self) -> List[BackendCall]:
        return [call for call in self.calls if call.kind == "completion"]

    @property
    def image_calls(self) -> List[BackendCall]:
        return [call for call in self.calls if call.kind == "image"]

    @staticmethod
    def _answer(item: Any, *args: Any) -> Any:
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(*args)
        return copy.deepcopy(item)

    async def completion(
        self,
        prompt,
        system_instruction,
        tools=(),
        json_mode=False,
        priority=Priority.AGENT,
        media=()
    ):
        self.calls.append(BackendCall("completion", prompt, system_instruction, tuple(tools), priority))
        await asyncio.sleep(0)
        if not self.completions:
            raise AssertionError(f"unexpected completion call: {prompt[:80]!r}")
        return self._answer(self.completions.popleft(), prompt, system_instruction)

    async def image(self, prompt, aspect_ratio="9:16", reference_images=(), priority=Priority.AGENT):
        self.calls.append(BackendCall("image", prompt, priority=priority, extra={"aspect_ratio": aspect_ratio}))
        if self.on_image is not None:
            self.on_image(len(self.image_calls))
        await asyncio.sleep(0)
        if not self.images:
            return self.default_image
        return self._answer(self.images.popleft(), prompt)

    async def video(
        self,
        prompt,
        aspect_ratio="9:16",
        ambient_sound="",
        reference_image=None,
        on_progress=None,
        priority=Priority.USER
    ):
        self.calls.append(BackendCall(
            "video", prompt, priority=priority,
            extra={"ambient_sound": ambient_sound, "reference_image": reference_image}
        ))
        await asyncio.sleep(0)
        return self._answer(self.video_result, prompt)

    async def speech(self, script, voice="Kore", priority=Priority.USER):
        self.calls.append(BackendCall("speech", script, priority=priority, extra={"voice": voice}))
        await asyncio.sleep(0)
        return self._answer(self.speech_result, script)


def discovery_answer(**overrides: Any) -> Dict[str, Any]:
    answer = {
        "productName": "AeroPress Go",
        "description": "Portable coffee press for travel",
        "visualDna": VISUAL_DNA,
        "features": list(FEATURES),
        "specs": {"capacity": "8 oz", "weight": "320 g"},
        "referenceVideoUrls": ["https://www.tiktok.com/@brew/video/1"],
        "images": [
            "https://cdn.example-store.com/aeropress-front.png",
            "https://cdn.example-store.com/aeropress-side.png",
        ],
    }
    answer.update(overrides)
    return answer


def sentiment_answer() -> Dict[str, Any]:
    return {
        "painPoints": ["Filters are easy to lose", "Plunger needs force"],
        "reviews": ["Best camping coffee I've had", "Wish it made two cups"],
        "sentimentScore": 86,
    }


def strategy_answer(**overrides: Any) -> Dict[str, Any]:
    answer = {
        "angle": "Solution",
        "targetAudience": "Travelling coffee snobs",
        "videoType": "HOW_TO",
        "caption": "Real coffee anywhere",
        "hashtags": ["#coffee", "#travel"],
        "firstComment": "Who else hates hotel coffee?",
        "bestTime": "7am",
        "triggers": ["Solution"],
    }
    answer.update(overrides)
    return answer


def propose_answer(titles: Sequence[str] = tuple(HOOKS)) -> Dict[str, Any]:
    return {"hooks": [{"title": title, "logic": f"Logic for {title}"} for title in titles]}


def critique_answer(selected: str = HOOKS[1], edits: Sequence[str] = ("Show the mug first",)) -> Dict[str, Any]:
    return {"selectedHook": selected, "strategicLogic": "Surprise sells portability", "edits": list(edits)}


def draft_answer(count: int = 10) -> Dict[str, Any]:
    return {
        "scenes": [f"Scene {index}: the brewer on a mountain ledge" for index in range(1, count + 1)],
        "narrativeLogic": "From problem to ritual",
    }


def design_answer(count: int = 10, **box_overrides: Any) -> Dict[str, Any]:
    types = ["HOOK", "PROBLEM_SOLUTION", "FEATURE", "FEATURE", "FEATURE",
             "TESTIMONIAL", "COMPARISON", "AD", "CTA", "OUTRO"]
    boxes = []
    for index in range(count):
        box = {
            "type": types[index % len(types)],
            "imagePrompt": f"Static hero shot {index + 1} of the press on slate",
            "visualPrompt": f"Slow dolly around the press, shot {index + 1}",
            "audioScript": f"Line {index + 1} of the voiceover about fresh coffee anywhere you go today",
            "ambientSoundDescription": "Kettle hiss and birdsong",
            "technicalReasoning": "Low angle keeps the logo readable",
            "duration": 8,
            "lighting": "Golden hour",
            "camera": "35mm dolly",
        }
        box.update(box_overrides)
        boxes.append(box)
    return {"title": "Brew Anywhere", "boxes": boxes}


def happy_path_completions() -> List[Any]:
    """Completion answers for one full run, in call order"""
    return [
        discovery_answer(),
        sentiment_answer(),
        strategy_answer(),
        propose_answer(),
        critique_answer(),
        draft_answer(),
        design_answer(),
    ]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_backend():
    """Factory for ScriptedBackend instances"""
    return ScriptedBackend


@pytest.fixture
def happy_backend():
    return ScriptedBackend(happy_path_completions())


@pytest.fixture
def answers():
    """Builders for canned completion answers, keyed by agent turn"""
    return {
        "discovery": discovery_answer,
        "sentiment": sentiment_answer,
        "strategy": strategy_answer,
        "propose": propose_answer,
        "critique": critique_answer,
        "draft": draft_answer,
        "design": design_answer,
        "happy_path": happy_path_completions,
    }
