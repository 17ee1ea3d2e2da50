"""Box renderer: turns one approved box into a clip and a voiceover."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from reelstudio.agents.base import ContentRejected
from reelstudio.backend.base import GenerativeBackend
from reelstudio.orchestrator.dispatcher import Priority
from reelstudio.schemas.sequence import Box

logger = logging.getLogger(__name__)


@dataclass
class RenderedClip:
    """Result of rendering one box

    Attributes:
        rank: Rank of the rendered box
        video_url: Clip URI or data URL, None if the clip was rejected
        audio_url: Voiceover data URL, None if there was no script or it was rejected
        error: Rejection reason, if any
    """
    rank: Optional[int]
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    error: Optional[str] = None


class BoxRenderer:
    """Renders boxes at user priority"""

    def __init__(self, backend: GenerativeBackend, aspect_ratio: str = "9:16", voice: str = "Kore"):
        self.backend = backend
        self.aspect_ratio = aspect_ratio
        self.voice = voice

    async def render(self, box: Box, on_progress: Optional[Callable[[str], None]] = None) -> RenderedClip:
        """Generate the clip and voiceover for ``box``

        Content rejections are reported on the clip; other errors propagate.
        """
        clip = RenderedClip(rank=box.rank)
        errors = []

        try:
            clip.video_url = await self.backend.video(
                box.visual_prompt,
                aspect_ratio=self.aspect_ratio,
                ambient_sound=box.ambient_sound_description,
                reference_image=box.anchor_image,
                on_progress=on_progress,
                priority=Priority.USER
            )
        except ContentRejected as e:
            logger.warning(f"Clip for box {box.rank} rejected: {e.rejection_reason or e.message}")
            errors.append(f"video: {e.rejection_reason or e.message}")

        if box.audio_script.strip():
            try:
                clip.audio_url = await self.backend.speech(box.audio_script, self.voice, priority=Priority.USER)
            except ContentRejected as e:
                logger.warning(f"Voiceover for box {box.rank} rejected: {e.rejection_reason or e.message}")
                errors.append(f"audio: {e.rejection_reason or e.message}")

        if errors:
            clip.error = "; ".join(errors)
        return clip
