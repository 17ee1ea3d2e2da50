"""Generative backend capability

Abstract interface over the four generative operations the studio needs.
Agents depend only on this interface; implementations must route every
call through the run's Dispatcher.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional, Sequence

from reelstudio.orchestrator.dispatcher import Priority
from reelstudio.schemas.sequence import AnchorImage


class Tool(Enum):
    """Server-side tools a completion may enable"""
    WEB_SEARCH = "web_search"


class GenerativeBackend(ABC):
    """Text, image, video and speech generation"""

    @abstractmethod
    async def completion(
        self,
        prompt: str,
        system_instruction: str,
        tools: Sequence[Tool] = (),
        json_mode: bool = False,
        priority: Priority = Priority.AGENT,
        media: Sequence[AnchorImage] = ()
    ):
        """Run a text completion

        When ``tools`` includes WEB_SEARCH and ``json_mode`` is set, a JSON-only
        directive is appended to the system instruction instead of requesting
        a JSON response MIME type (the two cannot be combined).

        Args:
            prompt: User prompt
            system_instruction: System instruction
            tools: Server-side tools to enable
            json_mode: Parse the response as structured JSON
            priority: Dispatcher priority
            media: Inline images sent with the prompt

        Returns:
            Parsed JSON value when ``json_mode`` is set, otherwise the response text

        Raises:
            MalformedStructuredResponse: If ``json_mode`` is set and no JSON is found
            QuotaExhausted: If the primary and fallback models are throttled
            TransportError: On network failures or non-retryable statuses
        """

    @abstractmethod
    async def image(
        self,
        prompt: str,
        aspect_ratio: str = "9:16",
        reference_images: Sequence[AnchorImage] = (),
        priority: Priority = Priority.AGENT
    ) -> AnchorImage:
        """Generate a still image

        With references, a completion first describes them in detail and the
        description is prepended to ``prompt``.

        Raises:
            ContentRejected: If the safety filter refuses the image
        """

    @abstractmethod
    async def video(
        self,
        prompt: str,
        aspect_ratio: str = "9:16",
        ambient_sound: str = "",
        reference_image: Optional[AnchorImage] = None,
        on_progress: Optional[Callable[[str], None]] = None,
        priority: Priority = Priority.USER
    ) -> str:
        """Generate an 8-second clip and return its URI or data URL

        Raises:
            ContentRejected: If the safety filter refuses the clip
            TransportError: If the operation does not finish in time
        """

    @abstractmethod
    async def speech(self, script: str, voice: str = "Kore", priority: Priority = Priority.USER) -> str:
        """Synthesize a voiceover and return it as a ``data:audio/wav`` URL"""
