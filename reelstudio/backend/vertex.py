"""Vertex AI implementation of the generative backend using google-genai.

Completions run on Gemini (with Google Search grounding when requested),
images on Imagen, clips on Veo and voiceovers on Gemini TTS. Every call is
submitted to the Dispatcher, which picks the region for each attempt; the
client for that region is created lazily with the cached bearer token.
"""

import asyncio
import base64
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from google import genai
from google.genai import types
from google.oauth2.credentials import Credentials

from reelstudio.agents.base import ContentRejected, TransportError
from reelstudio.agents.structured_response import JSON_ONLY_DIRECTIVE, parse_structured_response
from reelstudio.backend.audio import SAMPLE_RATE, wav_data_url
from reelstudio.backend.auth import AuthToken, TokenCache
from reelstudio.backend.base import GenerativeBackend, Tool
from reelstudio.orchestrator.dispatcher import (
    RETRYABLE_STATUS_CODES,
    BackendRequest,
    Dispatcher,
    Priority,
    is_transport_error,
    status_of,
)
from reelstudio.schemas.sequence import BOX_SECONDS, AnchorImage


logger = logging.getLogger(__name__)


VIDEO_POLL_INTERVAL_SECONDS = 5.0
VIDEO_TIMEOUT_SECONDS = 180.0

# Statuses that mean the bearer token was revoked or never valid
AUTH_REJECTED_STATUSES = {401, 403}

REFERENCE_DESCRIPTION_INSTRUCTION = (
    "You are a product photographer's assistant. Describe the product in the "
    "reference images with hyper-detailed precision: exact materials, surface "
    "finishes, colors, proportions, logo placement and any printed text. "
    "Describe only what is visible. Answer in one dense paragraph."
)

_PCM_RATE = re.compile(r"rate=(\d+)")

ClientFactory = Callable[[str, AuthToken], Any]


def _default_client(region: str, token: AuthToken):
    return genai.Client(
        vertexai=True,
        project=token.project_id,
        location=region,
        credentials=Credentials(token=token.token)
    )


def _inline_part(image: AnchorImage) -> types.Part:
    return types.Part.from_bytes(data=base64.b64decode(image.data), mime_type=image.mime_type)


def _response_text(response) -> str:
    """Text of a generate_content response; ContentRejected if it was blocked"""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback else None
    if block_reason:
        raise ContentRejected(
            "Prompt was blocked by the safety filter",
            rejection_reason=str(block_reason)
        )
    return response.text or ""


class VertexBackend(GenerativeBackend):
    """GenerativeBackend backed by Vertex AI

    Attributes:
        dispatcher: Serializes and paces every call
        tokens: Bearer token cache
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        tokens: TokenCache,
        completion_model: str = "gemini-2.5-pro",
        fallback_model: Optional[str] = "gemini-2.5-flash",
        image_model: str = "imagen-4.0-generate-001",
        video_model: str = "veo-3.1-generate-preview",
        speech_model: str = "gemini-2.5-flash-preview-tts",
        client_factory: ClientFactory = _default_client,
        sleep: Callable[[float], Any] = asyncio.sleep,
        poll_interval_seconds: float = VIDEO_POLL_INTERVAL_SECONDS,
        video_timeout_seconds: float = VIDEO_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.dispatcher = dispatcher
        self.tokens = tokens
        self.completion_model = completion_model
        self.fallback_model = fallback_model
        self.image_model = image_model
        self.video_model = video_model
        self.speech_model = speech_model
        self._client_factory = client_factory
        self._sleep = sleep
        self.poll_interval_seconds = poll_interval_seconds
        self.video_timeout_seconds = video_timeout_seconds
        self._clock = clock
        self._clients: Dict[str, Tuple[str, Any]] = {}

    async def _client(self, region: str):
        """Client for ``region``, rebuilt whenever the token rotates"""
        token = await self.tokens.get()
        cached = self._clients.get(region)
        if cached is None or cached[0] != token.token:
            cached = (token.token, self._client_factory(region, token))
            self._clients[region] = cached
        return cached[1]

    def _forget_token(self) -> None:
        logger.warning("Backend rejected the bearer token, dropping it")
        self.tokens.invalidate()
        self._clients.clear()

    async def _dispatch(self, request: BackendRequest, priority: Priority):
        """Dispatch ``request``; a rejected token is dropped before the error propagates"""
        try:
            return await self.dispatcher.dispatch(request, priority)
        except TransportError as e:
            if e.status in AUTH_REJECTED_STATUSES:
                self._forget_token()
            raise

    async def completion(
        self,
        prompt: str,
        system_instruction: str,
        tools: Sequence[Tool] = (),
        json_mode: bool = False,
        priority: Priority = Priority.AGENT,
        media: Sequence[AnchorImage] = ()
    ):
        config_params: Dict[str, Any] = {"system_instruction": system_instruction}
        if Tool.WEB_SEARCH in tools:
            config_params["tools"] = [types.Tool(google_search=types.GoogleSearch())]
            if json_mode:
                # Grounded calls reject a JSON response MIME type
                config_params["system_instruction"] = system_instruction + JSON_ONLY_DIRECTIVE
        elif json_mode:
            config_params["response_mime_type"] = "application/json"
        config = types.GenerateContentConfig(**config_params)

        contents: List[Any] = [_inline_part(image) for image in media]
        contents.append(prompt)

        async def invoke(region: str, model: str):
            client = await self._client(region)
            return await client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config
            )

        response = await self._dispatch(
            BackendRequest("completion", invoke, self.completion_model, self.fallback_model),
            priority
        )
        text = _response_text(response)
        if json_mode:
            return parse_structured_response(text)
        return text

    async def image(
        self,
        prompt: str,
        aspect_ratio: str = "9:16",
        reference_images: Sequence[AnchorImage] = (),
        priority: Priority = Priority.AGENT
    ) -> AnchorImage:
        if reference_images:
            description = await self.completion(
                "Describe the product shown in these reference images.",
                REFERENCE_DESCRIPTION_INSTRUCTION,
                priority=priority,
                media=reference_images
            )
            prompt = f"{description.strip()}\n\n{prompt}"

        config = types.GenerateImagesConfig(
            number_of_images=1,
            aspect_ratio=aspect_ratio,
            include_rai_reason=True,
            output_mime_type="image/png"
        )

        async def invoke(region: str, model: str):
            client = await self._client(region)
            return await client.aio.models.generate_images(model=model, prompt=prompt, config=config)

        response = await self._dispatch(
            BackendRequest("image", invoke, self.image_model),
            priority
        )

        generated = list(response.generated_images or [])
        first = generated[0] if generated else None
        if first is None or first.image is None or not first.image.image_bytes:
            reason = getattr(first, "rai_filtered_reason", None) or "no image returned"
            raise ContentRejected(
                "Image generation was filtered",
                {"prompt": prompt[:100]},
                rejection_reason=str(reason)
            )
        return AnchorImage(
            mime_type=first.image.mime_type or "image/png",
            data=base64.b64encode(first.image.image_bytes).decode("ascii")
        )

    async def video(
        self,
        prompt: str,
        aspect_ratio: str = "9:16",
        ambient_sound: str = "",
        reference_image: Optional[AnchorImage] = None,
        on_progress: Optional[Callable[[str], None]] = None,
        priority: Priority = Priority.USER
    ) -> str:
        full_prompt = f"{prompt}\n\nAmbient sound: {ambient_sound}" if ambient_sound else prompt
        config = types.GenerateVideosConfig(
            aspect_ratio=aspect_ratio,
            duration_seconds=BOX_SECONDS,
            number_of_videos=1,
            generate_audio=True
        )
        request_params: Dict[str, Any] = {"prompt": full_prompt, "config": config}
        if reference_image is not None:
            request_params["image"] = types.Image(
                image_bytes=base64.b64decode(reference_image.data),
                mime_type=reference_image.mime_type
            )

        async def invoke(region: str, model: str):
            client = await self._client(region)
            operation = await client.aio.models.generate_videos(model=model, **request_params)
            logger.info(f"Video operation submitted in {region}: {operation.name}")
            return await self._await_operation(client, operation, on_progress)

        result = await self._dispatch(
            BackendRequest("video", invoke, self.video_model),
            priority
        )
        return self._video_url(result)

    async def _await_operation(self, client, operation, on_progress):
        """Poll a Veo operation until it finishes or the deadline passes.

        Poll failures are handled here rather than left to the dispatcher,
        whose retry would submit the job a second time. Transient ones are
        retried on the next interval.

        Raises:
            TransportError: On timeout, a non-retryable poll failure or an
                operation-level error
        """
        started = self._clock()
        deadline = started + self.video_timeout_seconds
        while not operation.done:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(self.poll_interval_seconds, remaining))
            try:
                operation = await client.aio.operations.get(operation)
            except Exception as e:
                status = status_of(e)
                if status is None and not is_transport_error(e):
                    raise
                if status is not None and status not in RETRYABLE_STATUS_CODES:
                    raise TransportError(
                        f"Polling video operation failed with status {status}: {e}",
                        {"operation": operation.name},
                        status=status
                    ) from e
                logger.warning(f"Polling {operation.name} failed with {status or type(e).__name__}, retrying")
                continue
            if on_progress is not None:
                elapsed = self._clock() - started
                try:
                    on_progress(f"Rendering clip ({elapsed:.0f}s elapsed)")
                except Exception:
                    logger.exception("Video progress callback failed")

        if not operation.done:
            raise TransportError(
                f"Video generation did not finish within {self.video_timeout_seconds:.0f}s",
                {"operation": operation.name}
            )
        if operation.error:
            raise TransportError(
                f"Video generation failed: {operation.error}",
                {"operation": operation.name}
            )
        return operation.result or operation.response

    def _video_url(self, result) -> str:
        videos = list(getattr(result, "generated_videos", None) or [])
        if not videos or videos[0].video is None:
            reasons = getattr(result, "rai_media_filtered_reasons", None) or ["no video returned"]
            raise ContentRejected(
                "Video generation was filtered",
                rejection_reason="; ".join(str(reason) for reason in reasons)
            )
        video = videos[0].video
        if video.uri:
            return video.uri
        if video.video_bytes:
            encoded = base64.b64encode(video.video_bytes).decode("ascii")
            return f"data:{video.mime_type or 'video/mp4'};base64,{encoded}"
        raise ContentRejected("Video generation returned an empty clip", rejection_reason="empty result")

    async def speech(
        self,
        script: str,
        voice: str = "Kore",
        priority: Priority = Priority.USER
    ) -> str:
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice)
                )
            )
        )

        async def invoke(region: str, model: str):
            client = await self._client(region)
            return await client.aio.models.generate_content(model=model, contents=script, config=config)

        response = await self._dispatch(
            BackendRequest("speech", invoke, self.speech_model),
            priority
        )

        inline = None
        for candidate in response.candidates or []:
            for part in (candidate.content.parts if candidate.content else None) or []:
                if part.inline_data is not None and part.inline_data.data:
                    inline = part.inline_data
                    break
            if inline is not None:
                break
        if inline is None:
            raise ContentRejected("Speech synthesis returned no audio", rejection_reason="no audio returned")

        mime_type = inline.mime_type or ""
        if mime_type in ("audio/wav", "audio/x-wav"):
            return f"data:audio/wav;base64,{base64.b64encode(inline.data).decode('ascii')}"
        match = _PCM_RATE.search(mime_type)
        return wav_data_url(inline.data, sample_rate=int(match.group(1)) if match else SAMPLE_RATE)
