"""Image acquisition and anchoring

Acquisition downloads up to the first five product images listed in the
dossier and keeps the ones that decode as images. Anchoring asks the backend
for one static anchor image per box; a failed anchor is logged and recorded
and the box simply proceeds without one.
"""

import base64
import io
import logging
from typing import List, Optional, Sequence

import httpx
from PIL import Image, UnidentifiedImageError

from reelstudio.agents.base import Aborted, AgentContext, CancellationToken, StudioError
from reelstudio.backend.base import GenerativeBackend
from reelstudio.orchestrator.dispatcher import Priority

logger = logging.getLogger(__name__)


MAX_REFERENCE_IMAGES = 5


def image_data_url(content: bytes) -> Optional[str]:
    """Base64 data URL for ``content`` if Pillow recognises it as an image."""
    try:
        with Image.open(io.BytesIO(content)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError):
        return None
    if not image_format:
        return None
    mime_type = Image.MIME.get(image_format, f"image/{image_format.lower()}")
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


async def acquire_reference_images(
    urls: Sequence[str],
    client: Optional[httpx.AsyncClient] = None,
    limit: int = MAX_REFERENCE_IMAGES,
    cancellation: Optional[CancellationToken] = None,
    timeout: float = 30.0
) -> List[str]:
    """Fetch up to ``limit`` images sequentially, skipping failures.

    Args:
        urls: Candidate image URLs in dossier order
        client: HTTP client to use (a temporary one is created if omitted)
        limit: Maximum number of URLs to try
        cancellation: Checked before every fetch
        timeout: Per-request timeout for a temporary client

    Returns:
        Data URLs of the images that downloaded and decoded, in order

    Raises:
        Aborted: If the run is cancelled
    """
    urls = list(urls)[:limit]
    if not urls:
        return []

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    acquired: List[str] = []
    try:
        for url in urls:
            if cancellation is not None:
                cancellation.raise_if_cancelled("image acquisition")
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.info(f"Skipping reference image {url}: {e}")
                continue
            data_url = image_data_url(response.content)
            if data_url is None:
                logger.info(f"Skipping reference image {url}: not an image")
                continue
            acquired.append(data_url)
    finally:
        if owns_client:
            await client.aclose()

    logger.info(f"Acquired {len(acquired)} of {len(urls)} reference images")
    return acquired


class ImageAnchorer:
    """Acquires reference images, then generates the anchor image for every box"""

    name = "ImageAnchorer"
    role = "Anchor Still Generator"

    def __init__(
        self,
        backend: GenerativeBackend,
        aspect_ratio: str = "9:16",
        http_client: Optional[httpx.AsyncClient] = None,
        max_reference_images: int = MAX_REFERENCE_IMAGES
    ):
        self.backend = backend
        self.aspect_ratio = aspect_ratio
        self.http_client = http_client
        self.max_reference_images = max_reference_images

    async def execute(self, ctx: AgentContext) -> AgentContext:
        """Attach reference images and per-box anchors to the assembled artifact

        Raises:
            Aborted: If the run is cancelled between fetches or boxes
        """
        artifact = ctx.artifact
        if artifact is None:
            return ctx

        ctx.reference_images = await acquire_reference_images(
            ctx.dossier.images,
            client=self.http_client,
            limit=self.max_reference_images,
            cancellation=ctx.cancellation
        )
        artifact.reference_images = list(ctx.reference_images)

        anchored = 0
        for box in artifact.boxes:
            ctx.cancellation.raise_if_cancelled(f"anchor for box {box.rank}")
            if not box.image_prompt.strip():
                continue
            try:
                box.anchor_image = await self.backend.image(
                    box.image_prompt,
                    aspect_ratio=self.aspect_ratio,
                    priority=Priority.AGENT
                )
                anchored += 1
            except Aborted:
                raise
            except StudioError as e:
                logger.warning(f"Anchor for box {box.rank} failed: {e}")
                ctx.blackboard.record(
                    self.name,
                    f"Box {box.rank} proceeds without an anchor image ({e.error_code})",
                    {"rank": box.rank, "error": e.error_code, "message": e.message},
                    role=self.role
                )

        ctx.blackboard.record(
            self.name,
            f"Anchored {anchored} of {len(artifact.boxes)} boxes",
            {"anchored": anchored},
            role=self.role
        )
        return ctx
