"""Researcher agent: product discovery and sentiment analysis

The Researcher scans the product page (and the caller's reference video)
with web search enabled to build the factual dossier, then mines forums for
buyer objections. A failed discovery never aborts the run: the Researcher
falls back to a minimal dossier derived from the product URL.
"""

import logging
from typing import Any, Dict

from pydantic import ValidationError

from reelstudio.agents.base import (
    Aborted,
    AgentContext,
    MalformedStructuredResponse,
    StudioError,
)
from reelstudio.agents.skills import RESEARCHER_SKILL
from reelstudio.agents.structured_response import preview, request_structured
from reelstudio.backend.base import GenerativeBackend, Tool
from reelstudio.schemas.dossier import Dossier

logger = logging.getLogger(__name__)


DISCOVERY_PROMPT = """
DEEP SCAN: {product_url}
REFERENCE VIDEO: {reference_video_url}
{notes}
TASK:
1. Extract the product's name, description, features and core specs.
2. Identify its visual attributes (Visual DNA): materials, finishes, colors, logo placement.
3. Find up to 2 extra UGC or review videos for this product on YouTube or TikTok.
4. List direct URLs of official product images.

OUTPUT FORMAT (JSON ONLY):
{{
    "productName": "string",
    "description": "string",
    "visualDna": "string (detailed material/color/form description)",
    "features": ["string"],
    "specs": {{"key": "value"}},
    "referenceVideoUrls": ["string"],
    "images": ["string (absolute image URL)"]
}}
"""

SENTIMENT_PROMPT = """
SEARCH: "{product_name} reviews reddit"
{notes}
Find why people DISLIKE this product. What are the specific pain points?

OUTPUT FORMAT (JSON ONLY):
{{
    "painPoints": ["string"],
    "reviews": ["string (actual quotes or summaries)"],
    "sentimentScore": 0
}}
sentimentScore is an integer from 0 (hated) to 100 (loved).
"""


def _notes(ctx: AgentContext) -> str:
    """Prior findings and manual notes to include in a prompt"""
    lines = []
    if ctx.dossier.description:
        lines.append(f"KNOWN DESCRIPTION: {ctx.dossier.description}")
    digest = ctx.blackboard.digest()
    if digest:
        lines.append(f"PRIOR FINDINGS:\n{digest}")
    return "\n".join(lines)


def _require_object(raw: Any, skill: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise MalformedStructuredResponse(
            f"{skill} returned {type(raw).__name__} instead of an object",
            {"preview": preview(raw)}
        )
    return raw


class Researcher:
    """Fact-based market analyst"""

    name = "Researcher"
    role = "Fact-Based Market Analyst"

    def __init__(self, backend: GenerativeBackend):
        self.backend = backend

    async def execute(self, ctx: AgentContext) -> AgentContext:
        """Populate the dossier with discovery and sentiment findings

        Raises:
            Aborted: If the run is cancelled
        """
        board = ctx.blackboard
        product_url = ctx.dossier.product_url
        reference_url = ctx.dossier.reference_video_urls[0] if ctx.dossier.reference_video_urls else ""

        board.say(
            self.name,
            f"Starting comprehensive scan of {product_url} and analysis of the reference video...",
            role=self.role
        )

        try:
            facts = await self._discover(ctx, product_url, reference_url)
            ctx.dossier = ctx.dossier.enrich(facts)
        except Aborted:
            raise
        except (StudioError, ValidationError) as e:
            error_code = getattr(e, "error_code", "SCHEMA_VIOLATION")
            logger.warning(f"Product discovery failed [{error_code}], continuing with a minimal dossier")
            ctx.dossier = ctx.dossier.enrich(
                Dossier.minimal(product_url, reference_url).model_dump(by_alias=True)
            )
            board.record(
                self.name,
                f"Product discovery failed ({error_code}); continuing with a minimal dossier "
                f"for {ctx.dossier.product_name}",
                {"error": error_code, "dossier": ctx.dossier.model_dump(by_alias=True)},
                role=self.role
            )
            return ctx

        if not ctx.dossier.product_name:
            ctx.dossier = ctx.dossier.enrich(
                {"productName": Dossier.minimal(product_url).product_name}
            )

        board.record(
            self.name,
            f'Product scan complete: identified "{ctx.dossier.product_name}". '
            f'Visual DNA: "{ctx.dossier.visual_dna}". '
            f"Key features: {', '.join(ctx.dossier.features[:3]) or 'none found'}",
            {"facts": facts},
            role=self.role
        )

        board.say(
            self.name,
            f"Consulting Reddit and consumer forums for real-world objections to "
            f"{ctx.dossier.product_name}...",
            role=self.role
        )
        try:
            sentiment = await self._analyze_sentiment(ctx)
            ctx.dossier = ctx.dossier.enrich(sentiment)
        except Aborted:
            raise
        except (StudioError, ValidationError) as e:
            error_code = getattr(e, "error_code", "SCHEMA_VIOLATION")
            logger.warning(f"Sentiment analysis failed [{error_code}], continuing without it")
            board.record(
                self.name,
                f"Sentiment analysis unavailable ({error_code}); proceeding without buyer objections",
                {"error": error_code},
                role=self.role
            )
            return ctx

        score = ctx.dossier.sentiment_score
        board.record(
            self.name,
            f"Analysis finished. Buyer objections: {', '.join(ctx.dossier.pain_points) or 'none found'}. "
            f"Sentiment score: {score if score is not None else 'n/a'}/100",
            {"sentiment": sentiment},
            role=self.role
        )
        return ctx

    async def _discover(self, ctx: AgentContext, product_url: str, reference_url: str) -> Dict[str, Any]:
        prompt = DISCOVERY_PROMPT.format(
            product_url=product_url,
            reference_video_url=reference_url or "none",
            notes=_notes(ctx)
        )
        raw = await request_structured(
            self.backend, prompt, RESEARCHER_SKILL,
            tools=(Tool.WEB_SEARCH,), label="product discovery"
        )
        facts = dict(_require_object(raw, "Product discovery"))
        # The caller's reference video always stays in the set
        videos = facts.get("referenceVideoUrls") or []
        if not isinstance(videos, (list, tuple)):
            videos = [videos]
        if reference_url and reference_url not in videos:
            videos = [reference_url] + list(videos)
        facts["referenceVideoUrls"] = videos
        return facts

    async def _analyze_sentiment(self, ctx: AgentContext) -> Dict[str, Any]:
        prompt = SENTIMENT_PROMPT.format(product_name=ctx.dossier.product_name, notes=_notes(ctx))
        raw = await request_structured(
            self.backend, prompt, RESEARCHER_SKILL,
            tools=(Tool.WEB_SEARCH,), label="sentiment analysis"
        )
        sentiment = _require_object(raw, "Sentiment analysis")
        return {
            "painPoints": sentiment.get("painPoints") or [],
            "reviews": sentiment.get("reviews") or [],
            "sentimentScore": sentiment.get("sentimentScore"),
        }
