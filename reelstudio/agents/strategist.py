"""Strategist agent: maps the dossier to a social strategy."""

import json
import logging

from pydantic import ValidationError

from reelstudio.agents.base import AgentContext, StrategistProducedInvalidArtifact
from reelstudio.agents.skills import STRATEGIST_SKILL
from reelstudio.agents.structured_response import preview, request_structured
from reelstudio.backend.base import GenerativeBackend
from reelstudio.schemas.dossier import Strategy

logger = logging.getLogger(__name__)


STRATEGY_PROMPT = """
STRATEGY BRIEF:
Product: {product_name}
Description: {description}
Features: {features}
Pain Points: {pain_points}
Sentiment Score: {sentiment}

PRIOR FINDINGS:
{digest}

TASK: Pick the #1 psychological trigger (FOMO, Authority, Solution, Aspiration)
and the video format that sells it best.

OUTPUT FORMAT (JSON ONLY):
{{
    "angle": "string",
    "targetAudience": "string",
    "videoType": "SHOWCASE | UNBOXING | HOW_TO | TROUBLESHOOTING | COMPARISON",
    "caption": "string",
    "hashtags": ["string"],
    "firstComment": "string",
    "bestTime": "string",
    "triggers": ["string"]
}}
"""


class Strategist:
    """Viral marketing and psychology expert"""

    name = "Strategist"
    role = "Viral Marketing & Psychology Expert"

    def __init__(self, backend: GenerativeBackend):
        self.backend = backend

    async def execute(self, ctx: AgentContext) -> AgentContext:
        """Derive the Strategy from the dossier

        Raises:
            StrategistProducedInvalidArtifact: If the output is not an object
                with a non-empty angle
        """
        dossier = ctx.dossier
        ctx.blackboard.say(
            self.name,
            f"Analyzing specs and buyer objections to map the right psychological trigger "
            f"for {dossier.product_name}...",
            role=self.role
        )

        prompt = STRATEGY_PROMPT.format(
            product_name=dossier.product_name,
            description=dossier.description or "n/a",
            features=json.dumps(dossier.features, ensure_ascii=False),
            pain_points=json.dumps(dossier.pain_points, ensure_ascii=False),
            sentiment=dossier.sentiment_score if dossier.sentiment_score is not None else "unknown",
            digest=ctx.blackboard.digest() or "none"
        )
        raw = await request_structured(self.backend, prompt, STRATEGIST_SKILL, label="strategy")

        if not isinstance(raw, dict) or not str(raw.get("angle") or "").strip():
            logger.error(f"Strategist produced an invalid artifact: {preview(raw)}")
            raise StrategistProducedInvalidArtifact(
                f"Strategist output has no angle: {preview(raw)}",
                {"preview": preview(raw)}
            )
        try:
            ctx.strategy = Strategy.model_validate(raw)
        except ValidationError as e:
            raise StrategistProducedInvalidArtifact(
                f"Strategist output failed validation: {preview(raw)}",
                {"preview": preview(raw), "errors": e.error_count()}
            ) from e

        strategy = ctx.strategy
        ctx.blackboard.record(
            self.name,
            f'Strategy locked: selected "{strategy.angle}" targeting '
            f"{strategy.target_audience or 'a general audience'} ({strategy.video_type.value})",
            {"strategy": strategy.model_dump(by_alias=True, mode="json")},
            role=self.role
        )
        return ctx
