"""AssistantDirector agent: drafts the ten scene concepts."""

import json
import logging
from typing import List

from reelstudio.agents.base import AgentContext, UnderspecifiedSceneDraft
from reelstudio.agents.skills import DIRECTOR_SKILL
from reelstudio.agents.structured_response import preview, request_structured
from reelstudio.backend.base import GenerativeBackend
from reelstudio.schemas.sequence import SEQUENCE_LENGTH, SceneDraft, scene_texts

logger = logging.getLogger(__name__)


DRAFT_PROMPT = """
PROJECT DATA:
Product: {product_name}
Features: {features}
Visual DNA: {visual_dna}
Pain Points: {pain_points}
Video Type: {video_type}
Angle: {angle}
Target Audience: {audience}

BOARDROOM DIRECTIVE:
Hook: {hook}
Edits: {edits}
Vibe: {vibe}

PRIOR FINDINGS:
{digest}

TASK:
Create exactly 10 distinct, sequential 8-second scene concepts.
Use the ACTUAL product as described by its Visual DNA.

The flow must be:
1. Hook: open on "{hook}"
2. Problem / intro
3. Feature demo: {feature_1}
4. Feature demo: {feature_2}
5. Feature demo / application: {feature_3}
6. Social proof / testimonial
7. Objection handling (address: {objection})
8. Value stack
9. Call to action
10. Outro: brand logo card for {product_name}

OUTPUT FORMAT (JSON ONLY):
{{
    "scenes": ["Scene 1: ...", "..."],
    "narrativeLogic": "how the scenes build on each other"
}}
"""


def _enforce_contract(scenes: List[str], hook: str, features: List[str], product_name: str) -> List[str]:
    """Make scene 1 carry the hook, scenes 3-5 name features and scene 10 the brand."""
    scenes = list(scenes)
    if hook and hook not in scenes[0]:
        scenes[0] = f"Hook ({hook}): {scenes[0]}"
    for index, feature in zip((2, 3, 4), features[:3]):
        if feature.casefold() not in scenes[index].casefold():
            scenes[index] = f"{scenes[index]} Feature focus: {feature}."
    if product_name and product_name.casefold() not in scenes[-1].casefold():
        scenes[-1] = f"{scenes[-1]} Closing brand card for {product_name}."
    return scenes


class AssistantDirector:
    """Plans scenes grounded in the product's physical reality"""

    name = "AssistantDirector"
    role = "Scene Planner"

    def __init__(self, backend: GenerativeBackend):
        self.backend = backend

    async def execute(self, ctx: AgentContext) -> AgentContext:
        """Produce the SceneDraft

        Raises:
            UnderspecifiedSceneDraft: If fewer than ten scenes are returned
        """
        dossier, strategy, directive = ctx.dossier, ctx.strategy, ctx.directive
        hook = directive.selected_hook if directive else ""
        features = dossier.features

        ctx.blackboard.say(
            self.name,
            f'Breaking the story into {SEQUENCE_LENGTH} blocks, opening on "{hook}"...',
            role=self.role
        )

        prompt = DRAFT_PROMPT.format(
            product_name=dossier.product_name,
            features=json.dumps(features, ensure_ascii=False),
            visual_dna=dossier.visual_dna or "unknown",
            pain_points=json.dumps(dossier.pain_points, ensure_ascii=False),
            video_type=strategy.video_type.value if strategy else "SHOWCASE",
            angle=strategy.angle if strategy else "",
            audience=strategy.target_audience if strategy else "",
            hook=hook,
            edits="; ".join(directive.edits) if directive and directive.edits else "none",
            vibe=directive.final_vibe if directive else "",
            digest=ctx.blackboard.digest() or "none",
            feature_1=features[0] if len(features) > 0 else "key feature",
            feature_2=features[1] if len(features) > 1 else "secondary feature",
            feature_3=features[2] if len(features) > 2 else "everyday use case",
            objection=dossier.pain_points[0] if dossier.pain_points else "common concern"
        )
        raw = await request_structured(self.backend, prompt, DIRECTOR_SKILL, label="scene draft")

        scenes = scene_texts(raw.get("scenes") if isinstance(raw, dict) else raw)
        if len(scenes) < SEQUENCE_LENGTH:
            logger.error(f"Scene draft returned {len(scenes)} scenes")
            raise UnderspecifiedSceneDraft(
                f"Expected {SEQUENCE_LENGTH} scenes, got {len(scenes)}: {preview(raw)}",
                {"scene_count": len(scenes), "preview": preview(raw)}
            )
        if len(scenes) > SEQUENCE_LENGTH:
            logger.info(f"Scene draft returned {len(scenes)} scenes, keeping the first {SEQUENCE_LENGTH}")
            scenes = scenes[:SEQUENCE_LENGTH]

        narrative = str(raw.get("narrativeLogic") or "") if isinstance(raw, dict) else ""
        ctx.scene_draft = SceneDraft(
            scenes=_enforce_contract(scenes, hook, features, dossier.product_name),
            narrative_logic=narrative
        )

        ctx.blackboard.record(
            self.name,
            f"Drafted {SEQUENCE_LENGTH} scenes. {narrative}".strip(),
            {"sceneDraft": ctx.scene_draft.model_dump(by_alias=True)},
            role=self.role
        )
        return ctx
