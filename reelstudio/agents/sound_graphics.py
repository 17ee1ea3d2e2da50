"""GraphicsSoundDesigner agent: turns scene concepts into production boxes

For every scene the designer writes a static anchor prompt (imagePrompt) and
a separate 8-second motion prompt (visualPrompt), plus the voiceover script
and soundscape. After the model answers, the designer enforces the sequence
invariants itself: the visual DNA is woven verbatim into every anchor
prompt, every motion prompt names at least one visual DNA token and the
first motion prompt carries the boardroom's hook.
"""

import json
import logging
import re
from typing import List

from pydantic import ValidationError

from reelstudio.agents.base import AgentContext, UnderspecifiedSceneDraft
from reelstudio.agents.skills import AUDIO_SKILL, GRAPHICS_DESIGNER_SKILL
from reelstudio.agents.structured_response import preview, request_structured
from reelstudio.backend.base import GenerativeBackend
from reelstudio.schemas.dialogue import DialogueType
from reelstudio.schemas.sequence import SEQUENCE_LENGTH, Box

logger = logging.getLogger(__name__)


DESIGN_INSTRUCTION = (
    GRAPHICS_DESIGNER_SKILL
    + AUDIO_SKILL
    + "\nYou are a dual specialist: an elite graphics designer and an audio architect."
)

DESIGN_PROMPT = """
SCENE CONCEPTS:
{scenes}

PRODUCT CONTEXT:
Name: {product_name}
Visual DNA: {visual_dna}
Pain Points: {pain_points}

STRATEGY: {strategy}
OPENING HOOK: {hook}
CREATIVE VIBE: {vibe}

PRIOR FINDINGS:
{digest}

TASK:
Convert every scene concept into one production box:
1. imagePrompt: ultra-detailed photorealistic static anchor. Include the Visual DNA verbatim.
2. visualPrompt: the 8-second motion arc only. Box 1 opens on "{hook}".
3. audioScript: 15-30 words of voiceover. ambientSoundDescription: the soundscape.
4. type: one of INTRO, UNBOXING, FEATURE, COMPARISON, PROBLEM_SOLUTION, OUTRO,
   TESTIMONIAL, AD, HOOK, CTA.
5. duration: exactly 8 (an OUTRO may be shorter).

OUTPUT FORMAT (JSON ONLY):
{{
    "title": "creative title",
    "boxes": [
        {{
            "type": "string",
            "imagePrompt": "string",
            "visualPrompt": "string",
            "audioScript": "string",
            "ambientSoundDescription": "string",
            "technicalReasoning": "why this camera, lighting and sound setup works",
            "duration": 8,
            "lighting": "string",
            "camera": "string"
        }}
    ]
}}
"""

_TOKEN_SPLIT = re.compile(r"[,;\n]|\band\b")


def visual_dna_tokens(visual_dna: str) -> List[str]:
    """Split the visual DNA into literal appearance tokens, in order."""
    tokens = []
    for token in _TOKEN_SPLIT.split(visual_dna or ""):
        token = token.strip(" .")
        if token and token not in tokens:
            tokens.append(token)
    return tokens


def weave_visual_dna(box: Box, visual_dna: str, tokens: List[str]) -> Box:
    """Carry the visual DNA into the anchor prompt and one token into the motion prompt."""
    if not visual_dna:
        return box
    image_prompt = box.image_prompt.strip()
    if visual_dna not in image_prompt:
        image_prompt = f"{image_prompt} Product visual DNA: {visual_dna}.".strip()
    visual_prompt = box.visual_prompt.strip()
    lowered = visual_prompt.casefold()
    if tokens and not any(token.casefold() in lowered for token in tokens):
        visual_prompt = f"{visual_prompt} Keep the product's {tokens[0]} clearly visible.".strip()
    return box.model_copy(update={"image_prompt": image_prompt, "visual_prompt": visual_prompt})


class GraphicsSoundDesigner:
    """Graphics designer and audio architect"""

    name = "GraphicsSoundDesigner"
    role = "Graphics & Audio Designer"

    def __init__(self, backend: GenerativeBackend):
        self.backend = backend

    async def execute(self, ctx: AgentContext) -> AgentContext:
        """Design the ten boxes and the sequence title

        Raises:
            UnderspecifiedSceneDraft: If fewer than ten valid boxes are returned
        """
        dossier, strategy, directive = ctx.dossier, ctx.strategy, ctx.directive
        scenes = ctx.scene_draft.scenes if ctx.scene_draft else []
        hook = directive.selected_hook if directive else ""

        ctx.blackboard.say(
            self.name,
            f"Designing anchor stills, motion and audio for {len(scenes)} scenes...",
            role=self.role
        )

        prompt = DESIGN_PROMPT.format(
            scenes=json.dumps(scenes, ensure_ascii=False, indent=2),
            product_name=dossier.product_name,
            visual_dna=dossier.visual_dna or "unknown",
            pain_points=json.dumps(dossier.pain_points, ensure_ascii=False),
            strategy=strategy.model_dump_json(by_alias=True) if strategy else "{}",
            hook=hook,
            vibe=directive.final_vibe if directive else "",
            digest=ctx.blackboard.digest() or "none"
        )
        raw = await request_structured(self.backend, prompt, DESIGN_INSTRUCTION, label="box design")

        raw_boxes = raw.get("boxes") if isinstance(raw, dict) else raw
        if not isinstance(raw_boxes, list):
            raw_boxes = []
        boxes: List[Box] = []
        for raw_box in raw_boxes[:SEQUENCE_LENGTH]:
            if not isinstance(raw_box, dict):
                continue
            try:
                boxes.append(Box.model_validate(raw_box))
            except ValidationError as e:
                logger.warning(f"Dropping invalid box: {e.error_count()} validation errors")

        if len(boxes) < SEQUENCE_LENGTH:
            raise UnderspecifiedSceneDraft(
                f"Expected {SEQUENCE_LENGTH} boxes, got {len(boxes)}: {preview(raw)}",
                {"box_count": len(boxes), "preview": preview(raw)}
            )

        tokens = visual_dna_tokens(dossier.visual_dna)
        boxes = [weave_visual_dna(box, dossier.visual_dna, tokens) for box in boxes]
        if hook and hook not in boxes[0].visual_prompt:
            boxes[0] = boxes[0].model_copy(
                update={"visual_prompt": f"{hook}: {boxes[0].visual_prompt}".strip()}
            )

        for index, box in enumerate(boxes, start=1):
            ctx.blackboard.say(
                self.name,
                f"Block {index} [{box.type.value}]: {box.visual_prompt[:120]}",
                type=DialogueType.PROMPT,
                role=self.role
            )

        ctx.boxes = boxes
        ctx.title = str(raw.get("title") or "").strip() if isinstance(raw, dict) else ""
        if not ctx.title:
            ctx.title = f"{dossier.product_name}: {hook}" if hook else dossier.product_name

        ctx.blackboard.record(
            self.name,
            f'Designed {len(boxes)} production blocks for "{ctx.title}"',
            {"title": ctx.title, "boxes": [box.model_dump(by_alias=True, mode="json") for box in boxes]},
            role=self.role
        )
        return ctx
