"""Boardroom protocol: propose, critique, synthesize

A three-turn debate run inside the Director step. The Creative Producer
pitches up to three opening hooks, the CMO picks one against the strategy,
and a pure synthesis step turns the decision into the Directive. Each turn
emits exactly one debate event. Turns are never retried; any failure is
surfaced as BoardroomPhaseFailure naming the phase.
"""

import json
import logging
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from reelstudio.agents.base import Aborted, AgentContext, BoardroomPhaseFailure, StudioError
from reelstudio.agents.skills import CMO_SKILL, CREATIVE_PRODUCER_SKILL
from reelstudio.agents.structured_response import preview, request_structured
from reelstudio.backend.base import GenerativeBackend
from reelstudio.schemas.dialogue import DialogueType
from reelstudio.schemas.dossier import Strategy
from reelstudio.schemas.sequence import Directive, HookProposal

logger = logging.getLogger(__name__)


MAX_PROPOSALS = 3

PRODUCER = ("Creative Producer", "Hook Architect")
CMO = ("CMO", "Chief Marketing Officer")
BOARDROOM = ("Boardroom", "Executive Synthesis")

PROPOSE_PROMPT = """
PRODUCT: {product_name}
VISUAL DNA: {visual_dna}

DIRECTOR'S BRIEF:
{brief}

TASK: Pitch exactly {count} distinct opening hooks for a ten-block vertical video.
Each hook must be filmable with the real product as described by its visual DNA.

OUTPUT FORMAT (JSON ONLY):
{{
    "hooks": [
        {{"title": "short hook title", "logic": "why it stops the scroll"}}
    ]
}}
"""

CRITIQUE_PROMPT = """
PITCHED HOOKS:
{proposals}

BUYING ANGLE: {angle}
TARGET AUDIENCE: {audience}

DIRECTOR'S BRIEF:
{brief}

TASK: Select the hook that best serves the angle and audience. selectedHook must be
one of the pitched titles, copied verbatim. List any edits the team must apply.

OUTPUT FORMAT (JSON ONLY):
{{
    "selectedHook": "string",
    "strategicLogic": "string",
    "edits": ["string"]
}}
"""


def final_vibe(angle: str, visual_dna: str) -> str:
    return f"Combine {angle} with the visual depth of {visual_dna}"


def select_hook(selected: Any, proposals: List[HookProposal]) -> str:
    """Canonical proposal title matching ``selected``; the first proposal otherwise."""
    wanted = str(selected or "").strip()
    for proposal in proposals:
        if proposal.title == wanted:
            return proposal.title
    for proposal in proposals:
        if proposal.title.casefold() == wanted.casefold():
            return proposal.title
    return proposals[0].title


def synthesize(
    selected_hook: str,
    edits: List[str],
    strategy: Strategy,
    visual_dna: str,
    strategic_logic: str = ""
) -> Directive:
    """Pure synthesis turn: build the Directive from the CMO's decision"""
    return Directive(
        selected_hook=selected_hook,
        edits=list(edits),
        final_vibe=final_vibe(strategy.angle, visual_dna),
        strategic_logic=strategic_logic,
    )


class Boardroom:
    """Runs the propose, critique and synthesize turns"""

    def __init__(self, backend: GenerativeBackend):
        self.backend = backend

    async def convene(self, ctx: AgentContext, brief: Optional[str] = None) -> Directive:
        """Run the three turns and return the Directive

        Args:
            ctx: Run context with the dossier and strategy
            brief: Prior findings shown to both turns; the blackboard digest
                when omitted

        Raises:
            BoardroomPhaseFailure: If a turn fails or no hook is proposed
            Aborted: If the run is cancelled
        """
        if ctx.strategy is None:
            raise BoardroomPhaseFailure("critique", "no strategy available to judge hooks against")

        if brief is None:
            brief = ctx.blackboard.digest()
        brief = brief or "none"

        proposals = await self._propose(ctx, brief)
        selected, logic, edits = await self._critique(ctx, proposals, brief)

        directive = synthesize(selected, edits, ctx.strategy, ctx.dossier.visual_dna, logic)
        ctx.blackboard.say(
            BOARDROOM[0],
            f'Directive: open on "{directive.selected_hook}". {directive.final_vibe}.',
            type=DialogueType.DEBATE,
            role=BOARDROOM[1]
        )
        return directive

    async def _propose(self, ctx: AgentContext, brief: str) -> List[HookProposal]:
        prompt = PROPOSE_PROMPT.format(
            product_name=ctx.dossier.product_name,
            visual_dna=ctx.dossier.visual_dna or "unknown",
            brief=brief,
            count=MAX_PROPOSALS
        )
        try:
            raw = await request_structured(
                self.backend, prompt, CREATIVE_PRODUCER_SKILL, label="boardroom propose"
            )
        except Aborted:
            raise
        except StudioError as e:
            raise BoardroomPhaseFailure("propose", e.message, {"cause": e.error_code}) from e

        hooks = raw.get("hooks") if isinstance(raw, dict) else raw
        if isinstance(hooks, dict):
            hooks = [hooks]
        proposals: List[HookProposal] = []
        for hook in hooks if isinstance(hooks, list) else []:
            if isinstance(hook, str):
                hook = {"title": hook}
            if not isinstance(hook, dict):
                continue
            try:
                proposals.append(HookProposal.model_validate(
                    {"title": str(hook.get("title") or "").strip(), "logic": str(hook.get("logic") or "")}
                ))
            except ValidationError:
                continue
        proposals = proposals[:MAX_PROPOSALS]

        if not proposals:
            raise BoardroomPhaseFailure(
                "propose",
                f"no hooks were proposed: {preview(raw)}",
                {"preview": preview(raw)}
            )

        ctx.blackboard.say(
            PRODUCER[0],
            "Pitching hooks: " + "; ".join(
                f'"{p.title}" ({p.logic})' if p.logic else f'"{p.title}"' for p in proposals
            ),
            type=DialogueType.DEBATE,
            role=PRODUCER[1]
        )
        return proposals

    async def _critique(
        self,
        ctx: AgentContext,
        proposals: List[HookProposal],
        brief: str
    ) -> Tuple[str, str, List[str]]:
        prompt = CRITIQUE_PROMPT.format(
            brief=brief,
            proposals=json.dumps([p.model_dump() for p in proposals], ensure_ascii=False, indent=2),
            angle=ctx.strategy.angle,
            audience=ctx.strategy.target_audience or "general audience"
        )
        try:
            raw = await request_structured(self.backend, prompt, CMO_SKILL, label="boardroom critique")
        except Aborted:
            raise
        except StudioError as e:
            raise BoardroomPhaseFailure("critique", e.message, {"cause": e.error_code}) from e

        if not isinstance(raw, dict):
            raise BoardroomPhaseFailure(
                "critique",
                f"expected an object: {preview(raw)}",
                {"preview": preview(raw)}
            )

        selected = select_hook(raw.get("selectedHook"), proposals)
        if selected != str(raw.get("selectedHook") or "").strip():
            logger.info(f"CMO selection {raw.get('selectedHook')!r} matched no proposal, using {selected!r}")

        edits = raw.get("edits") or []
        if isinstance(edits, str):
            edits = [edits]
        edits = [str(edit).strip() for edit in edits if str(edit).strip()]
        logic = str(raw.get("strategicLogic") or "")

        ctx.blackboard.say(
            CMO[0],
            f'Selected "{selected}". {logic}'.strip(),
            type=DialogueType.DEBATE,
            role=CMO[1]
        )
        return selected, logic, edits
