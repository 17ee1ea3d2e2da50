"""Director agent: runs the boardroom, then delegates drafting and design."""

import logging

from reelstudio.agents.assistant_director import AssistantDirector
from reelstudio.agents.base import AgentContext
from reelstudio.agents.boardroom import Boardroom
from reelstudio.agents.sound_graphics import GraphicsSoundDesigner

logger = logging.getLogger(__name__)


class Director:
    """Master orchestrator of the creative team

    Runs the boardroom protocol to obtain the Directive, then hands off to
    the AssistantDirector (``drafting``) and the GraphicsSoundDesigner
    (``designing``), announcing each sub-stage through the context.
    """

    name = "Director"
    role = "Creative Director"

    def __init__(
        self,
        boardroom: Boardroom,
        assistant: AssistantDirector,
        designer: GraphicsSoundDesigner
    ):
        self.boardroom = boardroom
        self.assistant = assistant
        self.designer = designer

    async def execute(self, ctx: AgentContext) -> AgentContext:
        findings = ctx.blackboard.digest()
        brief = "\n".join(line for line in (
            findings,
            f"Known objections: {'; '.join(ctx.dossier.pain_points)}" if ctx.dossier.pain_points else "",
        ) if line)
        ctx.blackboard.say(
            self.name,
            f"Convening the boardroom to pick the opening hook for {ctx.dossier.product_name}...",
            role=self.role
        )
        ctx.directive = await self.boardroom.convene(ctx, brief=brief)
        ctx.blackboard.record(
            self.name,
            f'Directive locked: hook "{ctx.directive.selected_hook}"'
            + (f", edits: {'; '.join(ctx.directive.edits)}" if ctx.directive.edits else ""),
            {"directive": ctx.directive.model_dump(by_alias=True)},
            role=self.role
        )

        ctx.enter_stage("drafting")
        ctx = await self.assistant.execute(ctx)

        ctx.enter_stage("designing")
        ctx = await self.designer.execute(ctx)
        return ctx
