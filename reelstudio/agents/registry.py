"""Agent registry: wires the roster against one backend."""

from typing import Dict

from reelstudio.agents.assistant_director import AssistantDirector
from reelstudio.agents.base import Agent
from reelstudio.agents.boardroom import Boardroom
from reelstudio.agents.director import Director
from reelstudio.agents.researcher import Researcher
from reelstudio.agents.sound_graphics import GraphicsSoundDesigner
from reelstudio.agents.strategist import Strategist
from reelstudio.backend.base import GenerativeBackend


# Pipeline stage each top-level agent runs in, in execution order.
# The Director runs the AssistantDirector and GraphicsSoundDesigner itself.
ROSTER_ORDER = (
    ("researching", "Researcher"),
    ("strategizing", "Strategist"),
    ("boardroom", "Director"),
)


def build_roster(backend: GenerativeBackend) -> Dict[str, Agent]:
    """All five agents keyed by name, sharing ``backend``."""
    assistant = AssistantDirector(backend)
    designer = GraphicsSoundDesigner(backend)
    director = Director(Boardroom(backend), assistant, designer)
    agents = (Researcher(backend), Strategist(backend), director, assistant, designer)
    return {agent.name: agent for agent in agents}
