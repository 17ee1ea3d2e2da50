"""Dialogue events streamed to the studio UI while agents work."""

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DialogueType(str, Enum):
    """Kind of message an agent is emitting."""
    THOUGHT = "thought"
    DEBATE = "debate"
    PROMPT = "prompt"
    FINDING = "finding"


def _now_ms() -> int:
    return int(time.time() * 1000)


class DialogueEvent(BaseModel):
    """One line of the agents' running conversation. Immutable."""

    model_config = ConfigDict(frozen=True)

    agent: str = Field(..., min_length=1, description="Agent name, e.g. 'Researcher'")
    role: str = Field("", description="Agent role, e.g. 'Market Analyst'")
    message: str = Field(..., description="Human-readable message")
    type: DialogueType = Field(DialogueType.THOUGHT, description="Event kind")
    timestamp: int = Field(default_factory=_now_ms, description="Epoch milliseconds")
