"""Pydantic schemas for data contracts between agents."""

from reelstudio.schemas.dialogue import DialogueEvent, DialogueType
from reelstudio.schemas.dossier import Dossier, Strategy, VideoType
from reelstudio.schemas.sequence import (
    BOX_SECONDS,
    SEQUENCE_LENGTH,
    AnchorImage,
    Box,
    BoxType,
    Directive,
    HookProposal,
    SceneDraft,
    SequenceArtifact,
    SequenceSlot,
    SlotGeneration,
    SlotMedia,
    SlotSegment,
)

__all__ = [
    # Dossier
    "Dossier",
    "Strategy",
    "VideoType",
    # Sequence
    "BOX_SECONDS",
    "SEQUENCE_LENGTH",
    "AnchorImage",
    "Box",
    "BoxType",
    "Directive",
    "HookProposal",
    "SceneDraft",
    "SequenceArtifact",
    "SequenceSlot",
    "SlotGeneration",
    "SlotMedia",
    "SlotSegment",
    # Dialogue
    "DialogueEvent",
    "DialogueType",
]
