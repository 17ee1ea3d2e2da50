"""Sequence schemas: boardroom directive, scene draft, boxes and slots."""

import re
from enum import Enum
from typing import Any, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


SEQUENCE_LENGTH = 10
BOX_SECONDS = 8

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


class BoxType(str, Enum):
    """Narrative role of a box in the sequence."""
    INTRO = "INTRO"
    UNBOXING = "UNBOXING"
    FEATURE = "FEATURE"
    COMPARISON = "COMPARISON"
    PROBLEM_SOLUTION = "PROBLEM_SOLUTION"
    OUTRO = "OUTRO"
    TESTIMONIAL = "TESTIMONIAL"
    AD = "AD"
    HOOK = "HOOK"
    CTA = "CTA"


class AnchorImage(BaseModel):
    """Base64-encoded static anchor image tagged with its mime type."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    mime_type: str = Field("image/png", description="Image mime type")
    data: str = Field(..., min_length=1, description="Base64 payload without data: prefix")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    @classmethod
    def from_data_url(cls, url: str) -> "AnchorImage":
        """Parse a ``data:<mime>;base64,<payload>`` URL."""
        match = _DATA_URL.match(url)
        if not match:
            raise ValueError("not a base64 data URL")
        return cls(mime_type=match.group("mime"), data=match.group("data"))


class HookProposal(BaseModel):
    """A candidate opening hook proposed in the boardroom."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    title: str = Field(..., min_length=1)
    logic: str = ""


class Directive(BaseModel):
    """The boardroom's executive decision."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    selected_hook: str = Field(..., min_length=1, description="The winning hook title")
    edits: List[str] = Field(default_factory=list, description="Agreed modifications, in order")
    final_vibe: str = Field("", description="Overall creative direction")
    strategic_logic: str = Field("", description="Why the hook was chosen")


def scene_texts(value: Any) -> List[str]:
    """Normalize model scene output to non-empty strings.

    Accepts plain strings or objects such as ``{"description": ...}``.
    """
    if isinstance(value, str):
        value = [value]
    scenes = []
    for scene in value or []:
        if isinstance(scene, dict):
            scene = (
                scene.get("description")
                or scene.get("concept")
                or " ".join(str(item) for item in scene.values() if item)
            )
        text = str(scene).strip()
        if text:
            scenes.append(text)
    return scenes


class SceneDraft(BaseModel):
    """Exactly ten sequential 8-second scene concepts."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    scenes: List[str] = Field(..., description="Scene concepts in narrative order")
    narrative_logic: str = ""

    @field_validator("scenes", mode="before")
    @classmethod
    def coerce_scenes(cls, v: Any) -> List[str]:
        return scene_texts(v)

    @field_validator("scenes")
    @classmethod
    def validate_scene_count(cls, v: List[str]) -> List[str]:
        if len(v) != SEQUENCE_LENGTH:
            raise ValueError(f"scene draft must contain {SEQUENCE_LENGTH} scenes, got {len(v)}")
        return v


class Box(BaseModel):
    """One 8-second production unit.

    ``image_prompt`` describes the static anchor image; ``visual_prompt``
    describes the motion of the clip. The two are never interchangeable.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: BoxType = Field(BoxType.FEATURE, description="Narrative role")
    duration: int = Field(BOX_SECONDS, gt=0, le=BOX_SECONDS, description="Seconds")
    image_prompt: str = Field("", description="Ultra-detailed static anchor prompt")
    visual_prompt: str = Field("", description="8-second motion prompt")
    audio_script: str = Field("", description="Voiceover script, 15-30 words")
    ambient_sound_description: str = Field(
        "",
        alias="ambientSoundDescription",
        validation_alias=AliasChoices(
            "ambientSoundDescription", "sfxDescription", "ambient_sound_description"
        ),
    )
    lighting: str = ""
    camera: str = ""
    technical_reasoning: str = ""
    rank: Optional[int] = Field(None, ge=1, description="Position in the sequence, from 1")
    product_name: str = ""
    anchor_image: Optional[AnchorImage] = None

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> BoxType:
        if isinstance(v, BoxType):
            return v
        key = str(v or "").strip().upper().replace("-", "_").replace(" ", "_").replace("/", "_")
        try:
            return BoxType(key)
        except ValueError:
            return BoxType.FEATURE

    @field_validator("duration", mode="before")
    @classmethod
    def coerce_duration(cls, v: Any) -> int:
        try:
            seconds = int(round(float(v)))
        except (TypeError, ValueError):
            return BOX_SECONDS
        return seconds if 0 < seconds <= BOX_SECONDS else BOX_SECONDS

    @model_validator(mode="after")
    def pin_duration(self) -> "Box":
        """Every box runs 8 seconds; only an OUTRO may be shorter."""
        if self.type is not BoxType.OUTRO and self.duration != BOX_SECONDS:
            self.duration = BOX_SECONDS
        return self


class SequenceArtifact(BaseModel):
    """Totally-ordered sequence of ten ranked boxes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = ""
    boxes: List[Box] = Field(..., description="Boxes ordered by rank")
    connective_narrative: str = ""
    reference_images: List[str] = Field(
        default_factory=list,
        description="Acquired product images as base64 data URLs"
    )

    @field_validator("boxes")
    @classmethod
    def validate_boxes(cls, v: List[Box]) -> List[Box]:
        """Exactly ten boxes with strictly increasing ranks."""
        if len(v) != SEQUENCE_LENGTH:
            raise ValueError(f"sequence must contain {SEQUENCE_LENGTH} boxes, got {len(v)}")
        ranks = [box.rank for box in v]
        if any(rank is None for rank in ranks):
            raise ValueError("every box in a sequence must carry a rank")
        if any(later <= earlier for earlier, later in zip(ranks, ranks[1:])):
            raise ValueError(f"box ranks must be strictly increasing, got {ranks}")
        return v


class SlotMedia(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    images: List[str] = Field(default_factory=list)
    clips: List[str] = Field(default_factory=list)


class SlotGeneration(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str = "idle"
    image_prompt: str = ""
    video_prompt: str = ""
    script: str = ""
    anchor_image: Optional[str] = Field(None, description="Anchor as a data URL")
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    error: Optional[str] = None


class SlotSegment(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start_time: str = "00:00"
    end_time: str
    duration: int


class SequenceSlot(BaseModel):
    """Per-box projection of the sequence handed to the editor UI."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    rank: int = Field(..., ge=1)
    product_name: str
    description: str
    category: BoxType
    media: SlotMedia = Field(default_factory=SlotMedia)
    generated: SlotGeneration
    custom_script: str = ""
    segment: SlotSegment
