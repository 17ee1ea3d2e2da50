"""Product dossier and social strategy schemas."""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _as_string_list(value: Any) -> List[str]:
    """Coerce loosely-typed model output into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if isinstance(value, Mapping):
        value = list(value.values())
    elif not isinstance(value, (list, tuple, set)):
        value = [value]
    items: List[str] = []
    for item in value:
        if isinstance(item, Mapping):
            item = " ".join(str(v) for v in item.values() if v)
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def _unique(items: List[str]) -> List[str]:
    seen = set()
    unique_items = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique_items.append(item)
    return unique_items


class VideoType(str, Enum):
    """Format of the short-form video the strategy targets."""
    SHOWCASE = "SHOWCASE"
    UNBOXING = "UNBOXING"
    HOW_TO = "HOW_TO"
    TROUBLESHOOTING = "TROUBLESHOOTING"
    COMPARISON = "COMPARISON"


class Dossier(BaseModel):
    """
    Factual profile of the product under production.

    Created by the orchestrator with the caller's URLs and extended by the
    Researcher. Facts are append-only: use ``enrich`` to add findings, which
    never overwrites a fact that is already known.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_url: str = Field("", description="Product page the run started from")
    product_name: str = Field("", description="Exact product name")
    description: str = Field("", description="Product description")
    images: List[str] = Field(
        default_factory=list,
        description="Ordered absolute URLs of product imagery"
    )
    features: List[str] = Field(
        default_factory=list,
        description="Short feature strings, duplicates removed"
    )
    reference_video_urls: List[str] = Field(
        default_factory=list,
        description="Reference videos (UGC, reviews), duplicates removed"
    )
    visual_dna: str = Field(
        "",
        description="Literal appearance tokens: materials, finishes, colors, logo placement"
    )
    specs: Dict[str, str] = Field(default_factory=dict, description="Attribute name to value")
    reviews: List[str] = Field(default_factory=list, description="Review quotes or summaries")
    pain_points: List[str] = Field(default_factory=list, description="Buyer objections")
    sentiment_score: Optional[int] = Field(
        None,
        ge=0,
        le=100,
        description="Overall sentiment 0-100, unset until sentiment analysis runs"
    )

    @field_validator("features", "reference_video_urls", mode="before")
    @classmethod
    def coerce_unique_strings(cls, v: Any) -> List[str]:
        """Coerce to strings and drop duplicates, keeping first occurrence."""
        return _unique(_as_string_list(v))

    @field_validator("reviews", "pain_points", mode="before")
    @classmethod
    def coerce_strings(cls, v: Any) -> List[str]:
        return _as_string_list(v)

    @field_validator("images", mode="before")
    @classmethod
    def keep_absolute_urls(cls, v: Any) -> List[str]:
        """Keep only absolute http(s) URLs."""
        urls = []
        for url in _as_string_list(v):
            parsed = urlparse(url)
            if parsed.scheme in ("http", "https") and parsed.netloc:
                urls.append(url)
        return _unique(urls)

    @field_validator("specs", mode="before")
    @classmethod
    def coerce_specs(cls, v: Any) -> Dict[str, str]:
        if not v:
            return {}
        if isinstance(v, Mapping):
            return {str(key): str(value) for key, value in v.items()}
        if not isinstance(v, (list, tuple)):
            return {}
        # Models occasionally return [{"name": ..., "value": ...}] pairs
        specs: Dict[str, str] = {}
        for item in v:
            if isinstance(item, Mapping) and len(item) >= 2:
                key, value = list(item.values())[:2]
                specs[str(key)] = str(value)
        return specs

    @field_validator("sentiment_score", mode="before")
    @classmethod
    def clamp_sentiment(cls, v: Any) -> Optional[int]:
        """Round and clamp the score into 0-100; unparseable scores become None."""
        if v is None or v == "":
            return None
        try:
            score = int(round(float(v)))
        except (TypeError, ValueError):
            return None
        return max(0, min(100, score))

    def enrich(self, facts: Mapping[str, Any]) -> "Dossier":
        """Return a new dossier extended with ``facts``.

        Known scalar facts are kept, empty ones are filled. Lists are appended
        with de-duplication and spec keys are added but never replaced.

        Raises:
            pydantic.ValidationError: if ``facts`` cannot be coerced
        """
        incoming = Dossier.model_validate(dict(facts))

        merged: Dict[str, Any] = {}
        for name in ("product_url", "product_name", "description", "visual_dna"):
            current = getattr(self, name)
            merged[name] = current if current else getattr(incoming, name)

        merged["sentiment_score"] = (
            self.sentiment_score
            if self.sentiment_score is not None
            else incoming.sentiment_score
        )

        for name in ("images", "features", "reference_video_urls", "reviews", "pain_points"):
            current = list(getattr(self, name))
            additions = [item for item in getattr(incoming, name) if item not in current]
            merged[name] = current + additions

        specs = dict(self.specs)
        for key, value in incoming.specs.items():
            specs.setdefault(key, value)
        merged["specs"] = specs

        return Dossier(**merged)

    @classmethod
    def minimal(cls, product_url: str, reference_video_url: str = "") -> "Dossier":
        """Fallback dossier used when product discovery fails."""
        host = urlparse(product_url).netloc
        name = host[4:] if host.startswith("www.") else host
        return cls(
            product_url=product_url,
            product_name=name or "Unknown product",
            reference_video_urls=[reference_video_url] if reference_video_url else [],
        )


class Strategy(BaseModel):
    """Chosen positioning for the sequence. Immutable once created."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    angle: str = Field(..., min_length=1, description="Psychological buying angle")
    target_audience: str = Field("", description="Who the video speaks to")
    video_type: VideoType = Field(VideoType.SHOWCASE, description="Video format")
    caption: str = ""
    hashtags: List[str] = Field(default_factory=list)
    first_comment: str = ""
    best_time: str = ""
    triggers: List[str] = Field(default_factory=list)

    @field_validator("angle")
    @classmethod
    def validate_angle(cls, v: str) -> str:
        """Ensure angle is not blank."""
        if not v.strip():
            raise ValueError("angle cannot be empty")
        return v.strip()

    @field_validator("video_type", mode="before")
    @classmethod
    def coerce_video_type(cls, v: Any) -> VideoType:
        """Normalize e.g. 'how-to' or 'How To' and fall back to SHOWCASE."""
        if isinstance(v, VideoType):
            return v
        key = str(v or "").strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return VideoType(key)
        except ValueError:
            return VideoType.SHOWCASE

    @field_validator("hashtags", mode="before")
    @classmethod
    def coerce_hashtags(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            v = v.replace(",", " ").split()
        return _unique(_as_string_list(v))

    @field_validator("triggers", mode="before")
    @classmethod
    def coerce_triggers(cls, v: Any) -> List[str]:
        return _as_string_list(v)
