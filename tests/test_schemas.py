"""Unit tests for the data schemas.

Tests cover:
- Dossier coercion and the append-only enrich operation
- Strategy validation and normalization
- Box coercion and duration pinning
- SequenceArtifact rank and length invariants
- Dialogue events
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from pydantic import ValidationError

from reelstudio.schemas.dialogue import DialogueEvent, DialogueType
from reelstudio.schemas.dossier import Dossier, Strategy, VideoType
from reelstudio.schemas.sequence import (
    AnchorImage,
    Box,
    BoxType,
    Directive,
    SceneDraft,
    SequenceArtifact,
)


short_text = st.text(alphabet="abcdefghij ", min_size=0, max_size=12)
fact_sets = st.fixed_dictionaries(
    {},
    optional={
        "productName": short_text,
        "description": short_text,
        "visualDna": short_text,
        "features": st.lists(short_text, max_size=4),
        "reviews": st.lists(short_text, max_size=3),
        "painPoints": st.lists(short_text, max_size=3),
        "specs": st.dictionaries(short_text, short_text, max_size=3),
        "sentimentScore": st.integers(min_value=-50, max_value=150),
    },
)


@pytest.mark.unit
class TestDossier:
    """Test Dossier coercion and enrichment."""

    def test_camel_case_aliases(self):
        """Test model output keys populate snake_case fields."""
        dossier = Dossier.model_validate({
            "productName": "AeroPress Go",
            "visualDna": "matte black",
            "referenceVideoUrls": ["https://youtu.be/1"],
            "painPoints": ["heavy"],
        })

        assert dossier.product_name == "AeroPress Go"
        assert dossier.visual_dna == "matte black"
        assert dossier.reference_video_urls == ["https://youtu.be/1"]
        assert dossier.model_dump(by_alias=True)["painPoints"] == ["heavy"]

    def test_features_deduplicated(self):
        """Test duplicate features are dropped, keeping the first."""
        dossier = Dossier(features=["Fast", "Light", "Fast", " ", "Light"])
        assert dossier.features == ["Fast", "Light"]

    def test_relative_image_urls_dropped(self):
        """Test only absolute http(s) image URLs are kept."""
        dossier = Dossier(images=[
            "https://cdn.example.com/a.png",
            "/relative/b.png",
            "data:image/png;base64,AAAA",
            "http://cdn.example.com/c.jpg",
        ])
        assert dossier.images == ["https://cdn.example.com/a.png", "http://cdn.example.com/c.jpg"]

    def test_specs_from_pairs(self):
        """Test spec lists of name/value objects become a mapping."""
        dossier = Dossier(specs=[{"name": "weight", "value": "320 g"}])
        assert dossier.specs == {"weight": "320 g"}

    def test_scalar_list_fields_wrapped(self):
        """Test bare numbers in list fields become one-item lists."""
        dossier = Dossier.model_validate({"features": 5, "painPoints": 3, "reviews": 4.5, "specs": 7})

        assert dossier.features == ["5"]
        assert dossier.pain_points == ["3"]
        assert dossier.reviews == ["4.5"]
        assert dossier.specs == {}

    def test_enrich_with_scalar_fields(self):
        """Test enrich accepts scalar facts where lists are expected."""
        enriched = Dossier(features=["Fast"]).enrich({"features": 5, "images": 1})

        assert enriched.features == ["Fast", "5"]
        assert enriched.images == []

    def test_sentiment_clamped(self):
        """Test sentiment scores are rounded and clamped to 0-100."""
        assert Dossier(sentiment_score=140).sentiment_score == 100
        assert Dossier(sentiment_score=-3).sentiment_score == 0
        assert Dossier(sentiment_score="72.6").sentiment_score == 73
        assert Dossier(sentiment_score="n/a").sentiment_score is None

    def test_enrich_fills_empty_facts(self):
        """Test enrich fills facts that are still empty."""
        dossier = Dossier(product_url="https://shop.example.com/p")
        enriched = dossier.enrich({"productName": "Widget", "features": ["Fast"]})

        assert enriched.product_url == "https://shop.example.com/p"
        assert enriched.product_name == "Widget"
        assert enriched.features == ["Fast"]

    def test_enrich_never_overwrites(self):
        """Test known facts survive conflicting findings."""
        dossier = Dossier(product_name="Widget", features=["Fast"], specs={"weight": "1 kg"}, sentiment_score=40)
        enriched = dossier.enrich({
            "productName": "Gadget",
            "features": ["Light", "Fast"],
            "specs": {"weight": "2 kg", "color": "red"},
            "sentimentScore": 90,
        })

        assert enriched.product_name == "Widget"
        assert enriched.features == ["Fast", "Light"]
        assert enriched.specs == {"weight": "1 kg", "color": "red"}
        assert enriched.sentiment_score == 40

    def test_enrich_returns_new_dossier(self):
        """Test enrich leaves the original untouched."""
        dossier = Dossier(features=["Fast"])
        dossier.enrich({"features": ["Light"]})
        assert dossier.features == ["Fast"]

    @given(first=fact_sets, second=fact_sets)
    @settings(max_examples=60)
    def test_enrich_is_append_only(self, first, second):
        """Test every fact known before enrich is still known after it."""
        before = Dossier().enrich(first)
        after = before.enrich(second)

        for name in ("product_name", "description", "visual_dna"):
            if getattr(before, name):
                assert getattr(after, name) == getattr(before, name)
        for name in ("features", "reviews", "pain_points"):
            assert getattr(after, name)[:len(getattr(before, name))] == getattr(before, name)
        for key, value in before.specs.items():
            assert after.specs[key] == value
        if before.sentiment_score is not None:
            assert after.sentiment_score == before.sentiment_score

    def test_minimal_dossier_from_url(self):
        """Test the fallback dossier names the product after the host."""
        dossier = Dossier.minimal("https://www.example-store.com/p/1", "https://youtu.be/x")

        assert dossier.product_name == "example-store.com"
        assert dossier.reference_video_urls == ["https://youtu.be/x"]

    def test_minimal_dossier_without_host(self):
        """Test the fallback name for an unparseable URL."""
        assert Dossier.minimal("not a url").product_name == "Unknown product"


@pytest.mark.unit
class TestStrategy:
    """Test Strategy validation."""

    def test_blank_angle_rejected(self):
        """Test an empty angle is invalid."""
        with pytest.raises(ValidationError):
            Strategy(angle="   ")

    def test_video_type_normalized(self):
        """Test loosely formatted video types are normalized."""
        assert Strategy(angle="FOMO", video_type="how-to").video_type == VideoType.HOW_TO
        assert Strategy(angle="FOMO", video_type="Unboxing").video_type == VideoType.UNBOXING

    def test_unknown_video_type_falls_back(self):
        """Test unknown video types become SHOWCASE."""
        assert Strategy(angle="FOMO", video_type="DOCUMENTARY").video_type == VideoType.SHOWCASE

    def test_hashtags_from_string(self):
        """Test a hashtag string is split into a list."""
        strategy = Strategy.model_validate({"angle": "FOMO", "hashtags": "#a, #b #a"})
        assert strategy.hashtags == ["#a", "#b"]

    def test_strategy_is_frozen(self):
        """Test a strategy cannot be changed once created."""
        strategy = Strategy(angle="FOMO")
        with pytest.raises(ValidationError):
            strategy.angle = "Authority"


@pytest.mark.unit
class TestBox:
    """Test Box coercion and invariants."""

    def test_camel_case_fields(self):
        """Test model output keys populate the box."""
        box = Box.model_validate({
            "type": "HOOK",
            "imagePrompt": "still",
            "visualPrompt": "motion",
            "audioScript": "words",
            "ambientSoundDescription": "rain",
        })

        assert box.type == BoxType.HOOK
        assert box.image_prompt == "still"
        assert box.visual_prompt == "motion"
        assert box.ambient_sound_description == "rain"

    def test_sfx_description_alias(self):
        """Test the legacy sfxDescription key is accepted."""
        assert Box.model_validate({"sfxDescription": "wind"}).ambient_sound_description == "wind"

    def test_unknown_type_becomes_feature(self):
        """Test unknown box types fall back to FEATURE."""
        assert Box(type="MONTAGE").type == BoxType.FEATURE
        assert Box(type="problem-solution").type == BoxType.PROBLEM_SOLUTION

    def test_duration_pinned_to_eight(self):
        """Test non-outro boxes always run eight seconds."""
        assert Box(type="FEATURE", duration=5).duration == 8
        assert Box(type="FEATURE", duration=30).duration == 8
        assert Box(type="FEATURE", duration="soon").duration == 8

    def test_outro_may_be_shorter(self):
        """Test an outro keeps a shorter duration."""
        assert Box(type="OUTRO", duration=5).duration == 5
        assert Box(type="OUTRO", duration=12).duration == 8

    def test_serializes_with_aliases(self):
        """Test boxes dump with camelCase keys."""
        dumped = Box(image_prompt="a", ambient_sound_description="b").model_dump(by_alias=True)
        assert dumped["imagePrompt"] == "a"
        assert dumped["ambientSoundDescription"] == "b"


def ranked_boxes(ranks):
    return [Box(rank=rank) for rank in ranks]


@pytest.mark.unit
class TestSequenceArtifact:
    """Test the ten-box, strictly ranked sequence invariant."""

    def test_valid_sequence(self):
        """Test ten boxes ranked 1..10 are accepted."""
        artifact = SequenceArtifact(boxes=ranked_boxes(range(1, 11)))
        assert [box.rank for box in artifact.boxes] == list(range(1, 11))

    def test_wrong_length_rejected(self):
        """Test nine boxes are rejected."""
        with pytest.raises(ValidationError):
            SequenceArtifact(boxes=ranked_boxes(range(1, 10)))

    def test_non_increasing_ranks_rejected(self):
        """Test a repeated rank is rejected."""
        ranks = [1, 2, 3, 4, 4, 6, 7, 8, 9, 10]
        with pytest.raises(ValidationError):
            SequenceArtifact(boxes=ranked_boxes(ranks))

    def test_missing_rank_rejected(self):
        """Test unranked boxes are rejected."""
        with pytest.raises(ValidationError):
            SequenceArtifact(boxes=[Box() for _ in range(10)])


@pytest.mark.unit
class TestSmallSchemas:
    """Test anchors, drafts, directives and dialogue events."""

    def test_anchor_data_url(self):
        """Test anchors render and parse data URLs."""
        anchor = AnchorImage.from_data_url("data:image/jpeg;base64,AAAA")
        assert anchor.mime_type == "image/jpeg"
        assert anchor.data_url == "data:image/jpeg;base64,AAAA"

    def test_anchor_rejects_plain_url(self):
        """Test non-data URLs are rejected."""
        with pytest.raises(ValueError):
            AnchorImage.from_data_url("https://cdn.example.com/a.png")

    def test_scene_draft_requires_ten(self):
        """Test a draft must hold exactly ten scenes."""
        with pytest.raises(ValidationError):
            SceneDraft(scenes=["one"] * 9)
        assert len(SceneDraft(scenes=[{"description": f"s{i}"} for i in range(10)]).scenes) == 10

    def test_directive_requires_hook(self):
        """Test a directive needs a selected hook."""
        with pytest.raises(ValidationError):
            Directive(selected_hook="")

    def test_dialogue_event_defaults(self):
        """Test dialogue events default to thoughts and are frozen."""
        event = DialogueEvent(agent="Researcher", message="hi")
        assert event.type == DialogueType.THOUGHT
        with pytest.raises(ValidationError):
            event.message = "changed"
