"""Sequence assembler: ranks designed boxes and projects them into slots.

Both functions are pure and deterministic; no backend calls happen here.
"""

from typing import List, Sequence

from reelstudio.schemas.sequence import (
    Box,
    SequenceArtifact,
    SequenceSlot,
    SlotGeneration,
    SlotMedia,
    SlotSegment,
)


def assemble_sequence(
    boxes: Sequence[Box],
    product_name: str,
    title: str = "",
    reference_images: Sequence[str] = ()
) -> SequenceArtifact:
    """Rank boxes 1..n in order and stamp them with the product name.

    Args:
        boxes: Designed boxes in narrative order
        product_name: Name copied onto every box
        title: Sequence title
        reference_images: Acquired product images as data URLs

    Returns:
        SequenceArtifact with an empty connective narrative

    Raises:
        pydantic.ValidationError: If ``boxes`` does not hold exactly ten boxes
    """
    ranked = [
        box.model_copy(update={"rank": index + 1, "product_name": product_name})
        for index, box in enumerate(boxes)
    ]
    return SequenceArtifact(
        title=title,
        boxes=ranked,
        connective_narrative="",
        reference_images=list(reference_images),
    )


def slot_id(rank: int) -> str:
    return f"slot-{rank:02d}"


def project_slots(artifact: SequenceArtifact) -> List[SequenceSlot]:
    """Ordered per-box projection handed to the editor."""
    slots = []
    for box in artifact.boxes:
        slots.append(SequenceSlot(
            id=slot_id(box.rank),
            rank=box.rank,
            product_name=box.product_name,
            description=f"[{box.type.value}] {box.duration}s",
            category=box.type,
            media=SlotMedia(images=list(artifact.reference_images), clips=[]),
            generated=SlotGeneration(
                status="idle",
                image_prompt=box.image_prompt,
                video_prompt=box.visual_prompt,
                script=box.audio_script,
                anchor_image=box.anchor_image.data_url if box.anchor_image else None,
            ),
            custom_script=box.audio_script,
            segment=SlotSegment(
                start_time="00:00",
                end_time=f"00:{box.duration:02d}",
                duration=box.duration,
            ),
        ))
    return slots
