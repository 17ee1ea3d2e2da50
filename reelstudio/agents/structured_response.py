"""Structured-response parsing for conversational model output.

Models asked for JSON frequently wrap it in prose, markdown fences or
grounding citations, and occasionally leave trailing commas behind. This
module recovers the first balanced JSON value from such text and provides
the call-site helper agents use to request structured output.
"""

import json
import logging
import re
from typing import Any, Iterator, Optional, Sequence, Tuple

from reelstudio.agents.base import MalformedStructuredResponse
from reelstudio.orchestrator.dispatcher import Priority


logger = logging.getLogger(__name__)


PREVIEW_LENGTH = 100

JSON_ONLY_DIRECTIVE = (
    "\n\nCRITICAL: You MUST respond ONLY with valid JSON. "
    "Do not include any conversational text, markdown, or citations outside the JSON object."
)

STRICT_JSON_DIRECTIVE = (
    "\n\nYour previous answer could not be parsed. Respond with exactly one JSON value: "
    "no prose before or after it, no markdown fences, no comments and no trailing commas."
)

_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_OPENERS = {"{": "}", "[": "]"}


def preview(value: Any, limit: int = PREVIEW_LENGTH) -> str:
    """Truncated rendering of raw output for error messages"""
    if not isinstance(value, str):
        try:
            value = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            value = repr(value)
    return value[:limit]


def _balanced_spans(text: str) -> Iterator[Tuple[int, int]]:
    """Yield (start, end) spans of balanced bracket candidates in order.

    Brackets inside string literals are ignored and backslash escapes inside
    strings are honoured. A candidate starts at every ``{`` or ``[`` that is
    not inside an earlier candidate's string literal.
    """
    position = 0
    while True:
        starts = [i for i in (text.find("{", position), text.find("[", position)) if i != -1]
        if not starts:
            return
        start = min(starts)

        stack = []
        in_string = False
        escaped = False
        end = None
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char in _OPENERS:
                stack.append(_OPENERS[char])
            elif char in ("}", "]"):
                if not stack or stack[-1] != char:
                    break
                stack.pop()
                if not stack:
                    end = index + 1
                    break

        if end is not None:
            yield start, end
        position = start + 1


def _strip_trailing_commas(candidate: str) -> str:
    """Remove commas directly before a closing bracket, outside strings."""
    pieces = []
    in_string = False
    escaped = False
    segment_start = 0
    for index, char in enumerate(candidate):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                pieces.append(candidate[segment_start:index + 1])
                segment_start = index + 1
            continue
        if char == '"':
            pieces.append(_TRAILING_COMMA.sub(r"\1", candidate[segment_start:index]))
            segment_start = index
            in_string = True
    tail = candidate[segment_start:]
    pieces.append(tail if in_string else _TRAILING_COMMA.sub(r"\1", tail))
    return "".join(pieces)


def _unwrap(value: Any) -> Any:
    # Scalars stay wrapped so a second parse sees a list, not model text
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], (dict, list)):
        return value[0]
    return value


def parse_structured_response(text: Any) -> Any:
    """Extract the first balanced JSON value from model output.

    Args:
        text: Raw model output, or an already-parsed value

    Returns:
        The decoded value; a root array holding exactly one object or
        array is unwrapped. Already-parsed values are returned unchanged.

    Raises:
        MalformedStructuredResponse: If no candidate decodes, even after
            trailing-comma repair
    """
    if isinstance(text, (dict, list, int, float)):
        return text
    if text is None:
        text = ""
    if not isinstance(text, str):
        raise MalformedStructuredResponse(
            f"Cannot parse structured response of type {type(text).__name__}",
            {"preview": preview(text)}
        )

    spans = list(_balanced_spans(text))

    for start, end in spans:
        try:
            return _unwrap(json.loads(text[start:end]))
        except json.JSONDecodeError:
            continue

    for start, end in spans:
        try:
            value = json.loads(_strip_trailing_commas(text[start:end]))
        except json.JSONDecodeError:
            continue
        logger.debug("Recovered structured response after trailing-comma repair")
        return _unwrap(value)

    raise MalformedStructuredResponse(
        "No valid JSON value found in model response",
        {"preview": preview(text)}
    )


async def request_structured(
    backend,
    prompt: str,
    system_instruction: str,
    tools: Sequence = (),
    priority: Priority = Priority.AGENT,
    media: Sequence = (),
    label: Optional[str] = None
) -> Any:
    """Request a JSON completion, retrying once with a stricter directive.

    Args:
        backend: GenerativeBackend to call
        prompt: User prompt
        system_instruction: System instruction for the agent's skill
        tools: Backend tools to enable (e.g. web search)
        priority: Dispatcher priority
        media: Inline images for multimodal prompts
        label: Name used in the retry log line

    Returns:
        Parsed structured response

    Raises:
        MalformedStructuredResponse: If the retry is malformed too
    """
    try:
        return await backend.completion(
            prompt, system_instruction, tools=tools, json_mode=True,
            priority=priority, media=media
        )
    except MalformedStructuredResponse as e:
        logger.warning(
            f"{label or 'completion'} returned malformed JSON "
            f"({e.context.get('preview', '')!r}), retrying with strict directive"
        )
        return await backend.completion(
            prompt, system_instruction + STRICT_JSON_DIRECTIVE, tools=tools,
            json_mode=True, priority=priority, media=media
        )
