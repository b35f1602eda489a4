"""Recovery of JSON payloads from free-form model output.

Vision models are not typed RPC peers: a response may wrap the JSON in
markdown fences, prefix it with prose, or trail off with commentary. The
scanner below walks the text character by character, tracks bracket depth
(ignoring brackets inside string literals) and yields every balanced span
that starts at an opening bracket. Callers try those spans in order.
"""

import json
from typing import Any, Iterator, Optional, Tuple

from contract_ai.core.exceptions import MalformedOutputError
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

_PAIRS = {"{": "}", "[": "]"}


def _scan_balanced(text: str, start: int, opener: str) -> Optional[int]:
    """Return the index just past the span that closes ``text[start]``.

    Args:
        text: Text to scan
        start: Index of the opening bracket
        opener: The opening bracket character (``{`` or ``[``)

    Returns:
        End index (exclusive) of the balanced span, or None when the text
        ends before depth returns to zero.
    """
    closer = _PAIRS[opener]
    depth = 0
    in_string = False
    escaped = False

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
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return index + 1

    return None


def iter_balanced_spans(text: str, opener: str = "{") -> Iterator[Tuple[int, str]]:
    """Yield ``(start, candidate)`` for each balanced span in ``text``.

    The first candidate starts at the first ``opener``; each following
    candidate starts at the next ``opener`` after the previous start, so a
    nested span is offered after its (unparsable) parent.

    Args:
        text: Raw model output
        opener: ``{`` for objects, ``[`` for arrays

    Yields:
        Tuples of start offset and balanced substring
    """
    if opener not in _PAIRS:
        raise ValueError(f"Unsupported opener: {opener!r}")

    position = text.find(opener)
    while position != -1:
        end = _scan_balanced(text, position, opener)
        if end is not None:
            yield position, text[position:end]
        position = text.find(opener, position + 1)


def parse_balanced_json(text: str, opener: str = "{", max_attempts: int = 2) -> Any:
    """Parse the first balanced JSON value found in ``text``.

    Args:
        text: Raw model output
        opener: ``{`` to look for an object, ``[`` to look for an array
        max_attempts: Number of candidate spans to try before giving up

    Returns:
        The decoded JSON value

    Raises:
        MalformedOutputError: If no candidate span decodes
    """
    if not text or not isinstance(text, str):
        raise MalformedOutputError("Empty model response")

    last_error: Optional[Exception] = None
    attempts = 0

    for start, candidate in iter_balanced_spans(text, opener):
        attempts += 1
        try:
            value = json.loads(candidate)
            if attempts > 1:
                LOGGER.info(
                    f"Recovered JSON on attempt {attempts} at offset {start}",
                    extra={"offset": start, "attempt": attempts},
                )
            return value
        except json.JSONDecodeError as e:
            last_error = e
            LOGGER.warning(
                f"Balanced span at offset {start} is not valid JSON: {e}",
                extra={"offset": start, "attempt": attempts},
            )
        if attempts >= max_attempts:
            break

    preview = text[:200].replace("\n", " ")
    if attempts == 0:
        raise MalformedOutputError(
            f"No balanced '{opener}' span found in model response: {preview}"
        )
    raise MalformedOutputError(
        f"Failed to decode JSON after {attempts} attempt(s): {preview}",
        original_error=last_error,
    )


def parse_json_object(text: str, max_attempts: int = 2) -> dict:
    """Parse a JSON object from model output, rejecting other JSON types."""
    value = parse_balanced_json(text, "{", max_attempts)
    if not isinstance(value, dict):
        raise MalformedOutputError(f"Expected JSON object, got {type(value).__name__}")
    return value


def parse_json_array(text: str, max_attempts: int = 2) -> list:
    """Parse a JSON array from model output, rejecting other JSON types."""
    value = parse_balanced_json(text, "[", max_attempts)
    if not isinstance(value, list):
        raise MalformedOutputError(f"Expected JSON array, got {type(value).__name__}")
    return value
