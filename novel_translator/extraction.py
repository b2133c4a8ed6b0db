"""
Extraction of structured payloads from free-form model output.

Models rarely follow output formats exactly: tags go missing, JSON gets
wrapped in code fences, commented, or surrounded by prose. Both helpers
here degrade to a sentinel value instead of raising.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

# Returned by extract_tag() when no usable content could be recovered
TAG_NOT_FOUND = "###"

_JSON_FENCE = re.compile(r"```json\s*\n([\s\S]*?)\n?```")
_ANY_FENCE = re.compile(r"```\w*\s*\n([\s\S]*?)\n?(?:```|$)")
_LINE_COMMENT = re.compile(r"//.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")


def _find_all(text: str, needle: str) -> List[int]:
    indices = []
    index = text.find(needle)
    while index != -1:
        indices.append(index)
        index = text.find(needle, index + len(needle))
    return indices


def extract_tag(text: str, tag: str) -> str:
    """
    Extract the contents of ``<tag>...</tag>`` pairs.

    All balanced pairs are joined with newlines. If none exist, recovery is
    attempted when exactly one opening tag (at the start) or one closing tag
    (at the end) is missing.

    Args:
        text: Raw model output
        tag: Tag name without angle brackets

    Returns:
        Extracted text, or TAG_NOT_FOUND if the tags are absent or too
        malformed to recover
    """
    escaped = re.escape(tag)
    opening = f"<{tag}>"
    closing = f"</{tag}>"

    matches = re.findall(f"<{escaped}>(.*?)</{escaped}>", text, flags=re.DOTALL)
    if matches:
        return "\n".join(m.strip() for m in matches)

    opening_indices = _find_all(text, opening)
    closing_indices = _find_all(text, closing)
    opening_count = len(opening_indices)
    closing_count = len(closing_indices)

    # Missing first opening tag
    if closing_count == opening_count + 1:
        logger.warning("Missing first opening tag <%s>. Attempting recovery.\n%s", tag, text)
        parts = [text[: closing_indices[0]].strip()]
        for i, start in enumerate(opening_indices):
            end = closing_indices[i + 1]
            parts.append(text[start + len(opening): end].strip())
        return "\n".join(parts)

    # Missing last closing tag
    if opening_count == closing_count + 1:
        logger.warning("Missing last closing tag </%s>. Attempting recovery.\n%s", tag, text)
        parts = []
        for i, end in enumerate(closing_indices):
            start = opening_indices[i] + len(opening)
            parts.append(text[start:end].strip())
        parts.append(text[opening_indices[-1] + len(opening):].strip())
        return "\n".join(parts)

    if opening_count == 0 and closing_count == 0:
        logger.warning("No tags <%s> found.\n%s", tag, text)
    else:
        logger.warning(
            "Tags too malformed to recover. Opening: %d, Closing: %d.\n%s",
            opening_count,
            closing_count,
            text,
        )
    return TAG_NOT_FOUND


def strip_json_comments(text: str) -> str:
    """Remove ``//`` line comments and ``/* */`` block comments."""
    return _BLOCK_COMMENT.sub("", _LINE_COMMENT.sub("", text))


def _loads(candidate: str) -> Any:
    """Parse as-is, then with comments stripped. Raises ValueError on failure."""
    try:
        return json.loads(candidate)
    except ValueError:
        return json.loads(strip_json_comments(candidate))


def find_balanced_json(text: str) -> Optional[str]:
    """
    Find the first balanced ``{...}`` region, falling back to ``[...]``.

    Bracket characters inside double-quoted strings are ignored and
    backslash escapes are honoured.

    Returns:
        The matched substring, or None when no balanced region exists
    """
    for start_char, end_char in (("{", "}"), ("[", "]")):
        start = text.find(start_char)
        if start == -1:
            continue

        depth = 0
        in_string = False
        escape_next = False
        for i in range(start, len(text)):
            char = text[i]
            if escape_next:
                escape_next = False
                continue
            if char == "\\":
                escape_next = True
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if char == start_char:
                depth += 1
            elif char == end_char:
                depth -= 1
                if depth == 0:
                    return text[start: i + 1]
    return None


def extract_json(text: str) -> Any:
    """
    Parse JSON out of model output.

    Strategies, in order:
    1. A ```json fenced block
    2. Any fenced block, as-is and with comments stripped
    3. The first balanced object or array in the raw text

    Objects are searched before arrays in unfenced text, so a bare list of
    objects yields only its first object. Fenced lists parse whole.

    Returns:
        The decoded value, or an empty dict when nothing parses
    """
    if not isinstance(text, str):
        logger.error("No valid JSON found in model output (not a string): %r", text)
        return {}

    match = _JSON_FENCE.search(text)
    if match:
        try:
            return json.loads(match.group(1).strip())
        except ValueError:
            pass

    for fence in _ANY_FENCE.finditer(text):
        try:
            return _loads(fence.group(1).strip())
        except ValueError:
            continue

    extracted = find_balanced_json(text)
    if extracted:
        try:
            return _loads(extracted)
        except ValueError:
            pass

    logger.error("No valid JSON found in model output. Raw response:\n\n%s", text)
    return {}
