"""
Text helpers applied before and after translation.
"""

from __future__ import annotations

import re
import unicodedata

from .models.glossary import Glossary

_BR_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)

# Opening quote characters that trigger smart-quote conversion
_QUOTE_PREFIXES = ('"', "＂", "“")
_QUOTE_MAX_OFFSET = 3


def preprocess_text(text: str) -> str:
    """NFKC-normalize, drop ``<br>`` tags and trim."""
    text = unicodedata.normalize("NFKC", text)
    text = _BR_TAG.sub("", text)
    return text.strip()


def text_post_process(line: str) -> str:
    """
    Trim a translated line and convert straight quotes to curly ones.

    Conversion only happens when a quote character appears within the
    first four characters of the (untrimmed) line: the leading ``"``
    becomes ``“`` and the last ``"`` becomes ``”``.
    """
    result = line.strip()
    starts_quoted = any(
        line.startswith(prefix, offset)
        for prefix in _QUOTE_PREFIXES
        for offset in range(_QUOTE_MAX_OFFSET + 1)
    )
    if starts_quoted:
        if result.startswith('"'):
            result = "“" + result[1:]
        last = result.rfind('"')
        if last != -1:
            result = result[:last] + "”" + result[last + 1:]
    return result


def generate_metadata(text: str, glossary: Glossary) -> str:
    """Values of all entries with at least one key occurring in ``text``, one per line."""
    values = [
        entry.value
        for entry in glossary.entries
        if any(key in text for key in entry.keys)
    ]
    return "\n".join(values)
