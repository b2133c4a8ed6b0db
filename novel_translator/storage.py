"""
File-backed glossary persistence.

Each scope (typically one novel) has its own JSON file
``<data_dir>/<scope_id>.json`` holding ``{"entries": [...]}``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import List, Union

from .models.glossary import Glossary

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_scope_name(scope_id: str) -> str:
    """File name stem for a scope id (path separators and other unsafe characters replaced)."""
    name = _UNSAFE_CHARS.sub("_", scope_id.strip()).strip("._")
    if not name:
        raise ValueError(f"Invalid scope id: {scope_id!r}")
    return name


class GlossaryStore:
    """Loads and saves glossaries as JSON files."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)

    def path_for(self, scope_id: str) -> Path:
        return self.data_dir / f"{safe_scope_name(scope_id)}.json"

    def load_glossary(self, scope_id: str) -> Glossary:
        """Stored glossary for ``scope_id``, or an empty one if none exists."""
        path = self.path_for(scope_id)
        if not path.exists():
            return Glossary()
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return Glossary.from_dict(data)

    def save_glossary(self, scope_id: str, glossary: Glossary) -> Path:
        """
        Write the glossary atomically (temp file + rename).

        Returns:
            Path of the written file
        """
        path = self.path_for(scope_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, suffix=".tmp", delete=False
        ) as tmp:
            json.dump(glossary.to_dict(), tmp, ensure_ascii=False, indent=2)
            tmp_path = tmp.name
        try:
            os.replace(tmp_path, path)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        logger.info("Saved glossary '%s' (%d entries) to %s", scope_id, len(glossary), path)
        return path

    def list_scopes(self) -> List[str]:
        if not self.data_dir.exists():
            return []
        return sorted(p.stem for p in self.data_dir.glob("*.json"))
