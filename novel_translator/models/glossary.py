"""
Glossary data model.

A glossary is an ordered list of entries. Each entry maps one or more
Japanese keys to a freeform annotation value that is injected into the
translation prompt whenever a key occurs in the source text.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple


@dataclass
class GlossaryEntry:
    """A single glossary entry."""

    id: int
    keys: List[str]
    value: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GlossaryEntry:
        """Create GlossaryEntry from dictionary."""
        return cls(
            id=int(data["id"]),
            keys=list(data.get("keys") or []),
            value=str(data.get("value") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert GlossaryEntry to dictionary."""
        return {"id": self.id, "keys": list(self.keys), "value": self.value}

    def shares_key(self, keys: Iterable[str]) -> bool:
        """Check whether any of ``keys`` is one of this entry's keys."""
        own = set(self.keys)
        return any(k in own for k in keys)


@dataclass
class Proposal:
    """A candidate entry produced by glossary generation (no id yet)."""

    keys: List[str]
    value: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Proposal:
        return cls(keys=list(data["keys"]), value=data["value"])

    def to_dict(self) -> Dict[str, Any]:
        return {"keys": list(self.keys), "value": self.value}


@dataclass
class Glossary:
    """Glossary data model: an ordered collection of entries."""

    entries: List[GlossaryEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Glossary:
        """Create Glossary from a ``{"entries": [...]}`` dictionary."""
        if not data:
            return cls()
        return cls(entries=[GlossaryEntry.from_dict(e) for e in data.get("entries") or []])

    def to_dict(self) -> Dict[str, Any]:
        """Convert Glossary to a JSON-serializable dictionary."""
        return {"entries": [e.to_dict() for e in self.entries]}

    def clone(self) -> Glossary:
        """Return a deep copy that can be mutated independently."""
        return copy.deepcopy(self)

    def max_id(self) -> int:
        """Highest entry id, or 0 for an empty glossary."""
        if not self.entries:
            return 0
        return max(e.id for e in self.entries)

    def get(self, entry_id: int) -> Optional[GlossaryEntry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def remove(self, entry_id: int) -> bool:
        """Remove entry by id. Returns True if an entry was removed."""
        for index, entry in enumerate(self.entries):
            if entry.id == entry_id:
                del self.entries[index]
                return True
        return False

    def find_conflicts(self, keys: Iterable[str]) -> List[GlossaryEntry]:
        """Entries sharing at least one key with ``keys``, in glossary order."""
        wanted = set(keys)
        return [e for e in self.entries if e.shares_key(wanted)]

    def duplicate_keys(self) -> List[Tuple[str, int, int]]:
        """(key, first owner id, second owner id) for every key held by two entries."""
        owners: Dict[str, int] = {}
        duplicates: List[Tuple[str, int, int]] = []
        for entry in self.entries:
            for key in dict.fromkeys(entry.keys):
                if key in owners:
                    duplicates.append((key, owners[key], entry.id))
                else:
                    owners[key] = entry.id
        return duplicates

    def __len__(self) -> int:
        return len(self.entries)
