"""
Output sinks receiving translated paragraphs.
"""

from __future__ import annotations

from typing import Dict, List, Protocol, Set


class Sink(Protocol):
    """Receives translation output per paragraph id."""

    def render(self, paragraph_id: str, text: str) -> None:
        ...

    def hide(self, paragraph_id: str) -> None:
        ...


class MemorySink:
    """Collects output in memory; used by the CLI and tests."""

    def __init__(self) -> None:
        self.rendered: Dict[str, str] = {}
        self.hidden: Set[str] = set()
        self.events: List[tuple] = []

    def render(self, paragraph_id: str, text: str) -> None:
        self.rendered[paragraph_id] = text
        self.hidden.discard(paragraph_id)
        self.events.append(("render", paragraph_id))

    def hide(self, paragraph_id: str) -> None:
        self.hidden.add(paragraph_id)
        self.events.append(("hide", paragraph_id))

    def to_dict(self, order: List[str]) -> Dict[str, Dict[str, object]]:
        """Output per paragraph in ``order``; untranslated paragraphs have text None."""
        return {
            pid: {"text": self.rendered.get(pid), "hidden": pid in self.hidden}
            for pid in order
        }
