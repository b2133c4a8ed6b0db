"""
Prompt data model.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Prompt:
    """A system/user message pair sent to a completion model."""

    system: str
    user: str
