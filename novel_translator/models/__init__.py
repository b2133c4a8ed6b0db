"""
Data models for the translation pipeline.
"""

from .actions import (
    ActionValidationError,
    AddEntryAction,
    AddKeyAction,
    DeleteAction,
    DelKeyAction,
    MergeAction,
    NoneAction,
    UpdateAction,
    normalize_actions,
    parse_actions,
)
from .glossary import Glossary, GlossaryEntry, Proposal
from .prompt import Prompt

__all__ = [
    "ActionValidationError",
    "AddEntryAction",
    "AddKeyAction",
    "DeleteAction",
    "DelKeyAction",
    "Glossary",
    "GlossaryEntry",
    "MergeAction",
    "NoneAction",
    "Prompt",
    "Proposal",
    "UpdateAction",
    "normalize_actions",
    "parse_actions",
]
