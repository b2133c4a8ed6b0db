"""
Offline stand-in for LLMClient.

Recognizes the prompt kinds built by prompts.py and answers each with a
deterministic, well-formed response, so the whole pipeline can run without
network access or API keys.
"""
from __future__ import annotations

import asyncio
import json
import re
from typing import List

from .prompts import (
    CHUNKING_SYSTEM_PROMPT,
    GLOSSARY_GENERATION_SYSTEM_PROMPT,
    GLOSSARY_MERGE_SYSTEM_PROMPT,
    TRANSLATE_MARKER,
)

_START = re.compile(r"^Start:\s*(-?\d+)", re.MULTILINE)
_END = re.compile(r"^End:\s*(-?\d+)", re.MULTILINE)


class DryRunClient:
    """
    Completion client returning canned responses.

    Usage:
        client = DryRunClient()
        text = await client.completion(system, user)
    """

    provider = "dry-run"

    def __init__(self, chunk_size: int = 8, latency: float = 0.0):
        """
        Args:
            chunk_size: Paragraphs per interval in chunking answers
            latency: Simulated seconds per call
        """
        self.model_id = "dry-run"
        self.chunk_size = max(1, chunk_size)
        self.latency = latency
        self.calls = 0

    async def completion(self, system: str, user: str) -> str:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)

        if system == GLOSSARY_GENERATION_SYSTEM_PROMPT:
            return self._glossary_entries()
        if system == GLOSSARY_MERGE_SYSTEM_PROMPT:
            return '{ "action": "none" }'
        if system == CHUNKING_SYSTEM_PROMPT:
            return self._intervals(user)
        if TRANSLATE_MARKER in user:
            source = user.split(TRANSLATE_MARKER, 1)[1].strip("\n")
            return f"<translation>[dry-run #{self.calls}] {source}</translation>"
        return f"Model {self.model_id} default response."

    @staticmethod
    def _glossary_entries() -> str:
        entries = {
            "entries": [
                {
                    "keys": ["名無しの権兵衛", "ななしのごんべい"],
                    "value": "[character] Name: John Doe (名無しの権兵衛) | Gender: Male | Nickname: Nanashi (ななし)",
                },
                {
                    "keys": ["アメリカ合衆国", "アメリカ"],
                    "value": "[location] Name: United States (アメリカ)",
                },
            ]
        }
        return "```json\n" + json.dumps(entries, ensure_ascii=False, indent=2) + "\n```"

    def _intervals(self, user: str) -> str:
        start_match = _START.search(user)
        end_match = _END.search(user)
        if not start_match or not end_match:
            return "[]"

        start, end = int(start_match.group(1)), int(end_match.group(1))
        intervals: List[List[int]] = []
        while start <= end:
            stop = min(end, start + self.chunk_size - 1)
            intervals.append([start, stop])
            start = stop + 1
        return json.dumps(intervals)
