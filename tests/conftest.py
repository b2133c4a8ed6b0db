"""
Pytest configuration and fixtures for the novel_translator test suite.

This module provides reusable fixtures for:
- Fake completion clients (scripted, failing, slow)
- Fast request queue settings (no real backoff delays)
- Sample glossaries and configuration
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

# Ensure project root is on sys.path to import novel_translator.* modules
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from novel_translator.config import TranslatorConfig  # noqa: E402
from novel_translator.models.glossary import Glossary, GlossaryEntry  # noqa: E402
from novel_translator.services.request_queue import RequestQueueConfig  # noqa: E402


class FakeClient:
    """
    Completion client stub.

    ``responder`` receives (system, user) and returns the completion text or
    raises. Every call is recorded.
    """

    def __init__(self, responder: Callable[[str, str], str], delay: float = 0.0):
        self.responder = responder
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []
        self.active = 0
        self.peak_active = 0

    async def completion(self, system: str, user: str) -> str:
        self.calls.append((system, user))
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            return self.responder(system, user)
        finally:
            self.active -= 1


@pytest.fixture
def fast_queue_config() -> RequestQueueConfig:
    """Queue settings with millisecond backoff and a short refill window."""
    return RequestQueueConfig(
        max_concurrency=10,
        max_calls_per_sec=100,
        refill_interval=0.05,
        max_retries=3,
        base_retry_delay=0.001,
        retry_jitter=0.0,
    )


@pytest.fixture
def make_client() -> Callable[..., FakeClient]:
    def _make(responder: Optional[Callable[[str, str], str]] = None, delay: float = 0.0) -> FakeClient:
        return FakeClient(responder or (lambda system, user: ""), delay=delay)
    return _make


@pytest.fixture
def sample_glossary() -> Glossary:
    return Glossary(entries=[
        GlossaryEntry(id=1, keys=["東雲", "しののめ"], value="[character] Name: Shinonome (東雲) | Gender: Female"),
        GlossaryEntry(id=2, keys=["氷姫"], value="[character] Name: Ice Princess (氷姫)"),
        GlossaryEntry(id=3, keys=["京都"], value="[location] Name: Kyoto (京都)"),
    ])


@pytest.fixture
def base_config() -> TranslatorConfig:
    return TranslatorConfig(stage3a="1-1", stage3b="1-1")
