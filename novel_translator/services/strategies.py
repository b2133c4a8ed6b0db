"""
Translation strategies.

- SingleLineStrategy: one request per paragraph
- ChunkingStrategy: a model proposes scene-sized chunks, which are merged
  into a partition and translated one request per chunk
- EntirePageStrategy: everything in one request
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..config import TranslatorConfig
from ..extraction import TAG_NOT_FOUND, extract_json, extract_tag
from ..interval_merger import merge_intervals, summarize
from ..logging_utils import log
from ..sinks import Sink
from ..text_utils import text_post_process
from .prompts import PromptManager
from .request_queue import RequestQueue, TaskResult

logger = logging.getLogger(__name__)

# (stage, label) -> queue for that stage
QueueFactory = Callable[[str, str], RequestQueue]

# Chunking prompts renumber paragraphs to start at this index
CHUNK_INDEX_BASE = 20
LONG_PARAGRAPH_CHARS = 1000


def process_response(raw: str) -> Optional[str]:
    """
    Extract the translation from a model response.

    Returns:
        Cleaned text (one line per translated paragraph), or None when the
        response has no usable ``<translation>`` block
    """
    text = extract_tag(raw, "translation")
    if text == TAG_NOT_FOUND:
        return None
    text = re.sub(r"\n+", "\n", text)
    return "\n".join(text_post_process(line) for line in text.split("\n"))


def _natural_key(value: str) -> List[Any]:
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", value)]


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


class TranslationStrategy:
    """Base class for translation strategies."""

    def __init__(
        self,
        config: TranslatorConfig,
        prompt_manager: PromptManager,
        queue_factory: QueueFactory,
        sink: Sink,
    ):
        self.config = config
        self.prompt_manager = prompt_manager
        self.sink = sink
        self._queue_factory = queue_factory
        self._chunk_queue: Optional[RequestQueue] = None
        self._translation_queue: Optional[RequestQueue] = None

    @property
    def chunk_queue(self) -> RequestQueue:
        if self._chunk_queue is None:
            self._chunk_queue = self._queue_factory("stage3a", "Text Chunking")
        return self._chunk_queue

    @property
    def translation_queue(self) -> RequestQueue:
        if self._translation_queue is None:
            self._translation_queue = self._queue_factory("stage3b", "Translation")
        return self._translation_queue

    async def execute(self, paragraphs: Mapping[str, str]) -> None:
        raise NotImplementedError("Strategy must implement execute()")


class SingleLineStrategy(TranslationStrategy):
    """One request per non-empty paragraph, with preceding lines as context."""

    async def execute(self, paragraphs: Mapping[str, str]) -> None:
        items = [(pid, text) for pid, text in paragraphs.items() if text]
        futures = []

        for i, (pid, text) in enumerate(items):
            start = max(0, i - self.config.context_lines)
            preceding = "\n".join(t for _, t in items[start:i])
            prompt = self.prompt_manager.get_translation_prompt(text, preceding)
            futures.append(self.translation_queue.enqueue(prompt, self._render_line(pid)))

        try:
            for future in futures:
                await future
        finally:
            self.translation_queue.dispose()

    def _render_line(self, pid: str) -> Callable[[TaskResult], None]:
        def on_settle(result: TaskResult) -> None:
            if not result.ok:
                logger.error("Failed to translate paragraph %s: %s", pid, result.error)
                return
            translated = process_response(result.output)
            if translated is not None:
                self.sink.render(pid, translated)
        return on_settle


@dataclass
class ChunkingBatch:
    """One window of paragraphs sent for chunking."""
    paragraphs: List[Tuple[int, str]]  # (0-based index, text)
    offset: int
    actual_start: int  # 1-based, inclusive
    actual_end: int


class ChunkingStrategy(TranslationStrategy):
    """Model-guided chunking followed by one translation request per chunk."""

    async def execute(self, paragraphs: Mapping[str, str]) -> None:
        items = list(paragraphs.items())
        if not items:
            return

        batches = self.build_batches([text for _, text in items])
        futures = [
            self.chunk_queue.enqueue(self.prompt_manager.get_chunking_prompt(b.paragraphs, b.offset))
            for b in batches
        ]
        try:
            results = [await f for f in futures]
        finally:
            self.chunk_queue.dispose()

        suggestions = [
            self.parse_suggestions(result, batch, i)
            for i, (result, batch) in enumerate(zip(results, batches))
        ]
        intervals = merge_intervals(len(items), suggestions)
        log(f"Chunking produced {summarize(intervals)}")

        await self._translate_intervals(items, intervals)

    def build_batches(self, texts: Sequence[str]) -> List[ChunkingBatch]:
        """
        Split paragraphs into overlapping batches of about ``batch_char_limit`` characters.

        Consecutive batches share ``overlap_paragraphs`` paragraphs but each
        batch starts at least one paragraph after the previous one.
        """
        limit = self.config.batch_char_limit
        overlap = self.config.overlap_paragraphs
        batches: List[ChunkingBatch] = []
        start = 0

        while start < len(texts):
            chars = 0
            end = start
            for i in range(start, len(texts)):
                length = len(texts[i])
                if length > LONG_PARAGRAPH_CHARS:
                    logger.warning(
                        "Paragraph %d is very long (%d chars). This might affect chunking quality.",
                        i + 1, length,
                    )
                if chars > 0 and chars + length > limit:
                    break
                chars += length
                end = i

            actual_start, actual_end = start + 1, end + 1
            offset = actual_start - CHUNK_INDEX_BASE if actual_start >= CHUNK_INDEX_BASE else 0
            batches.append(ChunkingBatch(
                paragraphs=[(i, texts[i]) for i in range(start, end + 1)],
                offset=offset,
                actual_start=actual_start,
                actual_end=actual_end,
            ))

            if end >= len(texts) - 1:
                break
            start = max(start + 1, end - overlap + 1)

        return batches

    @staticmethod
    def parse_suggestions(result: TaskResult, batch: ChunkingBatch, index: int) -> List[List[int]]:
        """
        Validate one batch's proposed intervals and map them back to global indices.

        Any malformed or out-of-range interval discards the whole batch.
        """
        if not result.ok:
            logger.error("Chunking request for batch %d failed: %s", index, result.error)
            return []

        suggestions = extract_json(result.output)
        if not isinstance(suggestions, list) or not suggestions:
            logger.warning("Invalid chunking response for batch %d: %r", index, result.output)
            return []

        unmapped = []
        for interval in suggestions:
            if not isinstance(interval, list) or len(interval) != 2:
                logger.warning("Invalid interval structure for batch %d, discarding batch", index)
                return []
            start, end = interval
            if not all(_is_finite_number(v) for v in (start, end)):
                logger.warning("Non-numeric interval %r for batch %d, discarding batch", interval, index)
                return []

            start, end = int(start) + batch.offset, int(end) + batch.offset
            if start < batch.actual_start or end > batch.actual_end or start > end:
                logger.warning(
                    "Interval [%d, %d] out of range [%d, %d] for batch %d",
                    start, end, batch.actual_start, batch.actual_end, index,
                )
                return []
            unmapped.append([start, end])

        return unmapped

    async def _translate_intervals(self, items: List[Tuple[str, str]], intervals: List[List[int]]) -> None:
        futures = []
        for first, last in intervals:
            start = first - 1
            chunk = items[start:last]
            if not chunk:
                continue

            context_start = max(0, start - self.config.context_lines)
            preceding = "\n".join(text for _, text in items[context_start:start])
            chunk_text = "\n".join(text for _, text in chunk)

            prompt = self.prompt_manager.get_translation_prompt(chunk_text, preceding)
            futures.append(self.translation_queue.enqueue(prompt, self._render_chunk([pid for pid, _ in chunk])))

        try:
            for future in futures:
                await future
        finally:
            self.translation_queue.dispose()

    def _render_chunk(self, ids: List[str]) -> Callable[[TaskResult], None]:
        def on_settle(result: TaskResult) -> None:
            if not result.ok:
                logger.error("Failed to translate chunk %s..%s: %s", ids[0], ids[-1], result.error)
                return
            translated = process_response(result.output)
            if translated is None:
                return
            self.map_lines(ids, translated.split("\n"))
        return on_settle

    def map_lines(self, ids: List[str], lines: List[str]) -> None:
        """
        Distribute translated lines over the chunk's paragraphs.

        - Same count: one line per paragraph
        - More lines: the extra lines are joined into the last paragraph
        - Fewer lines: paragraphs without a line are hidden
        """
        expected, received = len(ids), len(lines)

        if received == expected:
            for pid, line in zip(ids, lines):
                self.sink.render(pid, line)
        elif received > expected:
            for pid, line in zip(ids[:-1], lines):
                self.sink.render(pid, line)
            self.sink.render(ids[-1], "\n".join(lines[expected - 1:]))
        else:
            for pid, line in zip(ids, lines):
                self.sink.render(pid, line)
            for pid in ids[received:]:
                self.sink.hide(pid)


class EntirePageStrategy(TranslationStrategy):
    """All paragraphs in a single request, rendered into the first paragraph."""

    async def execute(self, paragraphs: Mapping[str, str]) -> None:
        if not paragraphs:
            return

        ids = sorted(paragraphs.keys(), key=_natural_key)
        combined = "\n".join(paragraphs[pid] for pid in ids)
        prompt = self.prompt_manager.get_translation_prompt(combined, "")

        def on_settle(result: TaskResult) -> None:
            if not result.ok:
                logger.error("Failed to translate page: %s", result.error)
                return
            translated = process_response(result.output)
            if translated is None:
                return
            self.sink.render(ids[0], translated)
            for pid in ids[1:]:
                self.sink.hide(pid)

        try:
            await self.translation_queue.enqueue(prompt, on_settle)
        finally:
            self.translation_queue.dispose()


STRATEGIES: Dict[str, type] = {
    "chunk": ChunkingStrategy,
    "single": SingleLineStrategy,
    "entire": EntirePageStrategy,
}


def create_strategy(
    config: TranslatorConfig,
    prompt_manager: PromptManager,
    queue_factory: QueueFactory,
    sink: Sink,
) -> TranslationStrategy:
    """
    Instantiate the strategy selected by ``config.translation_method``.

    Raises:
        ValueError: For an unknown method
    """
    try:
        cls = STRATEGIES[config.translation_method]
    except KeyError:
        raise ValueError(f"Unknown translation method: {config.translation_method}")
    return cls(config, prompt_manager, queue_factory, sink)
