"""Tests for the translation strategies."""
from __future__ import annotations

import asyncio
from typing import Dict

import pytest

from novel_translator.config import TranslatorConfig
from novel_translator.services.prompts import CHUNKING_SYSTEM_PROMPT, TRANSLATE_MARKER, PromptManager
from novel_translator.services.request_queue import RequestQueue, TaskResult
from novel_translator.services.strategies import (
    ChunkingBatch,
    ChunkingStrategy,
    EntirePageStrategy,
    SingleLineStrategy,
    create_strategy,
    process_response,
)
from novel_translator.sinks import MemorySink


def _echo_translation(user: str) -> str:
    source = user.split(TRANSLATE_MARKER, 1)[1].strip("\n")
    return "<translation>" + "\n".join(f"EN:{line}" for line in source.split("\n")) + "</translation>"


def _responder(chunking: str = "[]"):
    def respond(system: str, user: str) -> str:
        if system == CHUNKING_SYSTEM_PROMPT:
            return chunking
        return _echo_translation(user)
    return respond


class _QueueFactory:
    """Creates queues around one fake client and remembers them per stage."""

    def __init__(self, client, config):
        self.client = client
        self.config = config
        self.queues: Dict[str, RequestQueue] = {}

    def __call__(self, stage: str, label: str) -> RequestQueue:
        queue = RequestQueue.from_client(self.client, label=label, config=self.config)
        self.queues[stage] = queue
        return queue


def _run(strategy_cls, config, client, queue_config, paragraphs):
    sink = MemorySink()
    factory = _QueueFactory(client, queue_config)
    strategy = strategy_cls(config, PromptManager(config), factory, sink)
    asyncio.run(strategy.execute(paragraphs))
    return sink, factory


def _ok(output: str) -> TaskResult:
    return TaskResult(ok=True, payload=None, task_id=1, attempts=1, output=output)


class TestProcessResponse:
    def test_extracts_and_post_processes(self):
        assert process_response('<translation>"Hi"\n\n\nThere</translation>') == "“Hi”\nThere"

    def test_missing_tag_returns_none(self):
        assert process_response("Sorry, I cannot help with that.") is None


class TestSingleLineStrategy:
    """Tests for one request per paragraph."""

    def test_renders_each_non_empty_paragraph(self, make_client, fast_queue_config, base_config):
        client = make_client(_responder())
        paragraphs = {"p1": "一", "p2": "", "p3": "三"}

        sink, factory = _run(SingleLineStrategy, base_config, client, fast_queue_config, paragraphs)
        assert sink.rendered == {"p1": "EN:一", "p3": "EN:三"}
        assert len(client.calls) == 2
        assert not factory.queues["stage3b"].in_use

    def test_preceding_lines_sent_as_context(self, make_client, fast_queue_config):
        config = TranslatorConfig(stage3b="1-1", context_lines=1)
        client = make_client(_responder())
        _run(SingleLineStrategy, config, client, fast_queue_config, {"p1": "一", "p2": "二", "p3": "三"})

        last_user = client.calls[2][1]
        assert "preceding the text to be translated, for context:\n二" in last_user
        assert "一" not in last_user

    def test_unusable_response_leaves_paragraph_untouched(self, make_client, fast_queue_config, base_config):
        client = make_client(lambda s, u: "no tags here")
        sink, _ = _run(SingleLineStrategy, base_config, client, fast_queue_config, {"p1": "一"})
        assert sink.rendered == {}
        assert sink.hidden == set()

    def test_failed_request_not_rendered(self, make_client, fast_queue_config, base_config):
        def responder(system, user):
            raise RuntimeError("down")

        sink, factory = _run(SingleLineStrategy, base_config, make_client(responder), fast_queue_config, {"p1": "一"})
        assert sink.rendered == {}
        assert factory.queues["stage3b"].total_failures == 1


class TestChunkingBatches:
    """Tests for ChunkingStrategy.build_batches()."""

    def _strategy(self, **overrides) -> ChunkingStrategy:
        config = TranslatorConfig(stage3a="1-1", stage3b="1-1", **overrides)
        return ChunkingStrategy(config, PromptManager(config), lambda stage, label: None, MemorySink())

    def test_batches_overlap(self):
        batches = self._strategy(batch_char_limit=10, overlap_paragraphs=1).build_batches(
            ["aaaa", "bbbb", "cccc", "dddd"]
        )
        assert [(b.actual_start, b.actual_end) for b in batches] == [(1, 2), (2, 3), (3, 4)]

    def test_batches_without_overlap(self):
        batches = self._strategy(batch_char_limit=10, overlap_paragraphs=0).build_batches(
            ["aaaa", "bbbb", "cccc", "dddd"]
        )
        assert [(b.actual_start, b.actual_end) for b in batches] == [(1, 2), (3, 4)]

    def test_oversized_paragraph_forms_own_batch(self):
        batches = self._strategy(batch_char_limit=10).build_batches(["x" * 20, "y"])
        assert [(b.actual_start, b.actual_end) for b in batches] == [(1, 1), (2, 2)]

    def test_offset_renumbers_late_batches(self):
        batches = self._strategy(batch_char_limit=1, overlap_paragraphs=0).build_batches(["x"] * 25)
        assert len(batches) == 25
        assert batches[0].offset == 0
        assert batches[19].offset == 0
        assert batches[21].offset == 2
        assert batches[21].paragraphs == [(21, "x")]

    def test_every_batch_advances(self):
        """Verify large overlap cannot stall batching."""
        batches = self._strategy(batch_char_limit=4, overlap_paragraphs=10).build_batches(["ab"] * 6)
        starts = [b.actual_start for b in batches]
        assert starts == sorted(set(starts))
        assert batches[-1].actual_end == 6


class TestParseSuggestions:
    """Tests for ChunkingStrategy.parse_suggestions()."""

    batch = ChunkingBatch(paragraphs=[], offset=2, actual_start=22, actual_end=30)

    def test_maps_back_to_global_indices(self):
        assert ChunkingStrategy.parse_suggestions(_ok("[[20, 24], [25, 28]]"), self.batch, 0) == [[22, 26], [27, 30]]

    @pytest.mark.parametrize("output", [
        "[[19, 24]]",
        "[[20, 29]]",
        "[[24, 20]]",
        "[[1, 2, 3]]",
        "[[20, NaN]]",
        "[[20, Infinity]]",
        "[[-Infinity, 24]]",
        '[["a", 2]]',
        '{"a": 1}',
        "[]",
        "no json",
    ])
    def test_invalid_batch_discarded(self, output):
        assert ChunkingStrategy.parse_suggestions(_ok(output), self.batch, 0) == []

    def test_failed_request_discarded(self):
        failed = TaskResult(ok=False, payload=None, task_id=1, attempts=3, error=RuntimeError("x"))
        assert ChunkingStrategy.parse_suggestions(failed, self.batch, 0) == []


class TestMapLines:
    """Tests for distributing translated lines over paragraphs."""

    def _map(self, lines):
        sink = MemorySink()
        strategy = ChunkingStrategy(TranslatorConfig(), PromptManager(TranslatorConfig()), lambda stage, label: None, sink)
        strategy.map_lines(["a", "b", "c"], lines)
        return sink

    def test_equal_counts(self):
        sink = self._map(["1", "2", "3"])
        assert sink.rendered == {"a": "1", "b": "2", "c": "3"}

    def test_extra_lines_join_last_paragraph(self):
        sink = self._map(["1", "2", "3", "4"])
        assert sink.rendered == {"a": "1", "b": "2", "c": "3\n4"}

    def test_missing_lines_hide_paragraphs(self):
        sink = self._map(["1"])
        assert sink.rendered == {"a": "1"}
        assert sink.hidden == {"b", "c"}


class TestChunkingStrategy:
    """End-to-end chunking then translation."""

    def test_chunks_translated_and_mapped(self, make_client, fast_queue_config, base_config):
        texts = ["一", "二", "三", "四", "五", "六", "七", "八", "九", "十"]
        paragraphs = {f"p{i + 1}": t for i, t in enumerate(texts)}
        client = make_client(_responder("[[1, 4], [5, 10]]"))

        sink, factory = _run(ChunkingStrategy, base_config, client, fast_queue_config, paragraphs)

        assert sink.rendered == {pid: f"EN:{t}" for pid, t in paragraphs.items()}
        assert len(client.calls) == 3
        chunk_user = client.calls[0][1]
        assert "[1] 一" in chunk_user and "[10] 十" in chunk_user
        assert "Start: 1\nEnd: 10" in chunk_user
        second_chunk = client.calls[2][1]
        assert "for context:\n二\n三\n四" in second_chunk
        assert not factory.queues["stage3a"].in_use
        assert not factory.queues["stage3b"].in_use

    def test_unusable_chunking_falls_back(self, make_client, fast_queue_config, base_config):
        """Verify a garbage chunking answer still translates everything."""
        paragraphs = {"p1": "一", "p2": "二", "p3": "三"}
        client = make_client(_responder("I cannot do that"))

        sink, _ = _run(ChunkingStrategy, base_config, client, fast_queue_config, paragraphs)
        assert sink.rendered == {"p1": "EN:一", "p2": "EN:二", "p3": "EN:三"}
        assert len(client.calls) == 2

    def test_non_finite_chunk_bounds_fall_back(self, make_client, fast_queue_config, base_config):
        paragraphs = {"p1": "一", "p2": "二"}
        client = make_client(_responder("[[1, NaN]]"))

        sink, _ = _run(ChunkingStrategy, base_config, client, fast_queue_config, paragraphs)
        assert sink.rendered == {"p1": "EN:一", "p2": "EN:二"}

    def test_no_paragraphs_makes_no_calls(self, make_client, fast_queue_config, base_config):
        client = make_client(_responder())
        sink, factory = _run(ChunkingStrategy, base_config, client, fast_queue_config, {})
        assert client.calls == []
        assert factory.queues == {}


class TestEntirePageStrategy:
    def test_single_request_in_natural_order(self, make_client, fast_queue_config, base_config):
        """Verify p2 sorts before p10 and only the first paragraph is rendered."""
        client = make_client(_responder())
        paragraphs = {"p10": "十", "p2": "二", "p1": "一"}

        sink, _ = _run(EntirePageStrategy, base_config, client, fast_queue_config, paragraphs)
        assert len(client.calls) == 1
        assert client.calls[0][1].endswith(f"{TRANSLATE_MARKER}\n一\n二\n十")
        assert sink.rendered == {"p1": "EN:一\nEN:二\nEN:十"}
        assert sink.hidden == {"p2", "p10"}


class TestCreateStrategy:
    @pytest.mark.parametrize("method,cls", [
        ("chunk", ChunkingStrategy),
        ("single", SingleLineStrategy),
        ("entire", EntirePageStrategy),
    ])
    def test_known_methods(self, method, cls):
        config = TranslatorConfig(translation_method=method)
        assert isinstance(create_strategy(config, PromptManager(config), lambda stage, label: None, MemorySink()), cls)

    def test_unknown_method(self):
        config = TranslatorConfig.model_construct(translation_method="bogus")
        with pytest.raises(ValueError, match="Unknown translation method"):
            create_strategy(config, PromptManager(TranslatorConfig()), lambda stage, label: None, MemorySink())
