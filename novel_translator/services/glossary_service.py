"""
Glossary generation and merging.

Stage 1 asks a model for candidate entries in each block of source text,
without showing it the existing glossary. Stage 2 merges the candidates
into the glossary:

- A candidate sharing no key with any entry is appended directly
- Otherwise the model is shown the conflicting entries and answers with
  merge actions (update, delete, add_key, del_key, add_entry, none)

Stage 2 merges run concurrently. Each candidate locks its own keys and the
keys of every entry it conflicts with; a candidate is only sent while its
lock set is disjoint from those of the calls in flight, so no two calls can
touch the same entries.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from ..extraction import extract_json
from ..logging_utils import log
from ..models.actions import (
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
from ..models.glossary import Glossary, GlossaryEntry, Proposal
from .prompts import build_merge_prompt, build_stage1_prompt
from .request_queue import RequestQueue, TaskResult

logger = logging.getLogger(__name__)

_VALUE_PATTERN = re.compile(r"^\[.*] .*$")


def validate_stage1_response(obj: Any) -> bool:
    """
    Check the shape of a glossary generation response.

    Expects ``{"entries": [{"keys": [...], "value": "[category] ..."}, ...]}``
    with non-empty, unique, string keys.
    """
    if not isinstance(obj, dict) or not isinstance(obj.get("entries"), list):
        return False

    for entry in obj["entries"]:
        if not isinstance(entry, dict):
            return False
        keys = entry.get("keys")
        value = entry.get("value")
        if not isinstance(keys, list) or not keys:
            return False
        if not all(isinstance(k, str) for k in keys) or len(set(keys)) != len(keys):
            return False
        if not isinstance(value, str) or not _VALUE_PATTERN.match(value):
            return False
    return True


def chunk_texts(texts: Iterable[str], max_chars: int) -> List[str]:
    """
    Join texts with newlines into blocks of at most ``max_chars`` characters.

    A single text longer than the limit forms its own block.
    """
    chunks: List[str] = []
    current = ""
    for text in texts:
        if current and len(current) + len(text) > max_chars:
            chunks.append(current)
            current = text
        else:
            current = f"{current}\n{text}" if current else text
    if current:
        chunks.append(current)
    return chunks


class Stage1Generator:
    """Generates candidate glossary entries from source text."""

    def __init__(self, queue: RequestQueue, chunk_size: int = 4000):
        self.queue = queue
        self.chunk_size = chunk_size

    async def generate(self, texts: Sequence[str]) -> List[Proposal]:
        prompts = [build_stage1_prompt(chunk) for chunk in chunk_texts(texts, self.chunk_size)]
        if not prompts:
            self.queue.dispose()
            return []

        def on_settle(result: TaskResult) -> None:
            if not result.ok:
                logger.error("[Stage 1] Task %d failed: %s", result.task_id, result.error)

        try:
            results = await self.queue.enqueue_all(prompts, on_settle)
        finally:
            self.queue.dispose()
        return self.consolidate(results)

    @staticmethod
    def consolidate(results: Sequence[TaskResult]) -> List[Proposal]:
        """Collect the entries of every successful, well-formed response."""
        proposals: List[Proposal] = []
        for result in results:
            if not result.ok:
                continue
            parsed = extract_json(result.output)
            if not validate_stage1_response(parsed):
                logger.warning("[Stage 1] Task %d returned an invalid glossary response", result.task_id)
                continue
            proposals.extend(Proposal.from_dict(entry) for entry in parsed["entries"])
        return proposals


@dataclass
class _InFlightMerge:
    proposal: Proposal
    conflict_ids: List[int]
    lock_keys: Set[str]


@dataclass
class MergeStats:
    """Outcome counts of one merge pass."""
    added_directly: int = 0
    merged: int = 0
    rejected: int = 0
    failed: int = 0


class GlossaryConflictResolver:
    """
    Merges candidate entries into a glossary with concurrent model calls.

    Selection of the next batch of calls and application of finished calls
    both run under one asyncio.Lock, so the glossary and the lock set are
    only ever mutated by one of them at a time.

    Usage:
        resolver = GlossaryConflictResolver(queue)
        updated = await resolver.update(glossary, proposals)
    """

    def __init__(self, queue: RequestQueue):
        self.queue = queue
        self.next_id = 1
        self.stats = MergeStats()
        self._mutex = asyncio.Lock()
        self._used_keys: Set[str] = set()

    @property
    def locked_keys(self) -> Set[str]:
        """Union of the lock sets of all calls in flight."""
        return set(self._used_keys)

    async def update(self, glossary: Glossary, proposals: Sequence[Proposal]) -> Glossary:
        """
        Merge ``proposals`` into a copy of ``glossary``.

        The input glossary is not modified.
        """
        working = glossary.clone()
        self.next_id = working.max_id() + 1
        self.stats = MergeStats()

        pending: List[Proposal] = list(proposals)
        in_flight: Dict[asyncio.Future, _InFlightMerge] = {}

        try:
            await self._schedule(working, pending, in_flight)

            while pending or in_flight:
                if not in_flight:
                    await self._schedule(working, pending, in_flight)
                    if not in_flight:
                        break

                done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
                for future in done:
                    merge = in_flight.pop(future)
                    async with self._mutex:
                        self._apply_result(working, merge, future.result())
                        self._used_keys.difference_update(merge.lock_keys)

                await self._schedule(working, pending, in_flight)
        finally:
            self.queue.dispose()

        log(
            f"Glossary merge complete: {self.stats.added_directly} added, {self.stats.merged} merged, "
            f"{self.stats.rejected} rejected, {self.stats.failed} failed"
        )
        return working

    async def _schedule(
        self,
        working: Glossary,
        pending: List[Proposal],
        in_flight: Dict[asyncio.Future, _InFlightMerge],
    ) -> None:
        """Greedy pass over pending proposals in their original order."""
        async with self._mutex:
            i = 0
            while i < len(pending):
                proposal = pending[i]
                conflicts = working.find_conflicts(proposal.keys)
                lock_keys = set(proposal.keys)
                for entry in conflicts:
                    lock_keys.update(entry.keys)

                if lock_keys & self._used_keys:
                    i += 1
                    continue

                if not conflicts:
                    self._add_entry(working, proposal)
                    self.stats.added_directly += 1
                    pending.pop(i)
                    continue

                self._used_keys.update(lock_keys)
                future = self.queue.enqueue(build_merge_prompt(conflicts, proposal))
                in_flight[future] = _InFlightMerge(
                    proposal=proposal,
                    conflict_ids=[entry.id for entry in conflicts],
                    lock_keys=lock_keys,
                )
                pending.pop(i)

    def _apply_result(self, working: Glossary, merge: _InFlightMerge, result: TaskResult) -> None:
        if not result.ok:
            logger.warning("Glossary update call failed for keys %s: %s", merge.proposal.keys, result.error)
            self.stats.failed += 1
            return

        parsed = extract_json(result.output)
        try:
            actions = parse_actions(normalize_actions(parsed), merge.conflict_ids)
        except ActionValidationError as e:
            logger.error("Action validation failed: %s", e)
            self.stats.rejected += 1
            return

        # Apply to a scratch copy; the batch is only committed if every key keeps a single owner.
        scratch = working.clone()
        next_id = self.next_id
        self.execute_actions(scratch, actions, merge.proposal)
        duplicates = scratch.duplicate_keys()
        if duplicates:
            self.next_id = next_id
            logger.error(
                "Action validation failed: keys would be shared by two entries %s",
                [f"{key} ({a}, {b})" for key, a, b in duplicates],
            )
            self.stats.rejected += 1
            return

        working.entries[:] = scratch.entries
        self.stats.merged += 1

    def execute_actions(self, working: Glossary, actions: Sequence[MergeAction], proposal: Proposal) -> None:
        """Apply validated actions in order."""
        for action in actions:
            if isinstance(action, NoneAction):
                continue
            if isinstance(action, AddEntryAction):
                self._add_entry(working, proposal)
                continue

            entry = working.get(action.id)
            if entry is None:
                logger.warning("%s action: entry %d not found", action.action, action.id)
                continue

            if isinstance(action, UpdateAction):
                entry.value = action.data
            elif isinstance(action, DeleteAction):
                working.remove(action.id)
            elif isinstance(action, AddKeyAction):
                entry.keys = list(dict.fromkeys(entry.keys + action.data))
            elif isinstance(action, DelKeyAction):
                removed = set(action.data)
                entry.keys = [k for k in entry.keys if k not in removed]
                if not entry.keys:
                    logger.warning("del_key left entry %d without keys", entry.id)

    def _add_entry(self, working: Glossary, proposal: Proposal) -> GlossaryEntry:
        entry = GlossaryEntry(id=self.next_id, keys=list(proposal.keys), value=proposal.value)
        self.next_id += 1
        working.entries.append(entry)
        return entry


class GlossaryManager:
    """Runs glossary generation followed by merging."""

    def __init__(self, stage1: Stage1Generator, stage2: GlossaryConflictResolver):
        self.stage1 = stage1
        self.stage2 = stage2

    async def generate_and_update(self, glossary: Glossary, texts: Sequence[str]) -> Glossary:
        proposals = await self.stage1.generate(texts)
        log(f"Stage 1 complete: generated {len(proposals)} new entries")

        updated = await self.stage2.update(glossary, proposals)
        log(f"Stage 2 complete: glossary now has {len(updated)} entries")
        return updated
