"""
Merge fuzzy paragraph-interval proposals into a clean partition.

Chunking proposals come from several overlapping batches, each answered
by a separate model call. They overlap, disagree by a paragraph or two,
run out of range, or are not intervals at all. This module turns them into
one strict partition of ``[1, N]``:

1. Flatten and normalize the proposals (clamp, swap, dedupe, sort)
2. Let every interval vote for a cut before its start and after its end
3. Cluster nearby cuts within ``fuzz`` and keep one cut per cluster
4. Build intervals between cuts and repair any gaps or overlaps

If nothing usable survives normalization, fixed-size chunks are returned.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

Interval = List[int]

DEFAULT_FUZZ = 2
DEFAULT_FALLBACK_SIZE = 60


def _to_int(value: Any) -> Optional[int]:
    """Coerce a proposal endpoint to int, or None if it is not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return int(number) if math.isfinite(number) else None
    return None


def collect_pairs(node: Any, acc: Optional[List[Tuple[int, int]]] = None) -> List[Tuple[int, int]]:
    """
    Recursively collect ``[start, end]`` pairs from any nested list structure.

    A two-element list whose members are both numeric is a pair; any other
    list is searched recursively. Non-list values are ignored.
    """
    if acc is None:
        acc = []
    if not isinstance(node, (list, tuple)):
        return acc

    if len(node) == 2:
        start, end = _to_int(node[0]), _to_int(node[1])
        if start is not None and end is not None:
            acc.append((start, end))
            return acc

    for child in node:
        collect_pairs(child, acc)
    return acc


def normalize_intervals(pairs: Sequence[Tuple[int, int]], total: int) -> List[Interval]:
    """Swap reversed pairs, clamp to [1, total], dedupe and sort."""
    seen = set()
    normalized: List[Interval] = []
    for start, end in pairs:
        if start > end:
            start, end = end, start
        start = max(1, min(total, start))
        end = max(1, min(total, end))
        if start > end or (start, end) in seen:
            continue
        seen.add((start, end))
        normalized.append([start, end])
    normalized.sort()
    return normalized


def chunk_every(total: int, size: int) -> List[Interval]:
    """Fixed-size fallback chunking of [1, total]."""
    step = max(1, int(size or 1))
    return [[start, min(total, start + step - 1)] for start in range(1, total + 1, step)]


def build_boundary_votes(intervals: Sequence[Interval], total: int) -> List[int]:
    """
    Count cut votes per boundary.

    Boundary k is a cut after paragraph k, for k in [0, total].
    """
    counts = [0] * (total + 1)
    for start, end in intervals:
        counts[start - 1] += 1
        counts[end] += 1
    return counts


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def select_boundaries(counts: Sequence[int], fuzz: int) -> List[int]:
    """
    Cluster voted boundaries and pick one representative per cluster.

    Consecutive voted boundaries at most ``fuzz`` apart form a cluster. A
    multi-member cluster is represented by the member nearest its
    vote-weighted mean; ties go to the higher vote, then the lower index.
    Boundaries 0 and N are always included.
    """
    total = len(counts) - 1
    positions = [k for k, votes in enumerate(counts) if votes > 0]
    if not positions:
        return [0, total]

    clusters: List[List[int]] = []
    current = [positions[0]]
    for position in positions[1:]:
        if position - current[-1] <= fuzz:
            current.append(position)
        else:
            clusters.append(current)
            current = [position]
    clusters.append(current)

    chosen = []
    for cluster in clusters:
        if len(cluster) == 1:
            chosen.append(cluster[0])
            continue

        weight = sum(counts[p] for p in cluster)
        mean = _round_half_up(sum(counts[p] * p for p in cluster) / weight)
        best = min(cluster, key=lambda p: (abs(p - mean), -counts[p], p))
        chosen.append(best)

    chosen.extend([0, total])
    return sorted(set(chosen))


def intervals_from_boundaries(boundaries: Sequence[int]) -> List[Interval]:
    """Build ``[b_i + 1, b_{i+1}]`` intervals between consecutive cuts."""
    out = []
    for left, right in zip(boundaries, boundaries[1:]):
        if left + 1 <= right:
            out.append([left + 1, right])
    return out


def sanitize_contiguity(
    intervals: Sequence[Interval],
    total: int,
    anomalies: Optional[List[str]] = None,
) -> List[Interval]:
    """
    Repair gaps and overlaps so the result is a strict partition of [1, total].

    - Overlap: the start of the later interval is trimmed
    - Gap: the previous interval is extended (or a leading one synthesized)
    - Missing tail: a trailing interval is synthesized

    Every repair is logged as a warning and appended to ``anomalies``.
    """

    def report(message: str) -> None:
        logger.warning("[chunk-merge] %s", message)
        if anomalies is not None:
            anomalies.append(message)

    fixed: List[Interval] = []
    expected_start = 1

    for start, end in sorted([list(i) for i in intervals]):
        if end < expected_start:
            continue

        if start > expected_start:
            if fixed:
                previous = fixed[-1]
                report(f"Gap detected: extending previous {previous} to [{previous[0]}, {start - 1}]")
                previous[1] = start - 1
            else:
                report(f"Leading gap detected: synthesizing [{expected_start}, {start - 1}]")
                fixed.append([expected_start, start - 1])

        if start < expected_start:
            report(f"Overlap detected: trimming start of [{start}, {end}] to {expected_start}")
            start = expected_start

        start = max(1, min(total, start))
        end = max(1, min(total, end))
        if start <= end:
            fixed.append([start, end])
            expected_start = end + 1

    if expected_start <= total:
        report(f"Trailing gap detected: synthesizing [{expected_start}, {total}]")
        fixed.append([expected_start, total])

    return fixed


def merge_intervals(
    total: int,
    proposals: Any,
    fuzz: int = DEFAULT_FUZZ,
    fallback_size: int = DEFAULT_FALLBACK_SIZE,
    anomalies: Optional[List[str]] = None,
) -> List[Interval]:
    """
    Merge fuzzy interval proposals into a partition of [1, total].

    Args:
        total: Number of paragraphs N (must be a positive integer)
        proposals: Arbitrarily nested lists of ``[start, end]`` pairs
        fuzz: Radius within which nearby cuts are merged
        fallback_size: Chunk size used when no proposal is usable
        anomalies: Optional list that receives a message per repair

    Returns:
        Sorted, contiguous, non-overlapping intervals covering 1..total

    Raises:
        ValueError: If total is not a positive integer
    """
    if isinstance(total, bool) or not isinstance(total, int) or total <= 0:
        raise ValueError("total must be a positive integer")

    logger.debug("Merging the following intervals: %s", proposals)

    intervals = normalize_intervals(collect_pairs(proposals), total)
    if not intervals:
        logger.warning("Unable to read chunking suggestions, using fallback.")
        return chunk_every(total, fallback_size)

    counts = build_boundary_votes(intervals, total)
    boundaries = select_boundaries(counts, fuzz)
    merged = sanitize_contiguity(intervals_from_boundaries(boundaries), total, anomalies)

    if not merged:
        logger.warning("Unable to read chunking suggestions, using fallback.")
        return chunk_every(total, fallback_size)

    logger.debug("Merged intervals for splitting: %s", merged)
    return merged


def summarize(intervals: Sequence[Interval]) -> Dict[str, Any]:
    """Basic statistics about a partition, for logging."""
    sizes = [end - start + 1 for start, end in intervals]
    if not sizes:
        return {"chunks": 0, "min": 0, "max": 0, "mean": 0.0}
    return {
        "chunks": len(sizes),
        "min": min(sizes),
        "max": max(sizes),
        "mean": round(sum(sizes) / len(sizes), 2),
    }
