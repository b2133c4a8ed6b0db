"""Tests for merging chunk interval proposals into a partition."""
from __future__ import annotations

import pytest

from novel_translator.interval_merger import (
    chunk_every,
    collect_pairs,
    merge_intervals,
    sanitize_contiguity,
    select_boundaries,
    summarize,
)


def _assert_partition(intervals, total):
    assert intervals[0][0] == 1
    assert intervals[-1][1] == total
    for (_, end), (start, _) in zip(intervals, intervals[1:]):
        assert start == end + 1
    for start, end in intervals:
        assert start <= end


class TestMergeIntervals:
    """Tests for merge_intervals()."""

    def test_clean_proposal_is_kept(self):
        """Verify agreeing proposals come back unchanged."""
        assert merge_intervals(10, [[1, 4], [5, 10]]) == [[1, 4], [5, 10]]

    def test_nearby_cuts_are_merged(self):
        """Verify boundaries disagreeing by one paragraph collapse into one cut."""
        proposals = [[[1, 4], [5, 10]], [[1, 5], [6, 10]], [[1, 5], [6, 10]]]
        result = merge_intervals(10, proposals)
        assert result == [[1, 5], [6, 10]]

    def test_overlapping_batches(self):
        """Verify [[1,5],[1,4],[6,10]] resolves to two chunks."""
        assert merge_intervals(10, [[1, 5], [1, 4], [6, 10]]) == [[1, 5], [6, 10]]

    def test_reversed_and_out_of_range_pairs(self):
        """Verify reversed pairs are swapped and endpoints clamped to [1, N]."""
        assert merge_intervals(10, [[12, 6], [0, 5]]) == [[1, 5], [6, 10]]

    def test_non_numeric_members_are_ignored(self):
        """Verify junk elements are skipped while numeric strings are accepted."""
        proposals = [[["x", 3]], [[1, "5"]], [[6.0, 10]], "nonsense", {"a": 1}]
        assert merge_intervals(10, proposals) == [[1, 5], [6, 10]]

    def test_single_interval_in_the_middle(self):
        """Verify uncovered head and tail become their own chunks."""
        result = merge_intervals(10, [[4, 6]])
        assert result == [[1, 3], [4, 6], [7, 10]]
        _assert_partition(result, 10)

    def test_fallback_when_nothing_usable(self):
        """Verify fixed-size chunks are returned for unusable input."""
        assert merge_intervals(130, "garbage") == [[1, 60], [61, 120], [121, 130]]
        assert merge_intervals(5, [], fallback_size=2) == [[1, 2], [3, 4], [5, 5]]

    def test_result_is_always_a_partition(self):
        """Verify messy proposals still produce a strict partition."""
        proposals = [[[1, 7], [3, 12]], [[2, 9], [10, 30]], [[25, 40], [33, 33]]]
        result = merge_intervals(40, proposals)
        _assert_partition(result, 40)

    def test_merging_a_merged_result_is_stable(self):
        """Verify a well-separated partition merges to itself."""
        first = merge_intervals(30, [[1, 10], [11, 20], [21, 30]])
        assert merge_intervals(30, first) == first

    def test_single_paragraph(self):
        """Verify N=1 yields one chunk."""
        assert merge_intervals(1, [[1, 1]]) == [[1, 1]]

    @pytest.mark.parametrize("total", [0, -3, 2.5, True, "10"])
    def test_invalid_total_raises(self, total):
        """Verify total must be a positive integer."""
        with pytest.raises(ValueError):
            merge_intervals(total, [[1, 2]])


class TestHelpers:
    """Tests for the merge building blocks."""

    def test_collect_pairs_recurses(self):
        assert collect_pairs([[[1, 2]], [[3, [4, 5]]]]) == [(1, 2), (4, 5)]

    def test_collect_pairs_ignores_booleans(self):
        assert collect_pairs([[True, 3]]) == []

    def test_chunk_every(self):
        assert chunk_every(7, 3) == [[1, 3], [4, 6], [7, 7]]

    def test_select_boundaries_always_includes_ends(self):
        assert select_boundaries([0, 0, 1, 0, 0], fuzz=0) == [0, 2, 4]

    def test_select_boundaries_prefers_weighted_mean(self):
        """Verify the cluster representative is nearest the vote-weighted mean."""
        counts = [1, 0, 0, 0, 2, 2, 0, 0, 0, 0, 1]
        assert select_boundaries(counts, fuzz=2) == [0, 5, 10]

    def test_sanitize_repairs_gap_overlap_and_tail(self):
        """Verify each repair kind and that anomalies are reported."""
        anomalies = []
        fixed = sanitize_contiguity([[1, 3], [5, 8], [7, 10]], 12, anomalies)
        assert fixed == [[1, 4], [5, 8], [9, 10], [11, 12]]
        assert len(anomalies) == 3
        assert anomalies[0].startswith("Gap detected")
        assert anomalies[1].startswith("Overlap detected")
        assert anomalies[2].startswith("Trailing gap detected")

    def test_sanitize_synthesizes_leading_interval(self):
        anomalies = []
        assert sanitize_contiguity([[3, 5]], 5, anomalies) == [[1, 2], [3, 5]]
        assert anomalies[0].startswith("Leading gap detected")

    def test_summarize(self):
        assert summarize([[1, 4], [5, 10]]) == {"chunks": 2, "min": 4, "max": 6, "mean": 5.0}
        assert summarize([])["chunks"] == 0
