"""Tests for glossary models and merge action parsing."""
from __future__ import annotations

import pytest

from novel_translator.models import (
    ActionValidationError,
    AddEntryAction,
    AddKeyAction,
    DeleteAction,
    Glossary,
    GlossaryEntry,
    NoneAction,
    Proposal,
    UpdateAction,
    normalize_actions,
    parse_actions,
)


class TestGlossary:
    """Tests for the Glossary container."""

    def test_round_trip_dict(self, sample_glossary):
        data = sample_glossary.to_dict()
        assert data["entries"][0] == {
            "id": 1,
            "keys": ["東雲", "しののめ"],
            "value": "[character] Name: Shinonome (東雲) | Gender: Female",
        }
        assert Glossary.from_dict(data) == sample_glossary

    def test_from_empty(self):
        assert len(Glossary.from_dict(None)) == 0
        assert len(Glossary.from_dict({"entries": []})) == 0

    def test_max_id(self, sample_glossary):
        assert sample_glossary.max_id() == 3
        assert Glossary().max_id() == 0

    def test_find_conflicts_in_glossary_order(self, sample_glossary):
        conflicts = sample_glossary.find_conflicts(["京都", "しののめ"])
        assert [e.id for e in conflicts] == [1, 3]

    def test_clone_is_independent(self, sample_glossary):
        clone = sample_glossary.clone()
        clone.get(1).keys.append("新")
        clone.remove(2)
        assert sample_glossary.get(1).keys == ["東雲", "しののめ"]
        assert len(sample_glossary) == 3

    def test_duplicate_keys(self, sample_glossary):
        assert sample_glossary.duplicate_keys() == []
        sample_glossary.entries.append(GlossaryEntry(id=4, keys=["京都", "京都", "氷姫"], value="v"))
        assert sample_glossary.duplicate_keys() == [("京都", 3, 4), ("氷姫", 2, 4)]

    def test_remove_missing_returns_false(self, sample_glossary):
        assert sample_glossary.remove(99) is False

    def test_entry_shares_key(self):
        entry = GlossaryEntry(id=1, keys=["a", "b"], value="v")
        assert entry.shares_key(["x", "b"])
        assert not entry.shares_key(["x"])

    def test_proposal_from_dict(self):
        proposal = Proposal.from_dict({"keys": ["氷姫"], "value": "v"})
        assert proposal.to_dict() == {"keys": ["氷姫"], "value": "v"}


class TestNormalizeActions:
    def test_single_object_is_wrapped(self):
        assert normalize_actions({"action": "none"}) == [{"action": "none"}]

    def test_list_is_unchanged(self):
        raw = [{"action": "delete", "id": 7}]
        assert normalize_actions(raw) is raw


class TestParseActions:
    """Tests for parse_actions() validation."""

    def test_all_variants(self):
        raw = [
            {"action": "none"},
            {"action": "add_entry"},
            {"action": "delete", "id": 1},
            {"action": "update", "id": 2, "data": "new value"},
            {"action": "add_key", "id": 2, "data": ["こおりひめ"]},
            {"action": "del_key", "id": 1, "data": ["東雲"]},
        ]
        actions = parse_actions(raw, conflict_ids=[1, 2])
        assert isinstance(actions[0], NoneAction)
        assert isinstance(actions[1], AddEntryAction)
        assert isinstance(actions[2], DeleteAction)
        assert isinstance(actions[3], UpdateAction) and actions[3].data == "new value"
        assert isinstance(actions[4], AddKeyAction) and actions[4].data == ["こおりひめ"]
        assert actions[5].action == "del_key"

    def test_unknown_action_rejected(self):
        with pytest.raises(ActionValidationError, match=r"Action 0 \(rename\)"):
            parse_actions([{"action": "rename", "id": 1}], conflict_ids=[1])

    def test_add_entry_with_id_rejected(self):
        with pytest.raises(ActionValidationError, match="add_entry should not have"):
            parse_actions([{"action": "add_entry", "id": 1}], conflict_ids=[1])

    def test_delete_with_data_rejected(self):
        with pytest.raises(ActionValidationError, match="delete should not have"):
            parse_actions([{"action": "delete", "id": 1, "data": "x"}], conflict_ids=[1])

    def test_update_requires_string_data(self):
        with pytest.raises(ActionValidationError, match=r"Action 0 \(update\)"):
            parse_actions([{"action": "update", "id": 1, "data": ["x"]}], conflict_ids=[1])

    def test_add_key_requires_list_of_strings(self):
        with pytest.raises(ActionValidationError):
            parse_actions([{"action": "add_key", "id": 1, "data": "x"}], conflict_ids=[1])

    @pytest.mark.parametrize("bad_id", [0, -1, "1", 1.5, True])
    def test_id_must_be_positive_integer(self, bad_id):
        with pytest.raises(ActionValidationError):
            parse_actions([{"action": "delete", "id": bad_id}], conflict_ids=[1])

    def test_id_outside_conflict_set_rejected(self):
        """Verify the model may only target entries it was shown."""
        with pytest.raises(ActionValidationError, match="id 5 not in conflict set"):
            parse_actions([{"action": "none"}, {"action": "delete", "id": 5}], conflict_ids=[1, 2])

    def test_non_dict_action_rejected(self):
        with pytest.raises(ActionValidationError, match=r"Action 0 \(None\)"):
            parse_actions(["delete"], conflict_ids=[1])

    def test_one_bad_action_rejects_batch(self):
        raw = [{"action": "delete", "id": 1}, {"action": "update", "id": 1}]
        with pytest.raises(ActionValidationError, match=r"Action 1"):
            parse_actions(raw, conflict_ids=[1])
