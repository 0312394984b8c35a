"""Tests for the document filter evaluator and the update operators."""
import pytest

from database.updates import apply_update
from utils.conditions import evaluate_condition, get_nested_value, matches


class TestGetNestedValue:
    def test_flat_key(self):
        assert get_nested_value({"name": "Alice"}, "name") == "Alice"

    def test_nested_key(self):
        data = {"location": {"latitude": 40.7, "longitude": -74.0}}
        assert get_nested_value(data, "location.latitude") == 40.7

    def test_missing_key(self):
        assert get_nested_value({"a": 1}, "b") is None

    def test_through_non_dict(self):
        assert get_nested_value({"a": [1, 2]}, "a.b") is None


class TestEvaluateCondition:
    def test_plain_equality(self):
        assert evaluate_condition("status", "SENT", {"status": "SENT"})
        assert not evaluate_condition("status", "SENT", {"status": "EXPIRED"})

    def test_eq_ne(self):
        doc = {"current_group": "g1"}
        assert evaluate_condition("current_group", {"$eq": "g1"}, doc)
        assert evaluate_condition("current_group", {"$ne": "g2"}, doc)
        assert not evaluate_condition("current_group", {"$ne": "g1"}, doc)

    def test_in_scalar(self):
        assert evaluate_condition("status", {"$in": ["SENT", "EXPIRED"]}, {"status": "SENT"})
        assert not evaluate_condition("status", {"$in": ["EXPIRED"]}, {"status": "SENT"})

    def test_in_array_field(self):
        doc = {"invited_members": ["u1", "u2"]}
        assert evaluate_condition("invited_members", {"$in": ["u2"]}, doc)
        assert not evaluate_condition("invited_members", {"$in": ["u3"]}, doc)
        assert evaluate_condition("invited_members", {"$nin": ["u3"]}, doc)

    def test_exists(self):
        assert evaluate_condition("queue_id", {"$exists": True}, {"queue_id": "job_1"})
        assert evaluate_condition("queue_id", {"$exists": False}, {})

    def test_elem_match(self):
        doc = {"reactions": [{"user_id": "u1", "emoji": "🔥"}, {"user_id": "u2", "emoji": "🎉"}]}
        assert evaluate_condition("reactions", {"$elemMatch": {"user_id": "u2", "emoji": "🎉"}}, doc)
        assert not evaluate_condition("reactions", {"$elemMatch": {"user_id": "u1", "emoji": "🎉"}}, doc)

    def test_elem_match_on_non_list(self):
        assert not evaluate_condition("reactions", {"$elemMatch": {"user_id": "u1"}}, {"reactions": None})

    def test_not_elem_match(self):
        doc = {"reactions": [{"user_id": "u1", "emoji": "🔥"}]}
        absent = {"$not": {"$elemMatch": {"user_id": "u1", "emoji": "🎉"}}}
        present = {"$not": {"$elemMatch": {"user_id": "u1", "emoji": "🔥"}}}
        assert evaluate_condition("reactions", absent, doc)
        assert not evaluate_condition("reactions", present, doc)
        assert evaluate_condition("reactions", present, {})

    def test_unknown_operator_raises(self):
        with pytest.raises(ValueError):
            evaluate_condition("status", {"$regex": "S.*"}, {"status": "SENT"})

    def test_matches_is_and(self):
        doc = {"status": "SENT", "sender_id": "u1"}
        assert matches(doc, {"status": "SENT", "sender_id": "u1"})
        assert not matches(doc, {"status": "SENT", "sender_id": "u2"})

    def test_empty_condition_matches(self):
        assert matches({"a": 1}, None)
        assert matches({"a": 1}, {})


class TestApplyUpdate:
    def test_set_and_unset(self):
        doc = {"id": "p1", "status": "SENT", "queue_id": "job_1"}
        assert apply_update(doc, {"$set": {"status": "EXPIRED"}, "$unset": {"queue_id": ""}})
        assert doc == {"id": "p1", "status": "EXPIRED"}

    def test_set_same_value_is_not_a_change(self):
        doc = {"status": "SENT"}
        assert not apply_update(doc, {"$set": {"status": "SENT"}})

    def test_unset_missing_is_not_a_change(self):
        assert not apply_update({"id": "u1"}, {"$unset": {"current_group": ""}})

    def test_push_and_add_to_set(self):
        doc = {"members": ["u1"]}
        apply_update(doc, {"$push": {"invited_members": "u2"}})
        assert doc["invited_members"] == ["u2"]
        assert not apply_update(doc, {"$addToSet": {"members": "u1"}})
        assert apply_update(doc, {"$addToSet": {"members": "u3"}})
        assert doc["members"] == ["u1", "u3"]

    def test_pull_scalar(self):
        doc = {"invited_groups": ["g1", "g2", "g1"]}
        assert apply_update(doc, {"$pull": {"invited_groups": "g1"}})
        assert doc["invited_groups"] == ["g2"]
        assert not apply_update(doc, {"$pull": {"invited_groups": "g9"}})

    def test_pull_subdocument_match(self):
        doc = {"reactions": [
            {"user_id": "u1", "emoji": "🔥", "queue_id": "job_1"},
            {"user_id": "u1", "emoji": "🎉", "queue_id": "job_2"},
        ]}
        assert apply_update(doc, {"$pull": {"reactions": {"user_id": "u1", "emoji": "🔥"}}})
        assert [r["emoji"] for r in doc["reactions"]] == ["🎉"]

    def test_positional_set(self):
        doc = {"reactions": [
            {"user_id": "u1", "emoji": "🔥"},
            {"user_id": "u2", "emoji": "🔥"},
        ]}
        condition = {"reactions": {"$elemMatch": {"user_id": "u2", "emoji": "🔥"}}}
        apply_update(doc, {"$set": {"reactions.$.queue_id": "job_9"}}, condition)
        assert "queue_id" not in doc["reactions"][0]
        assert doc["reactions"][1]["queue_id"] == "job_9"

    def test_positional_without_elem_match_raises(self):
        with pytest.raises(ValueError):
            apply_update({"reactions": []}, {"$set": {"reactions.$.queue_id": "x"}})

    def test_unknown_operator_raises(self):
        with pytest.raises(ValueError):
            apply_update({}, {"$inc": {"count": 1}})
