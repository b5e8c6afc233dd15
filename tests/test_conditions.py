"""Tests for step condition evaluation."""

import pytest

from mockchain.service.conditions import evaluate, strict_equals


class TestConditionDefaults:
    def test_absent_condition_runs(self):
        assert evaluate(None, {}, None) is True
        assert evaluate("", {"res": {"status": 500}}, {"status": 500}) is True

    def test_boolean_is_returned_as_is(self):
        assert evaluate(True) is True
        assert evaluate(False, {"res": {"status": 200}}) is False

    def test_number_compares_root_status_without_prev(self):
        assert evaluate(404, {"res": {"status": 404}}, None) is True

    def test_number_prefers_prev_status(self):
        assert evaluate(404, {"res": {"status": 404}}, {"status": 500}) is False
        assert evaluate(500, {"res": {"status": 404}}, {"status": 500}) is True

    def test_number_matches_numeric_string_status(self):
        assert evaluate(201, {"res": {"status": "201"}}) is True

    def test_unsupported_type_is_false(self):
        assert evaluate(["eq"], {}, None) is False


class TestRuleConditions:
    prev = {"status": 201, "body": {"id": 7, "tags": ["a"], "ok": True, "empty": []}}
    root = {"res": {"status": 200, "body": {"id": 1}}}

    def test_source_defaults_to_prev(self):
        assert evaluate({"path": "body.id", "op": "eq", "value": 7}, self.root, self.prev)

    def test_source_defaults_to_root_without_prev(self):
        assert evaluate({"path": "body.id", "op": "eq", "value": 1}, self.root, None)

    def test_explicit_root_source(self):
        assert evaluate(
            {"source": "root", "path": "status", "op": "eq", "value": 200}, self.root, self.prev
        )

    def test_eq_is_strict(self):
        assert not evaluate({"path": "body.id", "op": "eq", "value": "7"}, self.root, self.prev)
        assert evaluate({"path": "body.id", "op": "neq", "value": "7"}, self.root, self.prev)

    def test_gt_lt_numeric(self):
        assert evaluate({"path": "status", "op": "gt", "value": 199}, self.root, self.prev)
        assert evaluate({"path": "status", "op": "lt", "value": "300"}, self.root, self.prev)
        assert not evaluate({"path": "body.missing", "op": "gt", "value": 0}, self.root, self.prev)

    def test_null_compares_as_zero(self):
        prev = {"status": 200, "body": {"score": None}}
        assert evaluate({"path": "body.score", "op": "lt", "value": 5}, self.root, prev)
        assert not evaluate({"path": "body.score", "op": "gt", "value": 0}, self.root, prev)
        assert evaluate({"path": "body.score", "op": "gt", "value": -1}, self.root, prev)

    def test_in_and_notin(self):
        assert evaluate({"path": "status", "op": "in", "value": [200, 201]}, self.root, self.prev)
        assert evaluate({"path": "status", "op": "notin", "value": [404]}, self.root, self.prev)

    def test_in_requires_list_value(self):
        assert not evaluate({"path": "status", "op": "in", "value": 201}, self.root, self.prev)

    def test_exists(self):
        assert evaluate({"path": "body.id", "op": "exists"}, self.root, self.prev)
        assert not evaluate({"path": "body.nope", "op": "exists"}, self.root, self.prev)

    def test_truey_is_default_op(self):
        assert evaluate({"path": "body.ok"}, self.root, self.prev)
        assert evaluate({"path": "body.empty"}, self.root, self.prev)
        assert not evaluate({"path": "body.nope"}, self.root, self.prev)

    def test_unknown_op_is_false(self):
        assert evaluate({"path": "status", "op": "between", "value": 1}, self.root, self.prev) is False

    def test_prev_source_without_prev(self):
        assert evaluate({"source": "prev", "path": "status", "op": "exists"}, self.root, None) is False


@pytest.mark.parametrize(
    "left,right,expected",
    [
        (1, 1.0, True),
        (1, "1", False),
        (True, 1, False),
        (None, None, True),
        ({"a": 1}, {"a": 1}, True),
    ],
)
def test_strict_equals(left, right, expected):
    assert strict_equals(left, right) is expected
