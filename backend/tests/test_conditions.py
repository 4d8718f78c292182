"""Tests for condition evaluation."""

import pytest

from workflow.conditions import evaluate_condition


@pytest.mark.unit
class TestLiteralConditions:
    def test_booleans(self):
        assert evaluate_condition(True, {}) is True
        assert evaluate_condition(False, {}) is False

    def test_string_literals_case_insensitive(self):
        assert evaluate_condition("true", {}) is True
        assert evaluate_condition("TRUE", {}) is True
        assert evaluate_condition(" False ", {}) is False

    def test_unsupported_types_are_false(self):
        assert evaluate_condition(None, {}) is False
        assert evaluate_condition(1, {}) is False
        assert evaluate_condition(["true"], {}) is False


@pytest.mark.unit
class TestStringExpressions:
    def test_resolved_comparison(self):
        outputs = {"s1": {"count": 5}}
        assert evaluate_condition("{{s1.count}} > 3", outputs) is True
        assert evaluate_condition("{{s1.count}} > 10", outputs) is False

    def test_resolved_to_true_literal(self):
        assert evaluate_condition("{{s1.ok}}", {"s1": {"ok": True}}) is True

    def test_unevaluable_expression_is_false(self):
        assert evaluate_condition("{{missing.x}} > 3", {}) is False
        assert evaluate_condition("import os", {}) is False
        assert evaluate_condition("1 / 0", {}) is False

    def test_deeply_nested_value_is_false(self):
        outputs = {"s": {"v": "(" * 5000 + "1" + ")" * 5000}}
        assert evaluate_condition("{{s.v}} > 0", outputs) is False
        assert evaluate_condition("{{s.v}} > 0", {"s": {"v": "-" * 5000 + "1"}}) is False


@pytest.mark.unit
class TestStructuredConditions:
    def test_equals_after_resolution(self):
        condition = {"operator": "equals", "left": "{{s.x}}", "right": "5"}
        assert evaluate_condition(condition, {"s": {"x": 5}}) is True

    def test_not_equals(self):
        condition = {"operator": "not_equals", "left": "a", "right": "b"}
        assert evaluate_condition(condition, {}) is True

    def test_greater_than(self):
        condition = {"operator": "greater_than", "left": "10", "right": 9}
        assert evaluate_condition(condition, {}) is True

    def test_greater_than_non_numeric_is_false(self):
        condition = {"operator": "greater_than", "left": "abc", "right": "1"}
        assert evaluate_condition(condition, {}) is False

    def test_less_than(self):
        condition = {"operator": "less_than", "left": 1.5, "right": "2"}
        assert evaluate_condition(condition, {}) is True

    def test_contains(self):
        condition = {"operator": "contains", "left": "hello world", "right": "world"}
        assert evaluate_condition(condition, {}) is True

    def test_not_empty(self):
        assert evaluate_condition({"operator": "not_empty", "left": ""}, {}) is False
        assert evaluate_condition({"operator": "not_empty", "left": None}, {}) is False
        assert evaluate_condition({"operator": "not_empty", "left": "x"}, {}) is True

    def test_unknown_operator_is_false(self):
        assert evaluate_condition({"operator": "matches", "left": "a", "right": "a"}, {}) is False
        assert evaluate_condition({"left": "a"}, {}) is False
