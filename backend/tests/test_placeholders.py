"""Tests for {{stepId.field}} placeholder resolution."""

import pytest

from workflow.placeholders import resolve_placeholders, resolve_value


@pytest.mark.unit
class TestResolvePlaceholders:
    """Token substitution against accumulated outputs."""

    def test_text_without_tokens_is_unchanged(self):
        assert resolve_placeholders("plain text", {"s1": {"a": 1}}) == "plain text"

    def test_substitutes_known_field(self):
        result = resolve_placeholders("{{s1.name}}", {"s1": {"name": "Ada"}})
        assert result == "Ada"

    def test_substitutes_inside_text(self):
        outputs = {"s1": {"id": 7}}
        assert resolve_placeholders("/users/{{s1.id}}/orders", outputs) == "/users/7/orders"

    def test_multiple_tokens(self):
        outputs = {"a": {"x": "1"}, "b": {"y": "2"}}
        assert resolve_placeholders("{{a.x}}-{{b.y}}", outputs) == "1-2"

    def test_unknown_step_keeps_token(self):
        assert resolve_placeholders("{{missing.x}}", {}) == "{{missing.x}}"

    def test_unknown_field_keeps_token(self):
        assert resolve_placeholders("{{s1.nope}}", {"s1": {"x": 1}}) == "{{s1.nope}}"

    def test_empty_value_keeps_token(self):
        assert resolve_placeholders("{{s1.x}}", {"s1": {"x": ""}}) == "{{s1.x}}"
        assert resolve_placeholders("{{s1.x}}", {"s1": {"x": None}}) == "{{s1.x}}"

    def test_zero_and_false_are_substituted(self):
        outputs = {"s1": {"count": 0, "flag": False}}
        assert resolve_placeholders("{{s1.count}}/{{s1.flag}}", outputs) == "0/false"

    def test_non_mapping_step_output_keeps_token(self):
        assert resolve_placeholders("{{s1.x}}", {"s1": "text"}) == "{{s1.x}}"

    def test_non_string_input_returned_unchanged(self):
        assert resolve_placeholders(42, {}) == 42
        assert resolve_placeholders(None, {}) is None

    def test_malformed_tokens_are_left_alone(self):
        text = "{{s1}} {{ s1.x }} {s1.x}"
        assert resolve_placeholders(text, {"s1": {"x": 1}}) == text

    def test_round_trip(self):
        outputs = {"s1": {"x": 1}}
        assert resolve_placeholders("{{s1.x}}", outputs) == "1"

    def test_trigger_payload_resolves(self):
        outputs = {"trigger": {"email": "a@b.c"}}
        assert resolve_placeholders("{{trigger.email}}", outputs) == "a@b.c"


@pytest.mark.unit
class TestResolveValue:
    """Recursive resolution through nested payloads."""

    def test_nested_structures(self):
        outputs = {"s1": {"id": 5, "name": "x"}}
        value = {"user": {"id": "{{s1.id}}"}, "tags": ["{{s1.name}}", 3], "n": None}
        assert resolve_value(value, outputs) == {"user": {"id": "5"}, "tags": ["x", 3], "n": None}

    def test_scalars_pass_through(self):
        assert resolve_value(3.5, {}) == 3.5
        assert resolve_value(True, {}) is True
