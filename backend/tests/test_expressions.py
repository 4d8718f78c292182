"""Tests for the restricted expression evaluator."""

import pytest

from core.exceptions import EvaluationError
from workflow.expressions import ExpressionEvaluator, tokenize


@pytest.mark.unit
class TestExpressionEvaluator:
    """Arithmetic, comparison and logic."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("1 + 2", 3),
            ("(2 + 3) * 4", 20),
            ("10 / 4", 2.5),
            ("10 / 2", 5),
            ("7 % 3", 1),
            ("-3 + 5", 2),
            ("2 * -2", -4),
            ("1.5 * 2", 3),
        ],
    )
    def test_arithmetic(self, expression, expected):
        assert ExpressionEvaluator.evaluate(expression) == expected

    def test_integral_results_are_ints(self):
        assert isinstance(ExpressionEvaluator.evaluate("10 / 2"), int)

    def test_string_concatenation(self):
        assert ExpressionEvaluator.evaluate("'a' + 1") == "a1"
        assert ExpressionEvaluator.evaluate('"foo" + "bar"') == "foobar"

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("10 > 3", True),
            ("3 >= 3", True),
            ("2 < 1", False),
            ("'x' == 'x'", True),
            ("'x' != 'y'", True),
            ("5 == '5'", True),
            ("5 === '5'", False),
            ("5 === 5", True),
            ("null == null", True),
        ],
    )
    def test_comparisons(self, expression, expected):
        assert ExpressionEvaluator.evaluate(expression) is expected

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("true && false", False),
            ("true || false", True),
            ("!false", True),
            ("not true", False),
            ("1 > 0 and 2 > 1", True),
            ("1 > 2 or 0", 0),
        ],
    )
    def test_logic(self, expression, expected):
        assert ExpressionEvaluator.evaluate(expression) == expected

    def test_division_by_zero(self):
        with pytest.raises(EvaluationError, match="Division by zero"):
            ExpressionEvaluator.evaluate("1 / 0")

    @pytest.mark.parametrize(
        "expression",
        ["__import__('os')", "foo + 1", "1 +", "(1 + 2", "1 2", "", "   ", "2 ** 3", "a.b"],
    )
    def test_rejected_expressions(self, expression):
        with pytest.raises(EvaluationError):
            ExpressionEvaluator.evaluate(expression)

    @pytest.mark.parametrize(
        "expression",
        ["(" * 5000 + "1" + ")" * 5000, "-" * 5000 + "1", "!" * 5000 + "1"],
    )
    def test_deep_nesting_rejected(self, expression):
        with pytest.raises(EvaluationError, match="nested"):
            ExpressionEvaluator.evaluate(expression)

    def test_moderate_nesting_allowed(self):
        assert ExpressionEvaluator.evaluate("(" * 20 + "1 + 1" + ")" * 20) == 2
        assert ExpressionEvaluator.evaluate("-" * 10 + "3") == 3

    def test_non_string_rejected(self):
        with pytest.raises(EvaluationError):
            ExpressionEvaluator.evaluate(5)

    def test_evaluate_bool(self):
        assert ExpressionEvaluator.evaluate_bool("1 + 1") is True
        assert ExpressionEvaluator.evaluate_bool("0") is False
        assert ExpressionEvaluator.evaluate_bool("''") is False


@pytest.mark.unit
class TestTokenize:
    def test_tokens(self):
        tokens = tokenize("1 + 'a'")
        assert [t.kind for t in tokens] == ["literal", "op", "literal", "end"]
        assert tokens[0].value == 1
        assert tokens[2].value == "a"

    def test_unexpected_character(self):
        with pytest.raises(EvaluationError, match="Unexpected character"):
            tokenize("1 $ 2")
