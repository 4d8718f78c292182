"""Placeholder resolution for ``{{stepId.field}}`` tokens.

Resolution is best-effort: a token whose step or field is unknown, or
whose value is empty, is left in the text untouched. Nothing in here
raises for any input.
"""

import re
from typing import Any, Mapping

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\.(\w+)\}\}")


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_substitutable(value: Any) -> bool:
    if value is None or value == "":
        return False
    if isinstance(value, (bool, int, float)):
        return True
    return bool(value)


def resolve_placeholders(text: Any, outputs: Mapping[str, Any]) -> Any:
    """Substitute every ``{{stepId.field}}`` token in ``text``.

    Non-string input is returned unchanged.
    """
    if not isinstance(text, str) or "{{" not in text:
        return text

    def _replace(match: re.Match) -> str:
        step_id, field_name = match.group(1), match.group(2)
        step_output = outputs.get(step_id) if isinstance(outputs, Mapping) else None
        if not isinstance(step_output, Mapping):
            return match.group(0)
        value = step_output.get(field_name)
        if not _is_substitutable(value):
            return match.group(0)
        return _to_text(value)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def resolve_value(value: Any, outputs: Mapping[str, Any]) -> Any:
    """Recursively resolve placeholders in strings nested in dicts and lists."""
    if isinstance(value, str):
        return resolve_placeholders(value, outputs)
    if isinstance(value, dict):
        return {key: resolve_value(item, outputs) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, outputs) for item in value]
    return value
