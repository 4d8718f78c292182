"""Typed configuration for every step kind.

Stored step configuration is an opaque JSON blob. It is parsed and
validated against the model of the step's kind each time the step is
dispatched; a blob that is not valid JSON, or does not fit the model,
fails that step with a ConfigurationError.

The workflow editor saves camelCase keys (``ifTrue``, ``toUpperCase``);
both spellings are accepted.
"""

import json
from typing import Any, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.constants import StepType
from core.exceptions import ConfigurationError, UnknownStepTypeError


class StepConfig(BaseModel):
    """Base for all step configuration models."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class HttpRequestConfig(StepConfig):
    url: str = Field(min_length=1)
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return v.upper()


class WebhookConfig(StepConfig):
    url: str = Field(min_length=1)
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return v.upper()


class EmailConfig(StepConfig):
    to: str = Field(min_length=1)
    subject: str = ""
    body: str = ""


class DatabaseConfig(StepConfig):
    operation: Literal["insert", "update", "delete", "select"]
    table: str = Field(min_length=1)
    data: Optional[dict[str, Any]] = None
    where: Optional[dict[str, Any]] = None


class TransformConfig(StepConfig):
    mapping: dict[str, Any] = Field(default_factory=dict)

    @field_validator("mapping", mode="before")
    @classmethod
    def _parse_mapping(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, str):
            try:
                return json.loads(v) if v.strip() else {}
            except json.JSONDecodeError as e:
                raise ValueError(f"mapping is not valid JSON: {e.msg}") from e
        return v


class DelayConfig(StepConfig):
    duration: Optional[int] = Field(default=None, ge=0)  # milliseconds


class ConditionConfig(StepConfig):
    condition: Any = None
    if_true: Optional[list[dict[str, Any]]] = Field(default=None, alias="ifTrue")
    if_false: Optional[list[dict[str, Any]]] = Field(default=None, alias="ifFalse")


class LoopConfig(StepConfig):
    # A string is accepted so the count can come from a placeholder
    iterations: Union[int, str] = 1
    steps: list[dict[str, Any]] = Field(default_factory=list)


class ParallelConfig(StepConfig):
    steps: list[dict[str, Any]] = Field(default_factory=list)


class VariableConfig(StepConfig):
    operation: str
    name: str = ""
    value: Any = None
    expression: Optional[str] = None
    to_upper_case: bool = Field(default=False, alias="toUpperCase")
    to_lower_case: bool = Field(default=False, alias="toLowerCase")
    trim: bool = False


STEP_CONFIG_MODELS: dict[str, Type[StepConfig]] = {
    StepType.HTTP_REQUEST.value: HttpRequestConfig,
    StepType.EMAIL.value: EmailConfig,
    StepType.DATABASE.value: DatabaseConfig,
    StepType.TRANSFORM.value: TransformConfig,
    StepType.DELAY.value: DelayConfig,
    StepType.CONDITION.value: ConditionConfig,
    StepType.LOOP.value: LoopConfig,
    StepType.PARALLEL.value: ParallelConfig,
    StepType.WEBHOOK.value: WebhookConfig,
    StepType.VARIABLE.value: VariableConfig,
}


def load_raw_config(raw: Any) -> dict[str, Any]:
    """Turn a stored configuration blob into a mapping."""
    if raw is None:
        return {}
    if isinstance(raw, (bytes, str)):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid step configuration JSON: {e.msg}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Step configuration must be an object, got {type(raw).__name__}"
        )
    return raw


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "config"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def parse_step_config(step_type: str, raw: Any) -> StepConfig:
    """Parse and validate ``raw`` as the configuration of ``step_type``.

    Raises:
        UnknownStepTypeError: no model exists for the step kind
        ConfigurationError: the blob is not JSON or does not fit the model
    """
    model = STEP_CONFIG_MODELS.get(step_type)
    if model is None:
        raise UnknownStepTypeError(step_type)
    data = load_raw_config(raw)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {step_type} configuration: {_describe(e)}") from e
