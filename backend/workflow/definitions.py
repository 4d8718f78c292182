"""In-memory workflow and step definitions consumed by the engine.

The engine never works on ORM rows: the persistence gateway converts
stored workflows into these immutable snapshots before a run starts.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class StepDefinition:
    """A single unit of configured work.

    ``config`` is kept exactly as stored: a serialized JSON string for
    persisted steps, or a mapping for sub-steps nested inside loop and
    parallel configurations. The dispatcher parses it on every run.
    """

    id: str
    name: str
    type: str
    config: Union[str, dict, None] = None
    order: int = 0

    @classmethod
    def from_dict(cls, data: dict, order: int = 0) -> "StepDefinition":
        """Build a sub-step from its nested configuration mapping."""
        step_id = str(data.get("id") or f"step_{order}")
        return cls(
            id=step_id,
            name=str(data.get("name") or step_id),
            type=str(data.get("type", "")),
            config=data.get("config"),
            order=int(data.get("order", order)),
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """A workflow snapshot with its steps sorted by execution order."""

    id: str
    name: str
    is_active: bool = True
    steps: tuple[StepDefinition, ...] = ()
    trigger: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None

    def __post_init__(self):
        ordered = tuple(sorted(self.steps, key=lambda s: s.order))
        orders = [s.order for s in ordered]
        if len(set(orders)) != len(orders):
            raise ValueError(f"Workflow {self.id} has duplicate step order values")
        object.__setattr__(self, "steps", ordered)
