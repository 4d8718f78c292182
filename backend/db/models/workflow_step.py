"""WorkflowStep model."""

from sqlalchemy import ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowStep(BaseModel):
    """WorkflowStep model representing a single step in a workflow.

    The configuration is stored as serialized JSON text and parsed by the
    step dispatcher on every execution, so an invalid blob only surfaces as
    a failure of that step at run time.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        step_order: Position in the execution sequence (distinct per workflow)
        step_type: Step kind (http_request, email, loop, ...)
        name: Step name
        config: Serialized JSON configuration
    """

    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_workflow_step_order"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    config: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="steps", lazy="noload"
    )
