"""ExecutionLog model."""

from typing import Optional

from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import LogLevel
from db.base import BaseModel


class ExecutionLog(BaseModel):
    """Append-only log entry of an execution.

    Attributes:
        id: Unique identifier (UUID string)
        execution_id: Foreign key to Execution
        sequence: 1-based position within the execution's log stream
        level: DEBUG, INFO, WARN or ERROR
        message: Log message
        step_id: Optional id of the step the entry refers to
        created_at: Creation timestamp
    """

    __tablename__ = "execution_logs"
    __table_args__ = (
        UniqueConstraint("execution_id", "sequence", name="uq_execution_log_sequence"),
    )

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    level: Mapped[str] = mapped_column(default=LogLevel.INFO.value, index=True)
    message: Mapped[str] = mapped_column(nullable=False)
    step_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)

    # Relationships
    execution: Mapped["Execution"] = relationship(
        "Execution", back_populates="logs", lazy="noload"
    )
