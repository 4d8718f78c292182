"""Database task implementation.

Runs insert/update/delete/select operations against application tables
through a DataStore collaborator. The default store issues SQLAlchemy Core
statements on the configured database engine and refuses the engine's own
workflow and execution tables.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import structlog
from sqlalchemy import and_, column, delete, insert, literal_column, select, table, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.exceptions import ConfigurationError, StepError
from tasks.base_task import BaseTask, TaskResult
from workflow.placeholders import resolve_placeholders, resolve_value
from workflow.step_configs import DatabaseConfig

logger = structlog.get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(name: str, kind: str) -> str:
    if not _IDENTIFIER.match(name or ""):
        raise ConfigurationError(f"Invalid {kind} name: '{name}'")
    return name


def _engine_tables() -> frozenset:
    """Tables holding workflow definitions and execution state."""
    import db.models  # noqa: F401  (registers the models)
    from db.base import Base

    return frozenset(name.lower() for name in Base.metadata.tables)


class DataStore(ABC):
    """Performs a named operation on a table and reports what it touched."""

    @abstractmethod
    async def execute(
        self,
        operation: str,
        table_name: str,
        data: Optional[Dict[str, Any]] = None,
        where: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Return at least ``{"affected_rows": int}``; selects add ``rows``."""
        ...


class SqlDataStore(DataStore):
    """DataStore issuing SQLAlchemy Core statements on an async engine."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            from db.database import engine

            self._engine = engine
        return self._engine

    async def execute(
        self,
        operation: str,
        table_name: str,
        data: Optional[Dict[str, Any]] = None,
        where: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        _check_identifier(table_name, "table")
        if table_name.lower() in _engine_tables():
            raise ConfigurationError(f"Table '{table_name}' holds workflow state and cannot be used by steps")
        data = data or {}
        where = where or {}
        for name in [*data, *where]:
            _check_identifier(name, "column")

        if operation in ("insert", "update") and not data:
            raise ConfigurationError(f"Database {operation} requires data")
        if operation in ("update", "delete") and not where:
            raise ConfigurationError(f"Database {operation} requires a where clause")

        target = table(table_name, *(column(name) for name in {*data, *where}))
        criteria = and_(*(target.c[name] == value for name, value in where.items())) if where else None

        async with self.engine.begin() as conn:
            if operation == "insert":
                result = await conn.execute(insert(target).values(**data))
                return {"affected_rows": result.rowcount}
            if operation == "update":
                result = await conn.execute(update(target).where(criteria).values(**data))
                return {"affected_rows": result.rowcount}
            if operation == "delete":
                result = await conn.execute(delete(target).where(criteria))
                return {"affected_rows": result.rowcount}

            query = select(literal_column("*")).select_from(target)
            if criteria is not None:
                query = query.where(criteria)
            rows = [dict(row._mapping) for row in await conn.execute(query)]
            return {"affected_rows": len(rows), "rows": rows}


_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    """Get or create the default DataStore."""
    global _store
    if _store is None:
        _store = SqlDataStore()
    return _store


class DatabaseTask(BaseTask):
    """Run a database operation.

    Config:
        operation: insert | update | delete | select
        table: Table name (placeholders allowed)
        data: Column values for insert/update (placeholders resolved)
        where: Equality filters for update/delete/select
    """

    task_type = "database"
    display_name = "Database"
    description = "Insert, update, delete or select rows"

    # Overridable collaborator; None means the default SqlDataStore
    store: Optional[DataStore] = None

    async def execute(self, config: DatabaseConfig, outputs: Mapping[str, Any]) -> TaskResult:
        table_name = resolve_placeholders(config.table, outputs)
        data = resolve_value(config.data, outputs) if config.data else None
        where = resolve_value(config.where, outputs) if config.where else None

        store = self.store or get_data_store()
        try:
            outcome = await store.execute(config.operation, table_name, data, where)
        except SQLAlchemyError as e:
            raise StepError(f"Database {config.operation} failed: {e}") from e

        logger.info(
            "Database operation completed",
            operation=config.operation,
            table=table_name,
            affected_rows=outcome.get("affected_rows"),
        )
        return TaskResult(
            success=True,
            output={
                "message": f"Database {config.operation} completed successfully",
                "operation": config.operation,
                "table": table_name,
                **outcome,
            },
        )


DATABASE_TASK_TYPES = {
    "database": DatabaseTask,
}
