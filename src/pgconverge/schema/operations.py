"""
Schema statement execution for pgconverge.

Every statement the reconciler emits is wrapped in a SchemaChange, run in
order through one StatementExecutor, timed and logged. In dry-run mode the
changes are recorded but nothing is sent to the server.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from ..database.connection import Connector
from ..database.introspection import SchemaIntrospector
from ..exceptions import StatementError


logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    """Types of schema changes."""

    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    ALTER_COLUMN = "alter_column"
    DROP_CONSTRAINT = "drop_constraint"
    REPAIR_DATA = "repair_data"
    ADD_CONSTRAINT = "add_constraint"
    CREATE_INDEX = "create_index"
    DROP_INDEX = "drop_index"
    ADD_SHADOW_COLUMN = "add_shadow_column"
    DROP_SHADOW_COLUMN = "drop_shadow_column"
    CREATE_TRIGGER = "create_trigger"
    DROP_TRIGGER = "drop_trigger"
    BACKFILL = "backfill"
    CLUSTER = "cluster"
    UNCLUSTER = "uncluster"
    CREATE_TABLESPACE = "create_tablespace"
    DROP_TABLESPACE = "drop_tablespace"
    SET_TABLESPACE = "set_tablespace"
    CREATE_LANGUAGE = "create_language"
    CREATE_PARTITION = "create_partition"
    ADD_PRIMARY_KEY = "add_primary_key"
    CREATE_FUNCTION = "create_function"
    RENAME_TABLE = "rename_table"
    RENAME_COLUMN = "rename_column"
    MAINTENANCE = "maintenance"
    CREATE_SCHEMA = "create_schema"
    DROP_SCHEMA = "drop_schema"
    CREATE_DATABASE = "create_database"
    DROP_DATABASE = "drop_database"


class OperationMode(str, Enum):
    """Schema operation modes."""

    EXECUTE = "execute"
    DRY_RUN = "dry_run"


@dataclass
class SchemaChange:
    """Represents a schema change operation."""

    change_type: ChangeType
    schema: str
    table: str
    description: str
    sql: str
    target_object: Optional[str] = None

    executed: bool = False
    execution_time_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def full_table_name(self) -> str:
        """Get fully qualified table name."""
        return f"{self.schema}.{self.table}"

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def change_id(self) -> str:
        target = self.target_object or self.table
        return f"{self.change_type.value}_{self.schema}_{self.table}_{target}"


class StatementExecutor:
    """Runs schema changes strictly one after another."""

    def __init__(
        self,
        connector: Connector,
        introspector: Optional[SchemaIntrospector] = None,
        operation_mode: OperationMode = OperationMode.EXECUTE,
    ):
        self.connector = connector
        self.introspector = introspector
        self.operation_mode = operation_mode
        self.history: List[SchemaChange] = []

    @property
    def dry_run(self) -> bool:
        return self.operation_mode == OperationMode.DRY_RUN

    async def execute(self, change: SchemaChange) -> SchemaChange:
        """Execute one change; StatementError propagates after being recorded."""
        self.history.append(change)

        if self.dry_run:
            logger.info(f"DRY RUN: Would execute {change.change_id}")
            logger.info(f"SQL: {change.sql}")
            return change

        start_time = time.time()
        try:
            await self.connector.query(change.sql)
        except StatementError as e:
            change.error = e.native_message
            logger.error(f"Failed to execute {change.change_id}: {e.native_message}")
            raise
        finally:
            change.execution_time_ms = (time.time() - start_time) * 1000
            if self.introspector is not None:
                self.introspector.invalidate()

        change.executed = True
        logger.info(f"{change.description} ({change.execution_time_ms:.1f}ms)")
        return change

    async def apply(
        self,
        changes: List[SchemaChange],
        change_type: ChangeType,
        schema: str,
        table: str,
        description: str,
        sql: str,
        target_object: Optional[str] = None,
    ) -> SchemaChange:
        """Record a new change on changes and execute it."""
        change = SchemaChange(
            change_type=change_type,
            schema=schema,
            table=table,
            description=description,
            sql=sql,
            target_object=target_object,
        )
        changes.append(change)
        return await self.execute(change)

    def get_execution_summary(self, changes: Optional[List[SchemaChange]] = None) -> Dict[str, Any]:
        """Get summary of execution results."""
        changes = self.history if changes is None else changes
        total = len(changes)
        successful = sum(1 for c in changes if c.executed)
        failed = sum(1 for c in changes if c.error)
        total_time = sum(c.execution_time_ms or 0 for c in changes)

        return {
            "total_operations": total,
            "successful": successful,
            "failed": failed,
            "dry_run": self.dry_run,
            "total_execution_time_ms": total_time,
            "failed_operations": [
                {
                    "change_id": c.change_id,
                    "error": c.error,
                    "change_type": c.change_type.value,
                }
                for c in changes if c.error
            ],
        }
