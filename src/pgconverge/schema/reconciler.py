"""
Schema reconciliation core logic for pgconverge.

Compares a declared TableSpec with what the catalogs report and issues the
statements that bring the live table in line, in a fixed order: columns,
then indexes and fulltext units, then partitions, then table options.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .codec import PhysicalColumn, PostgresTypeCodec, TypeCodec
from .factory import DialectFactory
from .operations import ChangeType, OperationMode, SchemaChange, StatementExecutor
from .partitions import PartitionManager
from .synthesizer import IndexSynthesizer, PostgresIndexSynthesizer
from ..database.connection import Connector
from ..database.introspection import ColumnInfo, IndexInfo, SchemaIntrospector
from ..definitions import FieldSpec, IndexKind, IndexSpec, TableSpec
from ..exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    IntrospectionAmbiguity,
    SchemaError,
    ValidationError,
)
from ..identifiers import qualify, quote_identifier, quote_literal


logger = logging.getLogger(__name__)

SHADOW_COLUMN_TYPE = "tsvector"


class ReconciliationStatus(str, Enum):
    """Status of reconciliation operations."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ReconciliationResult:
    """Result of a schema reconciliation operation."""

    status: ReconciliationStatus
    schema: str
    table: str
    changes_applied: List[SchemaChange] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def has_changes(self) -> bool:
        return bool(self.changes_applied)

    @property
    def statements(self) -> List[str]:
        return [c.sql for c in self.changes_applied]

    @property
    def successful_changes(self) -> int:
        """Count of successfully applied changes."""
        return sum(1 for c in self.changes_applied if c.executed)

    @property
    def failed_changes(self) -> int:
        """Count of failed changes."""
        return sum(1 for c in self.changes_applied if c.error)


class SchemaReconciler:
    """
    Core schema reconciliation engine for pgconverge.

    The reconciler is the only component that emits DDL. It reads live state
    through the introspector, asks the codec and synthesizer for target DDL
    and runs the resulting statements through its executor.
    """

    def __init__(
        self,
        connector: Connector,
        schema: str = "public",
        codec: Optional[TypeCodec] = None,
        synthesizer: Optional[IndexSynthesizer] = None,
        introspector: Optional[SchemaIntrospector] = None,
        operation_mode: OperationMode = OperationMode.EXECUTE,
        repair_table_suffixes: Optional[List[str]] = None,
        obsolete_prefix: str = "_obsolete_",
    ):
        self.connector = connector
        self.schema = schema
        self.codec = codec or PostgresTypeCodec()
        self.synthesizer = synthesizer or PostgresIndexSynthesizer(self.codec.identifiers)
        self.identifiers = self.synthesizer.identifiers
        self.introspector = introspector or SchemaIntrospector(connector)
        self.operations = StatementExecutor(connector, self.introspector, operation_mode)
        self.partitions = PartitionManager(self.introspector, self.synthesizer, self.operations)
        self.repair_table_suffixes = (
            ["_Live", "_versions"] if repair_table_suffixes is None else list(repair_table_suffixes)
        )
        self.obsolete_prefix = obsolete_prefix

    @classmethod
    def from_config(
        cls,
        connector: Connector,
        config: Any,
        schema: Optional[str] = None,
        introspector: Optional[SchemaIntrospector] = None,
    ) -> "SchemaReconciler":
        """Build a reconciler from a PgConvergeConfig."""
        management = config.schema_management
        return cls(
            connector,
            schema=schema or management.default_schema,
            codec=DialectFactory.create_codec(config),
            synthesizer=DialectFactory.create_synthesizer(config),
            introspector=introspector,
            operation_mode=OperationMode(management.mode),
            repair_table_suffixes=management.repair_table_suffixes,
            obsolete_prefix=management.obsolete_prefix,
        )

    async def _apply(
        self,
        result: ReconciliationResult,
        change_type: ChangeType,
        description: str,
        sql: str,
        target_object: Optional[str] = None,
        table: Optional[str] = None,
    ) -> SchemaChange:
        return await self.operations.apply(
            result.changes_applied,
            change_type,
            self.schema,
            table or result.table,
            description,
            sql,
            target_object,
        )

    async def _run(self, table: str, steps) -> ReconciliationResult:
        start_time = time.time()
        result = ReconciliationResult(status=ReconciliationStatus.SUCCESS, schema=self.schema, table=table)

        try:
            await steps(result)
        except DatabaseConnectionError:
            raise
        except (DatabaseError, ValidationError) as e:
            logger.error(f"Reconciliation failed for {self.schema}.{table}: {e}")
            result.errors.append(str(e))
            result.status = (
                ReconciliationStatus.PARTIAL if result.successful_changes else ReconciliationStatus.FAILED
            )
        finally:
            result.execution_time_ms = (time.time() - start_time) * 1000

        if result.status == ReconciliationStatus.SUCCESS and not result.has_changes:
            logger.info(f"No changes needed for {self.schema}.{table}")
        else:
            logger.info(
                f"Reconciliation completed for {self.schema}.{table}: "
                f"{result.status.value}, {len(result.changes_applied)} statements "
                f"({result.execution_time_ms:.1f}ms)"
            )
        return result

    async def require_table(self, spec: TableSpec) -> ReconciliationResult:
        """Create or converge one table."""

        async def steps(result: ReconciliationResult) -> None:
            if not await self.introspector.table_exists(self.schema, spec.name):
                await self._create_table(spec, result)
                return
            await self._converge_columns(spec, result)
            await self._converge_indexes(spec, result)
            await self.partitions.ensure_partitions(self.schema, spec, result.changes_applied)
            await self._converge_options(spec, result)

        logger.info(f"Starting reconciliation for {self.schema}.{spec.name}")
        return await self._run(spec.name, steps)

    async def reconcile_all(
        self, specs: List[TableSpec], stop_on_error: bool = False
    ) -> Dict[str, ReconciliationResult]:
        """Reconcile every table; a failure only stops the batch when asked to."""
        results = {}
        stopped = False

        for spec in specs:
            if stopped:
                results[spec.name] = ReconciliationResult(
                    status=ReconciliationStatus.SKIPPED, schema=self.schema, table=spec.name
                )
                continue

            result = await self.require_table(spec)
            results[spec.name] = result

            if stop_on_error and result.status in (
                ReconciliationStatus.FAILED, ReconciliationStatus.PARTIAL
            ):
                logger.warning(f"Stopping reconciliation due to failure: {spec.name}")
                stopped = True

        return results

    async def _create_table(self, spec: TableSpec, result: ReconciliationResult) -> None:
        columns = [
            self.codec.to_physical(spec.name, name, field_spec).definition()
            for name, field_spec in spec.fields.items()
        ]
        fulltext = {
            name: self.synthesizer.plan_fulltext(self.schema, spec.name, name, index)
            for name, index in spec.fulltext_indexes.items()
        }
        columns.extend(plan.shadow_column_ddl for plan in fulltext.values())
        columns.append(f"PRIMARY KEY ({quote_identifier(spec.primary_key)})")

        tablespace_sql = ""
        tablespace = spec.options.tablespace
        if tablespace:
            await self.partitions.ensure_tablespace(tablespace.name, tablespace.location, result.changes_applied)
            tablespace_sql = f" TABLESPACE {quote_identifier(tablespace.name)}"

        body = ",\n    ".join(columns)
        await self._apply(
            result,
            ChangeType.CREATE_TABLE,
            f"Create table {spec.name}",
            f"CREATE TABLE {qualify(self.schema, spec.name)} (\n    {body}\n){tablespace_sql}",
        )

        for name, index in spec.regular_indexes.items():
            await self._apply(
                result, ChangeType.CREATE_INDEX, f"Create index {name} on {spec.name}",
                self.synthesizer.plan_index(self.schema, spec.name, name, index), name,
            )
        for name, plan in fulltext.items():
            await self._apply(
                result, ChangeType.CREATE_TRIGGER, f"Create fulltext trigger {name} on {spec.name}",
                plan.trigger_sql, plan.trigger_name,
            )
            await self._apply(
                result, ChangeType.CREATE_INDEX, f"Create fulltext index {name} on {spec.name}",
                plan.index_sql, plan.index_name,
            )

        await self.partitions.ensure_partitions(self.schema, spec, result.changes_applied)

        if spec.options.cluster:
            index_name = self.synthesizer.index_name(spec.name, spec.options.cluster)
            await self._apply(
                result, ChangeType.CLUSTER, f"Cluster {spec.name} on {spec.options.cluster}",
                self.synthesizer.cluster(self.schema, spec.name, index_name), index_name,
            )

    async def _converge_columns(self, spec: TableSpec, result: ReconciliationResult) -> None:
        live = await self.introspector.get_columns(self.schema, spec.name)

        for name, field_spec in spec.fields.items():
            target = self.codec.to_physical(spec.name, name, field_spec)
            if name not in live:
                await self._apply(
                    result, ChangeType.ADD_COLUMN, f"Add column {spec.name}.{name}",
                    f"ALTER TABLE {qualify(self.schema, spec.name)} ADD COLUMN {target.definition()}",
                    name,
                )
                continue
            await self._converge_column(spec.name, field_spec, target, live[name], result)

    async def _live_enum_values(
        self, table: str, column: str, result: ReconciliationResult
    ) -> Optional[List[str]]:
        """Values allowed by the column's CHECK constraint; None when there is none."""
        definition = await self.introspector.constraint_definition(
            self.schema, self.identifiers.check_constraint(table, column)
        )
        if definition is None:
            return None
        values = self.codec.enum_values(definition)
        if not values:
            ambiguity = IntrospectionAmbiguity(table, column, "unparseable CHECK constraint", definition)
            logger.warning(str(ambiguity))
            result.warnings.append(str(ambiguity))
        return values

    async def _converge_column(
        self,
        table: str,
        field_spec: FieldSpec,
        target: PhysicalColumn,
        live: ColumnInfo,
        result: ReconciliationResult,
    ) -> None:
        column = target.name
        live_values = await self._live_enum_values(table, column, result)
        changed = self.codec.differences(target, live, live_values)
        if not changed:
            return

        logger.info(f"Column {table}.{column} differs in {', '.join(changed)}")
        relation = qualify(self.schema, table)
        quoted = quote_identifier(column)
        sequence_backed = target.data_type in ("serial", "bigserial")

        if ("type" in changed or "default" in changed) and live.default is not None and not sequence_backed:
            await self._apply(
                result, ChangeType.ALTER_COLUMN, f"Drop default of {table}.{column}",
                f"ALTER TABLE {relation} ALTER COLUMN {quoted} DROP DEFAULT", column,
            )

        if "default" in changed and sequence_backed and not live.is_sequence_backed:
            message = f"Column {table}.{column} is declared auto-increment but has no sequence default"
            logger.warning(message)
            result.warnings.append(message)

        if "type" in changed:
            type_sql = {"serial": "integer", "bigserial": "bigint"}.get(target.data_type, target.data_type)
            await self._apply(
                result, ChangeType.ALTER_COLUMN, f"Change type of {table}.{column} to {type_sql}",
                f"ALTER TABLE {relation} ALTER COLUMN {quoted} TYPE {type_sql} USING {quoted}::{type_sql}",
                column,
            )

        if "nullability" in changed:
            action = "SET NOT NULL" if target.not_null else "DROP NOT NULL"
            await self._apply(
                result, ChangeType.ALTER_COLUMN, f"{action.title()} on {table}.{column}",
                f"ALTER TABLE {relation} ALTER COLUMN {quoted} {action}", column,
            )

        if ("type" in changed or "default" in changed) and target.default is not None:
            await self._apply(
                result, ChangeType.ALTER_COLUMN, f"Set default of {table}.{column}",
                f"ALTER TABLE {relation} ALTER COLUMN {quoted} SET DEFAULT {target.default}", column,
            )

        if "check" in changed:
            await self._replace_check(table, field_spec, target, live_values is not None, result)

    async def _replace_check(
        self,
        table: str,
        field_spec: FieldSpec,
        target: PhysicalColumn,
        has_constraint: bool,
        result: ReconciliationResult,
    ) -> None:
        """Drop the old CHECK, move offending rows to the default, add the new CHECK."""
        column = target.name
        name = self.identifiers.check_constraint(table, column)
        relation = qualify(self.schema, table)

        if has_constraint:
            await self._apply(
                result, ChangeType.DROP_CONSTRAINT, f"Drop constraint {name}",
                f"ALTER TABLE {relation} DROP CONSTRAINT {quote_identifier(name)}", name,
            )

        if not target.check:
            return

        quoted = quote_identifier(column)
        allowed = ", ".join(quote_literal(v) for v in target.enum_values)
        replacement = quote_literal(field_spec.repair_value)
        for repair_table in await self._repair_tables(table, column):
            await self._apply(
                result, ChangeType.REPAIR_DATA,
                f"Move {repair_table}.{column} values outside ({allowed}) to {replacement}",
                f"UPDATE {qualify(self.schema, repair_table)} SET {quoted} = {replacement} "
                f"WHERE {quoted} NOT IN ({allowed})",
                column,
                table=repair_table,
            )

        await self._apply(
            result, ChangeType.ADD_CONSTRAINT, f"Add constraint {name}",
            f"ALTER TABLE {relation} ADD {target.constraint_sql}", name,
        )

    async def _repair_tables(self, table: str, column: str) -> List[str]:
        tables = [table]
        for suffix in self.repair_table_suffixes:
            companion = f"{table}{suffix}"
            if await self.introspector.column_exists(self.schema, companion, column):
                tables.append(companion)
        return tables

    @staticmethod
    def _index_matches(live: IndexInfo, spec: IndexSpec) -> bool:
        method = "hash" if spec.kind == IndexKind.HASH else "btree"
        return (
            live.columns == spec.columns
            and live.is_unique == (spec.kind == IndexKind.UNIQUE)
            and live.method.lower() == method
            and live.fillfactor == spec.fillfactor
            and bool(live.predicate) == bool(spec.where)
        )

    async def _converge_indexes(self, spec: TableSpec, result: ReconciliationResult) -> None:
        live_indexes = await self.introspector.get_indexes(self.schema, spec.name)

        for name, index in spec.regular_indexes.items():
            physical = self.synthesizer.index_name(spec.name, name)
            existing = live_indexes.get(physical)
            if existing is not None and self._index_matches(existing, index):
                continue

            if existing is not None:
                await self._apply(
                    result, ChangeType.DROP_INDEX, f"Drop outdated index {name} on {spec.name}",
                    self.synthesizer.drop_index(self.schema, physical), physical,
                )
            stale = live_indexes.get(name) if name != physical else None
            if stale is not None and not stale.is_primary:
                await self._apply(
                    result, ChangeType.DROP_INDEX, f"Drop index {name} on {spec.name} stored under its logical name",
                    self.synthesizer.drop_index(self.schema, name), name,
                )
            await self._apply(
                result, ChangeType.CREATE_INDEX, f"Create index {name} on {spec.name}",
                self.synthesizer.plan_index(self.schema, spec.name, name, index), physical,
            )

        await self._converge_fulltext(spec, live_indexes, result)

    async def _converge_fulltext(
        self, spec: TableSpec, live_indexes: Dict[str, IndexInfo], result: ReconciliationResult
    ) -> None:
        if not spec.fulltext_indexes:
            return

        live_columns = await self.introspector.get_columns(self.schema, spec.name)
        pending_indexes = []
        backfill_sql = None

        for name, index in spec.fulltext_indexes.items():
            plan = self.synthesizer.plan_fulltext(self.schema, spec.name, name, index)
            has_column = plan.shadow_column in live_columns
            arguments = await self.introspector.trigger_arguments(self.schema, spec.name, plan.trigger_name)
            live_index = live_indexes.get(plan.index_name)

            if has_column and arguments == plan.trigger_arguments:
                if (
                    live_index is not None
                    and live_index.method.upper() == plan.method
                    and live_index.fillfactor == index.fillfactor
                    and bool(live_index.predicate) == bool(index.where)
                ):
                    continue
                if live_index is not None:
                    await self._apply(
                        result, ChangeType.DROP_INDEX, f"Drop outdated fulltext index {name}",
                        plan.drop_index_sql, plan.index_name,
                    )
                pending_indexes.append((name, plan))
                continue

            # The unit is incomplete or stale: rebuild column, trigger and index together
            if arguments:
                await self._apply(
                    result, ChangeType.DROP_TRIGGER, f"Drop fulltext trigger {name} on {spec.name}",
                    plan.drop_trigger_sql, plan.trigger_name,
                )
            if has_column:
                await self._apply(
                    result, ChangeType.DROP_SHADOW_COLUMN, f"Drop shadow column {plan.shadow_column}",
                    plan.drop_column_sql, plan.shadow_column,
                )
            elif live_index is not None:
                await self._apply(
                    result, ChangeType.DROP_INDEX, f"Drop orphaned fulltext index {name}",
                    plan.drop_index_sql, plan.index_name,
                )
            await self._apply(
                result, ChangeType.ADD_SHADOW_COLUMN, f"Add shadow column {plan.shadow_column}",
                plan.add_column_sql, plan.shadow_column,
            )
            await self._apply(
                result, ChangeType.CREATE_TRIGGER, f"Create fulltext trigger {name} on {spec.name}",
                plan.trigger_sql, plan.trigger_name,
            )
            pending_indexes.append((name, plan))
            backfill_sql = backfill_sql or plan.backfill_sql

        # One UPDATE fires every rebuilt trigger at once
        if backfill_sql:
            await self._apply(
                result, ChangeType.BACKFILL, f"Backfill fulltext columns of {spec.name}", backfill_sql,
            )

        for name, plan in pending_indexes:
            await self._apply(
                result, ChangeType.CREATE_INDEX, f"Create fulltext index {name} on {spec.name}",
                plan.index_sql, plan.index_name,
            )

    async def _converge_options(self, spec: TableSpec, result: ReconciliationResult) -> None:
        tablespace = spec.options.tablespace
        if tablespace:
            await self.partitions.ensure_tablespace(tablespace.name, tablespace.location, result.changes_applied)
            current = await self.introspector.table_tablespace(self.schema, spec.name)
            if current != tablespace.name:
                await self._apply(
                    result, ChangeType.SET_TABLESPACE, f"Move {spec.name} to tablespace {tablespace.name}",
                    f"ALTER TABLE {qualify(self.schema, spec.name)} SET TABLESPACE "
                    f"{quote_identifier(tablespace.name)}",
                    tablespace.name,
                )

        clustered = await self.introspector.clustered_index(self.schema, spec.name)
        if spec.options.cluster:
            index_name = self.synthesizer.index_name(spec.name, spec.options.cluster)
            if clustered != index_name:
                await self._apply(
                    result, ChangeType.CLUSTER, f"Cluster {spec.name} on {spec.options.cluster}",
                    self.synthesizer.cluster(self.schema, spec.name, index_name), index_name,
                )
        elif clustered:
            await self._apply(
                result, ChangeType.UNCLUSTER, f"Remove clustering of {spec.name} on {clustered}",
                self.synthesizer.uncluster(self.schema, spec.name), clustered,
            )

    async def require_field(self, table: str, column: str, field_spec: FieldSpec) -> ReconciliationResult:
        """Create or converge a single column of an existing table."""

        async def steps(result: ReconciliationResult) -> None:
            if not await self.introspector.table_exists(self.schema, table):
                raise SchemaError(f"Table {self.schema}.{table} does not exist")
            target = self.codec.to_physical(table, column, field_spec)
            live = await self.introspector.get_columns(self.schema, table)
            if column not in live:
                await self._apply(
                    result, ChangeType.ADD_COLUMN, f"Add column {table}.{column}",
                    f"ALTER TABLE {qualify(self.schema, table)} ADD COLUMN {target.definition()}",
                    column,
                )
            else:
                await self._converge_column(table, field_spec, target, live[column], result)

        return await self._run(table, steps)

    async def dont_require_table(self, table: str) -> ReconciliationResult:
        """Retire a table by renaming it out of the way."""

        async def steps(result: ReconciliationResult) -> None:
            if not await self.introspector.table_exists(self.schema, table):
                result.status = ReconciliationStatus.SKIPPED
                return
            candidate = f"{self.obsolete_prefix}{table}"
            counter = 2
            while await self.introspector.table_exists(self.schema, candidate):
                candidate = f"{self.obsolete_prefix}{table}_{counter}"
                counter += 1
            candidate = self.identifiers.bounded(candidate)
            await self._apply(
                result, ChangeType.RENAME_TABLE, f"Retire {table} as {candidate}",
                f"ALTER TABLE {qualify(self.schema, table)} RENAME TO {quote_identifier(candidate)}",
                candidate,
            )

        return await self._run(table, steps)

    async def rename_table(self, old: str, new: str) -> ReconciliationResult:
        async def steps(result: ReconciliationResult) -> None:
            await self._apply(
                result, ChangeType.RENAME_TABLE, f"Rename table {old} to {new}",
                f"ALTER TABLE {qualify(self.schema, old)} RENAME TO {quote_identifier(new)}", new,
            )

        return await self._run(old, steps)

    async def rename_field(self, table: str, old: str, new: str) -> ReconciliationResult:
        async def steps(result: ReconciliationResult) -> None:
            if not await self.introspector.column_exists(self.schema, table, old):
                result.status = ReconciliationStatus.SKIPPED
                return
            await self._apply(
                result, ChangeType.RENAME_COLUMN, f"Rename column {table}.{old} to {new}",
                f"ALTER TABLE {qualify(self.schema, table)} RENAME COLUMN "
                f"{quote_identifier(old)} TO {quote_identifier(new)}",
                new,
            )

        return await self._run(table, steps)

    async def check_and_repair_table(self, table: str) -> ReconciliationResult:
        """Vacuum, analyze and reindex a table. Cannot run inside a transaction."""

        async def steps(result: ReconciliationResult) -> None:
            relation = qualify(self.schema, table)
            await self._apply(
                result, ChangeType.MAINTENANCE, f"Vacuum and analyze {table}",
                f"VACUUM FULL ANALYZE {relation}",
            )
            await self._apply(
                result, ChangeType.MAINTENANCE, f"Reindex {table}", f"REINDEX TABLE {relation}",
            )

        return await self._run(table, steps)

    async def enum_values_for_field(self, table: str, column: str) -> List[str]:
        definition = await self.introspector.constraint_definition(
            self.schema, self.identifiers.check_constraint(table, column)
        )
        return self.codec.enum_values(definition)

    async def field_list(self, table: str) -> Dict[str, FieldSpec]:
        """Portable view of a live table's declared columns."""
        fields = {}
        for name, column in (await self.introspector.get_columns(self.schema, table)).items():
            if column.data_type == SHADOW_COLUMN_TYPE:
                continue
            definition = None
            if column.data_type == "character varying":
                definition = await self.introspector.constraint_definition(
                    self.schema, self.identifiers.check_constraint(table, name)
                )
            fields[name] = self.codec.decode(table, column, definition).field
        return fields

    async def table_list(self) -> List[str]:
        return await self.introspector.list_tables(self.schema)

    def get_reconciliation_summary(self, results: Dict[str, ReconciliationResult]) -> Dict[str, Any]:
        """Summarize a batch of results."""
        by_status: Dict[str, int] = {}
        for result in results.values():
            by_status[result.status.value] = by_status.get(result.status.value, 0) + 1

        return {
            "tables": len(results),
            "by_status": by_status,
            "statements": sum(len(r.changes_applied) for r in results.values()),
            "warnings": sum(len(r.warnings) for r in results.values()),
            "failed_tables": [
                name for name, r in results.items()
                if r.status in (ReconciliationStatus.FAILED, ReconciliationStatus.PARTIAL)
            ],
            "total_execution_time_ms": sum(r.execution_time_ms for r in results.values()),
        }
