"""
Tablespace placement and partitioning for pgconverge.

Partitioning is emulated the inheritance way: each partition is a child
table with a CHECK constraint describing the rows it accepts, and a
plpgsql insert trigger on the parent routes every new row to the first
child whose condition matches.
"""

import logging
import re
from typing import List

from .operations import ChangeType, SchemaChange, StatementExecutor
from .synthesizer import IndexSynthesizer
from ..database.introspection import SchemaIntrospector
from ..definitions import TableSpec
from ..identifiers import qualify, quote_identifier, quote_literal


logger = logging.getLogger(__name__)

ROW_REFERENCE = re.compile(r"\bNEW\.", re.IGNORECASE)


def strip_row_reference(condition: str) -> str:
    """Turn a routing condition on NEW into a CHECK expression on the table."""
    return ROW_REFERENCE.sub("", condition)


class PartitionManager:
    """Creates tablespaces, child tables and insert routing."""

    def __init__(
        self,
        introspector: SchemaIntrospector,
        synthesizer: IndexSynthesizer,
        operations: StatementExecutor,
    ):
        self.introspector = introspector
        self.synthesizer = synthesizer
        self.operations = operations
        self.identifiers = synthesizer.identifiers

    async def ensure_language(self, changes: List[SchemaChange], name: str = "plpgsql") -> None:
        if await self.introspector.language_exists(name):
            return
        await self.operations.apply(
            changes, ChangeType.CREATE_LANGUAGE, "", "", f"Create language {name}",
            f"CREATE LANGUAGE {quote_identifier(name)}", name,
        )

    async def ensure_tablespace(self, name: str, location: str, changes: List[SchemaChange]) -> None:
        """Create the tablespace, or recreate it when it points elsewhere."""
        current = await self.introspector.tablespace_location(name)
        if current == location:
            return

        if current is not None:
            logger.warning(f"Tablespace {name} moves from '{current}' to '{location}'")
            await self.operations.apply(
                changes, ChangeType.DROP_TABLESPACE, "", "", f"Drop tablespace {name}",
                f"DROP TABLESPACE {quote_identifier(name)}", name,
            )
        await self.operations.apply(
            changes, ChangeType.CREATE_TABLESPACE, "", "", f"Create tablespace {name}",
            f"CREATE TABLESPACE {quote_identifier(name)} LOCATION {quote_literal(location)}", name,
        )

    async def ensure_partitions(self, schema: str, spec: TableSpec, changes: List[SchemaChange]) -> None:
        """Converge every declared partition of spec and the routing trigger."""
        if not spec.options.partitions:
            return

        await self.ensure_language(changes)

        tablespace = spec.options.tablespace
        tablespace_sql = f" TABLESPACE {quote_identifier(tablespace.name)}" if tablespace else ""
        parent = qualify(schema, spec.name)

        for child, condition in spec.options.partitions.items():
            if not await self.introspector.table_exists(schema, child):
                check = strip_row_reference(condition)
                await self.operations.apply(
                    changes, ChangeType.CREATE_PARTITION, schema, child,
                    f"Create partition {child} of {spec.name}",
                    f"CREATE TABLE {qualify(schema, child)} (CHECK ({check})) INHERITS ({parent})"
                    + tablespace_sql,
                )

            primary_key = self.identifiers.primary_key(child)
            if not await self.introspector.constraint_exists(schema, child, primary_key):
                await self.operations.apply(
                    changes, ChangeType.ADD_PRIMARY_KEY, schema, child,
                    f"Add primary key to partition {child}",
                    f"ALTER TABLE {qualify(schema, child)} ADD CONSTRAINT "
                    f"{quote_identifier(primary_key)} PRIMARY KEY ({quote_identifier(spec.primary_key)})",
                    primary_key,
                )

            await self._propagate_indexes(schema, spec, child, changes)

        await self._ensure_routing(schema, spec, changes)

    async def _propagate_indexes(
        self, schema: str, spec: TableSpec, child: str, changes: List[SchemaChange]
    ) -> None:
        # Inheritance copies columns and CHECK constraints but not indexes or triggers
        live = await self.introspector.get_indexes(schema, child)

        for name, index in spec.regular_indexes.items():
            if self.synthesizer.index_name(child, name) not in live:
                await self.operations.apply(
                    changes, ChangeType.CREATE_INDEX, schema, child,
                    f"Create index {name} on partition {child}",
                    self.synthesizer.plan_index(schema, child, name, index), name,
                )

        for name, index in spec.fulltext_indexes.items():
            plan = self.synthesizer.plan_fulltext(schema, child, name, index)
            arguments = await self.introspector.trigger_arguments(schema, child, plan.trigger_name)
            if arguments != plan.trigger_arguments:
                if arguments:
                    await self.operations.apply(
                        changes, ChangeType.DROP_TRIGGER, schema, child,
                        f"Drop fulltext trigger {name} on partition {child}",
                        plan.drop_trigger_sql, plan.trigger_name,
                    )
                await self.operations.apply(
                    changes, ChangeType.CREATE_TRIGGER, schema, child,
                    f"Create fulltext trigger {name} on partition {child}",
                    plan.trigger_sql, plan.trigger_name,
                )
            if plan.index_name not in live:
                await self.operations.apply(
                    changes, ChangeType.CREATE_INDEX, schema, child,
                    f"Create fulltext index {name} on partition {child}",
                    plan.index_sql, plan.index_name,
                )

    def routing_body(self, schema: str, spec: TableSpec) -> str:
        """plpgsql body sending each inserted row to its partition."""
        lines = ["", "BEGIN"]
        for position, (child, condition) in enumerate(spec.options.partitions.items()):
            keyword = "IF" if position == 0 else "ELSIF"
            lines.append(f"    {keyword} ({condition}) THEN")
            lines.append(f"        INSERT INTO {qualify(schema, child)} VALUES (NEW.*);")
        message = quote_literal(f"No partition of {spec.name} accepts this row")
        lines.extend([
            "    ELSE",
            f"        RAISE EXCEPTION {message};",
            "    END IF;",
            "    RETURN NULL;",
            "END;",
            "",
        ])
        return "\n".join(lines)

    async def _ensure_routing(self, schema: str, spec: TableSpec, changes: List[SchemaChange]) -> None:
        function = self.identifiers.insert_function(spec.name)
        body = self.routing_body(schema, spec)

        source = await self.introspector.function_source(schema, function)
        if source is None or source.strip() != body.strip():
            await self.operations.apply(
                changes, ChangeType.CREATE_FUNCTION, schema, spec.name,
                f"Replace insert routing function for {spec.name}",
                f"CREATE OR REPLACE FUNCTION {qualify(schema, function)}() "
                f"RETURNS TRIGGER AS $${body}$$ LANGUAGE plpgsql",
                function,
            )

        trigger = self.identifiers.insert_trigger(spec.name)
        if not await self.introspector.trigger_exists(schema, spec.name, trigger):
            await self.operations.apply(
                changes, ChangeType.CREATE_TRIGGER, schema, spec.name,
                f"Create insert routing trigger for {spec.name}",
                f"CREATE TRIGGER {quote_identifier(trigger)} BEFORE INSERT ON {qualify(schema, spec.name)} "
                f"FOR EACH ROW EXECUTE PROCEDURE {qualify(schema, function)}()",
                trigger,
            )
