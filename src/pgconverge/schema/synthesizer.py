"""
Index and trigger synthesis for pgconverge.

Turns IndexSpecs into DDL. A fulltext index is emulated as a unit of three
objects: a ``ts_<name>`` tsvector shadow column, a trigger that keeps the
column current through tsvector_update_trigger, and a GIN or GiST index over
the column.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from ..definitions import IndexKind, IndexSpec
from ..exceptions import TableSpecError
from ..identifiers import IdentifierBuilder, qualify, quote_identifier


logger = logging.getLogger(__name__)

FULLTEXT_METHODS = ("GIN", "GIST")


@dataclass
class FulltextPlan:
    """Every statement needed to create or tear down one fulltext unit."""

    shadow_column: str
    trigger_name: str
    index_name: str
    source_columns: List[str]
    configuration: str
    method: str
    shadow_column_ddl: str
    add_column_sql: str
    drop_column_sql: str
    trigger_sql: str
    drop_trigger_sql: str
    index_sql: str
    drop_index_sql: str
    backfill_sql: str

    @property
    def trigger_arguments(self) -> List[str]:
        """Arguments the trigger is expected to carry, as pg_trigger stores them."""
        return [self.shadow_column, self.configuration, *self.source_columns]


class IndexSynthesizer(ABC):
    """Produces index, trigger and clustering DDL."""

    dialect = ""

    def __init__(
        self,
        identifiers: Optional[IdentifierBuilder] = None,
        language: str = "english",
        fulltext_method: str = "GIN",
    ):
        self.identifiers = identifiers or IdentifierBuilder()
        self.language = language
        self.fulltext_method = fulltext_method.upper()

    def index_name(self, table: str, name: str) -> str:
        return self.identifiers.index_name(table, name)

    def trigger_name(self, table: str, name: str) -> str:
        return self.identifiers.trigger_name(table, name)

    def shadow_column(self, name: str) -> str:
        return self.identifiers.shadow_column(name)

    @abstractmethod
    def plan_index(self, schema: str, table: str, name: str, spec: IndexSpec) -> str:
        """CREATE INDEX statement for a non-fulltext index."""

    @abstractmethod
    def plan_fulltext(self, schema: str, table: str, name: str, spec: IndexSpec) -> FulltextPlan:
        """Statements for one fulltext unit."""

    @abstractmethod
    def drop_index(self, schema: str, index_name: str) -> str:
        """DROP INDEX statement for a physical index name."""

    @abstractmethod
    def cluster(self, schema: str, table: str, index_name: str) -> str:
        """Statement clustering a table on an index."""

    @abstractmethod
    def uncluster(self, schema: str, table: str) -> str:
        """Statement removing a table's clustering."""


class PostgresIndexSynthesizer(IndexSynthesizer):
    """PostgreSQL index and trigger DDL."""

    dialect = "postgresql"

    def _storage_clauses(self, spec: IndexSpec) -> str:
        sql = ""
        if spec.fillfactor:
            sql += f" WITH (fillfactor = {spec.fillfactor})"
        if spec.where:
            sql += f" WHERE {spec.where}"
        return sql

    def plan_index(self, schema: str, table: str, name: str, spec: IndexSpec) -> str:
        if spec.is_fulltext:
            raise TableSpecError(f"Index '{name}' on {table} is fulltext; use plan_fulltext")

        index_name = quote_identifier(self.index_name(table, name))
        columns = ", ".join(quote_identifier(c) for c in spec.columns)
        target = qualify(schema, table)

        if spec.kind == IndexKind.UNIQUE:
            sql = f"CREATE UNIQUE INDEX {index_name} ON {target} ({columns})"
        elif spec.kind == IndexKind.HASH:
            sql = f"CREATE INDEX {index_name} ON {target} USING hash ({columns})"
        elif spec.kind == IndexKind.BTREE:
            sql = f"CREATE INDEX {index_name} ON {target} USING btree ({columns})"
        else:
            sql = f"CREATE INDEX {index_name} ON {target} ({columns})"
        return sql + self._storage_clauses(spec)

    def plan_fulltext(self, schema: str, table: str, name: str, spec: IndexSpec) -> FulltextPlan:
        if not spec.is_fulltext:
            raise TableSpecError(f"Index '{name}' on {table} is not fulltext")

        method = (spec.method or self.fulltext_method).upper()
        if method not in FULLTEXT_METHODS:
            raise TableSpecError(f"Unsupported fulltext index method: {method}")

        shadow = self.shadow_column(name)
        trigger = self.trigger_name(table, name)
        index = self.index_name(table, name)
        configuration = f"pg_catalog.{self.language}"
        target = qualify(schema, table)
        shadow_ddl = f"{quote_identifier(shadow)} tsvector"
        sources = ", ".join(quote_identifier(c) for c in spec.columns)

        return FulltextPlan(
            shadow_column=shadow,
            trigger_name=trigger,
            index_name=index,
            source_columns=list(spec.columns),
            configuration=configuration,
            method=method,
            shadow_column_ddl=shadow_ddl,
            add_column_sql=f"ALTER TABLE {target} ADD COLUMN {shadow_ddl}",
            drop_column_sql=f"ALTER TABLE {target} DROP COLUMN IF EXISTS {quote_identifier(shadow)}",
            trigger_sql=(
                f"CREATE TRIGGER {quote_identifier(trigger)} BEFORE INSERT OR UPDATE "
                f"ON {target} FOR EACH ROW EXECUTE PROCEDURE "
                f"tsvector_update_trigger({quote_identifier(shadow)}, '{configuration}', {sources})"
            ),
            drop_trigger_sql=f"DROP TRIGGER IF EXISTS {quote_identifier(trigger)} ON {target}",
            index_sql=(
                f"CREATE INDEX {quote_identifier(index)} ON {target} "
                f"USING {method} ({quote_identifier(shadow)})" + self._storage_clauses(spec)
            ),
            drop_index_sql=self.drop_index(schema, index),
            backfill_sql=self.backfill(schema, table, spec.columns[0]),
        )

    def backfill(self, schema: str, table: str, column: str) -> str:
        """No-op UPDATE that fires every row trigger on the table."""
        quoted = quote_identifier(column)
        return f"UPDATE {qualify(schema, table)} SET {quoted} = {quoted}"

    def drop_index(self, schema: str, index_name: str) -> str:
        return f"DROP INDEX IF EXISTS {qualify(schema, index_name)}"

    def cluster(self, schema: str, table: str, index_name: str) -> str:
        return f"CLUSTER {qualify(schema, table)} USING {quote_identifier(index_name)}"

    def uncluster(self, schema: str, table: str) -> str:
        return f"ALTER TABLE {qualify(schema, table)} SET WITHOUT CLUSTER"
