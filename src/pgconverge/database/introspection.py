"""
Database schema introspection for pgconverge.

Read-only catalog queries that report what a schema currently contains.
Every query is scoped to one schema so several logical databases can live
side by side as schemas of one physical database. A query that finds no
rows answers "does not exist"; only connector failures propagate.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .connection import Connector
from ..exceptions import SchemaError, StatementError


logger = logging.getLogger(__name__)

FULLTEXT_METHODS = ("gin", "gist")


@dataclass
class ColumnInfo:
    """Information about a database column."""

    name: str
    data_type: str
    is_nullable: bool
    default: Optional[str] = None
    max_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    ordinal_position: int = 0
    udt_name: Optional[str] = None

    @property
    def is_array(self) -> bool:
        return self.data_type.upper() == "ARRAY"

    @property
    def is_sequence_backed(self) -> bool:
        return bool(self.default) and self.default.startswith("nextval(")

    def __str__(self) -> str:
        result = f"{self.name} {self.data_type}"
        if self.max_length:
            result += f"({self.max_length})"
        if not self.is_nullable:
            result += " NOT NULL"
        if self.default:
            result += f" DEFAULT {self.default}"
        return result


@dataclass
class IndexInfo:
    """Information about a database index."""

    name: str
    table_schema: str
    table_name: str
    columns: List[str]
    is_unique: bool
    is_primary: bool
    method: str
    definition: str
    predicate: Optional[str] = None
    fillfactor: Optional[int] = None
    is_clustered: bool = False

    @property
    def is_fulltext(self) -> bool:
        return self.method.lower() in FULLTEXT_METHODS


@dataclass
class TableInfo:
    """Information about a database table."""

    schema: str
    name: str
    columns: Dict[str, ColumnInfo]
    indexes: Dict[str, IndexInfo]
    tablespace: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def has_column(self, column_name: str) -> bool:
        return column_name in self.columns


class CatalogCache:
    """
    Lookups memoized for the duration of one reconciliation run.

    Cleared by the statement executor after every statement it runs, so a
    cached answer never outlives a schema change.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, ...], Any] = {}
        self.hits = 0

    def get(self, key: Tuple[str, ...]) -> Tuple[bool, Any]:
        if key in self._entries:
            self.hits += 1
            return True, self._entries[key]
        return False, None

    def put(self, key: Tuple[str, ...], value: Any) -> None:
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def decode_trigger_arguments(raw: Any) -> List[str]:
    """
    Split pg_trigger.tgargs into its arguments.

    The column is a NUL-separated bytea; drivers hand it over either as raw
    bytes or in hex text form (``\\x7473...``).
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        if raw.startswith("\\x"):
            raw = bytes.fromhex(raw[2:])
        else:
            raw = raw.replace("\\000", "\x00").encode("utf-8")
    args = bytes(raw).split(b"\x00")
    if args and args[-1] == b"":
        args.pop()
    return [arg.decode("utf-8") for arg in args]


def parse_fillfactor(reloptions: Optional[List[str]]) -> Optional[int]:
    for option in reloptions or []:
        key, _, value = option.partition("=")
        if key == "fillfactor" and value.isdigit():
            return int(value)
    return None


class SchemaIntrospector:
    """Database schema introspection utilities."""

    def __init__(self, connector: Connector, cache: Optional[CatalogCache] = None):
        self.connector = connector
        self.cache = cache if cache is not None else CatalogCache()

    def invalidate(self) -> None:
        """Forget every cached lookup."""
        if len(self.cache):
            logger.debug(f"Invalidating {len(self.cache)} cached catalog lookups")
        self.cache.clear()

    async def schema_exists(self, schema: str) -> bool:
        query = "SELECT EXISTS (SELECT 1 FROM pg_namespace WHERE nspname = ?)"
        return bool(await self.connector.fetchval(query, schema))

    async def list_schemas(self) -> List[str]:
        query = """
            SELECT nspname FROM pg_namespace
            WHERE nspname <> 'information_schema' AND nspname !~ '^pg_'
            ORDER BY nspname
        """
        rows = await self.connector.fetch(query)
        return [row["nspname"] for row in rows]

    async def database_exists(self, name: str) -> bool:
        query = "SELECT EXISTS (SELECT 1 FROM pg_database WHERE datname = ?)"
        return bool(await self.connector.fetchval(query, name))

    async def list_databases(self) -> List[str]:
        query = "SELECT datname FROM pg_database WHERE NOT datistemplate ORDER BY datname"
        rows = await self.connector.fetch(query)
        return [row["datname"] for row in rows]

    async def table_exists(self, schema: str, table: str) -> bool:
        """Check if a table exists."""
        query = """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = ? AND table_name = ?
            )
        """
        return bool(await self.connector.fetchval(query, schema, table))

    async def list_tables(self, schema: str) -> List[str]:
        query = "SELECT tablename FROM pg_tables WHERE schemaname = ? ORDER BY tablename"
        rows = await self.connector.fetch(query, schema)
        return [row["tablename"] for row in rows]

    async def column_exists(self, schema: str, table: str, column: str) -> bool:
        query = """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.columns
                WHERE table_schema = ? AND table_name = ? AND column_name = ?
            )
        """
        return bool(await self.connector.fetchval(query, schema, table, column))

    async def get_table_info(self, schema: str, table: str) -> Optional[TableInfo]:
        """Get complete information about a table."""
        if not await self.table_exists(schema, table):
            return None

        return TableInfo(
            schema=schema,
            name=table,
            columns=await self.get_columns(schema, table),
            indexes=await self.get_indexes(schema, table),
            tablespace=await self.table_tablespace(schema, table),
        )

    async def get_columns(self, schema: str, table: str) -> Dict[str, ColumnInfo]:
        """Get all columns for a table, in ordinal order."""
        query = """
            SELECT
                c.column_name,
                c.data_type,
                c.is_nullable,
                c.column_default,
                c.character_maximum_length,
                c.numeric_precision,
                c.numeric_scale,
                c.ordinal_position,
                c.udt_name
            FROM information_schema.columns c
            WHERE c.table_schema = ? AND c.table_name = ?
            ORDER BY c.ordinal_position
        """

        try:
            rows = await self.connector.fetch(query, schema, table)
        except StatementError as e:
            logger.error(f"Error getting columns for {schema}.{table}: {e}")
            raise SchemaError(f"Failed to get columns for {schema}.{table}", cause=e) from e

        columns = {}
        for row in rows:
            col_info = ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                is_nullable=row["is_nullable"] == "YES",
                default=row["column_default"],
                max_length=row["character_maximum_length"],
                numeric_precision=row["numeric_precision"],
                numeric_scale=row["numeric_scale"],
                ordinal_position=row["ordinal_position"],
                udt_name=row["udt_name"],
            )
            columns[col_info.name] = col_info
        return columns

    async def get_indexes(self, schema: str, table: str) -> Dict[str, IndexInfo]:
        """Get all indexes for a table, keyed by index name."""
        query = """
            SELECT
                ic.relname AS index_name,
                am.amname AS method,
                ix.indisunique AS is_unique,
                ix.indisprimary AS is_primary,
                ix.indisclustered AS is_clustered,
                ic.reloptions AS reloptions,
                pg_get_indexdef(ix.indexrelid) AS definition,
                pg_get_expr(ix.indpred, ix.indrelid) AS predicate,
                ARRAY(
                    SELECT a.attname
                    FROM unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
                    JOIN pg_attribute a ON a.attrelid = ix.indrelid AND a.attnum = k.attnum
                    ORDER BY k.ord
                ) AS columns
            FROM pg_index ix
            JOIN pg_class ic ON ic.oid = ix.indexrelid
            JOIN pg_class tc ON tc.oid = ix.indrelid
            JOIN pg_namespace n ON n.oid = tc.relnamespace
            JOIN pg_am am ON am.oid = ic.relam
            WHERE n.nspname = ? AND tc.relname = ?
            ORDER BY ic.relname
        """

        try:
            rows = await self.connector.fetch(query, schema, table)
        except StatementError as e:
            logger.error(f"Error getting indexes for {schema}.{table}: {e}")
            raise SchemaError(f"Failed to get indexes for {schema}.{table}", cause=e) from e

        indexes = {}
        for row in rows:
            indexes[row["index_name"]] = IndexInfo(
                name=row["index_name"],
                table_schema=schema,
                table_name=table,
                columns=list(row["columns"]),
                is_unique=row["is_unique"],
                is_primary=row["is_primary"],
                method=row["method"],
                definition=row["definition"],
                predicate=row["predicate"],
                fillfactor=parse_fillfactor(row["reloptions"]),
                is_clustered=row["is_clustered"],
            )
        return indexes

    async def clustered_index(self, schema: str, table: str) -> Optional[str]:
        query = """
            SELECT ic.relname
            FROM pg_index ix
            JOIN pg_class ic ON ic.oid = ix.indexrelid
            JOIN pg_class tc ON tc.oid = ix.indrelid
            JOIN pg_namespace n ON n.oid = tc.relnamespace
            WHERE n.nspname = ? AND tc.relname = ? AND ix.indisclustered
        """
        return await self.connector.fetchval(query, schema, table)

    async def constraint_definition(self, schema: str, name: str) -> Optional[str]:
        """Text of a named constraint as pg_get_constraintdef renders it."""
        key = ("constraint", schema, name)
        found, value = self.cache.get(key)
        if found:
            return value

        query = """
            SELECT pg_get_constraintdef(c.oid)
            FROM pg_constraint c
            JOIN pg_namespace n ON n.oid = c.connamespace
            WHERE n.nspname = ? AND c.conname = ?
            LIMIT 1
        """
        definition = await self.connector.fetchval(query, schema, name)
        self.cache.put(key, definition)
        return definition

    async def constraint_exists(self, schema: str, table: str, name: str) -> bool:
        query = """
            SELECT EXISTS (
                SELECT 1
                FROM pg_constraint c
                JOIN pg_class t ON t.oid = c.conrelid
                JOIN pg_namespace n ON n.oid = t.relnamespace
                WHERE n.nspname = ? AND t.relname = ? AND c.conname = ?
            )
        """
        return bool(await self.connector.fetchval(query, schema, table, name))

    async def _trigger_args(self, schema: str, table: str, name: str) -> Optional[Any]:
        key = ("trigger", schema, table, name)
        found, value = self.cache.get(key)
        if found:
            return value

        query = """
            SELECT t.tgargs
            FROM pg_trigger t
            JOIN pg_class c ON c.oid = t.tgrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = ? AND c.relname = ? AND t.tgname = ?
        """
        row = await self.connector.fetchrow(query, schema, table, name)
        value = None if row is None else (row["tgargs"] or b"")
        self.cache.put(key, value)
        return value

    async def trigger_exists(self, schema: str, table: str, name: str) -> bool:
        return await self._trigger_args(schema, table, name) is not None

    async def trigger_arguments(self, schema: str, table: str, name: str) -> List[str]:
        """Arguments a trigger passes to its function; empty when it does not exist."""
        return decode_trigger_arguments(await self._trigger_args(schema, table, name))

    async def table_tablespace(self, schema: str, table: str) -> Optional[str]:
        query = "SELECT tablespace FROM pg_tables WHERE schemaname = ? AND tablename = ?"
        return await self.connector.fetchval(query, schema, table)

    async def tablespace_location(self, name: str) -> Optional[str]:
        """Directory of a tablespace; None when the tablespace does not exist."""
        query = "SELECT pg_tablespace_location(oid) AS location FROM pg_tablespace WHERE spcname = ?"
        row = await self.connector.fetchrow(query, name)
        return None if row is None else (row["location"] or "")

    async def language_exists(self, name: str) -> bool:
        query = "SELECT EXISTS (SELECT 1 FROM pg_language WHERE lanname = ?)"
        return bool(await self.connector.fetchval(query, name))

    async def function_source(self, schema: str, name: str) -> Optional[str]:
        query = """
            SELECT p.prosrc
            FROM pg_proc p
            JOIN pg_namespace n ON n.oid = p.pronamespace
            WHERE n.nspname = ? AND p.proname = ?
            LIMIT 1
        """
        return await self.connector.fetchval(query, schema, name)
