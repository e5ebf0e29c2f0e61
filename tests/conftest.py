"""
Pytest configuration and shared fixtures for pgconverge tests.

The FakeCatalog stands in for SchemaIntrospector. ``converge`` fills it with
exactly what the PostgreSQL catalogs report for a table after a successful
reconciliation (information_schema type names, cast-decorated defaults,
pg_get_constraintdef text), so reconciler tests can assert on the
statements a second run would issue.
"""

import re
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from pgconverge.config import PgConvergeConfig
from pgconverge.database.connection import ConnectionConfig, Connector, QueryResult
from pgconverge.database.introspection import ColumnInfo, IndexInfo
from pgconverge.definitions import FieldKind, FieldSpec, IndexKind, IndexSpec, TableSpec
from pgconverge.identifiers import IdentifierBuilder
from pgconverge.schema.codec import PhysicalColumn, PostgresTypeCodec
from pgconverge.schema.partitions import PartitionManager
from pgconverge.schema.synthesizer import PostgresIndexSynthesizer


# ============================================================================
# Catalog rendering helpers
# ============================================================================

UDT_NAMES = {
    "smallint": "int2",
    "integer": "int4",
    "bigint": "int8",
    "numeric": "numeric",
    "varchar": "varchar",
    "text": "text",
    "date": "date",
    "time": "time",
    "timestamp": "timestamp",
    "double precision": "float8",
}

REPORTED_TYPES = {
    "varchar": "character varying",
    "time": "time without time zone",
    "timestamp": "timestamp without time zone",
}

TYPE_PATTERN = re.compile(r"^(?P<name>[a-z][a-z ]*?)(?:\((?P<p>\d+)(?:,(?P<s>\d+))?\))?$")


def reported_check(column: str, values: List[str]) -> str:
    """A CHECK constraint as pg_get_constraintdef renders ``col IN (...)``."""
    if len(values) == 1:
        return f"CHECK (((\"{column}\")::text = '{values[0]}'::text))"
    items = ", ".join(f"'{v}'::character varying" for v in values)
    return f"CHECK (((\"{column}\")::text = ANY ((ARRAY[{items}])::text[])))"


def reported_column(table: str, physical: PhysicalColumn, position: int) -> ColumnInfo:
    """A column as information_schema.columns reports it."""
    data_type = physical.data_type
    array = data_type.endswith("[]")
    base = data_type[:-2] if array else data_type
    info: Dict[str, Any] = {
        "name": physical.name,
        "is_nullable": not physical.not_null,
        "ordinal_position": position,
    }

    if base in ("serial", "bigserial"):
        info["data_type"] = "integer" if base == "serial" else "bigint"
        info["default"] = f"nextval('\"{table}_{physical.name}_seq\"'::regclass)"
        return ColumnInfo(**info)

    match = TYPE_PATTERN.match(base)
    name = match.group("name")
    if array:
        return ColumnInfo(data_type="ARRAY", udt_name="_" + UDT_NAMES[name], **info)

    info["data_type"] = REPORTED_TYPES.get(name, name)
    info["udt_name"] = UDT_NAMES.get(name, name)
    if name == "varchar":
        info["max_length"] = int(match.group("p"))
    elif name == "numeric":
        info["numeric_precision"] = int(match.group("p"))
        info["numeric_scale"] = int(match.group("s") or 0)

    default = physical.default
    if default is not None and default.startswith("'"):
        default = f"{default}::{info['data_type']}"
    info["default"] = default
    return ColumnInfo(**info)


class FakeCatalog:
    """In-memory stand-in for SchemaIntrospector."""

    def __init__(self, identifiers: Optional[IdentifierBuilder] = None):
        self.identifiers = identifiers or IdentifierBuilder()
        self.codec = PostgresTypeCodec(self.identifiers)
        self.synthesizer = PostgresIndexSynthesizer(self.identifiers)

        self.columns: Dict[Tuple[str, str], Dict[str, ColumnInfo]] = {}
        self.indexes: Dict[Tuple[str, str], Dict[str, IndexInfo]] = {}
        self.constraints: Dict[Tuple[str, str], Tuple[str, str]] = {}
        self.triggers: Dict[Tuple[str, str, str], List[str]] = {}
        self.clustered: Dict[Tuple[str, str], str] = {}
        self.table_spaces: Dict[Tuple[str, str], str] = {}
        self.tablespaces: Dict[str, str] = {}
        self.languages = {"plpgsql"}
        self.functions: Dict[Tuple[str, str], str] = {}
        self.schemas = {"public"}
        self.databases = ["postgres"]
        self.invalidations = 0

    # -- state builders ------------------------------------------------------

    def add_column(self, schema: str, table: str, column: ColumnInfo) -> None:
        columns = self.columns.setdefault((schema, table), {})
        column.ordinal_position = column.ordinal_position or len(columns) + 1
        columns[column.name] = column

    def add_index(self, schema: str, table: str, index: IndexInfo) -> None:
        self.indexes.setdefault((schema, table), {})[index.name] = index

    def add_constraint(self, schema: str, table: str, name: str, definition: str) -> None:
        self.constraints[(schema, name)] = (table, definition)

    def converge(self, spec: TableSpec, schema: str = "public") -> "FakeCatalog":
        """Record spec as PostgreSQL reports it after a successful run."""
        self._converge_table(schema, spec.name, spec)
        for child in spec.options.partitions:
            self._converge_table(schema, child, spec)

        if spec.options.partitions:
            manager = PartitionManager(self, self.synthesizer, MagicMock())
            function = self.identifiers.insert_function(spec.name)
            self.functions[(schema, function)] = manager.routing_body(schema, spec)
            self.triggers[(schema, spec.name, self.identifiers.insert_trigger(spec.name))] = []

        tablespace = spec.options.tablespace
        if tablespace:
            self.tablespaces[tablespace.name] = tablespace.location
            self.table_spaces[(schema, spec.name)] = tablespace.name
        if spec.options.cluster:
            self.clustered[(schema, spec.name)] = self.identifiers.index_name(
                spec.name, spec.options.cluster
            )
        return self

    def _converge_table(self, schema: str, table: str, spec: TableSpec) -> None:
        self.columns[(schema, table)] = {}
        for position, (name, field_spec) in enumerate(spec.fields.items(), start=1):
            # Inherited CHECK constraints keep the parent's name
            physical = self.codec.to_physical(spec.name, name, field_spec)
            self.add_column(schema, table, reported_column(table, physical, position))
            if physical.check and table == spec.name:
                self.add_constraint(
                    schema, table, physical.check_name, reported_check(name, physical.enum_values)
                )

        primary_key = self.identifiers.primary_key(table)
        self.add_constraint(schema, table, primary_key, f'PRIMARY KEY ("{spec.primary_key}")')
        self.indexes[(schema, table)] = {}
        self.add_index(schema, table, IndexInfo(
            name=primary_key, table_schema=schema, table_name=table,
            columns=[spec.primary_key], is_unique=True, is_primary=True,
            method="btree", definition="",
        ))

        for name, index in spec.regular_indexes.items():
            self.add_index(schema, table, IndexInfo(
                name=self.identifiers.index_name(table, name),
                table_schema=schema,
                table_name=table,
                columns=list(index.columns),
                is_unique=index.kind == IndexKind.UNIQUE,
                is_primary=False,
                method="hash" if index.kind == IndexKind.HASH else "btree",
                definition="",
                predicate=index.where,
                fillfactor=index.fillfactor,
            ))

        for name, index in spec.fulltext_indexes.items():
            plan = self.synthesizer.plan_fulltext(schema, table, name, index)
            self.add_column(schema, table, ColumnInfo(
                name=plan.shadow_column, data_type="tsvector", is_nullable=True, udt_name="tsvector",
            ))
            self.triggers[(schema, table, plan.trigger_name)] = plan.trigger_arguments
            self.add_index(schema, table, IndexInfo(
                name=plan.index_name,
                table_schema=schema,
                table_name=table,
                columns=[plan.shadow_column],
                is_unique=False,
                is_primary=False,
                method=plan.method.lower(),
                definition="",
                predicate=index.where,
                fillfactor=index.fillfactor,
            ))

    # -- SchemaIntrospector interface ---------------------------------------

    def invalidate(self) -> None:
        self.invalidations += 1

    async def schema_exists(self, schema: str) -> bool:
        return schema in self.schemas

    async def list_schemas(self) -> List[str]:
        return sorted(self.schemas)

    async def database_exists(self, name: str) -> bool:
        return name in self.databases

    async def list_databases(self) -> List[str]:
        return list(self.databases)

    async def table_exists(self, schema: str, table: str) -> bool:
        return (schema, table) in self.columns

    async def list_tables(self, schema: str) -> List[str]:
        return sorted(t for s, t in self.columns if s == schema)

    async def column_exists(self, schema: str, table: str, column: str) -> bool:
        return column in self.columns.get((schema, table), {})

    async def get_columns(self, schema: str, table: str) -> Dict[str, ColumnInfo]:
        return dict(self.columns.get((schema, table), {}))

    async def get_indexes(self, schema: str, table: str) -> Dict[str, IndexInfo]:
        return dict(self.indexes.get((schema, table), {}))

    async def clustered_index(self, schema: str, table: str) -> Optional[str]:
        return self.clustered.get((schema, table))

    async def constraint_definition(self, schema: str, name: str) -> Optional[str]:
        entry = self.constraints.get((schema, name))
        return entry[1] if entry else None

    async def constraint_exists(self, schema: str, table: str, name: str) -> bool:
        entry = self.constraints.get((schema, name))
        return entry is not None and entry[0] == table

    async def trigger_exists(self, schema: str, table: str, name: str) -> bool:
        return (schema, table, name) in self.triggers

    async def trigger_arguments(self, schema: str, table: str, name: str) -> List[str]:
        return list(self.triggers.get((schema, table, name), []))

    async def table_tablespace(self, schema: str, table: str) -> Optional[str]:
        return self.table_spaces.get((schema, table))

    async def tablespace_location(self, name: str) -> Optional[str]:
        return self.tablespaces.get(name)

    async def language_exists(self, name: str) -> bool:
        return name in self.languages

    async def function_source(self, schema: str, name: str) -> Optional[str]:
        return self.functions.get((schema, name))


# ============================================================================
# Connector fixtures
# ============================================================================

@pytest.fixture
def connection_config() -> ConnectionConfig:
    return ConnectionConfig(host="localhost", port=5432, database="app", user="postgres", password="secret")


@pytest.fixture
def mock_connector(connection_config) -> MagicMock:
    """Connector double recording every statement sent through query()."""
    connector = MagicMock(spec=Connector)
    connector.config = connection_config
    connector.query = AsyncMock(return_value=QueryResult(status="OK"))
    connector.fetch = AsyncMock(return_value=[])
    connector.fetchrow = AsyncMock(return_value=None)
    connector.fetchval = AsyncMock(return_value=None)
    connector.execute = AsyncMock(return_value="OK")
    connector.connect = AsyncMock()
    connector.close = AsyncMock()
    connector.reconnect = AsyncMock()
    connector.begin = AsyncMock()
    connector.commit = AsyncMock()
    connector.rollback = AsyncMock()
    return connector


def executed_sql(connector: MagicMock) -> List[str]:
    """Statements sent through connector.query, in order."""
    return [c.args[0] for c in connector.query.call_args_list]


# ============================================================================
# Declaration fixtures
# ============================================================================

@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def articles_spec() -> TableSpec:
    """Table exercising every column kind plus regular and fulltext indexes."""
    return TableSpec(
        name="Articles",
        fields={
            "Title": FieldSpec(kind=FieldKind.VARCHAR, precision=200, default=""),
            "Body": FieldSpec(kind=FieldKind.TEXT),
            "State": FieldSpec(kind=FieldKind.ENUM, values=["draft", "published"], default="draft"),
            "Featured": FieldSpec(kind=FieldKind.BOOLEAN, default=False),
            "Views": FieldSpec(kind=FieldKind.INT, nullable=False),
            "Price": FieldSpec(kind=FieldKind.DECIMAL, precision="10,2", default=0),
            "Rating": FieldSpec(kind=FieldKind.FLOAT),
            "Published": FieldSpec(kind=FieldKind.DATETIME),
            "Day": FieldSpec(kind=FieldKind.DATE),
            "Tags": FieldSpec(kind=FieldKind.VARCHAR, array=True),
        },
        indexes={
            "state": IndexSpec(kind=IndexKind.INDEX, columns=["State"]),
            "title": IndexSpec(kind=IndexKind.UNIQUE, columns=["Title"], fillfactor=70),
            "recent": IndexSpec(kind=IndexKind.BTREE, columns=["Published"], where='"Published" IS NOT NULL'),
            "search": IndexSpec(kind=IndexKind.FULLTEXT, columns=["Title", "Body"]),
        },
    )


@pytest.fixture
def partitioned_spec() -> TableSpec:
    return TableSpec(
        name="Events",
        fields={
            "Year": FieldSpec(kind=FieldKind.INT, nullable=False),
            "Kind": FieldSpec(kind=FieldKind.ENUM, values=["a", "b"]),
            "Note": FieldSpec(kind=FieldKind.TEXT),
        },
        indexes={
            "year": IndexSpec(columns=["Year"]),
            "notes": IndexSpec(kind=IndexKind.FULLTEXT, columns=["Note"]),
        },
        options={
            "tablespace": {"name": "fast", "location": "/mnt/fast"},
            "partitions": {
                "Events_old": "NEW.\"Year\" < 2000",
                "Events_new": "NEW.\"Year\" >= 2000",
            },
            "cluster": "year",
        },
    )


@pytest.fixture
def sample_config_data() -> Dict[str, Any]:
    return {
        "connection": {
            "host": "db.example.com",
            "port": 5432,
            "database": "app",
            "user": "app",
            "password": "secret",
        },
        "search": {"language": "english", "index_method": "gin"},
        "schema_management": {"default_schema": "public"},
        "tables": [
            {
                "name": "Articles",
                "fields": {
                    "Title": {"kind": "varchar", "precision": 200},
                    "State": {"kind": "enum", "values": ["draft", "published"], "default": "draft"},
                },
                "indexes": {"search": {"kind": "fulltext", "columns": "Title"}},
            },
        ],
    }


@pytest.fixture
def sample_config(sample_config_data) -> PgConvergeConfig:
    return PgConvergeConfig(**sample_config_data)


@pytest.fixture
def temp_config_file(tmp_path, sample_config_data) -> str:
    path = tmp_path / "pgconverge.yaml"
    path.write_text(yaml.safe_dump(sample_config_data, sort_keys=False), encoding="utf-8")
    return str(path)
