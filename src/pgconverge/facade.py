"""
Database facade for pgconverge.

Owns the connector, the active schema and the per-run catalog cache. A
logical database is either a real PostgreSQL database or, in
schema-as-database mode, a schema of one shared database.
"""

import logging
from typing import Dict, List, Optional

from .config import PgConvergeConfig
from .database.connection import Connector
from .database.introspection import CatalogCache, SchemaIntrospector
from .definitions import TableSpec
from .exceptions import SchemaError
from .identifiers import quote_identifier
from .schema.operations import ChangeType, OperationMode, SchemaChange, StatementExecutor
from .schema.reconciler import ReconciliationResult, ReconciliationStatus, SchemaReconciler


logger = logging.getLogger(__name__)


class Database:
    """Entry point for reconciling declared tables against one server."""

    def __init__(self, config: PgConvergeConfig, connector: Optional[Connector] = None):
        self.config = config
        self.connector = connector or Connector(config.require_connection())
        self.cache = CatalogCache()
        self.introspector = SchemaIntrospector(self.connector, self.cache)
        self.schema = config.schema_management.default_schema

    @property
    def schema_as_database(self) -> bool:
        return self.config.schema_management.schema_as_database

    @property
    def search_language(self) -> str:
        return self.config.search.language

    @property
    def fulltext_method(self) -> str:
        return self.config.search.index_method

    async def connect(self) -> None:
        await self.connector.connect()

    async def close(self) -> None:
        await self.connector.close()

    async def server_version(self) -> str:
        return await self.connector.fetchval("SHOW server_version")

    async def database_exists(self, name: str) -> bool:
        if self.schema_as_database:
            return await self.introspector.schema_exists(name)
        return await self.introspector.database_exists(name)

    async def database_list(self) -> List[str]:
        if self.schema_as_database:
            return await self.introspector.list_schemas()
        return await self.introspector.list_databases()

    def executor(self) -> StatementExecutor:
        return StatementExecutor(
            self.connector,
            self.introspector,
            OperationMode(self.config.schema_management.mode),
        )

    async def create_database(self, name: str) -> SchemaChange:
        """Create a logical database. CREATE DATABASE cannot run inside a transaction."""
        if self.schema_as_database:
            change_type = ChangeType.CREATE_SCHEMA
            sql = f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(name)}"
        else:
            change_type = ChangeType.CREATE_DATABASE
            sql = f"CREATE DATABASE {quote_identifier(name)}"
        logger.info(f"Creating database {name}")
        return await self.executor().apply(
            [], change_type, name, "", f"Create database {name}", sql, target_object=name
        )

    async def drop_database(self, name: str) -> SchemaChange:
        if self.schema_as_database:
            change_type = ChangeType.DROP_SCHEMA
            sql = f"DROP SCHEMA IF EXISTS {quote_identifier(name)} CASCADE"
        else:
            change_type = ChangeType.DROP_DATABASE
            sql = f"DROP DATABASE IF EXISTS {quote_identifier(name)}"
        logger.warning(f"Dropping database {name}")
        return await self.executor().apply(
            [], change_type, name, "", f"Drop database {name}", sql, target_object=name
        )

    async def select_database(self, name: str, create: bool = False) -> None:
        """Make name the active logical database, creating it when asked to."""
        if not await self.database_exists(name):
            if not create:
                raise SchemaError(f"Database '{name}' does not exist", details={"database": name})
            await self.create_database(name)

        if self.schema_as_database:
            await self.connector.query(f"SET search_path TO {quote_identifier(name)}, public")
            self.schema = name
        else:
            await self.connector.reconnect(name)
        self.introspector.invalidate()
        logger.info(f"Selected database {name} (schema {self.schema})")

    def reconciler(self) -> SchemaReconciler:
        """Reconciler bound to the active schema, starting from an empty cache."""
        self.introspector.invalidate()
        return SchemaReconciler.from_config(
            self.connector, self.config, schema=self.schema, introspector=self.introspector
        )

    async def run(self, specs: Optional[List[TableSpec]] = None) -> Dict[str, ReconciliationResult]:
        """
        Reconcile a batch of tables, by default every declared table.

        In transactional mode the batch stops at the first failing table and
        everything it changed is rolled back. CREATE TABLESPACE, VACUUM and
        CLUSTER refuse to run inside a transaction, so specs using them
        should not be reconciled transactionally.
        """
        specs = self.config.tables if specs is None else specs
        management = self.config.schema_management
        reconciler = self.reconciler()

        if not management.transactional or self.config.dry_run:
            return await reconciler.reconcile_all(specs, stop_on_error=management.stop_on_error)

        await self.connector.begin()
        try:
            results = await reconciler.reconcile_all(specs, stop_on_error=True)
        except BaseException:
            await self.connector.rollback()
            self.introspector.invalidate()
            raise

        failed = [
            name for name, result in results.items()
            if result.status in (ReconciliationStatus.FAILED, ReconciliationStatus.PARTIAL)
        ]
        if failed:
            logger.error(f"Rolling back reconciliation run, failed tables: {', '.join(failed)}")
            await self.connector.rollback()
            self.introspector.invalidate()
            for result in results.values():
                if result.status == ReconciliationStatus.SUCCESS and result.has_changes:
                    result.warnings.append("Rolled back with the rest of the run")
        else:
            await self.connector.commit()
        return results

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
