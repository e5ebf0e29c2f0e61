"""
Database connection management for pgconverge.

A reconciliation run talks to PostgreSQL over exactly one asyncpg
connection. The Connector executes raw or parameterized statements,
translates portable ``?`` placeholders, and turns driver failures into
StatementError or DatabaseConnectionError.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from urllib.parse import parse_qs, urlparse

import asyncpg
from pydantic import BaseModel, Field, field_validator

from .placeholders import translate
from ..exceptions import DatabaseConfigurationError, DatabaseConnectionError, StatementError
from ..identifiers import quote_identifier, quote_literal


logger = logging.getLogger(__name__)

ROW_RETURNING_KEYWORDS = ("SELECT", "WITH", "VALUES", "SHOW", "TABLE")


class ConnectionConfig(BaseModel):
    """Database connection configuration."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field("postgres", description="Database user")
    password: str = Field("", description="Database password")

    connect_timeout: float = Field(30.0, description="Connect timeout in seconds")
    command_timeout: float = Field(300.0, description="Command timeout in seconds")
    server_settings: Dict[str, str] = Field(
        default_factory=lambda: {"application_name": "pgconverge"},
        description="PostgreSQL server settings",
    )

    ssl_mode: Optional[str] = Field(None, description="SSL mode")

    @field_validator("database")
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @classmethod
    def from_url(cls, url: str) -> "ConnectionConfig":
        """Create configuration from database URL."""
        parsed = urlparse(url)

        if parsed.scheme not in ("postgresql", "postgres"):
            raise DatabaseConfigurationError(f"Invalid database URL scheme: {parsed.scheme}")

        if not parsed.path or parsed.path == "/":
            raise DatabaseConfigurationError("Database name is required")

        query_params = parse_qs(parsed.query) if parsed.query else {}

        config_data = {
            "host": parsed.hostname or "localhost",
            "port": parsed.port or 5432,
            "database": parsed.path.lstrip("/"),
            "user": parsed.username or "postgres",
            "password": parsed.password or "",
        }
        if "sslmode" in query_params:
            config_data["ssl_mode"] = query_params["sslmode"][0]

        return cls(**config_data)

    def with_database(self, database: str) -> "ConnectionConfig":
        """Copy of this configuration pointing at another database."""
        return self.model_copy(update={"database": database})

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to asyncpg connection kwargs."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "timeout": self.connect_timeout,
            "command_timeout": self.command_timeout,
            "server_settings": self.server_settings,
        }
        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode
        return kwargs


@dataclass
class QueryResult:
    """Rows and command status of one executed statement."""

    rows: List[Any] = field(default_factory=list)
    status: str = ""

    @property
    def affected_rows(self) -> int:
        # Command tags end in the row count: "UPDATE 3", "INSERT 0 1"
        parts = self.status.split()
        if parts and parts[-1].isdigit():
            return int(parts[-1])
        return 0

    def __iter__(self):
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


def returns_rows(sql: str) -> bool:
    words = sql.lstrip().lstrip("(").split(None, 1)
    return bool(words) and words[0].upper() in ROW_RETURNING_KEYWORDS


class Connector:
    """Single-connection PostgreSQL executor."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._connection: Optional[asyncpg.Connection] = None
        self._transaction: Optional[Any] = None
        self._lock = asyncio.Lock()
        self._last_error = ""
        self._affected_rows = 0

    async def connect(self) -> None:
        """Open the connection."""
        async with self._lock:
            if self._connection is not None:
                return

            try:
                logger.info(
                    f"Connecting to {self.config.host}:{self.config.port}/{self.config.database}"
                )
                self._connection = await asyncpg.connect(**self.config.to_connection_kwargs())
                logger.info("Connection established")

            except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
                self._last_error = str(e)
                logger.error(f"Failed to connect: {e}")
                raise DatabaseConnectionError(
                    f"Failed to connect to {self.config.host}:{self.config.port}/{self.config.database}",
                    cause=e,
                ) from e

    async def close(self) -> None:
        """Close the connection."""
        async with self._lock:
            if self._connection is not None:
                logger.info("Closing connection")
                await self._connection.close()
                self._connection = None
                self._transaction = None

    async def reconnect(self, database: str) -> None:
        """Close and reopen the connection against another database."""
        await self.close()
        self.config = self.config.with_database(database)
        await self.connect()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    def _require_connection(self) -> asyncpg.Connection:
        if self._connection is None:
            raise DatabaseConnectionError("Connector is not connected")
        return self._connection

    @asynccontextmanager
    async def _errors(self, sql: str) -> AsyncIterator[None]:
        try:
            yield
        except (asyncpg.exceptions.PostgresConnectionError,
                asyncpg.exceptions.ConnectionDoesNotExistError,
                OSError) as e:
            self._last_error = str(e)
            logger.error(f"Connection lost: {e}")
            raise DatabaseConnectionError("Connection lost", cause=e) from e
        except (asyncpg.PostgresError, asyncpg.exceptions.InterfaceError) as e:
            self._last_error = str(e)
            logger.error(f"Statement failed: {e}")
            logger.debug(f"Failed SQL: {sql}")
            raise StatementError(sql, str(e), e) from e
        else:
            self._last_error = ""

    async def query(self, sql: str) -> QueryResult:
        """Execute a statement without parameters."""
        conn = self._require_connection()
        logger.debug(f"SQL: {sql}")
        async with self._errors(sql):
            if returns_rows(sql):
                rows = await conn.fetch(sql)
                result = QueryResult(rows=list(rows), status=f"SELECT {len(rows)}")
            else:
                result = QueryResult(status=await conn.execute(sql))
        self._affected_rows = result.affected_rows
        return result

    async def prepared_query(self, sql: str, params: Sequence[Any]) -> QueryResult:
        """Execute a statement written with ``?`` placeholders."""
        conn = self._require_connection()
        translated, args = translate(sql, params)
        logger.debug(f"SQL: {translated} {args}")
        async with self._errors(translated):
            statement = await conn.prepare(translated)
            rows = await statement.fetch(*args)
            result = QueryResult(rows=list(rows), status=statement.get_statusmsg() or "")
        self._affected_rows = result.affected_rows
        return result

    async def execute(self, sql: str, *params) -> str:
        """Execute a statement and return its command status."""
        conn = self._require_connection()
        translated, args = translate(sql, params) if params else (sql, [])
        logger.debug(f"SQL: {translated}")
        async with self._errors(translated):
            return await conn.execute(translated, *args)

    async def fetch(self, sql: str, *params) -> List[asyncpg.Record]:
        """Fetch all rows of a query."""
        conn = self._require_connection()
        translated, args = translate(sql, params) if params else (sql, [])
        async with self._errors(translated):
            return await conn.fetch(translated, *args)

    async def fetchrow(self, sql: str, *params) -> Optional[asyncpg.Record]:
        """Fetch a single row of a query."""
        conn = self._require_connection()
        translated, args = translate(sql, params) if params else (sql, [])
        async with self._errors(translated):
            return await conn.fetchrow(translated, *args)

    async def fetchval(self, sql: str, *params) -> Any:
        """Fetch a single value of a query."""
        conn = self._require_connection()
        translated, args = translate(sql, params) if params else (sql, [])
        async with self._errors(translated):
            return await conn.fetchval(translated, *args)

    async def begin(self) -> None:
        """Start a transaction spanning the following statements."""
        if self._transaction is not None:
            raise DatabaseConnectionError("A transaction is already in progress")
        self._transaction = self._require_connection().transaction()
        await self._transaction.start()

    async def commit(self) -> None:
        if self._transaction is not None:
            transaction, self._transaction = self._transaction, None
            await transaction.commit()

    async def rollback(self) -> None:
        if self._transaction is not None:
            transaction, self._transaction = self._transaction, None
            await transaction.rollback()

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed statements in one transaction."""
        await self.begin()
        try:
            yield
        except BaseException:
            await self.rollback()
            raise
        else:
            await self.commit()

    def quote_identifier(self, name: str) -> str:
        return quote_identifier(name)

    def quote_string(self, value: Any) -> str:
        return quote_literal(value)

    def last_error(self) -> str:
        return self._last_error

    def affected_rows(self) -> int:
        return self._affected_rows

    async def __aenter__(self) -> "Connector":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
