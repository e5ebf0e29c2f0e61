"""
Exception classes for pgconverge.
"""

from typing import Any, Dict, Optional


class PgConvergeError(Exception):
    """Base exception for all pgconverge errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(PgConvergeError):
    """Raised when there's an error in configuration."""

    pass


class ValidationError(PgConvergeError):
    """Raised when there's a validation error."""

    pass


class DatabaseError(PgConvergeError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the connection cannot be established or is lost mid-run."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class StatementError(DatabaseError):
    """Raised when a single statement is rejected by the server."""

    def __init__(
        self,
        sql: str,
        native_message: str,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            f"Statement failed: {native_message}",
            {"sql": " ".join(sql.split())},
            cause,
        )
        self.sql = sql
        self.native_message = native_message


class SchemaError(DatabaseError):
    """Raised when there's an error with database schema operations."""

    pass


class TableSpecError(SchemaError):
    """Raised when a declared table, field or index is inconsistent."""

    pass


class IntrospectionAmbiguity(SchemaError):
    """
    Catalog metadata that could not be decoded into a portable field.

    Recorded as a warning on the reconciliation result rather than raised.
    """

    def __init__(
        self,
        table: str,
        column: str,
        reason: str,
        raw: Optional[str] = None,
    ) -> None:
        details = {"raw": raw} if raw else None
        super().__init__(f"Cannot decode {table}.{column}: {reason}", details)
        self.table = table
        self.column = column
        self.reason = reason
        self.raw = raw
