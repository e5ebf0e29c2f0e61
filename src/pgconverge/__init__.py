"""
pgconverge: declarative PostgreSQL schema reconciliation.

pgconverge compares declared table definitions with what the PostgreSQL
catalogs report and issues the DDL that converges the two, emulating enum
columns, fulltext indexes and partitioning with portable building blocks.
"""

__version__ = "0.1.0"
__author__ = "pgconverge Contributors"

from .config import PgConvergeConfig
from .definitions import FieldKind, FieldSpec, IndexKind, IndexSpec, TableSpec
from .exceptions import PgConvergeError, ConfigurationError, DatabaseError, SchemaError

__all__ = [
    "__version__",
    "PgConvergeConfig",
    "FieldKind",
    "FieldSpec",
    "IndexKind",
    "IndexSpec",
    "TableSpec",
    "PgConvergeError",
    "ConfigurationError",
    "DatabaseError",
    "SchemaError",
]
