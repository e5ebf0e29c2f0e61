"""
Database integration package for pgconverge.

This package provides:
- A single-connection asyncpg executor
- Portable ``?`` placeholder translation
- Schema-scoped catalog introspection
"""

from .connection import Connector, ConnectionConfig, QueryResult
from .introspection import SchemaIntrospector, ColumnInfo, IndexInfo, TableInfo, CatalogCache
from .placeholders import translate

__all__ = [
    "Connector",
    "ConnectionConfig",
    "QueryResult",
    "SchemaIntrospector",
    "ColumnInfo",
    "IndexInfo",
    "TableInfo",
    "CatalogCache",
    "translate",
]
