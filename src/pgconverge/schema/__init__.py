"""
Schema management package for pgconverge.

This package provides:
- Schema reconciliation core logic
- Type and constraint encoding of portable fields
- Index, fulltext trigger and clustering DDL
- Tablespace placement and inheritance partitioning
"""

from .reconciler import SchemaReconciler, ReconciliationResult, ReconciliationStatus
from .codec import TypeCodec, PostgresTypeCodec, PhysicalColumn
from .synthesizer import IndexSynthesizer, PostgresIndexSynthesizer, FulltextPlan
from .operations import StatementExecutor, SchemaChange, ChangeType, OperationMode
from .partitions import PartitionManager
from .factory import DialectFactory

__all__ = [
    "SchemaReconciler",
    "ReconciliationResult",
    "ReconciliationStatus",
    "TypeCodec",
    "PostgresTypeCodec",
    "PhysicalColumn",
    "IndexSynthesizer",
    "PostgresIndexSynthesizer",
    "FulltextPlan",
    "StatementExecutor",
    "SchemaChange",
    "ChangeType",
    "OperationMode",
    "PartitionManager",
    "DialectFactory",
]
