"""
Declared schema model for pgconverge.

A TableSpec is built by the caller (or loaded from YAML) for every run and
describes the portable shape of one table: its fields, indexes and
engine-specific options such as tablespace placement and partitioning.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class FieldKind(str, Enum):
    """Portable field kinds."""

    BOOLEAN = "boolean"
    INT = "int"
    BIGINT = "bigint"
    DECIMAL = "decimal"
    ENUM = "enum"
    VARCHAR = "varchar"
    TEXT = "text"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    FLOAT = "float"


class IndexKind(str, Enum):
    """Portable index kinds."""

    INDEX = "index"
    BTREE = "btree"
    UNIQUE = "unique"
    HASH = "hash"
    FULLTEXT = "fulltext"


class FieldSpec(BaseModel):
    """Declared column."""

    kind: FieldKind = Field(..., description="Portable field kind")
    precision: Optional[Union[int, str]] = Field(
        None, description="Length for varchar, precision (or 'p,s') for decimal"
    )
    scale: Optional[int] = Field(None, description="Scale for decimal")
    values: List[str] = Field(default_factory=list, description="Allowed enum values")
    default: Optional[Any] = Field(None, description="Default value")
    nullable: bool = Field(True, description="Allow NULL values")
    array: bool = Field(False, description="Store an array of the kind")
    auto_increment: bool = Field(False, description="Sequence-backed integer key")

    @model_validator(mode="after")
    def check_kind_options(self) -> "FieldSpec":
        if self.kind == FieldKind.ENUM:
            if not self.values:
                raise ValueError("enum fields require a non-empty list of values")
            if len(set(self.values)) != len(self.values):
                raise ValueError(f"enum values must be unique: {self.values}")
            if self.default not in (None, "") and self.default not in self.values:
                raise ValueError(
                    f"enum default '{self.default}' is not one of {self.values}"
                )
        elif self.values:
            raise ValueError(f"values are only allowed on enum fields, not {self.kind.value}")

        if self.auto_increment and self.kind not in (FieldKind.INT, FieldKind.BIGINT):
            raise ValueError("auto_increment is only allowed on int and bigint fields")
        if self.auto_increment and self.array:
            raise ValueError("auto_increment fields cannot be arrays")
        return self

    @property
    def enum_default(self) -> Optional[str]:
        """Declared enum default, or None for the empty-string sentinel."""
        if self.kind != FieldKind.ENUM or self.default in (None, ""):
            return None
        return str(self.default)

    @property
    def repair_value(self) -> Optional[str]:
        """Value written into rows that fall outside the allowed enum values."""
        if self.kind != FieldKind.ENUM:
            return None
        return self.enum_default or self.values[0]


class IndexSpec(BaseModel):
    """Declared index."""

    kind: IndexKind = Field(IndexKind.INDEX, description="Index kind")
    columns: List[str] = Field(..., description="Indexed or fulltext source columns")
    fillfactor: Optional[int] = Field(None, ge=10, le=100, description="Index fill factor")
    where: Optional[str] = Field(None, description="Partial index predicate")
    method: Optional[str] = Field(
        None, description="Fulltext index method override (GIN or GIST)"
    )

    @field_validator("columns", mode="before")
    @classmethod
    def split_column_list(cls, v):
        # '"Title","Content"' style lists are accepted alongside real lists
        if isinstance(v, str):
            v = [part.strip().strip('"').strip() for part in v.split(",")]
        return v

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: List[str]) -> List[str]:
        if not v or any(not column for column in v):
            raise ValueError("index requires at least one named column")
        return v

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        method = v.upper()
        if method not in ("GIN", "GIST"):
            raise ValueError(f"fulltext method must be GIN or GIST, not {v}")
        return method

    @property
    def is_fulltext(self) -> bool:
        return self.kind == IndexKind.FULLTEXT


class TablespaceSpec(BaseModel):
    """Physical placement of a table."""

    name: str = Field(..., description="Tablespace name")
    location: str = Field(..., description="Directory on the database server")


class TableOptions(BaseModel):
    """Engine-specific table options."""

    tablespace: Optional[TablespaceSpec] = Field(None, description="Table placement")
    partitions: Dict[str, str] = Field(
        default_factory=dict,
        description="Child table name -> routing condition written against NEW",
    )
    cluster: Optional[str] = Field(None, description="Logical index to cluster on")


class TableSpec(BaseModel):
    """Declared table."""

    name: str = Field(..., description="Table name")
    fields: Dict[str, FieldSpec] = Field(default_factory=dict, description="Columns in order")
    indexes: Dict[str, IndexSpec] = Field(default_factory=dict, description="Indexes by logical name")
    options: TableOptions = Field(default_factory=TableOptions, description="Table options")
    primary_key: str = Field("ID", description="Primary key column")

    @field_validator("name", "primary_key")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name must not be empty")
        return v

    @model_validator(mode="after")
    def add_primary_key(self) -> "TableSpec":
        if self.primary_key not in self.fields:
            key = FieldSpec(kind=FieldKind.BIGINT, auto_increment=True, nullable=False)
            self.fields = {self.primary_key: key, **self.fields}
        return self

    @model_validator(mode="after")
    def check_references(self) -> "TableSpec":
        for index_name, index in self.indexes.items():
            missing = [c for c in index.columns if c not in self.fields]
            if missing:
                raise ValueError(
                    f"index '{index_name}' references undeclared columns {missing}"
                )
        cluster = self.options.cluster
        if cluster and cluster not in self.indexes:
            raise ValueError(f"cluster index '{cluster}' is not declared")
        if cluster and self.indexes[cluster].is_fulltext:
            raise ValueError(f"cannot cluster on fulltext index '{cluster}'")
        return self

    @property
    def fulltext_indexes(self) -> Dict[str, IndexSpec]:
        return {n: i for n, i in self.indexes.items() if i.is_fulltext}

    @property
    def regular_indexes(self) -> Dict[str, IndexSpec]:
        return {n: i for n, i in self.indexes.items() if not i.is_fulltext}
