"""
Type and constraint codec for pgconverge.

Maps portable FieldSpecs onto physical PostgreSQL column definitions and
back again. Enumerations have no native counterpart here: an enum is a
varchar(255) column guarded by a named CHECK constraint, and decoding reads
the allowed values back out of the constraint text.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple

from ..database.introspection import ColumnInfo
from ..definitions import FieldKind, FieldSpec
from ..exceptions import IntrospectionAmbiguity
from ..identifiers import IdentifierBuilder, quote_identifier, quote_literal


logger = logging.getLogger(__name__)

ENUM_LENGTH = 255
DEFAULT_VARCHAR_LENGTH = 255

# A single-quoted SQL literal; '' inside it stands for one quote
LITERAL = re.compile(r"'((?:[^']|'')*)'")
CAST = re.compile(r"::[\w\s\"\[\]().,]+$")

ARRAY_ELEMENT_TYPES = {
    "int2": "smallint",
    "int4": "integer",
    "int8": "bigint",
    "numeric": "numeric",
    "varchar": "varchar",
    "text": "text",
    "date": "date",
    "time": "time",
    "timestamp": "timestamp",
    "float8": "double precision",
}

LIVE_TYPE_NAMES = {
    "character varying": "varchar",
    "time without time zone": "time",
    "timestamp without time zone": "timestamp",
}

PORTABLE_KINDS = {
    "smallint": FieldKind.BOOLEAN,
    "integer": FieldKind.INT,
    "bigint": FieldKind.BIGINT,
    "numeric": FieldKind.DECIMAL,
    "varchar": FieldKind.VARCHAR,
    "text": FieldKind.TEXT,
    "date": FieldKind.DATE,
    "time": FieldKind.TIME,
    "timestamp": FieldKind.DATETIME,
    "double precision": FieldKind.FLOAT,
}


@dataclass
class PhysicalColumn:
    """A column as it is written in DDL."""

    name: str
    data_type: str
    default: Optional[str] = None
    not_null: bool = False
    check_name: Optional[str] = None
    check: Optional[str] = None
    enum_values: List[str] = field(default_factory=list)

    @property
    def constraint_sql(self) -> Optional[str]:
        if not self.check:
            return None
        return f"CONSTRAINT {quote_identifier(self.check_name)} CHECK {self.check}"

    def definition(self) -> str:
        parts = [quote_identifier(self.name), self.data_type]
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        if self.not_null:
            parts.append("NOT NULL")
        if self.constraint_sql:
            parts.append(self.constraint_sql)
        return " ".join(parts)


@dataclass
class DecodedColumn:
    """Portable view of a live column, plus what could not be decoded."""

    field: FieldSpec
    ambiguity: Optional[IntrospectionAmbiguity] = None


def parse_default(raw: Optional[str]) -> Optional[str]:
    """
    Reduce a column default expression to its bare value.

    ``'A'::character varying`` becomes ``A``, ``'0'::numeric`` and ``(-1)``
    become ``0`` and ``-1``. Sequence defaults are returned untouched.
    """
    if raw is None:
        return None
    text = raw.strip()
    if text.upper() == "NULL" or text.upper().startswith("NULL::"):
        return None
    if text.startswith("nextval("):
        return text

    while text.startswith("(") and text.endswith(")"):
        text = text[1:-1].strip()

    match = LITERAL.match(text)
    if match and CAST.sub("", text[match.end():]) == "":
        return match.group(1).replace("''", "'")
    return CAST.sub("", text).strip("() ")


def same_value(left: Optional[str], right: Optional[str]) -> bool:
    if left is None or right is None:
        return left is right
    try:
        return Decimal(left) == Decimal(right)
    except InvalidOperation:
        return left == right


def _operator_end(definition: str) -> Optional[int]:
    """Index just past the first '=' or IN keyword outside quotes."""
    in_string = in_identifier = False
    for i, char in enumerate(definition):
        if char == "'" and not in_identifier:
            in_string = not in_string
        elif char == '"' and not in_string:
            in_identifier = not in_identifier
        elif in_string or in_identifier:
            continue
        elif char == "=":
            return i + 1
        elif (
            definition[i:i + 2].upper() == "IN"
            and (i == 0 or not definition[i - 1].isalnum())
            and re.match(r"\s*\(", definition[i + 2:])
        ):
            return i + 2
    return None


class TypeCodec(ABC):
    """Bidirectional mapping between FieldSpecs and physical columns."""

    dialect = ""

    def __init__(self, identifiers: Optional[IdentifierBuilder] = None):
        self.identifiers = identifiers or IdentifierBuilder()

    @abstractmethod
    def to_physical(self, table: str, column: str, spec: FieldSpec) -> PhysicalColumn:
        """Physical column for a declared field."""

    @abstractmethod
    def decode(
        self, table: str, column: ColumnInfo, constraint_def: Optional[str] = None
    ) -> DecodedColumn:
        """Portable field for a live column."""

    @abstractmethod
    def enum_values(self, constraint_def: Optional[str]) -> List[str]:
        """Allowed values encoded in a CHECK constraint definition."""

    @abstractmethod
    def differences(
        self,
        target: PhysicalColumn,
        live: ColumnInfo,
        live_values: Optional[List[str]],
    ) -> List[str]:
        """Aspects (type, nullability, default, check) in which live differs."""

    def to_portable(
        self, column: ColumnInfo, constraint_def: Optional[str] = None, table: str = ""
    ) -> FieldSpec:
        return self.decode(table, column, constraint_def).field

    def column_definition(self, table: str, column: str, spec: FieldSpec) -> str:
        return self.to_physical(table, column, spec).definition()


class PostgresTypeCodec(TypeCodec):
    """PostgreSQL rendition of the portable field kinds."""

    dialect = "postgresql"

    def to_physical(self, table: str, column: str, spec: FieldSpec) -> PhysicalColumn:
        physical = PhysicalColumn(name=column, data_type="", not_null=not spec.nullable)
        kind = spec.kind

        if kind == FieldKind.BOOLEAN:
            physical.data_type = "smallint"
            physical.default = "1" if self._truthy(spec.default) else "0"
        elif kind in (FieldKind.INT, FieldKind.BIGINT):
            if spec.auto_increment:
                physical.data_type = "serial" if kind == FieldKind.INT else "bigserial"
                physical.not_null = True
            else:
                physical.data_type = "integer" if kind == FieldKind.INT else "bigint"
                physical.default = str(self._integer(spec.default))
        elif kind == FieldKind.DECIMAL:
            precision, scale = self.numeric_precision(spec)
            physical.data_type = (
                f"numeric({precision},{scale})" if scale is not None else f"numeric({precision})"
            )
            physical.default = self._number(spec.default)
        elif kind == FieldKind.ENUM:
            physical.data_type = f"varchar({ENUM_LENGTH})"
            if spec.enum_default is not None:
                physical.default = quote_literal(spec.enum_default)
            physical.enum_values = list(spec.values)
            physical.check_name = self.identifiers.check_constraint(table, column)
            physical.check = self.check_expression(column, spec.values)
        elif kind == FieldKind.VARCHAR:
            physical.data_type = f"varchar({self._length(spec.precision)})"
            physical.default = self._text(spec.default)
        elif kind == FieldKind.FLOAT:
            physical.data_type = "double precision"
            physical.default = self._number(spec.default)
        else:
            physical.data_type = {
                FieldKind.TEXT: "text",
                FieldKind.DATE: "date",
                FieldKind.TIME: "time",
                FieldKind.DATETIME: "timestamp",
            }[kind]
            physical.default = self._text(spec.default)

        if spec.array:
            physical.data_type += "[]"
            physical.default = None
            physical.check_name = physical.check = None
            physical.enum_values = []

        return physical

    def check_expression(self, column: str, values: List[str]) -> str:
        allowed = ", ".join(quote_literal(v) for v in values)
        return f"({quote_identifier(column)} IN ({allowed}))"

    @staticmethod
    def numeric_precision(spec: FieldSpec) -> Tuple[int, Optional[int]]:
        precision, scale = spec.precision, spec.scale
        if isinstance(precision, str) and "," in precision:
            precision, scale_text = precision.split(",", 1)
            if scale_text.strip().isdigit():
                scale = int(scale_text)
        text = str(precision).strip() if precision is not None else ""
        return (int(text) if text.isdigit() else 1), scale

    @staticmethod
    def _length(precision: Any) -> int:
        text = str(precision).strip() if precision is not None else ""
        return int(text) if text.isdigit() and int(text) > 0 else DEFAULT_VARCHAR_LENGTH

    @staticmethod
    def _truthy(value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "t", "yes", "on")
        return bool(value)

    @staticmethod
    def _integer(value: Any) -> int:
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def _number(value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        try:
            return str(Decimal(str(value)))
        except InvalidOperation:
            return None

    @staticmethod
    def _text(value: Any) -> Optional[str]:
        return None if value is None else quote_literal(str(value))

    def enum_values(self, constraint_def: Optional[str]) -> List[str]:
        """
        Recover the allowed values from pg_get_constraintdef output.

        Handles ``(col)::text = ANY ((ARRAY['a'::character varying, ...])::text[])``,
        the single-value ``(col)::text = 'a'::text`` form and a literal
        ``col IN ('a', ...)`` list. Anything else yields an empty list.
        """
        if not constraint_def:
            return []
        start = _operator_end(constraint_def)
        if start is None:
            return []
        return [m.group(1).replace("''", "'") for m in LITERAL.finditer(constraint_def[start:])]

    def live_type(self, column: ColumnInfo) -> str:
        """Canonical type name of a live column, comparable with target_type."""
        if column.is_array:
            element = (column.udt_name or "").lstrip("_")
            return ARRAY_ELEMENT_TYPES.get(element, element) + "[]"

        data_type = LIVE_TYPE_NAMES.get(column.data_type, column.data_type)
        if data_type == "varchar" and column.max_length:
            return f"varchar({column.max_length})"
        if data_type == "numeric" and column.numeric_precision is not None:
            return f"numeric({column.numeric_precision},{column.numeric_scale or 0})"
        return data_type

    def target_type(self, target: PhysicalColumn) -> str:
        data_type = target.data_type
        if data_type.endswith("[]"):
            return re.sub(r"\(.*\)", "", data_type)
        if data_type in ("serial", "bigserial"):
            return "integer" if data_type == "serial" else "bigint"
        match = re.match(r"numeric\((\d+)\)$", data_type)
        if match:
            return f"numeric({match.group(1)},0)"
        return data_type

    def differences(
        self,
        target: PhysicalColumn,
        live: ColumnInfo,
        live_values: Optional[List[str]],
    ) -> List[str]:
        changed = []
        if self.target_type(target) != self.live_type(live):
            changed.append("type")
        if target.not_null == live.is_nullable:
            changed.append("nullability")

        if target.data_type in ("serial", "bigserial"):
            if not live.is_sequence_backed:
                changed.append("default")
        elif not same_value(parse_default(target.default), parse_default(live.default)):
            changed.append("default")

        if target.check:
            if live_values != target.enum_values:
                changed.append("check")
        elif live_values is not None:
            changed.append("check")
        return changed

    def decode(
        self, table: str, column: ColumnInfo, constraint_def: Optional[str] = None
    ) -> DecodedColumn:
        canonical = self.live_type(column)
        array = canonical.endswith("[]")
        base = re.sub(r"\(.*\)", "", canonical[:-2] if array else canonical)
        default = None if array else parse_default(column.default)
        nullable = column.is_nullable

        kind = PORTABLE_KINDS.get(base)
        if kind is None:
            ambiguity = IntrospectionAmbiguity(
                table, column.name, f"unsupported type {column.data_type}", column.data_type
            )
            logger.warning(str(ambiguity))
            return DecodedColumn(FieldSpec(kind=FieldKind.TEXT, nullable=nullable), ambiguity)

        if kind == FieldKind.VARCHAR and constraint_def and not array:
            values = self.enum_values(constraint_def)
            if values:
                enum_default = default if default in values else ""
                return DecodedColumn(
                    FieldSpec(kind=FieldKind.ENUM, values=values, default=enum_default, nullable=nullable)
                )
            ambiguity = IntrospectionAmbiguity(
                table, column.name, "unparseable CHECK constraint", constraint_def
            )
            logger.warning(str(ambiguity))
            return DecodedColumn(
                FieldSpec(kind=FieldKind.VARCHAR, precision=column.max_length, default=default, nullable=nullable),
                ambiguity,
            )

        options = {"kind": kind, "nullable": nullable, "array": array}
        if kind in (FieldKind.INT, FieldKind.BIGINT) and column.is_sequence_backed:
            options["auto_increment"] = True
        elif kind == FieldKind.BOOLEAN:
            options["default"] = self._truthy(default)
        elif kind in (FieldKind.INT, FieldKind.BIGINT):
            options["default"] = self._integer(default)
        else:
            options["default"] = default

        if kind == FieldKind.VARCHAR:
            options["precision"] = column.max_length
        elif kind == FieldKind.DECIMAL:
            options["precision"] = column.numeric_precision
            options["scale"] = column.numeric_scale
        return DecodedColumn(FieldSpec(**options))
