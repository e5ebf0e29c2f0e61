"""
Identifier quoting and length-bounded name derivation for pgconverge.

Every name pgconverge invents (indexes, triggers, shadow columns,
constraints, routing functions) is derived from the table name and the
logical name it serves, so that a later run recomputes exactly the same
physical identifier.
"""

import hashlib
from typing import Any

POSTGRES_MAX_IDENTIFIER_LENGTH = 63

INDEX_PREFIX = "ix_"
TRIGGER_PREFIX = "ts_"
SHADOW_COLUMN_PREFIX = "ts_"


def quote_identifier(name: str) -> str:
    """Quote a single identifier, doubling embedded double quotes."""
    return '"' + name.replace('"', '""') + '"'


def qualify(schema: str, name: str) -> str:
    """Schema-qualified, quoted object name."""
    return f"{quote_identifier(schema)}.{quote_identifier(name)}"


def quote_literal(value: Any) -> str:
    """Render a Python value as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def name_digest(table: str, name: str) -> str:
    """md5 of a table-scoped object name. NUL cannot occur in identifiers, so the split is unambiguous."""
    return md5_hex(f"{table}\x00{name}")


def truncate_bytes(text: str, max_bytes: int) -> str:
    """Cut text to at most max_bytes of UTF-8 without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def tail_bytes(text: str, max_bytes: int) -> str:
    """Keep the last max_bytes of UTF-8 without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[-max_bytes:].decode("utf-8", errors="ignore")


class IdentifierBuilder:
    """Derives deterministic physical names within the identifier limit."""

    def __init__(self, max_length: int = POSTGRES_MAX_IDENTIFIER_LENGTH):
        if max_length < 16:
            raise ValueError(f"Identifier limit too small: {max_length}")
        self.max_length = max_length

    def fits(self, name: str) -> bool:
        return len(name.encode("utf-8")) <= self.max_length

    def bounded(self, name: str) -> str:
        """
        Return name unchanged when it fits, otherwise a shortened form.

        The shortened form is the first seven hex digits of the name's md5,
        an underscore and as much of the end of the name as still fits. The
        tail keeps the result readable; the hash keeps two long names that
        share a suffix apart.
        """
        if self.fits(name):
            return name
        digest = md5_hex(name)[:7]
        return f"{digest}_{tail_bytes(name, self.max_length - len(digest) - 1)}"

    def _hashed(self, prefix: str, table: str, name: str) -> str:
        return truncate_bytes(prefix + name_digest(table, name), self.max_length)

    def index_name(self, table: str, index: str) -> str:
        return self._hashed(INDEX_PREFIX, table, index)

    def trigger_name(self, table: str, index: str) -> str:
        return self._hashed(TRIGGER_PREFIX, table, index)

    def shadow_column(self, index: str) -> str:
        return self.bounded(f"{SHADOW_COLUMN_PREFIX}{index}")

    def check_constraint(self, table: str, column: str) -> str:
        return self.bounded(f"{table}_{column}_check")

    def primary_key(self, table: str) -> str:
        return self.bounded(f"{table}_pkey")

    def insert_function(self, table: str) -> str:
        return self.bounded(f"{table}_insert_trigger")

    def insert_trigger(self, table: str) -> str:
        return self.bounded(f"trigger_{table}_insert")
