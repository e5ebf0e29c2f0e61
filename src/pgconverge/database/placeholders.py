"""
Placeholder translation for pgconverge.

Statements are written with portable ``?`` placeholders and rewritten into
PostgreSQL's positional ``$1, $2, ...`` markers before execution. A ``?``
inside a single-quoted string literal is text, not a placeholder, and is
left alone.
"""

from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from ..exceptions import ValidationError


class LiteralState(str, Enum):
    """Scanner position relative to single-quoted string literals."""

    OUTSIDE = "outside"
    INSIDE = "inside"

    def toggled(self) -> "LiteralState":
        return LiteralState.INSIDE if self is LiteralState.OUTSIDE else LiteralState.OUTSIDE


def toggles_literal(segment: str) -> bool:
    """
    Whether scanning segment flips the inside/outside-literal state.

    Escaped backslashes are discarded first, then every quote counts except
    those preceded by a backslash. A doubled ``''`` adds two quotes and so
    never flips the state on its own.
    """
    stripped = segment.replace("\\\\", "")
    quotes = stripped.count("'") - stripped.count("\\'")
    return quotes % 2 == 1


def unwrap_parameter(value: Any) -> Any:
    """Accept ``{"value": v, "type": ...}`` wrappers alongside bare values."""
    if isinstance(value, dict) and "value" in value:
        return value["value"]
    return value


def translate(sql: str, params: Optional[Sequence[Any]] = None) -> Tuple[str, List[Any]]:
    """
    Rewrite ``?`` placeholders into positional markers.

    Returns the rewritten SQL and the parameter list. Raises ValidationError
    when the number of placeholders outside string literals differs from the
    number of parameters supplied.
    """
    values = [unwrap_parameter(p) for p in (params or [])]
    segments = sql.split("?")

    state = LiteralState.OUTSIDE
    position = 0
    parts = [segments[0]]
    if toggles_literal(segments[0]):
        state = state.toggled()

    for segment in segments[1:]:
        if state is LiteralState.INSIDE:
            parts.append("?")
        else:
            position += 1
            parts.append(f"${position}")
        parts.append(segment)
        if toggles_literal(segment):
            state = state.toggled()

    if position != len(values):
        raise ValidationError(
            f"Statement has {position} placeholders but {len(values)} parameters were given",
            {"sql": sql},
        )

    return "".join(parts), values
