"""
Column type mapping.

Maps the abstract column types users pick when defining a table onto physical
column types for each supported engine, renders literal DEFAULT clauses, and
coerces incoming row values into the Python type bound for each column.

A `date` default of CURRENT_TIMESTAMP is rendered as-is. MySQL only accepts it
on DATETIME/TIMESTAMP columns, so such a table fails to create there.
"""

import enum
import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy import Date, DateTime, Integer, Numeric, SmallInteger, String, Text
from sqlalchemy.types import TypeEngine

from dyntables.errors import UnsupportedType


class ColumnType(str, enum.Enum):
    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"


ALLOWED_TYPES = frozenset(t.value for t in ColumnType)
TEXT_TYPES = frozenset({ColumnType.STRING, ColumnType.TEXT})

NOW_SENTINEL = "CURRENT_TIMESTAMP"

DEFAULT_DIALECT = "mysql"

# Physical DDL type per dialect. Booleans are stored as 0/1 integers everywhere
# so the same literal and bound value work on every engine.
_DDL_TYPES: Dict[str, Dict[ColumnType, str]] = {
    "mysql": {
        ColumnType.STRING: "VARCHAR(255)",
        ColumnType.TEXT: "TEXT",
        ColumnType.INTEGER: "INT",
        ColumnType.DECIMAL: "DECIMAL(18,4)",
        ColumnType.BOOLEAN: "TINYINT(1)",
        ColumnType.DATE: "DATE",
        ColumnType.DATETIME: "DATETIME",
    },
    "postgresql": {
        ColumnType.STRING: "VARCHAR(255)",
        ColumnType.TEXT: "TEXT",
        ColumnType.INTEGER: "INTEGER",
        ColumnType.DECIMAL: "NUMERIC(18,4)",
        ColumnType.BOOLEAN: "SMALLINT",
        ColumnType.DATE: "DATE",
        ColumnType.DATETIME: "TIMESTAMP(0)",
    },
    "sqlite": {
        ColumnType.STRING: "VARCHAR(255)",
        ColumnType.TEXT: "TEXT",
        ColumnType.INTEGER: "INTEGER",
        ColumnType.DECIMAL: "DECIMAL(18,4)",
        ColumnType.BOOLEAN: "SMALLINT",
        ColumnType.DATE: "DATE",
        ColumnType.DATETIME: "DATETIME",
    },
}
_DDL_TYPES["mariadb"] = _DDL_TYPES["mysql"]

_SA_TYPES: Dict[ColumnType, TypeEngine] = {
    ColumnType.STRING: String(255),
    ColumnType.TEXT: Text(),
    ColumnType.INTEGER: Integer(),
    ColumnType.DECIMAL: Numeric(18, 4),
    ColumnType.BOOLEAN: SmallInteger(),
    ColumnType.DATE: Date(),
    ColumnType.DATETIME: DateTime(),
}

_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


class PhysicalType(NamedTuple):
    ddl: str
    sa_type: TypeEngine


def to_column_type(value: Any) -> ColumnType:
    if isinstance(value, ColumnType):
        return value
    try:
        return ColumnType(value)
    except ValueError:
        raise UnsupportedType(value)


def physical_type(column_type: Any, dialect: str = DEFAULT_DIALECT) -> PhysicalType:
    """
    Resolve the physical column type for an abstract column type.

    Raises:
        UnsupportedType: for anything outside ColumnType or an unknown dialect
    """
    ctype = to_column_type(column_type)
    try:
        ddl_types = _DDL_TYPES[dialect]
    except KeyError:
        raise UnsupportedType(f"{ctype.value} on dialect {dialect}")
    return PhysicalType(ddl_types[ctype], _SA_TYPES[ctype])


def has_default(value: Any) -> bool:
    """An absent or empty-string default means no DEFAULT clause at all."""
    return value is not None and value != ""


def quote_literal(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _to_flag(value: Any) -> int:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _FALSE_STRINGS or lowered == "":
            return 0
        return 1
    return 1 if value else 0


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("expected an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("expected an integer")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValueError("expected an integer")
    raise ValueError("expected an integer")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValueError("expected a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("expected a finite number")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError("expected a number")
    if not number.is_finite():
        raise ValueError("expected a finite number")
    return number


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise ValueError("expected an ISO-8601 date")
    raise ValueError("expected an ISO-8601 date")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("expected an ISO-8601 datetime")
    else:
        raise ValueError("expected an ISO-8601 datetime")
    # Stored as naive UTC with second precision
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(microsecond=0, tzinfo=None)


def literal_for(column_type: Any, default: Any) -> Optional[str]:
    """
    Render a column default as a SQL literal.

    Args:
        column_type: abstract column type of the column
        default: the user supplied default

    Returns:
        The literal text for a DEFAULT clause, or None if there is no default

    Raises:
        UnsupportedType: unknown column type
        ValueError: default is not representable as a literal of the type
    """
    ctype = to_column_type(column_type)
    if not has_default(default):
        return None

    if ctype is ColumnType.INTEGER:
        return str(_to_int(default))
    if ctype is ColumnType.DECIMAL:
        return format(_to_decimal(default), "f")
    if ctype is ColumnType.BOOLEAN:
        return str(_to_flag(default))
    if ctype in (ColumnType.DATE, ColumnType.DATETIME):
        if default == NOW_SENTINEL:
            return NOW_SENTINEL
        if ctype is ColumnType.DATE:
            _to_date(default)
        else:
            _to_datetime(default)
        return quote_literal(default)
    if isinstance(default, bool):
        default = "true" if default else "false"
    return quote_literal(default)


def coerce_value(column_type: Any, value: Any) -> Any:
    """
    Convert an incoming JSON value to the Python value bound for a column.

    None passes through; nullability is checked by the caller.

    Raises:
        ValueError: with a short reason when the value does not fit the type
    """
    ctype = to_column_type(column_type)
    if value is None:
        return None

    if ctype in TEXT_TYPES:
        if isinstance(value, (dict, list)):
            raise ValueError("expected a string")
        if isinstance(value, bool):
            return "true" if value else "false"
        text = str(value)
        if ctype is ColumnType.STRING and len(text) > 255:
            raise ValueError("longer than 255 characters")
        return text
    if ctype is ColumnType.INTEGER:
        number = _to_int(value)
        if not -(2 ** 31) <= number < 2 ** 31:
            raise ValueError("out of range for a 32-bit integer")
        return number
    if ctype is ColumnType.DECIMAL:
        return _to_decimal(value)
    if ctype is ColumnType.BOOLEAN:
        if isinstance(value, (dict, list)):
            raise ValueError("expected a boolean")
        return _to_flag(value)
    if ctype is ColumnType.DATE:
        return _to_date(value)
    return _to_datetime(value)
