"""
DDL synthesis for dynamic tables.

Turns a validated table name and column list into the statements that create
the physical table. Pure text generation: nothing here touches a connection.

Every physical table gets:
- `id`          auto-increment primary key
- user columns  in declaration order
- `created_at`  defaults to the insert time
- `updated_at`  defaults to the insert time and is refreshed by the engine
                on every row update (column option on MySQL, trigger elsewhere)
"""

from typing import Iterable, NamedTuple, Optional, Tuple

from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Dialect

from dyntables.errors import UnsupportedType
from dyntables.models import ColumnSpec
from dyntables.sql_types import NOW_SENTINEL, literal_for, physical_type

PG_TOUCH_FUNCTION = "dyntables_touch_updated_at"

_ID_COLUMN = {
    "mysql": "BIGINT NOT NULL AUTO_INCREMENT PRIMARY KEY",
    "mariadb": "BIGINT NOT NULL AUTO_INCREMENT PRIMARY KEY",
    "postgresql": "BIGSERIAL PRIMARY KEY",
    "sqlite": "INTEGER PRIMARY KEY AUTOINCREMENT",
}

_TIMESTAMP_TYPE = {
    "mysql": "DATETIME",
    "mariadb": "DATETIME",
    "postgresql": "TIMESTAMP(0)",
    "sqlite": "DATETIME",
}


class DDLStatement(NamedTuple):
    """CREATE TABLE text plus statements that must run right after it, in order."""

    create: str
    followups: Tuple[str, ...] = ()

    def statements(self) -> Tuple[str, ...]:
        return (self.create,) + self.followups


def default_dialect() -> Dialect:
    return mysql.dialect()


def _dialect_name(dialect: Dialect) -> str:
    name = dialect.name
    if name not in _ID_COLUMN:
        raise UnsupportedType(f"dialect {name}")
    return name


def column_clause(column: ColumnSpec, dialect: Dialect) -> str:
    name = _dialect_name(dialect)
    quote = dialect.identifier_preparer.quote_identifier
    ptype = physical_type(column.type, name)
    parts = [quote(column.name), ptype.ddl, "NULL" if column.nullable else "NOT NULL"]
    literal = literal_for(column.type, column.default)
    if literal is not None:
        parts.append(f"DEFAULT {literal}")
    return " ".join(parts)


def _timestamp_clauses(name: str, dialect: Dialect) -> Tuple[str, str]:
    quote = dialect.identifier_preparer.quote_identifier
    ts_type = _TIMESTAMP_TYPE[name]
    created = f"{quote('created_at')} {ts_type} NOT NULL DEFAULT {NOW_SENTINEL}"
    updated = f"{quote('updated_at')} {ts_type} NOT NULL DEFAULT {NOW_SENTINEL}"
    if name in ("mysql", "mariadb"):
        updated += f" ON UPDATE {NOW_SENTINEL}"
    return created, updated


def _touch_followups(table_name: str, name: str, dialect: Dialect) -> Tuple[str, ...]:
    quote = dialect.identifier_preparer.quote_identifier
    q_table = quote(table_name)
    q_trigger = quote(f"{table_name}_touch_updated_at")

    if name == "postgresql":
        function = (
            f"CREATE OR REPLACE FUNCTION {PG_TOUCH_FUNCTION}() RETURNS trigger AS $$\n"
            f"BEGIN\n"
            f"  NEW.updated_at = {NOW_SENTINEL};\n"
            f"  RETURN NEW;\n"
            f"END;\n"
            f"$$ LANGUAGE plpgsql"
        )
        trigger = (
            f"CREATE TRIGGER {q_trigger} BEFORE UPDATE ON {q_table}\n"
            f"FOR EACH ROW EXECUTE FUNCTION {PG_TOUCH_FUNCTION}()"
        )
        return (function, trigger)

    if name == "sqlite":
        # recursive_triggers is off by default, so the inner UPDATE does not re-fire
        trigger = (
            f"CREATE TRIGGER {q_trigger} AFTER UPDATE ON {q_table}\n"
            f"FOR EACH ROW BEGIN\n"
            f"  UPDATE {q_table} SET {quote('updated_at')} = {NOW_SENTINEL}"
            f" WHERE {quote('id')} = NEW.{quote('id')};\n"
            f"END"
        )
        return (trigger,)

    return ()


def synthesize_create(
    table_name: str,
    columns: Iterable[ColumnSpec],
    dialect: Optional[Dialect] = None,
) -> DDLStatement:
    """
    Build the CREATE TABLE statement for a dynamic table.

    Args:
        table_name: validated table identifier
        columns: validated column specs, emitted in the given order
        dialect: target SQLAlchemy dialect (MySQL when omitted)

    Returns:
        DDLStatement; identical input always yields identical text
    """
    dialect = dialect or default_dialect()
    name = _dialect_name(dialect)
    quote = dialect.identifier_preparer.quote_identifier

    parts = [f"{quote('id')} {_ID_COLUMN[name]}"]
    parts.extend(column_clause(c, dialect) for c in columns)
    parts.extend(_timestamp_clauses(name, dialect))

    body = ",\n  ".join(parts)
    create = f"CREATE TABLE {quote(table_name)} (\n  {body}\n)"
    if name in ("mysql", "mariadb"):
        create += " ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"

    return DDLStatement(create, _touch_followups(table_name, name, dialect))


def synthesize_drop(table_name: str, dialect: Optional[Dialect] = None) -> str:
    dialect = dialect or default_dialect()
    return f"DROP TABLE {dialect.identifier_preparer.quote_identifier(table_name)}"
