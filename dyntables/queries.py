"""
Generic query building over dynamic tables.

Everything here works from a TableDefinition recovered from the registry.
Caller input never becomes SQL text: identifiers come from the definition
(allow-list) and are always quoted, values are always bound parameters.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    Table,
    delete,
    func,
    insert,
    or_,
    quoted_name,
    select,
    update,
)
from sqlalchemy.sql.expression import Delete, Insert, Select, Update

from dyntables.errors import InvalidRowValues
from dyntables.models import ENGINE_COLUMNS, TableDefinition
from dyntables.sql_types import coerce_value, physical_type

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_SORT = "id"

# Largest OFFSET a signed 64-bit driver integer can carry
MAX_OFFSET = 2 ** 63 - 1


@dataclass(frozen=True)
class ListParams:
    """Query parameters after normalization; safe to use as-is."""

    q: Optional[str]
    page: int
    page_size: int
    sort: str
    order: str

    @property
    def offset(self) -> int:
        return max((self.page - 1) * self.page_size, 0)


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def normalize_params(definition: TableDefinition, params: Mapping[str, Any]) -> ListParams:
    """
    Turn untrusted list parameters into ListParams.

    - page:     defaults to 1; anything below 1 or unparseable is 1; capped so
                the offset fits a 64-bit integer (such a page is simply empty)
    - pageSize: defaults to 20 when absent, zero or unparseable; clamped to [1, 100]
    - sort:     a declared column or id/created_at/updated_at, else id
    - order:    "desc" only on an exact match, else "asc"
    """
    page_size = _parse_int(params.get("pageSize"))
    if not page_size:
        page_size = DEFAULT_PAGE_SIZE
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    page = _parse_int(params.get("page"))
    if page is None or page < 1:
        page = 1
    page = min(page, MAX_OFFSET // page_size + 1)

    sort = params.get("sort")
    if not isinstance(sort, str) or sort not in definition.sortable_columns():
        sort = DEFAULT_SORT

    order = "desc" if params.get("order") == "desc" else "asc"

    q = params.get("q")
    q = q if isinstance(q, str) and q else None

    return ListParams(q=q, page=page, page_size=page_size, sort=sort, order=order)


def build_table(definition: TableDefinition) -> Table:
    """SQLAlchemy Table mirroring a dynamic table's physical layout."""
    columns = [
        Column(
            quoted_name("id", quote=True),
            BigInteger().with_variant(Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        )
    ]
    for spec in definition.columns:
        columns.append(
            Column(
                quoted_name(spec.name, quote=True),
                physical_type(spec.type).sa_type,
                nullable=spec.nullable,
            )
        )
    columns.append(Column(quoted_name("created_at", quote=True), DateTime()))
    columns.append(Column(quoted_name("updated_at", quote=True), DateTime()))
    return Table(quoted_name(definition.table_name, quote=True), MetaData(), *columns)


def build_list_query(
    definition: TableDefinition, params: ListParams, table: Optional[Table] = None
) -> Tuple[Select, Select]:
    """
    Build the page query and the count query.

    The count is over the whole table; the search filter is not applied to it.
    """
    table = table if table is not None else build_table(definition)

    query = select(table)
    text_columns = definition.text_columns()
    if params.q and text_columns:
        query = query.where(
            or_(*[table.c[name].contains(params.q, autoescape=True) for name in text_columns])
        )

    sort_column = table.c[params.sort]
    query = query.order_by(sort_column.desc() if params.order == "desc" else sort_column.asc())
    query = query.limit(params.page_size).offset(params.offset)

    count = select(func.count()).select_from(table)
    return query, count


def filter_payload(definition: TableDefinition, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only declared columns; engine-managed and unknown keys are dropped."""
    allowed = set(definition.column_names()) - set(ENGINE_COLUMNS)
    return {key: value for key, value in payload.items() if key in allowed}


def missing_required(definition: TableDefinition, payload: Mapping[str, Any]) -> List[str]:
    return [
        c.name
        for c in definition.columns
        if not c.nullable and payload.get(c.name) is None
    ]


def coerce_payload(
    definition: TableDefinition, payload: Mapping[str, Any], partial: bool = False
) -> Dict[str, Any]:
    """
    Convert filtered payload values to their column types.

    Raises:
        InvalidRowValues: every field that failed, with the reason
    """
    specs = {c.name: c for c in definition.columns}
    values: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    for key, raw in payload.items():
        spec = specs[key]
        if raw is None:
            if not spec.nullable and partial:
                errors[key] = "may not be null"
            values[key] = None
            continue
        try:
            values[key] = coerce_value(spec.type, raw)
        except ValueError as e:
            errors[key] = str(e)
    if errors:
        raise InvalidRowValues(errors)
    return values


def build_get(table: Table, row_id: int) -> Select:
    return select(table).where(table.c.id == row_id)


def build_insert(table: Table, values: Mapping[str, Any]) -> Insert:
    if not values:
        return insert(table)
    return insert(table).values(**values)


def build_update(table: Table, row_id: int, values: Mapping[str, Any]) -> Update:
    return update(table).where(table.c.id == row_id).values(**values)


def build_delete(table: Table, row_id: int) -> Delete:
    return delete(table).where(table.c.id == row_id)
