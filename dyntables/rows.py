"""
Row-level CRUD over dynamic tables.

One code path serves every provisioned table: the caller resolves the
TableDefinition through the registry, and this service builds and runs the
statement for it.
"""

import logging
import math
from typing import Any, Dict, Mapping

from sqlalchemy import exc
from sqlalchemy.engine import Engine

from dyntables.errors import InvalidRowValues, MissingRequiredFields, RowNotFound, StorageError
from dyntables.models import Page, SortSpec, TableDefinition
from dyntables.queries import (
    build_delete,
    build_get,
    build_insert,
    build_list_query,
    build_table,
    build_update,
    coerce_payload,
    filter_payload,
    missing_required,
    normalize_params,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class RowService:
    def __init__(self, engine: Engine):
        self.engine = engine

    def query(self, definition: TableDefinition, params: Mapping[str, Any]) -> Page:
        """
        Search, sort and paginate a dynamic table.

        Args:
            definition: table shape from the registry
            params: untrusted q, page, pageSize, sort, order

        Note:
            `total` counts every row in the table, ignoring `q`.
        """
        list_params = normalize_params(definition, params)
        table = build_table(definition)
        query, count = build_list_query(definition, list_params, table)

        try:
            with self.engine.connect() as conn:
                rows = [dict(r) for r in conn.execute(query).mappings()]
                total = conn.execute(count).scalar_one()
        except exc.SQLAlchemyError as e:
            logger.error(f"List query failed for {definition.table_name}: {str(e)}")
            raise StorageError(f"Could not query {definition.table_name}") from e

        return Page(
            data=rows,
            page=list_params.page,
            page_size=list_params.page_size,
            total=total,
            total_pages=math.ceil(total / list_params.page_size),
            sort=SortSpec(column=list_params.sort, order=list_params.order),
        )

    def get(self, definition: TableDefinition, row_id: int) -> Row:
        table = build_table(definition)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(build_get(table, row_id)).mappings().first()
        except exc.SQLAlchemyError as e:
            logger.error(f"Row fetch failed for {definition.table_name}/{row_id}: {str(e)}")
            raise StorageError(f"Could not read from {definition.table_name}") from e

        if row is None:
            raise RowNotFound(definition.table_name, row_id)
        return dict(row)

    def insert(self, definition: TableDefinition, payload: Mapping[str, Any]) -> Row:
        """
        Insert a row built from the declared columns of `payload`.

        Raises:
            MissingRequiredFields: every non-nullable column absent or null
            InvalidRowValues: values that do not fit their column type
        """
        if not isinstance(payload, Mapping):
            raise InvalidRowValues({"payload": "must be an object"})

        missing = missing_required(definition, payload)
        if missing:
            logger.warning(f"Insert into {definition.table_name} missing fields: {missing}")
            raise MissingRequiredFields(missing)

        values = coerce_payload(definition, filter_payload(definition, payload))
        table = build_table(definition)

        try:
            with self.engine.begin() as conn:
                result = conn.execute(build_insert(table, values))
                row_id = result.inserted_primary_key[0]
        except exc.SQLAlchemyError as e:
            logger.error(f"Insert failed for {definition.table_name}: {str(e)}")
            raise StorageError(f"Could not insert into {definition.table_name}") from e

        return self.get(definition, row_id)

    def update(self, definition: TableDefinition, row_id: int, payload: Mapping[str, Any]) -> Row:
        """Partial update: only declared columns present in `payload` are written."""
        if not isinstance(payload, Mapping):
            raise InvalidRowValues({"payload": "must be an object"})

        values = coerce_payload(definition, filter_payload(definition, payload), partial=True)
        if values:
            table = build_table(definition)
            try:
                with self.engine.begin() as conn:
                    conn.execute(build_update(table, row_id, values))
            except exc.SQLAlchemyError as e:
                logger.error(f"Update failed for {definition.table_name}/{row_id}: {str(e)}")
                raise StorageError(f"Could not update {definition.table_name}") from e

        return self.get(definition, row_id)

    def delete(self, definition: TableDefinition, row_id: int) -> None:
        """Delete a row. Deleting an absent row is not an error."""
        table = build_table(definition)
        try:
            with self.engine.begin() as conn:
                conn.execute(build_delete(table, row_id))
        except exc.SQLAlchemyError as e:
            logger.error(f"Delete failed for {definition.table_name}/{row_id}: {str(e)}")
            raise StorageError(f"Could not delete from {definition.table_name}") from e
