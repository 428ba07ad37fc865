"""
Provisioning and de-provisioning of dynamic tables.

provision():   validate name -> registry pre-check -> validate columns
               -> execute DDL -> register
deprovision(): registry check -> drop physical table (failure tolerated)
               -> unregister

The DDL and the registry insert are separate statements. A crash between
them leaves a physical table with no registry entry; it is not reconciled.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import exc
from sqlalchemy.engine import Engine

from dyntables.ddl import synthesize_create, synthesize_drop
from dyntables.errors import (
    AlreadyExists,
    InvalidColumns,
    InvalidName,
    StorageError,
    TableNotFound,
)
from dyntables.models import ColumnSpec, RegistryEntry, TableDefinition
from dyntables.names import identifier_error, table_name_error
from dyntables.registry import SchemaRegistry
from dyntables.sql_types import ALLOWED_TYPES, literal_for

logger = logging.getLogger(__name__)

MIN_COLUMNS = 1
MAX_COLUMNS = 10

_DRIVER_SQL = {"no_parameters": True}


def validate_columns(columns: Any) -> Tuple[List[ColumnSpec], Dict[str, str]]:
    """
    Check a raw column list and build ColumnSpecs from it.

    Returns:
        (specs, errors). `errors` maps each offending column name (or
        `columns[i]` when the name itself is unusable) to the first problem
        found for it; specs are only meaningful when errors is empty.
    """
    if not isinstance(columns, list) or not MIN_COLUMNS <= len(columns) <= MAX_COLUMNS:
        return [], {"columns": f"{MIN_COLUMNS}-{MAX_COLUMNS} columns required"}

    errors: Dict[str, str] = {}
    specs: List[ColumnSpec] = []
    seen = set()

    for i, raw in enumerate(columns):
        if not isinstance(raw, dict):
            errors[f"columns[{i}]"] = "must be an object"
            continue

        name = raw.get("name")
        key = name if isinstance(name, str) and name else f"columns[{i}]"

        name_err = identifier_error(name)
        if name_err:
            errors.setdefault(key, name_err)
            continue
        if name in seen:
            errors.setdefault(key, "duplicate")
            continue
        seen.add(name)

        column_type = raw.get("type")
        if column_type not in ALLOWED_TYPES:
            errors.setdefault(key, "invalid type")
            continue

        nullable = raw.get("nullable", True)
        if not isinstance(nullable, bool):
            errors.setdefault(key, "nullable must be true or false")
            continue

        default = raw.get("default")
        if default is not None and not isinstance(default, (bool, int, float, str)):
            errors.setdefault(key, "invalid default")
            continue
        try:
            literal_for(column_type, default)
        except ValueError:
            errors.setdefault(key, "invalid default")
            continue

        specs.append(ColumnSpec(name=name, type=column_type, nullable=nullable, default=default))

    return specs, errors


class ProvisioningService:
    def __init__(self, engine: Engine, registry: SchemaRegistry):
        self.engine = engine
        self.registry = registry

    def provision(self, table_name: Any, columns: Any) -> TableDefinition:
        """
        Create a physical table and register it.

        Raises:
            InvalidName: bad or reserved table name
            AlreadyExists: name already registered
            InvalidColumns: per-column error map
            StorageError: DDL or registry write failed
        """
        name_err = table_name_error(table_name)
        if name_err:
            logger.warning(f"Rejected table name {table_name!r}: {name_err}")
            raise InvalidName(str(table_name), name_err)

        if self.registry.exists(table_name):
            raise AlreadyExists(table_name)

        specs, errors = validate_columns(columns)
        if errors:
            logger.warning(f"Rejected columns for {table_name}: {errors}")
            raise InvalidColumns(errors)

        definition = TableDefinition(table_name=table_name, columns=specs)
        ddl = synthesize_create(table_name, specs, self.engine.dialect)

        try:
            with self.engine.begin() as conn:
                for statement in ddl.statements():
                    conn.exec_driver_sql(statement, execution_options=_DRIVER_SQL)
        except exc.SQLAlchemyError as e:
            # A concurrent provision of the same name may have registered it by now
            if self.registry.exists(table_name):
                raise AlreadyExists(table_name) from e
            logger.error(f"CREATE TABLE failed for {table_name}: {str(e)}")
            raise StorageError(f"Could not create table {table_name}") from e

        try:
            self.registry.insert(definition)
        except (AlreadyExists, StorageError):
            logger.critical(f"Table {table_name} was created but not registered")
            raise

        logger.info(f"Provisioned table {table_name} with {len(specs)} columns")
        return definition

    def deprovision(self, table_name: str) -> None:
        """
        Drop a dynamic table and remove its registry entry.

        A failed DROP is logged and ignored; the registry entry is removed
        regardless.

        Raises:
            TableNotFound: no registry entry for the name
            StorageError: registry delete failed
        """
        if not self.registry.exists(table_name):
            raise TableNotFound(table_name)

        try:
            with self.engine.begin() as conn:
                conn.exec_driver_sql(
                    synthesize_drop(table_name, self.engine.dialect),
                    execution_options=_DRIVER_SQL,
                )
        except exc.SQLAlchemyError as e:
            logger.warning(f"Failed to drop table {table_name}: {str(e)}")

        self.registry.remove(table_name)
        logger.info(f"Deprovisioned table {table_name}")

    def list_tables(self) -> List[RegistryEntry]:
        return self.registry.list_entries()

    def get_meta(self, table_name: str) -> Optional[TableDefinition]:
        return self.registry.lookup(table_name)
