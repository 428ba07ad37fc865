"""
Schema registry: the persistent catalog of user-provisioned tables.

One row per dynamic table in `table_registry`. A registry row is the only
evidence that a dynamic table exists; the physical table is never probed.
"""

import json
import logging
from typing import Any, List, Optional

from pydantic import ValidationError
from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    exc,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine

from dyntables.errors import (
    AlreadyExists,
    MalformedRegistryEntry,
    StorageError,
    TableNotFound,
)
from dyntables.models import ColumnSpec, RegistryEntry, StoredDefinition, TableDefinition
from dyntables.names import REGISTRY_TABLE, identifier_error

logger = logging.getLogger(__name__)


def parse_definition(table_name: str, raw: Any) -> List[ColumnSpec]:
    """
    Parse a stored definition into column specs.

    Raises:
        MalformedRegistryEntry: unparseable JSON, wrong shape, or unsafe column names
    """
    try:
        if isinstance(raw, (str, bytes)):
            stored = StoredDefinition.model_validate_json(raw)
        else:
            stored = StoredDefinition.model_validate(raw)
    except ValidationError as e:
        raise MalformedRegistryEntry(table_name, str(e)) from e

    for column in stored.columns:
        reason = identifier_error(column.name)
        if reason:
            raise MalformedRegistryEntry(table_name, f"column '{column.name}' {reason}")
    return stored.columns


class SchemaRegistry:
    """Owns the `table_registry` table. Create once per process and share."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.metadata = MetaData()
        self.table = Table(
            REGISTRY_TABLE,
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("table_name", String(64), nullable=False, unique=True),
            Column("definition", Text, nullable=False),
            Column("created_at", DateTime, nullable=False, server_default=func.now()),
            Column("updated_at", DateTime, nullable=False, server_default=func.now()),
        )

    def ensure_initialized(self) -> None:
        """Create the registry table if it is missing. Safe to call repeatedly."""
        try:
            self.metadata.create_all(self.engine, checkfirst=True)
        except exc.SQLAlchemyError as e:
            logger.critical(f"Failed to initialize {REGISTRY_TABLE}: {str(e)}")
            raise StorageError("Could not initialize the table registry") from e
        logger.info(f"Registry table {REGISTRY_TABLE} ready")

    def exists(self, table_name: str) -> bool:
        """True if any entry holds this name, parseable or not."""
        query = select(self.table.c.id).where(self.table.c.table_name == table_name)
        try:
            with self.engine.connect() as conn:
                return conn.execute(query).first() is not None
        except exc.SQLAlchemyError as e:
            logger.error(f"Registry existence check failed for {table_name}: {str(e)}")
            raise StorageError("Registry lookup failed") from e

    def lookup(self, table_name: str) -> Optional[TableDefinition]:
        """
        Recover the shape of a dynamic table.

        Returns None when there is no entry or when the stored definition is
        malformed; the two cases are logged differently.
        """
        query = select(self.table.c.definition).where(self.table.c.table_name == table_name)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).first()
        except exc.SQLAlchemyError as e:
            logger.error(f"Registry lookup failed for {table_name}: {str(e)}")
            raise StorageError("Registry lookup failed") from e

        if row is None:
            logger.info(f"Table meta not found for: {table_name}")
            return None

        try:
            columns = parse_definition(table_name, row.definition)
        except MalformedRegistryEntry as e:
            logger.error(f"Ignoring malformed registry entry: {e}")
            return None

        return TableDefinition(table_name=table_name, columns=columns)

    def require(self, table_name: str) -> TableDefinition:
        definition = self.lookup(table_name)
        if definition is None:
            raise TableNotFound(table_name)
        return definition

    def insert(self, definition: TableDefinition) -> None:
        """
        Record a new table.

        Raises:
            AlreadyExists: name already taken, by the pre-check or by the
                unique constraint when a concurrent insert wins the race
            StorageError: any other store failure
        """
        if self.exists(definition.table_name):
            raise AlreadyExists(definition.table_name)

        stmt = insert(self.table).values(
            table_name=definition.table_name,
            definition=json.dumps(definition.to_stored()),
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except exc.IntegrityError as e:
            logger.warning(f"Concurrent registration lost for {definition.table_name}")
            raise AlreadyExists(definition.table_name) from e
        except exc.SQLAlchemyError as e:
            logger.error(f"Registry insert failed for {definition.table_name}: {str(e)}")
            raise StorageError("Registry insert failed") from e

    def remove(self, table_name: str) -> bool:
        """Delete the entry for `table_name`. Returns False if there was none."""
        stmt = delete(self.table).where(self.table.c.table_name == table_name)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except exc.SQLAlchemyError as e:
            logger.error(f"Registry delete failed for {table_name}: {str(e)}")
            raise StorageError("Registry delete failed") from e
        return result.rowcount > 0

    def list_entries(self) -> List[RegistryEntry]:
        """All entries ordered by table name. Malformed ones list with no columns."""
        t = self.table
        query = select(t.c.table_name, t.c.definition, t.c.created_at, t.c.updated_at).order_by(
            t.c.table_name.asc()
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).all()
        except exc.SQLAlchemyError as e:
            logger.error(f"Registry listing failed: {str(e)}")
            raise StorageError("Registry listing failed") from e

        entries = []
        for row in rows:
            try:
                columns = parse_definition(row.table_name, row.definition)
            except MalformedRegistryEntry as e:
                logger.warning(f"Listing malformed registry entry without columns: {e}")
                columns = []
            entries.append(
                RegistryEntry(
                    table_name=row.table_name,
                    columns=columns,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                )
            )
        return entries
