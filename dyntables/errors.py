"""
Error taxonomy for table provisioning and dynamic row access.

Services raise these; the HTTP layer in main.py maps each one to a status code.
"""

from typing import Dict, List, Optional


class DynTablesError(Exception):
    """Base class for every error raised by the dyntables services."""


class InvalidName(DynTablesError):
    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid name '{name}': {reason}")


class InvalidColumns(DynTablesError):
    """Column list rejected. `errors` maps a column name (or slot) to a reason."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__(f"Invalid columns: {errors}")


class AlreadyExists(DynTablesError):
    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' already exists")


class TableNotFound(DynTablesError):
    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' not found")


class RowNotFound(DynTablesError):
    def __init__(self, table_name: str, row_id: int):
        self.table_name = table_name
        self.row_id = row_id
        super().__init__(f"Row {row_id} not found in '{table_name}'")


class MissingRequiredFields(DynTablesError):
    def __init__(self, fields: List[str]):
        self.fields = fields
        super().__init__(f"Missing required fields: {', '.join(fields)}")


class InvalidRowValues(DynTablesError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__(f"Invalid row values: {errors}")


class UnsupportedType(DynTablesError):
    def __init__(self, column_type: object):
        self.column_type = column_type
        super().__init__(f"Unsupported type: {column_type}")


class MalformedRegistryEntry(DynTablesError):
    """Stored definition could not be parsed. Callers see it as TableNotFound."""

    def __init__(self, table_name: str, detail: Optional[str] = None):
        self.table_name = table_name
        self.detail = detail
        super().__init__(f"Malformed registry entry for '{table_name}': {detail}")


class StorageError(DynTablesError):
    """Wraps a failure from the relational store. The cause is kept on __cause__."""
