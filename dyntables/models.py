from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from dyntables.sql_types import ColumnType, TEXT_TYPES

ENGINE_COLUMNS = ("id", "created_at", "updated_at")

DefaultValue = Optional[Union[bool, int, float, str]]


class ColumnSpec(BaseModel):
    """One user-declared column of a dynamic table."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: ColumnType
    nullable: bool = True
    default: DefaultValue = None


class TableDefinition(BaseModel):
    """Shape of a dynamic table as recorded in the registry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    table_name: str = Field(..., alias="tableName")
    columns: List[ColumnSpec]

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def text_columns(self) -> List[str]:
        return [c.name for c in self.columns if c.type in TEXT_TYPES]

    def sortable_columns(self) -> List[str]:
        return self.column_names() + list(ENGINE_COLUMNS)

    def to_stored(self) -> Dict[str, Any]:
        """Body persisted in the registry's definition column."""
        return {"columns": [c.model_dump(mode="json") for c in self.columns]}

    def to_public(self) -> Dict[str, Any]:
        return {"tableName": self.table_name, **self.to_stored()}


class StoredDefinition(BaseModel):
    """Parser for the JSON stored in table_registry.definition."""

    columns: List[ColumnSpec]


class RegistryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    table_name: str = Field(..., alias="tableName")
    columns: List[ColumnSpec]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_public(self) -> Dict[str, Any]:
        return {
            "tableName": self.table_name,
            "definition": {"columns": [c.model_dump(mode="json") for c in self.columns]},
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class SortSpec(BaseModel):
    column: str
    order: str


class Page(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: List[Dict[str, Any]]
    page: int
    page_size: int = Field(..., alias="pageSize")
    total: int
    total_pages: int = Field(..., alias="totalPages")
    sort: SortSpec


# Request bodies stay loosely typed; the provisioning service builds the
# per-field error map.
class ProvisionRequest(BaseModel):
    tableName: Any = Field(default=None, description="Name of the table to create")
    columns: Any = Field(default=None, description="1 to 10 column definitions")
