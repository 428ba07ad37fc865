import logging

import pytest
from sqlalchemy import inspect

from dyntables.errors import (
    AlreadyExists,
    InvalidColumns,
    InvalidName,
    StorageError,
    TableNotFound,
)
from dyntables.models import ColumnSpec, TableDefinition
from dyntables.provisioning import validate_columns

from conftest import PRODUCT_COLUMNS


def _physical_columns(engine, table_name):
    return [c["name"] for c in inspect(engine).get_columns(table_name)]


def test_provision_creates_table_and_entry(engine, provisioning, registry):
    definition = provisioning.provision("products", PRODUCT_COLUMNS)

    assert definition.table_name == "products"
    assert definition.column_names() == ["title", "price"]
    assert _physical_columns(engine, "products") == ["id", "title", "price", "created_at", "updated_at"]
    assert registry.lookup("products").model_dump() == definition.model_dump()


def test_nullable_defaults_to_true(provisioning):
    definition = provisioning.provision("notes", [{"name": "body", "type": "text"}])
    assert definition.columns[0].nullable is True


@pytest.mark.parametrize("name", ["Products", "1st", "", None, "id", "table_registry", "a" * 31])
def test_invalid_table_name(engine, provisioning, registry, name):
    with pytest.raises(InvalidName):
        provisioning.provision(name, PRODUCT_COLUMNS)

    assert registry.list_entries() == []
    assert inspect(engine).get_table_names() == ["table_registry"]


def test_second_provision_is_rejected(provisioning, registry):
    provisioning.provision("products", PRODUCT_COLUMNS)

    with pytest.raises(AlreadyExists):
        provisioning.provision("products", [{"name": "sku", "type": "integer"}])

    assert registry.lookup("products").column_names() == ["title", "price"]


def test_existing_name_checked_before_columns(provisioning):
    provisioning.provision("products", PRODUCT_COLUMNS)

    with pytest.raises(AlreadyExists):
        provisioning.provision("products", [])


@pytest.mark.parametrize("columns", [[], None, "title", [{"name": f"c{i}", "type": "string"} for i in range(11)]])
def test_column_count(provisioning, columns):
    with pytest.raises(InvalidColumns) as excinfo:
        provisioning.provision("things", columns)
    assert excinfo.value.errors == {"columns": "1-10 columns required"}


def test_per_column_error_map(engine, provisioning, registry):
    columns = [
        {"name": "id", "type": "string"},
        {"name": "kind", "type": "json"},
        {"name": "title", "type": "string"},
        {"name": "title", "type": "text"},
        {"name": "Bad", "type": "string"},
        {"name": "qty", "type": "integer", "default": "many"},
        {"name": "flag", "type": "boolean", "nullable": "yes"},
        {"type": "string"},
        "oops",
    ]

    with pytest.raises(InvalidColumns) as excinfo:
        provisioning.provision("things", columns)

    assert excinfo.value.errors == {
        "id": "is reserved",
        "kind": "invalid type",
        "title": "duplicate",
        "Bad": "must match ^[a-z][a-z0-9_]{0,29}$",
        "qty": "invalid default",
        "flag": "nullable must be true or false",
        "columns[7]": "must match ^[a-z][a-z0-9_]{0,29}$",
        "columns[8]": "must be an object",
    }
    assert not registry.exists("things")
    assert not inspect(engine).has_table("things")


def test_exactly_ten_columns_allowed(provisioning):
    columns = [{"name": f"c{i}", "type": "integer"} for i in range(10)]
    assert len(provisioning.provision("wide", columns).columns) == 10


def test_validate_columns_builds_specs():
    specs, errors = validate_columns(
        [{"name": "title", "type": "string", "nullable": False, "default": "untitled"}]
    )
    assert errors == {}
    assert specs == [ColumnSpec(name="title", type="string", nullable=False, default="untitled")]


def test_ddl_failure_is_storage_error(engine, provisioning, registry):
    # A leftover physical table that the registry does not know about
    with engine.begin() as conn:
        conn.exec_driver_sql('CREATE TABLE "orphan" ("id" INTEGER PRIMARY KEY)')

    with pytest.raises(StorageError):
        provisioning.provision("orphan", PRODUCT_COLUMNS)
    assert not registry.exists("orphan")


def test_losing_a_registration_race(provisioning, registry, monkeypatch):
    # Another request registered the name after this one passed its pre-check
    registry.insert(TableDefinition(table_name="widgets", columns=[ColumnSpec(name="sku", type="string")]))
    monkeypatch.setattr(registry, "exists", lambda name: False)

    with pytest.raises(AlreadyExists):
        provisioning.provision("widgets", PRODUCT_COLUMNS)

    monkeypatch.undo()
    assert registry.lookup("widgets").column_names() == ["sku"]


def test_deprovision(engine, provisioning, registry):
    provisioning.provision("products", PRODUCT_COLUMNS)

    provisioning.deprovision("products")

    assert not registry.exists("products")
    assert not inspect(engine).has_table("products")


def test_deprovision_unknown(provisioning):
    with pytest.raises(TableNotFound):
        provisioning.deprovision("ghost")


def test_deprovision_after_manual_drop(engine, provisioning, registry, caplog):
    provisioning.provision("products", PRODUCT_COLUMNS)
    with engine.begin() as conn:
        conn.exec_driver_sql('DROP TABLE "products"')

    with caplog.at_level(logging.WARNING, logger="dyntables.provisioning"):
        provisioning.deprovision("products")

    assert not registry.exists("products")
    assert "Failed to drop table products" in caplog.text


def test_deprovision_removes_malformed_entry(provisioning, registry):
    with registry.engine.begin() as conn:
        conn.execute(registry.table.insert().values(table_name="broken", definition="{"))

    provisioning.deprovision("broken")
    assert not registry.exists("broken")


def test_name_is_reusable_after_deprovision(provisioning):
    provisioning.provision("products", PRODUCT_COLUMNS)
    provisioning.deprovision("products")

    definition = provisioning.provision("products", [{"name": "sku", "type": "string"}])
    assert definition.column_names() == ["sku"]


def test_list_tables_and_get_meta(provisioning):
    provisioning.provision("products", PRODUCT_COLUMNS)
    provisioning.provision("customers", [{"name": "email", "type": "string"}])

    assert [e.table_name for e in provisioning.list_tables()] == ["customers", "products"]
    assert provisioning.get_meta("customers").column_names() == ["email"]
    assert provisioning.get_meta("ghost") is None
