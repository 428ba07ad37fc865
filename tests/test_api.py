from fastapi.testclient import TestClient

from dyntables.main import app

from conftest import PRODUCT_COLUMNS


def _provision_products(client):
    r = client.post("/provision/table", json={"tableName": "products", "columns": PRODUCT_COLUMNS})
    assert r.status_code == 200
    return r


def test_health_needs_no_token(client):
    r = TestClient(app).get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"


def test_admin_routes_require_token(client):
    anonymous = TestClient(app)
    assert anonymous.get("/provision/tables").status_code == 401

    wrong = TestClient(app, headers={"Authorization": "Bearer nope"})
    assert wrong.get("/provision/tables").status_code == 401


def test_provision_and_list(client):
    r = _provision_products(client)
    assert r.json() == {
        "tableName": "products",
        "columns": [
            {"name": "title", "type": "string", "nullable": False, "default": None},
            {"name": "price", "type": "decimal", "nullable": True, "default": None},
        ],
    }

    listed = client.get("/provision/tables").json()
    assert [t["tableName"] for t in listed] == ["products"]
    assert [c["name"] for c in listed[0]["definition"]["columns"]] == ["title", "price"]
    assert listed[0]["created_at"] is not None

    meta = client.get("/provision/table/products")
    assert meta.status_code == 200
    assert meta.json()["tableName"] == "products"
    assert client.get("/provision/table/ghost").status_code == 404


def test_provision_errors(client):
    _provision_products(client)

    dup = client.post("/provision/table", json={"tableName": "products", "columns": PRODUCT_COLUMNS})
    assert dup.status_code == 400
    assert dup.json() == {"errors": {"tableName": "already exists"}}

    bad_name = client.post("/provision/table", json={"tableName": "Bad Name", "columns": PRODUCT_COLUMNS})
    assert bad_name.status_code == 400
    assert bad_name.json() == {"errors": {"tableName": "must match ^[a-z][a-z0-9_]{0,29}$"}}

    bad_cols = client.post(
        "/provision/table",
        json={"tableName": "things", "columns": [{"name": "created_at", "type": "datetime"}]},
    )
    assert bad_cols.status_code == 400
    assert bad_cols.json() == {"errors": {"created_at": "is reserved"}}


def test_row_crud(client):
    _provision_products(client)

    created = client.post("/api/products", json={"title": "Widget", "foo": "bar"})
    assert created.status_code == 201
    row = created.json()
    assert row["id"] == 1
    assert row["title"] == "Widget"
    assert row["price"] is None
    assert "foo" not in row

    missing = client.post("/api/products", json={"price": 9.99})
    assert missing.status_code == 400
    assert missing.json() == {"message": "missing required fields", "fields": ["title"]}

    invalid = client.post("/api/products", json={"title": "A", "price": "cheap"})
    assert invalid.status_code == 400
    assert set(invalid.json()["errors"]) == {"price"}

    updated = client.put("/api/products/1", json={"price": 2.5})
    assert updated.status_code == 200
    assert updated.json()["price"] == 2.5
    assert updated.json()["title"] == "Widget"

    assert client.get("/api/products/1").json()["price"] == 2.5
    assert client.get("/api/products/99").json() == {"message": "row not found"}
    assert client.put("/api/products/99", json={"title": "x"}).status_code == 404

    assert client.delete("/api/products/1").status_code == 204
    assert client.get("/api/products/1").status_code == 404


def test_list_rows(client):
    _provision_products(client)
    for title in ("banana", "apple", "cherry"):
        client.post("/api/products", json={"title": title})

    body = client.get("/api/products", params={"pageSize": "1000", "sort": "title", "order": "desc"}).json()
    assert body["pageSize"] == 100
    assert body["page"] == 1
    assert body["total"] == 3
    assert body["totalPages"] == 1
    assert body["sort"] == {"column": "title", "order": "desc"}
    assert [r["title"] for r in body["data"]] == ["cherry", "banana", "apple"]

    fallback = client.get("/api/products", params={"sort": "nope", "page": "-1", "pageSize": "2"}).json()
    assert fallback["sort"] == {"column": "id", "order": "asc"}
    assert fallback["page"] == 1
    assert fallback["totalPages"] == 2
    assert [r["id"] for r in fallback["data"]] == [1, 2]

    searched = client.get("/api/products", params={"q": "an"}).json()
    assert [r["title"] for r in searched["data"]] == ["banana"]
    assert searched["total"] == 3

    far = client.get("/api/products", params={"page": "1e30"})
    assert far.status_code == 200
    assert far.json()["data"] == []


def test_unknown_table(client):
    assert client.get("/api/ghost").json() == {"message": "table not found"}
    assert client.get("/api/ghost").status_code == 404
    assert client.post("/api/ghost", json={"a": 1}).status_code == 404
    assert client.delete("/provision/table/ghost").status_code == 404


def test_deprovision(client):
    _provision_products(client)

    r = client.delete("/provision/table/products")
    assert r.status_code == 200
    assert r.json() == {"message": "table deleted successfully", "tableName": "products"}
    assert client.get("/api/products").status_code == 404
    assert client.get("/provision/tables").json() == []
