from fastapi import FastAPI
from fastapi.testclient import TestClient

from grill_backoffice.core.database import get_db
from grill_backoffice.deps import get_order_source, get_session_factory
from grill_backoffice.routers.catalog import router as catalog_router
from grill_backoffice.routers.inventory import router as inventory_router
from grill_backoffice.routers.reconciliation import router as reconciliation_router
from grill_backoffice.routers.recipes import router as recipes_router
from tests.fixtures_data import (
    CATALOG_VARIATIONS,
    FakeOrderSource,
    build_session_factory,
    line,
    make_order,
)


def _build_client():
    session_factory = build_session_factory()
    source = FakeOrderSource(orders=[make_order("O1", line("V1", 2))], catalog=CATALOG_VARIATIONS)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app = FastAPI()
    app.include_router(inventory_router)
    app.include_router(recipes_router)
    app.include_router(catalog_router)
    app.include_router(reconciliation_router)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_order_source] = lambda: source
    return TestClient(app)


def _create_item(client, **overrides):
    payload = {"name": "Patty", "type": "INGREDIENT", "uom": "kg", "decimals": 3, "initial_on_hand": "5"}
    payload.update(overrides)
    response = client.post("/api/admin/items", json=payload)
    assert response.status_code == 201
    return response.json()


def test_create_item_with_opening_balance():
    client = _build_client()

    item = _create_item(client)
    items = client.get("/api/admin/items").json()
    ledger = client.get(f"/api/admin/items/{item['id']}/ledger").json()

    assert item["on_hand"] == 5.0
    assert item["low_stock"] is False
    assert [entry["name"] for entry in items] == ["Patty"]
    assert len(ledger) == 1
    assert ledger[0]["reason"] == "MANUAL"
    assert ledger[0]["note"] == "Initial balance"


def test_create_item_rejects_unknown_type():
    client = _build_client()

    response = client.post("/api/admin/items", json={"name": "Fork", "type": "CUTLERY", "uom": "unit"})

    assert response.status_code == 400


def test_patch_item_updates_only_supplied_fields_and_low_stock():
    client = _build_client()
    item = _create_item(client)

    response = client.patch(f"/api/admin/items/{item['id']}", json={"low_stock_threshold": "6"})
    low_stock = client.get("/api/admin/low-stock").json()

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Patty"
    assert body["low_stock_threshold"] == 6.0
    assert body["low_stock"] is True
    assert [entry["id"] for entry in low_stock] == [item["id"]]

    cleared = client.patch(f"/api/admin/items/{item['id']}", json={"low_stock_threshold": None})
    assert cleared.json()["low_stock_threshold"] is None
    assert client.get("/api/admin/low-stock").json() == []


def test_patch_unknown_item_returns_404():
    client = _build_client()

    response = client.patch("/api/admin/items/999", json={"name": "Ghost"})

    assert response.status_code == 404


def test_adjust_item_validates_and_updates_balance():
    client = _build_client()
    item = _create_item(client)

    wrong_reason = client.post(f"/api/admin/items/{item['id']}/adjust", json={"delta": 1, "reason": "SALE"})
    zero = client.post(f"/api/admin/items/{item['id']}/adjust", json={"delta": 0})
    missing = client.post("/api/admin/items/999/adjust", json={"delta": 1})
    ok = client.post(
        f"/api/admin/items/{item['id']}/adjust",
        json={"delta": "-2", "reason": "PHYSICAL_COUNT", "note": "Count"},
    )

    assert wrong_reason.status_code == 400
    assert zero.status_code == 400
    assert missing.status_code == 404
    assert ok.status_code == 200
    assert ok.json()["on_hand"] == 3.0
    assert ok.json()["entry"]["delta"] == -2.0
    assert ok.json()["entry"]["reason"] == "PHYSICAL_COUNT"


def test_ledger_filters_by_reason_and_rejects_unknown_reason():
    client = _build_client()
    item = _create_item(client)
    client.post(f"/api/admin/items/{item['id']}/adjust", json={"delta": "1", "reason": "PHYSICAL_COUNT"})

    counts = client.get("/api/admin/ledger", params={"reason": "PHYSICAL_COUNT", "limit": 1000})
    ranged = client.get("/api/admin/ledger", params={"start": "2000-01-01", "end": "2999-12-31"})
    bogus = client.get("/api/admin/ledger", params={"reason": "BOGUS"})
    bad_date = client.get("/api/admin/ledger", params={"start": "yesterday"})

    assert counts.status_code == 200
    assert [entry["reason"] for entry in counts.json()] == ["PHYSICAL_COUNT"]
    assert len(ranged.json()) == 2
    assert bogus.status_code == 400
    assert bad_date.status_code == 400


def test_recipe_upsert_read_and_remove():
    client = _build_client()
    item = _create_item(client)

    created = client.post(
        "/api/admin/recipes",
        json={"variation_id": "V1", "inventory_item_id": item["id"], "qty_per_sale": "0.150"},
    )
    updated = client.post(
        "/api/admin/recipes",
        json={"variation_id": "V1", "inventory_item_id": item["id"], "qty_per_sale": "0.200"},
    )
    with_modifier = client.post(
        "/api/admin/recipes",
        json={
            "variation_id": "V1",
            "inventory_item_id": item["id"],
            "qty_per_sale": "0.300",
            "modifier_catalog_object_id": "DOUBLE",
        },
    )

    assert created.status_code == 200
    assert [component["qty_per_sale"] for component in updated.json()] == [0.2]
    assert len(with_modifier.json()) == 2
    assert client.get("/api/admin/recipes/V1").json()[0]["modifier_catalog_object_id"] is None

    removed = client.post(
        "/api/admin/recipes",
        json={"variation_id": "V1", "inventory_item_id": item["id"], "modifier_catalog_object_id": "DOUBLE", "remove": True},
    )
    missing = client.post(
        "/api/admin/recipes",
        json={"variation_id": "V1", "inventory_item_id": item["id"], "modifier_catalog_object_id": "DOUBLE", "remove": True},
    )

    assert len(removed.json()) == 1
    assert missing.status_code == 404


def test_recipe_rejects_non_positive_quantity_and_unknown_item():
    client = _build_client()
    item = _create_item(client)

    zero = client.post(
        "/api/admin/recipes",
        json={"variation_id": "V1", "inventory_item_id": item["id"], "qty_per_sale": "0"},
    )
    unknown = client.post(
        "/api/admin/recipes",
        json={"variation_id": "V1", "inventory_item_id": 999, "qty_per_sale": "1"},
    )

    assert zero.status_code == 400
    assert unknown.status_code == 404
    assert client.get("/api/admin/recipes/V1").json() == []


def test_catalog_sync_and_listing():
    client = _build_client()

    synced = client.post("/api/admin/catalog/sync")
    resynced = client.post("/api/admin/catalog/sync")
    listing = client.get("/api/admin/catalog").json()
    search = client.get("/api/admin/catalog", params={"search": "fri"}).json()

    assert synced.json() == {"ok": True, "variations": 2}
    assert resynced.status_code == 200
    assert [row["variation_id"] for row in listing] == ["V1", "V2"]
    assert [row["variation_id"] for row in search] == ["V2"]


def test_reconciliation_run_with_explicit_range():
    client = _build_client()
    item = _create_item(client, initial_on_hand="10")
    client.post(
        "/api/admin/recipes",
        json={"variation_id": "V1", "inventory_item_id": item["id"], "qty_per_sale": "1"},
    )

    response = client.post(
        "/api/admin/reconciliation/run",
        json={"start_at": "2024-05-01T00:00:00Z", "end_at": "2024-05-01T23:59:59.999Z"},
    )
    half_range = client.post("/api/admin/reconciliation/run", json={"start_at": "2024-05-01T00:00:00Z"})

    assert response.status_code == 200
    body = response.json()
    assert body["processed_orders"] == 1
    assert body["adjustments"] == 1
    assert body["failed_orders"] == 0
    assert client.get("/api/admin/items").json()[0]["on_hand"] == 8.0
    assert half_range.status_code == 400


def test_patch_rejects_null_for_required_fields():
    client = _build_client()
    item = _create_item(client)

    for field in ("active", "name", "type", "uom", "decimals"):
        response = client.patch(f"/api/admin/items/{item['id']}", json={field: None})
        assert response.status_code == 400, field

    deactivated = client.patch(f"/api/admin/items/{item['id']}", json={"active": False})
    current = client.get("/api/admin/items").json()[0]

    assert deactivated.json()["active"] is False
    assert current["name"] == "Patty"
    assert current["uom"] == "kg"
