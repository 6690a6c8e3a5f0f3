"""Client reconciliation layer: live reads, degraded fallbacks, queued writes."""

import httpx
import pytest
from fastapi.testclient import TestClient

import ledger
from client import (
    PENDING_KEY,
    PRODUCTS,
    SEED_DATA,
    TRANSACTIONS,
    HybridRepository,
    JsonFileStore,
    LocalStore,
    MemoryStore,
    RemoteStore,
    TexFlowClient,
)


class FlakyServer:
    """MockTransport handler that can be switched on and off."""

    def __init__(self, routes=None):
        self.online = True
        self.timeout = False
        self.routes = routes or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("connection refused", request=request)
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        self.requests.append((request.method, request.url.path))
        key = (request.method, request.url.path)
        status, body = self.routes.get(key, (200, []))
        return httpx.Response(status, json=body)


def make_repo(server, local=None, **kwargs):
    http = httpx.Client(transport=httpx.MockTransport(server), base_url="http://texflow.test/api")
    return HybridRepository(RemoteStore(http_client=http), local or MemoryStore(), **kwargs)


def test_live_read_overwrites_cache():
    server_products = [{"id": "abc", "name": "Server Linen", "stock": 3}]
    server = FlakyServer({("GET", "/api/products"): (200, server_products)})
    repo = make_repo(server)

    assert repo.read(PRODUCTS) == server_products
    assert repo.cached(PRODUCTS) == server_products


def test_degraded_read_serves_last_cached_value():
    server_products = [{"id": "abc", "name": "Server Linen", "stock": 3}]
    server = FlakyServer({("GET", "/api/products"): (200, server_products)})
    repo = make_repo(server)
    repo.read(PRODUCTS)

    server.online = False

    assert repo.read(PRODUCTS) == server_products


def test_degraded_read_without_cache_serves_seed():
    server = FlakyServer()
    server.online = False
    repo = make_repo(server)

    assert repo.read(PRODUCTS) == SEED_DATA[PRODUCTS]
    assert repo.read(TRANSACTIONS) == []


def test_timeout_counts_as_failure():
    server = FlakyServer()
    server.timeout = True
    repo = make_repo(server)

    assert repo.read(PRODUCTS) == SEED_DATA[PRODUCTS]


def test_server_error_counts_as_failure():
    server = FlakyServer({("GET", "/api/products"): (500, {"message": "boom"})})
    repo = make_repo(server)

    assert repo.read(PRODUCTS) == SEED_DATA[PRODUCTS]


def test_state_is_decided_per_call():
    server = FlakyServer({("GET", "/api/products"): (200, [{"id": "abc"}])})
    repo = make_repo(server)

    server.online = False
    assert repo.read(PRODUCTS) == SEED_DATA[PRODUCTS]
    server.online = True
    assert repo.read(PRODUCTS) == [{"id": "abc"}]


def test_offline_write_is_optimistic_and_queued():
    server = FlakyServer()
    server.online = False
    repo = make_repo(server)

    record = repo.write(PRODUCTS, "POST", {"name": "Velvet", "sku": "VLV-1"})

    assert record["id"].startswith("local-")
    assert repo.cached(PRODUCTS)[-1] == record
    assert len(repo.pending) == 1
    assert repo.local.get(PENDING_KEY)[0]["method"] == "POST"


def test_queued_write_is_delivered_on_next_sync():
    created = {"id": "srv1", "name": "Velvet", "sku": "VLV-1"}
    server = FlakyServer(
        {
            ("POST", "/api/products"): (201, created),
            ("GET", "/api/products"): (200, [created]),
        }
    )
    server.online = False
    repo = make_repo(server)
    repo.write(PRODUCTS, "POST", {"name": "Velvet", "sku": "VLV-1"})

    server.online = True
    products = repo.read(PRODUCTS)

    assert products == [created]
    assert repo.pending == []
    assert server.requests == [("POST", "/api/products"), ("GET", "/api/products")]


def test_live_write_returns_server_record_and_replaces_local_one():
    created = {"id": "srv1", "name": "Velvet", "sku": "VLV-1"}
    server = FlakyServer({("POST", "/api/products"): (201, created)})
    repo = make_repo(server)

    record = repo.write(PRODUCTS, "POST", {"name": "Velvet", "sku": "VLV-1"})

    assert record == created
    assert repo.pending == []
    assert repo.cached(PRODUCTS)[-1] == created


def test_rejected_write_is_discarded():
    server = FlakyServer({("POST", "/api/products"): (409, {"message": "SKU already exists"})})
    repo = make_repo(server)

    record = repo.write(PRODUCTS, "POST", {"name": "Dup", "sku": "TEX-M001"})

    assert record["id"].startswith("local-")
    assert repo.pending == []


def test_writes_against_offline_records_follow_the_server_id():
    server = FlakyServer(
        {
            ("POST", "/api/products"): (201, {"id": "srv9", "name": "Velvet"}),
            ("PATCH", "/api/products/srv9"): (200, {"id": "srv9", "name": "Velvet", "stock": 7}),
        }
    )
    server.online = False
    repo = make_repo(server)
    local = repo.write(PRODUCTS, "POST", {"name": "Velvet"})
    repo.write(PRODUCTS, "PATCH", {"stock": 7}, item_id=local["id"])

    server.online = True
    assert repo.sync() is True

    assert server.requests == [("POST", "/api/products"), ("PATCH", "/api/products/srv9")]


def test_read_budget_bounds_replay():
    server = FlakyServer({("GET", "/api/products"): (200, [])})
    server.online = False
    repo = make_repo(server, read_budget=0)
    queued = repo.write(PRODUCTS, "POST", {"name": "Velvet"})

    server.online = True
    products = repo.read(PRODUCTS)

    assert products[-1] == queued
    assert len(repo.pending) == 1
    assert server.requests == []


def test_local_store_requires_get_and_set():
    class WriteOnly(LocalStore):
        def set(self, key, value):
            pass

    with pytest.raises(TypeError):
        WriteOnly()


def test_pending_queue_survives_restart(tmp_path):
    path = str(tmp_path / "cache.json")
    server = FlakyServer()
    server.online = False
    make_repo(server, JsonFileStore(path)).write(PRODUCTS, "POST", {"name": "Velvet"})

    reopened = make_repo(server, JsonFileStore(path))

    assert len(reopened.pending) == 1
    assert reopened.cached(PRODUCTS)[-1]["name"] == "Velvet"


def test_offline_transaction_adjusts_cached_stock():
    server = FlakyServer()
    server.online = False
    client = TexFlowClient(make_repo(server))

    tx = client.add_transaction({"type": "Sale", "productId": "m1", "quantity": 5})
    client.add_transaction({"type": "Purchase", "productId": "m2", "quantity": 8})

    stock = {p["id"]: p["stock"] for p in client.get_products()}
    assert stock == {"m1": 40, "m2": 20}
    ledger = client.get_transactions()
    assert [t["type"] for t in ledger] == ["Purchase", "Sale"]
    assert ledger[1]["id"] == tx["id"]
    assert tx["date"]


def test_offline_delete_drops_product_and_its_transactions():
    server = FlakyServer()
    server.online = False
    client = TexFlowClient(make_repo(server))
    client.add_transaction({"type": "Sale", "productId": "m1", "quantity": 1})

    client.delete_product("m1")

    assert [p["id"] for p in client.get_products()] == ["m2"]
    assert client.get_transactions() == []


# Against the real API

@pytest.fixture
def live_client(app):
    with TestClient(app, base_url="http://testserver/api") as http:
        yield TexFlowClient(HybridRepository(RemoteStore(http_client=http), MemoryStore()))


def test_checkout_applies_gst_and_moves_stock(live_client):
    product = live_client.save_product(
        {"name": "Cotton", "sku": "TEX-001", "stock": 10, "costPrice": 100, "sellingPrice": 200}
    )

    results = live_client.checkout([(product, 3)], customer_name="Meera", gst_rate=0.18)

    assert results[0]["totalAmount"] == 708
    assert results[0]["taxAmount"] == pytest.approx(108)
    assert results[0]["entityName"] == "Meera"
    assert live_client.get_products()[0]["stock"] == 7


def test_storefront_order_is_untaxed(live_client):
    product = live_client.save_product({"name": "Towel", "sku": "TWL-1", "stock": 4, "sellingPrice": 450})

    results = live_client.place_order([(product, 2)], shipping={"shippingAddress": "12 Loom Street"})

    assert results[0]["totalAmount"] == 900
    assert results[0]["entityName"] == "Online Customer"
    assert results[0]["shippingAddress"] == "12 Loom Street"


def test_checkout_lines_are_independent(live_client):
    plenty = live_client.save_product({"name": "Silk", "sku": "SLK-1", "stock": 10, "sellingPrice": 100})
    scarce = live_client.save_product({"name": "Wool", "sku": "WOL-1", "stock": 1, "sellingPrice": 100})

    live_client.checkout([(plenty, 2), (scarce, 5)])

    ledger = live_client.get_transactions()
    assert [t["productId"] for t in ledger] == [plenty["id"]]
    stock = {p["sku"]: p["stock"] for p in live_client.get_products()}
    assert stock == {"SLK-1": 8, "WOL-1": 1}


def test_contacts_round_trip(live_client):
    supplier = live_client.save_supplier({"name": "Weavers Ltd", "contact": "Ravi"})
    live_client.save_supplier({"id": supplier["id"], "email": "orders@weavers.in"})
    live_client.save_customer({"name": "Anita", "phone": "98450"})

    assert live_client.get_suppliers()[0]["email"] == "orders@weavers.in"
    assert [c["name"] for c in live_client.get_customers()] == ["Anita"]


def test_storefront_orders_are_listed_per_user(live_client, db):
    product = live_client.save_product({"name": "Towel", "sku": "TWL-2", "stock": 10, "sellingPrice": 450})
    live_client.place_order([(product, 1)], user_id="shopper-1")
    live_client.place_order([(product, 2)], user_id="shopper-2")

    orders = ledger.list_transactions(db, user_id="shopper-1")

    assert [(o["userId"], o["quantity"]) for o in orders] == [("shopper-1", 1)]
