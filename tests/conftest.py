"""Shared fixtures: an in-memory MongoDB, the API bound to it, and HTTP clients."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Config
from main import create_app


class TestConfig(Config):
    __test__ = False

    CORS_ORIGINS = ["*"]
    LOW_STOCK_THRESHOLD = 10
    MAX_PAYLOAD_BYTES = 64 * 1024


@pytest.fixture
def db():
    return mongomock.MongoClient()["texflow_test"]


@pytest.fixture
def app(db):
    return create_app(database=db, config=TestConfig)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_product(client):
    """Create a product through the API and return its JSON."""

    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        body = {
            "name": f"Cotton Roll {counter['n']}",
            "category": "Fabric",
            "sku": f"TEX-{counter['n']:03d}",
            "variant": "White / 50m",
            "costPrice": 100,
            "sellingPrice": 200,
            "stock": 10,
            "description": "Plain cotton",
        }
        body.update(overrides)
        res = client.post("/api/products", json=body)
        assert res.status_code == 201, res.text
        return res.json()

    return _make
