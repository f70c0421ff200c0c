import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from tests.utils import PASSWORD, auth


@pytest.fixture
def db():
    database = mongomock.MongoClient().marketplace
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register_buyer(client):
    def _register(email="buyer@example.com", name="Bea Buyer"):
        resp = client.post("/auth/register/buyer", json={"name": name, "email": email, "password": PASSWORD})
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _register


@pytest.fixture
def register_seller(client):
    def _register(email="seller@example.com", name="Sam Seller", store="Sam's Store"):
        resp = client.post(
            "/auth/register/seller",
            json={"name": name, "email": email, "password": PASSWORD, "storeName": store, "phone": "555-0100"},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _register


@pytest.fixture
def buyer(register_buyer):
    return register_buyer()


@pytest.fixture
def seller(register_seller):
    return register_seller()


@pytest.fixture
def other_seller(register_seller):
    return register_seller(email="rival@example.com", name="Rita Rival", store="Rita's Goods")


@pytest.fixture
def admin(register_buyer, db):
    payload = register_buyer(email="admin@example.com", name="Ada Admin")
    db["user"].update_one({"email": "admin@example.com"}, {"$set": {"isAdmin": True}})
    return payload


@pytest.fixture
def make_product(client, seller):
    def _make(owner=None, **overrides):
        body = {
            "name": "Widget",
            "description": "A useful widget",
            "price": 30,
            "image": "/images/widget.png",
            "category": "Tools",
            "countInStock": 10,
        }
        body.update(overrides)
        resp = client.post("/products", json=body, headers=auth((owner or seller)["token"]))
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make


@pytest.fixture
def place_order(client, buyer):
    def _place(lines, who=None):
        body = {
            "orderItems": [{"product": p["_id"], "qty": qty} for p, qty in lines],
            "shippingAddress": {
                "address": "1 Main St",
                "city": "Springfield",
                "postalCode": "12345",
                "country": "US",
            },
        }
        return client.post("/orders", json=body, headers=auth((who or buyer)["token"]))

    return _place
