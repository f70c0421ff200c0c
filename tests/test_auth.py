from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from jose import jwt

import config
import security
from errors import Forbidden
from main import app
from schemas import BuyerAccount, SellerAccount
from tests.utils import PASSWORD, auth


def test_register_buyer(buyer):
    assert buyer["role"] == "buyer"
    assert buyer["email"] == "buyer@example.com"
    assert buyer["isAdmin"] is False
    assert buyer["token"]
    assert "storeName" not in buyer


def test_register_seller_returns_store_fields(seller):
    assert seller["role"] == "seller"
    assert seller["storeName"] == "Sam's Store"
    assert seller["storeDescription"] == ""


def test_register_seller_requires_store_name(client):
    resp = client.post(
        "/auth/register/seller",
        json={"name": "No Store", "email": "nostore@example.com", "password": PASSWORD, "storeName": "  "},
    )
    assert resp.status_code == 400
    assert resp.json() == {"message": "Store name is required for sellers"}


def test_duplicate_email_rejected(client, register_buyer):
    register_buyer()
    resp = client.post(
        "/auth/register/buyer",
        json={"name": "Again", "email": "buyer@example.com", "password": PASSWORD},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "User already exists"


def test_duplicate_email_is_case_insensitive(client, register_buyer):
    register_buyer()
    resp = client.post(
        "/auth/register/seller",
        json={"name": "Shouty", "email": "BUYER@Example.com", "password": PASSWORD, "storeName": "Loud"},
    )
    assert resp.status_code == 400


def test_short_password_is_a_validation_error(client):
    resp = client.post("/auth/register/buyer", json={"name": "Tiny", "email": "t@example.com", "password": "123"})
    assert resp.status_code == 400
    assert "password" in resp.json()["message"]


def test_login(client, buyer):
    resp = client.post("/auth/login", json={"email": "Buyer@Example.com", "password": PASSWORD})
    assert resp.status_code == 200
    body = resp.json()
    assert body["_id"] == buyer["_id"]
    assert client.get("/auth/profile", headers=auth(body["token"])).status_code == 200


def test_login_failures_are_indistinguishable(client, buyer):
    wrong_password = client.post("/auth/login", json={"email": "buyer@example.com", "password": "nope-nope"})
    unknown_email = client.post("/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"message": "Invalid email or password"}


def test_missing_token(client):
    resp = client.get("/auth/profile")
    assert resp.status_code == 401
    assert "message" in resp.json()


def test_garbage_token(client):
    resp = client.get("/auth/profile", headers=auth("not-a-jwt"))
    assert resp.status_code == 401


def test_expired_token(client, buyer):
    token = security.create_access_token(buyer["_id"], expires_delta=timedelta(seconds=-30))
    resp = client.get("/auth/profile", headers=auth(token))
    assert resp.status_code == 401


def test_token_with_non_string_subject(client):
    token = jwt.encode({"sub": 12345}, config.SECRET_KEY, algorithm=config.ALGORITHM)
    resp = client.get("/auth/profile", headers=auth(token))
    assert resp.status_code == 401


def test_token_for_removed_user(client, db, buyer):
    db["user"].delete_many({})
    resp = client.get("/auth/profile", headers=auth(buyer["token"]))
    assert resp.status_code == 401


def test_profile_hides_password_hash(client, seller):
    resp = client.get("/auth/profile", headers=auth(seller["token"]))
    assert resp.status_code == 200
    body = resp.json()
    assert body["storeName"] == "Sam's Store"
    assert "passwordHash" not in body


def test_update_profile(client, seller):
    resp = client.put(
        "/auth/profile",
        json={"name": "Samuel", "storeName": "Samuel & Co", "password": "n3w-secret"},
        headers=auth(seller["token"]),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "Samuel"
    assert body["storeName"] == "Samuel & Co"
    assert body["token"]

    login = client.post("/auth/login", json={"email": "seller@example.com", "password": "n3w-secret"})
    assert login.status_code == 200


def test_update_profile_email_taken(client, buyer, seller):
    resp = client.put("/auth/profile", json={"email": "seller@example.com"}, headers=auth(buyer["token"]))
    assert resp.status_code == 400


def test_buyer_cannot_set_store_name(client, db, buyer):
    client.put("/auth/profile", json={"storeName": "Sneaky"}, headers=auth(buyer["token"]))
    assert db["user"].find_one({"email": "buyer@example.com"})["storeName"] is None


def test_accounts_resolve_to_role_types(db, buyer, seller):
    buyer_doc = db["user"].find_one({"email": "buyer@example.com"})
    seller_doc = db["user"].find_one({"email": "seller@example.com"})
    assert isinstance(security.load_account(buyer_doc), BuyerAccount)
    resolved = security.load_account(seller_doc)
    assert isinstance(resolved, SellerAccount)
    assert resolved.store_name == "Sam's Store"


def test_authorize_capabilities(db, buyer, seller, admin):
    buyer_acc = security.load_account(db["user"].find_one({"email": "buyer@example.com"}))
    seller_acc = security.load_account(db["user"].find_one({"email": "seller@example.com"}))
    admin_acc = security.load_account(db["user"].find_one({"email": "admin@example.com"}))

    security.authorize(seller_acc, security.Capability.SELL)
    security.authorize(buyer_acc, security.Capability.OWN, owner_id=buyer["_id"])
    security.authorize(admin_acc, security.Capability.ADMIN)
    security.authorize(admin_acc, security.Capability.OWN, owner_id=seller["_id"])

    with pytest.raises(Forbidden):
        security.authorize(buyer_acc, security.Capability.SELL)
    with pytest.raises(Forbidden):
        security.authorize(seller_acc, security.Capability.ADMIN)
    with pytest.raises(Forbidden):
        security.authorize(seller_acc, security.Capability.OWN, owner_id=buyer["_id"])


def test_database_not_configured():
    client = TestClient(app)
    resp = client.post("/auth/login", json={"email": "a@example.com", "password": PASSWORD})
    assert resp.status_code == 500
    assert resp.json() == {"message": "Database not configured"}
