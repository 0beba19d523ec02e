"""
Shared fixtures: an in-memory MongoDB (mongomock), a TestClient and users per role.
"""

import os

# Settings are read at import time
os.environ["PAYMENT_PROCESSING_DELAY"] = "0"
os.environ["MONGO_TRANSACTIONS"] = "false"
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import config
import database
import main
from schemas import Order, Role, User

PASSWORD = "secret123"
_PASSWORD_HASH = auth.get_password_hash(PASSWORD)


@pytest.fixture(autouse=True)
def no_gateway_delay(monkeypatch):
    monkeypatch.setattr(config, "PAYMENT_PROCESSING_DELAY", 0)


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient().marketplace_test
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    return mock_db


@pytest.fixture
def client(db):
    return TestClient(main.app)


def make_user(db, role: Role = Role.buyer, username: str = None) -> dict:
    username = username or f"{role.value}{db['user'].count_documents({})}"
    user = User(
        name=username.title(),
        username=username,
        email=f"{username}@example.com",
        password_hash=_PASSWORD_HASH,
        role=role,
    )
    user_id = database.create_document("user", user)
    return db["user"].find_one({"_id": database.to_object_id(user_id)})


def headers_for(user: dict) -> dict:
    return {"Authorization": f"Bearer {auth.token_for_user(user)}"}


@pytest.fixture
def buyer(db):
    return make_user(db, Role.buyer)


@pytest.fixture
def seller(db):
    return make_user(db, Role.seller)


@pytest.fixture
def admin(db):
    return make_user(db, Role.admin)


@pytest.fixture
def order(db, buyer):
    order_id = database.create_document(
        "order", Order(buyer_id=str(buyer["_id"]), address="12 MG Road, Pune", total_price=49900)
    )
    return db["order"].find_one({"_id": database.to_object_id(order_id)})


def make_product(db, seller: dict, sku: str = "ORG-RICE-1", variants=None) -> dict:
    variants = variants or [
        {"size": "1kg", "color": "", "price": 12000, "discount_price": 9900, "stock": 5, "unit": "Kg"},
        {"size": "5kg", "color": "", "price": 55000, "discount_price": None, "stock": 2, "unit": "Kg"},
    ]
    product_id = database.create_document(
        "product",
        {
            "name": "Organic Basmati Rice",
            "category": "grains",
            "sku": sku,
            "product_type": "Variable",
            "tags": ["rice"],
            "is_organic": True,
            "variants": variants,
            "seller_id": str(seller["_id"]),
        },
    )
    return db["product"].find_one({"_id": database.to_object_id(product_id)})
