"""Shared fixtures: an in-memory MongoDB and an API client bound to it."""

from typing import Any, Dict

import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
from database import ensure_indexes, get_db
from main import app
from schemas import CustomerCreate, ProductCreate


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shop_ledger_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer(db) -> Dict[str, Any]:
    return catalog.create_customer(
        db,
        CustomerCreate(
            name="Test Shop",
            shop_name="Test Shop",
            address="12 MG Road",
            town="Bengaluru",
            state="Karnataka",
            pincode="560001",
            contact=[{"contact": "9876543210", "whatsapp": True}],
        ),
    )


@pytest.fixture
def product(db) -> Dict[str, Any]:
    return catalog.create_product(db, ProductCreate(name="Turmeric Powder", weight=0.5, unit="kg", mrp=120, rate=100))


@pytest.fixture
def second_product(db, product) -> Dict[str, Any]:
    return catalog.create_product(db, ProductCreate(name="Chilli Powder", weight=0.25, unit="kg", mrp=60, rate=50))


def line_item(product: Dict[str, Any], quantity: int = 2) -> Dict[str, Any]:
    return {
        "productId": product["productId"],
        "name": product["name"],
        "weight": product["weight"],
        "unit": product["unit"],
        "rate": product["rate"],
        "quantity": quantity,
        "totalAmount": product["rate"] * quantity,
    }


def order_payload(customer: Dict[str, Any], *items: Dict[str, Any], **billing: Any) -> Dict[str, Any]:
    amount = sum(item["totalAmount"] for item in items)
    return {
        "user": {"userId": customer["userId"], "name": customer["name"], "shopName": customer["shopName"]},
        "productDetails": list(items),
        "billing": {
            "orderWeight": 1,
            "orderAmount": amount,
            "deliveryCharges": 20,
            "paymentMethod": "cash",
            "moneyGiven": amount + 20,
            "pastOrderDue": 0,
            **billing,
        },
    }
