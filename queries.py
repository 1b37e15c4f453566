"""
Listing, search and history reads over the record store.

Search is a case-insensitive regex over the denormalized display fields, with
exact matching on money fields when the query parses as a number.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from database import CUSTOMER_HISTORY, CUSTOMERS, ORDERS, PRODUCT_HISTORY, PRODUCTS, get_documents
from errors import NotFound, ValidationFailed

DEFAULT_LIMIT = 50

ORDER_SUMMARY = {
    "orderId": 1,
    "status": 1,
    "user.userId": 1,
    "user.name": 1,
    "user.shopName": 1,
    "user.town": 1,
    "user.state": 1,
    "productDetails.name": 1,
    "billing.totalAmount": 1,
    "billing.finalAmount": 1,
    "createdAt": 1,
}
CUSTOMER_SUMMARY = {"userId": 1, "name": 1, "shopName": 1, "town": 1, "state": 1, "contact": 1, "dues": 1}
PRODUCT_SUMMARY = {"productId": 1, "name": 1, "images": 1, "mrp": 1, "rate": 1}

ORDER_TEXT_FIELDS = (
    "orderId",
    "user.shopName",
    "user.name",
    "user.address",
    "billing.paymentMethod",
    "productDetails.name",
)
ORDER_NUMERIC_FIELDS = ("billing.totalAmount", "billing.finalAmount")
CUSTOMER_TEXT_FIELDS = ("userId", "name", "shopName", "town", "state", "contact.contact")
CUSTOMER_NUMERIC_FIELDS = ("dues",)
PRODUCT_TEXT_FIELDS = ("productId", "name", "description", "features")
PRODUCT_NUMERIC_FIELDS = ("mrp", "rate")

NEWEST_FIRST = [("createdAt", DESCENDING)]


def _as_number(query: str) -> Optional[float]:
    try:
        return float(query)
    except ValueError:
        return None


def search_filter(query: str, text_fields: Iterable[str], numeric_fields: Iterable[str]) -> Dict[str, Any]:
    query = (query or "").strip()
    if not query:
        raise ValidationFailed("query", "No search query provided")
    pattern = {"$regex": re.escape(query), "$options": "i"}
    clauses: List[Dict[str, Any]] = [{field: pattern} for field in text_fields]
    number = _as_number(query)
    if number is not None:
        clauses.extend({field: number} for field in numeric_fields)
    return {"$or": clauses}


# ---------
# Listings
# ---------

def list_orders(db: Database, user_id: Optional[str] = None, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    filter_dict = {"user.userId": user_id} if user_id else {}
    return get_documents(db, ORDERS, filter_dict, limit, ORDER_SUMMARY, NEWEST_FIRST)


def list_customers(db: Database, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    return get_documents(db, CUSTOMERS, {}, limit, CUSTOMER_SUMMARY)


def list_products(db: Database, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    return get_documents(db, PRODUCTS, {}, limit, PRODUCT_SUMMARY)


# ---------
# Search
# ---------

def search_orders(db: Database, query: str, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    filter_dict = search_filter(query, ORDER_TEXT_FIELDS, ORDER_NUMERIC_FIELDS)
    return get_documents(db, ORDERS, filter_dict, limit, ORDER_SUMMARY, NEWEST_FIRST)


def search_customers(db: Database, query: str, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    filter_dict = search_filter(query, CUSTOMER_TEXT_FIELDS, CUSTOMER_NUMERIC_FIELDS)
    return get_documents(db, CUSTOMERS, filter_dict, limit, CUSTOMER_SUMMARY)


def search_products(db: Database, query: str, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    filter_dict = search_filter(query, PRODUCT_TEXT_FIELDS, PRODUCT_NUMERIC_FIELDS)
    return get_documents(db, PRODUCTS, filter_dict, limit, PRODUCT_SUMMARY)


# ---------
# History
# ---------

def _with_orders(db: Database, entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach the backing order's authoritative amounts to each history entry."""
    keys = list({entry["orderKey"] for entry in entries})
    orders = {
        doc["_id"]: doc
        for doc in db[ORDERS].find(
            {"_id": {"$in": keys}}, {"orderId": 1, "billing.totalAmount": 1, "billing.finalAmount": 1, "createdAt": 1}
        )
    }
    joined = []
    for entry in entries:
        order = orders.get(entry["orderKey"])
        billing = (order or {}).get("billing", {})
        entry["order"] = None if order is None else {
            "orderId": order["orderId"],
            "totalAmount": billing.get("totalAmount"),
            "finalAmount": billing.get("finalAmount"),
            "createdAt": order.get("createdAt"),
        }
        joined.append(entry)
    return joined


def customer_history(db: Database, user_id: Optional[str] = None, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    filter_dict = {"userId": user_id} if user_id else {}
    entries = get_documents(db, CUSTOMER_HISTORY, filter_dict, limit, sort=NEWEST_FIRST)
    return _with_orders(db, entries)


def product_history(db: Database, product_id: Optional[str] = None, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    filter_dict = {"productId": product_id} if product_id else {}
    entries = get_documents(db, PRODUCT_HISTORY, filter_dict, limit, sort=NEWEST_FIRST)
    return _with_orders(db, entries)


def require_history(entries: List[Dict[str, Any]], kind: str, ref: str) -> List[Dict[str, Any]]:
    if not entries:
        raise NotFound(f"{kind} history", ref)
    return entries
