"""
Order ledger: the only code path that writes orders and purchase history.

History entries (customer_history, product_history) are a derived index over
orders: one entry per line item per order in each collection. They are
written, rebuilt and removed here and nowhere else. If an entry and its order
disagree, the order wins.

Create validates every reference before the order is written, so a bad
productId never leaves an order behind. MongoDB gives no multi-document
transaction here, so a failed history write is compensated by removing the
order again and reported with PartialWrite.
"""

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import CUSTOMER_HISTORY, CUSTOMERS, ORDERS, PRODUCT_HISTORY, PRODUCTS, prepare_document, utcnow
from dues import apply_order_to_dues, current_dues, reconcile_billing
from errors import NotFound, PartialWrite, ReferenceNotFound, ValidationFailed
from identity import allocate_order
from schemas import Billing, OrderCreate, OrderStatus, OrderUpdate

logger = logging.getLogger(__name__)

HISTORY_COLLECTIONS = (CUSTOMER_HISTORY, PRODUCT_HISTORY)
SNAPSHOT_FIELDS = ("userId", "name", "shopName", "address", "town", "state", "pincode", "contact", "dues")


# -----------------------
# Reference resolution
# -----------------------

def resolve_customer(db: Database, user_id: str) -> Dict[str, Any]:
    customer = db[CUSTOMERS].find_one({"userId": user_id})
    if customer is None:
        raise ReferenceNotFound("customer", user_id)
    return customer


def resolve_products(db: Database, product_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Map each referenced productId to its product, or fail on the first missing one."""
    wanted = list(dict.fromkeys(product_ids))
    found = {
        doc["productId"]: doc
        for doc in db[PRODUCTS].find({"productId": {"$in": wanted}}, {"productId": 1, "name": 1})
    }
    for product_id in wanted:
        if product_id not in found:
            raise ReferenceNotFound("product", product_id)
    return found


def customer_snapshot(customer: Dict[str, Any]) -> Dict[str, Any]:
    snapshot = {field: customer.get(field) for field in SNAPSHOT_FIELDS}
    snapshot["contact"] = snapshot["contact"] or []
    return snapshot


def _referenced_products(line_items: List[Dict[str, Any]], free_items: List[Dict[str, Any]]) -> List[str]:
    refs = [item["productId"] for item in line_items]
    refs.extend(item["productId"] for item in free_items if item.get("productId"))
    return refs


# -----------------------
# History fan-out
# -----------------------

def history_entries(
    order: Dict[str, Any], customer_key: ObjectId, products: Dict[str, Dict[str, Any]]
) -> List[Dict[str, Any]]:
    now = utcnow()
    return [
        {
            "orderKey": order["_id"],
            "orderId": order["orderId"],
            "customerKey": customer_key,
            "userId": order["user"]["userId"],
            "userShopName": order["user"]["shopName"],
            "productKey": products[item["productId"]]["_id"],
            "productId": item["productId"],
            "productName": item["name"],
            "createdAt": now,
        }
        for item in order["productDetails"]
    ]


def _remove_history(db: Database, order_key: ObjectId) -> int:
    return sum(db[name].delete_many({"orderKey": order_key}).deleted_count for name in HISTORY_COLLECTIONS)


def _rollback_order(db: Database, order: Dict[str, Any]) -> bool:
    try:
        _remove_history(db, order["_id"])
        db[ORDERS].delete_one({"_id": order["_id"]})
    except PyMongoError:
        logger.error("Rollback of order %s failed", order["orderId"], exc_info=True)
        return False
    logger.warning("Order %s rolled back after history write failure", order["orderId"])
    return True


def _write_history(db: Database, order: Dict[str, Any], entries: List[Dict[str, Any]], rollback: bool) -> None:
    written: Dict[str, List[str]] = {name: [] for name in HISTORY_COLLECTIONS}
    try:
        for name in HISTORY_COLLECTIONS:
            if entries:
                result = db[name].insert_many([dict(entry) for entry in entries])
                written[name] = [str(key) for key in result.inserted_ids]
    except PyMongoError as exc:
        logger.error("History write failed for order %s", order["orderId"], exc_info=True)
        rolled_back = _rollback_order(db, order) if rollback else False
        raise PartialWrite(order["orderId"], written[CUSTOMER_HISTORY], written[PRODUCT_HISTORY], rolled_back) from exc


def _plan_history(db: Database, order: Dict[str, Any]) -> List[Dict[str, Any]]:
    customer = resolve_customer(db, order["user"]["userId"])
    products = resolve_products(db, (item["productId"] for item in order["productDetails"]))
    return history_entries(order, customer["_id"], products)


def _replace_history(db: Database, order: Dict[str, Any], entries: List[Dict[str, Any]]) -> None:
    _remove_history(db, order["_id"])
    _write_history(db, order, entries, rollback=False)


# -----------------------
# Order workflows
# -----------------------

def get_order(db: Database, order_id: str) -> Dict[str, Any]:
    order = db[ORDERS].find_one({"orderId": order_id})
    if order is None:
        raise NotFound("order", order_id)
    return order


def create_order(db: Database, payload: OrderCreate, today: Optional[date] = None) -> Dict[str, Any]:
    customer = resolve_customer(db, payload.user.user_id)

    data = payload.model_dump(by_alias=True, exclude={"user", "billing"})
    products = resolve_products(db, _referenced_products(data["productDetails"], data["freeProducts"]))

    billing = reconcile_billing(
        payload.billing, (item.total_amount for item in payload.product_details), current_dues(customer)
    )

    document = prepare_document(
        {**data, "user": customer_snapshot(customer), "billing": billing, "status": OrderStatus.CREATED.value}
    )
    allocation = allocate_order(db[ORDERS], document, today)
    order = {**document, "_id": allocation.key, "orderId": allocation.identity}

    _write_history(db, order, history_entries(order, customer["_id"], products), rollback=True)
    apply_order_to_dues(db, customer["_id"], billing)

    logger.info(
        "Order %s created for customer %s with %d line items",
        order["orderId"],
        customer["userId"],
        len(order["productDetails"]),
    )
    return order


def update_order(db: Database, order_id: str, payload: OrderUpdate) -> Dict[str, Any]:
    """Amend an order. orderId, createdAt and status are never writable.

    The customer's dues cache is not touched: it catches up on the next order.
    """
    fields = {name for name in payload.model_fields_set if getattr(payload, name) is not None}
    if not fields:
        raise ValidationFailed("body", "No updatable fields supplied")

    existing = get_order(db, order_id)
    updates: Dict[str, Any] = {}

    if "user" in fields:
        updates["user"] = customer_snapshot(resolve_customer(db, payload.user.user_id))
    if "product_details" in fields:
        updates["productDetails"] = [item.model_dump(by_alias=True) for item in payload.product_details]
    if "free_products" in fields:
        updates["freeProducts"] = [item.model_dump(by_alias=True) for item in payload.free_products]
    if "is_free_products" in fields:
        updates["isFreeProducts"] = payload.is_free_products

    line_items = updates.get("productDetails", existing["productDetails"])
    free_items = updates.get("freeProducts", existing.get("freeProducts") or [])
    if updates.get("isFreeProducts", existing.get("isFreeProducts")) and not free_items:
        raise ValidationFailed("freeProducts", "freeProducts must be provided when isFreeProducts is true")

    if "productDetails" in updates or "freeProducts" in updates:
        resolve_products(db, _referenced_products(line_items, free_items))

    if "billing" in fields or "productDetails" in updates:
        billing = payload.billing if "billing" in fields else Billing.model_validate(existing["billing"])
        updates["billing"] = reconcile_billing(
            billing,
            (item["totalAmount"] for item in line_items),
            existing["billing"].get("pastOrderDue") or 0.0,
        )

    entries = None
    if "user" in updates or "productDetails" in updates:
        entries = _plan_history(db, {**existing, **updates})

    updates["status"] = OrderStatus.AMENDED.value
    updates["updatedAt"] = utcnow()
    change: Dict[str, Any] = {"$set": updates}
    if "comments" in fields:
        change["$push"] = {"comments": {"$each": [c.model_dump(by_alias=True) for c in payload.comments]}}

    order = db[ORDERS].find_one_and_update({"orderId": order_id}, change, return_document=ReturnDocument.AFTER)
    if order is None:
        raise NotFound("order", order_id)

    if entries is not None:
        _replace_history(db, order, entries)

    logger.info("Order %s amended (%s)", order_id, ", ".join(sorted(fields)))
    return order


def delete_order(db: Database, order_id: str) -> Dict[str, Any]:
    order = db[ORDERS].find_one_and_delete({"orderId": order_id})
    if order is None:
        raise NotFound("order", order_id)
    removed = _remove_history(db, order["_id"])
    logger.warning(
        "Order %s deleted with %d history entries; dues for customer %s not rolled back",
        order_id,
        removed,
        order["user"].get("userId"),
    )
    return {"orderId": order_id, "status": OrderStatus.DELETED.value, "historyRemoved": removed}


# -----------------------
# Reconciliation
# -----------------------

def rebuild_history(db: Database, order: Any) -> int:
    """Replace an order's history entries with ones derived from its line items.

    Accepts an order document or an orderId. Returns the number of line items
    indexed (each one produces an entry in both history collections).
    """
    if not isinstance(order, dict):
        order = get_order(db, order)
    entries = _plan_history(db, order)
    _replace_history(db, order, entries)
    return len(entries)


def find_orphaned_history(db: Database) -> Dict[str, List[Dict[str, Any]]]:
    """History entries whose backing order no longer exists, per collection."""
    orphans: Dict[str, List[Dict[str, Any]]] = {}
    for name in HISTORY_COLLECTIONS:
        keys = db[name].distinct("orderKey")
        live = {doc["_id"] for doc in db[ORDERS].find({"_id": {"$in": keys}}, {"_id": 1})}
        orphans[name] = list(db[name].find({"orderKey": {"$nin": list(live)}}))
    return orphans


def purge_orphaned_history(db: Database) -> Dict[str, int]:
    removed = {}
    for name, entries in find_orphaned_history(db).items():
        keys = [entry["_id"] for entry in entries]
        removed[name] = db[name].delete_many({"_id": {"$in": keys}}).deleted_count if keys else 0
    if any(removed.values()):
        logger.warning("Purged orphaned history entries: %s", removed)
    return removed
