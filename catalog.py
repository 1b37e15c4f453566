"""Customer and product registry."""

import logging
from typing import Any, Dict

from pymongo import ReturnDocument
from pymongo.database import Database

from database import CUSTOMER_HISTORY, CUSTOMERS, PRODUCT_HISTORY, PRODUCTS, prepare_document, utcnow
from errors import NotFound, ValidationFailed
from identity import allocate_customer, allocate_product
from schemas import CustomerCreate, CustomerUpdate, ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)


def _changes(payload) -> Dict[str, Any]:
    if not payload.model_fields_set:
        raise ValidationFailed("body", "No updatable fields supplied")
    # only top-level fields are filtered; nested models dump in full
    changes = {
        key: value
        for key, value in payload.model_dump(by_alias=True, include=payload.model_fields_set).items()
        if value is not None
    }
    if not changes:
        raise ValidationFailed("body", "No updatable fields supplied")
    return changes


# ---------
# Customers
# ---------

def create_customer(db: Database, payload: CustomerCreate) -> Dict[str, Any]:
    document = prepare_document(payload)
    allocation = allocate_customer(db[CUSTOMERS], document)
    logger.info("Customer %s created", allocation.identity)
    return {**document, "_id": allocation.key, "userId": allocation.identity}


def get_customer(db: Database, user_id: str) -> Dict[str, Any]:
    customer = db[CUSTOMERS].find_one({"userId": user_id})
    if customer is None:
        raise NotFound("customer", user_id)
    return customer


def update_customer(db: Database, user_id: str, payload: CustomerUpdate) -> Dict[str, Any]:
    """Partial update. userId is fixed; comments are appended."""
    changes = _changes(payload)
    comments = changes.pop("comments", None)
    change: Dict[str, Any] = {"$set": {**changes, "updatedAt": utcnow()}}
    if comments:
        change["$push"] = {"comments": {"$each": comments}}

    customer = db[CUSTOMERS].find_one_and_update({"userId": user_id}, change, return_document=ReturnDocument.AFTER)
    if customer is None:
        raise NotFound("customer", user_id)
    logger.info("Customer %s updated", user_id)
    return customer


def delete_customer(db: Database, user_id: str) -> Dict[str, Any]:
    """Delete a customer and its purchase history. Orders keep their snapshot."""
    customer = db[CUSTOMERS].find_one_and_delete({"userId": user_id})
    if customer is None:
        raise NotFound("customer", user_id)
    removed = sum(
        db[name].delete_many({"customerKey": customer["_id"]}).deleted_count
        for name in (CUSTOMER_HISTORY, PRODUCT_HISTORY)
    )
    logger.info("Customer %s deleted with %d history entries", user_id, removed)
    return {"userId": user_id, "historyRemoved": removed}


# ---------
# Products
# ---------

def create_product(db: Database, payload: ProductCreate) -> Dict[str, Any]:
    document = prepare_document(payload)
    allocation = allocate_product(db[PRODUCTS], document)
    logger.info("Product %s created", allocation.identity)
    return {**document, "_id": allocation.key, "productId": allocation.identity}


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db[PRODUCTS].find_one({"productId": product_id})
    if product is None:
        raise NotFound("product", product_id)
    return product


def update_product(db: Database, product_id: str, payload: ProductUpdate) -> Dict[str, Any]:
    changes = _changes(payload)
    product = db[PRODUCTS].find_one_and_update(
        {"productId": product_id},
        {"$set": {**changes, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if product is None:
        raise NotFound("product", product_id)
    logger.info("Product %s updated", product_id)
    return product


def delete_product(db: Database, product_id: str) -> Dict[str, Any]:
    # History stays: past orders still carry the line item.
    product = db[PRODUCTS].find_one_and_delete({"productId": product_id})
    if product is None:
        raise NotFound("product", product_id)
    logger.info("Product %s deleted", product_id)
    return {"productId": product_id}
