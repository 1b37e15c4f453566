"""
MongoDB access for the shop ledger.

The handle is built once from DATABASE_URL / DATABASE_NAME. When either is
missing `db` stays None and every store-backed route answers 503.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from errors import StoreUnavailable

logger = logging.getLogger(__name__)

CUSTOMERS = "customer"
PRODUCTS = "product"
ORDERS = "order"
CUSTOMER_HISTORY = "customer_history"
PRODUCT_HISTORY = "product_history"

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

db: Optional[Database] = None

if database_url and database_name:
    client = MongoClient(database_url, serverSelectionTimeoutMS=5000)
    db = client[database_name]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise StoreUnavailable()
    return db


def ensure_indexes(database: Database) -> None:
    """Create the unique identity indexes and history lookup indexes."""
    database[CUSTOMERS].create_index([("userId", ASCENDING)], unique=True)
    database[PRODUCTS].create_index([("productId", ASCENDING)], unique=True)
    database[ORDERS].create_index([("orderId", ASCENDING)], unique=True)
    database[ORDERS].create_index([("createdAt", DESCENDING)])
    database[CUSTOMER_HISTORY].create_index([("orderKey", ASCENDING)])
    database[CUSTOMER_HISTORY].create_index([("customerKey", ASCENDING), ("productKey", ASCENDING)])
    database[PRODUCT_HISTORY].create_index([("orderKey", ASCENDING)])
    database[PRODUCT_HISTORY].create_index([("productKey", ASCENDING), ("customerKey", ASCENDING)])
    logger.info("Indexes ensured on database %s", database.name)


def prepare_document(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Dump a model by alias and stamp creation/update times."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    return doc


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    projection: Optional[Dict[str, int]] = None,
    sort: Optional[List] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
