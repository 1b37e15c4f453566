"""
Human-readable identity allocation for orders, customers and products.

IDs are derived from record counts plus a natural-language fragment, not from
a central sequence, so allocation is optimistic: build a candidate, try the
insert, and on a unique-key violation build the next candidate from the
highest sequence already stored under the prefix and try again.
The unique index on the ID field is the only thing that makes this safe.

Identity values depend on normalize_fragment(). Existing IDs are never
renormalized if those rules change.
"""

import logging
import os
import re
from datetime import date
from typing import Any, Callable, Dict, Iterable, NamedTuple, Optional, Union

from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from errors import IdentityConflict

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = max(1, int(os.getenv("ID_ALLOCATION_ATTEMPTS", "5")))

ORDER_MARKER = "OR"
DEFAULT_STATE = "NA"
DEFAULT_PINCODE = "000000"
DEFAULT_NAME = "Unknown"


class Allocation(NamedTuple):
    identity: str
    key: Any


class Conflict(NamedTuple):
    identity: str


# -----------------------
# Pure ID construction
# -----------------------

def normalize_fragment(value: Optional[str]) -> str:
    return re.sub(r"\s+", "", str(value)) if value is not None else ""


def state_code(state: Optional[str]) -> str:
    return normalize_fragment(state).upper()[:2] or DEFAULT_STATE


def order_prefix(today: date) -> str:
    return f"{today.strftime('%d%m%Y')}{ORDER_MARKER}"


def format_order_id(prefix: str, sequence: int) -> str:
    return f"{prefix}{sequence}"


def customer_prefix(
    state: Optional[str],
    pincode: Optional[str],
    town: Optional[str],
    name: Optional[str],
    shop_name: Optional[str],
) -> str:
    """STATE2 + pincode (or town, or 000000) + name (or shop name, or Unknown)."""
    place = normalize_fragment(pincode) or normalize_fragment(town) or DEFAULT_PINCODE
    label = normalize_fragment(name) or normalize_fragment(shop_name) or DEFAULT_NAME
    return f"{state_code(state)}{place}{label}"


def format_customer_id(prefix: str, sequence: int) -> str:
    return f"{prefix}{sequence:02d}"


def next_product_sequence(existing_ids: Iterable[Any]) -> int:
    # max-based: a deleted product's ID is never handed out again
    highest = 0
    for value in existing_ids:
        try:
            highest = max(highest, int(str(value)))
        except ValueError:
            continue
    return highest + 1


# -----------------------
# Store-bound allocation
# -----------------------

def count_with_prefix(collection: Collection, field: str, prefix: str) -> int:
    return collection.count_documents({field: {"$regex": f"^{re.escape(prefix)}"}})


def highest_sequence(collection: Collection, field: str, prefix: str) -> int:
    """Largest numeric suffix stored under `prefix`, or 0."""
    tail = re.compile(rf"{re.escape(prefix)}(\d+)")
    highest = 0
    for doc in collection.find({field: {"$regex": f"^{re.escape(prefix)}"}}, {field: 1}):
        match = tail.fullmatch(str(doc.get(field, "")))
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def next_sequence(collection: Collection, field: str, prefix: str, attempt: int) -> int:
    # first try follows the count; after a conflict, step past the highest taken ID
    if attempt == 0:
        return count_with_prefix(collection, field, prefix) + 1
    return highest_sequence(collection, field, prefix) + 1


def try_insert(collection: Collection, field: str, identity: str, document: Dict[str, Any]) -> Union[Allocation, Conflict]:
    doc = dict(document)
    doc.pop("_id", None)
    doc[field] = identity
    try:
        result = collection.insert_one(doc)
    except DuplicateKeyError:
        return Conflict(identity)
    return Allocation(identity, result.inserted_id)


def allocate(
    collection: Collection,
    field: str,
    candidate: Callable[[int], str],
    document: Dict[str, Any],
    attempts: Optional[int] = None,
) -> Allocation:
    """Insert `document` under the first candidate identity that is free.

    `candidate(attempt)` is re-evaluated on every attempt so it sees what
    concurrent writers have stored since the previous try.
    """
    attempts = attempts or MAX_ATTEMPTS
    for attempt in range(attempts):
        outcome = try_insert(collection, field, candidate(attempt), document)
        if isinstance(outcome, Allocation):
            return outcome
        logger.warning(
            "ID %s already taken in %s (attempt %d/%d)", outcome.identity, collection.name, attempt + 1, attempts
        )
    raise IdentityConflict(collection.name, attempts)


def allocate_order(
    collection: Collection, document: Dict[str, Any], today: Optional[date] = None, attempts: Optional[int] = None
) -> Allocation:
    prefix = order_prefix(today or date.today())

    def candidate(attempt: int) -> str:
        return format_order_id(prefix, next_sequence(collection, "orderId", prefix, attempt))

    return allocate(collection, "orderId", candidate, document, attempts)


def allocate_customer(collection: Collection, document: Dict[str, Any], attempts: Optional[int] = None) -> Allocation:
    prefix = customer_prefix(
        document.get("state"),
        document.get("pincode"),
        document.get("town"),
        document.get("name"),
        document.get("shopName"),
    )

    def candidate(attempt: int) -> str:
        return format_customer_id(prefix, next_sequence(collection, "userId", prefix, attempt))

    return allocate(collection, "userId", candidate, document, attempts)


def allocate_product(collection: Collection, document: Dict[str, Any], attempts: Optional[int] = None) -> Allocation:
    def candidate(attempt: int) -> str:
        existing = (doc.get("productId") for doc in collection.find({}, {"productId": 1}))
        return str(next_product_sequence(existing) + attempt)

    return allocate(collection, "productId", candidate, document, attempts)
