"""
Running customer balances.

Every order's billing block carries the customer's prior due in and computes
the new outstanding figure. The customer document's `dues` is only a cache of
the latest such figure: orders replace it, they never add to it.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo.database import Database

from database import CUSTOMERS, utcnow
from errors import ValidationFailed
from schemas import Billing, LineItem

logger = logging.getLogger(__name__)

# Half a cent: amounts are compared after rounding to two places.
TOLERANCE = 0.005


def _money(value: float) -> float:
    return round(float(value), 2)


def _agrees(supplied: float, expected: float) -> bool:
    return abs(supplied - expected) <= TOLERANCE


def current_dues(customer: Dict[str, Any]) -> float:
    return _money(customer.get("dues") or 0)


def compute_total_amount(order_amount: float, delivery_charges: float) -> float:
    return _money(order_amount + delivery_charges)


def compute_final_amount(order_amount: float, delivery_charges: float, past_order_due: float, money_given: float) -> float:
    return _money(order_amount + delivery_charges + past_order_due - money_given)


def reconcile_billing(billing: Billing, line_totals: Iterable[float], customer_dues: float) -> Dict[str, Any]:
    """Fill the computed billing fields and reject supplied values that disagree.

    Returns the billing block as it is stored (camelCase keys).
    """
    items_amount = _money(sum(line_totals))
    if not _agrees(billing.order_amount, items_amount):
        raise ValidationFailed(
            "billing.orderAmount", f"{billing.order_amount} does not equal the sum of line totals ({items_amount})"
        )

    past_due = customer_dues if billing.past_order_due is None else _money(billing.past_order_due)
    total = compute_total_amount(billing.order_amount, billing.delivery_charges)
    final = compute_final_amount(billing.order_amount, billing.delivery_charges, past_due, billing.money_given)

    if billing.total_amount is not None and not _agrees(billing.total_amount, total):
        raise ValidationFailed("billing.totalAmount", f"{billing.total_amount} does not equal orderAmount + deliveryCharges ({total})")
    if billing.final_amount is not None and not _agrees(billing.final_amount, final):
        raise ValidationFailed(
            "billing.finalAmount",
            f"{billing.final_amount} does not equal orderAmount + deliveryCharges + pastOrderDue - moneyGiven ({final})",
        )

    reconciled = billing.model_copy(update={"past_order_due": past_due, "total_amount": total, "final_amount": final})
    return reconciled.model_dump(by_alias=True)


def apply_order_to_dues(db: Database, customer_key: ObjectId, billing: Dict[str, Any]) -> float:
    final = billing["finalAmount"]
    db[CUSTOMERS].update_one({"_id": customer_key}, {"$set": {"dues": final, "updatedAt": utcnow()}})
    logger.info("Dues for customer %s set to %s", customer_key, final)
    return final


def quote_billing(
    line_items: List[LineItem],
    delivery_charges: float = 0,
    money_given: float = 0,
    past_order_due: Optional[float] = None,
    customer: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Billing preview for a prospective order; nothing is written."""
    if past_order_due is None:
        past_order_due = current_dues(customer) if customer else 0.0
    order_amount = _money(sum(item.total_amount for item in line_items))
    return {
        "orderWeight": _money(sum(item.weight * item.quantity for item in line_items)),
        "orderAmount": order_amount,
        "deliveryCharges": _money(delivery_charges),
        "totalAmount": compute_total_amount(order_amount, delivery_charges),
        "pastOrderDue": _money(past_order_due),
        "moneyGiven": _money(money_given),
        "finalAmount": compute_final_amount(order_amount, delivery_charges, past_order_due, money_given),
    }
