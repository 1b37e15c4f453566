"""Plain-text invoice rendering for a stored order."""

from datetime import date
from typing import Any, Dict, List, Optional

WIDTH = 78
COLUMNS = ("Product Name", "Weight", "Unit", "Rate", "Quantity", "Total (INR)")
COLUMN_WIDTHS = (28, 8, 6, 10, 9, 14)


def _row(values) -> str:
    return "".join(str(value)[: width - 1].ljust(width) for value, width in zip(values, COLUMN_WIDTHS)).rstrip()


def _table(items: List[Dict[str, Any]]) -> List[str]:
    lines = [_row(COLUMNS), "-" * WIDTH]
    for item in items:
        lines.append(
            _row(
                (
                    item.get("name", ""),
                    item.get("weight", ""),
                    item.get("unit", ""),
                    item.get("rate", ""),
                    item.get("quantity", ""),
                    item.get("totalAmount", ""),
                )
            )
        )
    return lines


def render_invoice(order: Dict[str, Any], issued: Optional[date] = None) -> str:
    user = order.get("user", {})
    billing = order.get("billing", {})
    contact = (user.get("contact") or [{}])[0].get("contact") or "N/A"
    address = ", ".join(str(part) for part in (user.get("address"), user.get("town"), user.get("state"), user.get("pincode")) if part)

    lines = [
        "INVOICE".center(WIDTH).rstrip(),
        f"Order ID: {order['orderId']}".center(WIDTH).rstrip(),
        f"Date: {(issued or date.today()).strftime('%d/%m/%Y')}".center(WIDTH).rstrip(),
        "",
        "Customer Details",
        f"Name: {user.get('name') or ''}",
        f"Shop Name: {user.get('shopName') or ''}",
        f"Address: {address}",
        f"Contact: {contact}",
        "",
        "Product Details",
        *_table(order.get("productDetails", [])),
        "",
    ]

    if order.get("isFreeProducts") and order.get("freeProducts"):
        lines.extend(["Free Products", *_table(order["freeProducts"]), ""])

    lines.extend(
        [
            "Billing Summary",
            f"Order Weight: {billing.get('orderWeight')} kg",
            f"Order Amount: INR {billing.get('orderAmount')}",
            f"Delivery Charges: INR {billing.get('deliveryCharges')}",
            f"Past Order Due: INR {billing.get('pastOrderDue')}",
            f"Total Amount: INR {billing.get('totalAmount')}",
            f"Payment Method: {billing.get('paymentMethod')}",
            f"Money Given: INR {billing.get('moneyGiven')}",
            f"Final Amount: INR {billing.get('finalAmount')}",
            "",
            "Thank you for your business!".center(WIDTH).rstrip(),
        ]
    )
    return "\n".join(lines) + "\n"
