"""
Domain errors for the shop ledger.

Each error maps to one HTTP status in main.py. A duplicate identity on insert is
not an error here: identity.py reports it as a Conflict result and retries.
"""

from typing import List, Optional


class LedgerError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationFailed(LedgerError):
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(f"Validation failed: {field}: {message}")
        self.field = field
        self.reason = message

    def to_dict(self) -> dict:
        return {"error": "Validation failed", "details": [{"field": self.field, "message": self.reason}]}


class ReferenceNotFound(LedgerError):
    status_code = 400

    def __init__(self, kind: str, ref: str):
        super().__init__(f"Invalid {kind} reference: {ref}")
        self.kind = kind
        self.ref = ref


class NotFound(LedgerError):
    status_code = 404

    def __init__(self, kind: str, ref: str):
        super().__init__(f"{kind.capitalize()} not found: {ref}")
        self.kind = kind
        self.ref = ref


class IdentityConflict(LedgerError):
    status_code = 409

    def __init__(self, collection: str, attempts: int):
        super().__init__(f"Could not allocate a unique {collection} ID after {attempts} attempts")
        self.collection = collection
        self.attempts = attempts


class StoreUnavailable(LedgerError):
    status_code = 503

    def __init__(self, reason: str = "Database not available"):
        super().__init__(reason)


class PartialWrite(LedgerError):
    """History fan-out failed after the order document was written."""

    status_code = 500

    def __init__(
        self,
        order_id: str,
        customer_history: Optional[List[str]] = None,
        product_history: Optional[List[str]] = None,
        rolled_back: bool = False,
    ):
        state = "rolled back" if rolled_back else "left partially written"
        super().__init__(f"History write failed for order {order_id}; order {state}")
        self.order_id = order_id
        self.customer_history = customer_history or []
        self.product_history = product_history or []
        self.rolled_back = rolled_back

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "orderId": self.order_id,
            "rolledBack": self.rolled_back,
            "customerHistory": self.customer_history,
            "productHistory": self.product_history,
        }
