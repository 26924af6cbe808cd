"""
Domain error taxonomy.

Every error the services raise derives from WarehouseError and carries a
stable ``code`` plus structured ``details`` so callers can branch on it
(e.g. show which SKUs are short) instead of parsing messages.
"""
from dataclasses import dataclass, asdict
from typing import Any, Optional


class WarehouseError(Exception):
    code = "warehouse_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


# ------------------ NotFound ------------------
class NotFound(WarehouseError):
    code = "not_found"


class OrderNotFound(NotFound):
    code = "order_not_found"

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found", {"order_id": order_id})


class ProductNotFound(NotFound):
    code = "product_not_found"

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", {"product_id": product_id})


class ShipmentNotFound(NotFound):
    code = "shipment_not_found"

    def __init__(self, shipment_id: int):
        super().__init__(f"Shipment {shipment_id} not found", {"shipment_id": shipment_id})


class LabelNotFound(NotFound):
    code = "label_not_found"

    def __init__(self, shipment_id: int):
        super().__init__(
            f"No label data available for shipment {shipment_id}",
            {"shipment_id": shipment_id},
        )


# ------------------ InvalidState ------------------
class InvalidState(WarehouseError):
    code = "invalid_state"


class InvalidTransition(InvalidState):
    code = "invalid_transition"

    def __init__(self, order_id: Optional[int], current: str, event: str):
        super().__init__(
            f"Cannot {event} an order in status {current}",
            {"order_id": order_id, "status": current, "event": event},
        )
        self.current = current
        self.event = event


class OrderAlreadyShipped(InvalidState):
    code = "already_shipped"

    def __init__(self, order_id: int, orphaned_label: Optional[dict] = None):
        details: dict[str, Any] = {"order_id": order_id}
        if orphaned_label:
            details["orphaned_label"] = orphaned_label
        super().__init__(f"Order {order_id} already shipped", details)
        self.orphaned_label = orphaned_label


class OrderCancelled(InvalidState):
    code = "cancelled"

    def __init__(self, order_id: int, orphaned_label: Optional[dict] = None):
        details: dict[str, Any] = {"order_id": order_id}
        if orphaned_label:
            details["orphaned_label"] = orphaned_label
        super().__init__(f"Cannot ship cancelled order {order_id}", details)
        self.orphaned_label = orphaned_label


# ------------------ Stock ------------------
@dataclass
class StockIssue:
    sku: str
    name: str
    required: int
    available: Optional[int]  # None when the SKU is not in the system

    def describe(self) -> str:
        if self.available is None:
            return f"{self.name} ({self.sku}): not in system"
        return f"{self.name} ({self.sku}): need {self.required}, only {self.available} in stock"


class InsufficientStock(WarehouseError):
    code = "insufficient_stock"

    def __init__(self, issues: list[StockIssue]):
        super().__init__(
            "Stock issues: " + "; ".join(i.describe() for i in issues),
            {"items": [asdict(i) for i in issues]},
        )
        self.issues = issues


# ------------------ Carriers ------------------
class CarrierError(WarehouseError):
    code = "carrier_error"

    def __init__(self, carrier: str, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(
            f"{carrier} error: {message}",
            {"carrier": carrier, "status": status, "body": body},
        )
        self.carrier = carrier
        self.status = status
        self.body = body


class CarrierNotConfigured(WarehouseError):
    code = "carrier_not_configured"

    def __init__(self, carrier: str):
        super().__init__(f"{carrier} is not configured", {"carrier": carrier})
        self.carrier = carrier


class NoRatesAvailable(WarehouseError):
    code = "no_rates_available"

    def __init__(self, errors: list[str]):
        super().__init__("Unable to get shipping rates", {"errors": errors})
        self.errors = errors


# ------------------ Fulfillment ------------------
class FulfillmentPersistenceError(WarehouseError):
    """The label was bought but the local transaction failed. Needs manual reconciliation."""
    code = "fulfillment_persistence_error"

    def __init__(self, order_id: int, orphaned_label: dict, reason: str):
        super().__init__(
            f"Label purchased but fulfillment of order {order_id} could not be recorded: {reason}",
            {"order_id": order_id, "orphaned_label": orphaned_label, "reason": reason},
        )
        self.orphaned_label = orphaned_label


# ------------------ Shopify ------------------
class UpstreamError(WarehouseError):
    code = "upstream_error"


class UpstreamNotifyError(UpstreamError):
    code = "upstream_notify_error"


class ShopifyNotConfigured(WarehouseError):
    code = "shopify_not_configured"

    def __init__(self):
        super().__init__("Shopify store domain or access token not set")


class ValidationFailed(WarehouseError):
    code = "validation_failed"


class Unauthorized(WarehouseError):
    code = "unauthorized"
