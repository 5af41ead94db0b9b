# Overview: Error taxonomy shared by the stock primitive, the workflows and the HTTP layer.

"""
Every error raised by the inventory core derives from InventoryError and
carries the HTTP status it maps to, a stable message and optional details.
Routes let these propagate; the handler registered in
create_app() turns these into {"success": false, "message": ...}.
"""

from __future__ import annotations


class InventoryError(Exception):
    """Base class for errors that surface at the HTTP boundary."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


# -- 400 -----------------------------------------------------------------------

class ValidationFailure(InventoryError):
    """Missing or malformed input."""
    status_code = 400


class InvalidQuantity(ValidationFailure):
    pass


class InvalidLocationPair(ValidationFailure):
    pass


class ReceiveExceedsOrdered(ValidationFailure):
    pass


class InsufficientStock(InventoryError):
    """Raised when an out or transfer would take more than is on hand."""
    status_code = 400

    def __init__(self, available: int, requested: int, product_id: int | None = None, message: str | None = None):
        super().__init__(
            message or f"Insufficient stock. Available: {available}, Required: {requested}",
            details={"available": available, "requested": requested, "productId": product_id},
        )
        self.available = available
        self.requested = requested
        self.product_id = product_id


# -- 401 / 403 -----------------------------------------------------------------

class Unauthorized(InventoryError):
    status_code = 401


class Forbidden(InventoryError):
    status_code = 403


# -- 404 -----------------------------------------------------------------------

class NotFound(InventoryError):
    status_code = 404


class ProductNotFound(NotFound):
    pass


class LocationNotFound(NotFound):
    pass


class CategoryNotFound(NotFound):
    pass


class SupplierNotFound(NotFound):
    pass


class CustomerNotFound(NotFound):
    pass


class PurchaseNotFound(NotFound):
    pass


class SaleNotFound(NotFound):
    pass


class MovementNotFound(NotFound):
    pass


# -- 409 -----------------------------------------------------------------------

class Conflict(InventoryError):
    status_code = 409


class DuplicateValue(Conflict):
    pass


class InvalidTransition(Conflict):
    def __init__(self, current: str, requested: str, message: str | None = None):
        super().__init__(
            message or f"Cannot change status from {current} to {requested}",
            details={"from": current, "to": requested},
        )


class PurchaseFrozen(Conflict):
    pass


class SaleFrozen(Conflict):
    pass


class LocationInUse(Conflict):
    pass


# -- 5xx -----------------------------------------------------------------------

class Internal(InventoryError):
    status_code = 500


class LedgerWriteFailed(Internal):
    pass


class LedgerEntryImmutable(Internal):
    """An attempt to rewrite or delete a stock movement."""


class Timeout(InventoryError):
    """Lock acquisition gave up instead of queuing indefinitely."""
    status_code = 503
