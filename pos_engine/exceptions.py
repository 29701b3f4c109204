"""
Custom exceptions for the sale engine.

Every error is scoped to the single pending operation; none of them leave the
live cart modified.
"""
from typing import Optional


class SaleError(Exception):
    """Base exception for sale-construction operations"""
    pass


class StockError(SaleError):
    """Raised when a requested quantity exceeds available stock"""
    def __init__(self, item_name: str, requested: int, available: int, message: Optional[str] = None):
        self.item_name = item_name
        self.requested = requested
        self.available = available
        if message is None:
            if available <= 0:
                message = f"{item_name} is out of stock"
            else:
                message = f"Not enough stock available for {item_name}: requested {requested}, available {available}"
        self.message = message
        super().__init__(message)


class NotFoundError(SaleError):
    """Raised when a lookup produced no match"""
    def __init__(self, what: str, key: object = None, message: Optional[str] = None):
        self.what = what
        self.key = key
        self.message = message or (f"{what} not found: {key}" if key is not None else f"{what} not found")
        super().__init__(self.message)


class ValidationError(SaleError):
    """Raised when validation fails"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CartEmptyError(ValidationError):
    """Raised when an operation needs a non-empty cart"""
    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class PaymentValidationError(ValidationError):
    """Raised when payment input is rejected"""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InfrastructureError(SaleError):
    """Raised when a lookup or persistence call fails for reasons other than not-found"""
    pass


class OperationInProgressError(SaleError):
    """Raised when a payment, park or resume is already in flight for the session"""
    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Another operation is in progress: {operation}")
