"""
Error taxonomy for the ledger and the audit trail.

Each error carries an ``http_status`` hint so the calling layer can map it to
a response without inspecting messages.
"""
from typing import Any, Optional


class StockLedgerError(Exception):
    http_status = 500
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvariantViolation(StockLedgerError):
    """
    A movement's quantities are inconsistent with its type, or it would
    drive stock negative. Never retried automatically.
    """
    http_status = 409

    def __init__(self, equation: str, expected: Any = None, actual: Any = None,
                 message: Optional[str] = None):
        self.equation = equation
        self.expected = expected
        self.actual = actual
        if message is None:
            message = f"Quantity invariant failed: {equation} (expected {expected}, got {actual})"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "equation": self.equation,
            "expected": self.expected,
            "actual": self.actual,
            "message": self.message,
        }


class NotFound(StockLedgerError):
    http_status = 404

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class ValidationError(StockLedgerError):
    """Field-level input problem, raised before any storage call."""
    http_status = 400

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class AuthorizationError(StockLedgerError):
    http_status = 403


class ConstraintViolation(StockLedgerError):
    """
    The store refused a row: duplicate key, missing reference or NOT NULL.
    Retrying the same write fails the same way.
    """
    http_status = 409


class StorageFailure(StockLedgerError):
    """
    The persistence gateway could not complete the operation.

    Safe to retry: the transaction was rolled back, nothing partial was written.
    """
    http_status = 503
    retryable = True


class StorageTimeout(StorageFailure):
    pass


class ConcurrencyConflict(StorageFailure):
    """The persisted quantity changed between the read and the write."""
    http_status = 409

    def __init__(self, product_id: int, expected_quantity: int):
        self.product_id = product_id
        self.expected_quantity = expected_quantity
        super().__init__(
            f"Product {product_id} quantity is no longer {expected_quantity}; "
            f"re-read the current stock and retry"
        )
