"""
Stock adjustment workflow.

Reads the product's current quantity, derives the resulting quantity for the
requested movement and hands the candidate to the ledger. A concurrent change
between the read and the write surfaces as ConcurrencyConflict; the caller
decides whether to re-read and try again.
"""
import logging
from typing import Optional

from stockledger.crud.movements import MovementLedger
from stockledger.database import SQLGateway
from stockledger.enums import MovementType
from stockledger.exceptions import NotFound, ValidationError
from stockledger.invariants import resulting_quantity
from stockledger.models import Product
from stockledger.schemas.audit import AuditContext
from stockledger.schemas.movements import MovementResponse
from stockledger.utils.validation import require_positive_id

logger = logging.getLogger(__name__)


class StockService:
    def __init__(self, gateway: SQLGateway, ledger: MovementLedger):
        self.gateway = gateway
        self.ledger = ledger

    def current_quantity(self, product_id: int) -> int:
        require_positive_id("product_id", product_id)
        product = self.gateway.get(Product, product_id)
        if product is None:
            raise NotFound("Product", product_id)
        return product.quantity

    def apply_movement(self, product_id: int, movement_type: MovementType, quantity: int,
                       reason: Optional[str] = None, context: Optional[AuditContext] = None,
                       timeout: Optional[float] = None) -> MovementResponse:
        if context is None or context.user_id is None:
            raise ValidationError("user_id", "an acting user is required to move stock")
        try:
            movement_type = MovementType(movement_type)
        except ValueError:
            raise ValidationError(
                "movement_type", f"must be one of IN, OUT, ADJUSTMENT, got {movement_type!r}"
            )

        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise ValidationError("quantity", f"must be an integer, got {quantity!r}")

        previous = self.current_quantity(product_id)
        logger.debug(f"Applying {movement_type.value} {quantity} to product {product_id} (on hand: {previous})")

        # Invariant checks happen in the candidate and again in the ledger
        candidate = {
            "product_id": product_id,
            "movement_type": movement_type,
            "quantity": quantity,
            "previous_quantity": previous,
            "new_quantity": resulting_quantity(movement_type, previous, quantity),
            "reason": reason,
            "user_id": context.user_id,
        }
        return self.ledger.record(candidate, context=context, timeout=timeout)
