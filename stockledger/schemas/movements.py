"""
Movement schemas:
- candidates are checked against the quantity invariants at construction
- stored movements are frozen read models
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stockledger.enums import MovementType
from stockledger.invariants import MAX_QUANTITY, validate_quantities
from stockledger.utils.validation import MAX_ID


class MovementCreate(BaseModel):
    """
    A proposed movement. Quantity consistency is enforced here and again by
    the ledger, so an inconsistent candidate cannot be persisted either way.
    """
    model_config = ConfigDict(frozen=True)

    product_id: int = Field(..., gt=0, le=MAX_ID, strict=True)
    movement_type: MovementType
    quantity: int = Field(..., le=MAX_QUANTITY, strict=True)
    previous_quantity: int = Field(..., le=MAX_QUANTITY, strict=True)
    new_quantity: int = Field(..., le=MAX_QUANTITY, strict=True)
    reason: Optional[str] = Field(None, max_length=200)
    user_id: int = Field(..., gt=0, le=MAX_ID, strict=True)

    @model_validator(mode="after")
    def check_quantity_invariants(self) -> "MovementCreate":
        # InvariantViolation is not a ValueError, so pydantic lets it through unwrapped
        validate_quantities(self.movement_type, self.quantity, self.previous_quantity, self.new_quantity)
        return self


class MovementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    product_id: int
    movement_type: MovementType
    quantity: int
    previous_quantity: int
    new_quantity: int
    reason: Optional[str]
    user_id: int
    created_at: datetime

    @property
    def is_in(self) -> bool:
        return self.movement_type == MovementType.IN

    @property
    def is_out(self) -> bool:
        return self.movement_type == MovementType.OUT

    @property
    def is_adjustment(self) -> bool:
        return self.movement_type == MovementType.ADJUSTMENT


class ProductMovementStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_movements: int = 0
    in_count: int = 0
    out_count: int = 0
    adjustment_count: int = 0
    total_quantity_in: int = 0
    total_quantity_out: int = 0


class MovementStats(BaseModel):
    """Ledger-wide or per-user counters."""
    model_config = ConfigDict(frozen=True)

    total_movements: int = 0
    in_count: int = 0
    out_count: int = 0
    adjustment_count: int = 0
    total_quantity_moved: int = 0
