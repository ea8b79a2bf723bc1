"""
Quantity invariants for stock movements.

Pure functions, no I/O. Every movement that reaches the ledger has passed
``check_quantities``:

- IN:         new == previous + quantity
- OUT:        previous >= quantity and new == previous - quantity
- ADJUSTMENT: new == quantity (an absolute target, not a delta)

quantity > 0, previous >= 0 and new >= 0 hold for every type, and none of
the three may exceed MAX_QUANTITY.
"""
from typing import Any, Optional

from stockledger.exceptions import InvariantViolation
from stockledger.enums import MovementType

# Upper bound of the Integer columns the quantities are stored in
MAX_QUANTITY = 2**31 - 1


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_quantities(
    movement_type: MovementType,
    quantity: int,
    previous_quantity: int,
    new_quantity: int,
) -> Optional[InvariantViolation]:
    """
    Return the first invariant the quantities break, or None when they are
    consistent with the movement type.
    """
    if not _is_int(quantity) or quantity <= 0:
        return InvariantViolation("quantity > 0", expected="positive integer", actual=quantity)
    if not _is_int(previous_quantity) or previous_quantity < 0:
        return InvariantViolation(
            "previous_quantity >= 0", expected="non-negative integer", actual=previous_quantity
        )
    for name, value in (
        ("quantity", quantity),
        ("previous_quantity", previous_quantity),
        ("new_quantity", new_quantity),
    ):
        if _is_int(value) and value > MAX_QUANTITY:
            return InvariantViolation(f"{name} <= {MAX_QUANTITY}", expected=MAX_QUANTITY, actual=value)

    try:
        movement_type = MovementType(movement_type)
    except ValueError:
        return InvariantViolation(
            "movement_type in (IN, OUT, ADJUSTMENT)",
            expected=[t.value for t in MovementType],
            actual=movement_type,
        )

    # Insufficient stock is reported as such, not as a negative new_quantity
    if movement_type == MovementType.OUT and previous_quantity < quantity:
        return InvariantViolation(
            "previous_quantity >= quantity",
            expected=quantity,
            actual=previous_quantity,
            message=(
                f"Insufficient stock: cannot remove {quantity} units "
                f"when only {previous_quantity} are on hand"
            ),
        )

    if not _is_int(new_quantity) or new_quantity < 0:
        return InvariantViolation(
            "new_quantity >= 0", expected="non-negative integer", actual=new_quantity
        )

    if movement_type == MovementType.IN:
        expected = previous_quantity + quantity
        if new_quantity != expected:
            return InvariantViolation(
                "new_quantity == previous_quantity + quantity", expected=expected, actual=new_quantity
            )

    elif movement_type == MovementType.OUT:
        expected = previous_quantity - quantity
        if new_quantity != expected:
            return InvariantViolation(
                "new_quantity == previous_quantity - quantity", expected=expected, actual=new_quantity
            )

    elif movement_type == MovementType.ADJUSTMENT:
        if new_quantity != quantity:
            return InvariantViolation("new_quantity == quantity", expected=quantity, actual=new_quantity)

    return None


def validate_quantities(
    movement_type: MovementType,
    quantity: int,
    previous_quantity: int,
    new_quantity: int,
) -> None:
    """Raise the InvariantViolation that ``check_quantities`` would return."""
    violation = check_quantities(movement_type, quantity, previous_quantity, new_quantity)
    if violation is not None:
        raise violation


def resulting_quantity(movement_type: MovementType, current_quantity: int, quantity: int) -> int:
    """The on-hand quantity a movement of this type produces."""
    movement_type = MovementType(movement_type)
    if movement_type == MovementType.IN:
        return current_quantity + quantity
    if movement_type == MovementType.OUT:
        return current_quantity - quantity
    return quantity
