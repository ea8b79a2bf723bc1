"""
Movement ledger:
- append-only: movements are inserted, never updated or deleted
- every movement passes the quantity invariants before any storage call
- the product's quantity, the movement and their audit records are written
  in one transaction
- concurrent writers are serialized by a compare-and-set on products.quantity
"""
import logging
from typing import Any, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from stockledger.clock import Clock
from stockledger.crud.audit import AuditQueryService, AuditRecorder
from stockledger.database import SQLGateway
from stockledger.enums import MovementType
from stockledger.exceptions import ConcurrencyConflict, InvariantViolation, NotFound, ValidationError
from stockledger.invariants import validate_quantities
from stockledger.models import Product, ProductMovement
from stockledger.schemas.audit import AuditContext, AuditLogResponse, MovementSnapshot, ProductSnapshot
from stockledger.schemas.movements import (
    MovementCreate, MovementResponse, MovementStats, ProductMovementStats,
)
from stockledger.schemas.pagination import Page, check_limit, check_paging
from stockledger.utils.validation import (
    from_pydantic_error, require_date_range, require_positive_id,
)

logger = logging.getLogger(__name__)


def _coerce_movement_type(movement_type: Any) -> MovementType:
    try:
        return MovementType(movement_type)
    except ValueError:
        raise ValidationError(
            "movement_type", f"must be one of IN, OUT, ADJUSTMENT, got {movement_type!r}"
        )


class MovementLedger:
    TABLE_NAME = "product_movements"

    def __init__(self, gateway: SQLGateway, clock: Clock, recorder: AuditRecorder,
                 audit_queries: Optional[AuditQueryService] = None):
        self.gateway = gateway
        self.clock = clock
        self.recorder = recorder
        self.audit_queries = audit_queries or AuditQueryService(gateway)

    # Writes

    def _coerce(self, candidate: Union[MovementCreate, Mapping[str, Any]]) -> MovementCreate:
        if isinstance(candidate, MovementCreate):
            return candidate
        if not isinstance(candidate, Mapping):
            raise ValidationError("candidate", f"expected a movement, got {type(candidate).__name__}")
        try:
            return MovementCreate.model_validate(dict(candidate))
        except PydanticValidationError as e:
            raise from_pydantic_error(e) from e

    def record(self, candidate: Union[MovementCreate, Mapping[str, Any]],
               context: Optional[AuditContext] = None,
               timeout: Optional[float] = None) -> MovementResponse:
        """
        Validate and append a movement, moving the product's quantity from
        previous_quantity to new_quantity in the same transaction.

        Raises InvariantViolation or ValidationError before touching storage,
        NotFound for an unknown product, ConcurrencyConflict when the stored
        quantity is no longer previous_quantity, StorageFailure/StorageTimeout
        when the store fails. Nothing is written in any of those cases.
        """
        try:
            candidate = self._coerce(candidate)
            validate_quantities(
                candidate.movement_type, candidate.quantity,
                candidate.previous_quantity, candidate.new_quantity,
            )
        except InvariantViolation as violation:
            logger.warning(f"Movement rejected: {violation.message}")
            raise

        context = context or AuditContext(user_id=candidate.user_id)

        def _write(session: Session):
            product = session.get(Product, candidate.product_id)
            if product is None:
                raise NotFound("Product", candidate.product_id)

            now = self.clock.now()
            # Compare-and-set: only succeeds if nobody moved the stock since it was read
            result = session.execute(
                update(Product)
                .where(
                    Product.id == candidate.product_id,
                    Product.quantity == candidate.previous_quantity,
                )
                .values(quantity=candidate.new_quantity, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyConflict(candidate.product_id, candidate.previous_quantity)

            movement = ProductMovement(
                product_id=candidate.product_id,
                movement_type=candidate.movement_type.value,
                quantity=candidate.quantity,
                previous_quantity=candidate.previous_quantity,
                new_quantity=candidate.new_quantity,
                reason=candidate.reason,
                user_id=candidate.user_id,
                created_at=now,
            )
            session.add(movement)
            session.flush()
            stored = MovementResponse.model_validate(movement)

            self.recorder.record_create(
                self.TABLE_NAME, stored.id, MovementSnapshot(**stored.model_dump()), context
            )
            self.recorder.record_update(
                "products",
                candidate.product_id,
                ProductSnapshot(quantity=candidate.previous_quantity),
                ProductSnapshot(quantity=candidate.new_quantity),
                context,
            )
            return stored, product.critical_stock

        try:
            stored, critical_stock = self.gateway.execute_in_transaction(_write, timeout=timeout)
        except ConcurrencyConflict as e:
            logger.warning(f"Movement rejected: {e.message}")
            raise

        logger.info(
            f"Movement {stored.id} recorded: {stored.movement_type.value} {stored.quantity} "
            f"on product {stored.product_id} ({stored.previous_quantity} -> {stored.new_quantity}) "
            f"by user {stored.user_id}"
        )
        if stored.new_quantity <= critical_stock:
            logger.warning(
                f"Product {stored.product_id} at or below critical stock: "
                f"{stored.new_quantity} (threshold: {critical_stock})"
            )
        return stored

    # Reads

    def _list(self, *criteria, limit: Optional[int] = None,
              offset: Optional[int] = None) -> List[MovementResponse]:
        stmt = (
            select(ProductMovement)
            .where(*criteria)
            .order_by(ProductMovement.created_at.desc(), ProductMovement.id.desc())
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        return self.gateway.execute_in_transaction(
            lambda session: [
                MovementResponse.model_validate(row) for row in session.execute(stmt).scalars()
            ]
        )

    def _page(self, criteria: list, page: int, page_size: int) -> Page[MovementResponse]:
        offset, limit = check_paging(page, page_size)
        total = self.gateway.scalar(select(func.count(ProductMovement.id)).where(*criteria))
        items = self._list(*criteria, limit=limit, offset=offset)
        return Page[MovementResponse].build(items, total, page, page_size)

    def get_by_id(self, id: int) -> Optional[MovementResponse]:
        require_positive_id("id", id)
        movement = self.gateway.get(ProductMovement, id)
        return MovementResponse.model_validate(movement) if movement is not None else None

    def list_all(self, page: int = 1, page_size: int = 10) -> Page[MovementResponse]:
        return self._page([], page, page_size)

    def list_by_product(self, product_id: int, page: int = 1,
                        page_size: int = 10) -> Page[MovementResponse]:
        require_positive_id("product_id", product_id)
        return self._page([ProductMovement.product_id == product_id], page, page_size)

    def list_by_user(self, user_id: int, page: int = 1, page_size: int = 10) -> Page[MovementResponse]:
        require_positive_id("user_id", user_id)
        return self._page([ProductMovement.user_id == user_id], page, page_size)

    def list_by_type(self, movement_type: MovementType) -> List[MovementResponse]:
        movement_type = _coerce_movement_type(movement_type)
        return self._list(ProductMovement.movement_type == movement_type.value)

    def list_by_product_and_type(self, product_id: int,
                                 movement_type: MovementType) -> List[MovementResponse]:
        require_positive_id("product_id", product_id)
        movement_type = _coerce_movement_type(movement_type)
        return self._list(
            ProductMovement.product_id == product_id,
            ProductMovement.movement_type == movement_type.value,
        )

    def list_recent(self, limit: int = 10) -> List[MovementResponse]:
        return self._list(limit=check_limit(limit))

    def list_by_date_range(self, start, end) -> List[MovementResponse]:
        start, end = require_date_range(start, end)
        return self._list(ProductMovement.created_at >= start, ProductMovement.created_at <= end)

    def audit_trail(self, movement_id: int) -> List[AuditLogResponse]:
        return self.audit_queries.find_by_record(self.TABLE_NAME, movement_id)

    # Statistics, computed from the stored rows on every call

    @staticmethod
    def _count_of(movement_type: MovementType):
        return func.coalesce(
            func.sum(case((ProductMovement.movement_type == movement_type.value, 1), else_=0)), 0
        )

    @staticmethod
    def _quantity_of(movement_type: MovementType):
        return func.coalesce(
            func.sum(
                case((ProductMovement.movement_type == movement_type.value, ProductMovement.quantity), else_=0)
            ),
            0,
        )

    def stats_for_product(self, product_id: int) -> ProductMovementStats:
        require_positive_id("product_id", product_id)
        stmt = select(
            func.count(ProductMovement.id),
            self._count_of(MovementType.IN),
            self._count_of(MovementType.OUT),
            self._count_of(MovementType.ADJUSTMENT),
            self._quantity_of(MovementType.IN),
            self._quantity_of(MovementType.OUT),
        ).where(ProductMovement.product_id == product_id)
        total, ins, outs, adjustments, quantity_in, quantity_out = self.gateway.fetch_one(stmt)
        return ProductMovementStats(
            total_movements=total,
            in_count=ins,
            out_count=outs,
            adjustment_count=adjustments,
            total_quantity_in=quantity_in,
            total_quantity_out=quantity_out,
        )

    def _stats(self, *criteria) -> MovementStats:
        stmt = select(
            func.count(ProductMovement.id),
            self._count_of(MovementType.IN),
            self._count_of(MovementType.OUT),
            self._count_of(MovementType.ADJUSTMENT),
            func.coalesce(func.sum(ProductMovement.quantity), 0),
        ).where(*criteria)
        total, ins, outs, adjustments, moved = self.gateway.fetch_one(stmt)
        return MovementStats(
            total_movements=total,
            in_count=ins,
            out_count=outs,
            adjustment_count=adjustments,
            total_quantity_moved=moved,
        )

    def stats_overall(self) -> MovementStats:
        return self._stats()

    def stats_for_user(self, user_id: int) -> MovementStats:
        require_positive_id("user_id", user_id)
        return self._stats(ProductMovement.user_id == user_id)
