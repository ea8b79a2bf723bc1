"""
Base CRUD operations with SQLAlchemy 2.x patterns.

One generic repository, instantiated per model:
- every write is mirrored by an audit record in the same transaction
- protected columns (products.quantity) cannot be changed through update()
- columns listed in a model's ``__audit_exclude__`` never reach the trail
"""
from dataclasses import dataclass
import logging
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, inspect, select
from sqlalchemy.orm import Session

from stockledger.clock import Clock
from stockledger.crud.audit import AuditRecorder
from stockledger.database import Base, SQLGateway
from stockledger.exceptions import NotFound, ValidationError
from stockledger.models import Category, Location, Product, Supplier, User
from stockledger.schemas import inventory
from stockledger.schemas.audit import AuditContext
from stockledger.schemas.pagination import Page, check_paging
from stockledger.utils.validation import from_pydantic_error, require_positive_id

logger = logging.getLogger(__name__)
ModelType = TypeVar("ModelType", bound=Base)

Payload = Union[BaseModel, Mapping[str, Any]]


class CRUDBase(Generic[ModelType]):
    def __init__(self, model: Type[ModelType], gateway: SQLGateway, clock: Clock,
                 recorder: AuditRecorder, create_schema: Type[BaseModel],
                 update_schema: Type[BaseModel], protected_fields: Iterable[str] = ()):
        self.model = model
        self.gateway = gateway
        self.clock = clock
        self.recorder = recorder
        self.create_schema = create_schema
        self.update_schema = update_schema
        self.protected_fields = frozenset(protected_fields)
        self.table_name = model.__tablename__

    def snapshot(self, obj: ModelType) -> Dict[str, Any]:
        """Column values of ``obj`` as the audit trail sees them."""
        excluded = set(getattr(self.model, "__audit_exclude__", ()))
        return {
            attr.key: getattr(obj, attr.key)
            for attr in inspect(self.model).column_attrs
            if attr.key not in excluded
        }

    def _validate(self, schema: Type[BaseModel], obj_in: Payload,
                  partial: bool = False) -> Dict[str, Any]:
        if isinstance(obj_in, BaseModel):
            obj_in = obj_in.model_dump(exclude_unset=True)
        if not isinstance(obj_in, Mapping):
            raise ValidationError("obj_in", f"expected a mapping, got {type(obj_in).__name__}")
        try:
            return schema.model_validate(dict(obj_in)).model_dump(exclude_unset=partial)
        except PydanticValidationError as e:
            raise from_pydantic_error(e) from e

    def get(self, id: int) -> Optional[ModelType]:
        """Get record by ID using SQLAlchemy 2.x select()"""
        require_positive_id("id", id)
        stmt = select(self.model).where(self.model.id == id)
        return self.gateway.execute_in_transaction(
            lambda session: session.execute(stmt).scalar_one_or_none()
        )

    def get_multi(self, page: int = 1, page_size: int = 10) -> Page:
        """Get one page of records, lowest id first"""
        offset, limit = check_paging(page, page_size)
        total = self.gateway.scalar(select(func.count(self.model.id)))
        items = self.gateway.query(
            select(self.model).order_by(self.model.id).offset(offset).limit(limit)
        )
        return Page.build(items, total, page, page_size)

    def create(self, obj_in: Payload, context: Optional[AuditContext] = None) -> ModelType:
        """Insert a record and its CREATE audit entry"""
        values = self._validate(self.create_schema, obj_in)

        def _create(session: Session) -> ModelType:
            now = self.clock.now()
            obj = self.model(**values, created_at=now, updated_at=now)
            session.add(obj)
            session.flush()
            self.recorder.record_create(self.table_name, obj.id, self.snapshot(obj), context)
            return obj

        obj = self.gateway.execute_in_transaction(_create)
        logger.info(f"{self.model.__name__} {obj.id} created")
        return obj

    def update(self, id: int, obj_in: Payload,
               context: Optional[AuditContext] = None) -> ModelType:
        """Apply a partial update and record the before/after snapshots"""
        require_positive_id("id", id)
        if isinstance(obj_in, Mapping):
            protected = sorted(self.protected_fields.intersection(obj_in))
            if protected:
                raise ValidationError(protected[0], "can only be changed through a stock movement")
        values = self._validate(self.update_schema, obj_in, partial=True)

        def _update(session: Session) -> ModelType:
            obj = session.get(self.model, id)
            if obj is None:
                raise NotFound(self.model.__name__, id)
            old_values = self.snapshot(obj)
            for key, value in values.items():
                setattr(obj, key, value)
            obj.updated_at = self.clock.now()
            session.flush()
            self.recorder.record_update(self.table_name, id, old_values, self.snapshot(obj), context)
            return obj

        obj = self.gateway.execute_in_transaction(_update)
        logger.info(f"{self.model.__name__} {id} updated ({', '.join(sorted(values)) or 'no fields'})")
        return obj

    def remove(self, id: int, context: Optional[AuditContext] = None) -> ModelType:
        """Delete a record; its last state is kept in the DELETE audit entry"""
        require_positive_id("id", id)

        def _remove(session: Session) -> ModelType:
            obj = session.get(self.model, id)
            if obj is None:
                raise NotFound(self.model.__name__, id)
            old_values = self.snapshot(obj)
            session.delete(obj)
            session.flush()
            self.recorder.record_delete(self.table_name, id, old_values, context)
            return obj

        obj = self.gateway.execute_in_transaction(_remove)
        logger.info(f"{self.model.__name__} {id} deleted")
        return obj


@dataclass(frozen=True)
class Repositories:
    products: CRUDBase[Product]
    categories: CRUDBase[Category]
    locations: CRUDBase[Location]
    suppliers: CRUDBase[Supplier]
    users: CRUDBase[User]

    def all(self) -> List[CRUDBase]:
        return [self.products, self.categories, self.locations, self.suppliers, self.users]


def build_repositories(gateway: SQLGateway, clock: Clock, recorder: AuditRecorder) -> Repositories:
    def _crud(model, create_schema, update_schema, protected_fields=()):
        return CRUDBase(model, gateway, clock, recorder, create_schema, update_schema, protected_fields)

    return Repositories(
        products=_crud(Product, inventory.ProductCreate, inventory.ProductUpdate, ("quantity",)),
        categories=_crud(Category, inventory.CategoryCreate, inventory.CategoryUpdate),
        locations=_crud(Location, inventory.LocationCreate, inventory.LocationUpdate),
        suppliers=_crud(Supplier, inventory.SupplierCreate, inventory.SupplierUpdate),
        users=_crud(User, inventory.UserCreate, inventory.UserUpdate),
    )
