"""
Audit schemas.

Snapshots of tracked entities are validated per entity kind before they are
stored, so a misspelled field or a leaked secret is rejected instead of
silently landing in the trail. Tables without a registered schema accept any
JSON-serializable mapping.
"""
from datetime import datetime
from decimal import Decimal
import json
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Set, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from stockledger.enums import AuditAction, MovementType
from stockledger.exceptions import ValidationError
from stockledger.utils.validation import MAX_ID


class AuditContext(BaseModel):
    """
    Who caused a mutation and from where. Built by the request layer;
    the core never infers it. An empty context is a system action.
    """
    model_config = ConfigDict(frozen=True)

    user_id: Optional[int] = Field(None, gt=0, le=MAX_ID)
    ip_address: Optional[str] = Field(None, max_length=45)
    user_agent: Optional[str] = None
    is_admin: bool = False
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def system(cls) -> "AuditContext":
        return cls()


# Entity snapshots
# Every field is optional so partial snapshots keep exactly the keys given.

class SnapshotBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: Optional[int] = None
    created_at: Optional[datetime] = None


class ProductSnapshot(SnapshotBase):
    kind: Literal["products"] = "products"
    name: Optional[str] = None
    description: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[Decimal] = None
    quantity: Optional[int] = None
    critical_stock: Optional[int] = None
    category_id: Optional[int] = None
    location_id: Optional[int] = None
    supplier_id: Optional[int] = None
    is_active: Optional[bool] = None
    updated_at: Optional[datetime] = None


class CategorySnapshot(SnapshotBase):
    kind: Literal["categories"] = "categories"
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    updated_at: Optional[datetime] = None


class LocationSnapshot(SnapshotBase):
    kind: Literal["locations"] = "locations"
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    updated_at: Optional[datetime] = None


class SupplierSnapshot(SnapshotBase):
    kind: Literal["suppliers"] = "suppliers"
    name: Optional[str] = None
    contact_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    is_active: Optional[bool] = None
    updated_at: Optional[datetime] = None


class UserSnapshot(SnapshotBase):
    # No password_hash field: extra="forbid" keeps it out of the trail
    kind: Literal["users"] = "users"
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    updated_at: Optional[datetime] = None


class MovementSnapshot(SnapshotBase):
    kind: Literal["product_movements"] = "product_movements"
    product_id: Optional[int] = None
    movement_type: Optional[MovementType] = None
    quantity: Optional[int] = None
    previous_quantity: Optional[int] = None
    new_quantity: Optional[int] = None
    reason: Optional[str] = None
    user_id: Optional[int] = None


class RetentionRunSnapshot(SnapshotBase):
    kind: Literal["audit_retention_runs"] = "audit_retention_runs"
    cutoff: Optional[datetime] = None
    performed_by: Optional[int] = None
    records_affected: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


EntitySnapshot = Annotated[
    Union[
        ProductSnapshot,
        CategorySnapshot,
        LocationSnapshot,
        SupplierSnapshot,
        UserSnapshot,
        MovementSnapshot,
        RetentionRunSnapshot,
    ],
    Field(discriminator="kind"),
]

SNAPSHOT_MODELS = {
    "products": ProductSnapshot,
    "categories": CategorySnapshot,
    "locations": LocationSnapshot,
    "suppliers": SupplierSnapshot,
    "users": UserSnapshot,
    "product_movements": MovementSnapshot,
    "audit_retention_runs": RetentionRunSnapshot,
}


def copy_json(values: Optional[Mapping[str, Any]], field: str = "values") -> Optional[Dict[str, Any]]:
    """Deep, JSON-ready copy of a free-form mapping."""
    if values is None:
        return None
    if not isinstance(values, Mapping):
        raise ValidationError(field, f"expected a mapping, got {type(values).__name__}")
    try:
        return to_jsonable_python(dict(values))
    except PydanticSerializationError as e:
        raise ValidationError(field, f"not serializable: {e}") from e


def capture_snapshot(table_name: str, values: Union[SnapshotBase, Mapping[str, Any], None],
                     field: str = "values") -> Optional[Dict[str, Any]]:
    """
    Return an independent, JSON-ready copy of ``values``.

    Registered tables go through their snapshot schema; the ``kind`` tag is
    dropped from the stored copy.
    """
    if values is None:
        return None

    schema = SNAPSHOT_MODELS.get(table_name)
    if isinstance(values, SnapshotBase):
        if schema is not None and not isinstance(values, schema):
            raise ValidationError(
                field, f"{type(values).__name__} cannot describe a row of {table_name}"
            )
        snapshot = values
    elif schema is not None:
        try:
            snapshot = schema.model_validate(dict(values))
        except PydanticValidationError as e:
            raise ValidationError(field, f"invalid {table_name} snapshot: {e}") from e
    else:
        return copy_json(values, field)

    return snapshot.model_dump(mode="json", exclude_unset=True, exclude={"kind"})


_snapshot_adapter = TypeAdapter(EntitySnapshot)


def load_snapshot(table_name: str, stored: Optional[Mapping[str, Any]]) -> Optional[SnapshotBase]:
    """Typed view of a stored snapshot; None for unregistered tables."""
    if stored is None or table_name not in SNAPSHOT_MODELS:
        return None
    return _snapshot_adapter.validate_python({**stored, "kind": table_name})


def _canonical(value: Any) -> str:
    return json.dumps(to_jsonable_python(value), sort_keys=True)


def changed_fields(old_values: Optional[Mapping[str, Any]],
                   new_values: Optional[Mapping[str, Any]]) -> Set[str]:
    """
    Keys whose serialized value differs between the two snapshots. A key
    present on one side only counts as changed (from/to absent).
    """
    old_values = old_values or {}
    new_values = new_values or {}
    changed = set()
    for key in set(old_values) | set(new_values):
        if key not in old_values or key not in new_values:
            changed.add(key)
        elif _canonical(old_values[key]) != _canonical(new_values[key]):
            changed.add(key)
    return changed


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    table_name: str
    record_id: int
    action: AuditAction
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    user_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Optional[Any] = Field(None, validation_alias=AliasChoices("metadata_", "metadata"))
    created_at: datetime
    reviewed: bool = False

    @property
    def changed_fields(self) -> Set[str]:
        if self.action != AuditAction.UPDATE or self.old_values is None or self.new_values is None:
            return set()
        return changed_fields(self.old_values, self.new_values)

    def old_snapshot(self) -> Optional[SnapshotBase]:
        return load_snapshot(self.table_name, self.old_values)

    def new_snapshot(self) -> Optional[SnapshotBase]:
        return load_snapshot(self.table_name, self.new_values)

    @property
    def action_description(self) -> str:
        return {
            AuditAction.CREATE: "Creation",
            AuditAction.UPDATE: "Update",
            AuditAction.DELETE: "Deletion",
        }[self.action]

    @property
    def change_summary(self) -> str:
        if self.action == AuditAction.CREATE:
            return f"New record created in {self.table_name}"
        if self.action == AuditAction.UPDATE:
            fields = ", ".join(sorted(self.changed_fields))
            return f"Record updated in {self.table_name}. Changed fields: {fields}"
        return f"Record deleted from {self.table_name}"

    @property
    def has_actor_info(self) -> bool:
        return bool(self.user_id or self.ip_address or self.user_agent)


class AuditStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_logs: int = 0
    create_logs: int = 0
    update_logs: int = 0
    delete_logs: int = 0
    unique_actors: int = 0
    unique_tables: int = 0
