"""
Input schemas for the tracked entities.

Product quantity is set once at creation; afterwards only the movement
ledger changes it, so ProductUpdate has no quantity field.
"""
from decimal import Decimal
from typing import ClassVar, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from stockledger.enums import StockStatus
from stockledger.invariants import MAX_QUANTITY
from stockledger.utils.validation import MAX_ID


class EntityInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


class EntityUpdate(EntityInput):
    """
    Partial update. Omitted fields stay as they are; fields backed by NOT NULL
    columns may be omitted but never set to None.
    """
    not_null: ClassVar[Tuple[str, ...]] = ()

    @field_validator("*")
    @classmethod
    def reject_null(cls, value, info: ValidationInfo):
        if value is None and info.field_name in cls.not_null:
            raise ValueError("cannot be null")
        return value


# Product
class ProductCreate(EntityInput):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    sku: str = Field(..., min_length=1, max_length=50)
    price: Decimal = Field(Decimal("0"), ge=0)
    quantity: int = Field(0, ge=0, le=MAX_QUANTITY)
    critical_stock: int = Field(0, ge=0, le=MAX_QUANTITY)
    category_id: Optional[int] = Field(None, gt=0, le=MAX_ID)
    location_id: Optional[int] = Field(None, gt=0, le=MAX_ID)
    supplier_id: Optional[int] = Field(None, gt=0, le=MAX_ID)
    is_active: bool = True


class ProductUpdate(EntityUpdate):
    not_null: ClassVar[Tuple[str, ...]] = ("name", "price", "critical_stock", "is_active")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    critical_stock: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    category_id: Optional[int] = Field(None, gt=0, le=MAX_ID)
    location_id: Optional[int] = Field(None, gt=0, le=MAX_ID)
    supplier_id: Optional[int] = Field(None, gt=0, le=MAX_ID)
    is_active: Optional[bool] = None


# Category / Location share a shape
class CategoryCreate(EntityInput):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: bool = True


class CategoryUpdate(EntityUpdate):
    not_null: ClassVar[Tuple[str, ...]] = ("name", "is_active")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class LocationCreate(CategoryCreate):
    pass


class LocationUpdate(CategoryUpdate):
    pass


# Supplier
class SupplierCreate(EntityInput):
    name: str = Field(..., min_length=1, max_length=100)
    contact_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = None
    is_active: bool = True


class SupplierUpdate(EntityUpdate):
    not_null: ClassVar[Tuple[str, ...]] = ("name", "is_active")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    contact_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = None
    is_active: Optional[bool] = None


# User (password_hash comes from the external hashing service)
class UserCreate(EntityInput):
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., min_length=3, max_length=255)
    password_hash: str = Field(..., min_length=1)
    full_name: Optional[str] = Field(None, max_length=100)
    role: str = Field("USER", max_length=20)
    is_active: bool = True


class UserUpdate(EntityUpdate):
    not_null: ClassVar[Tuple[str, ...]] = ("email", "password_hash", "role", "is_active")

    email: Optional[str] = Field(None, min_length=3, max_length=255)
    password_hash: Optional[str] = Field(None, min_length=1)
    full_name: Optional[str] = Field(None, max_length=100)
    role: Optional[str] = Field(None, max_length=20)
    is_active: Optional[bool] = None


# Stock Status
class StockAlert(BaseModel):
    product_id: int
    name: str
    sku: str
    quantity: int
    critical_stock: int
    stock_status: StockStatus
    message: str
