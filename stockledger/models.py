"""
SQLAlchemy 2.x models.

Movements and audit logs are append-only; the only column ever updated after
insert is ``audit_logs.reviewed``. ``products.quantity`` is changed only by the
movement ledger, in the same transaction as the movement insert.
"""
from sqlalchemy import (
    Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, Numeric, String, Text
)
from sqlalchemy.orm import relationship

from stockledger.database import Base, JSONType, UTCDateTime


class User(Base):
    __tablename__ = "users"
    __audit_exclude__ = ("password_hash",)

    id = Column(Integer, primary_key=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100))
    role = Column(String(20), nullable=False, default="USER")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    movements = relationship("ProductMovement", back_populates="user")


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    products = relationship("Product", back_populates="category")


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    products = relationship("Product", back_populates="location")


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    contact_name = Column(String(100))
    email = Column(String(255))
    phone = Column(String(30))
    address = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    products = relationship("Product", back_populates="supplier")


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    sku = Column(String(50), unique=True, nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=0)
    critical_stock = Column(Integer, nullable=False, default=0)
    category_id = Column(Integer, ForeignKey("categories.id"))
    location_id = Column(Integer, ForeignKey("locations.id"))
    supplier_id = Column(Integer, ForeignKey("suppliers.id"))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    category = relationship("Category", back_populates="products")
    location = relationship("Location", back_populates="products")
    supplier = relationship("Supplier", back_populates="products")
    movements = relationship("ProductMovement", back_populates="product")


class ProductMovement(Base):
    __tablename__ = "product_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        CheckConstraint("previous_quantity >= 0", name="ck_movements_previous_non_negative"),
        CheckConstraint("new_quantity >= 0", name="ck_movements_new_non_negative"),
        CheckConstraint(
            "movement_type IN ('IN', 'OUT', 'ADJUSTMENT')", name="ck_movements_type"
        ),
        Index("ix_movements_created", "created_at", "id"),
        Index("ix_movements_product_created", "product_id", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    movement_type = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    reason = Column(String(200))
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(UTCDateTime, nullable=False)

    product = relationship("Product", back_populates="movements")
    user = relationship("User", back_populates="movements")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        CheckConstraint("record_id > 0", name="ck_audit_record_positive"),
        CheckConstraint("action IN ('CREATE', 'UPDATE', 'DELETE')", name="ck_audit_action"),
        Index("ix_audit_table_record", "table_name", "record_id"),
        Index("ix_audit_created", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True)
    table_name = Column(String(100), nullable=False)
    record_id = Column(Integer, nullable=False)
    action = Column(String(10), nullable=False)
    old_values = Column(JSONType)
    new_values = Column(JSONType)
    # No FK: audit entries outlive the users they name
    user_id = Column(Integer, index=True)
    ip_address = Column(String(45), index=True)
    user_agent = Column(Text)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSONType)
    created_at = Column(UTCDateTime, nullable=False)
    reviewed = Column(Boolean, nullable=False, default=False)


class RetentionRun(Base):
    __tablename__ = "audit_retention_runs"

    id = Column(Integer, primary_key=True)
    cutoff = Column(UTCDateTime, nullable=False)
    performed_by = Column(Integer, nullable=False)
    records_affected = Column(Integer, nullable=False, default=0)
    started_at = Column(UTCDateTime, nullable=False)
    completed_at = Column(UTCDateTime)
