"""
Tests for the audited entity repositories.

These tests prove:
- create, update and delete each leave exactly one audit entry
- secrets and protected columns stay out of reach
"""
from decimal import Decimal

import pytest

from stockledger.enums import AuditAction
from stockledger.exceptions import ConstraintViolation, NotFound, StorageFailure, ValidationError
from stockledger.invariants import MAX_QUANTITY
from stockledger.schemas.inventory import ProductCreate


@pytest.fixture
def repositories(services):
    return services.repositories


class TestCreate:
    def test_create_product(self, repositories, audit_queries, context, clock):
        product = repositories.products.create(
            ProductCreate(name="Layer Mash", sku="LM-50", price=Decimal("42.50"), quantity=12),
            context,
        )

        assert product.id > 0
        assert product.quantity == 12
        assert product.created_at == clock.now()

        trail = audit_queries.find_by_record("products", product.id)
        assert len(trail) == 1
        assert trail[0].action == AuditAction.CREATE
        assert trail[0].new_values["sku"] == "LM-50"
        assert trail[0].new_values["price"] == "42.50"
        assert trail[0].user_id == context.user_id

    def test_create_from_mapping(self, repositories):
        location = repositories.locations.create({"name": "Warehouse A"})
        assert location.is_active is True

    def test_create_rejects_unknown_fields(self, repositories, audit_queries):
        with pytest.raises(ValidationError):
            repositories.categories.create({"name": "Feeds", "colour": "red"})
        assert audit_queries.find_all() == []

    def test_create_rejects_invalid_values(self, repositories):
        with pytest.raises(ValidationError) as exc_info:
            repositories.products.create({"name": "Bad", "sku": "B-1", "quantity": -1})
        assert exc_info.value.field == "quantity"

    def test_duplicate_sku_is_a_constraint_violation(self, repositories, audit_queries):
        """A duplicate key fails the same way every time, so it is not retryable."""
        repositories.products.create({"name": "One", "sku": "DUP"})
        with pytest.raises(ConstraintViolation) as exc_info:
            repositories.products.create({"name": "Two", "sku": "DUP"})

        assert not exc_info.value.retryable
        assert exc_info.value.http_status == 409
        assert not isinstance(exc_info.value, StorageFailure)
        assert len(audit_queries.find_by_table("products")) == 1

    def test_create_rejects_quantity_beyond_column_range(self, repositories, audit_queries):
        with pytest.raises(ValidationError) as exc_info:
            repositories.products.create({"name": "Big", "sku": "BIG", "quantity": MAX_QUANTITY + 1})
        assert exc_info.value.field == "quantity"
        assert audit_queries.find_all() == []

    def test_password_hash_never_reaches_the_trail(self, repositories, audit_queries):
        user = repositories.users.create({
            "username": "cashier",
            "email": "cashier@example.com",
            "password_hash": "$2b$12$abcdefghijk",
        })
        entry = audit_queries.find_by_record("users", user.id)[0]
        assert "password_hash" not in entry.new_values
        assert entry.new_values["username"] == "cashier"


class TestUpdate:
    def test_update_records_before_and_after(self, repositories, audit_queries, clock):
        supplier = repositories.suppliers.create({"name": "Acme", "phone": "555"})
        clock.tick()
        updated = repositories.suppliers.update(supplier.id, {"phone": "556"})

        assert updated.phone == "556"
        assert updated.updated_at == clock.now()

        entry = audit_queries.find_by_table_and_action("suppliers", AuditAction.UPDATE)[0]
        assert entry.old_values["phone"] == "555"
        assert entry.new_values["phone"] == "556"
        assert entry.changed_fields == {"phone", "updated_at"}

    def test_quantity_cannot_be_updated(self, repositories, audit_queries):
        product = repositories.products.create({"name": "Feed", "sku": "F-1", "quantity": 5})
        with pytest.raises(ValidationError) as exc_info:
            repositories.products.update(product.id, {"quantity": 50})

        assert exc_info.value.field == "quantity"
        assert repositories.products.get(product.id).quantity == 5
        assert len(audit_queries.find_by_record("products", product.id)) == 1

    @pytest.mark.parametrize("repository,field", [
        ("categories", "name"),
        ("categories", "is_active"),
        ("suppliers", "name"),
    ])
    def test_update_rejects_null_for_required_columns(self, repositories, audit_queries,
                                                      repository, field):
        crud = getattr(repositories, repository)
        record = crud.create({"name": "Keep"})

        with pytest.raises(ValidationError) as exc_info:
            crud.update(record.id, {field: None})

        assert exc_info.value.field == field
        assert crud.get(record.id).name == "Keep"
        assert len(audit_queries.find_by_record(crud.table_name, record.id)) == 1

    def test_update_rejects_null_product_price(self, repositories):
        product = repositories.products.create({"name": "Feed", "sku": "F-2"})
        with pytest.raises(ValidationError) as exc_info:
            repositories.products.update(product.id, {"price": None})
        assert exc_info.value.field == "price"

    def test_update_accepts_null_for_nullable_columns(self, repositories):
        supplier = repositories.suppliers.create({"name": "Acme", "phone": "555"})
        assert repositories.suppliers.update(supplier.id, {"phone": None}).phone is None

    def test_update_missing_record(self, repositories):
        with pytest.raises(NotFound):
            repositories.categories.update(404, {"name": "Ghost"})


class TestRemoveAndRead:
    def test_remove_keeps_last_state_in_trail(self, repositories, audit_queries):
        category = repositories.categories.create({"name": "Seasonal"})
        repositories.categories.remove(category.id)

        assert repositories.categories.get(category.id) is None
        entry = audit_queries.find_by_table_and_action("categories", AuditAction.DELETE)[0]
        assert entry.old_values["name"] == "Seasonal"
        assert entry.new_values is None

    def test_remove_missing_record(self, repositories):
        with pytest.raises(NotFound):
            repositories.locations.remove(404)

    def test_get_multi_pages_by_id(self, repositories):
        for name in ("A", "B", "C"):
            repositories.categories.create({"name": name})

        page = repositories.categories.get_multi(page=2, page_size=2)
        assert page.total == 3
        assert [category.name for category in page.items] == ["C"]

    def test_every_repository_is_wired(self, repositories):
        tables = {repository.table_name for repository in repositories.all()}
        assert tables == {"products", "categories", "locations", "suppliers", "users"}
