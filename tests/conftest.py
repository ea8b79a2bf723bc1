"""Pytest configuration and shared fixtures."""
import pytest

from stockledger.bootstrap import build_services
from stockledger.clock import DeterministicClock
from stockledger.config import Settings
from stockledger.models import Product, User
from stockledger.schemas.audit import AuditContext


def make_settings(**overrides) -> Settings:
    values = {"DATABASE_URL": "sqlite://", "STORAGE_TIMEOUT_SECONDS": 5.0}
    values.update(overrides)
    # Ignore any .env in the working directory
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def services(clock):
    """Fresh in-memory database and wired components for each test."""
    services = build_services(make_settings(), clock)
    yield services
    services.dispose()


@pytest.fixture
def gateway(services):
    return services.gateway


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.fixture
def recorder(services):
    return services.recorder


@pytest.fixture
def audit_queries(services):
    return services.audit_queries


def insert_user(gateway, clock, username="clerk", role="USER"):
    now = clock.now()
    return gateway.insert(User(
        username=username,
        email=f"{username}@example.com",
        password_hash="not-a-real-hash",
        role=role,
        is_active=True,
        created_at=now,
        updated_at=now,
    ))


def insert_product(gateway, clock, sku="FEED-001", quantity=10, critical_stock=2):
    """Seed a product directly, bypassing the audited repository."""
    now = clock.now()
    return gateway.insert(Product(
        name=f"Product {sku}",
        sku=sku,
        price=0,
        quantity=quantity,
        critical_stock=critical_stock,
        is_active=True,
        created_at=now,
        updated_at=now,
    ))


@pytest.fixture
def user(gateway, clock):
    return insert_user(gateway, clock)


@pytest.fixture
def admin(gateway, clock):
    return insert_user(gateway, clock, username="admin", role="ADMIN")


@pytest.fixture
def product(gateway, clock):
    """Product with 10 units on hand and a critical level of 2."""
    return insert_product(gateway, clock)


@pytest.fixture
def context(user):
    return AuditContext(user_id=user.id, ip_address="10.0.0.5", user_agent="pytest")


@pytest.fixture
def admin_context(admin):
    return AuditContext(user_id=admin.id, is_admin=True)


def stored_quantity(gateway, product_id):
    return gateway.get(Product, product_id).quantity
