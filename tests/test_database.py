"""Tests for the persistence gateway, engine setup and bootstrap."""
from datetime import datetime, timedelta, timezone
import itertools

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from stockledger import database
from stockledger.bootstrap import build_services
from stockledger.config import Settings
from stockledger.exceptions import ConstraintViolation, StorageFailure, StorageTimeout
from stockledger.models import Category

from conftest import make_settings


class TestGateway:
    def test_nested_calls_join_the_open_transaction(self, gateway, clock):
        def outer(session):
            assert gateway.in_transaction
            now = clock.now()
            gateway.insert(Category(name="Inner", created_at=now, updated_at=now))
            # Same session, so the uncommitted row is visible
            return session.execute(select(Category.name)).scalars().all()

        assert gateway.execute_in_transaction(outer) == ["Inner"]
        assert not gateway.in_transaction

    def test_failure_rolls_back_everything(self, gateway, clock):
        def outer(session):
            now = clock.now()
            gateway.insert(Category(name="Doomed", created_at=now, updated_at=now))
            session.execute(text("SELECT * FROM missing_table"))

        with pytest.raises(StorageFailure) as exc_info:
            gateway.execute_in_transaction(outer)
        assert not isinstance(exc_info.value, StorageTimeout)
        assert gateway.query(select(Category)) == []

    def test_timeout_errors_are_translated(self, gateway):
        def locked(session):
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))

        with pytest.raises(StorageTimeout) as exc_info:
            gateway.execute_in_transaction(locked)
        assert exc_info.value.retryable

    def test_deadline_is_checked_before_commit(self, gateway, clock, monkeypatch):
        # Every reading is 10s after the previous one
        ticks = itertools.count(0, 10)
        monkeypatch.setattr(database.time, "monotonic", lambda: next(ticks))

        def slow(session):
            now = clock.now()
            session.add(Category(name="Late", created_at=now, updated_at=now))

        with pytest.raises(StorageTimeout):
            gateway.execute_in_transaction(slow, timeout=1)
        monkeypatch.undo()
        assert gateway.query(select(Category)) == []

    def test_delete_and_execute_return_row_counts(self, gateway, clock):
        now = clock.now()
        for name in ("A", "B"):
            gateway.insert(Category(name=name, created_at=now, updated_at=now))
        assert gateway.delete(Category, Category.name == "A") == 1
        assert gateway.scalar(select(Category.name)) == "B"

    def test_integrity_errors_are_not_retryable(self, gateway, clock):
        now = clock.now()
        gateway.insert(Category(name="Unique", created_at=now, updated_at=now))
        with pytest.raises(ConstraintViolation) as exc_info:
            gateway.insert(Category(name="Unique", created_at=now, updated_at=now))
        assert not exc_info.value.retryable
        assert len(gateway.query(select(Category))) == 1


class TestUTCDateTime:
    def test_round_trip_is_aware_utc(self, gateway):
        local = datetime(2024, 6, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        category = gateway.insert(Category(name="Tz", created_at=local, updated_at=local))

        stored = gateway.get(Category, category.id)
        assert stored.created_at == datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc)
        assert stored.created_at.tzinfo == timezone.utc


class TestEngine:
    def test_normalize_database_url(self):
        assert database.normalize_database_url("postgres://u@h/db") == "postgresql://u@h/db"
        assert database.normalize_database_url("sqlite://") == "sqlite://"

    def test_preflight_succeeds(self):
        engine = database.create_db_engine(make_settings())
        assert database.test_connection(engine, attempts=1) == (True, "Database connection successful")

    def test_preflight_reports_failure(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing' / 'nested' / 'db.sqlite'}"
        engine = database.create_db_engine(make_settings(DATABASE_URL=url))
        success, message = database.test_connection(engine, attempts=2, delay=0)
        assert not success
        assert message.startswith("Database connection failed")

    def test_foreign_keys_are_enforced(self, gateway):
        assert gateway.scalar(text("PRAGMA foreign_keys")) == 1



class TestBootstrap:
    def test_services_share_one_gateway(self, services):
        assert services.ledger.gateway is services.gateway
        assert services.retention.recorder is services.recorder
        assert services.repositories.products.recorder is services.recorder
        assert services.gateway.default_timeout == 5.0

    def test_failed_preflight_stops_startup(self, monkeypatch):
        monkeypatch.setattr(database, "test_connection", lambda engine: (False, "unreachable"))
        with pytest.raises(StorageFailure):
            build_services(make_settings())

    def test_settings_read_the_environment(self, monkeypatch):
        monkeypatch.setenv("AUDIT_RETENTION_DAYS", "30")
        monkeypatch.setenv("MAX_PAGE_SIZE", "25")
        settings = Settings(_env_file=None)
        assert settings.AUDIT_RETENTION_DAYS == 30
        assert settings.MAX_PAGE_SIZE == 25
        assert settings.DEFAULT_PAGE_SIZE == 10
