"""
Database configuration and the persistence gateway.

- pool_pre_ping for server databases, check_same_thread off for SQLite
- one transactional scope per logical operation; nested calls join it
- every storage call bounded by a timeout
- SQLAlchemy errors translated to StorageFailure / StorageTimeout
"""
from contextvars import ContextVar
from datetime import timezone
import logging
import time
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import JSON, DateTime, create_engine, delete, event, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from stockledger.config import Settings
from stockledger.exceptions import ConstraintViolation, StockLedgerError, StorageFailure, StorageTimeout

logger = logging.getLogger(__name__)

Base = declarative_base()

T = TypeVar("T")

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

_TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "database is locked",
    "canceling statement due to statement timeout",
    "lock wait",
)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back timezone-aware UTC."""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def normalize_database_url(url: str) -> str:
    # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def create_db_engine(settings: Settings) -> Engine:
    url = normalize_database_url(settings.DATABASE_URL)

    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=settings.SQL_ECHO, **kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            pool_recycle=300,
            pool_timeout=int(settings.STORAGE_TIMEOUT_SECONDS) or 1,
            echo=settings.SQL_ECHO,
        )

    logger.info(f"Database engine configured for dialect {engine.dialect.name}")
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,
    )


def test_connection(engine: Engine, attempts: int = 3, delay: float = 1.0) -> Tuple[bool, str]:
    """Startup preflight: can we reach the database at all?"""
    for attempt in range(attempts):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True, "Database connection successful"
        except sa_exc.OperationalError as e:
            if attempt == attempts - 1:
                return False, f"Database connection failed: {e}"
            logger.warning(f"Database connection attempt {attempt + 1} failed, retrying...")
            time.sleep(delay)
    return False, "Database connection test failed"


def _is_timeout(error: sa_exc.DBAPIError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


class SQLGateway:
    """
    Persistence gateway used by the ledger, the audit trail and the
    repositories.

    ``execute_in_transaction`` opens one session and commits once. A call made
    while a transaction is already open on this gateway (same thread or task)
    joins it instead of opening a second one, so an entity write and its audit
    record commit or roll back together.
    """

    def __init__(self, engine: Engine, session_factory: Optional[sessionmaker] = None,
                 default_timeout: Optional[float] = None):
        self.engine = engine
        self.session_factory = session_factory or make_session_factory(engine)
        self.default_timeout = default_timeout
        self._active: ContextVar[Optional[Session]] = ContextVar(
            f"stockledger_session_{id(self)}", default=None
        )

    @property
    def in_transaction(self) -> bool:
        return self._active.get() is not None

    def execute_in_transaction(self, fn: Callable[[Session], T],
                               timeout: Optional[float] = None) -> T:
        active = self._active.get()
        if active is not None:
            return fn(active)

        if timeout is None:
            timeout = self.default_timeout
        if timeout is not None and timeout <= 0:
            raise StorageTimeout(f"Storage timeout must be positive, got {timeout}")
        deadline = time.monotonic() + timeout if timeout else None

        session = self.session_factory()
        token = self._active.set(session)
        try:
            try:
                self._apply_timeout(session, timeout)
                result = fn(session)
                session.flush()
                if deadline is not None and time.monotonic() > deadline:
                    raise StorageTimeout(f"Storage operation exceeded {timeout}s")
                session.commit()
                return result
            except BaseException:
                session.rollback()
                raise
        except StockLedgerError:
            raise
        except sa_exc.IntegrityError as e:
            logger.error(f"Storage constraint violated: {e}")
            raise ConstraintViolation(f"Storage constraint violated: {e.orig}") from e
        except sa_exc.TimeoutError as e:
            logger.error(f"Timed out waiting for a database connection: {e}")
            raise StorageTimeout(f"Timed out waiting for a database connection: {e}") from e
        except sa_exc.OperationalError as e:
            if _is_timeout(e):
                logger.error(f"Storage operation timed out: {e}")
                raise StorageTimeout(f"Storage operation timed out: {e.orig}") from e
            logger.error(f"Storage operation failed: {e}")
            raise StorageFailure(f"Storage operation failed: {e.orig}") from e
        except sa_exc.SQLAlchemyError as e:
            logger.error(f"Storage operation failed: {e}")
            raise StorageFailure(f"Storage operation failed: {e}") from e
        finally:
            self._active.reset(token)
            session.close()

    def _apply_timeout(self, session: Session, timeout: Optional[float]) -> None:
        if not timeout:
            return
        millis = max(int(timeout * 1000), 1)
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            session.execute(text(f"SET LOCAL statement_timeout = {millis}"))
        elif dialect == "sqlite":
            session.execute(text(f"PRAGMA busy_timeout = {millis}"))

    # Thin helpers, each runs in the active transaction or its own

    def insert(self, entity: T) -> T:
        def _insert(session: Session) -> T:
            session.add(entity)
            session.flush()
            return entity

        return self.execute_in_transaction(_insert)

    def get(self, model: Any, identifier: Any) -> Any:
        return self.execute_in_transaction(lambda session: session.get(model, identifier))

    def query(self, statement) -> List[Any]:
        """Run a select() and return the scalars of its first column."""
        return self.execute_in_transaction(
            lambda session: list(session.execute(statement).scalars().all())
        )

    def scalar(self, statement) -> Any:
        return self.execute_in_transaction(lambda session: session.execute(statement).scalar())

    def fetch_one(self, statement):
        """Run an aggregate select() and return its single row."""
        return self.execute_in_transaction(lambda session: session.execute(statement).one())

    def execute(self, statement) -> int:
        """Run an update()/delete() statement and return the affected row count."""
        return self.execute_in_transaction(lambda session: session.execute(statement).rowcount)

    def delete(self, model: Any, *criteria) -> int:
        return self.execute(delete(model).where(*criteria))
