"""
Composition root.
- logging configured once, from settings
- preflight database test before anything touches storage
- engine, clock and settings passed explicitly to every component
"""
from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from stockledger import database
from stockledger.clock import Clock, SystemClock
from stockledger.config import Settings, get_settings
from stockledger.crud.audit import AuditQueryService, AuditRecorder
from stockledger.crud.base import Repositories, build_repositories
from stockledger.crud.movements import MovementLedger
from stockledger.exceptions import StorageFailure
from stockledger.services.stock import StockService
from stockledger.utils.retention import RetentionManager

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass
class Services:
    settings: Settings
    clock: Clock
    gateway: database.SQLGateway
    recorder: AuditRecorder
    audit_queries: AuditQueryService
    ledger: MovementLedger
    stock: StockService
    repositories: Repositories
    retention: RetentionManager

    def dispose(self) -> None:
        self.gateway.engine.dispose()
        logger.info(f"{self.settings.APP_NAME} shut down")


def build_services(settings: Optional[Settings] = None, clock: Optional[Clock] = None,
                   create_tables: bool = True) -> Services:
    settings = settings or get_settings()
    clock = clock or SystemClock()
    configure_logging(settings)
    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION}")

    engine = database.create_db_engine(settings)

    logger.info("Running preflight database test...")
    success, message = database.test_connection(engine)
    if not success:
        logger.error(f"Preflight test failed: {message}")
        raise StorageFailure(message)
    logger.info(f"Preflight test passed: {message}")

    if create_tables:
        try:
            database.Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as e:
            logger.error(f"Database table creation failed: {e}")
            raise StorageFailure(f"Database table creation failed: {e}") from e
        logger.info("Database tables verified")

    gateway = database.SQLGateway(engine, default_timeout=settings.STORAGE_TIMEOUT_SECONDS)
    recorder = AuditRecorder(gateway, clock)
    audit_queries = AuditQueryService(gateway)
    ledger = MovementLedger(gateway, clock, recorder, audit_queries)

    return Services(
        settings=settings,
        clock=clock,
        gateway=gateway,
        recorder=recorder,
        audit_queries=audit_queries,
        ledger=ledger,
        stock=StockService(gateway, ledger),
        repositories=build_repositories(gateway, clock, recorder),
        retention=RetentionManager(gateway, clock, recorder, settings),
    )
