"""
Audit retention.
The only path that removes audit entries. Every run is itself recorded:
a RetentionRun row plus a CREATE audit entry for it, written in the same
transaction as the delete, so a prune never happens silently.
"""
from datetime import datetime, timedelta
import logging
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from stockledger.clock import Clock
from stockledger.config import Settings
from stockledger.crud.audit import AuditRecorder
from stockledger.database import SQLGateway
from stockledger.exceptions import AuthorizationError, ValidationError
from stockledger.models import AuditLog, RetentionRun
from stockledger.schemas.audit import AuditContext, RetentionRunSnapshot
from stockledger.utils.validation import as_utc

logger = logging.getLogger(__name__)


class RetentionManager:
    """Prune old audit entries on behalf of an administrator."""

    TABLE_NAME = "audit_retention_runs"

    def __init__(self, gateway: SQLGateway, clock: Clock, recorder: AuditRecorder,
                 settings: Settings):
        self.gateway = gateway
        self.clock = clock
        self.recorder = recorder
        self.settings = settings

    def _authorize(self, context: Optional[AuditContext]) -> AuditContext:
        if context is None or not context.is_admin:
            raise AuthorizationError("Pruning the audit trail requires an administrative context")
        if context.user_id is None:
            raise AuthorizationError("Pruning the audit trail requires an identified administrator")
        return context

    def prune_older_than(self, cutoff: datetime, context: Optional[AuditContext] = None,
                         timeout: Optional[float] = None) -> int:
        """
        Delete entries created strictly before ``cutoff``.
        Returns the number of entries deleted; the run's own audit entry is
        not counted.
        """
        context = self._authorize(context)
        if not isinstance(cutoff, datetime):
            raise ValidationError("cutoff", f"must be a datetime, got {cutoff!r}")
        cutoff = as_utc(cutoff)

        def _prune(session: Session) -> int:
            run = RetentionRun(
                cutoff=cutoff,
                performed_by=context.user_id,
                records_affected=0,
                started_at=self.clock.now(),
            )
            session.add(run)

            result = session.execute(
                delete(AuditLog)
                .where(AuditLog.created_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            run.records_affected = result.rowcount
            run.completed_at = self.clock.now()
            session.flush()

            self.recorder.record_create(
                self.TABLE_NAME,
                run.id,
                RetentionRunSnapshot(
                    id=run.id,
                    cutoff=run.cutoff,
                    performed_by=run.performed_by,
                    records_affected=run.records_affected,
                    started_at=run.started_at,
                    completed_at=run.completed_at,
                ),
                context,
            )
            return run.records_affected

        deleted = self.gateway.execute_in_transaction(_prune, timeout=timeout)
        logger.warning(
            f"Audit retention: {deleted} entries older than {cutoff.isoformat()} "
            f"deleted by user {context.user_id}"
        )
        return deleted

    def prune_by_age(self, days_to_keep: Optional[int] = None,
                     context: Optional[AuditContext] = None,
                     timeout: Optional[float] = None) -> int:
        """Keep the last ``days_to_keep`` days (AUDIT_RETENTION_DAYS by default)."""
        context = self._authorize(context)
        if days_to_keep is None:
            days_to_keep = self.settings.AUDIT_RETENTION_DAYS
        if not isinstance(days_to_keep, int) or isinstance(days_to_keep, bool) or days_to_keep < 1:
            raise ValidationError("days_to_keep", f"must be a positive integer, got {days_to_keep!r}")

        cutoff = self.clock.now() - timedelta(days=days_to_keep)
        logger.info(f"Pruning audit entries older than {days_to_keep} days")
        return self.prune_older_than(cutoff, context, timeout=timeout)
