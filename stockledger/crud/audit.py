"""
Audit trail: recorder and query service.
- one append-only insert per mutation
- written inside the caller's transaction, so entity change and audit
  record commit together or not at all
- ``reviewed`` is the only column ever updated afterwards
"""
import logging
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy import case, distinct, func, select
from sqlalchemy.orm import Session

from stockledger.clock import Clock
from stockledger.database import SQLGateway
from stockledger.enums import AuditAction
from stockledger.exceptions import NotFound, ValidationError
from stockledger.models import AuditLog
from stockledger.schemas.audit import (
    AuditContext, AuditLogResponse, AuditStats, SnapshotBase,
    capture_snapshot, changed_fields, copy_json,
)
from stockledger.schemas.pagination import Page, check_limit, check_paging
from stockledger.utils.validation import (
    require_date_range, require_positive_id, require_table_name,
)

logger = logging.getLogger(__name__)

Snapshot = Union[SnapshotBase, Mapping[str, Any], None]


def _coerce_action(action: Any) -> AuditAction:
    try:
        return AuditAction(action)
    except ValueError:
        raise ValidationError("action", f"must be one of CREATE, UPDATE, DELETE, got {action!r}")


class AuditRecorder:
    """Captures before/after snapshots for every tracked mutation."""

    changed_fields = staticmethod(changed_fields)

    def __init__(self, gateway: SQLGateway, clock: Clock):
        self.gateway = gateway
        self.clock = clock

    def record_create(self, table_name: str, record_id: int, new_values: Snapshot,
                      context: Optional[AuditContext] = None) -> AuditLogResponse:
        return self._record(AuditAction.CREATE, table_name, record_id, None, new_values, context)

    def record_update(self, table_name: str, record_id: int, old_values: Snapshot,
                      new_values: Snapshot, context: Optional[AuditContext] = None) -> AuditLogResponse:
        return self._record(AuditAction.UPDATE, table_name, record_id, old_values, new_values, context)

    def record_delete(self, table_name: str, record_id: int, old_values: Snapshot,
                      context: Optional[AuditContext] = None) -> AuditLogResponse:
        return self._record(AuditAction.DELETE, table_name, record_id, old_values, None, context)

    def _record(self, action: AuditAction, table_name: str, record_id: int,
                old_values: Snapshot, new_values: Snapshot,
                context: Optional[AuditContext]) -> AuditLogResponse:
        require_table_name(table_name)
        require_positive_id("record_id", record_id)
        context = context or AuditContext.system()

        # Copies taken now; later changes to the caller's objects don't reach the trail
        old_snapshot = capture_snapshot(table_name, old_values, "old_values")
        new_snapshot = capture_snapshot(table_name, new_values, "new_values")
        metadata = copy_json(context.metadata, "metadata")

        entry = AuditLog(
            table_name=table_name,
            record_id=record_id,
            action=action.value,
            old_values=old_snapshot,
            new_values=new_snapshot,
            user_id=context.user_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            metadata_=metadata,
            created_at=self.clock.now(),
            reviewed=False,
        )

        def _write(session: Session) -> AuditLogResponse:
            session.add(entry)
            session.flush()
            return AuditLogResponse.model_validate(entry)

        response = self.gateway.execute_in_transaction(_write)

        if action == AuditAction.UPDATE:
            fields = ", ".join(sorted(response.changed_fields)) or "none"
            logger.info(
                f"Audit log {response.id}: UPDATE {table_name}#{record_id} "
                f"by user {context.user_id} (changed: {fields})"
            )
        else:
            logger.info(
                f"Audit log {response.id}: {action.value} {table_name}#{record_id} by user {context.user_id}"
            )
        return response


class AuditQueryService:
    """Read-only access to the trail, newest first, plus the reviewed flag."""

    def __init__(self, gateway: SQLGateway):
        self.gateway = gateway

    def _find(self, *criteria, limit: Optional[int] = None,
              offset: Optional[int] = None) -> List[AuditLogResponse]:
        stmt = (
            select(AuditLog)
            .where(*criteria)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        return self.gateway.execute_in_transaction(
            lambda session: [
                AuditLogResponse.model_validate(row) for row in session.execute(stmt).scalars()
            ]
        )

    def get_by_id(self, id: int) -> Optional[AuditLogResponse]:
        require_positive_id("id", id)
        entry = self.gateway.get(AuditLog, id)
        return AuditLogResponse.model_validate(entry) if entry is not None else None

    def find_all(self) -> List[AuditLogResponse]:
        return self._find()

    def list_logs(self, page: int = 1, page_size: int = 10, table_name: Optional[str] = None,
                  action: Optional[AuditAction] = None,
                  user_id: Optional[int] = None) -> Page[AuditLogResponse]:
        """Paged listing with optional filters."""
        offset, limit = check_paging(page, page_size)
        criteria = []
        if table_name is not None:
            criteria.append(AuditLog.table_name == require_table_name(table_name))
        if action is not None:
            criteria.append(AuditLog.action == _coerce_action(action).value)
        if user_id is not None:
            criteria.append(AuditLog.user_id == require_positive_id("user_id", user_id))

        total = self.gateway.scalar(select(func.count(AuditLog.id)).where(*criteria))
        items = self._find(*criteria, limit=limit, offset=offset)
        return Page[AuditLogResponse].build(items, total, page, page_size)

    def find_by_table(self, table_name: str) -> List[AuditLogResponse]:
        return self._find(AuditLog.table_name == require_table_name(table_name))

    def find_by_record(self, table_name: str, record_id: int) -> List[AuditLogResponse]:
        return self._find(
            AuditLog.table_name == require_table_name(table_name),
            AuditLog.record_id == require_positive_id("record_id", record_id),
        )

    def find_by_action(self, action: AuditAction) -> List[AuditLogResponse]:
        return self._find(AuditLog.action == _coerce_action(action).value)

    def find_by_actor(self, user_id: int) -> List[AuditLogResponse]:
        return self._find(AuditLog.user_id == require_positive_id("user_id", user_id))

    def find_by_ip_address(self, ip_address: str) -> List[AuditLogResponse]:
        if not ip_address:
            raise ValidationError("ip_address", "is required")
        return self._find(AuditLog.ip_address == ip_address)

    def find_recent(self, limit: int = 10) -> List[AuditLogResponse]:
        return self._find(limit=check_limit(limit))

    def find_by_date_range(self, start, end) -> List[AuditLogResponse]:
        start, end = require_date_range(start, end)
        return self._find(AuditLog.created_at >= start, AuditLog.created_at <= end)

    def find_by_table_and_action(self, table_name: str, action: AuditAction) -> List[AuditLogResponse]:
        return self._find(
            AuditLog.table_name == require_table_name(table_name),
            AuditLog.action == _coerce_action(action).value,
        )

    def _stats(self, *criteria) -> AuditStats:
        def _count(action: AuditAction):
            return func.coalesce(func.sum(case((AuditLog.action == action.value, 1), else_=0)), 0)

        stmt = select(
            func.count(AuditLog.id),
            _count(AuditAction.CREATE),
            _count(AuditAction.UPDATE),
            _count(AuditAction.DELETE),
            func.count(distinct(AuditLog.user_id)),
            func.count(distinct(AuditLog.table_name)),
        ).where(*criteria)
        total, creates, updates, deletes, actors, tables = self.gateway.fetch_one(stmt)
        return AuditStats(
            total_logs=total,
            create_logs=creates,
            update_logs=updates,
            delete_logs=deletes,
            unique_actors=actors,
            unique_tables=tables,
        )

    def stats_overall(self) -> AuditStats:
        return self._stats()

    def stats_for_table(self, table_name: str) -> AuditStats:
        return self._stats(AuditLog.table_name == require_table_name(table_name))

    def stats_for_actor(self, user_id: int) -> AuditStats:
        return self._stats(AuditLog.user_id == require_positive_id("user_id", user_id))

    def mark_reviewed(self, id: int) -> AuditLogResponse:
        """Unreviewed -> Reviewed. Marking an already reviewed entry is a no-op."""
        require_positive_id("id", id)

        def _mark(session: Session) -> AuditLogResponse:
            entry = session.get(AuditLog, id)
            if entry is None:
                raise NotFound("Audit log", id)
            if not entry.reviewed:
                entry.reviewed = True
                session.flush()
                logger.info(f"Audit log {id} marked as reviewed")
            return AuditLogResponse.model_validate(entry)

        return self.gateway.execute_in_transaction(_mark)

