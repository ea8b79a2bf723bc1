from stockledger.crud.audit import AuditQueryService, AuditRecorder
from stockledger.crud.base import CRUDBase, Repositories, build_repositories
from stockledger.crud.movements import MovementLedger

__all__ = [
    "AuditQueryService",
    "AuditRecorder",
    "CRUDBase",
    "MovementLedger",
    "Repositories",
    "build_repositories",
]
