"""
Schemas for stockledger
"""

from .audit import AuditContext, AuditLogResponse, AuditStats, EntitySnapshot
from .movements import MovementCreate, MovementResponse, MovementStats, ProductMovementStats
from .pagination import Page

__all__ = [
    "AuditContext",
    "AuditLogResponse",
    "AuditStats",
    "EntitySnapshot",
    "MovementCreate",
    "MovementResponse",
    "MovementStats",
    "Page",
    "ProductMovementStats",
]
