"""
Service Desk Infrastructure Layer
=================================

Contains:
- SQLAlchemy models and repositories
- Escalation policy manager, sweep scheduler and attachment storage
"""

from src.servicedesk.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyLeadDirectory,
)
from src.servicedesk.infrastructure.external import (
    EscalationPolicyManager,
    EscalationScheduler,
    LocalDocumentStorage,
    default_policy,
)

__all__ = [
    "SQLAlchemyTicketRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyLeadDirectory",
    "EscalationPolicyManager",
    "EscalationScheduler",
    "LocalDocumentStorage",
    "default_policy",
]
