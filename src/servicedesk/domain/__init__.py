"""
Service Desk Domain Layer
=========================

Contains:
- Entities: Ticket, InternalNote, Attachment, Notification, EscalationChange
- Value Objects: WorkingHoursClock, EscalationPolicy, SLAWindow, TicketNumber
- Domain Services: SLACalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.servicedesk.domain.entities import (
    Attachment,
    AttachmentUpload,
    EscalationChange,
    InternalNote,
    Notification,
    Ticket,
)
from src.servicedesk.domain.value_objects import (
    EscalationPolicy,
    SLACalculator,
    SLAWindow,
    TicketNumber,
    WorkingHoursClock,
)

__all__ = [
    # Entities
    "Attachment",
    "AttachmentUpload",
    "EscalationChange",
    "InternalNote",
    "Notification",
    "Ticket",
    # Value Objects & Services
    "EscalationPolicy",
    "SLACalculator",
    "SLAWindow",
    "TicketNumber",
    "WorkingHoursClock",
]
