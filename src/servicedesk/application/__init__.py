"""
Service Desk Application Layer
==============================

Contains:
- Services: TicketLifecycleService, EscalationService, NotificationService
- DTOs: Request/Response models
- Interfaces: Repository and storage contracts implemented by infrastructure
"""

from src.servicedesk.application.services import (
    TicketLifecycleService,
    EscalationService,
    NotificationService,
    SweepResult,
    ITicketRepository,
    INotificationRepository,
    ILeadDirectory,
    IDocumentStorage,
    IEscalationPolicyProvider,
)
from src.servicedesk.application.dto import (
    TicketUpdateRequest,
    TicketResolveRequest,
    TicketListQuery,
    TicketResponse,
    TicketListResponse,
    PaginationMeta,
    CategoriesResponse,
    NotificationResponse,
    NotificationListResponse,
    UnreadCountResponse,
    MarkedReadResponse,
)

__all__ = [
    # Services
    "TicketLifecycleService",
    "EscalationService",
    "NotificationService",
    "SweepResult",
    # Interfaces
    "ITicketRepository",
    "INotificationRepository",
    "ILeadDirectory",
    "IDocumentStorage",
    "IEscalationPolicyProvider",
    # DTOs
    "TicketUpdateRequest",
    "TicketResolveRequest",
    "TicketListQuery",
    "TicketResponse",
    "TicketListResponse",
    "PaginationMeta",
    "CategoriesResponse",
    "NotificationResponse",
    "NotificationListResponse",
    "UnreadCountResponse",
    "MarkedReadResponse",
]
