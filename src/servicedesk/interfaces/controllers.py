"""
Service Desk Controllers (API Routes)
=====================================

FastAPI routes for service requests and notifications.

Controllers are thin - they resolve the actor, build the services and
delegate. Application exceptions are mapped to HTTP statuses by the
handlers registered in main.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core import Clock, ValidationException, utc_now
from src.hierarchy.application import HierarchyResolver
from src.hierarchy.domain import UserProfile
from src.hierarchy.infrastructure import SQLAlchemySupervisorDirectory, SQLAlchemyUserDirectory
from src.infrastructure.database import get_session
from src.servicedesk.application import (
    CategoriesResponse,
    IDocumentStorage,
    IEscalationPolicyProvider,
    MarkedReadResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationService,
    PaginationMeta,
    TicketLifecycleService,
    TicketListQuery,
    TicketListResponse,
    TicketResolveRequest,
    TicketResponse,
    TicketUpdateRequest,
    UnreadCountResponse,
)
from src.servicedesk.application.dto import CategoryStr, TicketStatusStr
from src.servicedesk.domain import AttachmentUpload
from src.servicedesk.infrastructure import (
    EscalationPolicyManager,
    LocalDocumentStorage,
    SQLAlchemyLeadDirectory,
    SQLAlchemyNotificationRepository,
    SQLAlchemyTicketRepository,
)
from src.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)

UPLOAD_CHUNK_BYTES = 64 * 1024

tickets_router = APIRouter(prefix="/tickets", tags=["Service Requests"])
notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ========== Dependencies ==========

def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", utc_now)


def get_policy_provider(request: Request) -> IEscalationPolicyProvider:
    provider = getattr(request.app.state, "policy_manager", None)
    if provider is None:
        provider = EscalationPolicyManager()
        request.app.state.policy_manager = provider
    return provider


def get_document_storage(request: Request) -> IDocumentStorage:
    storage = getattr(request.app.state, "document_storage", None)
    if storage is None:
        storage = LocalDocumentStorage()
        request.app.state.document_storage = storage
    return storage


async def read_limited(upload: UploadFile, max_bytes: int, chunk_size: int = UPLOAD_CHUNK_BYTES) -> bytes:
    """Read an uploaded file, giving up as soon as it grows past max_bytes."""
    content = bytearray()
    while chunk := await upload.read(chunk_size):
        content.extend(chunk)
        if len(content) > max_bytes:
            raise ValidationException(
                "Attachment is too large", {"max_bytes": max_bytes}
            )
    return bytes(content)


async def get_current_actor(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    session: AsyncSession = Depends(get_session)
) -> UserProfile:
    """
    Resolve the calling user from the X-User-ID header.

    Stands in for the authentication layer in front of this service.
    """
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    actor = await SQLAlchemyUserDirectory(session).get_by_id(x_user_id)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    if not actor.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is not active")
    return actor


def get_notification_service(
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock)
) -> NotificationService:
    return NotificationService(SQLAlchemyNotificationRepository(session), clock=clock)


def get_ticket_service(
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    policy_provider: IEscalationPolicyProvider = Depends(get_policy_provider),
    document_storage: IDocumentStorage = Depends(get_document_storage),
    notifications: NotificationService = Depends(get_notification_service)
) -> TicketLifecycleService:
    users = SQLAlchemyUserDirectory(session)
    return TicketLifecycleService(
        ticket_repository=SQLAlchemyTicketRepository(session),
        user_directory=users,
        hierarchy=HierarchyResolver(users, SQLAlchemySupervisorDirectory(session)),
        lead_directory=SQLAlchemyLeadDirectory(session),
        document_storage=document_storage,
        notifications=notifications,
        policy_provider=policy_provider,
        clock=clock,
    )


# ========== Ticket Routes ==========

@tickets_router.get(
    "/categories",
    response_model=CategoriesResponse,
    summary="List service request categories"
)
async def list_categories(actor: UserProfile = Depends(get_current_actor)):
    return CategoriesResponse(categories=TicketLifecycleService.list_categories())


@tickets_router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Raise a service request",
    description="""
    Agents raise a service request against their supervisor.

    The ticket is assigned to the owner of the agent's RelationshipManager
    or Franchise at escalation level 1 with an SLA deadline counted in
    working hours. Multipart form with an optional single attachment.
    """
)
async def create_ticket(
    request: Request,
    category: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    lead_id: Optional[str] = Form(default=None),
    attachment: Optional[UploadFile] = File(default=None),
    actor: UserProfile = Depends(get_current_actor),
    document_storage: IDocumentStorage = Depends(get_document_storage),
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    upload = None
    if attachment is not None and attachment.filename:
        upload = AttachmentUpload(
            original_name=attachment.filename,
            content_type=attachment.content_type or "application/octet-stream",
            content=await read_limited(attachment, document_storage.max_bytes),
        )

    ticket = await service.create_ticket(
        actor,
        category=category,
        description=description,
        lead_id=lead_id or None,
        upload=upload,
    )
    get_context_logger(__name__, getattr(request.state, "correlation_id", None)).info(
        "Service request raised",
        extra={"ticket_number": ticket.ticket_number, "agent_id": actor.id}
    )
    return TicketResponse.from_domain(ticket)


@tickets_router.get(
    "",
    response_model=TicketListResponse,
    summary="List visible service requests",
    description="Newest first. Visibility follows the supervision hierarchy of the caller."
)
async def list_tickets(
    status_filter: Optional[TicketStatusStr] = Query(default=None, alias="status"),
    category: Optional[CategoryStr] = Query(default=None),
    escalation_level: Optional[int] = Query(default=None, ge=1, le=3),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    actor: UserProfile = Depends(get_current_actor),
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    query = TicketListQuery(
        status=status_filter,
        category=category,
        escalation_level=escalation_level,
        page=page,
        limit=limit,
    )
    tickets, total = await service.list_tickets(
        actor, query.filters(), limit=query.limit, offset=query.offset
    )
    return TicketListResponse(
        tickets=[TicketResponse.from_domain(t) for t in tickets],
        pagination=PaginationMeta.build(query.page, query.limit, total),
    )


@tickets_router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get a service request"
)
async def get_ticket(
    ticket_id: str,
    actor: UserProfile = Depends(get_current_actor),
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    return TicketResponse.from_domain(await service.get_ticket(actor, ticket_id))


@tickets_router.put(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Update a service request",
    description="Change status, append an internal note, or reassign (admins and regional managers)."
)
async def update_ticket(
    ticket_id: str,
    request: TicketUpdateRequest,
    actor: UserProfile = Depends(get_current_actor),
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    ticket = await service.update_ticket(
        actor,
        ticket_id,
        status=request.status,
        internal_note=request.internal_note,
        reassign_to=request.reassign_to,
    )
    return TicketResponse.from_domain(ticket)


@tickets_router.post(
    "/{ticket_id}/resolve",
    response_model=TicketResponse,
    summary="Resolve a service request"
)
async def resolve_ticket(
    request: Request,
    ticket_id: str,
    body: Optional[TicketResolveRequest] = None,
    actor: UserProfile = Depends(get_current_actor),
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    ticket = await service.resolve_ticket(
        actor, ticket_id, resolution_note=body.resolution_note if body else None
    )
    get_context_logger(__name__, getattr(request.state, "correlation_id", None)).info(
        "Service request resolved",
        extra={"ticket_number": ticket.ticket_number, "resolved_by": actor.id}
    )
    return TicketResponse.from_domain(ticket)


# ========== Notification Routes ==========

@notifications_router.get(
    "",
    response_model=NotificationListResponse,
    summary="List my notifications"
)
async def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    actor: UserProfile = Depends(get_current_actor),
    service: NotificationService = Depends(get_notification_service)
):
    notifications, total, unread = await service.list_for_user(
        actor, limit=limit, offset=(page - 1) * limit
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.from_domain(n) for n in notifications],
        unread_count=unread,
        pagination=PaginationMeta.build(page, limit, total),
    )


@notifications_router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Count my unread notifications"
)
async def unread_count(
    actor: UserProfile = Depends(get_current_actor),
    service: NotificationService = Depends(get_notification_service)
):
    return UnreadCountResponse(unread_count=await service.unread_count(actor))


@notifications_router.patch(
    "/read-all",
    response_model=MarkedReadResponse,
    summary="Mark all my notifications as read"
)
async def mark_all_read(
    actor: UserProfile = Depends(get_current_actor),
    service: NotificationService = Depends(get_notification_service)
):
    return MarkedReadResponse(updated=await service.mark_all_read(actor))


@notifications_router.patch(
    "/{notification_id}/read",
    response_model=MarkedReadResponse,
    summary="Mark one of my notifications as read"
)
async def mark_read(
    notification_id: str,
    actor: UserProfile = Depends(get_current_actor),
    service: NotificationService = Depends(get_notification_service)
):
    await service.mark_read(actor, notification_id)
    return MarkedReadResponse(updated=1)
