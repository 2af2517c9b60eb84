"""
Service Desk Application DTOs
=============================

Data Transfer Objects for the service desk API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from math import ceil
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Literal
from datetime import datetime

from src.servicedesk.domain import Notification, Ticket


# ========== Type Aliases for Literals ==========
CategoryStr = Literal[
    "Payment Not Received", "Half Payment Received", "Commission Issue",
    "Disbursement Delay", "Other"
]
TicketStatusStr = Literal[
    "Open", "In Progress", "Resolved",
    "Escalated to Regional Manager", "Escalated to Admin"
]
PriorityStr = Literal["Low", "Medium", "High"]
AssignedRoleStr = Literal["relationship_manager", "franchise", "regional_manager", "super_admin"]


# ========== Request DTOs ==========

class TicketUpdateRequest(BaseModel):
    """Body of a ticket update: any subset of status, note and reassignment."""
    status: Optional[TicketStatusStr] = Field(None, description="New status (not Resolved)")
    internal_note: Optional[str] = Field(None, max_length=5000, description="Note appended to the ticket")
    reassign_to: Optional[str] = Field(None, description="User id of the new assignee")

    @field_validator("internal_note")
    @classmethod
    def strip_note(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class TicketResolveRequest(BaseModel):
    """Body of a ticket resolution."""
    resolution_note: Optional[str] = Field(None, max_length=5000)


class TicketListQuery(BaseModel):
    """Query parameters for the ticket list."""
    status: Optional[TicketStatusStr] = None
    category: Optional[CategoryStr] = None
    escalation_level: Optional[int] = Field(None, ge=1, le=3)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def filters(self) -> dict:
        filters = {}
        if self.status:
            filters["status"] = self.status
        if self.category:
            filters["category"] = self.category
        if self.escalation_level:
            filters["escalation_level"] = self.escalation_level
        return filters


# ========== Response DTOs ==========

class AttachmentResponse(BaseModel):
    url: str
    file_name: str
    original_name: str


class InternalNoteResponse(BaseModel):
    note: str
    added_by: str
    added_at: datetime


class TicketResponse(BaseModel):
    """Response model for a service request."""
    id: str = Field(..., description="Internal ticket UUID")
    ticket_number: str = Field(..., description="Service Request Number (SRN)")
    raised_by: str
    agent_name: str
    category: CategoryStr
    description: str
    lead_id: Optional[str] = None
    attachment: Optional[AttachmentResponse] = None
    status: TicketStatusStr
    priority: PriorityStr
    escalation_level: int = Field(..., ge=1, le=3)
    assigned_role: AssignedRoleStr
    assigned_to: Optional[str] = None
    sla_timer_started_at: Optional[datetime] = None
    sla_deadline: Optional[datetime] = None
    internal_notes: List[InternalNoteResponse] = Field(default_factory=list)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=ticket.id or "",
            ticket_number=ticket.ticket_number,
            raised_by=ticket.raised_by_id,
            agent_name=ticket.agent_name,
            category=ticket.category,
            description=ticket.description,
            lead_id=ticket.lead_id,
            attachment=(
                AttachmentResponse(
                    url=ticket.attachment.url,
                    file_name=ticket.attachment.file_name,
                    original_name=ticket.attachment.original_name,
                )
                if ticket.attachment else None
            ),
            status=ticket.status,
            priority=ticket.priority,
            escalation_level=ticket.escalation_level,
            assigned_role=ticket.assigned_role,
            assigned_to=ticket.assigned_to_id,
            sla_timer_started_at=ticket.sla_timer_started_at,
            sla_deadline=ticket.sla_deadline,
            internal_notes=[
                InternalNoteResponse(note=n.note, added_by=n.added_by_id, added_at=n.added_at)
                for n in ticket.notes
            ],
            resolved_at=ticket.resolved_at,
            resolved_by=ticket.resolved_by_id,
            resolution_note=ticket.resolution_note,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class PaginationMeta(BaseModel):
    """Pagination block of list responses."""
    current_page: int
    items_per_page: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = ceil(total / limit) if limit else 0
        return cls(
            current_page=page,
            items_per_page=limit,
            total_items=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class TicketListResponse(BaseModel):
    tickets: List[TicketResponse]
    pagination: PaginationMeta


class CategoriesResponse(BaseModel):
    categories: List[str]


class NotificationResponse(BaseModel):
    """Response model for a notification."""
    id: str
    title: str
    message: str
    type: str
    related_ticket_id: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id or "",
            title=notification.title,
            message=notification.message,
            type=notification.type,
            related_ticket_id=notification.related_ticket_id,
            is_read=notification.is_read,
            read_at=notification.read_at,
            created_at=notification.created_at,
        )


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int
    pagination: PaginationMeta


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkedReadResponse(BaseModel):
    updated: int
