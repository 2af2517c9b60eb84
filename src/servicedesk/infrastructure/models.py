"""
Service Desk Infrastructure Models
==================================

SQLAlchemy ORM models for service requests, their notes, notifications
and the leads a request may reference.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import TicketPriority, TicketStatus


class TicketModel(Base):
    """
    Database model for a service request.

    Maps to the 'service_tickets' table.
    """
    __tablename__ = "service_tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Service Request Number, SRN-YYYY-NNNNNN
    ticket_number: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)

    # Raising agent
    raised_by_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    agent_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Request content
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    lead_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    # Attachment
    attachment_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    attachment_file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    attachment_original_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Workflow state
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN, index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketPriority.MEDIUM)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, index=True)
    assigned_role: Mapped[str] = mapped_column(String(50), nullable=False)
    assigned_to_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)

    # SLA tracking
    sla_timer_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    # Resolution
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class TicketNoteModel(Base):
    """
    Database model for an internal note on a ticket.

    Maps to the 'ticket_notes' table. Rows are only ever inserted, and
    the autoincrement key keeps notes with equal timestamps in insert order.
    """
    __tablename__ = "ticket_notes"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("service_tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    note: Mapped[str] = mapped_column(Text, nullable=False)
    added_by_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class NotificationModel(Base):
    """
    Database model for a user notification.

    Maps to the 'notifications' table.
    """
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    related_ticket_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class LeadModel(Base):
    """
    Database model for a lead submitted by an agent.

    Maps to the 'leads' table. Only the ownership columns are used here.
    """
    __tablename__ = "leads"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agent_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="logged")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
