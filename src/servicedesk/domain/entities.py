"""
Service Desk Domain Entities
============================

Pure Python domain entities for service requests raised by agents.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. State changes
are planned here as EscalationChange values; persisting them is a
conditional update owned by the repository.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional

from src.config import (
    AssignedRole,
    MAX_ESCALATION_LEVEL,
    MIN_ESCALATION_LEVEL,
    TicketPriority,
    TicketStatus,
    VALID_CATEGORIES,
    VALID_STATUSES,
)
from src.core import DomainException, TicketAlreadyResolvedException
from src.servicedesk.domain.value_objects import SLAWindow


@dataclass(frozen=True)
class Attachment:
    """Stored reference to the single file attached to a ticket."""

    url: str
    file_name: str
    original_name: str


@dataclass(frozen=True)
class AttachmentUpload:
    """An uploaded file before it is stored."""

    original_name: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class InternalNote:
    """Append-only note left on a ticket by staff."""

    note: str
    added_by_id: str
    added_at: datetime


@dataclass(frozen=True)
class EscalationChange:
    """
    Planned move of a ticket one level up.

    expected_level is the precondition the persisted update is guarded by.
    sla_window and priority are None when they stay untouched.
    """

    expected_level: int
    level: int
    assigned_role: str
    assigned_to_id: str
    status: str
    at: datetime
    sla_window: Optional[SLAWindow] = None
    priority: Optional[str] = None


@dataclass
class Ticket:
    """
    Service request raised by an agent.

    Escalation level only moves 1 -> 2 -> 3, and a resolved ticket no
    longer changes level, status, assignment or SLA fields.
    """

    id: Optional[str]
    ticket_number: str
    raised_by_id: str
    agent_name: str
    category: str
    description: str
    status: str
    priority: str
    escalation_level: int
    assigned_role: str
    assigned_to_id: Optional[str]

    created_at: datetime
    updated_at: datetime

    lead_id: Optional[str] = None
    attachment: Optional[Attachment] = None

    sla_timer_started_at: Optional[datetime] = None
    sla_deadline: Optional[datetime] = None

    notes: List[InternalNote] = field(default_factory=list)

    resolved_at: Optional[datetime] = None
    resolved_by_id: Optional[str] = None
    resolution_note: Optional[str] = None

    def __post_init__(self):
        """Validate ticket on initialization."""
        if not MIN_ESCALATION_LEVEL <= self.escalation_level <= MAX_ESCALATION_LEVEL:
            raise ValueError(f"escalation_level must be within 1..3, got {self.escalation_level}")

        if self.category not in VALID_CATEGORIES:
            raise ValueError(f"unknown category: {self.category}")

        if self.status not in VALID_STATUSES:
            raise ValueError(f"unknown status: {self.status}")

        if (self.sla_timer_started_at and self.sla_deadline
                and self.sla_deadline < self.sla_timer_started_at):
            raise ValueError("sla_deadline cannot be before sla_timer_started_at")

    @property
    def is_resolved(self) -> bool:
        return self.status == TicketStatus.RESOLVED

    @property
    def sla_window(self) -> Optional[SLAWindow]:
        if self.sla_timer_started_at is None or self.sla_deadline is None:
            return None
        return SLAWindow(self.sla_timer_started_at, self.sla_deadline)

    @property
    def can_auto_escalate(self) -> bool:
        """Whether the sweep may still move this ticket up."""
        return not self.is_resolved and self.escalation_level < MAX_ESCALATION_LEVEL

    def is_sla_breached(self, now: datetime) -> bool:
        """Deadline reached. A ticket without a deadline never breaches."""
        return self.sla_deadline is not None and self.sla_deadline <= now

    def plan_escalation(
        self,
        assignee_id: str,
        at: datetime,
        sla_window: Optional[SLAWindow] = None
    ) -> EscalationChange:
        """
        Plan the next escalation step.

        Level 1 -> 2 goes to the regional manager with a fresh SLA window;
        level 2 -> 3 goes to an admin at high priority, SLA fields untouched.
        """
        if self.is_resolved:
            raise TicketAlreadyResolvedException(self.ticket_number)

        if self.escalation_level == 1:
            if sla_window is None:
                raise DomainException("Escalation to regional manager needs a new SLA window")
            return EscalationChange(
                expected_level=1,
                level=2,
                assigned_role=AssignedRole.REGIONAL_MANAGER,
                assigned_to_id=assignee_id,
                status=TicketStatus.ESCALATED_TO_REGIONAL_MANAGER,
                at=at,
                sla_window=sla_window,
            )

        if self.escalation_level == 2:
            return EscalationChange(
                expected_level=2,
                level=3,
                assigned_role=AssignedRole.SUPER_ADMIN,
                assigned_to_id=assignee_id,
                status=TicketStatus.ESCALATED_TO_ADMIN,
                at=at,
                priority=TicketPriority.HIGH,
            )

        raise DomainException(
            f"Ticket {self.ticket_number} is already at the highest escalation level"
        )

    def apply_escalation(self, change: EscalationChange) -> None:
        """Apply a planned escalation to this in-memory ticket."""
        if change.expected_level != self.escalation_level or self.is_resolved:
            raise DomainException(f"Escalation precondition failed for {self.ticket_number}")

        self.escalation_level = change.level
        self.assigned_role = change.assigned_role
        self.assigned_to_id = change.assigned_to_id
        self.status = change.status
        if change.sla_window is not None:
            self.sla_timer_started_at = change.sla_window.timer_started_at
            self.sla_deadline = change.sla_window.deadline
        if change.priority is not None:
            self.priority = change.priority
        self.updated_at = change.at

    def copy(self) -> "Ticket":
        """Detached copy with its own notes list."""
        return replace(self, notes=list(self.notes))


@dataclass
class Notification:
    """
    Message for a user about a ticket event.

    Only the read flag changes after creation.
    """

    id: Optional[str]
    user_id: str
    title: str
    message: str
    type: str
    related_ticket_id: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def mark_read(self, timestamp: Optional[datetime] = None) -> None:
        if self.is_read:
            return
        self.is_read = True
        self.read_at = timestamp or datetime.now(timezone.utc)
