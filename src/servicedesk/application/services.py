"""
Service Desk Application Services
=================================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

- TicketLifecycleService: human-driven operations (create, read, update, resolve)
- EscalationService: the periodic SLA breach sweep
- NotificationService: fire-and-forget notification sink plus the
  recipient-facing notification operations

Every ticket mutation is a conditional update guarded by the state the
caller last saw, so a resolution racing an escalation lets exactly one of
them win.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from src.config import (
    TicketPriority,
    TicketStatus,
    UPDATABLE_STATUSES,
    VALID_ASSIGNED_ROLES,
    VALID_CATEGORIES,
    NotificationType,
)
from src.core import (
    AuthorizationException,
    Clock,
    DuplicateTicketNumberException,
    RepositoryException,
    ResourceNotFoundException,
    StaleTicketStateException,
    TicketAlreadyResolvedException,
    UnassignableTicketException,
    ValidationException,
    utc_now,
)
from src.hierarchy.application import HierarchyResolver, IUserDirectory
from src.hierarchy.domain import Capability, UserProfile, require_capability
from src.servicedesk.domain import (
    Attachment,
    AttachmentUpload,
    EscalationChange,
    EscalationPolicy,
    InternalNote,
    Notification,
    SLACalculator,
    Ticket,
    TicketNumber,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

TICKET_NUMBER_ATTEMPTS = 3


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by internal ID, with its notes."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket; raises DuplicateTicketNumberException on a taken number."""

    @abstractmethod
    async def latest_ticket_number(self, year: int) -> Optional[TicketNumber]:
        """Highest ticket number issued for the year."""

    @abstractmethod
    async def list(
        self,
        filters: dict,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Ticket], int]:
        """Page of tickets (newest first) and the total matching the filters."""

    @abstractmethod
    async def list_escalation_candidates(self, max_level: int) -> List[Ticket]:
        """Non-resolved tickets at or below max_level."""

    @abstractmethod
    async def apply_escalation(self, ticket_id: str, change: EscalationChange) -> bool:
        """Conditional update: only when still at change.expected_level and not resolved."""

    @abstractmethod
    async def update_status_and_assignment(
        self,
        ticket_id: str,
        expected_level: int,
        at: datetime,
        status: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
        assigned_role: Optional[str] = None
    ) -> bool:
        """Conditional update of status and/or assignee on a non-resolved ticket."""

    @abstractmethod
    async def mark_resolved(
        self,
        ticket_id: str,
        expected_level: int,
        resolved_by_id: str,
        resolution_note: str,
        at: datetime
    ) -> bool:
        """Conditional transition to Resolved."""

    @abstractmethod
    async def add_note(self, ticket_id: str, note: InternalNote) -> None:
        """Append an internal note."""

    @abstractmethod
    async def set_attachment(self, ticket_id: str, attachment: Attachment) -> None:
        """Record the stored attachment of a ticket."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit pending changes."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending changes."""


class INotificationRepository(ABC):
    """Interface for notification data access."""

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Create new notification."""

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Notification], int]:
        """Notifications of a user, newest first, and their total."""

    @abstractmethod
    async def count_unread(self, user_id: str) -> int:
        """Number of unread notifications of a user."""

    @abstractmethod
    async def mark_read(self, notification_id: str, user_id: str, at: datetime) -> bool:
        """Mark one of the user's notifications read; False when it is not theirs."""

    @abstractmethod
    async def mark_all_read(self, user_id: str, at: datetime) -> int:
        """Mark all of the user's notifications read."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit pending changes."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending changes."""


class ILeadDirectory(ABC):
    """Interface for lead lookups."""

    @abstractmethod
    async def lead_belongs_to_agent(self, lead_id: str, agent_id: str) -> bool:
        """Whether the lead exists and was submitted by the agent."""


class IDocumentStorage(ABC):
    """Interface for attachment storage."""

    @property
    @abstractmethod
    def max_bytes(self) -> int:
        """Largest accepted attachment size."""

    @abstractmethod
    def validate(self, upload: AttachmentUpload) -> None:
        """Raise ValidationException for an unacceptable file."""

    @abstractmethod
    async def store(
        self,
        upload: AttachmentUpload,
        entity_type: str,
        entity_id: str,
        uploaded_by: str
    ) -> Attachment:
        """Persist the file and return its stored reference."""

    @abstractmethod
    async def discard(self, attachment: Attachment, entity_type: str, entity_id: str) -> None:
        """Remove a stored file whose owning record was never saved."""


class IEscalationPolicyProvider(ABC):
    """Interface for escalation policy access."""

    @abstractmethod
    def get_policy(self) -> EscalationPolicy:
        """Get current escalation policy."""


# ========== Application Services ==========

class NotificationService:
    """
    Notification sink and inbox.

    notify() never raises: a failed notification is rolled back and
    logged, and whatever it reported on stays committed.
    """

    def __init__(self, notification_repository: INotificationRepository, clock: Clock = utc_now):
        self._repo = notification_repository
        self._clock = clock

    async def notify(
        self,
        user_id: Optional[str],
        title: str,
        message: str,
        related_ticket_id: Optional[str],
        notification_type: str
    ) -> Optional[Notification]:
        if not user_id:
            return None

        try:
            created = await self._repo.create(Notification(
                id=None,
                user_id=user_id,
                title=title,
                message=message,
                type=notification_type,
                related_ticket_id=related_ticket_id,
                created_at=self._clock(),
            ))
            await self._repo.commit()
            return created
        except Exception:
            logger.exception(
                "Failed to create notification",
                extra={"user_id": user_id, "ticket_id": related_ticket_id, "type": notification_type}
            )
            try:
                await self._repo.rollback()
            except Exception:
                logger.exception("Rollback after notification failure also failed")
            return None

    async def list_for_user(
        self,
        actor: UserProfile,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Notification], int, int]:
        """Page of the actor's notifications, total count and unread count."""
        notifications, total = await self._repo.list_for_user(actor.id, limit=limit, offset=offset)
        unread = await self._repo.count_unread(actor.id)
        return notifications, total, unread

    async def unread_count(self, actor: UserProfile) -> int:
        return await self._repo.count_unread(actor.id)

    async def mark_read(self, actor: UserProfile, notification_id: str) -> None:
        if not await self._repo.mark_read(notification_id, actor.id, self._clock()):
            raise ResourceNotFoundException("Notification", notification_id)
        await self._repo.commit()

    async def mark_all_read(self, actor: UserProfile) -> int:
        updated = await self._repo.mark_all_read(actor.id, self._clock())
        await self._repo.commit()
        return updated


class TicketLifecycleService:
    """
    Ticket operations driven by people rather than by the sweep.

    Authorization is checked against the role capability table first and
    then against the live hierarchy.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        user_directory: IUserDirectory,
        hierarchy: HierarchyResolver,
        lead_directory: ILeadDirectory,
        document_storage: IDocumentStorage,
        notifications: NotificationService,
        policy_provider: IEscalationPolicyProvider,
        clock: Clock = utc_now
    ):
        self._tickets = ticket_repository
        self._users = user_directory
        self._hierarchy = hierarchy
        self._leads = lead_directory
        self._documents = document_storage
        self._notifications = notifications
        self._policy_provider = policy_provider
        self._clock = clock

    # ----- create -----

    async def create_ticket(
        self,
        actor: UserProfile,
        category: Optional[str],
        description: Optional[str],
        lead_id: Optional[str] = None,
        upload: Optional[AttachmentUpload] = None
    ) -> Ticket:
        """
        Raise a new service request.

        Everything that can reject the request is checked before the
        first write.
        """
        require_capability(actor, Capability.CREATE_TICKET)

        if not category or category not in VALID_CATEGORIES:
            raise ValidationException("Valid category is required", {"allowed": VALID_CATEGORIES})

        description = (description or "").strip()
        if not description:
            raise ValidationException("Description is required")

        assignment = await self._hierarchy.resolve_supervisor(actor.id)
        if assignment is None:
            raise UnassignableTicketException(actor.id)

        if lead_id and not await self._leads.lead_belongs_to_agent(lead_id, actor.id):
            raise ValidationException(
                "Invalid or unauthorized lead selection", {"lead_id": lead_id}
            )

        if upload is not None:
            self._documents.validate(upload)

        now = self._clock()
        calculator = SLACalculator(self._policy_provider.get_policy())
        window = calculator.compute_sla(now, level=1)
        year = calculator.working_hours.localize(now).year

        created = None
        for attempt in range(TICKET_NUMBER_ATTEMPTS):
            latest = await self._tickets.latest_ticket_number(year)
            ticket_number = TicketNumber.next_for_year(year, latest)
            try:
                created = await self._tickets.create(Ticket(
                    id=None,
                    ticket_number=str(ticket_number),
                    raised_by_id=actor.id,
                    agent_name=actor.name,
                    category=category,
                    description=description,
                    lead_id=lead_id or None,
                    status=TicketStatus.OPEN,
                    priority=TicketPriority.MEDIUM,
                    escalation_level=1,
                    assigned_role=assignment.supervisor_role,
                    assigned_to_id=assignment.supervisor_id,
                    sla_timer_started_at=window.timer_started_at,
                    sla_deadline=window.deadline,
                    created_at=now,
                    updated_at=now,
                ))
                break
            except DuplicateTicketNumberException:
                logger.warning(
                    "Ticket number taken, allocating again",
                    extra={"ticket_number": str(ticket_number), "attempt": attempt + 1}
                )
                await self._tickets.rollback()

        if created is None:
            raise RepositoryException("Could not allocate a ticket number", {"year": year})

        attachment = None
        try:
            if upload is not None:
                attachment = await self._documents.store(
                    upload, entity_type="ticket", entity_id=created.id, uploaded_by=actor.id
                )
                await self._tickets.set_attachment(created.id, attachment)
                created.attachment = attachment
            await self._tickets.commit()
        except Exception:
            await self._tickets.rollback()
            if attachment is not None:
                await self._documents.discard(attachment, entity_type="ticket", entity_id=created.id)
            raise

        logger.info(
            "Ticket created",
            extra={
                "ticket_number": created.ticket_number,
                "agent_id": actor.id,
                "assigned_to": assignment.supervisor_id,
                "assigned_role": assignment.supervisor_role,
                "sla_deadline": window.deadline.isoformat(),
            }
        )

        await self._notifications.notify(
            assignment.supervisor_id,
            "New service request assigned by Agent",
            f"{actor.name} – {category}",
            created.id,
            NotificationType.TICKET_ASSIGNED,
        )
        return created

    # ----- read -----

    @staticmethod
    def list_categories() -> List[str]:
        return list(VALID_CATEGORIES)

    async def list_tickets(
        self,
        actor: UserProfile,
        filters: Optional[dict] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Ticket], int]:
        """Tickets visible to the actor through the hierarchy."""
        require_capability(actor, Capability.READ_TICKETS)

        scope = await self._hierarchy.resolve_accessible_agent_ids(actor)
        if scope.is_empty:
            return [], 0

        query = dict(filters or {})
        if not scope.unrestricted:
            query["raised_by_ids"] = sorted(scope.agent_ids)
        return await self._tickets.list(query, limit=limit, offset=offset)

    async def _load_accessible(self, actor: UserProfile, ticket_id: str) -> Ticket:
        ticket = await self._tickets.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        if not await self._hierarchy.can_access_ticket(actor, ticket):
            raise AuthorizationException("Access denied", {"ticket_id": ticket_id})
        return ticket

    async def get_ticket(self, actor: UserProfile, ticket_id: str) -> Ticket:
        require_capability(actor, Capability.READ_TICKETS)
        return await self._load_accessible(actor, ticket_id)

    # ----- update -----

    async def _raise_for_failed_update(self, ticket_id: str) -> None:
        current = await self._tickets.get_by_id(ticket_id)
        if current is not None and current.is_resolved:
            raise TicketAlreadyResolvedException(current.ticket_number)
        raise StaleTicketStateException(ticket_id)

    async def update_ticket(
        self,
        actor: UserProfile,
        ticket_id: str,
        status: Optional[str] = None,
        internal_note: Optional[str] = None,
        reassign_to: Optional[str] = None
    ) -> Ticket:
        """Change status, append a note and/or reassign."""
        require_capability(actor, Capability.UPDATE_TICKET)
        ticket = await self._load_accessible(actor, ticket_id)

        if status is not None:
            if status == TicketStatus.RESOLVED:
                raise ValidationException("Use the resolve endpoint to resolve a ticket")
            if status not in UPDATABLE_STATUSES:
                raise ValidationException("Invalid status", {"allowed": UPDATABLE_STATUSES})

        new_assignee: Optional[UserProfile] = None
        if reassign_to:
            require_capability(actor, Capability.REASSIGN_TICKET)
            new_assignee = await self._users.get_by_id(reassign_to)
            if new_assignee is None:
                raise ResourceNotFoundException("User", reassign_to)
            if new_assignee.role.value not in VALID_ASSIGNED_ROLES:
                raise ValidationException(
                    "Tickets can only be assigned to supervisors, regional managers or admins",
                    {"role": new_assignee.role.value}
                )

        note = (internal_note or "").strip()
        now = self._clock()
        previous_assignee = ticket.assigned_to_id

        if status is not None or new_assignee is not None:
            if ticket.is_resolved:
                raise TicketAlreadyResolvedException(ticket.ticket_number)
            updated = await self._tickets.update_status_and_assignment(
                ticket.id,
                expected_level=ticket.escalation_level,
                at=now,
                status=status,
                assigned_to_id=new_assignee.id if new_assignee else None,
                assigned_role=new_assignee.role.value if new_assignee else None,
            )
            if not updated:
                await self._tickets.rollback()
                await self._raise_for_failed_update(ticket.id)

        if note:
            await self._tickets.add_note(ticket.id, InternalNote(note=note, added_by_id=actor.id, added_at=now))

        await self._tickets.commit()

        if new_assignee is not None:
            logger.info(
                "Ticket reassigned",
                extra={
                    "ticket_number": ticket.ticket_number,
                    "from": previous_assignee,
                    "to": new_assignee.id,
                    "by": actor.id,
                }
            )
            await self._notifications.notify(
                new_assignee.id,
                "Service Request reassigned to you",
                f"SRN {ticket.ticket_number} has been reassigned",
                ticket.id,
                NotificationType.TICKET_REASSIGNED,
            )
            if previous_assignee and previous_assignee != new_assignee.id:
                await self._notifications.notify(
                    previous_assignee,
                    "Service Request reassigned",
                    f"SRN {ticket.ticket_number} has been reassigned to another user",
                    ticket.id,
                    NotificationType.TICKET_REASSIGNED,
                )

        refreshed = await self._tickets.get_by_id(ticket.id)
        return refreshed if refreshed is not None else ticket

    # ----- resolve -----

    async def resolve_ticket(
        self,
        actor: UserProfile,
        ticket_id: str,
        resolution_note: Optional[str] = None
    ) -> Ticket:
        """Close a ticket. Terminal: the sweep never touches it again."""
        require_capability(actor, Capability.RESOLVE_TICKET)
        ticket = await self._load_accessible(actor, ticket_id)

        if ticket.is_resolved:
            raise TicketAlreadyResolvedException(ticket.ticket_number)

        now = self._clock()
        resolved = await self._tickets.mark_resolved(
            ticket.id,
            expected_level=ticket.escalation_level,
            resolved_by_id=actor.id,
            resolution_note=(resolution_note or "").strip(),
            at=now,
        )
        if not resolved:
            await self._tickets.rollback()
            await self._raise_for_failed_update(ticket.id)

        await self._tickets.commit()

        logger.info(
            "Ticket resolved",
            extra={
                "ticket_number": ticket.ticket_number,
                "resolved_by": actor.id,
                "escalation_level": ticket.escalation_level,
            }
        )

        await self._notifications.notify(
            ticket.raised_by_id,
            "Your service request has been resolved",
            f"SRN {ticket.ticket_number} – {ticket.category}",
            ticket.id,
            NotificationType.TICKET_RESOLVED,
        )

        refreshed = await self._tickets.get_by_id(ticket.id)
        return refreshed if refreshed is not None else ticket


@dataclass
class SweepResult:
    """Counters of one escalation sweep."""

    examined: int = 0
    escalated_to_regional_manager: int = 0
    escalated_to_admin: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def escalated(self) -> int:
        return self.escalated_to_regional_manager + self.escalated_to_admin

    def to_dict(self) -> dict:
        return {
            "examined": self.examined,
            "escalated_to_regional_manager": self.escalated_to_regional_manager,
            "escalated_to_admin": self.escalated_to_admin,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class EscalationService:
    """
    Periodic SLA breach sweep.

    1. Load non-resolved tickets at level 1 or 2
    2. Skip those without a deadline or whose deadline is still ahead
    3. Level 1 -> regional manager of the agent's supervisor entity, fresh SLA window
    4. Level 2 -> first active admin, priority High, SLA untouched
    5. Commit each ticket on its own; a failure is logged and the sweep moves on
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        user_directory: IUserDirectory,
        hierarchy: HierarchyResolver,
        notifications: NotificationService,
        policy_provider: IEscalationPolicyProvider,
        clock: Clock = utc_now
    ):
        self._tickets = ticket_repository
        self._users = user_directory
        self._hierarchy = hierarchy
        self._notifications = notifications
        self._policy_provider = policy_provider
        self._clock = clock

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or self._clock()
        calculator = SLACalculator(self._policy_provider.get_policy())
        result = SweepResult()

        candidates = await self._tickets.list_escalation_candidates(max_level=2)

        for ticket in candidates:
            result.examined += 1
            if not ticket.can_auto_escalate or not ticket.is_sla_breached(now):
                continue

            try:
                if ticket.escalation_level == 1:
                    escalated = await self._escalate_to_regional_manager(ticket, now, calculator)
                    if escalated:
                        result.escalated_to_regional_manager += 1
                    else:
                        result.skipped += 1
                else:
                    escalated = await self._escalate_to_admin(ticket, now)
                    if escalated:
                        result.escalated_to_admin += 1
                    else:
                        result.skipped += 1
            except Exception:
                result.failed += 1
                logger.exception(
                    "Escalation failed",
                    extra={"ticket_number": ticket.ticket_number, "escalation_level": ticket.escalation_level}
                )
                try:
                    await self._tickets.rollback()
                except Exception:
                    logger.exception("Rollback after escalation failure also failed")

        logger.info("Escalation sweep finished", extra=result.to_dict())
        return result

    async def _persist(self, ticket: Ticket, change: EscalationChange) -> bool:
        if not await self._tickets.apply_escalation(ticket.id, change):
            await self._tickets.rollback()
            logger.info(
                "Ticket changed since it was selected, not escalating",
                extra={"ticket_number": ticket.ticket_number, "expected_level": change.expected_level}
            )
            return False
        await self._tickets.commit()
        return True

    async def _escalate_to_regional_manager(
        self,
        ticket: Ticket,
        now: datetime,
        calculator: SLACalculator
    ) -> bool:
        regional_manager = await self._hierarchy.resolve_regional_manager(ticket.raised_by_id)
        if regional_manager is None:
            logger.warning(
                "No regional manager for breached ticket, leaving at level 1",
                extra={"ticket_number": ticket.ticket_number, "agent_id": ticket.raised_by_id}
            )
            return False

        window = calculator.compute_sla(now, level=2)
        change = ticket.plan_escalation(regional_manager.id, now, window)
        previous_assignee = ticket.assigned_to_id

        if not await self._persist(ticket, change):
            return False

        logger.info(
            "Ticket escalated to regional manager",
            extra={
                "ticket_number": ticket.ticket_number,
                "assigned_to": regional_manager.id,
                "sla_deadline": window.deadline.isoformat(),
            }
        )

        await self._notifications.notify(
            regional_manager.id,
            "Service Request escalated from RM – No action within SLA",
            f"SRN {ticket.ticket_number} – {ticket.category} requires your attention",
            ticket.id,
            NotificationType.TICKET_ESCALATED,
        )
        if previous_assignee:
            await self._notifications.notify(
                previous_assignee,
                "Service Request escalated",
                f"SRN {ticket.ticket_number} has been escalated to Regional Manager",
                ticket.id,
                NotificationType.TICKET_ESCALATED,
            )
        return True

    async def _escalate_to_admin(self, ticket: Ticket, now: datetime) -> bool:
        admin = await self._users.find_first_active_admin()
        if admin is None:
            logger.warning(
                "No active admin for breached ticket, leaving at level 2",
                extra={"ticket_number": ticket.ticket_number}
            )
            return False

        change = ticket.plan_escalation(admin.id, now)
        previous_assignee = ticket.assigned_to_id

        if not await self._persist(ticket, change):
            return False

        logger.info(
            "Ticket escalated to admin",
            extra={"ticket_number": ticket.ticket_number, "assigned_to": admin.id}
        )

        await self._notifications.notify(
            admin.id,
            "Critical Service Request Escalated – Immediate Attention Required",
            f"SRN {ticket.ticket_number} – {ticket.category} escalated from Regional Manager",
            ticket.id,
            NotificationType.TICKET_ESCALATED,
        )
        if previous_assignee:
            await self._notifications.notify(
                previous_assignee,
                "Service Request escalated to Admin",
                f"SRN {ticket.ticket_number} has been escalated to Admin",
                ticket.id,
                NotificationType.TICKET_ESCALATED,
            )
        return True
