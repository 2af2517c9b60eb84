"""
Service Desk Infrastructure Repositories
========================================

Concrete implementations of repository interfaces using SQLAlchemy.

Ticket state changes are single conditional UPDATE statements guarded by
the escalation level the caller read and by the ticket not being
resolved; the affected row count says whether the change won.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import TicketStatus
from src.core import DuplicateTicketNumberException, RepositoryException
from src.hierarchy.infrastructure.repositories import parse_uuid
from src.servicedesk.application import (
    ILeadDirectory,
    INotificationRepository,
    ITicketRepository,
)
from src.servicedesk.domain import (
    Attachment,
    EscalationChange,
    InternalNote,
    Notification,
    Ticket,
    TicketNumber,
)
from src.servicedesk.infrastructure.models import (
    LeadModel,
    NotificationModel,
    TicketModel,
    TicketNoteModel,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps go in and come out as UTC; drivers without time zone support hand them back naive."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _str_or_none(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def _require_uuid(value: str, what: str) -> UUID:
    parsed = parse_uuid(value)
    if parsed is None:
        raise RepositoryException(f"Invalid {what} id: {value}")
    return parsed


def to_ticket(model: TicketModel, notes: Optional[List[TicketNoteModel]] = None) -> Ticket:
    """Map a ticket row (and its note rows) to the domain entity."""
    attachment = None
    if model.attachment_url:
        attachment = Attachment(
            url=model.attachment_url,
            file_name=model.attachment_file_name or "",
            original_name=model.attachment_original_name or "",
        )

    return Ticket(
        id=str(model.id),
        ticket_number=model.ticket_number,
        raised_by_id=str(model.raised_by_id),
        agent_name=model.agent_name,
        category=model.category,
        description=model.description,
        lead_id=_str_or_none(model.lead_id),
        attachment=attachment,
        status=model.status,
        priority=model.priority,
        escalation_level=model.escalation_level,
        assigned_role=model.assigned_role,
        assigned_to_id=_str_or_none(model.assigned_to_id),
        sla_timer_started_at=as_utc(model.sla_timer_started_at),
        sla_deadline=as_utc(model.sla_deadline),
        notes=[
            InternalNote(note=n.note, added_by_id=str(n.added_by_id), added_at=as_utc(n.added_at))
            for n in (notes or [])
        ],
        resolved_at=as_utc(model.resolved_at),
        resolved_by_id=_str_or_none(model.resolved_by_id),
        resolution_note=model.resolution_note,
        created_at=as_utc(model.created_at),
        updated_at=as_utc(model.updated_at),
    )


def to_notification(model: NotificationModel) -> Notification:
    return Notification(
        id=str(model.id),
        user_id=str(model.user_id),
        title=model.title,
        message=model.message,
        type=model.type,
        related_ticket_id=_str_or_none(model.related_ticket_id),
        is_read=model.is_read,
        read_at=as_utc(model.read_at),
        created_at=as_utc(model.created_at),
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    def _guarded(self, ticket_uuid: UUID, expected_level: int):
        return and_(
            TicketModel.id == ticket_uuid,
            TicketModel.escalation_level == expected_level,
            TicketModel.status != TicketStatus.RESOLVED,
        )

    async def _execute_update(self, stmt) -> bool:
        result = await self._session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by internal ID."""
        ticket_uuid = parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_uuid)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return None

        notes = await self._session.execute(
            select(TicketNoteModel)
            .where(TicketNoteModel.ticket_id == ticket_uuid)
            .order_by(TicketNoteModel.added_at.asc(), TicketNoteModel.seq.asc())
        )
        return to_ticket(model, list(notes.scalars().all()))

    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""
        model = TicketModel(
            id=uuid4(),
            ticket_number=ticket.ticket_number,
            raised_by_id=_require_uuid(ticket.raised_by_id, "agent"),
            agent_name=ticket.agent_name,
            category=ticket.category,
            description=ticket.description,
            lead_id=parse_uuid(ticket.lead_id),
            status=ticket.status,
            priority=ticket.priority,
            escalation_level=ticket.escalation_level,
            assigned_role=ticket.assigned_role,
            assigned_to_id=parse_uuid(ticket.assigned_to_id),
            sla_timer_started_at=as_utc(ticket.sla_timer_started_at),
            sla_deadline=as_utc(ticket.sla_deadline),
            created_at=as_utc(ticket.created_at),
            updated_at=as_utc(ticket.updated_at),
        )

        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateTicketNumberException(ticket.ticket_number) from e

        created = ticket.copy()
        created.id = str(model.id)
        return created

    async def latest_ticket_number(self, year: int) -> Optional[TicketNumber]:
        # Fixed-width numbers sort lexicographically
        stmt = select(func.max(TicketModel.ticket_number)).where(
            TicketModel.ticket_number.like(f"{TicketNumber.prefix_for(year)}%")
        )
        result = await self._session.execute(stmt)
        latest = result.scalar_one_or_none()
        return TicketNumber.parse(latest) if latest else None

    async def list(
        self,
        filters: dict,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Ticket], int]:
        """List tickets with filters."""
        conditions = []
        if "raised_by_ids" in filters:
            uuids = [u for u in (parse_uuid(i) for i in filters["raised_by_ids"]) if u is not None]
            if not uuids:
                return [], 0
            conditions.append(TicketModel.raised_by_id.in_(uuids))

        if "status" in filters:
            status_list = filters["status"]
            if isinstance(status_list, list):
                conditions.append(TicketModel.status.in_(status_list))
            else:
                conditions.append(TicketModel.status == status_list)

        if "category" in filters:
            conditions.append(TicketModel.category == filters["category"])

        if "escalation_level" in filters:
            conditions.append(TicketModel.escalation_level == filters["escalation_level"])

        count_stmt = select(func.count()).select_from(TicketModel)
        stmt = select(TicketModel)
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
            stmt = stmt.where(and_(*conditions))

        total = (await self._session.execute(count_stmt)).scalar_one()

        # Order by created_at descending
        stmt = stmt.order_by(TicketModel.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return [to_ticket(m) for m in result.scalars().all()], total

    async def list_escalation_candidates(self, max_level: int) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(
                TicketModel.status != TicketStatus.RESOLVED,
                TicketModel.escalation_level <= max_level,
                TicketModel.sla_deadline.is_not(None),
            )
            .order_by(TicketModel.sla_deadline.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)

        candidates = []
        for model in result.scalars().all():
            try:
                candidates.append(to_ticket(model))
            except ValueError as e:
                logger.error(
                    "Skipping unreadable ticket row",
                    extra={"ticket_id": str(model.id), "ticket_number": model.ticket_number, "error": str(e)}
                )
        return candidates

    async def apply_escalation(self, ticket_id: str, change: EscalationChange) -> bool:
        ticket_uuid = parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        values = {
            "escalation_level": change.level,
            "assigned_role": change.assigned_role,
            "assigned_to_id": _require_uuid(change.assigned_to_id, "assignee"),
            "status": change.status,
            "updated_at": as_utc(change.at),
        }
        if change.sla_window is not None:
            values["sla_timer_started_at"] = as_utc(change.sla_window.timer_started_at)
            values["sla_deadline"] = as_utc(change.sla_window.deadline)
        if change.priority is not None:
            values["priority"] = change.priority

        return await self._execute_update(
            update(TicketModel)
            .where(self._guarded(ticket_uuid, change.expected_level))
            .values(**values)
        )

    async def update_status_and_assignment(
        self,
        ticket_id: str,
        expected_level: int,
        at: datetime,
        status: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
        assigned_role: Optional[str] = None
    ) -> bool:
        ticket_uuid = parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        values = {"updated_at": as_utc(at)}
        if status is not None:
            values["status"] = status
        if assigned_to_id is not None:
            values["assigned_to_id"] = _require_uuid(assigned_to_id, "assignee")
            values["assigned_role"] = assigned_role

        return await self._execute_update(
            update(TicketModel)
            .where(self._guarded(ticket_uuid, expected_level))
            .values(**values)
        )

    async def mark_resolved(
        self,
        ticket_id: str,
        expected_level: int,
        resolved_by_id: str,
        resolution_note: str,
        at: datetime
    ) -> bool:
        ticket_uuid = parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        return await self._execute_update(
            update(TicketModel)
            .where(self._guarded(ticket_uuid, expected_level))
            .values(
                status=TicketStatus.RESOLVED,
                resolved_at=as_utc(at),
                resolved_by_id=_require_uuid(resolved_by_id, "user"),
                resolution_note=resolution_note,
                updated_at=as_utc(at),
            )
        )

    async def add_note(self, ticket_id: str, note: InternalNote) -> None:
        ticket_uuid = _require_uuid(ticket_id, "ticket")
        self._session.add(TicketNoteModel(
            ticket_id=ticket_uuid,
            note=note.note,
            added_by_id=_require_uuid(note.added_by_id, "user"),
            added_at=as_utc(note.added_at),
        ))
        await self._session.execute(
            update(TicketModel)
            .where(TicketModel.id == ticket_uuid)
            .values(updated_at=as_utc(note.added_at))
            .execution_options(synchronize_session=False)
        )
        await self._session.flush()

    async def set_attachment(self, ticket_id: str, attachment: Attachment) -> None:
        ticket_uuid = _require_uuid(ticket_id, "ticket")
        await self._session.execute(
            update(TicketModel)
            .where(TicketModel.id == ticket_uuid)
            .values(
                attachment_url=attachment.url,
                attachment_file_name=attachment.file_name,
                attachment_original_name=attachment.original_name,
            )
            .execution_options(synchronize_session=False)
        )

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


class SQLAlchemyNotificationRepository(INotificationRepository):
    """
    SQLAlchemy implementation of notification repository.

    Handles persistence of Notification entities.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        """Create new notification."""
        model = NotificationModel(
            id=uuid4() if not notification.id else UUID(notification.id),
            user_id=_require_uuid(notification.user_id, "user"),
            title=notification.title,
            message=notification.message,
            type=notification.type,
            related_ticket_id=parse_uuid(notification.related_ticket_id),
            is_read=notification.is_read,
            read_at=as_utc(notification.read_at),
            created_at=as_utc(notification.created_at),
        )

        self._session.add(model)
        await self._session.flush()

        # Update notification with generated ID
        notification.id = str(model.id)

        return notification

    async def list_for_user(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Notification], int]:
        user_uuid = parse_uuid(user_id)
        if user_uuid is None:
            return [], 0

        total = (await self._session.execute(
            select(func.count()).select_from(NotificationModel).where(NotificationModel.user_id == user_uuid)
        )).scalar_one()

        stmt = (
            select(NotificationModel)
            .where(NotificationModel.user_id == user_uuid)
            .order_by(NotificationModel.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return [to_notification(m) for m in result.scalars().all()], total

    async def count_unread(self, user_id: str) -> int:
        user_uuid = parse_uuid(user_id)
        if user_uuid is None:
            return 0

        stmt = select(func.count()).select_from(NotificationModel).where(
            NotificationModel.user_id == user_uuid,
            NotificationModel.is_read == False,  # noqa: E712
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def mark_read(self, notification_id: str, user_id: str, at: datetime) -> bool:
        notification_uuid = parse_uuid(notification_id)
        user_uuid = parse_uuid(user_id)
        if notification_uuid is None or user_uuid is None:
            return False

        stmt = select(NotificationModel).where(
            NotificationModel.id == notification_uuid,
            NotificationModel.user_id == user_uuid,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return False

        if not model.is_read:
            model.is_read = True
            model.read_at = as_utc(at)
            await self._session.flush()
        return True

    async def mark_all_read(self, user_id: str, at: datetime) -> int:
        user_uuid = parse_uuid(user_id)
        if user_uuid is None:
            return 0

        result = await self._session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.user_id == user_uuid,
                NotificationModel.is_read == False,  # noqa: E712
            )
            .values(is_read=True, read_at=as_utc(at))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


class SQLAlchemyLeadDirectory(ILeadDirectory):
    """SQLAlchemy implementation of the lead ownership check."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def lead_belongs_to_agent(self, lead_id: str, agent_id: str) -> bool:
        lead_uuid = parse_uuid(lead_id)
        agent_uuid = parse_uuid(agent_id)
        if lead_uuid is None or agent_uuid is None:
            return False

        stmt = select(LeadModel.id).where(LeadModel.id == lead_uuid, LeadModel.agent_id == agent_uuid)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None
