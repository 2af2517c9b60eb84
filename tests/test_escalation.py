"""
Tests for the escalation sweep and its scheduler.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from src.config import AssignedRole, NotificationType, TicketCategory, TicketPriority, TicketStatus
from src.servicedesk.application import SweepResult
from src.servicedesk.domain import Ticket
from src.servicedesk.infrastructure import EscalationScheduler
from tests.conftest import deactivate, ist
from tests.fakes import FrozenClock, StaticPolicyProvider


def seed_ticket(repo, agent, assignee_id, level=1, deadline=None, status=None, number=1, **overrides) -> Ticket:
    status = status or {
        1: TicketStatus.OPEN,
        2: TicketStatus.ESCALATED_TO_REGIONAL_MANAGER,
        3: TicketStatus.ESCALATED_TO_ADMIN,
    }[level]
    role = {
        1: AssignedRole.RELATIONSHIP_MANAGER,
        2: AssignedRole.REGIONAL_MANAGER,
        3: AssignedRole.SUPER_ADMIN,
    }[level]
    ticket = Ticket(
        id=None,
        ticket_number=f"SRN-2025-{number:06d}",
        raised_by_id=agent.id,
        agent_name=agent.name,
        category=TicketCategory.COMMISSION_ISSUE,
        description="Commission for April not credited",
        status=status,
        priority=TicketPriority.MEDIUM,
        escalation_level=level,
        assigned_role=role,
        assigned_to_id=assignee_id,
        sla_timer_started_at=ist(2025, 6, 10, 8, 0),
        sla_deadline=deadline or ist(2025, 6, 10, 10, 0),
        created_at=ist(2025, 6, 10, 8, 0),
        updated_at=ist(2025, 6, 10, 8, 0),
        **overrides,
    )
    return repo.put(ticket)


NOW = ist(2025, 6, 10, 12, 30)


class TestSweepLevelOne:

    @pytest.mark.asyncio
    async def test_breached_ticket_goes_to_regional_manager(self, escalation, hierarchy, ticket_repo, notification_repo):
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.rm_owner.id)

        result = await escalation.run_sweep(NOW)

        stored = ticket_repo.stored(ticket.id)
        assert stored.escalation_level == 2
        assert stored.status == TicketStatus.ESCALATED_TO_REGIONAL_MANAGER
        assert stored.assigned_role == AssignedRole.REGIONAL_MANAGER
        assert stored.assigned_to_id == hierarchy.regional_manager.id
        # Fresh window anchored at the moment of escalation
        assert stored.sla_timer_started_at == NOW
        assert stored.sla_deadline == ist(2025, 6, 10, 14, 30)
        assert stored.priority == TicketPriority.MEDIUM

        assert result.examined == 1
        assert result.escalated_to_regional_manager == 1
        assert result.escalated == 1

        to_regional = notification_repo.for_user(hierarchy.regional_manager.id)
        assert [n.title for n in to_regional] == ["Service Request escalated from RM – No action within SLA"]
        assert to_regional[0].message == f"SRN {ticket.ticket_number} – Commission Issue requires your attention"
        assert to_regional[0].type == NotificationType.TICKET_ESCALATED
        assert to_regional[0].related_ticket_id == ticket.id

        to_previous = notification_repo.for_user(hierarchy.rm_owner.id)
        assert [n.message for n in to_previous] == [
            f"SRN {ticket.ticket_number} has been escalated to Regional Manager"
        ]

    @pytest.mark.asyncio
    async def test_escalation_late_in_day_spills_into_next_morning(self, escalation, hierarchy, ticket_repo):
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.rm_owner.id)

        await escalation.run_sweep(ist(2025, 6, 10, 17, 0))

        assert ticket_repo.stored(ticket.id).sla_deadline == ist(2025, 6, 11, 8, 0)

    @pytest.mark.asyncio
    async def test_ticket_within_sla_is_left_alone(self, escalation, hierarchy, ticket_repo, notification_repo):
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.rm_owner.id,
                             deadline=ist(2025, 6, 10, 13, 0))

        result = await escalation.run_sweep(NOW)

        assert ticket_repo.stored(ticket.id).escalation_level == 1
        assert result == SweepResult(examined=1)
        assert notification_repo.notifications == []

    @pytest.mark.asyncio
    async def test_missing_regional_manager_skips(self, escalation, hierarchy, ticket_repo, notification_repo):
        ticket = seed_ticket(ticket_repo, hierarchy.orphan_agent, hierarchy.orphan_rm_owner.id)

        result = await escalation.run_sweep(NOW)

        stored = ticket_repo.stored(ticket.id)
        assert stored.escalation_level == 1
        assert stored.status == TicketStatus.OPEN
        assert result.skipped == 1
        assert result.failed == 0
        assert notification_repo.notifications == []

    @pytest.mark.asyncio
    async def test_second_sweep_does_not_escalate_again(self, escalation, hierarchy, ticket_repo):
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.rm_owner.id)

        await escalation.run_sweep(NOW)
        result = await escalation.run_sweep(ist(2025, 6, 10, 12, 35))

        assert ticket_repo.stored(ticket.id).escalation_level == 2
        assert result.escalated == 0


class TestSweepLevelTwo:

    @pytest.mark.asyncio
    async def test_breached_ticket_goes_to_lowest_id_admin(self, escalation, hierarchy, ticket_repo, notification_repo):
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.regional_manager.id, level=2)

        result = await escalation.run_sweep(NOW)

        stored = ticket_repo.stored(ticket.id)
        assert stored.escalation_level == 3
        assert stored.status == TicketStatus.ESCALATED_TO_ADMIN
        assert stored.assigned_role == AssignedRole.SUPER_ADMIN
        assert stored.assigned_to_id == hierarchy.admin.id
        assert stored.priority == TicketPriority.HIGH
        # SLA fields untouched at the top level
        assert stored.sla_deadline == ist(2025, 6, 10, 10, 0)
        assert result.escalated_to_admin == 1

        to_admin = notification_repo.for_user(hierarchy.admin.id)
        assert to_admin[0].title == "Critical Service Request Escalated – Immediate Attention Required"
        assert to_admin[0].message == f"SRN {ticket.ticket_number} – Commission Issue escalated from Regional Manager"
        to_regional = notification_repo.for_user(hierarchy.regional_manager.id)
        assert to_regional[0].title == "Service Request escalated to Admin"
        assert notification_repo.for_user(hierarchy.second_admin.id) == []

    @pytest.mark.asyncio
    async def test_inactive_admin_is_passed_over(self, escalation, hierarchy, ticket_repo):
        hierarchy.users.add(deactivate(hierarchy.admin))
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.regional_manager.id, level=2)

        await escalation.run_sweep(NOW)

        assert ticket_repo.stored(ticket.id).assigned_to_id == hierarchy.second_admin.id

    @pytest.mark.asyncio
    async def test_no_active_admin_skips(self, escalation, hierarchy, ticket_repo):
        hierarchy.users.add(deactivate(hierarchy.admin))
        hierarchy.users.add(deactivate(hierarchy.second_admin))
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.regional_manager.id, level=2)

        result = await escalation.run_sweep(NOW)

        stored = ticket_repo.stored(ticket.id)
        assert stored.escalation_level == 2
        assert stored.assigned_to_id == hierarchy.regional_manager.id
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_level_three_and_resolved_tickets_are_never_touched(self, escalation, hierarchy, ticket_repo):
        top = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.admin.id, level=3, number=1)
        resolved = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.rm_owner.id,
                               status=TicketStatus.RESOLVED, number=2)

        result = await escalation.run_sweep(NOW)

        assert result.examined == 0
        assert ticket_repo.stored(top.id).escalation_level == 3
        assert ticket_repo.stored(resolved.id).escalation_level == 1
        assert ticket_repo.stored(resolved.id).status == TicketStatus.RESOLVED


class TestSweepFailureHandling:

    @pytest.mark.asyncio
    async def test_one_failing_ticket_does_not_stop_the_sweep(self, escalation, hierarchy, ticket_repo):
        broken = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.rm_owner.id, number=1)
        healthy = seed_ticket(ticket_repo, hierarchy.franchise_agent, hierarchy.franchise_owner.id, number=2)
        ticket_repo.fail_escalation_for.add(broken.id)

        result = await escalation.run_sweep(NOW)

        assert result.failed == 1
        assert result.escalated_to_regional_manager == 1
        assert ticket_repo.stored(broken.id).escalation_level == 1
        assert ticket_repo.stored(healthy.id).escalation_level == 2
        assert ticket_repo.rollbacks >= 1

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_escalation(self, escalation, hierarchy, ticket_repo, notification_repo):
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.rm_owner.id)
        notification_repo.fail_for_users.add(hierarchy.regional_manager.id)

        result = await escalation.run_sweep(NOW)

        assert result.escalated_to_regional_manager == 1
        assert result.failed == 0
        assert ticket_repo.stored(ticket.id).escalation_level == 2
        assert notification_repo.rollbacks == 1
        # The other recipient is still told
        assert len(notification_repo.for_user(hierarchy.rm_owner.id)) == 1

    @pytest.mark.asyncio
    async def test_resolution_racing_the_sweep_wins(self, escalation, hierarchy, ticket_repo, notification_repo):
        ticket = seed_ticket(ticket_repo, hierarchy.rm_agent, hierarchy.rm_owner.id)

        def resolve_concurrently():
            stored = ticket_repo.stored(ticket.id)
            stored.status = TicketStatus.RESOLVED

        ticket_repo.before_next_update = resolve_concurrently

        result = await escalation.run_sweep(NOW)

        stored = ticket_repo.stored(ticket.id)
        assert stored.status == TicketStatus.RESOLVED
        assert stored.escalation_level == 1
        assert result.skipped == 1
        assert notification_repo.notifications == []


class TestEscalationScheduler:

    @pytest.fixture
    def recorded(self):
        return []

    @pytest.fixture
    def sweep(self, recorded):
        async def run(now: datetime) -> SweepResult:
            recorded.append(now)
            return SweepResult(examined=3)
        return run

    @pytest.mark.asyncio
    async def test_tick_runs_sweep_inside_working_hours(self, sweep, recorded):
        scheduler = EscalationScheduler(sweep, StaticPolicyProvider(), clock=FrozenClock(NOW))

        result = await scheduler.tick()

        assert result == SweepResult(examined=3)
        assert recorded == [NOW]

    @pytest.mark.asyncio
    async def test_tick_outside_working_hours_is_skipped(self, sweep, recorded):
        scheduler = EscalationScheduler(sweep, StaticPolicyProvider(), clock=FrozenClock(ist(2025, 6, 10, 21, 0)))

        assert await scheduler.tick() is None
        assert recorded == []

    @pytest.mark.asyncio
    async def test_clock_drives_ticks_without_waiting(self, sweep, recorded):
        clock = FrozenClock(ist(2025, 6, 10, 6, 55))
        scheduler = EscalationScheduler(sweep, StaticPolicyProvider(), clock=clock)

        for hour, minute in ((6, 55), (7, 0), (7, 5)):
            clock.now = ist(2025, 6, 10, hour, minute)
            await scheduler.tick()

        assert recorded == [ist(2025, 6, 10, 7, 0), ist(2025, 6, 10, 7, 5)]

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self):
        release = asyncio.Event()
        calls = []

        async def slow_sweep(now):
            calls.append(now)
            await release.wait()
            return SweepResult(examined=1)

        scheduler = EscalationScheduler(slow_sweep, StaticPolicyProvider(), clock=FrozenClock(NOW))

        first = asyncio.create_task(scheduler.tick())
        await asyncio.sleep(0)
        second = await scheduler.tick()
        release.set()
        first_result = await first

        assert second is None
        assert first_result == SweepResult(examined=1)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_sweep_error_is_contained(self):
        failing_sweep = AsyncMock(side_effect=RuntimeError("database unavailable"))
        scheduler = EscalationScheduler(failing_sweep, StaticPolicyProvider(), clock=FrozenClock(NOW))

        assert await scheduler.tick() is None
        # The guard is released for the next tick
        assert await scheduler.tick() is None
        assert failing_sweep.await_count == 2
        failing_sweep.assert_awaited_with(NOW)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, sweep):
        scheduler = EscalationScheduler(sweep, StaticPolicyProvider(), interval_minutes=5, clock=FrozenClock(NOW))

        await scheduler.start()
        assert scheduler.is_running
        await scheduler.start()
        assert scheduler.is_running

        await scheduler.stop()
        assert not scheduler.is_running
