import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

# Bootstrap to ensure tests can import src modules without installing the package.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from src.config import UserStatus  # noqa: E402
from src.hierarchy.application import HierarchyResolver  # noqa: E402
from src.hierarchy.domain import Role, SupervisorEntity, SupervisorKind, UserProfile  # noqa: E402
from src.servicedesk.application import (  # noqa: E402
    EscalationService,
    NotificationService,
    TicketLifecycleService,
)
from src.servicedesk.domain import EscalationPolicy  # noqa: E402
from tests.fakes import (  # noqa: E402
    FrozenClock,
    InMemoryDocumentStorage,
    InMemoryLeadDirectory,
    InMemoryNotificationRepository,
    InMemorySupervisorDirectory,
    InMemoryTicketRepository,
    InMemoryUserDirectory,
    StaticPolicyProvider,
)

IST = ZoneInfo("Asia/Kolkata")


def ist(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=IST)


def _id(n: int) -> str:
    return f"00000000-0000-0000-0000-{n:012d}"


@dataclass
class Hierarchy:
    """
    admin (and a second, higher-id admin), regional manager,
    RM desk owned by rm_owner under the regional manager,
    franchise owned by franchise_owner under the regional manager,
    an orphan RM desk without a regional manager,
    and one agent under each entity plus an unmanaged agent.
    """

    admin: UserProfile
    second_admin: UserProfile
    regional_manager: UserProfile
    rm_owner: UserProfile
    franchise_owner: UserProfile
    orphan_rm_owner: UserProfile
    rm_desk: SupervisorEntity
    franchise: SupervisorEntity
    orphan_desk: SupervisorEntity
    rm_agent: UserProfile
    franchise_agent: UserProfile
    orphan_agent: UserProfile
    unmanaged_agent: UserProfile
    users: InMemoryUserDirectory
    supervisors: InMemorySupervisorDirectory
    resolver: HierarchyResolver


def build_hierarchy() -> Hierarchy:
    admin = UserProfile(_id(1), "Asha Admin", "asha@example.com", Role.SUPER_ADMIN)
    second_admin = UserProfile(_id(2), "Bala Admin", "bala@example.com", Role.SUPER_ADMIN)
    regional = UserProfile(_id(10), "Ravi Regional", "ravi@example.com", Role.REGIONAL_MANAGER)
    rm_owner = UserProfile(_id(20), "Meera RM", "meera@example.com", Role.RELATIONSHIP_MANAGER)
    franchise_owner = UserProfile(_id(30), "Farhan Franchise", "farhan@example.com", Role.FRANCHISE)
    orphan_rm_owner = UserProfile(_id(40), "Omar RM", "omar@example.com", Role.RELATIONSHIP_MANAGER)

    rm_desk = SupervisorEntity(_id(100), SupervisorKind.RELATIONSHIP_MANAGER, "North Desk",
                               owner_id=rm_owner.id, regional_manager_id=regional.id)
    franchise = SupervisorEntity(_id(200), SupervisorKind.FRANCHISE, "City Franchise",
                                 owner_id=franchise_owner.id, regional_manager_id=regional.id)
    orphan_desk = SupervisorEntity(_id(300), SupervisorKind.RELATIONSHIP_MANAGER, "South Desk",
                                   owner_id=orphan_rm_owner.id, regional_manager_id=None)

    rm_agent = UserProfile(_id(1000), "Arjun Agent", "arjun@example.com", Role.AGENT,
                           managed_by_id=rm_desk.id, managed_by_model=SupervisorKind.RELATIONSHIP_MANAGER)
    franchise_agent = UserProfile(_id(2000), "Priya Agent", "priya@example.com", Role.AGENT,
                                  managed_by_id=franchise.id, managed_by_model=SupervisorKind.FRANCHISE)
    orphan_agent = UserProfile(_id(3000), "Dev Agent", "dev@example.com", Role.AGENT,
                               managed_by_id=orphan_desk.id, managed_by_model=SupervisorKind.RELATIONSHIP_MANAGER)
    unmanaged_agent = UserProfile(_id(4000), "Lone Agent", "lone@example.com", Role.AGENT)

    users = InMemoryUserDirectory([
        admin, second_admin, regional, rm_owner, franchise_owner, orphan_rm_owner,
        rm_agent, franchise_agent, orphan_agent, unmanaged_agent,
    ])
    supervisors = InMemorySupervisorDirectory([rm_desk, franchise, orphan_desk])

    return Hierarchy(
        admin=admin,
        second_admin=second_admin,
        regional_manager=regional,
        rm_owner=rm_owner,
        franchise_owner=franchise_owner,
        orphan_rm_owner=orphan_rm_owner,
        rm_desk=rm_desk,
        franchise=franchise,
        orphan_desk=orphan_desk,
        rm_agent=rm_agent,
        franchise_agent=franchise_agent,
        orphan_agent=orphan_agent,
        unmanaged_agent=unmanaged_agent,
        users=users,
        supervisors=supervisors,
        resolver=HierarchyResolver(users, supervisors),
    )


def deactivate(user: UserProfile) -> UserProfile:
    return UserProfile(
        id=user.id, name=user.name, email=user.email, role=user.role,
        status=UserStatus.INACTIVE,
        managed_by_id=user.managed_by_id, managed_by_model=user.managed_by_model,
    )


@pytest.fixture
def hierarchy() -> Hierarchy:
    return build_hierarchy()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(ist(2025, 6, 10, 10, 0))


@pytest.fixture
def policy_provider() -> StaticPolicyProvider:
    return StaticPolicyProvider(EscalationPolicy(timezone="Asia/Kolkata"))


@pytest.fixture
def ticket_repo() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def notification_repo() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def notifications(notification_repo, clock) -> NotificationService:
    return NotificationService(notification_repo, clock=clock)


@pytest.fixture
def documents() -> InMemoryDocumentStorage:
    return InMemoryDocumentStorage()


@pytest.fixture
def leads(hierarchy) -> InMemoryLeadDirectory:
    return InMemoryLeadDirectory({
        _id(9001): hierarchy.rm_agent.id,
        _id(9002): hierarchy.franchise_agent.id,
    })


@pytest.fixture
def lifecycle(hierarchy, ticket_repo, leads, documents, notifications, policy_provider, clock) -> TicketLifecycleService:
    return TicketLifecycleService(
        ticket_repository=ticket_repo,
        user_directory=hierarchy.users,
        hierarchy=hierarchy.resolver,
        lead_directory=leads,
        document_storage=documents,
        notifications=notifications,
        policy_provider=policy_provider,
        clock=clock,
    )


@pytest.fixture
def escalation(hierarchy, ticket_repo, notifications, policy_provider, clock) -> EscalationService:
    return EscalationService(
        ticket_repository=ticket_repo,
        user_directory=hierarchy.users,
        hierarchy=hierarchy.resolver,
        notifications=notifications,
        policy_provider=policy_provider,
        clock=clock,
    )
