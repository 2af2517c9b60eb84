"""
Hierarchy Domain Entities
=========================

Pure Python domain entities for the supervision hierarchy:

    agent -> {RelationshipManager | Franchise} -> owner user
                                              -> regional manager user

Roles are a closed enum and everything a role may do is listed in a
single capability table, so the authorization matrix can be checked
without going through the ticket services.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from src.config import AssignedRole, UserStatus
from src.core import AuthorizationException


class Role(str, Enum):
    """Actor roles taking part in the service request workflow."""
    AGENT = "agent"
    RELATIONSHIP_MANAGER = "relationship_manager"
    FRANCHISE = "franchise"
    REGIONAL_MANAGER = "regional_manager"
    SUPER_ADMIN = "super_admin"


class SupervisorKind(str, Enum):
    """Discriminator of the entity an agent is managed by."""
    RELATIONSHIP_MANAGER = "RelationshipManager"
    FRANCHISE = "Franchise"

    @property
    def owner_role(self) -> Role:
        """Role held by the owner of an entity of this kind."""
        if self is SupervisorKind.RELATIONSHIP_MANAGER:
            return Role.RELATIONSHIP_MANAGER
        return Role.FRANCHISE


class Capability(str, Enum):
    """Actions on service requests guarded by role."""
    CREATE_TICKET = "create_ticket"
    READ_TICKETS = "read_tickets"
    UPDATE_TICKET = "update_ticket"
    REASSIGN_TICKET = "reassign_ticket"
    RESOLVE_TICKET = "resolve_ticket"


# Admins escalate and reassign but never close tickets.
ROLE_CAPABILITIES: dict[Role, FrozenSet[Capability]] = {
    Role.AGENT: frozenset({
        Capability.CREATE_TICKET,
        Capability.READ_TICKETS,
    }),
    Role.RELATIONSHIP_MANAGER: frozenset({
        Capability.READ_TICKETS,
        Capability.UPDATE_TICKET,
        Capability.RESOLVE_TICKET,
    }),
    Role.FRANCHISE: frozenset({
        Capability.READ_TICKETS,
        Capability.UPDATE_TICKET,
        Capability.RESOLVE_TICKET,
    }),
    Role.REGIONAL_MANAGER: frozenset({
        Capability.READ_TICKETS,
        Capability.UPDATE_TICKET,
        Capability.REASSIGN_TICKET,
        Capability.RESOLVE_TICKET,
    }),
    Role.SUPER_ADMIN: frozenset({
        Capability.READ_TICKETS,
        Capability.UPDATE_TICKET,
        Capability.REASSIGN_TICKET,
    }),
}

_DENIED_MESSAGES = {
    Capability.CREATE_TICKET: "Only agents can raise tickets",
    Capability.REASSIGN_TICKET: "Only admins and regional managers can reassign tickets",
    Capability.RESOLVE_TICKET: "Admin cannot resolve tickets. You can reassign or add notes.",
}


def has_capability(role: Role, capability: Capability) -> bool:
    """Check the capability table for a role."""
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def require_capability(actor: "UserProfile", capability: Capability) -> None:
    """Raise AuthorizationException unless the actor's role grants the capability."""
    if not has_capability(actor.role, capability):
        raise AuthorizationException(
            _DENIED_MESSAGES.get(capability, "Access denied"),
            {"role": actor.role.value, "capability": capability.value}
        )


@dataclass(frozen=True)
class UserProfile:
    """
    A user of the back office as seen by the ticket workflow.

    Agents carry a reference to the entity managing them; every other
    role leaves managed_by_id/managed_by_model unset.
    """

    id: str
    name: str
    email: str
    role: Role
    status: str = UserStatus.ACTIVE
    managed_by_id: Optional[str] = None
    managed_by_model: Optional[SupervisorKind] = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role is Role.SUPER_ADMIN


@dataclass(frozen=True)
class SupervisorEntity:
    """A RelationshipManager or Franchise record."""

    id: str
    kind: SupervisorKind
    name: str
    owner_id: Optional[str] = None
    regional_manager_id: Optional[str] = None


@dataclass(frozen=True)
class SupervisorAssignment:
    """Who a new ticket from an agent goes to."""

    supervisor_id: str
    supervisor_role: str
    entity_id: str
    entity_kind: SupervisorKind
    regional_manager_id: Optional[str] = None


def assigned_role_for(kind: SupervisorKind) -> str:
    """Ticket assigned-role value for the owner of a supervisor entity."""
    if kind is SupervisorKind.RELATIONSHIP_MANAGER:
        return AssignedRole.RELATIONSHIP_MANAGER
    return AssignedRole.FRANCHISE


@dataclass(frozen=True)
class AccessScope:
    """
    Set of agents whose tickets an actor may see.

    An unrestricted scope means "no filter" and is distinct from an
    empty set of agents, which means "nothing".
    """

    unrestricted: bool = False
    agent_ids: FrozenSet[str] = frozenset()

    @classmethod
    def everything(cls) -> "AccessScope":
        return cls(unrestricted=True)

    @classmethod
    def only(cls, agent_ids: Iterable[str]) -> "AccessScope":
        return cls(unrestricted=False, agent_ids=frozenset(agent_ids))

    @property
    def is_empty(self) -> bool:
        return not self.unrestricted and not self.agent_ids

    def includes(self, agent_id: str) -> bool:
        return self.unrestricted or agent_id in self.agent_ids
