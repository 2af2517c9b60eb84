"""
Hierarchy Application Services
==============================

Resolves who supervises an agent and which agents an actor can see.

The ownership graph is a shallow two-hop lookup
(agent -> supervisor entity -> owner / regional manager), resolved
through two directory calls rather than an object graph, so the
resolver stays testable against in-memory directories.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Protocol, Set

from src.hierarchy.domain import (
    AccessScope,
    Role,
    SupervisorAssignment,
    SupervisorEntity,
    SupervisorKind,
    UserProfile,
    assigned_role_for,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Directory Interfaces (Dependency Inversion) ==========

class IUserDirectory(ABC):
    """Interface for user lookups."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[UserProfile]:
        """Get a user by id."""

    @abstractmethod
    async def list_agent_ids_managed_by(
        self,
        kind: SupervisorKind,
        entity_ids: Iterable[str]
    ) -> Set[str]:
        """Ids of agents whose managed_by points at one of the given entities of this kind."""

    @abstractmethod
    async def find_first_active_admin(self) -> Optional[UserProfile]:
        """The active super_admin with the lowest id, if any."""


class ISupervisorDirectory(ABC):
    """Interface for RelationshipManager / Franchise lookups."""

    @abstractmethod
    async def get_entity(self, kind: SupervisorKind, entity_id: str) -> Optional[SupervisorEntity]:
        """Get a supervisor entity by kind and id."""

    @abstractmethod
    async def find_owned_entity_ids(self, kind: SupervisorKind, owner_id: str) -> List[str]:
        """Ids of entities of this kind owned by the user."""

    @abstractmethod
    async def find_entity_ids_for_regional_manager(
        self,
        kind: SupervisorKind,
        regional_manager_id: str
    ) -> List[str]:
        """Ids of entities of this kind reporting to the regional manager."""


class TicketOwnership(Protocol):
    """The parts of a ticket that decide who may access it."""

    raised_by_id: str
    assigned_to_id: Optional[str]


# ========== Application Services ==========

class HierarchyResolver:
    """
    Walks the supervision hierarchy.

    Missing links (agent unassigned, entity gone, owner gone) resolve to
    None; callers treat that as "cannot assign", not as an error.
    """

    def __init__(
        self,
        user_directory: IUserDirectory,
        supervisor_directory: ISupervisorDirectory
    ):
        self._users = user_directory
        self._supervisors = supervisor_directory

    async def _managing_entity(self, agent_id: str) -> Optional[SupervisorEntity]:
        agent = await self._users.get_by_id(agent_id)
        if agent is None or not agent.managed_by_id or agent.managed_by_model is None:
            return None
        return await self._supervisors.get_entity(agent.managed_by_model, agent.managed_by_id)

    async def resolve_supervisor(self, agent_id: str) -> Optional[SupervisorAssignment]:
        """
        Direct supervisor of an agent.

        Returns:
            SupervisorAssignment with the owner of the agent's entity and
            that entity's regional manager, or None when any link is missing.
        """
        entity = await self._managing_entity(agent_id)
        if entity is None or not entity.owner_id:
            return None

        owner = await self._users.get_by_id(entity.owner_id)
        if owner is None:
            logger.warning(
                "Supervisor entity owner does not exist",
                extra={"entity_id": entity.id, "owner_id": entity.owner_id}
            )
            return None

        return SupervisorAssignment(
            supervisor_id=owner.id,
            supervisor_role=assigned_role_for(entity.kind),
            entity_id=entity.id,
            entity_kind=entity.kind,
            regional_manager_id=entity.regional_manager_id,
        )

    async def resolve_regional_manager(self, agent_id: str) -> Optional[UserProfile]:
        """
        Regional manager above an agent, looked up through the agent's
        supervisor entity rather than through the supervisor user.
        """
        entity = await self._managing_entity(agent_id)
        if entity is None or not entity.regional_manager_id:
            return None
        return await self._users.get_by_id(entity.regional_manager_id)

    async def resolve_accessible_agent_ids(self, actor: UserProfile) -> AccessScope:
        """Agents whose tickets the actor may see."""
        if actor.role is Role.SUPER_ADMIN:
            return AccessScope.everything()

        if actor.role is Role.AGENT:
            return AccessScope.only([actor.id])

        if actor.role in (Role.RELATIONSHIP_MANAGER, Role.FRANCHISE):
            # Strict: an RM never sees franchise-managed agents and vice versa
            kind = (
                SupervisorKind.RELATIONSHIP_MANAGER
                if actor.role is Role.RELATIONSHIP_MANAGER
                else SupervisorKind.FRANCHISE
            )
            entity_ids = await self._supervisors.find_owned_entity_ids(kind, actor.id)
            if not entity_ids:
                return AccessScope.only([])
            return AccessScope.only(
                await self._users.list_agent_ids_managed_by(kind, entity_ids)
            )

        if actor.role is Role.REGIONAL_MANAGER:
            agent_ids: Set[str] = set()
            for kind in SupervisorKind:
                entity_ids = await self._supervisors.find_entity_ids_for_regional_manager(
                    kind, actor.id
                )
                if entity_ids:
                    agent_ids |= await self._users.list_agent_ids_managed_by(kind, entity_ids)
            return AccessScope.only(agent_ids)

        return AccessScope.only([])

    async def can_access_ticket(self, actor: UserProfile, ticket: TicketOwnership) -> bool:
        """
        Whether the actor may see a ticket.

        The hierarchy is recomputed on every call, so when an agent moves
        to another supervisor their earlier tickets follow them.
        """
        if actor.role is Role.SUPER_ADMIN:
            return True
        if ticket.assigned_to_id and ticket.assigned_to_id == actor.id:
            return True
        if actor.role is Role.AGENT:
            return ticket.raised_by_id == actor.id

        entity = await self._managing_entity(ticket.raised_by_id)
        if entity is None:
            return False
        if actor.role is entity.kind.owner_role and entity.owner_id == actor.id:
            return True
        if actor.role is Role.REGIONAL_MANAGER and entity.regional_manager_id == actor.id:
            return True
        return False
