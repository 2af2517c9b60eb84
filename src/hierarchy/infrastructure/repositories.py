"""
Hierarchy Infrastructure Repositories
=====================================

Concrete directory implementations using SQLAlchemy.
"""

from typing import Iterable, List, Optional, Set, Type, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import UserStatus
from src.hierarchy.application import IUserDirectory, ISupervisorDirectory
from src.hierarchy.domain import Role, SupervisorEntity, SupervisorKind, UserProfile
from src.hierarchy.infrastructure.models import (
    FranchiseModel,
    RelationshipManagerModel,
    UserModel,
)

EntityModel = Union[RelationshipManagerModel, FranchiseModel]


def parse_uuid(value: Optional[str]) -> Optional[UUID]:
    """Parse an id string, None when it is not a UUID."""
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _str_or_none(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def to_user_profile(model: UserModel) -> UserProfile:
    """Map a user row to the domain profile."""
    return UserProfile(
        id=str(model.id),
        name=model.name,
        email=model.email,
        role=Role(model.role),
        status=model.status,
        managed_by_id=_str_or_none(model.managed_by_id),
        managed_by_model=SupervisorKind(model.managed_by_model) if model.managed_by_model else None,
    )


def _entity_model(kind: SupervisorKind) -> Type[EntityModel]:
    if kind is SupervisorKind.RELATIONSHIP_MANAGER:
        return RelationshipManagerModel
    return FranchiseModel


class SQLAlchemyUserDirectory(IUserDirectory):
    """SQLAlchemy implementation of the user directory."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, user_id: str) -> Optional[UserProfile]:
        user_uuid = parse_uuid(user_id)
        if user_uuid is None:
            return None

        model = await self._session.get(UserModel, user_uuid)
        return to_user_profile(model) if model else None

    async def list_agent_ids_managed_by(
        self,
        kind: SupervisorKind,
        entity_ids: Iterable[str]
    ) -> Set[str]:
        uuids = [u for u in (parse_uuid(i) for i in entity_ids) if u is not None]
        if not uuids:
            return set()

        stmt = select(UserModel.id).where(
            UserModel.role == Role.AGENT.value,
            UserModel.managed_by_model == kind.value,
            UserModel.managed_by_id.in_(uuids),
        )
        result = await self._session.execute(stmt)
        return {str(agent_id) for agent_id in result.scalars().all()}

    async def find_first_active_admin(self) -> Optional[UserProfile]:
        stmt = (
            select(UserModel)
            .where(
                UserModel.role == Role.SUPER_ADMIN.value,
                UserModel.status == UserStatus.ACTIVE,
            )
            .order_by(UserModel.id.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return to_user_profile(model) if model else None


class SQLAlchemySupervisorDirectory(ISupervisorDirectory):
    """SQLAlchemy implementation of the RelationshipManager / Franchise directory."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_entity(self, kind: SupervisorKind, entity_id: str) -> Optional[SupervisorEntity]:
        entity_uuid = parse_uuid(entity_id)
        if entity_uuid is None:
            return None

        model = await self._session.get(_entity_model(kind), entity_uuid)
        if model is None:
            return None

        return SupervisorEntity(
            id=str(model.id),
            kind=kind,
            name=model.name,
            owner_id=_str_or_none(model.owner_id),
            regional_manager_id=_str_or_none(model.regional_manager_id),
        )

    async def find_owned_entity_ids(self, kind: SupervisorKind, owner_id: str) -> List[str]:
        owner_uuid = parse_uuid(owner_id)
        if owner_uuid is None:
            return []

        model = _entity_model(kind)
        result = await self._session.execute(select(model.id).where(model.owner_id == owner_uuid))
        return [str(i) for i in result.scalars().all()]

    async def find_entity_ids_for_regional_manager(
        self,
        kind: SupervisorKind,
        regional_manager_id: str
    ) -> List[str]:
        rm_uuid = parse_uuid(regional_manager_id)
        if rm_uuid is None:
            return []

        model = _entity_model(kind)
        result = await self._session.execute(
            select(model.id).where(model.regional_manager_id == rm_uuid)
        )
        return [str(i) for i in result.scalars().all()]
