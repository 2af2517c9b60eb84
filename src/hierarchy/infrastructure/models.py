"""
Hierarchy Infrastructure Models
===============================

SQLAlchemy ORM models for users and the supervisor entities that
own them.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import UserStatus


class UserModel(Base):
    """
    Database model for a back-office user.

    Maps to the 'users' table.
    """
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UserStatus.ACTIVE, index=True)

    # Agents only: the RelationshipManager or Franchise managing them
    managed_by_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    managed_by_model: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class RelationshipManagerModel(Base):
    """
    Database model for a RelationshipManager entity.

    Maps to the 'relationship_managers' table.
    """
    __tablename__ = "relationship_managers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    regional_manager_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UserStatus.ACTIVE)


class FranchiseModel(Base):
    """
    Database model for a Franchise entity.

    Maps to the 'franchises' table.
    """
    __tablename__ = "franchises"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    regional_manager_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UserStatus.ACTIVE)
