"""
Hierarchy Infrastructure Layer
==============================

- Models: SQLAlchemy ORM models for users and supervisor entities
- Repositories: directory implementations
"""

from src.hierarchy.infrastructure.models import (
    UserModel,
    RelationshipManagerModel,
    FranchiseModel,
)
from src.hierarchy.infrastructure.repositories import (
    SQLAlchemyUserDirectory,
    SQLAlchemySupervisorDirectory,
    parse_uuid,
)

__all__ = [
    "UserModel",
    "RelationshipManagerModel",
    "FranchiseModel",
    "SQLAlchemyUserDirectory",
    "SQLAlchemySupervisorDirectory",
    "parse_uuid",
]
