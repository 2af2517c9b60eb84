"""
Hierarchy Domain Layer
======================

Roles, the capability table, and the user / supervisor-entity records
the ticket workflow walks to find supervisors.

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.hierarchy.domain.entities import (
    Role,
    SupervisorKind,
    Capability,
    ROLE_CAPABILITIES,
    has_capability,
    require_capability,
    UserProfile,
    SupervisorEntity,
    SupervisorAssignment,
    assigned_role_for,
    AccessScope,
)

__all__ = [
    "Role",
    "SupervisorKind",
    "Capability",
    "ROLE_CAPABILITIES",
    "has_capability",
    "require_capability",
    "UserProfile",
    "SupervisorEntity",
    "SupervisorAssignment",
    "assigned_role_for",
    "AccessScope",
]
