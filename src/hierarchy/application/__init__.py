"""
Hierarchy Application Layer
===========================

Contains:
- Services: HierarchyResolver
- Directory interfaces implemented by the infrastructure layer
"""

from src.hierarchy.application.services import (
    HierarchyResolver,
    IUserDirectory,
    ISupervisorDirectory,
    TicketOwnership,
)

__all__ = [
    "HierarchyResolver",
    "IUserDirectory",
    "ISupervisorDirectory",
    "TicketOwnership",
]
