#!/usr/bin/env python3
"""
Seed Demo Hierarchy
===================

Creates a small supervision hierarchy for local runs:
admin, regional manager, one RelationshipManager and one Franchise,
an agent under each, and a lead for the first agent.

Prints the user ids to pass as X-User-ID.
"""

import asyncio
import sys
from pathlib import Path
from uuid import uuid4

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import settings  # noqa: E402
from src.hierarchy.domain import Role, SupervisorKind  # noqa: E402
from src.hierarchy.infrastructure import (  # noqa: E402
    FranchiseModel,
    RelationshipManagerModel,
    UserModel,
)
from src.infrastructure.database import (  # noqa: E402
    close_database,
    create_tables,
    get_session_context,
    init_database,
)
from src.servicedesk.infrastructure.models import LeadModel  # noqa: E402


def _user(name: str, role: Role, **kwargs) -> UserModel:
    slug = name.lower().replace(" ", ".")
    return UserModel(id=uuid4(), name=name, email=f"{slug}@example.com", role=role.value, **kwargs)


async def main():
    """Create tables and insert the demo hierarchy."""
    init_database()
    await create_tables()

    admin = _user("Asha Admin", Role.SUPER_ADMIN)
    regional = _user("Ravi Regional", Role.REGIONAL_MANAGER)
    rm_owner = _user("Meera Manager", Role.RELATIONSHIP_MANAGER)
    franchise_owner = _user("Farhan Franchise", Role.FRANCHISE)

    rm_entity = RelationshipManagerModel(
        id=uuid4(), name="North RM Desk", owner_id=rm_owner.id, regional_manager_id=regional.id
    )
    franchise_entity = FranchiseModel(
        id=uuid4(), name="City Franchise", owner_id=franchise_owner.id, regional_manager_id=regional.id
    )

    rm_agent = _user(
        "Arjun Agent", Role.AGENT,
        managed_by_id=rm_entity.id, managed_by_model=SupervisorKind.RELATIONSHIP_MANAGER.value
    )
    franchise_agent = _user(
        "Priya Agent", Role.AGENT,
        managed_by_id=franchise_entity.id, managed_by_model=SupervisorKind.FRANCHISE.value
    )
    lead = LeadModel(id=uuid4(), agent_id=rm_agent.id, customer_name="Demo Customer")

    async with get_session_context() as session:
        session.add_all([
            admin, regional, rm_owner, franchise_owner,
            rm_entity, franchise_entity,
            rm_agent, franchise_agent, lead,
        ])

    await close_database()

    print(f"Seeded hierarchy into {settings.database_url}")
    for user in (admin, regional, rm_owner, franchise_owner, rm_agent, franchise_agent):
        print(f"  {user.role:<22} {user.name:<18} {user.id}")
    print(f"  lead for {rm_agent.name}: {lead.id}")


if __name__ == "__main__":
    asyncio.run(main())
