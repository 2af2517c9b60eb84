"""
HTTP tests for the ticket and notification routes.

The app runs without its lifespan against a file-backed SQLite database;
collaborators that the lifespan would create are placed on app.state.
"""

import asyncio
import io
from uuid import UUID

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from src.config import UserStatus
from src.core import ValidationException
from src.hierarchy.domain import Role, SupervisorKind
from src.hierarchy.infrastructure.models import FranchiseModel, RelationshipManagerModel, UserModel
from src.infrastructure.database import Base, build_session_maker, get_session
from src.main import app
from src.servicedesk.infrastructure import LocalDocumentStorage
from src.servicedesk.infrastructure.models import LeadModel
from src.servicedesk.interfaces.controllers import read_limited
from tests.conftest import ist
from tests.fakes import FrozenClock, StaticPolicyProvider

ADMIN = "00000000-0000-0000-0000-000000000001"
REGIONAL = "00000000-0000-0000-0000-000000000010"
RM_OWNER = "00000000-0000-0000-0000-000000000020"
FRANCHISE_OWNER = "00000000-0000-0000-0000-000000000030"
RM_DESK = "00000000-0000-0000-0000-000000000100"
FRANCHISE = "00000000-0000-0000-0000-000000000200"
AGENT = "00000000-0000-0000-0000-000000001000"
UNMANAGED_AGENT = "00000000-0000-0000-0000-000000004000"
RETIRED = "00000000-0000-0000-0000-000000005000"
LEAD = "00000000-0000-0000-0000-000000009001"


def as_user(user_id: str) -> dict:
    return {"X-User-ID": user_id}


async def _prepare_database(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    def user(user_id, name, role, **kwargs):
        return UserModel(id=UUID(user_id), name=name, email=f"{name.lower()}@example.com", role=role.value, **kwargs)

    async with build_session_maker(engine)() as session:
        session.add_all([
            user(ADMIN, "Asha", Role.SUPER_ADMIN),
            user(REGIONAL, "Ravi", Role.REGIONAL_MANAGER),
            user(RM_OWNER, "Meera", Role.RELATIONSHIP_MANAGER),
            user(FRANCHISE_OWNER, "Farhan", Role.FRANCHISE),
            RelationshipManagerModel(id=UUID(RM_DESK), name="North Desk", owner_id=UUID(RM_OWNER),
                                     regional_manager_id=UUID(REGIONAL)),
            FranchiseModel(id=UUID(FRANCHISE), name="City Franchise", owner_id=UUID(FRANCHISE_OWNER),
                           regional_manager_id=UUID(REGIONAL)),
            user(AGENT, "Arjun", Role.AGENT, managed_by_id=UUID(RM_DESK),
                 managed_by_model=SupervisorKind.RELATIONSHIP_MANAGER.value),
            user(UNMANAGED_AGENT, "Lone", Role.AGENT),
            user(RETIRED, "Old", Role.RELATIONSHIP_MANAGER, status=UserStatus.INACTIVE),
            LeadModel(id=UUID(LEAD), agent_id=UUID(AGENT), customer_name="Customer"),
        ])
        await session.commit()


@pytest.fixture
def client(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    asyncio.run(_prepare_database(engine))
    session_maker = build_session_maker(engine)

    async def override_get_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.state.clock = FrozenClock(ist(2025, 6, 10, 10, 0))
    app.state.policy_manager = StaticPolicyProvider()
    app.state.document_storage = LocalDocumentStorage(
        root=tmp_path / "uploads",
        base_url="/uploads",
        max_bytes=1024,
        allowed_types=["application/pdf", "image/png"],
    )

    yield TestClient(app)

    app.dependency_overrides.clear()
    for name in ("clock", "policy_manager", "document_storage"):
        delattr(app.state, name)
    asyncio.run(engine.dispose())


def raise_ticket(client, **data):
    form = {"category": "Payment Not Received", "description": "Payout for May missing"}
    form.update(data)
    return client.post("/tickets", data=form, headers=as_user(AGENT))


class TestAuthentication:

    def test_missing_header(self, client):
        assert client.get("/tickets").status_code == 401

    def test_unknown_user(self, client):
        response = client.get("/tickets", headers=as_user("00000000-0000-0000-0000-000000099999"))
        assert response.status_code == 401

    def test_inactive_user(self, client):
        assert client.get("/tickets", headers=as_user(RETIRED)).status_code == 403


class TestTicketRoutes:

    def test_categories(self, client):
        response = client.get("/tickets/categories", headers=as_user(AGENT))

        assert response.status_code == 200
        assert "Commission Issue" in response.json()["categories"]

    def test_create_with_attachment(self, client, tmp_path):
        response = client.post(
            "/tickets",
            data={"category": "Payment Not Received", "description": "Payout missing", "lead_id": LEAD},
            files={"attachment": ("slip.pdf", b"%PDF-1.4", "application/pdf")},
            headers=as_user(AGENT),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["ticket_number"] == "SRN-2025-000001"
        assert body["status"] == "Open"
        assert body["escalation_level"] == 1
        assert body["assigned_to"] == RM_OWNER
        assert body["assigned_role"] == "relationship_manager"
        assert body["lead_id"] == LEAD
        assert body["attachment"]["original_name"] == "slip.pdf"

        stored = tmp_path / "uploads" / "ticket" / body["id"] / body["attachment"]["file_name"]
        assert stored.read_bytes() == b"%PDF-1.4"

    def test_create_rejections(self, client):
        assert raise_ticket(client, category="Refund").status_code == 400
        assert raise_ticket(client, description=" ").status_code == 400
        assert client.post(
            "/tickets", data={"category": "Other", "description": "x"}, headers=as_user(RM_OWNER)
        ).status_code == 403
        assert client.post(
            "/tickets", data={"category": "Other", "description": "x"}, headers=as_user(UNMANAGED_AGENT)
        ).status_code == 400

    def test_unsupported_attachment(self, client):
        response = client.post(
            "/tickets",
            data={"category": "Other", "description": "x"},
            files={"attachment": ("run.exe", b"MZ", "application/x-msdownload")},
            headers=as_user(AGENT),
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Unsupported attachment type"

    def test_oversized_attachment_is_rejected(self, client, tmp_path):
        response = client.post(
            "/tickets",
            data={"category": "Other", "description": "x"},
            files={"attachment": ("big.pdf", b"%PDF" + b"x" * 5 * 1024, "application/pdf")},
            headers=as_user(AGENT),
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Attachment is too large"
        assert not (tmp_path / "uploads").exists()
        assert client.get("/tickets", headers=as_user(ADMIN)).json()["pagination"]["total_items"] == 0

    def test_listing_follows_hierarchy(self, client):
        raise_ticket(client)
        raise_ticket(client, category="Other")

        for user_id, expected in ((AGENT, 2), (RM_OWNER, 2), (REGIONAL, 2), (ADMIN, 2), (FRANCHISE_OWNER, 0)):
            body = client.get("/tickets", headers=as_user(user_id)).json()
            assert body["pagination"]["total_items"] == expected, user_id

        page = client.get("/tickets", params={"limit": 1, "page": 2}, headers=as_user(ADMIN)).json()
        assert len(page["tickets"]) == 1
        assert page["pagination"]["has_prev_page"] is True
        assert page["pagination"]["has_next_page"] is False

        filtered = client.get("/tickets", params={"category": "Other"}, headers=as_user(ADMIN)).json()
        assert [t["category"] for t in filtered["tickets"]] == ["Other"]

    def test_get_ticket_access(self, client):
        ticket_id = raise_ticket(client).json()["id"]

        assert client.get(f"/tickets/{ticket_id}", headers=as_user(RM_OWNER)).status_code == 200
        assert client.get(f"/tickets/{ticket_id}", headers=as_user(FRANCHISE_OWNER)).status_code == 403
        missing = client.get("/tickets/00000000-0000-0000-0000-0000000fffff", headers=as_user(ADMIN))
        assert missing.status_code == 404

    def test_update_status_and_note(self, client):
        ticket_id = raise_ticket(client).json()["id"]

        response = client.put(
            f"/tickets/{ticket_id}",
            json={"status": "In Progress", "internal_note": "Checking with bank"},
            headers=as_user(RM_OWNER),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "In Progress"
        assert body["internal_notes"][0]["note"] == "Checking with bank"
        assert body["internal_notes"][0]["added_by"] == RM_OWNER

    def test_update_cannot_resolve(self, client):
        ticket_id = raise_ticket(client).json()["id"]
        response = client.put(f"/tickets/{ticket_id}", json={"status": "Resolved"}, headers=as_user(RM_OWNER))
        assert response.status_code == 400

    def test_reassign(self, client):
        ticket_id = raise_ticket(client).json()["id"]

        forbidden = client.put(f"/tickets/{ticket_id}", json={"reassign_to": REGIONAL}, headers=as_user(RM_OWNER))
        assert forbidden.status_code == 403

        response = client.put(f"/tickets/{ticket_id}", json={"reassign_to": REGIONAL}, headers=as_user(ADMIN))
        assert response.status_code == 200
        assert response.json()["assigned_to"] == REGIONAL
        assert response.json()["assigned_role"] == "regional_manager"

    def test_resolve_flow(self, client):
        ticket_id = raise_ticket(client).json()["id"]

        assert client.post(f"/tickets/{ticket_id}/resolve", headers=as_user(ADMIN)).status_code == 403

        response = client.post(
            f"/tickets/{ticket_id}/resolve",
            json={"resolution_note": "Payment released"},
            headers=as_user(RM_OWNER),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "Resolved"
        assert body["resolved_by"] == RM_OWNER
        assert body["resolution_note"] == "Payment released"

        again = client.post(f"/tickets/{ticket_id}/resolve", headers=as_user(RM_OWNER))
        assert again.status_code == 409
        assert again.json()["error_type"] == "TicketAlreadyResolvedException"


class TestReadLimited:

    @staticmethod
    def upload_of(content: bytes) -> UploadFile:
        return UploadFile(file=io.BytesIO(content), filename="statement.pdf")

    @pytest.mark.asyncio
    async def test_reads_file_within_limit(self):
        content = b"%PDF" + b"x" * 1020

        assert await read_limited(self.upload_of(content), max_bytes=1024, chunk_size=100) == content

    @pytest.mark.asyncio
    async def test_stops_reading_once_past_limit(self):
        upload = self.upload_of(b"x" * 5 * 1024 * 1024)

        with pytest.raises(ValidationException) as exc_info:
            await read_limited(upload, max_bytes=1024, chunk_size=256)

        assert exc_info.value.message == "Attachment is too large"
        assert upload.file.tell() <= 1024 + 256


class TestNotificationRoutes:

    def test_inbox(self, client):
        raise_ticket(client)
        raise_ticket(client)

        inbox = client.get("/notifications", headers=as_user(RM_OWNER)).json()
        assert inbox["unread_count"] == 2
        assert inbox["notifications"][0]["title"] == "New service request assigned by Agent"

        first_id = inbox["notifications"][0]["id"]
        assert client.patch(f"/notifications/{first_id}/read", headers=as_user(REGIONAL)).status_code == 404
        marked = client.patch(f"/notifications/{first_id}/read", headers=as_user(RM_OWNER))
        assert marked.json() == {"updated": 1}
        assert client.get("/notifications/unread-count", headers=as_user(RM_OWNER)).json() == {"unread_count": 1}

        assert client.patch("/notifications/read-all", headers=as_user(RM_OWNER)).json() == {"updated": 1}
        assert client.get("/notifications/unread-count", headers=as_user(RM_OWNER)).json() == {"unread_count": 0}

    def test_resolution_notifies_agent(self, client):
        ticket_id = raise_ticket(client).json()["id"]
        client.post(f"/tickets/{ticket_id}/resolve", headers=as_user(RM_OWNER))

        inbox = client.get("/notifications", headers=as_user(AGENT)).json()
        assert [n["title"] for n in inbox["notifications"]] == ["Your service request has been resolved"]


class TestServiceRoutes:

    def test_root_lists_modules(self, client):
        body = client.get("/").json()
        assert set(body["modules"]) == {"tickets", "notifications"}

    def test_health_reports_policy(self, client):
        body = client.get("/health").json()
        assert body["checks"]["escalation_policy"] == "Asia/Kolkata 7-18"
        assert body["checks"]["escalation_scheduler"] == "stopped"
