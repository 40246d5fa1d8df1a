"""Integration tests for /sync routes."""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from catalog_sync.api.main import create_app
from catalog_sync.config import Settings, get_settings
from catalog_sync.db.engine import get_engine, get_session
from catalog_sync.messaging.transport import InMemoryTransport, get_transport
from catalog_sync.models.envelope import SyncEvent
from catalog_sync.models.sync import CatalogSyncLog, CatalogSyncStatus


@pytest.fixture(name="transport")
def transport_fixture():
    return InMemoryTransport(retain_history=True)


@pytest.fixture(name="client")
def client_fixture(engine, transport):
    app = create_app()

    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: Settings()
    app.dependency_overrides[get_transport] = lambda: transport
    with TestClient(app) as c:
        yield c


class TestSyncRoutes:
    def test_trigger_publishes_event(self, client, transport):
        resp = client.post("/sync/trigger", json={"account_id": "acct-1", "scope_id": "menu-7"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Sync event published"
        [payload] = transport.messages("catalog.sync")
        event = SyncEvent.from_json(payload)
        assert event.account_id == "acct-1"
        assert event.scope_id == "menu-7"
        assert event.correlation_id == body["correlation_id"]
        assert event.idempotency_key == body["idempotency_key"]

    def test_trigger_twice_gets_new_correlation_ids(self, client, transport):
        first = client.post("/sync/trigger", json={"account_id": "acct-1"}).json()
        second = client.post("/sync/trigger", json={"account_id": "acct-1"}).json()
        assert first["correlation_id"] != second["correlation_id"]
        assert len(transport.messages("catalog.sync")) == 2

    def test_trigger_requires_account(self, client):
        resp = client.post("/sync/trigger", json={})
        assert resp.status_code == 422

    def test_trigger_transport_unavailable_is_503(self, client, transport):
        transport.close()
        resp = client.post("/sync/trigger", json={"account_id": "acct-1"})
        assert resp.status_code == 503

    def test_status_never_run(self, client):
        resp = client.get("/sync/status/V1")
        assert resp.status_code == 200
        assert resp.json()["status"] == "never_run"
        assert resp.json()["vendor_code"] == "V1"

    def test_status_after_log_created(self, client, engine):
        with Session(engine) as s:
            s.add(CatalogSyncLog(
                vendor_code="V1",
                import_id="imp-1",
                status=CatalogSyncStatus.PARTIAL,
                submitted_at=datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc),
                completed_at=datetime(2025, 3, 1, 10, 2, tzinfo=timezone.utc),
                duration_seconds=120,
                errors_count=2,
                response_message="Partial success with 2 errors",
            ))
            s.commit()

        resp = client.get("/sync/status/V1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "Partial"
        assert data["import_id"] == "imp-1"
        assert data["duration_seconds"] == 120
        assert data["errors_count"] == 2

    def test_history(self, client, engine):
        with Session(engine) as s:
            for i in range(3):
                s.add(CatalogSyncLog(
                    vendor_code="V1",
                    import_id=f"imp-{i}",
                    account_id="acct-1",
                    submitted_at=datetime(2025, 3, 1, 10, i, tzinfo=timezone.utc),
                ))
            s.add(CatalogSyncLog(vendor_code="V2", import_id="other", account_id="acct-2"))
            s.commit()

        resp = client.get("/sync/history/acct-1", params={"limit": 2})
        assert resp.status_code == 200
        assert [log["import_id"] for log in resp.json()] == ["imp-2", "imp-1"]

    def test_get_log(self, client, engine):
        with Session(engine) as s:
            log = CatalogSyncLog(vendor_code="V1", import_id="imp-1")
            s.add(log)
            s.commit()
            s.refresh(log)
            log_id = log.id

        resp = client.get(f"/sync/logs/{log_id}")
        assert resp.status_code == 200
        assert resp.json()["vendor_code"] == "V1"

    def test_get_log_not_found(self, client):
        resp = client.get("/sync/logs/9999")
        assert resp.status_code == 404
