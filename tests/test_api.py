import httpx
import pytest
import pytest_asyncio

from tourwatch.config import settings
from tourwatch.database import get_db
from tourwatch.main import app
from tourwatch.services.monitor_scheduler import TickSummary, monitor_scheduler

PAYLOAD = {
    "query": {
        "raw_text": "пляжный отдых в Турции",
        "destinations": ["Turkey"],
        "adults": 2,
        "budget": 150000,
        "priorities": {"starRating": 10, "beachLine": 10, "mealType": 9},
    },
    "conditions": {"onlyTopMatches": True, "quietHours": {"start": "22:00", "end": "09:00"}},
    "monitor_days": 14,
}


@pytest_asyncio.fixture()
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


HEADERS = {"X-User-Id": "42"}


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.json() == {"status": "ok", "service": "tourwatch"}


@pytest.mark.asyncio
async def test_owner_header_required(client):
    resp = await client.get("/api/monitored-searches")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_monitored_search_lifecycle(client):
    resp = await client.post("/api/monitored-searches", json=PAYLOAD, headers=HEADERS)
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "active"
    assert created["notify_conditions"]["onlyTopMatches"] is True
    search_id = created["id"]

    resp = await client.post(f"/api/monitored-searches/{search_id}/pause", headers=HEADERS)
    assert resp.json()["status"] == "paused"

    resp = await client.post(f"/api/monitored-searches/{search_id}/resume", headers=HEADERS)
    assert resp.json()["status"] == "active"

    resp = await client.get("/api/monitored-searches", headers=HEADERS)
    assert resp.json()["count"] == 1

    resp = await client.post(
        "/api/monitored-searches/controls",
        json={"callback_data": f"monitor:stop:{search_id}"},
        headers=HEADERS,
    )
    assert resp.json()["status"] == "stopped"

    resp = await client.post(f"/api/monitored-searches/{search_id}/resume", headers=HEADERS)
    assert resp.status_code == 409

    resp = await client.get("/api/monitored-searches", headers=HEADERS)
    assert resp.json()["count"] == 0


@pytest.mark.asyncio
async def test_other_owner_gets_404(client):
    resp = await client.post("/api/monitored-searches", json=PAYLOAD, headers=HEADERS)
    search_id = resp.json()["id"]

    resp = await client.post(f"/api/monitored-searches/{search_id}/stop", headers={"X-User-Id": "7"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_invalid_priorities_rejected(client):
    bad = {**PAYLOAD, "query": {**PAYLOAD["query"], "priorities": {"starRating": 12}}}
    resp = await client.post("/api/monitored-searches", json=bad, headers=HEADERS)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_reuses_active_search_for_saved_query(client):
    resp = await client.post("/api/monitored-searches", json=PAYLOAD, headers=HEADERS)
    created = resp.json()

    again = {"saved_query_id": created["saved_query_id"], "monitor_days": 30}
    resp = await client.post("/api/monitored-searches", json=again, headers=HEADERS)
    assert resp.status_code == 201
    assert resp.json()["id"] == created["id"]

    resp = await client.get("/api/monitored-searches", headers=HEADERS)
    assert resp.json()["count"] == 1

    resp = await client.post("/api/monitored-searches", json=again, headers={"X-User-Id": "7"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_create_needs_exactly_one_query_source(client):
    resp = await client.post("/api/monitored-searches", json={"monitor_days": 7}, headers=HEADERS)
    assert resp.status_code == 422

    both = {**PAYLOAD, "saved_query_id": "6f1c2a9e-3b7d-4c1e-9a55-0d2f8e7b1c34"}
    resp = await client.post("/api/monitored-searches", json=both, headers=HEADERS)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_run_tick_endpoint(client, monkeypatch):
    async def fake_tick(now=None):
        return TickSummary(eligible=3, checked=2, notifications=1, failed=1)

    monkeypatch.setattr(monitor_scheduler, "tick", fake_tick)
    monkeypatch.setattr(settings, "ops_token", "s3cret")

    resp = await client.post("/api/monitored-searches/run-tick", headers={"X-Ops-Token": "s3cret"})
    assert resp.status_code == 200
    assert resp.json()["checked"] == 2
    assert resp.json()["failed"] == 1


@pytest.mark.asyncio
async def test_run_tick_requires_ops_token(client, monkeypatch):
    calls = []

    async def fake_tick(now=None):
        calls.append(now)
        return TickSummary()

    monkeypatch.setattr(monitor_scheduler, "tick", fake_tick)

    resp = await client.post("/api/monitored-searches/run-tick")
    assert resp.status_code == 403

    monkeypatch.setattr(settings, "ops_token", "s3cret")
    resp = await client.post("/api/monitored-searches/run-tick", headers={"X-Ops-Token": "guess"})
    assert resp.status_code == 403
    assert calls == []
