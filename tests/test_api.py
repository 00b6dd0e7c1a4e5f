"""Tests for the FastAPI server."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from negotiator.api.server import create_app
from negotiator.config import Settings
from negotiator.core.clock import ManualClock
from negotiator.delegation.performance import PerformanceRecord
from negotiator.delegation.store import PerformanceStore
from negotiator.runtime import Runtime, build_runtime

pytestmark = pytest.mark.anyio


@pytest.fixture
def api_runtime(clock: ManualClock) -> Runtime:
    return build_runtime(clock=clock)


@pytest.fixture
async def client(api_runtime: Runtime) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=create_app(api_runtime))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def register(client: AsyncClient, provider: str, capability: dict) -> None:
    response = await client.post(
        "/api/capabilities", json={"provider_id": provider, "capability": capability}
    )
    assert response.status_code == 200


# ═══════════════════════════════════════════════════════════════════════════
# HEALTH AND ERRORS
# ═══════════════════════════════════════════════════════════════════════════


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"
    assert "uptime_seconds" in data


async def test_missing_field_is_422(client: AsyncClient) -> None:
    response = await client.post("/api/capabilities", json={"capability": {"name": "x"}})
    assert response.status_code == 422
    data = response.json()
    assert data["error_type"] == "ValidationError"
    assert data["message"] == "provider_id is required"
    assert data["recoverable"] is False


async def test_unknown_ids_are_404(client: AsyncClient) -> None:
    for path in [
        "/api/votings/voting-missing",
        "/api/breakdowns/breakdown-missing",
        "/api/inquiries/inquiry-missing/result",
        "/api/capabilities/ghost/similar",
        "/api/capabilities/ghost/compatible",
    ]:
        response = await client.get(path)
        assert response.status_code == 404, path
        assert response.json()["error_type"] == "NotFoundError"


# ═══════════════════════════════════════════════════════════════════════════
# CAPABILITIES
# ═══════════════════════════════════════════════════════════════════════════


class TestCapabilities:
    async def test_register_and_query(self, client: AsyncClient) -> None:
        await register(
            client,
            "A1",
            {
                "name": "data-analysis",
                "description": "analyse tabular data",
                "taxonomy": ["analysis"],
                "compatibilities": [{"target": "reporting", "type": "complementary", "strength": 0.8}],
            },
        )
        await register(client, "A2", {"name": "data-analytics", "description": "analyse data streams",
                                      "taxonomy": ["analysis"]})

        listing = (await client.get("/api/capabilities")).json()
        assert listing["count"] == 2

        providers = (await client.get("/api/capabilities/data-analysis/providers")).json()
        assert providers["providers"] == ["A1"]

        similar = (await client.get("/api/capabilities/data-analysis/similar")).json()
        assert "data-analytics" in [s["name"] for s in similar["similar"]]

        compatible = (await client.get("/api/capabilities/data-analysis/compatible")).json()
        assert compatible["compatible"][0]["name"] == "reporting"

    async def test_combination_and_search(self, client: AsyncClient) -> None:
        await register(client, "A1", {"name": "a", "compatibilities": [
            {"target": "b", "type": "complementary", "strength": 0.6}]})
        await register(client, "A2", {"name": "b"})

        combo = (await client.post("/api/capabilities/combination", json={"capabilities": ["a", "b"]})).json()
        assert combo["complementarity_score"] == pytest.approx(0.6)

        search = (await client.post(
            "/api/providers/search", json={"capabilities": ["a", "b"], "max_providers": 1}
        )).json()
        assert search["coverage_score"] == pytest.approx(0.5)
        assert len(search["providers"]) == 1

    async def test_bad_capability_is_422(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/capabilities", json={"provider_id": "A1", "capability": {"name": ""}}
        )
        assert response.status_code == 422

    @pytest.mark.parametrize(
        "capability",
        [
            {"name": "a", "level": "guru"},
            {"name": "a", "taxonomy": ["astrology"]},
            {"name": "a", "compatibilities": [{"target": "b", "type": "rivals"}]},
            {"name": "a", "compatibilities": [{"target": "b", "strength": "high"}]},
            {"name": "a", "colour": "blue"},
            "a",
        ],
    )
    async def test_malformed_capability_is_422(self, client: AsyncClient, capability) -> None:
        response = await client.post(
            "/api/capabilities", json={"provider_id": "A1", "capability": capability}
        )
        assert response.status_code == 422
        assert response.json()["error_type"] == "ValidationError"


# ═══════════════════════════════════════════════════════════════════════════
# ADVERTISEMENTS AND INQUIRIES
# ═══════════════════════════════════════════════════════════════════════════


class TestAdvertisements:
    async def test_advertise_and_find(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/advertisements",
            json={
                "agent_id": "A1",
                "capabilities": [{"name": "web_research", "confidence_score": 0.9}],
                "availability": {"status": "limited"},
            },
        )
        assert response.status_code == 200
        assert response.json()["availability"]["status"] == "limited"

        found = (await client.get(
            "/api/advertisements/providers", params={"capability": "web_research"}
        )).json()
        assert [p["agent_id"] for p in found["providers"]] == ["A1"]

        strict = (await client.get(
            "/api/advertisements/providers",
            params={"capability": "web_research", "availability": "available"},
        )).json()
        assert strict["providers"] == []

    async def test_unknown_availability_status_is_422(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/advertisements",
            json={
                "agent_id": "A1",
                "capabilities": [{"name": "web_research"}],
                "availability": {"status": "busy"},
            },
        )
        assert response.status_code == 422
        assert "availability status" in response.json()["message"]

    @pytest.mark.parametrize(
        "entry",
        [
            {"name": "web_research", "confidence_level": "wizard"},
            {"name": "web_research", "rating": 5},
            {"confidence_score": 0.9},
        ],
    )
    async def test_malformed_entry_is_422(self, client: AsyncClient, entry: dict) -> None:
        response = await client.post(
            "/api/advertisements", json={"agent_id": "A1", "capabilities": [entry]}
        )
        assert response.status_code == 422


class TestInquiries:
    async def test_inquiry_round_trip(self, client: AsyncClient) -> None:
        created = (await client.post(
            "/api/inquiries", json={"from_agent_id": "A1", "capability": "data_analysis"}
        )).json()
        inquiry_id = created["inquiry_id"]

        response = await client.post(
            f"/api/inquiries/{inquiry_id}/responses",
            json={"from_agent_id": "A2", "available": True, "confidence_level": 0.8,
                  "commitment_level": "firm"},
        )
        assert response.json() == {"inquiry_id": inquiry_id, "accepted": True}

        result = (await client.get(f"/api/inquiries/{inquiry_id}/result")).json()
        assert result["success"]
        assert result["selected_provider"] == "A2"

    async def test_late_response_is_410(
        self, client: AsyncClient, clock: ManualClock
    ) -> None:
        created = (await client.post(
            "/api/inquiries",
            json={"from_agent_id": "A1", "capability": "x", "response_deadline": 5},
        )).json()
        clock.advance(6)

        response = await client.post(
            f"/api/inquiries/{created['inquiry_id']}/responses",
            json={"from_agent_id": "A2", "available": True},
        )
        assert response.status_code == 410


# ═══════════════════════════════════════════════════════════════════════════
# VOTINGS
# ═══════════════════════════════════════════════════════════════════════════


class TestVotings:
    async def test_vote_until_closed(self, client: AsyncClient) -> None:
        voting = (await client.post(
            "/api/votings",
            json={"topic": "Pick", "choices": ["a", "b"], "eligible_voters": ["v1", "v2"]},
        )).json()
        vid = voting["id"]

        await client.post(f"/api/votings/{vid}/votes", json={"agent_id": "v1", "choice": "a"})
        closed = (await client.post(
            f"/api/votings/{vid}/votes", json={"agent_id": "v2", "choice": "a"}
        )).json()
        assert closed["status"] == "closed"
        assert closed["results"]["top_choice"] == "a"

        again = await client.post(f"/api/votings/{vid}/votes", json={"agent_id": "v2", "choice": "b"})
        assert again.status_code == 409

        listed = (await client.get("/api/votings", params={"status": "closed"})).json()
        assert listed["count"] == 1

    async def test_expiry_on_read(self, client: AsyncClient, clock: ManualClock) -> None:
        voting = (await client.post(
            "/api/votings", json={"topic": "Pick", "choices": ["a", "b"], "expires_in": 10}
        )).json()
        clock.advance(11)

        fetched = (await client.get(f"/api/votings/{voting['id']}")).json()
        assert fetched["results"]["close_reason"] == "expired"

    async def test_validation(self, client: AsyncClient) -> None:
        response = await client.post("/api/votings", json={"topic": "Pick", "choices": ["a"]})
        assert response.status_code == 422
        response = await client.get("/api/votings", params={"status": "sideways"})
        assert response.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
# BREAKDOWNS
# ═══════════════════════════════════════════════════════════════════════════


class TestBreakdowns:
    async def test_full_cycle(self, client: AsyncClient) -> None:
        created = (await client.post(
            "/api/breakdowns",
            json={
                "task": {"id": "task-1", "name": "Report", "description": "write a report",
                         "required_capabilities": ["research", "writing"]},
                "proposer_id": "P",
                "collaborators": ["C1"],
            },
        )).json()
        bid = created["id"]
        assert [s["id"] for s in created["subtasks"]] == [
            "task-1-planning", "task-1-exec-research", "task-1-exec-writing"
        ]

        updated = (await client.put(
            f"/api/breakdowns/{bid}/subtasks",
            json={"agent_id": "C1", "subtasks": [
                {"id": "s1", "title": "Step 1", "description": "research the topic"},
                {"id": "s2", "description": "write a report", "prerequisites": ["s1"]},
            ]},
        )).json()
        assert updated["revision"] == 2

        voting = (await client.post(f"/api/breakdowns/{bid}/voting", json={"agent_id": "P"})).json()
        assert voting["choices"] == ["approve", "reject"]

        await client.post(f"/api/breakdowns/{bid}/votes", json={"agent_id": "P", "approve": True})
        final = (await client.post(
            f"/api/breakdowns/{bid}/votes", json={"agent_id": "C1", "approve": True}
        )).json()
        assert final["status"] == "approved"
        assert final["metrics"]["coherence"] == pytest.approx(0.9)

        fetched = (await client.get(f"/api/breakdowns/{bid}")).json()
        assert fetched["status"] == "approved"

    async def test_cycle_is_rejected(self, client: AsyncClient) -> None:
        created = (await client.post(
            "/api/breakdowns",
            json={"task": {"id": "t"}, "proposer_id": "P"},
        )).json()
        response = await client.put(
            f"/api/breakdowns/{created['id']}/subtasks",
            json={"agent_id": "P", "subtasks": [
                {"id": "a", "prerequisites": ["b"]},
                {"id": "b", "prerequisites": ["a"]},
            ]},
        )
        assert response.status_code == 422
        assert "cycle" in response.json()["message"]

    async def test_subtask_without_id_is_422(self, client: AsyncClient) -> None:
        created = (await client.post(
            "/api/breakdowns", json={"task": {"id": "t"}, "proposer_id": "P"}
        )).json()
        response = await client.put(
            f"/api/breakdowns/{created['id']}/subtasks",
            json={"agent_id": "P", "subtasks": [{"description": "no id"}]},
        )
        assert response.status_code == 422
        assert response.json()["message"] == "subtask id is required"

    async def test_outsider_is_409(self, client: AsyncClient) -> None:
        created = (await client.post(
            "/api/breakdowns", json={"task": {"id": "t"}, "proposer_id": "P"}
        )).json()
        response = await client.post(
            f"/api/breakdowns/{created['id']}/voting", json={"agent_id": "X"}
        )
        assert response.status_code == 409

    async def test_vote_needs_approve_flag(self, client: AsyncClient) -> None:
        created = (await client.post(
            "/api/breakdowns", json={"task": {"id": "t"}, "proposer_id": "P"}
        )).json()
        response = await client.post(
            f"/api/breakdowns/{created['id']}/votes", json={"agent_id": "P"}
        )
        assert response.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
# RUNTIME
# ═══════════════════════════════════════════════════════════════════════════


class TestRuntime:
    async def test_recommendations(self, client: AsyncClient, api_runtime: Runtime) -> None:
        for _ in range(3):
            api_runtime.performance.record("A1", True, 6)
        data = (await client.get("/api/recommendations")).json()
        assert data["recommendations"][0]["agent_id"] == "A1"

    async def test_stats(self, client: AsyncClient) -> None:
        await register(client, "A1", {"name": "a"})
        stats = (await client.get("/api/stats")).json()
        assert stats["registry"]
        assert stats["tasks"] == 0

    async def test_events_newest_first(self, client: AsyncClient) -> None:
        await register(client, "A1", {"name": "a"})
        await client.post("/api/votings", json={"topic": "Pick", "choices": ["a", "b"]})

        everything = (await client.get("/api/events")).json()
        assert everything["events"][0]["topic"] == "voting"

        caps = (await client.get("/api/events", params={"topic": "capability"})).json()
        assert caps["count"] == 1
        assert caps["events"][0]["capability"] == "a"


# ═══════════════════════════════════════════════════════════════════════════
# LIFESPAN
# ═══════════════════════════════════════════════════════════════════════════


class TestLifespan:
    async def test_sweeper_runs_while_serving(self, clock: ManualClock, tmp_path: Path) -> None:
        settings = Settings(data_dir=tmp_path, sweep_interval=0.01)
        async with PerformanceStore(settings.performance_db_path) as store:
            await store.save(PerformanceRecord("A1", 3, 3, 1.0, 12.0, 1.0))

        rt = build_runtime(settings=settings, clock=clock)
        app = create_app(rt)
        async with app.router.lifespan_context(app):
            sweeper = app.state.sweeper
            assert sweeper.running
            assert sweeper.interval == 0.01
            assert rt.facilitator.performance_store is not None
            restored = rt.performance.get("A1")
            assert restored is not None
            assert restored.task_count == 3
            await asyncio.sleep(0.1)
            assert sweeper.runs > 0

        assert not sweeper.running
        assert rt.facilitator.performance_store is None
