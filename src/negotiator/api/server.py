"""FastAPI server exposing the negotiation services."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import click
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from negotiator import __version__
from negotiator.breakdown.models import SubtaskDefinition, TaskSpec
from negotiator.capabilities.models import AdvertisedCapability, Availability, Capability
from negotiator.capabilities.negotiation import CapabilityInquiryResponse
from negotiator.core.events import Event
from negotiator.delegation.store import PerformanceStore
from negotiator.errors import (
    ExpiredError,
    InvalidStateError,
    NegotiatorError,
    NotFoundError,
    ValidationError,
    as_number,
)
from negotiator.runtime import Runtime, Sweeper, build_runtime

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[NegotiatorError], int] = {
    NotFoundError: 404,
    ExpiredError: 410,
    InvalidStateError: 409,
    ValidationError: 422,
}
EVENT_BUFFER = 500


def _require(body: dict[str, Any], key: str) -> Any:
    if not isinstance(body, dict):
        raise ValidationError(f"expected an object holding {key}")
    if key not in body or body[key] in (None, ""):
        raise ValidationError(f"{key} is required")
    return body[key]


def _list(body: dict[str, Any], key: str, required: bool = True) -> list[Any]:
    value = _require(body, key) if required else body.get(key, [])
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return value


def _number(body: dict[str, Any], key: str) -> float | None:
    value = body.get(key)
    return None if value is None else as_number(value, key)


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the API around ``runtime`` (a fresh in-memory runtime by default)."""
    rt = runtime or build_runtime()
    recent: deque[dict[str, Any]] = deque(maxlen=EVENT_BUFFER)
    rt.events.subscribe(Event, lambda event: recent.append(event.to_dict()))
    started = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper = Sweeper(rt.facilitator, rt.settings.sweep_interval)
        app.state.sweeper = sweeper
        async with PerformanceStore(rt.settings.performance_db_path) as store:
            await rt.facilitator.restore_performance(store)
            sweeper.start()
            logger.info("Sweeping every %.0fs", sweeper.interval)
            try:
                yield
            finally:
                await sweeper.stop()
                rt.facilitator.performance_store = None

    app = FastAPI(
        title="Antigravity Negotiator API",
        version=__version__,
        description="Capability matching, recruitment negotiation and consensus voting",
        lifespan=lifespan,
    )
    app.state.runtime = rt

    @app.exception_handler(NegotiatorError)
    async def negotiator_error(request: Request, exc: NegotiatorError) -> JSONResponse:
        status = next(
            (code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 400
        )
        return JSONResponse(status_code=status, content=jsonable_encoder(exc.to_dict()))

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check."""
        uptime = time.monotonic() - started
        return {"status": "ok", "version": __version__, "uptime_seconds": round(uptime, 1)}

    # ── Capabilities ─────────────────────────────────────────────────────

    @app.post("/api/capabilities")
    async def register_capability(body: dict[str, Any]) -> dict[str, Any]:
        provider_id = _require(body, "provider_id")
        capability = Capability.from_dict(_require(body, "capability"))
        registered = rt.registry.register(capability, provider_id)
        return {"capability": registered.to_dict(), "providers": rt.registry.get_providers(registered.name)}

    @app.get("/api/capabilities")
    async def list_capabilities() -> dict[str, Any]:
        capabilities = [c.to_dict() for c in rt.registry.list_capabilities()]
        return {"capabilities": capabilities, "count": len(capabilities)}

    @app.get("/api/capabilities/{name}/providers")
    async def capability_providers(name: str) -> dict[str, Any]:
        return {"capability": name, "providers": rt.registry.get_providers(name)}

    @app.get("/api/capabilities/{name}/similar")
    async def similar_capabilities(name: str) -> dict[str, Any]:
        if not rt.registry.has_capability(name):
            raise NotFoundError("Unknown capability", capability=name)
        return {
            "capability": name,
            "similar": [{"name": s.name, "score": round(s.score, 4)} for s in rt.registry.get_similar(name)],
        }

    @app.get("/api/capabilities/{name}/compatible")
    async def compatible_capabilities(name: str) -> dict[str, Any]:
        if not rt.registry.has_capability(name):
            raise NotFoundError("Unknown capability", capability=name)
        return {"capability": name, "compatible": rt.registry.get_compatible(name)}

    @app.post("/api/capabilities/combination")
    async def combination_score(body: dict[str, Any]) -> dict[str, Any]:
        return rt.registry.score_capability_combination(list(body.get("capabilities", []))).to_dict()

    @app.post("/api/providers/search")
    async def provider_search(body: dict[str, Any]) -> dict[str, Any]:
        result = rt.registry.find_providers_for_capabilities(
            _list(body, "capabilities"),
            required=body.get("required"),
            preferred=body.get("preferred"),
            excluded=body.get("excluded"),
            taxonomies=body.get("taxonomies"),
            max_providers=int(as_number(body.get("max_providers", 5), "max_providers")),
            allow_partial=bool(body.get("allow_partial", True)),
        )
        return result.to_dict()

    # ── Advertisements ───────────────────────────────────────────────────

    @app.post("/api/advertisements")
    async def create_advertisement(body: dict[str, Any]) -> dict[str, Any]:
        ad = rt.advertisements.create(
            _require(body, "agent_id"),
            [AdvertisedCapability.from_dict(c) for c in _list(body, "capabilities")],
            availability=(
                Availability.from_dict(body["availability"]) if body.get("availability") else None
            ),
            validity=_number(body, "validity"),
            sender_name=body.get("sender_name"),
            metadata=body.get("metadata"),
        )
        return ad.to_dict()

    @app.get("/api/advertisements/providers")
    async def advertised_providers(
        capability: str, min_confidence: float | None = None, availability: str = "any"
    ) -> dict[str, Any]:
        listings = rt.advertisements.find_providers(capability, min_confidence, availability)
        return {"capability": capability, "providers": [listing.to_dict() for listing in listings]}

    # ── Capability inquiries ─────────────────────────────────────────────

    @app.post("/api/inquiries")
    async def create_inquiry(body: dict[str, Any]) -> dict[str, Any]:
        inquiry = rt.negotiator.create_inquiry(
            _require(body, "from_agent_id"),
            _require(body, "capability"),
            context=body.get("context"),
            team_context=body.get("team_context"),
            priority=int(as_number(body.get("priority", 5), "priority")),
            response_deadline=_number(body, "response_deadline"),
        )
        return {
            "inquiry_id": inquiry.inquiry_id,
            "capability": inquiry.capability,
            "response_deadline": inquiry.response_deadline,
        }

    @app.post("/api/inquiries/{inquiry_id}/responses")
    async def respond_to_inquiry(inquiry_id: str, body: dict[str, Any]) -> dict[str, Any]:
        response = CapabilityInquiryResponse(
            inquiry_id=inquiry_id,
            from_agent_id=_require(body, "from_agent_id"),
            available=bool(body.get("available", False)),
            confidence_level=as_number(body.get("confidence_level", 0.0), "confidence_level"),
            estimated_completion=_number(body, "estimated_completion"),
            constraints=list(body.get("constraints", [])),
            alternative_capabilities=list(body.get("alternative_capabilities", [])),
            commitment_level=body.get("commitment_level"),
        )
        rt.negotiator.process_response(response)
        return {"inquiry_id": inquiry_id, "accepted": True}

    @app.get("/api/inquiries/{inquiry_id}/result")
    async def inquiry_result(inquiry_id: str) -> dict[str, Any]:
        return rt.negotiator.get_result(inquiry_id).to_dict()

    # ── Votings ──────────────────────────────────────────────────────────

    @app.post("/api/votings")
    async def create_voting(body: dict[str, Any]) -> dict[str, Any]:
        voting = rt.voting.create(
            _require(body, "topic"),
            list(body.get("choices", [])),
            eligible_voters=body.get("eligible_voters"),
            expires_in=_number(body, "expires_in"),
            created_by=body.get("created_by"),
            metadata=body.get("metadata"),
        )
        return voting.to_dict()

    @app.post("/api/votings/{voting_id}/votes")
    async def cast_vote(voting_id: str, body: dict[str, Any]) -> dict[str, Any]:
        voting = rt.voting.cast(voting_id, _require(body, "agent_id"), _require(body, "choice"))
        return voting.to_dict()

    @app.get("/api/votings/{voting_id}")
    async def get_voting(voting_id: str) -> dict[str, Any]:
        return rt.voting.check(voting_id).to_dict()

    @app.get("/api/votings")
    async def list_votings(status: str | None = None) -> dict[str, Any]:
        votings = rt.voting.list_votings(status)
        return {"votings": [v.to_dict() for v in votings], "count": len(votings)}

    # ── Breakdowns ───────────────────────────────────────────────────────

    @app.post("/api/breakdowns")
    async def initiate_breakdown(body: dict[str, Any]) -> dict[str, Any]:
        task = _require(body, "task")
        spec = TaskSpec(
            id=_require(task, "id"),
            name=task.get("name", task["id"]),
            description=task.get("description", ""),
            required_capabilities=list(task.get("required_capabilities", [])),
        )
        breakdown = rt.breakdowns.initiate(
            spec, _require(body, "proposer_id"), list(body.get("collaborators", []))
        )
        return breakdown.to_dict()

    @app.put("/api/breakdowns/{breakdown_id}/subtasks")
    async def update_subtasks(breakdown_id: str, body: dict[str, Any]) -> dict[str, Any]:
        subtasks = [SubtaskDefinition.from_dict(s) for s in _list(body, "subtasks", required=False)]
        return rt.breakdowns.update_subtasks(breakdown_id, _require(body, "agent_id"), subtasks).to_dict()

    @app.post("/api/breakdowns/{breakdown_id}/voting")
    async def start_breakdown_voting(breakdown_id: str, body: dict[str, Any]) -> dict[str, Any]:
        voting = rt.breakdowns.start_voting(
            breakdown_id, _require(body, "agent_id"), _number(body, "expires_in")
        )
        return voting.to_dict()

    @app.post("/api/breakdowns/{breakdown_id}/votes")
    async def vote_on_breakdown(breakdown_id: str, body: dict[str, Any]) -> dict[str, Any]:
        if "approve" not in body:
            raise ValidationError("approve is required")
        breakdown = rt.breakdowns.vote(breakdown_id, _require(body, "agent_id"), bool(body["approve"]))
        return breakdown.to_dict()

    @app.get("/api/breakdowns/{breakdown_id}")
    async def get_breakdown(breakdown_id: str) -> dict[str, Any]:
        return rt.breakdowns.get(breakdown_id).to_dict()

    # ── Runtime ──────────────────────────────────────────────────────────

    @app.get("/api/recommendations")
    async def recommendations(limit: int = 3) -> dict[str, Any]:
        records = rt.facilitator.recommend_agents(limit)
        return {"recommendations": [r.to_dict() for r in records]}

    @app.get("/api/stats")
    async def stats() -> dict[str, Any]:
        return rt.facilitator.get_stats()

    @app.get("/api/events")
    async def events(limit: int = 50, topic: str | None = None) -> dict[str, Any]:
        entries = [e for e in recent if topic is None or e["topic"] == topic]
        entries = list(reversed(entries))[:limit]
        return {"events": jsonable_encoder(entries), "count": len(entries)}

    return app


app = create_app()


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--log-level", default="INFO", help="Log level")
def main(port: int, host: str, log_level: str) -> None:
    """Start the Negotiator API server."""
    import uvicorn

    from negotiator.config import Settings
    from negotiator.logger import configure_logging

    settings = Settings.load()
    configure_logging(log_level, log_file=settings.log_file)
    uvicorn.run(create_app(build_runtime(settings, journal=True)), host=host, port=port)
