"""FastAPI host adapter for the behavior pipeline.

Translates HTTP calls from a browser-side host into orchestrator calls. The
orchestrator and its ticker are built once at startup and shared across
requests through ``app.state``.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field, ValidationError

from nudgeguard.config import get_settings
from nudgeguard.models import Insight
from nudgeguard.observability.metrics import APP_INFO, REQUEST_DURATION, REQUESTS_TOTAL
from nudgeguard.orchestrator import InterventionOrchestrator, build_orchestrator
from nudgeguard.snapshot import load_snapshot, save_snapshot
from nudgeguard.ticker import PipelineTicker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class TabEvent(BaseModel):
    """Request body for POST /events/tab-activated and /events/tab-removed."""

    tab_id: int | str


class TabUpdatedEvent(BaseModel):
    """Request body for POST /events/tab-updated."""

    tab_id: int | str
    url: str


class ScrollEvent(BaseModel):
    """Request body for POST /events/scroll."""

    tab_id: int | str
    url: str
    delta_pixels: float


class EventAck(BaseModel):
    status: str = "accepted"


class SemanticQuery(BaseModel):
    """Request body for POST /context/semantic."""

    query: str
    node_types: list[str] | None = None


class GraphSnapshot(BaseModel):
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)


class SnapshotImportResponse(BaseModel):
    node_count: int
    edge_count: int


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    ticker_running: bool
    sessions: dict[str, int]
    pending_interventions: int


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the pipeline once at startup, tear down on shutdown."""
    settings = get_settings()
    logging.getLogger("nudgeguard").setLevel(settings.log_level.upper())
    APP_INFO.info({"version": "0.1.0"})

    logger.info("Building behavior pipeline...")
    orchestrator = build_orchestrator(settings)
    if settings.graph_snapshot_path:
        load_snapshot(settings.graph_snapshot_path, orchestrator)

    ticker = PipelineTicker(orchestrator, settings)
    ticker.start()
    app.state.orchestrator = orchestrator
    app.state.ticker = ticker
    logger.info("Pipeline ready")

    yield

    ticker.stop()
    await orchestrator.aclose()
    if settings.graph_snapshot_path:
        save_snapshot(settings.graph_snapshot_path, orchestrator)
    logger.info("Shutting down behavior pipeline")


app = FastAPI(title="nudgeguard", lifespan=lifespan)


def _orchestrator(request: Request) -> InterventionOrchestrator:
    return request.app.state.orchestrator


def _observe(endpoint: str, start: float, status: str = "success") -> None:
    REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()
    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)


# ---------------------------------------------------------------------------
# Host events
# ---------------------------------------------------------------------------


@app.post("/events/tab-activated", response_model=EventAck)
async def tab_activated(event: TabEvent, request: Request) -> EventAck:
    start = time.monotonic()
    _orchestrator(request).on_tab_activated(event.tab_id)
    _observe("/events/tab-activated", start)
    return EventAck()


@app.post("/events/tab-updated", response_model=EventAck)
async def tab_updated(event: TabUpdatedEvent, request: Request) -> EventAck:
    start = time.monotonic()
    _orchestrator(request).on_tab_updated(event.tab_id, event.url)
    _observe("/events/tab-updated", start)
    return EventAck()


@app.post("/events/scroll", response_model=EventAck)
async def scroll(event: ScrollEvent, request: Request) -> EventAck:
    start = time.monotonic()
    _orchestrator(request).on_scroll(event.tab_id, event.url, event.delta_pixels)
    _observe("/events/scroll", start)
    return EventAck()


@app.post("/events/tab-removed", response_model=EventAck)
async def tab_removed(event: TabEvent, request: Request) -> EventAck:
    start = time.monotonic()
    _orchestrator(request).on_tab_removed(event.tab_id)
    _observe("/events/tab-removed", start)
    return EventAck()


# ---------------------------------------------------------------------------
# Read surface
# ---------------------------------------------------------------------------


@app.get("/stats")
async def stats(request: Request) -> dict[str, Any]:
    return _orchestrator(request).get_stats()


@app.get("/sessions")
async def sessions(request: Request) -> dict[str, list[dict[str, Any]]]:
    return _orchestrator(request).get_active_sessions()


@app.get("/insights", response_model=list[Insight])
async def insights(request: Request, limit: int = 10) -> list[Insight]:
    return _orchestrator(request).get_recent_insights(limit)


@app.get("/context")
async def nudge_context(request: Request, type_filter: str | None = None) -> dict[str, Any]:
    """Context snapshot for an external nudge-phrasing step."""
    return _orchestrator(request).build_nudge_context(type_filter)


@app.post("/context/semantic")
async def semantic_context(query: SemanticQuery, request: Request) -> dict[str, Any]:
    return await _orchestrator(request).retrieve_semantic_context(query.query, query.node_types)


@app.get("/graph")
async def graph(request: Request) -> dict[str, Any]:
    return _orchestrator(request).context.get_full_graph()


@app.get("/snapshot", response_model=GraphSnapshot)
async def export_snapshot(request: Request) -> GraphSnapshot:
    return GraphSnapshot.model_validate(_orchestrator(request).export_snapshot())


@app.post("/snapshot", response_model=SnapshotImportResponse)
async def import_snapshot(snapshot: GraphSnapshot, request: Request) -> SnapshotImportResponse:
    """Replace the knowledge graph with ``snapshot``."""
    start = time.monotonic()
    orchestrator = _orchestrator(request)
    try:
        orchestrator.import_snapshot(snapshot.model_dump())
    except ValidationError as exc:
        _observe("/snapshot", start, status="error")
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    _observe("/snapshot", start)
    graph_stats = orchestrator.graph.get_stats()
    return SnapshotImportResponse(node_count=graph_stats["node_count"], edge_count=graph_stats["edge_count"])


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    orchestrator = _orchestrator(request)
    return HealthResponse(
        status="healthy",
        ticker_running=request.app.state.ticker.running,
        sessions={tracker.kind: len(tracker.store) for tracker in orchestrator.trackers},
        pending_interventions=len(orchestrator.scheduler.pending()),
    )
