"""
main.py - FastAPI Application Entry Point

Exposes the telemetry store, the alert engine and the network
diagnostics over HTTP, and runs the background sampler while the app is
up.

Routes are plain `def` functions on purpose: FastAPI runs them in its
worker thread pool, so database access and the diagnostic commands never
block the event loop.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from hostmon import __version__, commands, config
from hostmon.alerts import AlertEngine
from hostmon.collector import MetricsSource, ProcessInfo, list_processes, processes_as_maps
from hostmon.database import SessionLocal, engine, init_db
from hostmon.dialects import get_dialect
from hostmon.errors import HostmonError, ValidationError
from hostmon.parsers import (
    DiagnosticResult,
    NetworkConnectionInfo,
    parse_connections,
    parse_ping_latency,
    parse_ping_summary,
    parse_traceroute,
)
from hostmon.scheduler import build_scheduler, collect_and_store, start_scheduler, stop_scheduler
from hostmon.schemas import (
    AcknowledgeRequest,
    AlertConfiguration,
    AlertConfigurationIn,
    AlertHistoryEntry,
    DatabaseStats,
    EvaluateRequest,
    ParseRequest,
    PingRequest,
    TelemetrySample,
    TracerouteRequest,
)
from hostmon.store import TelemetryStore

logger = logging.getLogger(__name__)

# About a hundred years
MAX_RETENTION_DAYS = 36500

STATUS_BY_CODE = {
    "not_found": 404,
    "invalid_state": 409,
    "validation_error": 400,
    "parse_failure": 422,
    "transport_failure": 502,
    "storage_failure": 503,
    "schema_invariant": 500,
}


def get_store() -> TelemetryStore:
    return TelemetryStore(SessionLocal)


def get_alert_engine() -> AlertEngine:
    return AlertEngine(SessionLocal)


def get_metrics_source(request: Request) -> MetricsSource:
    """The source created by the lifespan; one per process."""
    source = getattr(request.app.state, "metrics_source", None)
    if source is None:
        raise HTTPException(status_code=503, detail="Metrics source is not running")
    return source


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - Code before 'yield' runs when the app STARTS
    - Code after 'yield' runs when the app STOPS
    """
    config.configure_logging()
    init_db(engine)

    app.state.metrics_source = MetricsSource()
    scheduler = None
    if config.SCHEDULER_ENABLED:
        scheduler = build_scheduler(app.state.metrics_source, get_store(), get_alert_engine())
        start_scheduler(scheduler)

    yield

    if scheduler is not None:
        stop_scheduler(scheduler)


app = FastAPI(
    title="Host Monitor API",
    description="Stores system telemetry, raises threshold alerts and runs network diagnostics",
    version=__version__,
    lifespan=lifespan,
)

# CORS Middleware - allows the desktop shell's web view to talk to this backend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HostmonError)
async def hostmon_error_handler(request: Request, exc: HostmonError):
    status = STATUS_BY_CODE.get(exc.code, 500)
    content = {"detail": exc.message, "code": exc.code}
    excerpt = getattr(exc, "excerpt", None)
    if excerpt:
        content["excerpt"] = excerpt
    return JSONResponse(status_code=status, content=content)


@app.get("/")
def root():
    """Root endpoint - welcome message and available endpoints."""
    return {
        "message": "Welcome to Host Monitor API",
        "docs_url": "/docs",
        "endpoints": {
            "samples": "/telemetry/samples?start=&end=",
            "export": "/telemetry/export?start=&end=",
            "stats": "/telemetry/stats",
            "alert_configurations": "/alerts/configurations",
            "alert_history": "/alerts/history?limit=100&offset=0",
            "ping": "/diagnostics/ping (POST)",
            "traceroute": "/diagnostics/traceroute (POST)",
            "connections": "/diagnostics/connections",
        },
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


def _time_range(start: Optional[str], end: Optional[str], hours: int):
    """Missing bounds default to the last `hours` hours."""
    if end is None:
        end = datetime.now(timezone.utc).isoformat()
    if start is None:
        start = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()
    return start, end


@app.post("/telemetry/samples", status_code=201)
def store_sample(sample: TelemetrySample, store: TelemetryStore = Depends(get_store)):
    store.write(sample)
    return {"id": sample.id}


@app.get("/telemetry/samples", response_model=List[TelemetrySample])
def fetch_samples(
    start: Optional[str] = Query(default=None, description="ISO-8601 start (inclusive)"),
    end: Optional[str] = Query(default=None, description="ISO-8601 end (inclusive)"),
    hours: int = Query(default=24, ge=1, le=24 * 365),
    store: TelemetryStore = Depends(get_store),
):
    start, end = _time_range(start, end, hours)
    return store.fetch_range(start, end)


@app.get("/telemetry/export")
def export_csv(
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
    hours: int = Query(default=24, ge=1, le=24 * 365),
    store: TelemetryStore = Depends(get_store),
):
    """
    Exports samples as a downloadable CSV file.
    """
    start, end = _time_range(start, end, hours)
    body = store.export_csv(start, end)
    return StreamingResponse(
        iter([body]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=system_telemetry.csv"},
    )


@app.post("/telemetry/prune")
def prune_samples(
    retention_days: int = Query(default=config.RETENTION_DAYS, ge=0, le=MAX_RETENTION_DAYS),
    store: TelemetryStore = Depends(get_store),
):
    return {"removed": store.prune(retention_days), "retention_days": retention_days}


@app.get("/telemetry/stats", response_model=DatabaseStats)
def telemetry_stats(store: TelemetryStore = Depends(get_store)):
    return store.stats()


@app.post("/telemetry/snapshot")
def save_snapshot(
    source: MetricsSource = Depends(get_metrics_source),
    store: TelemetryStore = Depends(get_store),
    alerts: AlertEngine = Depends(get_alert_engine),
):
    """
    Collects current metrics now, saves them, and checks for alerts.

    The scheduler does this on its own every COLLECT_INTERVAL_SECONDS;
    this endpoint is for on-demand saves.
    """
    new_alerts = collect_and_store(source, store, alerts)
    return {
        "message": "Snapshot saved successfully",
        "snapshot": store.latest(),
        "alerts": new_alerts,
    }


@app.get("/metrics/current", response_model=TelemetrySample)
def current_metrics(source: MetricsSource = Depends(get_metrics_source)):
    """Returns a live sample without storing it."""
    return source.sample()


@app.get("/processes", response_model=List[ProcessInfo])
def processes(limit: int = Query(default=50, ge=1, le=1000)):
    return list_processes(limit)


@app.get("/processes/legacy", deprecated=True)
def processes_legacy(limit: int = Query(default=50, ge=1, le=1000)):
    return processes_as_maps(list_processes(limit))


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


@app.get("/alerts/configurations", response_model=List[AlertConfiguration])
def list_configurations(alerts: AlertEngine = Depends(get_alert_engine)):
    return alerts.list_configurations()


@app.post("/alerts/configurations", status_code=201)
def add_configuration(cfg: AlertConfigurationIn, alerts: AlertEngine = Depends(get_alert_engine)):
    return {"id": alerts.add_configuration(cfg)}


@app.get("/alerts/configurations/{config_id}", response_model=AlertConfiguration)
def get_configuration(config_id: str, alerts: AlertEngine = Depends(get_alert_engine)):
    return alerts.get_configuration(config_id)


@app.put("/alerts/configurations/{config_id}", response_model=AlertConfiguration)
def update_configuration(
    config_id: str,
    cfg: AlertConfigurationIn,
    alerts: AlertEngine = Depends(get_alert_engine),
):
    return alerts.update_configuration(config_id, cfg)


@app.delete("/alerts/configurations/{config_id}", status_code=204)
def delete_configuration(config_id: str, alerts: AlertEngine = Depends(get_alert_engine)):
    alerts.delete_configuration(config_id)


@app.post("/alerts/evaluate", response_model=List[AlertHistoryEntry])
def evaluate(values: EvaluateRequest, alerts: AlertEngine = Depends(get_alert_engine)):
    return alerts.evaluate(values.cpu, values.memory, values.disk, values.network)


@app.get("/alerts/history", response_model=List[AlertHistoryEntry])
def alert_history(
    limit: int = Query(default=100, ge=0, le=1000),
    offset: int = Query(default=0, ge=0),
    alerts: AlertEngine = Depends(get_alert_engine),
):
    return alerts.history(limit, offset)


@app.get("/alerts/active", response_model=List[AlertHistoryEntry])
def active_alerts(alerts: AlertEngine = Depends(get_alert_engine)):
    """
    Gets all active (unacknowledged) alerts.
    """
    return alerts.active_alerts()


@app.post("/alerts/history/{alert_id}/acknowledge", response_model=AlertHistoryEntry)
def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeRequest,
    alerts: AlertEngine = Depends(get_alert_engine),
):
    return alerts.acknowledge(alert_id, body.acknowledged_by)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@app.post("/diagnostics/ping", response_model=DiagnosticResult)
def diagnose_ping(body: PingRequest):
    return commands.run_ping(body.host, body.count)


@app.post("/diagnostics/traceroute", response_model=DiagnosticResult)
def diagnose_traceroute(body: TracerouteRequest):
    return commands.run_traceroute(body.host)


@app.get("/diagnostics/connections", response_model=List[NetworkConnectionInfo])
def network_connections():
    return commands.list_connections()


@app.post("/diagnostics/parse/{kind}")
def parse_output(kind: str, body: ParseRequest):
    """
    Parses diagnostic output captured elsewhere.

    kind is one of ping-latency, ping-summary, traceroute, connections.
    """
    dialect = get_dialect(body.dialect)
    if kind == "ping-latency":
        # Tries every dialect's markers unless one was named
        return {"latency": parse_ping_latency(body.text, dialect if body.dialect else None)}
    if kind == "ping-summary":
        return parse_ping_summary(body.text, dialect)
    if kind == "traceroute":
        return parse_traceroute(body.text, dialect)
    if kind == "connections":
        return parse_connections(body.text, dialect)
    raise ValidationError(f"unknown parser {kind!r}")


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT, log_level=config.LOG_LEVEL.lower())
