import os
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from cdscan.api import ApiClient
from cdscan.config import load_settings
from cdscan.errors import ScanAlreadyRunning
from cdscan.models import SCAN_TYPES
from cdscan.orchestrator import ScanOrchestrator
from cdscan.state import ScanStateStore


load_dotenv()
app = FastAPI(title="cdscan manager")

MAX_EVENTS = int(os.getenv("MAX_EVENTS", "500"))
EVENTS: deque = deque(maxlen=MAX_EVENTS)
EVENTS_LOCK = threading.Lock()


def _record(level: str, message: str) -> None:
    print(f"[manager] {level} {message}")
    with EVENTS_LOCK:
        EVENTS.append({"created_at": datetime.utcnow().isoformat(), "level": level, "message": message})


def _on_state_change() -> None:
    snap = STORE.snapshot()
    if snap.is_loading:
        branch = f" on branch '{snap.current_branch}'" if snap.current_branch else ""
        _record("INFO", f"Scan started{branch}")
    elif snap.error:
        _record("ERROR", f"State error: {snap.error}")
    else:
        _record("INFO", f"State updated: {snap.total_vulnerabilities} vulnerabilities, last scan {snap.last_scan_state}")


def _notify(level: str, title: str, message: str) -> None:
    _record(level.upper(), f"{title}: {message}")


def _api_factory() -> ApiClient:
    return ApiClient(load_settings())


_settings = load_settings()
STORE = ScanStateStore(verbose=_settings.verbose)
STORE.add_listener(_on_state_change)
ORCHESTRATOR = ScanOrchestrator(
    STORE,
    api_factory=_api_factory,
    notifier=_notify,
    poll_interval=_settings.poll_interval,
    max_attempts=_settings.poll_attempts,
    verbose=_settings.verbose,
)


@app.get("/api/state")
def get_state():
    return {**STORE.snapshot().summary(), "running": ORCHESTRATOR.running}


@app.get("/api/results/{kind}")
def get_results(kind: str, severity: Optional[str] = None):
    if kind not in SCAN_TYPES:
        return JSONResponse(status_code=404, content={"error": f"unknown scan type: {kind}"})
    items = STORE.snapshot().results(kind)
    if severity:
        wanted = {s.strip().upper() for s in severity.split(",") if s.strip()}
        items = [v for v in items if v.severity.upper() in wanted]
    return {"kind": kind, "total": len(items), "vulnerabilities": [v.to_dict() for v in items]}


@app.get("/api/results/{kind}/{vulnerability_id}")
def get_result(kind: str, vulnerability_id: str):
    if kind not in SCAN_TYPES:
        return JSONResponse(status_code=404, content={"error": f"unknown scan type: {kind}"})
    for v in STORE.snapshot().results(kind):
        if v.id == vulnerability_id:
            return v.to_dict()
    return JSONResponse(status_code=404, content={"error": "not_found"})


@app.post("/api/scans")
def trigger_scan(payload: Optional[dict] = None):
    payload = payload or {}
    project_id = payload.get("project_id") or load_settings().project_id
    path = payload.get("path") or os.getenv("CDSCAN_WORKSPACE")
    if not project_id:
        return JSONResponse(status_code=400, content={"error": "project_id is required"})
    if not path or not Path(path).is_dir():
        return JSONResponse(status_code=400, content={"error": f"workspace path does not exist: {path}"})
    try:
        ORCHESTRATOR.start_scan(project_id, str(Path(path).resolve()))
    except ScanAlreadyRunning as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    _record("INFO", f"Starting scan for {path} (project {project_id})")
    return JSONResponse(status_code=202, content={"status": "started", "project_id": project_id, "path": path})


@app.post("/api/scans/cancel")
def cancel_scan():
    cancelled = ORCHESTRATOR.cancel()
    if cancelled:
        _record("WARN", "Scan cancellation requested by user")
    return {"cancelled": cancelled}


@app.post("/api/reset")
def reset_state():
    if ORCHESTRATOR.running:
        return JSONResponse(status_code=409, content={"error": "cannot reset while a scan is running"})
    STORE.reset()
    return {"status": "ok"}


@app.get("/api/logs.json")
def logs_json():
    with EVENTS_LOCK:
        events = list(EVENTS)
    return {"running": ORCHESTRATOR.running, "logs": events}
