from __future__ import annotations

import json
import os
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from buildfix.integrations.emitter import IntegrationEmitter
from buildfix.models import FixBuildPayload
from buildfix.pipeline.orchestrator import FixBuildPipeline
from buildfix.runner.bounded import CommandRunner
from buildfix.settings import Settings
from buildfix.telemetry.audit import AuditLogger
from buildfix.telemetry.evidence import run_record_path

VERSION = "0.1.0"


def create_app(settings: Settings | None = None, *, runner: CommandRunner | None = None) -> FastAPI:
    """
    App factory used by uvicorn and tests.

    Important: routes are registered on the module-level `app` instance via decorators.
    Tests call `create_app(custom_settings, runner=fake)` and get that same instance back with
    its state swapped, so every route sees the new settings/runner.
    """
    s = settings or Settings()
    existing = globals().get("app")
    target = existing if isinstance(existing, FastAPI) else FastAPI(title="buildfix", version=VERSION)

    old_emitter = getattr(target.state, "integration_emitter", None)
    if isinstance(old_emitter, IntegrationEmitter):
        old_emitter.stop()
    em = IntegrationEmitter(
        webhook_urls_json=s.integration_webhook_urls_json,
        emit_event_types_json=s.integration_emit_event_types_json,
    )
    em.start()

    target.state.settings = s
    target.state.runner = runner
    target.state.integration_emitter = em
    target.state.audit = AuditLogger(s.audit_log_path)
    if s.run_store_enabled:
        try:
            os.makedirs(s.run_store_dir, exist_ok=True)
        except OSError:
            pass
    return target


app = create_app()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


@app.post("/fix_build")
async def fix_build(request: Request) -> JSONResponse:
    """
    Clone the repo at the failing commit, run the fixing agent, then commit and push to the same
    branch (no new branch, no PR). One JSON response per request.
    """
    try:
        raw = await request.body()
    except Exception:  # noqa: BLE001
        return _error(500, "error reading request body")

    try:
        payload = FixBuildPayload.model_validate(json.loads(raw))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        return _error(400, "invalid JSON")

    pipeline = FixBuildPipeline(
        settings=request.app.state.settings,
        runner=request.app.state.runner,
        audit=request.app.state.audit,
        emitter=request.app.state.integration_emitter,
    )
    # Runs to completion in a worker thread even if the caller disconnects; the only
    # cancellation is each command's own deadline.
    outcome = await run_in_threadpool(pipeline.run, payload)
    return JSONResponse(outcome.response_body(), status_code=outcome.status_code)


@app.get("/health")
def health(request: Request) -> Dict[str, Any]:
    return {"ok": True, "version": VERSION}


@app.get("/api/audit/recent")
def audit_recent(request: Request, n: int = 200) -> JSONResponse:
    audit: AuditLogger = request.app.state.audit
    records = [r.__dict__ for r in audit.recent(max_lines=max(1, min(n, 2000)))]
    return JSONResponse({"records": records})


@app.get("/api/runs/{correlation_id}.json")
def run_record(request: Request, correlation_id: str) -> JSONResponse:
    settings: Settings = request.app.state.settings
    if not correlation_id.isalnum():
        raise HTTPException(status_code=404, detail="run not found")
    path = run_record_path(store_dir=settings.run_store_dir, correlation_id=correlation_id)
    if not os.path.exists(path):
        raise HTTPException(status_code=404, detail="run not found")
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return JSONResponse(json.load(f))
