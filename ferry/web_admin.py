from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ferry.config_manager import SECRET_FIELDS, ConfigManager
from ferry.scheduler import PASS_IN_PROGRESS, SyncScheduler
from ferry.state_store import StateStore
from ferry.sync_engine import SyncEngine


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        self.sync_engine = SyncEngine(self.config_manager, self.state_store)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)


def _masked_meta(config_dict: dict[str, Any]) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    for section, key in SECRET_FIELDS:
        has_value = bool(str(config_dict.get(section, {}).get(key, "")).strip())
        meta.setdefault(section, {})[key] = {"is_masked": has_value}
    return meta


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    for section, key in SECRET_FIELDS:
        section_payload = sanitized.get(section)
        if not isinstance(section_payload, dict):
            continue
        section_payload = dict(section_payload)
        secret = section_payload.get(key)
        if secret is not None and str(secret).strip() in {"", "***"}:
            if str(current.get(section, {}).get(key, "")):
                section_payload.pop(key, None)
            else:
                section_payload[key] = ""
        if section_payload:
            sanitized[section] = section_payload
        else:
            sanitized.pop(section, None)
    return sanitized


def create_app(context: AppContext | None = None, *, start_scheduler: bool = True) -> FastAPI:
    if context is None:
        config_path = os.getenv("FERRY_CONFIG_PATH", "config.yaml")
        state_path = os.getenv("FERRY_STATE_PATH", "data/state.db")
        context = AppContext(config_path=config_path, state_path=state_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_scheduler:
            app.state.context.scheduler.start()
        try:
            yield
        finally:
            if start_scheduler:
                app.state.context.scheduler.stop()

    app = FastAPI(title="Ferry Admin", version="0.1.0", lifespan=lifespan)
    app.state.context = context

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        raw = app.state.context.config_manager.load().to_dict()
        return {"config": app.state.context.config_manager.masked(), "meta": _masked_meta(raw)}

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        if not isinstance(request.payload, dict):
            raise HTTPException(status_code=400, detail="payload must be an object")
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = _sanitize_config_payload(request.payload, current)
        app.state.context.config_manager.update(sanitized_payload)
        return {
            "message": "config updated",
            "config": app.state.context.config_manager.masked(),
        }

    @app.post("/api/sync/run")
    def trigger_sync() -> dict[str, str]:
        app.state.context.scheduler.trigger_manual()
        return {"message": "sync triggered"}

    @app.post("/api/sync/run-now")
    def run_sync_now() -> dict[str, Any]:
        result = app.state.context.scheduler.run_pass("manual-api")
        if result.status == "skipped" and result.message == PASS_IN_PROGRESS:
            raise HTTPException(status_code=409, detail=result.message)
        return {"message": "sync completed", "result": result.to_dict()}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20) -> dict[str, Any]:
        return {
            "running": app.state.context.scheduler.running,
            "runs": app.state.context.state_store.recent_sync_runs(limit=limit),
        }

    @app.get("/api/audit/events")
    def audit_events(limit: int = 100, run_id: int | None = None, store: str | None = None) -> dict[str, Any]:
        events = app.state.context.state_store.recent_audit_events(limit=limit, run_id=run_id, store=store)
        return {"events": events}

    @app.get("/api/baseline")
    def baseline() -> dict[str, Any]:
        return app.state.context.scheduler.baseline.summary()

    return app
