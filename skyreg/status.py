from __future__ import annotations

from threading import Thread

import uvicorn
from fastapi import FastAPI, Query

from . import db
from .api_models import EventView, HealthView, RegistrationView
from .heartbeat import HeartbeatManager


def create_app(heartbeats: HeartbeatManager) -> FastAPI:
    """Read-only view of what the watcher is currently keeping alive."""
    app = FastAPI(title="skyreg status")

    @app.get("/health", response_model=HealthView)
    def health() -> HealthView:
        return HealthView(status="healthy", registrations=len(heartbeats.running_keys()))

    @app.get("/registrations", response_model=list[RegistrationView])
    def registrations() -> list[RegistrationView]:
        return [
            RegistrationView(
                key=loop.key,
                name=loop.descriptor.name,
                instance=loop.descriptor.instance,
                host=loop.descriptor.host,
                port=loop.descriptor.port,
                ttl_seconds=loop.ttl_seconds,
                beat_interval_s=loop.interval_s,
                consecutive_errors=loop.consecutive_errors,
                started_at=loop.started_at,
            )
            for loop in heartbeats.registrations()
        ]

    @app.get("/events", response_model=list[EventView])
    def events(limit: int = Query(100, ge=1, le=1000), key: str | None = None) -> list[EventView]:
        return [EventView(**e) for e in db.latest_events(limit, service_key=key)]

    return app


class StatusServer:
    """Runs the status app under uvicorn in a daemon thread."""

    def __init__(self, heartbeats: HeartbeatManager, host: str, port: int):
        config = uvicorn.Config(create_app(heartbeats), host=host, port=port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._thr: Thread | None = None
        self.host = host
        self.port = port

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self._server.run, name="skyreg-status", daemon=True)
        self._thr.start()
        db.log_event("INFO", f"Status API listening on http://{self.host}:{self.port}")

    def stop(self, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        if self._thr:
            self._thr.join(timeout)
