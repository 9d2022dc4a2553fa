from __future__ import annotations

from threading import Event, RLock

from . import db
from .deriver import ServiceDeriver
from .dispatcher import EventDispatcher, EventHandler
from .docker_ops import DockerContainers, EventStream
from .errors import ProtocolError, TransportError
from .heartbeat import HeartbeatManager
from .reconciler import Reconciler
from .registration import RegistrationService
from .settings import Settings, validate_settings
from .skydns import SkyDNSClient
from .status import StatusServer


class Watcher:
    """Process-level wiring: checks, restore, event loop, shutdown."""

    def __init__(
        self,
        settings: Settings,
        containers: DockerContainers | None = None,
        registry: SkyDNSClient | None = None,
        deriver: ServiceDeriver | None = None,
    ):
        validate_settings(settings)
        self.settings = settings
        self.containers = containers or DockerContainers(settings.docker_url)
        self.registry = registry or SkyDNSClient(
            settings.skydns_url,
            secret=settings.secret,
            domain=settings.domain,
            timeout_s=settings.registry_timeout_s,
        )
        self.deriver = deriver or ServiceDeriver.from_settings(
            environment=settings.environment,
            ttl=settings.ttl_s,
            rule=settings.rule,
            plugins=settings.plugins,
        )
        self.registration = RegistrationService(self.registry)
        self.heartbeats = HeartbeatManager(
            self.containers,
            self.registration,
            deregister_on_shutdown=settings.deregister_on_shutdown,
        )
        self.handler = EventHandler(
            self.containers,
            self.deriver,
            self.registration,
            self.heartbeats,
            beat_interval=settings.beat_s if settings.beat_s >= 1 else None,
        )
        self.reconciler = Reconciler(self.containers, self.handler)
        self.dispatcher = EventDispatcher(self.handler, workers=settings.workers, queue_size=settings.queue_size)

        self._stopping = Event()
        # Reentrant: stop() runs from signal handlers on the thread that may hold it.
        self._lock = RLock()
        self._stream: EventStream | None = None
        self._status: StatusServer | None = None

    def stop(self) -> None:
        """Ask run() to finish: close the event stream so the workers can drain."""
        self._stopping.set()
        with self._lock:
            stream = self._stream
        if stream is not None:
            stream.close()

    def check_dependencies(self) -> None:
        self.containers.ping()
        self.registry.ping()

    def run(self) -> int:
        """Run until the event stream ends or stop() is called. Returns an exit code."""
        db.init_db()
        try:
            self.check_dependencies()
            self.reconciler.run()
        except (TransportError, ProtocolError) as e:
            db.log_event("ERROR", f"Startup failed: {e}")
            return 1

        if self.settings.status_port > 0:
            self._status = StatusServer(self.heartbeats, self.settings.status_host, self.settings.status_port)
            self._status.start()

        try:
            return self._event_loop()
        finally:
            self.heartbeats.stop_all(timeout=self.settings.registry_timeout_s * 2)
            if self._status is not None:
                self._status.stop()
            db.log_event("INFO", "Shutdown complete")

    def _event_loop(self) -> int:
        while not self._stopping.is_set():
            try:
                stream = self.containers.event_stream()
                with self._lock:
                    self._stream = stream
                if self._stopping.is_set():
                    stream.close()
                    return 0
                db.log_event("INFO", "Starting run loop...")
                self.dispatcher.run(stream)
                db.log_event("INFO", "Event stream ended, stopping cleanly")
                return 0
            except TransportError as e:
                db.log_event("ERROR", str(e))
            finally:
                with self._lock:
                    self._stream = None

            if self.settings.reconnect_delay_s <= 0:
                return 1
            if self._stopping.wait(self.settings.reconnect_delay_s):
                break
            db.log_event("INFO", "Reconnecting to docker, re-running restore")
            try:
                self.reconciler.run()
            except (TransportError, ProtocolError) as e:
                db.log_event("ERROR", f"Restore after reconnect failed: {e}")
        return 0
