from __future__ import annotations

import queue
from threading import Lock, Thread
from typing import Iterable, Protocol

from .db import log_event
from .deriver import ServiceDeriver
from .errors import (
    InvalidDescriptorError,
    NotFoundError,
    NotTaggedError,
    ProtocolError,
    SkyregError,
    TransportError,
)
from .heartbeat import HeartbeatManager
from .models import (
    DEREGISTER_STATUSES,
    REGISTER_STATUSES,
    ContainerSnapshot,
    LifecycleEvent,
    service_key,
)
from .registration import Outcome, RegistrationService


class ContainerSource(Protocol):
    def fetch_container(self, container_id: str, expected_image: str = "") -> ContainerSnapshot: ...


class EventHandler:
    """Turns one lifecycle event into registry writes and heartbeats."""

    def __init__(
        self,
        containers: ContainerSource,
        deriver: ServiceDeriver,
        registration: RegistrationService,
        heartbeats: HeartbeatManager,
        beat_interval: float | None = None,
    ):
        self.containers = containers
        self.deriver = deriver
        self.registration = registration
        self.heartbeats = heartbeats
        self.beat_interval = beat_interval

    def add_service(self, key: str, image: str = "") -> Outcome:
        snapshot = self.containers.fetch_container(key, image)
        descriptor = self.deriver.derive(snapshot)
        outcome = self.registration.register(key, descriptor)
        self.heartbeats.start_heartbeat(key, descriptor, descriptor.ttl_seconds, self.beat_interval)
        return outcome

    def remove_service(self, key: str) -> Outcome:
        return self.registration.deregister(key)

    def handle(self, event: LifecycleEvent) -> str:
        """Process one event; failures are journaled, never raised."""
        key = service_key(event.container_id)
        try:
            if event.status in REGISTER_STATUSES:
                log_event("INFO", f"Adding {key} for {event.image}", key)
                return self.add_service(key, event.image).value
            if event.status in DEREGISTER_STATUSES:
                log_event("INFO", f"Removing {key} for {event.image} ({event.status.value})", key)
                return self.remove_service(key).value
            return "ignored"
        except NotTaggedError as e:
            log_event("DEBUG", f"Skipping: {e}", key)
            return "skipped"
        except NotFoundError as e:
            log_event("INFO", f"Container vanished before it could be registered: {e}", key)
            return "skipped"
        except InvalidDescriptorError as e:
            log_event("WARN", str(e), key)
            return "failed"
        except (TransportError, ProtocolError) as e:
            log_event("ERROR", f"Dropping {event.status.value} event: {e}", key)
            return "failed"
        except SkyregError as e:
            log_event("ERROR", f"Dropping {event.status.value} event: {type(e).__name__}: {e}", key)
            return "failed"


_CLOSED = object()


class EventDispatcher:
    """Fans lifecycle events out to a fixed pool of worker threads.

    The queue is bounded: the reader blocks when workers fall behind.
    Events for one container may be handled out of order when they land on
    different workers; heartbeats re-check live state to cover for that.
    """

    def __init__(self, handler: EventHandler, workers: int = 10, queue_size: int = 100):
        self.handler = handler
        self.workers = max(1, int(workers))
        self.queue_size = max(1, int(queue_size))
        self._lock = Lock()
        self.processed = 0
        self.outcomes: dict[str, int] = {}

    def run(self, events: Iterable[LifecycleEvent]) -> None:
        """Dispatch until `events` ends, then drain the queue and join the workers.

        Re-raises whatever ended the event source abnormally (e.g. TransportError).
        """
        q: queue.Queue = queue.Queue(maxsize=self.queue_size)
        threads = [
            Thread(target=self._work, args=(q,), name=f"skyreg-worker-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for t in threads:
            t.start()
        try:
            for event in events:
                q.put(event)
        finally:
            # Close markers go in behind every pending event, so workers drain first.
            for _ in threads:
                q.put(_CLOSED)
            for t in threads:
                t.join()

    def _work(self, q: queue.Queue) -> None:
        while True:
            item = q.get()
            try:
                if item is _CLOSED:
                    return
                try:
                    outcome = self.handler.handle(item)
                except Exception as e:
                    log_event("ERROR", f"Event handler failed: {type(e).__name__}: {e}")
                    outcome = "failed"
                with self._lock:
                    self.processed += 1
                    self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1
            finally:
                q.task_done()
