from __future__ import annotations

from dataclasses import dataclass, field
from threading import Event, Lock, Thread
from typing import Protocol

from .db import log_event
from .errors import ErrorBudgetExhausted, NotFoundError, ProtocolError, TransportError
from .models import ContainerSnapshot, ServiceDescriptor, default_beat_interval, utc_now
from .registration import RegistrationService

ERROR_BUDGET = 10


class ContainerSource(Protocol):
    def fetch_container(self, container_id: str, expected_image: str = "") -> ContainerSnapshot: ...


@dataclass(eq=False)
class HeartbeatLoop:
    key: str
    descriptor: ServiceDescriptor
    ttl_seconds: int
    interval_s: float
    cancelled: Event = field(default_factory=Event)
    consecutive_errors: int = 0
    renewals: int = 0
    started_at: str = field(default_factory=utc_now)
    thread: Thread | None = None


class RunningSet:
    """Keys under active renewal, each mapped to the loop that owns it."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._loops: dict[str, HeartbeatLoop] = {}

    def add_if_absent(self, loop: HeartbeatLoop) -> bool:
        with self._lock:
            if loop.key in self._loops:
                return False
            self._loops[loop.key] = loop
            return True

    def discard(self, loop: HeartbeatLoop) -> bool:
        """Remove the key, but only while `loop` is still its owner."""
        with self._lock:
            if self._loops.get(loop.key) is not loop:
                return False
            del self._loops[loop.key]
            return True

    def loops(self) -> list[HeartbeatLoop]:
        with self._lock:
            return list(self._loops.values())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._loops

    def __len__(self) -> int:
        with self._lock:
            return len(self._loops)


class HeartbeatManager:
    """Keeps exactly one TTL renewal loop alive per registered service."""

    def __init__(
        self,
        containers: ContainerSource,
        registration: RegistrationService,
        error_budget: int = ERROR_BUDGET,
        deregister_on_shutdown: bool = False,
    ):
        self.containers = containers
        self.registration = registration
        self.error_budget = max(1, int(error_budget))
        self.deregister_on_shutdown = deregister_on_shutdown
        self._running = RunningSet()
        self._closed = Event()

    def start_heartbeat(
        self,
        key: str,
        descriptor: ServiceDescriptor,
        ttl_seconds: int,
        beat_interval: float | None = None,
    ) -> bool:
        """Start renewing `key`; no-op (False) if a loop already owns it."""
        if self._closed.is_set():
            return False
        interval = beat_interval if beat_interval and beat_interval > 0 else default_beat_interval(ttl_seconds)
        loop = HeartbeatLoop(key=key, descriptor=descriptor, ttl_seconds=ttl_seconds, interval_s=interval)
        if not self._running.add_if_absent(loop):
            return False
        loop.thread = Thread(target=self._run, args=(loop,), name=f"heartbeat-{key}", daemon=True)
        try:
            loop.thread.start()
        except RuntimeError:
            self._running.discard(loop)
            raise
        log_event("DEBUG", f"Heartbeat started every {interval}s", key, descriptor.name)
        return True

    def is_running(self, key: str) -> bool:
        return key in self._running

    def running_keys(self) -> list[str]:
        return sorted(loop.key for loop in self._running.loops())

    def registrations(self) -> list[HeartbeatLoop]:
        return sorted(self._running.loops(), key=lambda loop: loop.key)

    def stop_all(self, timeout: float | None = None) -> None:
        """Refuse new loops, cancel the running ones and wait for them to exit."""
        self._closed.set()
        loops = self._running.loops()
        for loop in loops:
            loop.cancelled.set()
        for loop in loops:
            if loop.thread is not None:
                loop.thread.join(timeout)
        log_event("INFO", f"Stopped {len(loops)} heartbeat(s)")

    def _run(self, loop: HeartbeatLoop) -> None:
        try:
            self._beat(loop)
        except ErrorBudgetExhausted as e:
            log_event("ERROR", str(e), loop.key, loop.descriptor.name)
        except Exception as e:
            log_event("ERROR", f"Heartbeat crashed: {type(e).__name__}: {e}", loop.key, loop.descriptor.name)
        finally:
            self._running.discard(loop)
            log_event("DEBUG", "Heartbeat stopped", loop.key, loop.descriptor.name)

    def _fail(self, loop: HeartbeatLoop, err: Exception) -> None:
        loop.consecutive_errors += 1
        log_event("WARN", f"Heartbeat error {loop.consecutive_errors}/{self.error_budget}: {err}", loop.key, loop.descriptor.name)
        if loop.consecutive_errors >= self.error_budget:
            raise ErrorBudgetExhausted(f"Aborting heartbeat after {loop.consecutive_errors} consecutive errors")

    def _beat(self, loop: HeartbeatLoop) -> None:
        while not loop.cancelled.wait(loop.interval_s):
            try:
                snapshot: ContainerSnapshot | None = self.containers.fetch_container(loop.key)
            except NotFoundError:
                snapshot = None
            except (TransportError, ProtocolError) as e:
                self._fail(loop, e)
                continue

            if snapshot is None or not snapshot.running:
                log_event("INFO", "Container is no longer running", loop.key, loop.descriptor.name)
                try:
                    self.registration.deregister(loop.key)
                except (TransportError, ProtocolError) as e:
                    log_event("ERROR", f"Could not remove stopped service: {e}", loop.key, loop.descriptor.name)
                return

            # Keep the journal quiet for short beats.
            level = "INFO" if loop.interval_s >= 30 else "DEBUG"
            log_event(level, f"Updating ttl for {snapshot.name or loop.key}", loop.key, loop.descriptor.name)
            try:
                self.registration.renew(loop.key, loop.ttl_seconds)
            except NotFoundError:
                log_event("WARN", "Entry disappeared from skydns, stopping heartbeat", loop.key, loop.descriptor.name)
                return
            except (TransportError, ProtocolError) as e:
                self._fail(loop, e)
                continue
            loop.consecutive_errors = 0
            loop.renewals += 1

        if self.deregister_on_shutdown:
            try:
                self.registration.deregister(loop.key)
            except (TransportError, ProtocolError) as e:
                log_event("ERROR", f"Could not remove service on shutdown: {e}", loop.key, loop.descriptor.name)
