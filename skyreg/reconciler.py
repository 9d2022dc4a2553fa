from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .db import log_event
from .dispatcher import EventHandler
from .errors import NotFoundError, NotTaggedError
from .models import ContainerSnapshot, service_key
from .registration import Outcome


class ContainerLister(Protocol):
    def list_containers(self) -> list[ContainerSnapshot]: ...


@dataclass
class ReconcileReport:
    registered: int = 0
    already_present: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.registered + self.already_present + self.skipped + self.failed


class Reconciler:
    """Seeds registrations from the containers already running at startup."""

    def __init__(self, containers: ContainerLister, handler: EventHandler):
        self.containers = containers
        self.handler = handler

    def run(self) -> ReconcileReport:
        # A failure to list is not caught: nothing useful can happen without Docker.
        containers = self.containers.list_containers()
        log_event("INFO", f"Starting restore of {len(containers)} running container(s)")

        report = ReconcileReport()
        for c in containers:
            key = service_key(c.id)
            if not c.running:
                report.skipped += 1
                continue
            try:
                outcome = self.handler.add_service(key, c.image)
            except NotTaggedError as e:
                log_event("DEBUG", f"Skipping restore: {e}", key)
                report.skipped += 1
                continue
            except NotFoundError as e:
                log_event("INFO", f"Container went away during restore: {e}", key)
                report.skipped += 1
                continue
            except Exception as e:
                # One unhealthy container must not block the rest.
                log_event("ERROR", f"Failed to restore {c.id}: {type(e).__name__}: {e}", key)
                report.failed += 1
                continue

            if outcome == Outcome.ALREADY_PRESENT:
                report.already_present += 1
            else:
                report.registered += 1

        log_event(
            "INFO",
            f"Restore done: {report.registered} added, {report.already_present} adopted, "
            f"{report.skipped} skipped, {report.failed} failed",
        )
        return report
