from __future__ import annotations

from enum import Enum
from typing import Protocol

from .db import log_event
from .errors import ConflictError, NotFoundError
from .models import ServiceDescriptor


class Registry(Protocol):
    def add(self, key: str, descriptor: ServiceDescriptor) -> None: ...

    def update(self, key: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...


class Outcome(str, Enum):
    REGISTERED = "registered"
    ALREADY_PRESENT = "already-present"
    REMOVED = "removed"
    NOT_FOUND = "not-found"
    RENEWED = "renewed"


class RegistrationService:
    """Conflict-aware writes against the registry.

    An existing entry (left over from an earlier watcher, or a racing worker)
    is adopted by renewing it; removing an entry that is already gone is a
    no-op. Everything else propagates.
    """

    def __init__(self, registry: Registry):
        self.registry = registry

    def register(self, key: str, descriptor: ServiceDescriptor) -> Outcome:
        try:
            self.registry.add(key, descriptor)
            log_event("INFO", f"Added {descriptor.name} ({descriptor.instance} @ {descriptor.host})", key, descriptor.name)
            return Outcome.REGISTERED
        except ConflictError:
            log_event("INFO", "Already registered, renewing existing entry", key, descriptor.name)

        try:
            self.renew(key, descriptor.ttl_seconds)
        except NotFoundError:
            # Expired between the add and the renew.
            try:
                self.registry.add(key, descriptor)
            except ConflictError:
                return Outcome.ALREADY_PRESENT
            log_event("INFO", f"Added {descriptor.name} after stale entry expired", key, descriptor.name)
            return Outcome.REGISTERED
        return Outcome.ALREADY_PRESENT

    def deregister(self, key: str) -> Outcome:
        try:
            self.registry.delete(key)
        except NotFoundError:
            log_event("DEBUG", "Nothing to remove, entry already gone", key)
            return Outcome.NOT_FOUND
        log_event("INFO", "Removed from skydns", key)
        return Outcome.REMOVED

    def renew(self, key: str, ttl_seconds: int) -> Outcome:
        """Refresh the TTL. Raises NotFoundError when the entry has vanished."""
        self.registry.update(key, ttl_seconds)
        return Outcome.RENEWED
