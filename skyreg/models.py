from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Registry keys are the first KEY_LENGTH characters of the container id.
# Two containers sharing that prefix would collide.
KEY_LENGTH = 10


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def service_key(container_id: str) -> str:
    return container_id[:KEY_LENGTH]


def remove_tag(image: str) -> str:
    return image.split(":")[0]


def remove_slash(name: str) -> str:
    return name.replace("/", "")


def clean_image_name(image: str) -> str:
    """Service name for an image: 'crosbymichael/redis:latest' -> 'redis'."""
    parts = image.split("/")
    if len(parts) == 1:
        return remove_slash(remove_tag(image))
    return remove_slash(remove_tag(parts[1]))


class EventStatus(str, Enum):
    START = "start"
    RESTART = "restart"
    STOP = "stop"
    DIE = "die"
    KILL = "kill"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str | None) -> "EventStatus":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.OTHER


REGISTER_STATUSES = frozenset({EventStatus.START, EventStatus.RESTART})
DEREGISTER_STATUSES = frozenset({EventStatus.STOP, EventStatus.DIE, EventStatus.KILL})


@dataclass(frozen=True)
class LifecycleEvent:
    container_id: str
    status: EventStatus
    image: str = ""

    @classmethod
    def from_docker(cls, raw: dict[str, Any]) -> "LifecycleEvent | None":
        """Build an event from a decoded Docker event.

        Handles the legacy shape ({"id", "status", "from"}) as well as the
        current one ({"Type", "Action", "Actor": {"ID", "Attributes"}}).
        Returns None when the payload carries no container id.
        """
        if raw.get("Type") not in (None, "container"):
            return None
        actor = raw.get("Actor") or {}
        attributes = actor.get("Attributes") or {}
        container_id = raw.get("id") or actor.get("ID") or ""
        if not isinstance(container_id, str) or not container_id:
            return None
        status = EventStatus.parse(raw.get("status") or raw.get("Action"))
        image = raw.get("from") or attributes.get("image") or ""
        return cls(container_id=container_id, status=status, image=str(image))


@dataclass(frozen=True)
class ContainerSnapshot:
    id: str
    image: str
    name: str
    ip_address: str
    running: bool
    env: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        # Plain data handed to derivation rules and plugins.
        return {
            "id": self.id,
            "image": self.image,
            "name": self.name,
            "ip_address": self.ip_address,
            "running": self.running,
            "env": dict(self.env),
        }


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    instance: str
    host: str
    environment: str
    ttl_seconds: int
    port: int = 80


def default_beat_interval(ttl_seconds: int) -> int:
    """Renew a quarter of the TTL before it runs out, never faster than 1s."""
    return max(1, ttl_seconds - ttl_seconds // 4)
