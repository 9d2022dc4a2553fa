from __future__ import annotations

from typing import Any, Iterator

import docker
import requests
from docker.errors import DockerException, NotFound

from .db import log_event
from .errors import NotFoundError, NotTaggedError, ProtocolError, TransportError
from .models import ContainerSnapshot, LifecycleEvent, remove_tag


def docker_base_url(path: str) -> str:
    """Accept a bare socket path as well as a docker URL."""
    if not path:
        return ""
    if path.startswith("/"):
        return f"unix://{path}"
    return path


def _ip_address(network: dict[str, Any]) -> str:
    ip = network.get("IPAddress") or ""
    if ip:
        return ip
    # Containers on user-defined networks only carry per-network addresses.
    for net in (network.get("Networks") or {}).values():
        if net and net.get("IPAddress"):
            return net["IPAddress"]
    return ""


def _env_map(raw_env: list[str] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in raw_env or []:
        k, sep, v = item.partition("=")
        if sep:
            out[k] = v
    return out


def snapshot_from_inspect(attrs: dict[str, Any]) -> ContainerSnapshot:
    """Build a snapshot from `docker inspect` output."""
    try:
        config = attrs["Config"] or {}
        return ContainerSnapshot(
            id=attrs["Id"],
            image=config.get("Image") or "",
            name=attrs.get("Name") or "",
            ip_address=_ip_address(attrs.get("NetworkSettings") or {}),
            running=bool((attrs.get("State") or {}).get("Running")),
            env=_env_map(config.get("Env")),
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise ProtocolError(f"Malformed container description: {type(e).__name__}: {e}") from e


def snapshot_from_summary(attrs: dict[str, Any]) -> ContainerSnapshot:
    """Build a snapshot from one entry of the container list endpoint."""
    try:
        names = attrs.get("Names") or [""]
        return ContainerSnapshot(
            id=attrs["Id"],
            image=attrs.get("Image") or "",
            name=names[0],
            ip_address=_ip_address(attrs.get("NetworkSettings") or {}),
            running=attrs.get("State") == "running",
        )
    except (KeyError, TypeError, AttributeError, IndexError) as e:
        raise ProtocolError(f"Malformed container listing: {type(e).__name__}: {e}") from e


class EventStream:
    """Iterator over container lifecycle events that can be closed from another thread."""

    def __init__(self, client: docker.DockerClient, raw: Any):
        self._client = client
        self._raw = raw
        self._closed = False

    def __iter__(self) -> Iterator[LifecycleEvent]:
        try:
            for item in self._raw:
                if not isinstance(item, dict):
                    log_event("ERROR", f"Cannot decode docker event: {item!r}")
                    continue
                event = LifecycleEvent.from_docker(item)
                if event is not None:
                    yield event
        except Exception as e:
            # Closing the stream from another thread tears the socket down under us.
            if self._closed:
                return
            raise TransportError(f"Docker event stream lost: {type(e).__name__}: {e}") from e
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._raw.close()
        finally:
            self._client.close()


class DockerContainers:
    """Container metadata client backed by the Docker Engine API."""

    def __init__(self, base_url: str = "", timeout_s: int = 30):
        self.base_url = docker_base_url(base_url)
        self.timeout_s = timeout_s

    def _client(self) -> docker.DockerClient:
        if not self.base_url:
            return docker.from_env(timeout=self.timeout_s)
        return docker.DockerClient(base_url=self.base_url, timeout=self.timeout_s)

    def ping(self) -> None:
        try:
            c = self._client()
            try:
                c.ping()
            finally:
                c.close()
        except (DockerException, requests.exceptions.RequestException) as e:
            raise TransportError(f"Docker is not available at {self.base_url or 'env'}: {e}") from e

    def list_containers(self) -> list[ContainerSnapshot]:
        try:
            c = self._client()
            try:
                containers = c.containers.list(sparse=True, ignore_removed=True)
            finally:
                c.close()
        except (DockerException, requests.exceptions.RequestException) as e:
            raise TransportError(f"Cannot list containers: {e}") from e
        return [snapshot_from_summary(x.attrs) for x in containers]

    def fetch_container(self, container_id: str, expected_image: str = "") -> ContainerSnapshot:
        try:
            c = self._client()
            try:
                attrs = c.containers.get(container_id).attrs
            finally:
                c.close()
        except NotFound as e:
            raise NotFoundError(f"Container {container_id} not found") from e
        except (DockerException, requests.exceptions.RequestException) as e:
            raise TransportError(f"Could not fetch container {container_id}: {e}") from e

        snapshot = snapshot_from_inspect(attrs)
        # These should match or else the event comes from an image that is not tagged.
        if expected_image and remove_tag(expected_image) != remove_tag(snapshot.image):
            raise NotTaggedError(f"Container {container_id} runs {snapshot.image}, event reported {expected_image}")
        return snapshot

    def event_stream(self) -> EventStream:
        try:
            c = self._client()
        except DockerException as e:
            raise TransportError(f"Docker is not available at {self.base_url or 'env'}: {e}") from e
        try:
            raw = c.events(decode=True, filters={"type": "container"})
        except (DockerException, requests.exceptions.RequestException) as e:
            c.close()
            raise TransportError(f"Cannot connect to the docker events endpoint: {e}") from e
        return EventStream(c, raw)
