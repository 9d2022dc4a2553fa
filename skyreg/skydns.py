from __future__ import annotations

from typing import Any

import httpx

from .errors import ConflictError, NotFoundError, ProtocolError, TransportError
from .models import ServiceDescriptor


def service_payload(descriptor: ServiceDescriptor) -> dict[str, Any]:
    """SkyDNS service message for a descriptor.

    SkyDNS calls the instance "Version"; the resulting name is
    <uuid>.<host>.<region>.<version>.<service>.<environment>.<domain>.
    """
    return {
        "Name": descriptor.name,
        "Version": descriptor.instance,
        "Environment": descriptor.environment,
        "Host": descriptor.host,
        "Port": descriptor.port,
        "TTL": descriptor.ttl_seconds,
    }


class SkyDNSClient:
    """Thin client for the SkyDNS service API."""

    def __init__(
        self,
        base_url: str,
        secret: str = "",
        domain: str = "",
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.domain = domain
        self.timeout_s = timeout_s
        self._transport = transport

    def fqdn(self, descriptor: ServiceDescriptor) -> str:
        parts = [descriptor.instance, descriptor.name, descriptor.environment, self.domain]
        return ".".join(p for p in parts if p)

    def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        headers = {"Authorization": self.secret} if self.secret else {}
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout_s,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                return client.request(method, path, json=json, headers=headers)
        except httpx.TransportError as e:
            raise TransportError(f"SkyDNS {method} {path} failed: {type(e).__name__}: {e}") from e

    @staticmethod
    def _unexpected(resp: httpx.Response, action: str) -> ProtocolError:
        if resp.status_code in (401, 403):
            return ProtocolError(f"SkyDNS rejected {action} (HTTP {resp.status_code}); check the secret")
        return ProtocolError(f"SkyDNS {action}: unexpected HTTP {resp.status_code}: {resp.text[:200]}")

    def ping(self) -> None:
        resp = self._request("GET", "/skydns/services/")
        if resp.status_code != 200:
            raise self._unexpected(resp, "ping")

    def add(self, key: str, descriptor: ServiceDescriptor) -> None:
        resp = self._request("PUT", f"/skydns/services/{key}", json=service_payload(descriptor))
        if resp.status_code in (200, 201):
            return
        if resp.status_code == 409:
            raise ConflictError(f"Service {key} already exists")
        raise self._unexpected(resp, f"add {key}")

    def update(self, key: str, ttl_seconds: int) -> None:
        resp = self._request("PATCH", f"/skydns/services/{key}", json={"TTL": int(ttl_seconds)})
        if resp.status_code in (200, 204):
            return
        if resp.status_code == 404:
            raise NotFoundError(f"Service {key} not found")
        raise self._unexpected(resp, f"update {key}")

    def delete(self, key: str) -> None:
        resp = self._request("DELETE", f"/skydns/services/{key}")
        if resp.status_code in (200, 204):
            return
        if resp.status_code == 404:
            raise NotFoundError(f"Service {key} not found")
        raise self._unexpected(resp, f"delete {key}")
