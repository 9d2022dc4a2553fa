"""Service descriptor derivation.

A derivation rule is a plain function::

    def create_service(container: dict, defaults: DeriveDefaults) -> dict

It receives the container snapshot as plain data (see
`ContainerSnapshot.as_dict`) and returns the descriptor fields
(name, instance, host, environment, ttl, port). Rules never touch the
registry or Docker; the output is validated before it is used.

Rules can be supplied as plugin files: a ``.py`` file, or a directory of
them loaded in sorted order, each defining ``create_service``. The last one
loaded wins.
"""
from __future__ import annotations

import importlib.util
import os
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError

from .api_models import DescriptorPayload
from .db import log_event
from .errors import ConfigError, InvalidDescriptorError
from .models import ContainerSnapshot, ServiceDescriptor, clean_image_name, remove_slash


@dataclass(frozen=True)
class DeriveDefaults:
    environment: str
    ttl: int
    port: int = 80

    # Helpers available to plugins without importing skyreg.
    clean_image_name = staticmethod(clean_image_name)
    remove_slash = staticmethod(remove_slash)


CreateService = Callable[[dict[str, Any], DeriveDefaults], dict[str, Any]]


def default_create_service(container: dict[str, Any], defaults: DeriveDefaults) -> dict[str, Any]:
    return {
        "name": clean_image_name(container["image"]),
        "instance": remove_slash(container["name"]),
        "host": container["ip_address"],
        "environment": defaults.environment,
        "ttl": defaults.ttl,
        "port": defaults.port,
    }


def env_create_service(container: dict[str, Any], defaults: DeriveDefaults) -> dict[str, Any]:
    """Like the default rule, but DNS_* container env vars take precedence."""
    env = {k: v for k, v in (container.get("env") or {}).items() if k.startswith("DNS_")}
    service = default_create_service(container, defaults)
    service["name"] = env.get("DNS_SERVICE") or service["name"]
    service["instance"] = env.get("DNS_INSTANCE") or service["instance"]
    service["environment"] = env.get("DNS_ENVIRONMENT") or service["environment"]
    service["ttl"] = env.get("DNS_TTL") or service["ttl"]
    service["port"] = env.get("DNS_PORT") or service["port"]
    return service


BUILTIN_RULES: dict[str, CreateService] = {
    "default": default_create_service,
    "env": env_create_service,
}


def _plugin_files(path: str) -> list[str]:
    if os.path.isdir(path):
        return [
            os.path.join(path, name)
            for name in sorted(os.listdir(path))
            if name.endswith(".py") and not name.startswith("_")
        ]
    if os.path.isfile(path):
        return [path]
    raise ConfigError(f"Plugin path '{path}' does not exist.")


def load_plugins(path: str) -> CreateService:
    """Load create_service from a plugin file or directory."""
    found: CreateService | None = None
    for i, file_path in enumerate(_plugin_files(path)):
        log_event("INFO", f"Loading plugin {file_path}")
        mod_name = f"skyreg_plugin_{i}_{os.path.splitext(os.path.basename(file_path))[0]}"
        spec = importlib.util.spec_from_file_location(mod_name, file_path)
        if spec is None or spec.loader is None:
            raise ConfigError(f"Cannot load plugin {file_path}")
        mod = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(mod)
        except Exception as e:
            raise ConfigError(f"Plugin {file_path} failed to load: {type(e).__name__}: {e}") from e
        fn = getattr(mod, "create_service", None)
        if fn is not None:
            if not callable(fn):
                raise ConfigError(f"Plugin {file_path}: create_service is not callable")
            found = fn
    if found is None:
        raise ConfigError(f"No plugin under '{path}' defines create_service")
    return found


class ServiceDeriver:
    def __init__(self, defaults: DeriveDefaults, create_service: CreateService = default_create_service):
        self.defaults = defaults
        self.create_service = create_service

    @classmethod
    def from_settings(cls, environment: str, ttl: int, rule: str = "default", plugins: str = "") -> "ServiceDeriver":
        defaults = DeriveDefaults(environment=environment, ttl=ttl)
        if plugins:
            return cls(defaults, load_plugins(plugins))
        if rule not in BUILTIN_RULES:
            raise ConfigError(f"Unknown derivation rule '{rule}'")
        return cls(defaults, BUILTIN_RULES[rule])

    def derive(self, snapshot: ContainerSnapshot) -> ServiceDescriptor:
        try:
            raw = self.create_service(snapshot.as_dict(), self.defaults)
        except Exception as e:
            raise InvalidDescriptorError(f"create_service failed for {snapshot.name or snapshot.id}: {type(e).__name__}: {e}") from e
        if not isinstance(raw, dict):
            raise InvalidDescriptorError(f"create_service returned {type(raw).__name__}, expected a dict")
        try:
            payload = DescriptorPayload.model_validate(raw)
        except ValidationError as e:
            raise InvalidDescriptorError(f"Invalid service for {snapshot.name or snapshot.id}: {e}") from e
        return ServiceDescriptor(
            name=payload.name,
            instance=payload.instance,
            host=payload.host,
            environment=payload.environment,
            ttl_seconds=payload.ttl,
            port=payload.port,
        )
