from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigError


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _default_skydns_url() -> str:
    # Linked-container convenience: docker run --link skydns:skydns ...
    addr = os.getenv("SKYDNS_PORT_8080_TCP_ADDR", "")
    return f"http://{addr}:8080" if addr else ""


@dataclass(frozen=True)
class Settings:
    # Docker
    docker_url: str = os.getenv("SKYREG_DOCKER", "/var/run/docker.sock")

    # SkyDNS
    skydns_url: str = os.getenv("SKYREG_SKYDNS", "") or _default_skydns_url()
    secret: str = os.getenv("SKYREG_SECRET", "")
    domain: str = os.getenv("SKYREG_DOMAIN", "")
    registry_timeout_s: int = _env_int("SKYREG_REGISTRY_TIMEOUT_S", 10)

    # Registrations
    environment: str = os.getenv("SKYREG_ENVIRONMENT", "dev")
    ttl_s: int = _env_int("SKYREG_TTL", 60)
    beat_s: int = _env_int("SKYREG_BEAT", 0)  # 0 -> derived from ttl
    rule: str = os.getenv("SKYREG_RULE", "default")  # default|env
    plugins: str = os.getenv("SKYREG_PLUGINS", "")
    deregister_on_shutdown: bool = _env_bool("SKYREG_DEREGISTER_ON_SHUTDOWN", False)

    # Event processing
    workers: int = _env_int("SKYREG_WORKERS", 10)
    queue_size: int = _env_int("SKYREG_QUEUE_SIZE", 100)
    reconnect_delay_s: int = _env_int("SKYREG_RECONNECT_DELAY_S", 5)

    # Journal
    db_path: str = os.getenv("SKYREG_DB_PATH", "skyreg.db")
    log_level: str = os.getenv("SKYREG_LOG_LEVEL", "INFO")

    # Status API (0 disables it)
    status_host: str = os.getenv("SKYREG_STATUS_HOST", "127.0.0.1")
    status_port: int = _env_int("SKYREG_STATUS_PORT", 0)


def validate_settings(s: Settings) -> None:
    if not s.domain:
        raise ConfigError("Must specify your skydns domain (--domain or SKYREG_DOMAIN).")
    if not s.skydns_url:
        raise ConfigError("Must specify the skydns url (--skydns or SKYREG_SKYDNS).")
    if s.ttl_s < 1:
        raise ConfigError("ttl must be at least 1 second.")
    if s.workers < 1:
        raise ConfigError("workers must be at least 1.")
    if s.queue_size < 1:
        raise ConfigError("queue size must be at least 1.")
    if s.rule not in {"default", "env"}:
        raise ConfigError(f"Unknown derivation rule '{s.rule}'. Use 'default' or 'env'.")


settings = Settings()
