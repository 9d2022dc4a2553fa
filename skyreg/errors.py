from __future__ import annotations


class SkyregError(Exception):
    pass


class TransportError(SkyregError):
    """Docker or SkyDNS could not be reached."""


class ProtocolError(SkyregError):
    """An external system answered with something we could not understand."""


class NotFoundError(SkyregError):
    """The container or registry entry does not exist (often benign)."""


class ConflictError(SkyregError):
    """The registry already holds an entry for this key."""


class NotTaggedError(SkyregError):
    """Event image and container image differ, usually an untagged build."""


class InvalidDescriptorError(SkyregError):
    pass


class ErrorBudgetExhausted(SkyregError):
    pass


class ConfigError(SkyregError):
    pass
