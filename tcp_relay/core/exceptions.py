class ProxyError(RuntimeError):
    """Base class for every failure raised by the relay engine."""


class BindError(ProxyError):
    """The listen address could not be resolved or bound."""


class AcceptError(ProxyError):
    """Accepting a downstream connection failed in a way that is not transient."""


class UpstreamConnectError(ProxyError):
    """The upstream address refused or could not be reached."""


class RelayError(ProxyError):
    """Copying bytes between downstream and upstream failed."""


class ConfigError(ValueError):
    """A configured address or setting could not be parsed."""


__all__ = [
    "ProxyError",
    "BindError",
    "AcceptError",
    "UpstreamConnectError",
    "RelayError",
    "ConfigError",
]
