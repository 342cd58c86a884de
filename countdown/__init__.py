"""Upgrade countdown: cached chain heights and time-to-upgrade estimates."""

from countdown.errors import (
    ConfigError,
    CountdownError,
    InsufficientRangeError,
    NetworkNotFoundError,
    UpstreamError,
)
from countdown.networks import Network, NetworkDirectory
from countdown.resolver import CountdownResolver, CountdownResult

__all__ = [
    "ConfigError",
    "CountdownError",
    "CountdownResolver",
    "CountdownResult",
    "InsufficientRangeError",
    "Network",
    "NetworkDirectory",
    "NetworkNotFoundError",
    "UpstreamError",
]
