from dataclasses import dataclass
from typing import Optional

from countdown.errors import ConfigError, NetworkNotFoundError


@dataclass(frozen=True)
class Network:
    """A configured chain network.

    ``block_rate`` is an optional fixed seconds-per-block figure; networks
    without one have their rate measured from the node.
    """

    name: str
    rpc: str
    upgrade_height: int
    block_rate: Optional[float] = None

    @property
    def key(self):
        return normalize_name(self.name)


def normalize_name(name):
    return (name or "").strip().casefold()


class NetworkDirectory:
    """Read-only, case-insensitive lookup of configured networks."""

    def __init__(self, networks, default_name=None, require_networks=False):
        self._networks = {}
        for network in networks:
            if network.key in self._networks:
                existing = self._networks[network.key]
                raise ConfigError(
                    f"duplicate network name '{network.name}' (already configured as '{existing.name}')"
                )
            self._networks[network.key] = network

        if require_networks and not self._networks:
            raise ConfigError("at least one network must be configured")

        self._default = None
        if default_name:
            self._default = self.resolve(default_name)
            if self._default is None:
                raise ConfigError(f"default network '{default_name}' is not configured")
        elif self._networks:
            self._default = next(iter(self._networks.values()))

    def resolve(self, name):
        """Return the network whose name matches ``name`` ignoring case, or None."""
        return self._networks.get(normalize_name(name))

    def get(self, name):
        network = self.resolve(name)
        if network is None:
            raise NetworkNotFoundError(name)
        return network

    @property
    def default(self):
        return self._default

    def names(self):
        return [network.name for network in self._networks.values()]

    def __iter__(self):
        return iter(self._networks.values())

    def __len__(self):
        return len(self._networks)

    def __contains__(self, name):
        return self.resolve(name) is not None
