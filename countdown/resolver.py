from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from countdown.block_rate import display_rate
from countdown.errors import NetworkNotFoundError
from countdown.log import network_logger


@dataclass(frozen=True)
class CountdownResult:
    """Countdown to a network's upgrade height as of the last cached height.

    ``blocks_remaining`` and ``estimated_seconds_remaining`` go negative once
    the chain is past the upgrade height.
    """

    network_name: str
    current_height: int
    upgrade_height: int
    blocks_remaining: int
    estimated_seconds_remaining: Optional[float]
    block_rate: Optional[float]

    @property
    def upgrade_reached(self):
        return self.blocks_remaining <= 0

    @property
    def time_left(self):
        """Whole seconds left, as shown by the countdown page."""
        if self.estimated_seconds_remaining is None:
            return None
        return int(self.estimated_seconds_remaining)

    def estimated_upgrade_time(self, now=None):
        """ISO timestamp of the projected upgrade, or None when it cannot be projected.

        Projections outside the datetime range (a placeholder upgrade height far
        in the future) have no timestamp; the countdown itself is still valid.
        """
        if self.estimated_seconds_remaining is None:
            return None
        now = now or datetime.now(timezone.utc)
        try:
            estimated = now + timedelta(seconds=self.estimated_seconds_remaining)
        except OverflowError:
            return None
        return estimated.replace(microsecond=0).isoformat().replace("+00:00", "Z")

    def to_dict(self, now=None):
        return OrderedDict(
            [
                ("network", self.network_name),
                ("current_height", self.current_height),
                ("upgrade_height", self.upgrade_height),
                ("blocks_remaining", self.blocks_remaining),
                ("estimated_seconds_remaining", self.estimated_seconds_remaining),
                ("estimated_upgrade_time", self.estimated_upgrade_time(now)),
                ("block_rate", display_rate(self.block_rate)),
                ("upgrade_reached", self.upgrade_reached),
            ]
        )


class CountdownResolver:
    """Turns a network name into a CountdownResult using the directory and the height cache."""

    def __init__(self, directory, cache):
        self.directory = directory
        self.cache = cache

    def resolve(self, name, timeout=None):
        network = self.directory.resolve(name)
        if network is None:
            raise NetworkNotFoundError(name)

        entry = self.cache.get_entry(network, timeout=timeout)
        blocks_remaining = network.upgrade_height - entry.height
        estimated_seconds = None
        if entry.block_rate is not None:
            estimated_seconds = blocks_remaining * entry.block_rate

        network_logger(network.name).trace(
            f"Resolved countdown: {blocks_remaining} blocks remaining",
            current_height=entry.height,
            block_rate=entry.block_rate,
        )
        return CountdownResult(
            network_name=network.name,
            current_height=entry.height,
            upgrade_height=network.upgrade_height,
            blocks_remaining=blocks_remaining,
            estimated_seconds_remaining=estimated_seconds,
            block_rate=entry.block_rate,
        )

    def current_height(self, name, timeout=None):
        network = self.directory.get(name)
        return self.cache.get(network, timeout=timeout)

    def resolve_default(self, timeout=None):
        network = self.directory.default
        if network is None:
            raise NetworkNotFoundError("")
        return self.resolve(network.name, timeout=timeout)
