"""Average seconds-per-block estimation used to project the time left until an upgrade."""

from datetime import datetime
from typing import NamedTuple

from countdown.errors import InsufficientRangeError, UpstreamError
from countdown.log import network_logger

DEFAULT_BLOCK_RANGE = 10000


class BlockSample(NamedTuple):
    height: int
    time: datetime


def estimate(earlier, later):
    """Return the unrounded average seconds per block between two samples.

    Raises InsufficientRangeError when ``later`` is not strictly above ``earlier``.
    """
    blocks = later.height - earlier.height
    if blocks <= 0:
        raise InsufficientRangeError(earlier.height, later.height)
    return (later.time - earlier.time).total_seconds() / blocks


def display_rate(rate):
    """Round a rate to two decimals for presentation only."""
    if rate is None:
        return None
    return round(rate, 2)


def lookback_height(latest_height, earliest_height, max_range=DEFAULT_BLOCK_RANGE):
    """Height of the earlier sample: the earliest retained block, but at most ``max_range`` blocks back."""
    return max(earliest_height, latest_height - max_range)


def measure_block_rate(client, status, max_range=DEFAULT_BLOCK_RANGE):
    later = BlockSample(status.latest_height, status.latest_time)
    earlier_height = lookback_height(status.latest_height, status.earliest_height, max_range)
    if earlier_height == status.earliest_height:
        earlier_time = status.earliest_time
    else:
        earlier_time = client.get_header_at_height(earlier_height)
    return estimate(BlockSample(earlier_height, earlier_time), later)


class StaticBlockRate:
    """A fixed, configured block rate."""

    measured = False

    def __init__(self, seconds):
        self.seconds = float(seconds)

    def current(self, client, status, previous_rate=None, rate_age=None):
        return self.seconds, True


class MeasuredBlockRate:
    """Block rate measured from the node over a bounded lookback window.

    A measured rate is reused until it is older than ``max_age`` seconds. When a
    measurement fails the previous rate is kept, or ``default_rate`` if there is
    none yet.

    ``current`` returns ``(rate, fresh)``; ``fresh`` is False when a cached or
    fallback rate was handed back instead of a new measurement.
    """

    measured = True

    def __init__(self, max_range=DEFAULT_BLOCK_RANGE, default_rate=6.0, max_age=600.0):
        self.max_range = max_range
        self.default_rate = default_rate
        self.max_age = max_age

    def current(self, client, status, previous_rate=None, rate_age=None):
        if previous_rate is not None and rate_age is not None and rate_age <= self.max_age:
            return previous_rate, False

        logger = network_logger(client.network)
        try:
            rate = measure_block_rate(client, status, self.max_range)
        except (InsufficientRangeError, UpstreamError) as e:
            fallback = previous_rate if previous_rate is not None else self.default_rate
            logger.warning(f"Block rate measurement failed, using {fallback:.2f}s per block", error=str(e))
            return fallback, False

        logger.debug(f"Measured block rate {rate:.4f}s per block")
        return rate, True


def strategy_for(network, settings):
    if network.block_rate is not None:
        return StaticBlockRate(network.block_rate)
    if settings.block_rate_strategy == "static":
        return StaticBlockRate(settings.default_block_rate_seconds)
    return MeasuredBlockRate(
        max_range=settings.block_range_for_avg_time,
        default_rate=settings.default_block_rate_seconds,
        max_age=settings.block_rate_refresh_seconds,
    )
