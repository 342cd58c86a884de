"""Per-network cache of the latest block height.

Each network has one entry guarded by its own lock. A stale entry is refreshed
by exactly one caller; callers arriving while that refresh is in flight wait on
the same future and observe the same height or the same error.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from countdown.block_rate import MeasuredBlockRate
from countdown.errors import UpstreamError
from countdown.log import network_logger

DEFAULT_REFRESH_INTERVAL = 10.0
DEFAULT_WAIT_TIMEOUT = 10.0


@dataclass(frozen=True)
class CacheEntry:
    height: int = 0
    observed_at: Optional[float] = None
    block_rate: Optional[float] = None
    rate_observed_at: Optional[float] = None

    @property
    def is_empty(self):
        return self.observed_at is None

    def is_fresh(self, now, refresh_interval):
        return self.observed_at is not None and now - self.observed_at <= refresh_interval


class _Slot:
    def __init__(self, network, client, rate_strategy):
        self.network = network
        self.client = client
        self.rate_strategy = rate_strategy
        self.lock = threading.Lock()
        self.entry = CacheEntry()
        self.inflight = None
        self.logger = network_logger(network.name)


class HeightCache:
    """Cached latest height per network with a refresh interval (TTL).

    Parameters:
    - client_factory: callable taking a Network and returning its UpstreamClient
    - refresh_interval: maximum age in seconds of a height served from cache
    - rate_strategy_factory: callable taking a Network and returning its block rate strategy
    - wait_timeout: how long a caller waits on an in-flight refresh by default
    - clock: monotonic time source, replaceable in tests
    """

    def __init__(
        self,
        client_factory,
        refresh_interval=DEFAULT_REFRESH_INTERVAL,
        rate_strategy_factory=None,
        wait_timeout=DEFAULT_WAIT_TIMEOUT,
        clock=time.monotonic,
        num_workers=4,
    ):
        self._client_factory = client_factory
        self._rate_strategy_factory = rate_strategy_factory or (lambda network: MeasuredBlockRate())
        self.refresh_interval = refresh_interval
        self.wait_timeout = wait_timeout
        self.num_workers = num_workers
        self._clock = clock
        self._slots = {}
        self._lock = threading.Lock()
        self._closed = threading.Event()

    def _slot(self, network):
        with self._lock:
            slot = self._slots.get(network.key)
            if slot is None:
                slot = _Slot(
                    network,
                    self._client_factory(network),
                    self._rate_strategy_factory(network),
                )
                self._slots[network.key] = slot
            return slot

    def get(self, network, timeout=None):
        """Return the latest known height of ``network``, refreshing it when stale."""
        return self.get_entry(network, timeout).height

    def get_entry(self, network, timeout=None):
        """Return the cache entry of ``network``, refreshing it when stale.

        Raises UpstreamError when the refresh fails, when waiting on another
        caller's refresh exceeds ``timeout``, or after the cache is closed.

        Waiters share the refresh's outcome unless their own deadline passes
        first; ``wait_timeout`` should cover the slowest refresh so that only
        a caller-supplied shorter ``timeout`` can cut a wait short.
        """
        if self._closed.is_set():
            raise UpstreamError("height cache is shutting down", network.name)

        slot = self._slot(network)
        with slot.lock:
            if slot.entry.is_fresh(self._clock(), self.refresh_interval):
                return slot.entry
            future = slot.inflight
            triggered = future is None
            if triggered:
                future = Future()
                slot.inflight = future

        if triggered:
            self._refresh(slot, future)
            return future.result()

        slot.logger.trace("Waiting on in-flight refresh")
        wait = self.wait_timeout if timeout is None else timeout
        try:
            return future.result(timeout=wait)
        except FutureTimeoutError as e:
            raise UpstreamError(
                f"timed out after {wait}s waiting for the height of {network.name}", network.name
            ) from e

    def _refresh(self, slot, future):
        started = self._clock()
        try:
            entry = self._fetch(slot)
        except Exception as e:
            with slot.lock:
                slot.inflight = None
            slot.logger.warning("Height refresh failed", error=str(e), cached_height=slot.entry.height)
            future.set_exception(e)
            return

        with slot.lock:
            slot.entry = entry
            slot.inflight = None
        slot.logger.debug(
            f"Refreshed height to {entry.height} in {self._clock() - started:.3f}s",
            block_rate=entry.block_rate,
        )
        future.set_result(entry)

    def _fetch(self, slot):
        previous = slot.entry
        status = slot.client.get_status()
        now = self._clock()

        height = status.latest_height
        if not previous.is_empty and height < previous.height:
            slot.logger.warning(
                f"Node reported height {height} below cached height {previous.height}, keeping cached height"
            )
            height = previous.height

        rate_age = None
        if previous.rate_observed_at is not None:
            rate_age = now - previous.rate_observed_at
        rate, fresh = slot.rate_strategy.current(slot.client, status, previous.block_rate, rate_age)

        return CacheEntry(
            height=height,
            observed_at=now,
            block_rate=rate,
            rate_observed_at=now if fresh else previous.rate_observed_at,
        )

    def entry(self, network):
        """Snapshot of the cache entry for ``network`` (an empty entry if never refreshed)."""
        with self._lock:
            slot = self._slots.get(network.key)
        if slot is None:
            return CacheEntry()
        with slot.lock:
            return slot.entry

    def block_rate(self, network):
        return self.entry(network).block_rate

    def warm(self, networks):
        """Refresh several networks in parallel; returns name -> height (None on failure)."""
        networks = list(networks)
        if not networks:
            return {}

        def warm_one(network):
            try:
                return network.name, self.get(network)
            except UpstreamError as e:
                network_logger(network.name).error("Initial height fetch failed", error=str(e))
                return network.name, None

        with ThreadPoolExecutor(max_workers=min(self.num_workers, len(networks))) as executor:
            results = dict(executor.map(warm_one, networks))
        logger.info(f"Warmed height cache for {sum(h is not None for h in results.values())}/{len(networks)} network(s)")
        return results

    def close(self):
        """Reject new lookups and release upstream connections."""
        self._closed.set()
        with self._lock:
            slots = list(self._slots.values())
        for slot in slots:
            close = getattr(slot.client, "close", None)
            if close is not None:
                close()

    @property
    def closed(self):
        return self._closed.is_set()
