import threading
from datetime import datetime, timedelta, timezone

import pytest

from countdown.block_rate import StaticBlockRate
from countdown.errors import UpstreamError
from countdown.height_cache import HeightCache
from countdown.networks import Network, NetworkDirectory
from countdown.resolver import CountdownResolver
from countdown.upstream import NodeStatus

GENESIS = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeClient:
    """Stand-in for UpstreamClient on a chain producing one block every ``block_time`` seconds."""

    def __init__(self, network=None, height=900, earliest_height=1, block_time=6.0):
        self.network = network
        self.height = height
        self.earliest_height = earliest_height
        self.block_time = block_time
        self.error = None
        self.status_calls = 0
        self.header_calls = []
        self.entered = threading.Event()
        self.release = None
        self.closed = False

    def time_at(self, height):
        return GENESIS + timedelta(seconds=height * self.block_time)

    def get_status(self, timeout=None):
        self.status_calls += 1
        self.entered.set()
        if self.release is not None:
            self.release.wait(5)
        if self.error is not None:
            raise self.error
        return NodeStatus(
            latest_height=self.height,
            latest_time=self.time_at(self.height),
            earliest_height=self.earliest_height,
            earliest_time=self.time_at(self.earliest_height),
        )

    def get_header_at_height(self, height, timeout=None):
        self.header_calls.append(height)
        return self.time_at(height)

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mocha():
    return Network(name="Mocha", rpc="http://mocha.rpc", upgrade_height=1000, block_rate=10.0)


@pytest.fixture
def arabica():
    return Network(name="Arabica", rpc="http://arabica.rpc", upgrade_height=5000)


@pytest.fixture
def clients():
    return {}


@pytest.fixture
def client_factory(clients):
    def factory(network):
        client = clients.get(network.key)
        if client is None:
            client = FakeClient(network=network.name)
            clients[network.key] = client
        return client

    return factory


@pytest.fixture
def cache(client_factory, clock):
    return HeightCache(
        client_factory,
        refresh_interval=10.0,
        rate_strategy_factory=lambda network: StaticBlockRate(network.block_rate or 6.0),
        wait_timeout=5.0,
        clock=clock,
    )


@pytest.fixture
def directory(mocha, arabica):
    return NetworkDirectory([mocha, arabica])


@pytest.fixture
def resolver(directory, cache):
    return CountdownResolver(directory, cache)


def upstream_down(network="Mocha"):
    return UpstreamError("connection refused", network)
