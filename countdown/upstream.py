import re
from datetime import datetime, timezone
from typing import NamedTuple

import requests

from countdown.errors import UpstreamError
from countdown.log import network_logger

FRACTION_PATTERN = re.compile(r"\.(\d+)")


class NodeStatus(NamedTuple):
    latest_height: int
    latest_time: datetime
    earliest_height: int
    earliest_time: datetime


def parse_block_time(date_string):
    """Parse an RFC 3339 block time as reported by CometBFT into an aware UTC datetime.

    Node timestamps carry nanoseconds; fromisoformat only takes microseconds,
    so the fraction is trimmed or padded to six digits.
    """
    if not isinstance(date_string, str) or not date_string:
        raise ValueError(f"invalid block time {date_string!r}")
    date_string = FRACTION_PATTERN.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), date_string, count=1)
    if date_string.endswith("Z"):
        date_string = date_string[:-1] + "+00:00"
    parsed = datetime.fromisoformat(date_string)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class UpstreamClient:
    """Single-attempt client for a CometBFT / Tendermint RPC node."""

    def __init__(self, rpc_url, network=None, status_timeout=3.0, block_fetch_timeout=3.0, session=None):
        url = (rpc_url or "").strip().rstrip("/")
        if not url:
            raise ValueError("rpc_url must be a non-empty string.")
        self.rpc_url = url
        self.network = network
        self.status_timeout = status_timeout
        self.block_fetch_timeout = block_fetch_timeout
        self.session = session or requests.Session()
        self.logger = network_logger(network)

    def _get_result(self, path, params=None, timeout=None):
        url = f"{self.rpc_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout as e:
            raise UpstreamError(f"request to {url} timed out after {timeout}s", self.network) from e
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"request to {url} failed: {e}", self.network) from e
        except ValueError as e:
            raise UpstreamError(f"{url} returned a response that is not JSON", self.network) from e

        if not isinstance(data, dict):
            raise UpstreamError(f"{url} returned an unexpected response", self.network)
        if data.get("error"):
            raise UpstreamError(f"{url} returned an error: {data['error']}", self.network)
        if "result" in data.keys():
            data = data["result"]
        if not isinstance(data, dict):
            raise UpstreamError(f"{url} returned an unexpected result", self.network)
        return data

    def get_status(self, timeout=None):
        """Fetch latest and earliest retained block heights and times from ``/status``."""
        data = self._get_result("/status", timeout=timeout or self.status_timeout)
        try:
            sync_info = data["sync_info"]
            status = NodeStatus(
                latest_height=int(sync_info["latest_block_height"]),
                latest_time=parse_block_time(sync_info["latest_block_time"]),
                earliest_height=int(sync_info["earliest_block_height"]),
                earliest_time=parse_block_time(sync_info["earliest_block_time"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"{self.rpc_url}/status returned malformed sync_info: {e}", self.network) from e

        self.logger.trace(
            "Fetched node status",
            latest_height=status.latest_height,
            earliest_height=status.earliest_height,
        )
        return status

    def get_header_at_height(self, height, timeout=None):
        """Return the block time of the header at ``height``.

        Nodes that predate the ``/header`` endpoint are queried through ``/block``.
        """
        timeout = timeout or self.block_fetch_timeout
        params = {"height": int(height)}
        try:
            data = self._get_result("/header", params=params, timeout=timeout)
            header = data.get("header")
        except UpstreamError as e:
            cause = e.__cause__
            if not isinstance(cause, requests.exceptions.HTTPError) or cause.response is None or cause.response.status_code != 404:
                raise
            self.logger.debug(f"{self.rpc_url} has no /header endpoint, falling back to /block")
            data = self._get_result("/block", params=params, timeout=timeout)
            header = (data.get("block") or {}).get("header")

        try:
            return parse_block_time(header["time"])
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"{self.rpc_url} returned a malformed header at height {height}", self.network) from e

    def close(self):
        self.session.close()
