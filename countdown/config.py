import json
import math
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import find_dotenv, load_dotenv
from loguru import logger

from countdown.errors import ConfigError
from countdown.networks import Network

CONFIG_FILE_NAME = "config.json"
BLOCK_RATE_STRATEGIES = ("measured", "static")
# Fixed routes that would shadow a network of the same name
RESERVED_NETWORK_NAMES = ("status", "healthz")


@dataclass(frozen=True)
class Settings:
    """Process-wide knobs read from the environment (and an optional .env file)."""

    log_level: str = "INFO"
    log_force_color: bool = False
    app_version: str = "unknown"
    config_path: Optional[str] = None
    port: Optional[int] = None
    host: str = "0.0.0.0"
    default_network: Optional[str] = None
    height_refresh_seconds: float = 10.0
    status_timeout_seconds: float = 3.0
    block_fetch_timeout_seconds: float = 3.0
    block_range_for_avg_time: int = 10000
    block_rate_strategy: str = "measured"
    default_block_rate_seconds: float = 6.0
    block_rate_refresh_seconds: float = 600.0
    num_workers: int = 4
    shutdown_grace_seconds: float = 5.0


@dataclass(frozen=True)
class Config:
    port: int
    networks: Tuple[Network, ...]


def _env_number(environ, key, default, cast):
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ConfigError(f"environment variable {key} must be a number, got '{raw}'")
    if not math.isfinite(value):
        raise ConfigError(f"environment variable {key} must be a finite number, got '{raw}'")
    return value


def _env_positive(environ, key, default, cast=float):
    value = _env_number(environ, key, default, cast)
    if value <= 0:
        raise ConfigError(f"environment variable {key} must be positive, got {value}")
    return value


def load_settings(environ=None):
    """Build Settings from ``environ`` (os.environ after loading .env by default)."""
    if environ is None:
        # Load environment variables from .env file explicitly
        load_dotenv(find_dotenv(usecwd=True), override=True)
        environ = os.environ

    strategy = environ.get("BLOCK_RATE_STRATEGY", "measured").strip().lower()
    if strategy not in BLOCK_RATE_STRATEGIES:
        raise ConfigError(
            f"BLOCK_RATE_STRATEGY must be one of {', '.join(BLOCK_RATE_STRATEGIES)}, got '{strategy}'"
        )

    port = _env_number(environ, "PORT", None, int)
    if port is not None:
        _validate_port(port)

    return Settings(
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
        log_force_color=environ.get("LOG_FORCE_COLOR", "false").lower() == "true",
        app_version=environ.get("APP_VERSION", "unknown"),
        config_path=environ.get("CONFIG_PATH") or None,
        port=port,
        host=environ.get("FLASK_HOST", "0.0.0.0"),
        default_network=environ.get("DEFAULT_NETWORK") or None,
        height_refresh_seconds=_env_positive(environ, "HEIGHT_REFRESH_SECONDS", 10.0),
        status_timeout_seconds=_env_positive(environ, "STATUS_TIMEOUT_SECONDS", 3.0),
        block_fetch_timeout_seconds=_env_positive(environ, "BLOCK_FETCH_TIMEOUT_SECONDS", 3.0),
        block_range_for_avg_time=_env_positive(environ, "BLOCK_RANGE_FOR_AVG_TIME", 10000, int),
        block_rate_strategy=strategy,
        default_block_rate_seconds=_env_positive(environ, "DEFAULT_BLOCK_RATE_SECONDS", 6.0),
        block_rate_refresh_seconds=_env_positive(environ, "BLOCK_RATE_REFRESH_SECONDS", 600.0),
        num_workers=_env_positive(environ, "NUM_WORKERS", 4, int),
        shutdown_grace_seconds=_env_positive(environ, "SHUTDOWN_GRACE_SECONDS", 5.0),
    )


def find_config_path(explicit=None):
    """Locate the config file: explicit path, then the home directory, then the working directory."""
    if explicit:
        return explicit
    candidates = [
        os.path.join(os.path.expanduser("~"), CONFIG_FILE_NAME),
        os.path.join(os.getcwd(), CONFIG_FILE_NAME),
    ]
    for candidate in candidates:
        if os.path.exists(candidate):
            return candidate
    raise ConfigError(f"no {CONFIG_FILE_NAME} found in {' or '.join(candidates)}")


def load_config(path):
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"config file {path} is not valid JSON: {e}") from e

    config = parse_config(data)
    logger.info(f"Loaded config from {path} with {len(config.networks)} network(s)")
    return config


def parse_config(data):
    """Validate a decoded config document.

    Accepts the single-network shape ``{"port", "network": {...}}`` and the
    multi-network shape ``{"port", "networks": [...]}``.
    """
    if not isinstance(data, dict):
        raise ConfigError("config must be a JSON object")

    port = data.get("port")
    if not _is_int(port):
        raise ConfigError("config field 'port' must be an integer")
    _validate_port(port)

    if "networks" in data and "network" in data:
        raise ConfigError("config must define either 'network' or 'networks', not both")
    if "networks" in data:
        raw_networks = data["networks"]
        if not isinstance(raw_networks, list):
            raise ConfigError("config field 'networks' must be a list")
    elif "network" in data:
        raw_networks = [data["network"]]
    else:
        raise ConfigError("config must define 'network' or 'networks'")

    if not raw_networks:
        raise ConfigError("config must define at least one network")

    networks = tuple(_parse_network(raw, index) for index, raw in enumerate(raw_networks))
    return Config(port=port, networks=networks)


def _parse_network(raw, index):
    where = f"networks[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be an object")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"{where}.name must be a non-empty string")
    where = f"network '{name}'"
    if name.strip().casefold() in RESERVED_NETWORK_NAMES:
        raise ConfigError(f"{where}: name is reserved for a built-in route")

    rpc = raw.get("rpc")
    if not isinstance(rpc, str) or not rpc.strip():
        raise ConfigError(f"{where}: 'rpc' must be a non-empty URL")

    upgrade_height = raw.get("upgrade_height")
    if not _is_int(upgrade_height) or upgrade_height < 0:
        raise ConfigError(f"{where}: 'upgrade_height' must be a non-negative integer")

    block_rate = raw.get("block_rate")
    if block_rate is not None:
        if (
            isinstance(block_rate, bool)
            or not isinstance(block_rate, (int, float))
            or not math.isfinite(block_rate)
            or block_rate <= 0
        ):
            raise ConfigError(f"{where}: 'block_rate' must be a positive number of seconds")
        block_rate = float(block_rate)

    return Network(
        name=name.strip(),
        rpc=rpc.strip().rstrip("/"),
        upgrade_height=upgrade_height,
        block_rate=block_rate,
    )


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_port(port):
    if not 0 < port < 65536:
        raise ConfigError(f"port must be between 1 and 65535, got {port}")
