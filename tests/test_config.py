import json
import os

import pytest

from countdown.config import Settings, find_config_path, load_config, load_settings, parse_config
from countdown.errors import ConfigError
from countdown.networks import Network


def test_parse_single_network_config():
    config = parse_config(
        {"port": 8080, "network": {"name": "Mocha", "rpc": "https://rpc.mocha/", "upgrade_height": 1000}}
    )

    assert config.port == 8080
    assert config.networks == (Network(name="Mocha", rpc="https://rpc.mocha", upgrade_height=1000),)


def test_parse_multi_network_config():
    config = parse_config(
        {
            "port": 80,
            "networks": [
                {"name": "Mocha", "rpc": "http://a", "upgrade_height": 1000},
                {"name": "Arabica", "rpc": "http://b", "upgrade_height": 0, "block_rate": 6},
            ],
        }
    )

    assert [network.name for network in config.networks] == ["Mocha", "Arabica"]
    assert config.networks[1].block_rate == 6.0
    assert config.networks[1].upgrade_height == 0


NETWORK = {"name": "Mocha", "rpc": "http://a", "upgrade_height": 1000}


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"network": NETWORK},
        {"port": "8080", "network": NETWORK},
        {"port": 0, "network": NETWORK},
        {"port": 70000, "network": NETWORK},
        {"port": True, "network": NETWORK},
        {"port": 8080},
        {"port": 8080, "networks": []},
        {"port": 8080, "networks": NETWORK},
        {"port": 8080, "network": NETWORK, "networks": [NETWORK]},
        {"port": 8080, "network": {"rpc": "http://a", "upgrade_height": 1}},
        {"port": 8080, "network": {"name": "Mocha", "upgrade_height": 1}},
        {"port": 8080, "network": {"name": "Mocha", "rpc": "http://a"}},
        {"port": 8080, "network": {"name": "Mocha", "rpc": "http://a", "upgrade_height": -1}},
        {"port": 8080, "network": {"name": "Mocha", "rpc": "http://a", "upgrade_height": 1.5}},
        {"port": 8080, "network": {**NETWORK, "block_rate": 0}},
        {"port": 8080, "network": {**NETWORK, "block_rate": "6"}},
        {"port": 8080, "network": {**NETWORK, "block_rate": float("nan")}},
        {"port": 8080, "network": {**NETWORK, "name": "status"}},
        {"port": 8080, "networks": [NETWORK, {**NETWORK, "name": "Healthz"}]},
    ],
)
def test_invalid_config_is_rejected(data):
    with pytest.raises(ConfigError):
        parse_config(data)


def test_load_config_from_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"port": 8080, "network": NETWORK}))

    assert load_config(str(path)).networks[0].name == "Mocha"


def test_load_config_reports_bad_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ConfigError, match="not valid JSON"):
        load_config(str(path))


def test_load_config_reports_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="cannot read"):
        load_config(str(tmp_path / "missing.json"))


def test_find_config_prefers_home_directory(tmp_path, monkeypatch):
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)

    with pytest.raises(ConfigError):
        find_config_path()

    (work / "config.json").write_text("{}")
    assert os.path.samefile(find_config_path(), work / "config.json")

    (home / "config.json").write_text("{}")
    assert os.path.samefile(find_config_path(), home / "config.json")

    assert find_config_path("/etc/countdown.json") == "/etc/countdown.json"


def test_settings_defaults():
    assert load_settings({}) == Settings()


def test_settings_from_environment():
    settings = load_settings(
        {
            "LOG_LEVEL": "debug",
            "LOG_FORCE_COLOR": "true",
            "PORT": "9000",
            "DEFAULT_NETWORK": "Arabica",
            "HEIGHT_REFRESH_SECONDS": "2.5",
            "BLOCK_RANGE_FOR_AVG_TIME": "500",
            "BLOCK_RATE_STRATEGY": "Static",
        }
    )

    assert settings.log_level == "DEBUG"
    assert settings.log_force_color is True
    assert settings.port == 9000
    assert settings.default_network == "Arabica"
    assert settings.height_refresh_seconds == 2.5
    assert settings.block_range_for_avg_time == 500
    assert settings.block_rate_strategy == "static"


@pytest.mark.parametrize(
    "environ",
    [
        {"HEIGHT_REFRESH_SECONDS": "soon"},
        {"STATUS_TIMEOUT_SECONDS": "0"},
        {"BLOCK_RANGE_FOR_AVG_TIME": "1.5"},
        {"PORT": "-1"},
        {"BLOCK_RATE_STRATEGY": "guess"},
        {"HEIGHT_REFRESH_SECONDS": "nan"},
        {"SHUTDOWN_GRACE_SECONDS": "inf"},
    ],
)
def test_invalid_settings_are_rejected(environ):
    with pytest.raises(ConfigError):
        load_settings(environ)
