import json

import pytest

from conftest import make_config
from sim_config import DEFAULT_CONFIG, load_simulation_config
from sim_errors import ConfigError


def _write_config(tmp_path, section, key="LOAD_SIMULATOR"):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({key: section}))
    return str(path)


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = load_simulation_config(str(tmp_path / "no-existe.json"), environ={})

    assert config.max_clients == DEFAULT_CONFIG["MAX_CLIENTS"]
    assert config.message_types == ("text", "voice", "video")
    assert (config.host, config.port, config.transport) == ("localhost", 1883, "tcp")


def test_values_from_config_file(tmp_path):
    path = _write_config(tmp_path, {"MAX_CLIENTS": 50, "MESSAGE_TYPES": ["text"], "MIN_MESSAGE_DELAY": 10,
                                    "MAX_MESSAGE_DELAY": 20})

    config = load_simulation_config(path, environ={})

    assert config.max_clients == 50
    assert config.message_types == ("text",)
    assert (config.min_delay_ms, config.max_delay_ms) == (10, 20)
    assert config.max_messages_per_client == DEFAULT_CONFIG["MAX_MESSAGES_PER_CLIENT"]


def test_missing_section_uses_defaults(tmp_path):
    path = _write_config(tmp_path, {"MAX_CLIENTS": 99}, key="OTRA_SECCION")

    assert load_simulation_config(path, environ={}).max_clients == DEFAULT_CONFIG["MAX_CLIENTS"]


def test_environment_overrides_file(tmp_path):
    path = _write_config(tmp_path, {"MAX_CLIENTS": 50})
    environ = {
        "MAX_CLIENTS": "7",
        "MESSAGE_TYPES": '["voice", "video"]',
        "SERVER_URL": "wss://broker.example.com",
        "SERVER_PATH": "/ws",
        "TRACK_EMISSIONS": "true",
        "RANDOM_SEED": "42",
    }

    config = load_simulation_config(path, environ=environ)

    assert config.max_clients == 7
    assert config.message_types == ("voice", "video")
    assert (config.transport, config.use_tls, config.port) == ("websockets", True, 443)
    assert config.server_path == "/ws"
    assert config.track_emissions is True
    assert config.random_seed == 42


def test_malformed_config_file_is_rejected(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{ no es json")

    with pytest.raises(ConfigError):
        load_simulation_config(str(path), environ={})


@pytest.mark.parametrize("environ", [
    {"MESSAGE_TYPES": "text,voice"},
    {"MESSAGE_TYPES": "[]"},
    {"MESSAGE_TYPES": '"text"'},
    {"MESSAGE_TYPES": "[1, 2]"},
    {"MAX_CLIENTS": "muchos"},
    {"MAX_CLIENTS": "0"},
    {"MAX_CONCURRENT_MESSAGES": "-1"},
    {"MIN_MESSAGE_DELAY": "3000", "MAX_MESSAGE_DELAY": "100"},
    {"SERVER_URL": "http://localhost:8080"},
    {"SERVER_URL": "mqtt://localhost:puerto"},
    {"SERVER_PATH": "socket.io"},
    {"QOS": "3"},
    {"KEEPALIVE": "-1"},
    {"TRACK_EMISSIONS": "quizas"},
    {"LOG_LEVEL": "verbose"},
])
def test_invalid_values_are_rejected(tmp_path, environ):
    with pytest.raises(ConfigError):
        load_simulation_config(str(tmp_path / "no-existe.json"), environ=environ)


def test_equal_min_and_max_delay_is_valid():
    config = make_config(min_delay_ms=100, max_delay_ms=100)
    assert config.min_delay_ms == config.max_delay_ms == 100


def test_replace_validates_again():
    config = make_config()

    assert config.replace(max_clients=20).max_clients == 20
    with pytest.raises(ConfigError):
        config.replace(max_clients=0)


def test_repository_config_json_is_valid():
    config = load_simulation_config(environ={})
    assert config.server_url == "mqtt://localhost:1883"
