"""
Tests for configuration loading.
"""

import pytest

from config import ServerConfig, load_config


def test_defaults():
    config = load_config([], environ={})
    assert config == ServerConfig()
    assert config.port == 8080
    assert config.db_port == 5432
    assert not config.embedded


def test_environment_overrides_defaults():
    config = load_config([], environ={"DB_HOST": "db.internal", "PORT": "9090", "TS_AUTHKEY": "tskey-abc"})
    assert config.db_host == "db.internal"
    assert config.port == 9090
    assert config.embedded


def test_flags_override_environment():
    config = load_config(["--port", "7000", "--ts-hostname", "shop"], environ={"PORT": "9090"})
    assert config.port == 7000
    assert config.ts_hostname == "shop"


def test_empty_env_value_uses_default():
    assert load_config([], environ={"DB_NAME": ""}).db_name == "demo"


def test_invalid_port_is_usage_error():
    with pytest.raises(SystemExit):
        load_config([], environ={"PORT": "eighty"})


def test_conninfo():
    config = ServerConfig(db_host="h", db_port=6543, db_user="u", db_password="p", db_name="n")
    assert config.conninfo == "host=h port=6543 user=u password=p dbname=n sslmode=disable"


def test_config_is_immutable():
    config = ServerConfig()
    with pytest.raises(AttributeError):
        config.port = 1


def test_log_level_is_normalised():
    assert load_config(["--log-level", "debug"], environ={}).log_level == "DEBUG"


@pytest.mark.parametrize("argv,environ", [
    ([], {"LOG_LEVEL": "verbose"}),
    (["--log-level", "loud"], {}),
])
def test_invalid_log_level_is_usage_error(argv, environ):
    with pytest.raises(SystemExit):
        load_config(argv, environ=environ)
