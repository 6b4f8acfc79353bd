"""
Unit tests for the config module of keylime_provisioner.
"""

import pytest
import yaml

from keylime_provisioner.config import Config, ConfigError


def write_config(tmp_path, data):
    path = tmp_path / "provisioner.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return str(path)


def test_defaults_loaded(tmp_path):
    """Test that the packaged defaults supply every section."""
    config = Config(write_config(tmp_path, {}))
    assert config.section("account")["name"] == "keylime"
    assert config.section("account")["shell"] == "/bin/false"
    assert config.section("agent")["run_as"] == "keylime:tss"
    assert config.section("systemd")["placeholder"] == "KEYLIMEDIR"
    assert config.section("systemd")["unit_mode"] == 0o660
    assert config.section("directories")["run"] == "/var/run/keylime"


def test_user_config_merged_over_defaults(tmp_path):
    """Test that nested user values override only the keys they name."""
    path = write_config(tmp_path, {"account": {"group": "tss"}})
    config = Config(path)
    assert config.section("account")["group"] == "tss"
    assert config.section("account")["name"] == "keylime"
    assert config.config_path == path


def test_env_var_config(tmp_path, monkeypatch):
    """Test that KEYLIME_PROVISIONER_CONFIG is used when no path is given."""
    path = write_config(tmp_path, {"agent": {"binary": "my_agent"}})
    monkeypatch.setenv("KEYLIME_PROVISIONER_CONFIG", path)
    config = Config()
    assert config.section("agent")["binary"] == "my_agent"


def test_missing_explicit_path(tmp_path):
    """Test that a missing explicit config path is an error."""
    with pytest.raises(ConfigError) as exc_info:
        Config(str(tmp_path / "absent.yaml"))
    assert "not found" in str(exc_info.value)


def test_invalid_yaml(tmp_path):
    """Test that unparsable YAML raises ConfigError."""
    path = tmp_path / "broken.yaml"
    path.write_text("account: [unclosed\n")
    with pytest.raises(ConfigError) as exc_info:
        Config(str(path))
    assert "Could not parse" in str(exc_info.value)


def test_invalid_log_level(tmp_path):
    """Test that invalid log level is rejected."""
    path = write_config(tmp_path, {"logging": {"level": "LOUD"}})
    with pytest.raises(ConfigError) as exc_info:
        Config(path)
    assert "Invalid log level" in str(exc_info.value)


def test_relative_directory_rejected(tmp_path):
    """Test that directories must be absolute paths."""
    path = write_config(tmp_path, {"directories": {"run": "var/run/keylime"}})
    with pytest.raises(ConfigError) as exc_info:
        Config(path)
    assert "directories.run" in str(exc_info.value)


def test_invalid_account_name(tmp_path):
    """Test that account names unsafe for adduser are rejected."""
    for name in ["", "Keylime", "../etc", "key lime", "x;rm -rf /"]:
        path = write_config(tmp_path, {"account": {"name": name}})
        with pytest.raises(ConfigError):
            Config(path)


def test_binary_must_be_command_name(tmp_path):
    """Test that agent.binary cannot be a path."""
    path = write_config(tmp_path, {"agent": {"binary": "/usr/bin/keylime_agent"}})
    with pytest.raises(ConfigError):
        Config(path)


@pytest.mark.parametrize(
    "value, expected",
    [("0664", 0o664), ("600", 0o600), (0o640, 0o640)],
)
def test_unit_mode_parsing(tmp_path, value, expected):
    """Test that unit_mode accepts octal strings and integers."""
    path = write_config(tmp_path, {"systemd": {"unit_mode": value}})
    assert Config(path).section("systemd")["unit_mode"] == expected


@pytest.mark.parametrize("value", ["rw-rw----", "0999", True, 0o17777])
def test_unit_mode_invalid(tmp_path, value):
    """Test that malformed unit modes are rejected."""
    path = write_config(tmp_path, {"systemd": {"unit_mode": value}})
    with pytest.raises(ConfigError):
        Config(path)
