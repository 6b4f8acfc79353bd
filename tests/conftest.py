"""
Configuration and fixtures for keylime_provisioner tests.
"""

import pwd
import pytest
import yaml

from keylime_provisioner.config import Config
from keylime_provisioner.filesystem import HostFilesystem

AGENT_CONF = """[general]
receive_revocation_port = 8992

[cloud_agent]
cloudagent_ip = 127.0.0.1
# Drop privileges after startup
run_as =
registrar_port = 8890
"""


class RecordingFilesystem(HostFilesystem):
    """
    HostFilesystem that records ownership changes instead of applying them,
    since tests cannot chown to the keylime user.
    """

    def __init__(self):
        self.chowned = []

    def chown(self, path, user, group):
        self.chowned.append((str(path), user, group, False))

    def chown_recursive(self, path, user, group):
        self.chowned.append((str(path), user, group, True))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment variables out of the tests."""
    monkeypatch.delenv("KEYLIME_CONFIG", raising=False)
    monkeypatch.delenv("KEYLIME_PROVISIONER_CONFIG", raising=False)


@pytest.fixture
def host(tmp_path):
    """
    Provides a temporary host layout and an installer config pointing at it.
    """
    unit_dir = tmp_path / "etc" / "systemd" / "system"
    unit_dir.mkdir(parents=True)
    agent_conf = tmp_path / "etc" / "keylime.conf"
    agent_conf.write_text(AGENT_CONF)

    config = {
        "logging": {"level": "DEBUG", "format": "plain"},
        "agent": {"config_path": str(agent_conf)},
        "systemd": {"unit_dir": str(unit_dir)},
        "directories": {
            "state": str(tmp_path / "var" / "lib" / "keylime"),
            "log": str(tmp_path / "var" / "log" / "keylime"),
            "run": str(tmp_path / "var" / "run" / "keylime"),
        },
    }
    config_path = tmp_path / "provisioner.yaml"
    with open(config_path, "w") as f:
        yaml.dump(config, f)

    return {
        "root": tmp_path,
        "unit_dir": unit_dir,
        "agent_conf": agent_conf,
        "config_path": config_path,
        "config": Config(str(config_path)),
    }


@pytest.fixture
def recording_fs():
    return RecordingFilesystem()


@pytest.fixture
def fake_accounts(mocker):
    """
    AccountStore double backed by a dict; create_system_account adds an entry.
    """
    accounts = mocker.MagicMock()
    users = {}

    def lookup(name):
        return users.get(name)

    def create(name, home, shell, create_home=False):
        users[name] = pwd.struct_passwd(
            (name, "x", 999, 999, "", home, shell)
        )

    accounts.users = users
    accounts.lookup.side_effect = lookup
    accounts.user_exists.side_effect = lambda name: name in users
    accounts.create_system_account.side_effect = create
    return accounts
