"""
Provisioner for the keylime agent.

Brings a host from "agent binary present" to "agent service installed,
configured and enabled". The steps run strictly in order and the first
failure aborts the run; nothing is rolled back.
"""

import os
import shutil
from pathlib import Path

from keylime_provisioner.accounts import AccountStore
from keylime_provisioner.agent_config import agent_config_path, patch_run_as, read_run_as
from keylime_provisioner.errors import BinaryNotFoundError, InsufficientPrivilegesError
from keylime_provisioner.filesystem import HostFilesystem
from keylime_provisioner.logging import get_logger
from keylime_provisioner.systemd_manager import SystemdManager

logger = get_logger("Provisioner")

RUNTIME_DIR_MODE = 0o700


def is_administrator():
    return os.geteuid() == 0


def resolve_install_dir(binary="keylime_agent"):
    """
    Return the directory holding ``binary`` as found on PATH.

    Raises:
        BinaryNotFoundError: If the binary is not on PATH or only found
            relative to the current directory
    """
    location = shutil.which(binary)
    if not location:
        raise BinaryNotFoundError(binary)
    install_dir = os.path.dirname(location)
    if install_dir in ("", "."):
        raise BinaryNotFoundError(binary)
    return install_dir


class Provisioner:
    """
    Installs the keylime agent service on the local host.

    Collaborators (account database, systemd, filesystem) are injected so the
    sequence can run against test doubles. Not safe to run concurrently from
    several processes: account creation and unit writes are not locked.
    """

    def __init__(self, config, accounts=None, systemd=None, fs=None):
        self.config = config
        self.agent = config.section("agent")
        self.account = config.section("account")
        self.units = config.section("systemd")
        self.directories = config.section("directories")

        self.accounts = accounts or AccountStore()
        self.systemd = systemd or SystemdManager(
            unit_dir=self.units["unit_dir"],
            template_dir=self.units.get("template_dir"),
        )
        self.fs = fs or HostFilesystem()
        self.completed_steps = []

    @property
    def agent_config(self):
        return Path(agent_config_path(self.agent["config_path"]))

    @property
    def owner(self):
        return self.account["name"], self.account["group"]

    def install(self):
        """
        Run every provisioning step in order.

        Raises:
            InsufficientPrivilegesError: Not running as root (nothing changed)
            BinaryNotFoundError: Agent not on PATH (nothing changed)
            AccountError, SystemdError, AgentConfigError, OSError: A later
                step failed; the host may be partially provisioned
        """
        self.completed_steps = []
        self.check_privileges()
        install_dir = resolve_install_dir(self.agent["binary"])
        logger.info(f"Using keylime directory: {install_dir}")
        self.completed_steps.append("resolve_install_dir")

        steps = [
            ("install_agent_unit", lambda: self.install_agent_unit(install_dir)),
            ("install_mount_unit", self.install_mount_unit),
            ("ensure_account", self.ensure_account),
            ("configure_privilege_drop", self.configure_privilege_drop),
            ("create_directories", self.create_directories),
            ("apply_permissions", self.apply_permissions),
            ("enable_units", self.enable_units),
        ]
        for name, step in steps:
            try:
                step()
            except Exception as e:
                logger.error(
                    f"Provisioning failed at step '{name}': {e}",
                    completed_steps=list(self.completed_steps),
                )
                logger.warning(
                    "Host may be partially provisioned; inspect it before re-running"
                )
                raise
            self.completed_steps.append(name)

        logger.info("Keylime agent provisioned successfully")

    def check_privileges(self):
        if not is_administrator():
            raise InsufficientPrivilegesError()
        self.completed_steps.append("check_privileges")

    def install_agent_unit(self, install_dir):
        return self.systemd.install_rendered_unit(
            self.units["agent_unit"], install_dir, self.units["placeholder"]
        )

    def install_mount_unit(self):
        return self.systemd.install_static_unit(self.units["mount_unit"])

    def ensure_account(self):
        """
        Create the service account unless an account of that name exists.

        An existing account is accepted as is; differing attributes are only
        reported.
        """
        name = self.account["name"]
        logger.info(f"Creating {name} user if it does not exist")
        entry = self.accounts.lookup(name)
        if entry is not None:
            if entry.pw_dir != self.account["home"]:
                logger.warning(
                    f"Account '{name}' has home {entry.pw_dir}, expected {self.account['home']}"
                )
            if entry.pw_shell != self.account["shell"]:
                logger.warning(
                    f"Account '{name}' has shell {entry.pw_shell}, expected {self.account['shell']}"
                )
            logger.debug(f"Account '{name}' already exists, skipping creation")
            return False

        self.accounts.create_system_account(
            name,
            home=self.account["home"],
            shell=self.account["shell"],
            create_home=False,
        )
        return True

    def configure_privilege_drop(self):
        logger.info(
            f"Changing {self.agent_config} to enable privilege dropping for the agent"
        )
        return patch_run_as(self.agent_config, self.agent["run_as"])

    def create_directories(self):
        for key in ("state", "log", "run"):
            self.fs.ensure_directory(self.directories[key])

    def apply_permissions(self):
        user, group = self.owner
        logger.info(f"Changing files to be owned by the {user} user")
        self.fs.chown(self.agent_config, user, group)
        for key in ("state", "log", "run"):
            self.fs.chown_recursive(self.directories[key], user, group)

        for unit in (self.units["agent_unit"], self.units["mount_unit"]):
            self.fs.chmod(self.systemd.unit_path(unit), self.units["unit_mode"])
        self.fs.chmod(self.directories["run"], RUNTIME_DIR_MODE)

    def enable_units(self):
        self.systemd.reload_systemd()
        for unit in (self.units["agent_unit"], self.units["mount_unit"]):
            self.systemd.enable_unit(unit)

    def status(self):
        """
        Report how much of the provisioning is in place, without changing
        anything. Returns a dict of check name to bool.
        """
        checks = {}
        checks["account"] = self.accounts.user_exists(self.account["name"])
        for unit in (self.units["agent_unit"], self.units["mount_unit"]):
            checks[f"unit:{unit}"] = self.systemd.unit_path(unit).exists()
            checks[f"enabled:{unit}"] = self.systemd.is_enabled(unit)

        try:
            checks["run_as"] = (
                read_run_as(self.agent_config.read_text()) == self.agent["run_as"]
            )
        except OSError:
            checks["run_as"] = False

        run_dir = self.directories["run"]
        checks["runtime_dir"] = (
            os.path.isdir(run_dir) and self.fs.mode(run_dir) == RUNTIME_DIR_MODE
        )
        return checks
