"""
Account database access for the installer.
Looks up accounts through pwd and creates system accounts with adduser.
"""

import pwd
import re
import subprocess

from keylime_provisioner.errors import AccountError
from keylime_provisioner.logging import get_logger

logger = get_logger("AccountStore")


class AccountStore:
    """
    Narrow wrapper around the host account database.

    Only two operations are needed by the provisioner: lookup by name and
    creation of a non-login system account.
    """

    def __init__(self, adduser="adduser", timeout=30):
        self.adduser = adduser
        self.timeout = timeout

    @staticmethod
    def validate_username(username: str) -> bool:
        """
        Validate username format so it is safe to pass to adduser.

        Args:
            username: The username to validate

        Returns:
            bool: True if username is valid, False otherwise
        """
        if not username or not isinstance(username, str):
            return False
        return bool(re.match(r"^[a-z_][a-z0-9_-]*\$?$", username))

    def lookup(self, username):
        """
        Return the passwd entry for ``username`` or None when absent.
        """
        if not self.validate_username(username):
            return None
        try:
            return pwd.getpwnam(username)
        except KeyError:
            return None

    def user_exists(self, username):
        """
        Check if a user exists on the system.
        """
        return self.lookup(username) is not None

    def create_system_account(self, username, home, shell, create_home=False):
        """
        Create a system account with a disabled login shell.

        Raises:
            AccountError: If the username is invalid or adduser fails
        """
        if not self.validate_username(username):
            raise AccountError(f"Invalid account name: {username!r}")

        cmd = [self.adduser, "--system", "--shell", shell, "--home", home]
        if not create_home:
            cmd.append("--no-create-home")
        cmd.append(username)

        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            raise AccountError(
                (e.stderr or "").strip()
                or f"{self.adduser} exited with status {e.returncode}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise AccountError(
                f"{self.adduser} timed out after {self.timeout} seconds"
            ) from e
        except FileNotFoundError as e:
            raise AccountError(f"{self.adduser} command not found") from e
        logger.info(f"Created system account '{username}'")
