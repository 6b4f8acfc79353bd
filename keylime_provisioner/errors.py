"""
Error types raised while provisioning the keylime agent.

File access failures (template missing, chmod/chown refused, ...) are not
wrapped: they surface as the builtin ``OSError`` subclasses.
"""


class ProvisionError(Exception):
    """Base class for provisioning failures."""

    pass


class InsufficientPrivilegesError(ProvisionError, PermissionError):
    """Raised when the installer is not running as root."""

    def __init__(self, message="This script must be run as root"):
        super().__init__(message)


class BinaryNotFoundError(ProvisionError):
    """Raised when the agent executable cannot be located on PATH."""

    def __init__(self, binary, message="Unable to find keylime agent"):
        self.binary = binary
        super().__init__(message)


class AccountError(ProvisionError):
    """Raised when the service account cannot be created."""

    pass


class SystemdError(ProvisionError):
    """Raised when a systemctl invocation fails."""

    pass


class AgentConfigError(ProvisionError):
    """Raised when the agent configuration file cannot be patched."""

    pass
