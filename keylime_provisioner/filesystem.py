"""
Host filesystem operations used during provisioning: directory creation,
ownership and permission bits.
"""

import grp
import os
import pwd
import shutil
import stat
from pathlib import Path

from keylime_provisioner.logging import get_logger

logger = get_logger("HostFilesystem")


def _resolve_ids(user, group):
    uid = user if isinstance(user, int) else pwd.getpwnam(user).pw_uid
    gid = group if isinstance(group, int) else grp.getgrnam(group).gr_gid
    return uid, gid


def chown_recursive(path, user, group):
    """
    Change ownership of ``path`` and everything below it, like ``chown -R``.

    Symlinks are never followed: the link itself is re-owned and its target
    is left alone.
    """
    path = Path(path)
    if not os.path.lexists(path):
        return
    uid, gid = _resolve_ids(user, group)
    _lchown_tree(path, uid, gid)


def _lchown_tree(path, uid, gid):
    os.chown(path, uid, gid, follow_symlinks=False)
    if path.is_dir() and not path.is_symlink():
        for sub in path.iterdir():
            _lchown_tree(sub, uid, gid)


class HostFilesystem:
    """
    Thin wrapper over os/shutil so the provisioner can be exercised against a
    temporary tree with ownership changes recorded instead of applied.
    """

    def ensure_directory(self, path):
        """Create ``path`` and any missing parents; no error if it exists."""
        Path(path).mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory: {path}")

    def chown(self, path, user, group):
        shutil.chown(path, user=user, group=group)
        logger.debug(f"Changed owner of {path} to {user}:{group}")

    def chown_recursive(self, path, user, group):
        chown_recursive(path, user, group)
        logger.debug(f"Recursively changed owner of {path} to {user}:{group}")

    def chmod(self, path, mode):
        os.chmod(path, mode)
        logger.debug(f"Set mode {oct(mode)} on {path}")

    def mode(self, path):
        """Return the permission bits of ``path``."""
        return stat.S_IMODE(os.stat(path).st_mode)
