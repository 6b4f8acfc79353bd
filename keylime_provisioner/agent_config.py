"""
Agent configuration handling.

Locates the agent's INI-style configuration file and sets the ``run_as``
option so the agent drops privileges to the service account after startup.
The edit is line oriented: only ``run_as`` assignments are touched, every
other line (comments, ordering, whitespace) is preserved verbatim.
"""

import os
import re
import stat
import tempfile
from pathlib import Path
from typing import List, Optional

from keylime_provisioner.errors import AgentConfigError
from keylime_provisioner.logging import get_logger

logger = get_logger("AgentConfig")

DEFAULT_AGENT_CONFIG = "/etc/keylime.conf"
AGENT_CONFIG_ENV_VAR = "KEYLIME_CONFIG"
AGENT_SECTION = "cloud_agent"

_SECTION_RE = re.compile(r"^\s*\[(?P<name>[^\]]+)\]\s*$")
_RUN_AS_RE = re.compile(r"^(?P<indent>\s*)run_as\s*[=:](?P<value>.*)$")


def agent_config_path(default=DEFAULT_AGENT_CONFIG):
    """
    Return the agent configuration path: KEYLIME_CONFIG when set and
    non-empty, ``default`` otherwise.
    """
    env_path = os.environ.get(AGENT_CONFIG_ENV_VAR)
    if env_path:
        return env_path
    return default


def read_run_as(text: str) -> Optional[str]:
    """
    Return the value of the first ``run_as`` assignment, or None.
    An assignment without a value yields an empty string.
    """
    for line in text.splitlines():
        match = _RUN_AS_RE.match(line)
        if match:
            return match.group("value").strip()
    return None


def set_run_as(text: str, run_as: str, section: str = AGENT_SECTION) -> str:
    """
    Return ``text`` with every ``run_as`` assignment set to ``run_as``.

    If there is no assignment, one is appended to the end of ``section``, or
    to the end of the file when that section does not exist.
    """
    lines: List[str] = text.splitlines(keepends=True)
    replacement = f"run_as = {run_as}"
    found = False

    for i, line in enumerate(lines):
        body = line.rstrip("\r\n")
        match = _RUN_AS_RE.match(body)
        if not match:
            continue
        found = True
        if match.group("value").strip() == run_as:
            continue
        newline = line[len(body):]
        lines[i] = f"{match.group('indent')}{replacement}{newline}"

    if found:
        return "".join(lines)

    insert_at = None
    in_section = False
    for i, line in enumerate(lines):
        match = _SECTION_RE.match(line)
        if match:
            if in_section:
                break
            in_section = match.group("name").strip() == section
            continue
        if in_section and line.strip():
            insert_at = i + 1

    if insert_at is None:
        # Section missing or empty: fall back to appending at end of file
        for i, line in enumerate(lines):
            match = _SECTION_RE.match(line)
            if match and match.group("name").strip() == section:
                insert_at = i + 1
        if insert_at is None:
            insert_at = len(lines)

    if insert_at > 0 and not lines[insert_at - 1].endswith("\n"):
        lines[insert_at - 1] += "\n"
    lines.insert(insert_at, replacement + "\n")
    return "".join(lines)


def patch_run_as(path, run_as):
    """
    Set ``run_as`` in the configuration file at ``path`` in place.

    The file is only rewritten when its content changes, so a file that
    already names ``run_as`` stays byte-identical.

    Returns:
        bool: True if the file was modified
    """
    path = Path(path)
    if not path.exists():
        raise AgentConfigError(f"Agent configuration not found: {path}")

    with open(path, "r", newline="") as f:
        previous = f.read()
    updated = set_run_as(previous, run_as)
    if updated == previous:
        logger.info(f"{path} already sets run_as = {run_as}")
        return False

    _replace_file(path, updated)
    logger.info(f"Set run_as = {run_as} in {path}")
    return True


def _replace_file(path, content):
    """
    Write ``content`` to a temp file beside ``path`` and rename it over the
    existing file, keeping its mode and (as root) its owner. A symlinked config is
    written through to the file it points at.
    """
    target = Path(os.path.realpath(path))
    st = os.stat(target)
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    try:
        with os.fdopen(fd, "w", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, stat.S_IMODE(st.st_mode))
        if os.geteuid() == 0:
            os.chown(tmp, st.st_uid, st.st_gid)
        os.replace(tmp, target)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
