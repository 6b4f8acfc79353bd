"""
Systemd manager for the keylime agent installer.
Renders and installs unit files and registers them with systemd.
"""

import shutil
import subprocess
from pathlib import Path

from keylime_provisioner.errors import SystemdError
from keylime_provisioner.logging import get_logger

logger = get_logger("SystemdManager")

SYSTEMD_PATH = Path("/etc/systemd/system")
PACKAGED_UNITS_PATH = Path(__file__).parent / "systemd_units"


def render_unit_template(template, install_dir, placeholder="KEYLIMEDIR"):
    """
    Replace every occurrence of ``placeholder`` in ``template`` with
    ``install_dir``. Plain string replacement, no pattern semantics.
    """
    return template.replace(placeholder, str(install_dir))


class SystemdManager:
    """
    Installs unit files into the systemd unit directory and enables them.
    """

    def __init__(self, unit_dir=None, template_dir=None, timeout=30):
        self.unit_dir = Path(unit_dir) if unit_dir else SYSTEMD_PATH
        self.template_dir = Path(template_dir) if template_dir else PACKAGED_UNITS_PATH
        self.timeout = timeout
        logger.debug(
            f"SystemdManager initialized (units: {self.unit_dir}, templates: {self.template_dir})"
        )

    def unit_path(self, unit_name):
        return self.unit_dir / unit_name

    def render_unit(self, unit_name, install_dir, placeholder="KEYLIMEDIR"):
        """
        Read ``<unit_name>.template`` from the template directory and return it
        with the placeholder substituted.
        """
        template_path = self.template_dir / f"{unit_name}.template"
        template = template_path.read_text()
        occurrences = template.count(placeholder)
        if occurrences == 0:
            logger.warning(
                f"Template {template_path} does not contain placeholder '{placeholder}'"
            )
        elif occurrences > 1:
            logger.debug(f"Template {template_path} has {occurrences} placeholders")
        return render_unit_template(template, install_dir, placeholder)

    def install_rendered_unit(self, unit_name, install_dir, placeholder="KEYLIMEDIR"):
        """
        Render a unit template and write the result into the unit directory.
        """
        content = self.render_unit(unit_name, install_dir, placeholder)
        target = self.unit_path(unit_name)
        with open(target, "w") as f:
            f.write(content)
        logger.info(f"Service unit created: {target}")
        return target

    def install_static_unit(self, unit_name):
        """
        Copy a unit file byte-for-byte into the unit directory, overwriting.
        """
        source = self.template_dir / unit_name
        target = self.unit_path(unit_name)
        shutil.copyfile(source, target)
        logger.info(f"Unit installed: {target}")
        return target

    def _systemctl(self, *args):
        cmd = ["systemctl", *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise SystemdError(
                f"systemctl {' '.join(args)} timed out after {self.timeout} seconds"
            ) from e
        except FileNotFoundError as e:
            raise SystemdError("systemctl command not found") from e

        if result.returncode != 0:
            raise SystemdError(
                (result.stderr or "").strip()
                or f"systemctl {' '.join(args)} exited with status {result.returncode}"
            )
        return result

    def reload_systemd(self):
        """
        Reload systemd units to pick up newly written files.
        """
        self._systemctl("daemon-reload")
        logger.info("Systemd daemon reloaded.")

    def enable_unit(self, unit_name):
        """
        Enable a unit for start at boot. The unit is not started.
        """
        self._systemctl("enable", unit_name)
        logger.info(f"Enabled {unit_name}")

    def is_enabled(self, unit_name):
        """
        Return True if systemd reports the unit as enabled.
        """
        try:
            result = subprocess.run(
                ["systemctl", "is-enabled", unit_name],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.warning(f"Could not query enablement of {unit_name}: {e}")
            return False
        return result.returncode == 0 and result.stdout.strip() == "enabled"
