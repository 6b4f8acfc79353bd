"""
Configuration management for the keylime agent installer.
"""

import os

import yaml

from keylime_provisioner.accounts import AccountStore
from keylime_provisioner.logging import get_logger

logger = get_logger("Config")

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "default-config.yaml")
SYSTEM_CONFIG_PATH = "/etc/keylime/provisioner.yaml"
CONFIG_ENV_VAR = "KEYLIME_PROVISIONER_CONFIG"


class ConfigError(Exception):
    """Custom exception for configuration errors."""

    pass


class Config:
    """
    Handles loading, merging, and validating the installer configuration.

    Configuration Loading Priority (highest to lowest):
    1. Explicitly provided path via config_path parameter
    2. Environment variable KEYLIME_PROVISIONER_CONFIG
    3. System-wide config at /etc/keylime/provisioner.yaml

    The packaged default-config.yaml is always loaded first and the user
    configuration is merged on top of it, so every key the provisioner reads
    exists even when the user config is minimal or missing.

    Example:
        >>> config = Config("/etc/keylime/provisioner.yaml")
        >>> config.section("account")["name"]
        'keylime'
    """

    def __init__(self, config_path=None):
        """
        Initialize the configuration system.

        Args:
            config_path: Optional explicit path to a YAML configuration file.

        Raises:
            ConfigError: If an explicit path is missing, a file cannot be
                parsed, or validation fails
        """
        self.config_path = None
        self.data = self._load_config(DEFAULT_CONFIG_PATH)
        logger.debug(f"Loaded default configuration from: {DEFAULT_CONFIG_PATH}")

        user_config_path = None
        if config_path:
            if not os.path.exists(config_path):
                raise ConfigError(f"Configuration file not found: {config_path}")
            user_config_path = config_path
        elif os.environ.get(CONFIG_ENV_VAR) and os.path.exists(
            os.environ.get(CONFIG_ENV_VAR)
        ):
            user_config_path = os.environ.get(CONFIG_ENV_VAR)
            logger.debug(f"Using config path from environment: {user_config_path}")
        elif os.path.exists(SYSTEM_CONFIG_PATH):
            user_config_path = SYSTEM_CONFIG_PATH

        if user_config_path:
            user_config = self._load_config(user_config_path)
            if user_config:
                self._merge_configs(self.data, user_config)
                logger.info(f"Merged user configuration from: {user_config_path}")
            else:
                logger.warning(
                    f"User config at {user_config_path} was empty or invalid"
                )
            self.config_path = user_config_path
        else:
            logger.debug("No user configuration found, using defaults only")
            self.config_path = DEFAULT_CONFIG_PATH

        try:
            self._validate_config()
        except ConfigError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def _load_config(self, path):
        """
        Loads a YAML configuration file.

        Returns:
            dict: Parsed configuration data, or empty dict if file doesn't exist

        Raises:
            ConfigError: If YAML parsing fails or file cannot be read
        """
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML file at {path}: {e}")
            raise ConfigError(f"Could not parse {path}") from e
        except IOError as e:
            logger.error(f"Error reading file at {path}: {e}")
            raise ConfigError(f"Could not read {path}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Top level of {path} must be a mapping")
        return data

    def _merge_configs(self, base, override):
        """
        Recursively merges the override config into the base config.
        Dictionaries are merged recursively, all other types override.
        """
        for key, value in override.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                self._merge_configs(base[key], value)
            else:
                base[key] = value

    @staticmethod
    def _validate_absolute_path(value, field_name):
        if not isinstance(value, str) or not value:
            raise ConfigError(f"'{field_name}' must be a non-empty string")
        if not os.path.isabs(value):
            raise ConfigError(f"'{field_name}' must be an absolute path, got '{value}'")

    @staticmethod
    def _validate_account_name(value, field_name):
        if not AccountStore.validate_username(value):
            raise ConfigError(f"'{field_name}' is not a valid account name: {value!r}")

    @staticmethod
    def _parse_mode(value, field_name):
        """Accept an int or an octal string such as "0660"."""
        if isinstance(value, bool):
            raise ConfigError(f"'{field_name}' must be a file mode")
        if isinstance(value, int):
            mode = value
        elif isinstance(value, str):
            try:
                mode = int(value, 8)
            except ValueError:
                raise ConfigError(
                    f"'{field_name}' must be an octal mode, got '{value}'"
                ) from None
        else:
            raise ConfigError(f"'{field_name}' must be a file mode")
        if not 0 <= mode <= 0o7777:
            raise ConfigError(f"'{field_name}' is out of range: {oct(mode)}")
        return mode

    def _require_section(self, name):
        section = self.data.get(name)
        if not isinstance(section, dict):
            raise ConfigError(f"'{name}' section is missing or not a dictionary.")
        return section

    def _validate_config(self):
        """
        Validates the merged configuration.
        Raises ConfigError with a field-specific message on failure.
        """
        logging_cfg = self._require_section("logging")
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if "level" in logging_cfg and logging_cfg["level"] not in valid_log_levels:
            raise ConfigError(
                f"Invalid log level: '{logging_cfg['level']}'. "
                f"Must be one of: {', '.join(valid_log_levels)}"
            )
        if logging_cfg.get("format", "plain") not in ("plain", "json"):
            raise ConfigError(
                f"Invalid log format: '{logging_cfg['format']}'. Must be plain or json"
            )

        agent = self._require_section("agent")
        if not isinstance(agent.get("binary"), str) or not agent["binary"]:
            raise ConfigError("'agent.binary' must be a non-empty string")
        if os.sep in agent["binary"]:
            raise ConfigError("'agent.binary' must be a command name, not a path")
        self._validate_absolute_path(agent.get("config_path"), "agent.config_path")
        run_as = agent.get("run_as")
        if not isinstance(run_as, str) or not run_as.strip():
            raise ConfigError("'agent.run_as' must be a non-empty string")

        account = self._require_section("account")
        self._validate_account_name(account.get("name"), "account.name")
        self._validate_account_name(account.get("group"), "account.group")
        self._validate_absolute_path(account.get("home"), "account.home")
        self._validate_absolute_path(account.get("shell"), "account.shell")

        systemd = self._require_section("systemd")
        self._validate_absolute_path(systemd.get("unit_dir"), "systemd.unit_dir")
        if systemd.get("template_dir") is not None:
            self._validate_absolute_path(
                systemd["template_dir"], "systemd.template_dir"
            )
        for key in ("placeholder", "agent_unit", "mount_unit"):
            value = systemd.get(key)
            if not isinstance(value, str) or not value:
                raise ConfigError(f"'systemd.{key}' must be a non-empty string")
        systemd["unit_mode"] = self._parse_mode(
            systemd.get("unit_mode"), "systemd.unit_mode"
        )

        directories = self._require_section("directories")
        for key in ("state", "log", "run"):
            self._validate_absolute_path(directories.get(key), f"directories.{key}")

        logger.debug("Configuration validation passed.")

    def section(self, name):
        """
        Returns a validated configuration section as a dictionary.
        """
        return self.data[name]

    def get(self, key, default=None):
        """
        Gets a top-level configuration value.
        """
        return self.data.get(key, default)
