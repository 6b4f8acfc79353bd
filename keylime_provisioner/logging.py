"""
Installer logging setup module.

Diagnostics always go to stderr; stdout carries only command output such as
the unit printed by ``render``. Logging is usable as soon as this module is
imported (WARNING and above), and ``setup_logging`` applies the configured
level and renderer once the installer configuration has been loaded.
"""

import logging
import sys

import structlog

LOGGER_NAMESPACE = "keylime_provisioner"
BOOTSTRAP_LEVEL = logging.WARNING


class _StderrHandler(logging.StreamHandler):
    """
    StreamHandler bound to whatever ``sys.stderr`` is at emit time, so
    redirected or captured stderr is honoured.
    """

    def __init__(self):
        super().__init__(sys.stderr)

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


def _configure_structlog(fmt="plain"):
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        # Module-level loggers must pick up the level/renderer set later
        cache_logger_on_first_use=False,
    )


def _namespace_logger():
    root = logging.getLogger(LOGGER_NAMESPACE)
    if not any(isinstance(h, _StderrHandler) for h in root.handlers):
        handler = _StderrHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
    root.propagate = False
    return root


def bootstrap_logging():
    """
    Route installer logs to stderr at WARNING until the config is known.
    """
    _configure_structlog()
    _namespace_logger().setLevel(BOOTSTRAP_LEVEL)


def setup_logging(config):
    """
    Apply the ``logging`` section of the installer config (level, format).
    Safe to call more than once; the last call wins.
    """
    logging_cfg = config.get("logging", {}) or {}
    level = getattr(logging, str(logging_cfg.get("level", "INFO")).upper(), logging.INFO)
    _configure_structlog(logging_cfg.get("format", "plain"))
    _namespace_logger().setLevel(level)


def get_logger(name):
    """
    Returns a structlog logger under the installer namespace.
    """
    return structlog.get_logger(f"{LOGGER_NAMESPACE}.{name}")


bootstrap_logging()
