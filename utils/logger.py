"""Logging configuration."""
import logging
from datetime import datetime, timezone

from rich.logging import RichHandler

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(level="INFO", log_file=None):
    """Configure logging with rich console and optional file handler."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger("alertmonitor")
    root.setLevel(numeric_level)

    if not root.handlers:
        console_handler = RichHandler(level=numeric_level, rich_tracebacks=True, markup=False)
        root.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(numeric_level)
            file_formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            file_handler.setFormatter(file_formatter)
            root.addHandler(file_handler)

    return root


class SystemLogger:
    """Durable operational log.

    Every entry goes to the sink (anything with `append_log`) and is mirrored
    to Python logging under `alertmonitor.system.<component>`. A failing sink
    is reported through Python logging only and never raises.
    """

    def __init__(self, sink=None):
        self.sink = sink

    def log(self, level, component, message, **metadata):
        py_logger = logging.getLogger(f"alertmonitor.system.{component}")
        if metadata:
            py_logger.log(_LEVELS[level], f"{message} {metadata}")
        else:
            py_logger.log(_LEVELS[level], message)

        if self.sink is None:
            return
        try:
            self.sink.append_log(level, component, message, metadata,
                                 datetime.now(timezone.utc))
        except Exception as e:
            logging.getLogger("alertmonitor.system").error(
                f"Could not persist {level} log from {component}: {e}"
            )

    def debug(self, component, message, **metadata):
        self.log("debug", component, message, **metadata)

    def info(self, component, message, **metadata):
        self.log("info", component, message, **metadata)

    def warn(self, component, message, **metadata):
        self.log("warn", component, message, **metadata)

    def error(self, component, message, **metadata):
        self.log("error", component, message, **metadata)
