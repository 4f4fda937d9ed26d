# sake/core/logger.py
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)-22s: %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_LEVEL = "WARNING"


class LoggerProxy:
    """
    Lazy logger accessor so modules can grab a logger at import time.
    Usage: log = LoggerProxy(__name__)
    """

    def __init__(self, name: str):
        self._name = name
        self._logger: logging.Logger | None = None

    def _get_logger(self) -> logging.Logger:
        if self._logger is None:
            self._logger = logging.getLogger(self._name)
        return self._logger

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get_logger(), item)


def setup_logging(config: dict[str, Any], verbose: bool = False) -> None:
    """
    Configure root logging from the ``script_behavior`` section of the config.

    Console output goes through rich on stderr so that task text printed on
    stdout can be piped straight into another task file. A rotating file
    log is added when ``log_to_file`` is set.

    Args:
        config: The loaded sake configuration.
        verbose: Force DEBUG regardless of the configured level.
    """
    behavior = config.get("script_behavior", {})

    level_str = "DEBUG" if verbose else str(behavior.get("log_level_default", DEFAULT_LOG_LEVEL)).upper()
    level = getattr(logging, level_str, logging.WARNING)

    log_format = behavior.get("log_format", DEFAULT_LOG_FORMAT)
    date_format = behavior.get("date_format", DEFAULT_DATE_FORMAT)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            markup=False,
            show_time=False,
            show_path=False,
        )
    ]

    if behavior.get("log_to_file", False):
        log_dir = Path(behavior.get("log_file_directory", "~/.local/state/sake")).expanduser()
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / "sake.log", maxBytes=1024 * 1024, backupCount=3
            )
            file_handler.setFormatter(logging.Formatter(log_format, date_format))
            handlers.append(file_handler)
        except OSError as e:
            # console logging only
            logging.getLogger(__name__).warning("Could not set up file logging at %s: %s", log_dir, e)

    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    logging.basicConfig(level=level, format="%(message)s", datefmt=date_format, handlers=handlers)

    LoggerProxy(__name__).debug(
        "Logging initialized. Level: %s. File logging: %s", level_str, behavior.get("log_to_file", False)
    )
