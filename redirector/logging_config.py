import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import config

PACKAGE_LOGGER = "redirector"


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    name = (level or os.environ.get("LOG_LEVEL") or config.LOGGING.LEVEL).upper()
    return getattr(logging, name, logging.INFO)


def _installed_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [handler for handler in logger.handlers if getattr(handler, "_redirector_owned", False)]


def setup_logging(level: str | int | None = None) -> Path:
    """Send redirect runtime logs to stderr and a rotating file.

    Handlers go on the package logger, not the root, so a host application's
    own logging setup is left alone. Calling this again only adjusts the level.
    Returns the log file path.
    """
    resolved = _resolve_level(level)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(resolved)

    installed = _installed_handlers(package_logger)
    if installed:
        for handler in installed:
            handler.setLevel(resolved)
        file_handlers = [h for h in installed if isinstance(h, RotatingFileHandler)]
        return Path(file_handlers[0].baseFilename)

    logs_dir = Path(config.LOGGING.DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = Path(os.environ.get("LOG_FILE", str(logs_dir / config.LOGGING.FILE_NAME)))

    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler()
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=int(config.LOGGING.MAX_BYTES),
        backupCount=int(config.LOGGING.BACKUP_COUNT),
        encoding="utf-8",
    )
    for handler in (stream_handler, file_handler):
        handler.setLevel(resolved)
        handler.setFormatter(formatter)
        handler._redirector_owned = True  # type: ignore[attr-defined]
        package_logger.addHandler(handler)
    return log_file


def teardown_logging() -> None:
    """Remove and close the handlers installed by :func:`setup_logging`."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in _installed_handlers(package_logger):
        package_logger.removeHandler(handler)
        handler.close()
