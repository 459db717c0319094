"""
Core Configuration Definitions.

This module defines the default structure and values for the redirect
runtime's configuration using `yacs`. It is the single source of truth for
all configurable parameters.

Configuration is organized into sections:
- REDIRECT: Operation identity, timeouts and transport defaults.
- REDIRECT.LOOPBACK: Loopback HTTP listener settings.
- REDIRECT.BROADCAST: Broadcast channel naming and durable directory.
- REDIRECT.RESUME: Same-page resume storage keys.
- LOGGING: Log file location and rotation.
"""

import os
import platform
from pathlib import Path

from yacs.config import CfgNode as CN  # type: ignore[import-untyped]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _default_local_base_dir() -> Path:
    system = platform.system().lower()
    if system == "windows":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data) / "Redirector"
        return Path.home() / "AppData" / "Local" / "Redirector"
    if system == "darwin":
        return Path.home() / "Library" / "Application Support" / "Redirector"
    xdg = os.environ.get("XDG_STATE_HOME")
    if xdg:
        return Path(xdg) / "redirector"
    return Path.home() / ".local" / "state" / "redirector"


_C = CN()

# -----------------------------------------------------------------------------
# Redirect Configuration
# -----------------------------------------------------------------------------
_C.REDIRECT = CN()
# Package root (used to locate bundled templates)
_C.REDIRECT.ROOT = str(Path(__file__).parent)

# State directory for durable stores (channel directory, resume flags)
_C.REDIRECT.STATE_DIR = os.environ.get("REDIRECT_STATE_DIR", str(_default_local_base_dir()))

# Nonce length and alphabet. 16 chars of [a-z0-9] carry ~82 bits of entropy.
_C.REDIRECT.NONCE_LENGTH = int(os.environ.get("REDIRECT_NONCE_LENGTH", "16"))
_C.REDIRECT.NONCE_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"

# Default timeout applied when an operation does not set one (0 disables)
_C.REDIRECT.DEFAULT_TIMEOUT_SEC = float(os.environ.get("REDIRECT_DEFAULT_TIMEOUT_SEC", "0"))

# Transport used when options do not name one
_C.REDIRECT.DEFAULT_TRANSPORT = os.environ.get("REDIRECT_DEFAULT_TRANSPORT", "loopback")

# -----------------------------------------------------------------------------
# Loopback listener
# -----------------------------------------------------------------------------
_C.REDIRECT.LOOPBACK = CN()
_C.REDIRECT.LOOPBACK.HOST = os.environ.get("REDIRECT_LOOPBACK_HOST", "127.0.0.1")
_C.REDIRECT.LOOPBACK.CALLBACK_PATH = os.environ.get("REDIRECT_LOOPBACK_CALLBACK_PATH", "/callback")
_C.REDIRECT.LOOPBACK.OPEN_BROWSER = _env_bool("REDIRECT_LOOPBACK_OPEN_BROWSER", True)
# serve_forever poll interval; bounds how long a close waits for the accept loop
_C.REDIRECT.LOOPBACK.POLL_INTERVAL_SEC = float(
    os.environ.get("REDIRECT_LOOPBACK_POLL_INTERVAL_SEC", "0.05")
)
_C.REDIRECT.LOOPBACK.THREAD_JOIN_TIMEOUT_SEC = 1.0
_C.REDIRECT.LOOPBACK.SUCCESS_TEMPLATE = os.path.join(
    _C.REDIRECT.ROOT, "assets", "templates", "callback_complete.html.j2"
)

# -----------------------------------------------------------------------------
# Broadcast channels
# -----------------------------------------------------------------------------
_C.REDIRECT.BROADCAST = CN()
_C.REDIRECT.BROADCAST.CHANNEL_PREFIX = "redirect_"
_C.REDIRECT.BROADCAST.DIRECTORY_KEY_PREFIX = "redirect_channels_"
_C.REDIRECT.BROADCAST.DEFAULT_PARTITION = "https"
_C.REDIRECT.BROADCAST.DIRECTORY_FILE = os.environ.get(
    "REDIRECT_BROADCAST_DIRECTORY_FILE",
    os.path.join(_C.REDIRECT.STATE_DIR, "channels.json"),
)
_C.REDIRECT.BROADCAST.RELAY_TEMPLATE = os.path.join(
    _C.REDIRECT.ROOT, "assets", "templates", "relay_complete.html.j2"
)

# -----------------------------------------------------------------------------
# Same-page resume
# -----------------------------------------------------------------------------
_C.REDIRECT.RESUME = CN()
_C.REDIRECT.RESUME.PENDING_KEY = "redirect_pending"
_C.REDIRECT.RESUME.OPERATION_ID_KEY = "redirect_operation_id"
_C.REDIRECT.RESUME.CALLBACK_URL_KEY = "redirect_callback_url"
# Survives a full restart of the host process
_C.REDIRECT.RESUME.FILE = os.environ.get(
    "REDIRECT_RESUME_FILE",
    os.path.join(_C.REDIRECT.STATE_DIR, "resume.json"),
)

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
_C.LOGGING = CN()
_C.LOGGING.DIR = os.environ.get("REDIRECT_LOG_DIR", os.path.join(_C.REDIRECT.STATE_DIR, "logs"))
_C.LOGGING.LEVEL = os.environ.get("REDIRECT_LOG_LEVEL", "INFO")
_C.LOGGING.FILE_NAME = "redirector.log"
_C.LOGGING.MAX_BYTES = int(os.environ.get("LOG_MAX_BYTES", str(5 * 1024 * 1024)))
_C.LOGGING.BACKUP_COUNT = int(os.environ.get("LOG_BACKUP_COUNT", "5"))


def get_cfg_defaults():
    """
    Get a yacs CfgNode object with default values.
    Returns a clone so callers never mutate the module defaults.
    """
    return _C.clone()
