"""
Configuration Loader.

This module initializes the global configuration object (`config`) used
throughout the package. It leverages `yacs` to provide a hierarchical,
dot-accessible configuration structure defined in `redirector.core_config`.

Usage:
    from redirector.config import config
    print(config.REDIRECT.LOOPBACK.HOST)
"""

import logging
import os

from redirector.core_config import get_cfg_defaults

logger = logging.getLogger(__name__)

# Load default configuration
config = get_cfg_defaults()

# Optional YAML overrides
_user_config_path = os.environ.get("REDIRECT_CONFIG_FILE")
if _user_config_path and os.path.exists(_user_config_path):
    config.merge_from_file(_user_config_path)

# Freeze config to prevent accidental changes during runtime.
config.freeze()
