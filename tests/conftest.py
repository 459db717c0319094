import sys
from pathlib import Path

import pytest

# Add project root to sys.path
# This ensures that 'redirector' is importable as a top-level module during tests
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def temp_state_dir(tmp_path):
    from redirector.config import config

    old_state_dir = config.REDIRECT.STATE_DIR
    old_directory_file = config.REDIRECT.BROADCAST.DIRECTORY_FILE
    old_resume_file = config.REDIRECT.RESUME.FILE
    old_log_dir = config.LOGGING.DIR

    config.defrost()
    config.REDIRECT.STATE_DIR = str(tmp_path / "state")
    config.REDIRECT.BROADCAST.DIRECTORY_FILE = str(tmp_path / "state" / "channels.json")
    config.REDIRECT.RESUME.FILE = str(tmp_path / "state" / "resume.json")
    config.LOGGING.DIR = str(tmp_path / "logs")
    config.freeze()

    try:
        yield tmp_path
    finally:
        config.defrost()
        config.REDIRECT.STATE_DIR = old_state_dir
        config.REDIRECT.BROADCAST.DIRECTORY_FILE = old_directory_file
        config.REDIRECT.RESUME.FILE = old_resume_file
        config.LOGGING.DIR = old_log_dir
        config.freeze()


@pytest.fixture
def no_default_browser():
    from redirector.config import config

    old_open_browser = config.REDIRECT.LOOPBACK.OPEN_BROWSER
    config.defrost()
    config.REDIRECT.LOOPBACK.OPEN_BROWSER = False
    config.freeze()
    try:
        yield
    finally:
        config.defrost()
        config.REDIRECT.LOOPBACK.OPEN_BROWSER = old_open_browser
        config.freeze()
