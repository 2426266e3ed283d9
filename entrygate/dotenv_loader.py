# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""One-shot .env loading for the entrypoint.

Reads environment variables from (in order):

1. ``.env`` next to the entrygate config file
2. ``.env`` in the current working directory

Variables already present in the environment (e.g. set by the container
platform) are never overwritten, and the first file wins over the second.
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once(config_dir: Path | None = None) -> None:
    """Load .env files once per process.

    Args:
        config_dir: Directory holding the config file.  Defaults to the
            XDG config directory.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    from entrygate.config import get_dotenv_path

    candidates = [
        config_dir / ".env" if config_dir is not None else get_dotenv_path(),
        Path.cwd() / ".env",
    ]
    for env_file in candidates:
        if env_file.is_file():
            load_dotenv(env_file, override=False)
            logger.debug("Loaded .env from %s", env_file)

    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the loaded flag. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False
