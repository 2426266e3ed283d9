# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""State directory setup and gateway config seeding.

The state directory holds the gateway's credentials and sessions as well
as the binary manifest, so it is kept owner-only.  The directory and the
gateway config belong to the runtime user; the manifest, written by
root, stays root's.
"""

import json
import logging
import os
import pwd
from collections.abc import Iterable
from pathlib import Path


logger = logging.getLogger(__name__)

STATE_DIR_MODE = 0o700
PRIVATE_FILE_MODE = 0o600

#: Minimal gateway configuration written on first boot.  Enables the
#: control UI with defaults and the WhatsApp channel plugin.
SEED_GATEWAY_CONFIG: dict = {
    "gateway": {
        "controlUi": {},
    },
    "plugins": {
        "entries": {
            "whatsapp": {"enabled": True},
        },
    },
}


def ensure_state_dir(path: Path) -> None:
    """Create the state directory owner-only, or tighten an existing one.

    Raises:
        OSError: If the directory cannot be created.
    """
    path.mkdir(mode=STATE_DIR_MODE, parents=True, exist_ok=True)
    path.chmod(STATE_DIR_MODE)


def seed_gateway_config(path: Path) -> bool:
    """Write the minimal gateway config if none exists.

    An existing file is never modified, even if it is not valid JSON;
    the gateway owns its config after the first boot.

    Returns:
        True if a new file was written.

    Raises:
        OSError: If the file cannot be written.
    """
    try:
        fd = os.open(
            path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_FILE_MODE
        )
    except FileExistsError:
        return False
    with open(fd, "w", encoding="utf-8") as f:
        json.dump(SEED_GATEWAY_CONFIG, f, indent=2)
        f.write("\n")
    logger.info("Seeded gateway config at %s", path)
    return True


def protect_file(path: Path) -> bool:
    """Restrict an existing file to owner read/write.

    Returns:
        True if the file exists and was re-permissioned.
    """
    if not path.is_file():
        return False
    path.chmod(PRIVATE_FILE_MODE)
    return True


def lookup_owner(user: str) -> tuple[int, int] | None:
    """Return the ``(uid, gid)`` of *user*, or None if it does not exist."""
    try:
        entry = pwd.getpwnam(user)
    except KeyError:
        return None
    return entry.pw_uid, entry.pw_gid


def hand_over(paths: Iterable[Path], owner: tuple[int, int]) -> None:
    """Give existing *paths* to *owner* (not recursive).

    Raises:
        OSError: If ownership cannot be changed.
    """
    uid, gid = owner
    for path in paths:
        if path.exists():
            os.chown(path, uid, gid)
            logger.debug("Handed %s to uid=%d gid=%d", path, uid, gid)
