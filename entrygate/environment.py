# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Environment for the wrapped gateway process."""

import logging
import os
from collections.abc import Mapping

from entrygate.config import ConfigError, EntrypointConfig


logger = logging.getLogger(__name__)


def resolve_port(config: EntrypointConfig, environ: Mapping[str, str]) -> int:
    """Return the gateway port published by the platform.

    Raises:
        ConfigError: If the port variable is set but not a valid port.
    """
    raw = environ.get(config.port_env, "").strip()
    if not raw:
        return config.default_port
    try:
        port = int(raw)
    except ValueError:
        raise ConfigError(
            f"{config.port_env} must be a port number, got {raw!r}"
        ) from None
    if not 1 <= port <= 65535:
        raise ConfigError(f"{config.port_env} out of range: {port}")
    return port


def _prepend_path(current: str, directories: list[str]) -> str:
    """Put *directories* in front of a ``PATH`` value, without repeats."""
    existing = [p for p in current.split(os.pathsep) if p]
    front = list(dict.fromkeys(directories))
    rest = [p for p in existing if p not in front]
    return os.pathsep.join(front + rest)


def build_environment(
    config: EntrypointConfig,
    environ: Mapping[str, str],
    volume_present: bool,
) -> dict[str, str]:
    """Build the environment the wrapped process is started with.

    The gateway reads its state and workspace locations, trusted proxy
    range and listen port from the environment.  When the persistent
    volume is mounted, Go and npm installs are kept on it as well.

    Args:
        config: Entrypoint configuration.
        environ: Environment inherited from the container runtime.  It
            is not modified.
        volume_present: Whether the persistent volume is mounted.

    Returns:
        A new environment mapping.

    Raises:
        ConfigError: If the published port is invalid.
    """
    env = dict(environ)
    env["OPENCLAW_STATE_DIR"] = str(config.state_dir)
    env["OPENCLAW_WORKSPACE_DIR"] = str(config.workspace_dir)
    env["OPENCLAW_GATEWAY_TRUSTED_PROXIES"] = config.trusted_proxies
    env["OPENCLAW_GATEWAY_PORT"] = str(resolve_port(config, environ))

    if volume_present:
        env["GOPATH"] = str(config.gopath)
        env["GOBIN"] = str(config.gopath / "bin")
        env["PATH"] = _prepend_path(
            env.get("PATH", os.defpath),
            [str(p) for p in config.path_prepend],
        )

    env.update(config.extra_env)
    logger.debug(
        "Gateway environment: state=%s workspace=%s port=%s",
        env["OPENCLAW_STATE_DIR"],
        env["OPENCLAW_WORKSPACE_DIR"],
        env["OPENCLAW_GATEWAY_PORT"],
    )
    return env
