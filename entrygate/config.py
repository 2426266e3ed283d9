# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Entrypoint configuration.

Configuration is read from a YAML file located at (first match):

1. the path given on the command line,
2. ``$ENTRYGATE_CONFIG``,
3. ``$XDG_CONFIG_HOME/entrygate/entrygate.yaml``
   (typically ``~/.config/entrygate/entrygate.yaml``).

A missing default file is not an error: the built-in defaults describe
the standard deployment with a persistent volume mounted at ``/data``.

``!env`` tags resolve values from environment variables, after ``.env``
files have been loaded::

    gateway:
      default_port: !env GATEWAY_PORT
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_path

from entrygate.dotenv_loader import load_dotenv_once


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "entrygate"

#: Environment variable overriding the config file location.
CONFIG_ENV_VAR = "ENTRYGATE_CONFIG"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default config file path (XDG config directory)."""
    return user_config_path(_APP_NAME) / "entrygate.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _resolve_mode(value: object, default: int, name: str) -> int:
    """Resolve an octal permission mask (``"077"``, ``"0o077"``, ``63``).

    Unquoted YAML ``077`` is already parsed as an octal integer.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    resolved = _raw_resolve(value)
    if resolved is None:
        return default
    try:
        return int(resolved.strip(), 8)
    except ValueError:
        raise ConfigError(
            f"Invalid value for '{name}': {resolved!r} is not octal"
        ) from None


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its value, or stringify literals.

    Returns None if the value is None or the env var is unset.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


def _resolve(value: object, coerce: type, default: Any, name: str) -> Any:
    """Resolve a YAML value: ``!env`` lookup, default, type coercion.

    Args:
        value: Raw value from YAML.
        coerce: Target type (``str``, ``int``, ``bool`` or ``Path``).
        default: Returned when the value is absent.
        name: Dotted config key, for error messages.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)
    if resolved is None:
        return default

    try:
        if coerce is bool:
            return _coerce_bool(resolved)
        if coerce is Path:
            return Path(resolved).expanduser()
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(f"Invalid value for '{name}': {e}") from None


def _resolve_path_list(
    value: object, default: tuple[Path, ...], name: str
) -> tuple[Path, ...]:
    """Resolve a list of paths, handling ``!env`` for each element.

    Elements that resolve to empty strings or unset variables are
    dropped.
    """
    if value is None:
        return default
    if not isinstance(value, list):
        raise ConfigError(
            f"Config '{name}' must be a list, got {type(value).__name__}"
        )
    result: list[Path] = []
    for item in value:
        resolved = _raw_resolve(item)
        if resolved:
            result.append(Path(resolved).expanduser())
    return tuple(result)


def _section(raw: dict, key: str) -> dict:
    section = raw.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a YAML mapping")
    return section


# ---------------------------------------------------------------------------
# Entrypoint configuration
# ---------------------------------------------------------------------------

_DATA_ROOT = Path("/data")


@dataclass(frozen=True)
class EntrypointConfig:
    """Settings for one container boot.

    Attributes:
        required_secret: Environment variable that must be non-empty or
            the boot aborts.
        runtime_user: User the wrapped process runs as.  Empty means no
            privilege drop.
        privilege_command: Helper used to drop privileges (``gosu``).
        umask: Process umask applied before exec.
        volume_root: Mount point of the persistent volume.
        state_dir: Gateway state directory (holds manifest and config).
        workspace_dir: Agent workspace directory.
        port_env: Variable the platform uses to publish the port.
        default_port: Port used when ``port_env`` is unset.
        trusted_proxies: CIDR of the platform's reverse proxies.
        gateway_config_name: Gateway config file inside ``state_dir``.
        integrity_enabled: Whether to run binary verification.
        manifest_name: Manifest file inside ``state_dir``.
        watched_dirs: Executable directories, verified in this order.
        gopath: Go workspace on the volume.
        path_prepend: Directories put in front of ``PATH``.
        extra_env: Additional variables for the wrapped process.
    """

    required_secret: str = "ANTHROPIC_API_KEY"
    runtime_user: str = "node"
    privilege_command: str = "gosu"
    umask: int = 0o077
    volume_root: Path = _DATA_ROOT
    state_dir: Path = _DATA_ROOT / ".openclaw"
    workspace_dir: Path = _DATA_ROOT / "workspace"
    port_env: str = "PORT"
    default_port: int = 8080
    trusted_proxies: str = "100.64.0.0/10"
    gateway_config_name: str = "openclaw.json"
    integrity_enabled: bool = True
    manifest_name: str = ".bin-manifest"
    watched_dirs: tuple[Path, ...] = (
        _DATA_ROOT / "go" / "bin",
        _DATA_ROOT / "node_modules" / ".bin",
    )
    gopath: Path = _DATA_ROOT / "go"
    path_prepend: tuple[Path, ...] = (
        _DATA_ROOT / "go" / "bin",
        _DATA_ROOT / "node_modules" / ".bin",
    )
    extra_env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.required_secret:
            raise ValueError("Required secret variable name must be set")
        if not 1 <= self.default_port <= 65535:
            raise ValueError(f"Invalid default port: {self.default_port}")
        if not 0 <= self.umask <= 0o777:
            raise ValueError(f"Invalid umask: {self.umask:#o}")
        if not self.manifest_name or "/" in self.manifest_name:
            raise ValueError(f"Invalid manifest name: {self.manifest_name!r}")
        for directory in self.watched_dirs:
            if not directory.is_absolute():
                raise ValueError(
                    f"Watched directory must be absolute: {directory}"
                )

    @property
    def manifest_path(self) -> Path:
        return self.state_dir / self.manifest_name

    @property
    def gateway_config_path(self) -> Path:
        return self.state_dir / self.gateway_config_name

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "EntrypointConfig":
        """Load configuration, falling back to defaults.

        Args:
            config_path: Explicit config file.  When given, it must
                exist.  Otherwise ``$ENTRYGATE_CONFIG`` or the XDG
                default is used, and a missing file means defaults.

        Raises:
            ConfigError: If the file is unreadable or invalid.
        """
        explicit = config_path is not None
        if config_path is None:
            env_path = os.environ.get(CONFIG_ENV_VAR)
            if env_path:
                config_path = Path(env_path).expanduser()
                explicit = True
            else:
                config_path = get_config_path()

        load_dotenv_once(config_path.parent)

        if not config_path.exists():
            if explicit:
                raise ConfigError(f"Config file not found: {config_path}")
            logger.debug("No config at %s, using defaults", config_path)
            return cls._from_raw({})

        try:
            with open(config_path) as f:
                raw = yaml.load(f, Loader=_make_loader())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {config_path}: {e}") from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )
        logger.debug("Loaded config from %s", config_path)
        return cls._from_raw(raw)

    @classmethod
    def _from_raw(cls, raw: dict) -> "EntrypointConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        d = cls()
        volume = _section(raw, "volume")
        gateway = _section(raw, "gateway")
        integrity = _section(raw, "integrity")
        toolchain = _section(raw, "toolchain")
        environment = _section(raw, "environment")

        extra_env: dict[str, str] = {}
        for key, value in environment.items():
            resolved = _raw_resolve(value)
            if resolved is not None:
                extra_env[str(key)] = resolved

        try:
            return cls(
                required_secret=_resolve(
                    raw.get("required_secret"),
                    str,
                    d.required_secret,
                    "required_secret",
                ),
                runtime_user=_resolve(
                    raw.get("runtime_user"),
                    str,
                    d.runtime_user,
                    "runtime_user",
                ),
                privilege_command=_resolve(
                    raw.get("privilege_command"),
                    str,
                    d.privilege_command,
                    "privilege_command",
                ),
                umask=_resolve_mode(raw.get("umask"), d.umask, "umask"),
                volume_root=_resolve(
                    volume.get("root"), Path, d.volume_root, "volume.root"
                ),
                state_dir=_resolve(
                    volume.get("state_dir"),
                    Path,
                    d.state_dir,
                    "volume.state_dir",
                ),
                workspace_dir=_resolve(
                    volume.get("workspace_dir"),
                    Path,
                    d.workspace_dir,
                    "volume.workspace_dir",
                ),
                port_env=_resolve(
                    gateway.get("port_env"),
                    str,
                    d.port_env,
                    "gateway.port_env",
                ),
                default_port=_resolve(
                    gateway.get("default_port"),
                    int,
                    d.default_port,
                    "gateway.default_port",
                ),
                trusted_proxies=_resolve(
                    gateway.get("trusted_proxies"),
                    str,
                    d.trusted_proxies,
                    "gateway.trusted_proxies",
                ),
                gateway_config_name=_resolve(
                    gateway.get("config_file"),
                    str,
                    d.gateway_config_name,
                    "gateway.config_file",
                ),
                integrity_enabled=_resolve(
                    integrity.get("enabled"),
                    bool,
                    d.integrity_enabled,
                    "integrity.enabled",
                ),
                manifest_name=_resolve(
                    integrity.get("manifest_name"),
                    str,
                    d.manifest_name,
                    "integrity.manifest_name",
                ),
                watched_dirs=_resolve_path_list(
                    integrity.get("watched_dirs"),
                    d.watched_dirs,
                    "integrity.watched_dirs",
                ),
                gopath=_resolve(
                    toolchain.get("gopath"), Path, d.gopath, "toolchain.gopath"
                ),
                path_prepend=_resolve_path_list(
                    toolchain.get("path_prepend"),
                    d.path_prepend,
                    "toolchain.path_prepend",
                ),
                extra_env=extra_env,
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e
