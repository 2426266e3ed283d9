# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""entrygate CLI: multi-command entry point.

Subcommands:

* ``run``       (container entrypoint) prepare the container and exec
* ``verify``    check binaries against the manifest without exec'ing
* ``manifest``  list manifest entries
* ``retrust``   accept the current contents of a flagged binary
* ``init``      create a stub config file
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from entrygate.config import ConfigError, EntrypointConfig, get_config_path
from entrygate.integrity.manifest import FileManifestStore
from entrygate.integrity.verifier import (
    IntegrityError,
    IntegrityVerifier,
    Outcome,
)
from entrygate.logging import configure_logging


logger = logging.getLogger(__name__)

_USAGE = """\
usage: entrygate <command> [args]

commands:
  run        Prepare the container and exec the gateway command
  verify     Check binaries against the manifest
  manifest   List manifest entries
  retrust    Accept the current contents of a flagged binary
  init       Create a stub config file

Run 'entrygate <command> --help' for command-specific help.\
"""


def _use_color() -> bool:
    """Return True if stdout is a TTY and color is not disabled.

    ``NO_COLOR`` and ``TERM=dumb`` both disable color.
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return sys.stdout.isatty()


class _Style:
    """ANSI styling helpers that degrade to plain text."""

    def __init__(self, color: bool) -> None:
        self._color = color

    def _wrap(self, code: str, text: str) -> str:
        if not self._color:
            return text
        return f"\033[{code}m{text}\033[0m"

    def bold(self, text: str) -> str:
        return self._wrap("1", text)

    def green(self, text: str) -> str:
        return self._wrap("32", text)

    def red(self, text: str) -> str:
        return self._wrap("31", text)

    def yellow(self, text: str) -> str:
        return self._wrap("33", text)


def _config_parser(prog: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: $ENTRYGATE_CONFIG or XDG config dir)",
    )
    return parser


def _printable(path: str) -> str:
    """Escape undecodable file name bytes for terminal output."""
    return path.encode("utf-8", "backslashreplace").decode("utf-8")


def _load_config(path: Path | None) -> EntrypointConfig | None:
    try:
        return EntrypointConfig.from_yaml(path)
    except ConfigError as e:
        print(f"entrygate: invalid configuration: {e}", file=sys.stderr)
        return None


# ── run subcommand ──────────────────────────────────────────────────


def cmd_run(argv: list[str]) -> int:
    """Prepare the container and exec the gateway.

    Args:
        argv: ``[--debug] [--config PATH] [--] COMMAND [ARGS...]``.
    """
    from entrygate.entrypoint import main as entrypoint_main

    return entrypoint_main(argv)


# ── verify subcommand ───────────────────────────────────────────────


def cmd_verify(argv: list[str]) -> int:
    """Run binary verification without exec'ing anything.

    Bootstraps the manifest if it does not exist yet, exactly as a
    container boot would.

    Returns:
        0 if no binary is tampered, 1 otherwise or on error.
    """
    parser = _config_parser(
        "entrygate verify", "Check binaries against the manifest."
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    args = parser.parse_args(argv)
    configure_logging(level=logging.DEBUG if args.debug else logging.WARNING)

    config = _load_config(args.config)
    if config is None:
        return 1

    s = _Style(_use_color())
    verifier = IntegrityVerifier(FileManifestStore(config.manifest_path))
    try:
        report = verifier.run(config.watched_dirs)
    except (OSError, UnicodeError, IntegrityError) as e:
        print(f"entrygate: verification failed: {e}", file=sys.stderr)
        return 1

    for check in report.checks:
        if check.outcome is Outcome.TAMPERED:
            print(f"  {s.red('✗')} {check.path} {s.red('tampered')}")
        elif check.outcome is Outcome.CREATED:
            print(f"  {s.green('+')} {check.path}")
        elif check.outcome is Outcome.MATCHED:
            print(f"  {s.green('✓')} {check.path}")
        else:
            path = _printable(check.path)
            print(f"  {s.yellow('?')} {path} ({check.outcome.value})")
    print(report.summary())
    return 0 if report.ok else 1


# ── manifest subcommand ─────────────────────────────────────────────


def cmd_manifest(argv: list[str]) -> int:
    """Print the manifest, highlighting flagged entries."""
    parser = _config_parser("entrygate manifest", "List manifest entries.")
    args = parser.parse_args(argv)

    config = _load_config(args.config)
    if config is None:
        return 1

    store = FileManifestStore(config.manifest_path)
    if not store.exists():
        print(f"No manifest at {store.path}")
        return 0
    try:
        manifest = store.load()
    except OSError as e:
        print(f"entrygate: cannot read manifest: {e}", file=sys.stderr)
        return 1

    s = _Style(_use_color())
    print(s.bold(f"{store.path} ({len(manifest)} entries)"))
    for entry in manifest:
        label = f"  {s.red('TAMPERED')}" if entry.tampered else ""
        print(f"{entry.digest[:12]}  {entry.path}{label}")
    return 0


# ── retrust subcommand ──────────────────────────────────────────────


def cmd_retrust(argv: list[str]) -> int:
    """Record a binary's current digest as trusted again.

    Clears a ``TAMPERED`` flag and restores execute permission.  Use
    only after confirming the change was legitimate (e.g. an upgrade).
    """
    parser = _config_parser(
        "entrygate retrust",
        "Accept the current contents of a tracked binary.",
    )
    parser.add_argument("path", type=Path, help="Binary to re-trust")
    args = parser.parse_args(argv)
    configure_logging(level=logging.INFO)

    config = _load_config(args.config)
    if config is None:
        return 1

    verifier = IntegrityVerifier(FileManifestStore(config.manifest_path))
    try:
        entry = verifier.retrust(args.path)
    except (OSError, IntegrityError) as e:
        print(f"entrygate: {e}", file=sys.stderr)
        return 1

    print(f"Trusted {entry.path} ({entry.digest[:12]})")
    return 0


# ── init subcommand ─────────────────────────────────────────────────


def cmd_init(argv: list[str]) -> int:
    """Create ``~/.config/entrygate/entrygate.yaml`` if missing.

    Returns:
        Exit code (always 0).
    """
    parser = argparse.ArgumentParser(
        prog="entrygate init",
        description="Create a stub config file if none exists.",
    )
    parser.parse_args(argv)

    config_path = get_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "run": "cmd_run",
    "verify": "cmd_verify",
    "manifest": "cmd_manifest",
    "retrust": "cmd_retrust",
    "init": "cmd_init",
}


def cli() -> None:
    """Entry point for the ``entrygate`` console script."""
    argv = sys.argv[1:]

    if not argv or argv[0] in ("-h", "--help"):
        print(_USAGE)
        sys.exit(0)

    if argv[0] not in _DISPATCH:
        print(f"entrygate: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    # Look up handler by name so tests can mock individual commands.
    import entrygate.cli as _self

    handler = getattr(_self, _DISPATCH[argv[0]])
    sys.exit(handler(argv[1:]))


#: Stub configuration template written by ``entrygate init``.
_STUB_CONFIG = """\
# entrygate configuration
#
# Every key is optional; the values shown are the defaults.
# Values may be read from the environment with !env, e.g.
#   default_port: !env GATEWAY_PORT

# required_secret: ANTHROPIC_API_KEY
# runtime_user: node
# privilege_command: gosu
# umask: "077"

# volume:
#   root: /data
#   state_dir: /data/.openclaw
#   workspace_dir: /data/workspace

# gateway:
#   port_env: PORT
#   default_port: 8080
#   trusted_proxies: 100.64.0.0/10
#   config_file: openclaw.json

# integrity:
#   enabled: true
#   manifest_name: .bin-manifest
#   watched_dirs:
#     - /data/go/bin
#     - /data/node_modules/.bin

# toolchain:
#   gopath: /data/go
#   path_prepend:
#     - /data/go/bin
#     - /data/node_modules/.bin

# environment:
#   NODE_ENV: production
"""
