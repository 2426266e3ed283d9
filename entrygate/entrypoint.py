# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container boot sequence.

Runs once per container start, as root, before handing the process over
to the gateway:

1. abort unless the required API secret is set,
2. build the gateway environment,
3. create the state directory, seed a minimal gateway config and hand
   both to the runtime user,
4. verify binaries on the persistent volume against the manifest,
5. protect the gateway config, set the umask and ``exec`` the command
   as the unprivileged runtime user.

Binary verification is hardening, not a gate: its failures are logged
and the boot continues.  Only a missing secret, invalid configuration or
a filesystem error setting up the state directory stop the container.
"""

import argparse
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

from entrygate.config import ConfigError, EntrypointConfig
from entrygate.environment import build_environment
from entrygate.integrity.manifest import FileManifestStore
from entrygate.integrity.verifier import (
    IntegrityError,
    IntegrityVerifier,
    VerificationReport,
)
from entrygate.logging import SecretFilter, configure_logging
from entrygate.seed import (
    ensure_state_dir,
    hand_over,
    lookup_owner,
    protect_file,
    seed_gateway_config,
)


logger = logging.getLogger(__name__)

#: Exit code when the command to exec cannot be started.
EXIT_EXEC_FAILED = 127


class EntrypointError(Exception):
    """Base exception for conditions that abort the container start."""


class MissingSecretError(EntrypointError):
    """Raised when the required secret is absent from the environment."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} is not set.")
        self.name = name


@dataclass(frozen=True)
class BootResult:
    """Everything needed to hand the process over to the gateway.

    Attributes:
        argv: Command line to exec, including the privilege-drop helper.
        env: Environment for the new process image.
        umask: Umask to apply before exec.
        report: Binary verification results, or None when verification
            did not run or failed as a whole.
    """

    argv: list[str]
    env: dict[str, str]
    umask: int
    report: VerificationReport | None


def check_secret(config: EntrypointConfig, environ: Mapping[str, str]) -> str:
    """Return the required secret's value.

    Raises:
        MissingSecretError: If it is unset or empty.
    """
    value = environ.get(config.required_secret, "")
    if not value:
        raise MissingSecretError(config.required_secret)
    return value


def build_argv(config: EntrypointConfig, command: Sequence[str]) -> list[str]:
    """Prefix *command* with the privilege-drop helper, if configured."""
    if not config.runtime_user:
        return list(command)
    return [config.privilege_command, config.runtime_user, *command]


def runtime_owner(config: EntrypointConfig) -> tuple[int, int] | None:
    """Return the ``(uid, gid)`` that should own the gateway's state.

    None when there is nothing to hand over: no privilege drop is
    configured, the entrypoint is not running as root, or the runtime
    user does not exist (the privilege-drop helper reports that).
    """
    if not config.runtime_user or os.geteuid() != 0:
        return None
    owner = lookup_owner(config.runtime_user)
    if owner is None:
        logger.warning(
            "Runtime user %r not found; state directory stays root-owned",
            config.runtime_user,
        )
    return owner


def verify_binaries(config: EntrypointConfig) -> VerificationReport | None:
    """Run the binary manifest check over the watched directories.

    Never raises: a failure to read or write the manifest is logged and
    the boot continues without verification.
    """
    verifier = IntegrityVerifier(FileManifestStore(config.manifest_path))
    try:
        report = verifier.run(config.watched_dirs)
    except (OSError, UnicodeError, IntegrityError) as e:
        logger.error("Binary verification failed, continuing boot: %s", e)
        return None

    for path in report.tampered:
        logger.warning("Binary disabled pending review: %s", path)
    return report


def boot(
    command: Sequence[str],
    config: EntrypointConfig,
    environ: Mapping[str, str],
) -> BootResult:
    """Prepare the container for the gateway process.

    Args:
        command: Command to run (without the privilege-drop helper).
        config: Entrypoint configuration.
        environ: Environment inherited from the container runtime.

    Returns:
        What to exec.

    Raises:
        MissingSecretError: If the required secret is absent.
        ConfigError: If the environment holds invalid values.
        OSError: If the state directory or seed config cannot be set up.
    """
    secret = check_secret(config, environ)
    SecretFilter.register_secret(secret)

    volume_present = config.volume_root.is_dir()
    if not volume_present:
        logger.info(
            "No persistent volume at %s; state will not survive redeploys",
            config.volume_root,
        )

    env = build_environment(config, environ, volume_present)
    ensure_state_dir(config.state_dir)
    seed_gateway_config(config.gateway_config_path)
    owner = runtime_owner(config)
    if owner is not None:
        hand_over([config.state_dir, config.gateway_config_path], owner)

    report: VerificationReport | None = None
    if volume_present:
        if config.integrity_enabled:
            report = verify_binaries(config)
        protect_file(config.gateway_config_path)

    return BootResult(
        argv=build_argv(config, command),
        env=env,
        umask=config.umask,
        report=report,
    )


def exec_command(result: BootResult) -> NoReturn:
    """Replace the current process with the gateway.

    Raises:
        OSError: If the command cannot be executed.
    """
    logger.info("Starting: %s", " ".join(result.argv))
    sys.stdout.flush()
    sys.stderr.flush()
    os.umask(result.umask)
    os.execvpe(result.argv[0], result.argv, result.env)


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``entrygate run``.

    Returns:
        Exit code.  Only returns on failure; success replaces the
        process.
    """
    parser = argparse.ArgumentParser(
        prog="entrygate run",
        description="Prepare the container and exec the gateway.",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: $ENTRYGATE_CONFIG or XDG config dir)",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run, e.g. -- node dist/index.js gateway",
    )
    args = parser.parse_args(argv)

    configure_logging(level=logging.DEBUG if args.debug else logging.INFO)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.print_usage(sys.stderr)
        logger.error("No command given")
        return 2

    try:
        config = EntrypointConfig.from_yaml(args.config)
        result = boot(command, config, os.environ)
    except MissingSecretError as e:
        logger.critical("FATAL: %s", e)
        logger.critical(
            "Add it to the container platform's variables, then redeploy."
        )
        return 1
    except ConfigError as e:
        logger.critical("FATAL: invalid configuration: %s", e)
        return 1
    except OSError as e:
        logger.critical("FATAL: cannot prepare state directory: %s", e)
        return 1

    try:
        exec_command(result)
    except OSError as e:
        logger.critical("FATAL: cannot execute %s: %s", result.argv[0], e)
        return EXIT_EXEC_FAILED
