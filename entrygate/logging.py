# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging setup for the container entrypoint.

Everything is written to stderr so the container runtime captures it
alongside the wrapped process output.  The required API secret is
registered with ``SecretFilter`` before anything else is logged, so a
stray ``%s`` of an environment mapping can never leak it.

Usage:
    from entrygate.logging import configure_logging
    configure_logging(level=logging.INFO)
"""

import logging
import re
import sys
from typing import ClassVar


#: Log line format.  Mirrors the ``entrypoint:`` prefix of the old shell
#: script so existing log searches keep matching.
DEFAULT_FORMAT = "entrypoint: %(levelname)s %(name)s: %(message)s"


class SecretFilter(logging.Filter):
    """Redact registered secret values from log records.

    Registration is class-wide: every handler carrying a
    ``SecretFilter`` redacts every registered secret.
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Replace secrets in the message and its string arguments.

        Returns:
            Always True; records are rewritten, never dropped.
        """
        if self._pattern is None:
            return True
        record.msg = self._pattern.sub("[REDACTED]", str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                self._pattern.sub("[REDACTED]", arg)
                if isinstance(arg, str)
                else arg
                for arg in record.args
            )
        return True

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Add a value to redact.  Empty strings are ignored."""
        if secret:
            cls._secrets.add(secret)
            # Longest first so a secret containing another is fully masked
            escaped = sorted(
                (re.escape(s) for s in cls._secrets), key=len, reverse=True
            )
            cls._pattern = re.compile("|".join(escaped))

    @classmethod
    def clear_secrets(cls) -> None:
        """Forget all registered secrets. Primarily for testing."""
        cls._secrets.clear()
        cls._pattern = None


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
) -> None:
    """Install a single stderr handler on the root logger.

    Calling this again replaces the previous handler rather than
    stacking a second one.

    Args:
        level: Root logger level.
        format_string: Custom format. Defaults to ``DEFAULT_FORMAT``.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)
    root_logger.addHandler(handler)
