# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Trust-on-first-use integrity checks for executables on the volume.

The first boot that finds no manifest records a digest for every file
in the watched directories.  Every later boot re-hashes the files:

* unknown files are recorded as newly installed,
* unchanged files are left alone,
* changed files lose their execute bits and are flagged ``TAMPERED``.

Verification never blocks the boot.  Per-file I/O errors are logged and
the file is skipped; only a failure to persist the manifest itself
propagates to the caller.

``TAMPERED`` flags are sticky: a file whose digest later matches the
recorded one again keeps its flag (and stays non-executable) until an
operator calls ``IntegrityVerifier.retrust()``.
"""

from __future__ import annotations

import hashlib
import logging
import os
import stat
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from entrygate.integrity.manifest import (
    EntryFlag,
    Manifest,
    ManifestEntry,
    ManifestStore,
    is_recordable_path,
)


logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_EXEC_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


class IntegrityError(Exception):
    """Base exception for manifest verification errors."""


class ManifestMissingError(IntegrityError):
    """Raised when verifying before a manifest was bootstrapped."""


class UnknownPathError(IntegrityError):
    """Raised when re-trusting a path the manifest does not track."""


class Outcome(Enum):
    """Result of checking a single file."""

    CREATED = "created"
    MATCHED = "matched"
    TAMPERED = "tampered"
    SKIPPED_UNREADABLE = "skipped_unreadable"
    SKIPPED_UNSAFE_PATH = "skipped_unsafe_path"


@dataclass(frozen=True)
class FileCheck:
    """Outcome of checking one executable.

    Attributes:
        path: Absolute path of the file.
        outcome: What happened.
        digest: Current digest, or None when the file was skipped.
        detail: Error text for skipped files or failed revocations.
        permissions_revoked: True when execute bits were removed.
    """

    path: str
    outcome: Outcome
    digest: str | None = None
    detail: str | None = None
    permissions_revoked: bool = False


@dataclass
class VerificationReport:
    """Aggregated results of a bootstrap or verification run."""

    bootstrapped: bool = False
    checks: list[FileCheck] = field(default_factory=list)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for c in self.checks if c.outcome is outcome)

    @property
    def tampered(self) -> list[str]:
        return [c.path for c in self.checks if c.outcome is Outcome.TAMPERED]

    @property
    def ok(self) -> bool:
        return not self.tampered

    def extend(self, other: VerificationReport) -> None:
        self.bootstrapped = self.bootstrapped or other.bootstrapped
        self.checks.extend(other.checks)

    def summary(self) -> str:
        """One-line summary for logs and CLI output."""
        skipped = self.count(Outcome.SKIPPED_UNREADABLE) + self.count(
            Outcome.SKIPPED_UNSAFE_PATH
        )
        if self.bootstrapped:
            return (
                f"manifest bootstrapped with {self.count(Outcome.CREATED)} "
                f"binaries ({skipped} skipped)"
            )
        return (
            f"{len(self.checks)} binaries checked: "
            f"{self.count(Outcome.MATCHED)} unchanged, "
            f"{self.count(Outcome.CREATED)} new, "
            f"{self.count(Outcome.TAMPERED)} tampered, "
            f"{skipped} skipped"
        )


def hash_file(path: Path, chunk_size: int = _CHUNK_SIZE) -> str:
    """Compute the SHA-256 hex digest of a file's contents.

    Raises:
        OSError: If the file cannot be read.
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def scan_directory(directory: Path) -> list[Path]:
    """List the regular files directly inside *directory*.

    Symlinks pointing at regular files are included (package managers
    install their ``.bin`` entries as symlinks).  Hidden entries are
    skipped.  Paths are absolute but symlinks are not resolved, so the
    manifest records the path callers actually execute.

    Returns:
        Sorted list of files; empty when the directory is missing or
        unreadable.
    """
    directory = directory.absolute()
    try:
        names = sorted(os.listdir(directory))
    except FileNotFoundError:
        logger.debug("Watched directory %s does not exist", directory)
        return []
    except OSError as e:
        logger.warning("Cannot list watched directory %s: %s", directory, e)
        return []
    return [
        directory / name
        for name in names
        if not name.startswith(".") and (directory / name).is_file()
    ]


def revoke_execute(path: Path) -> None:
    """Remove every execute bit from *path* (``chmod a-x``).

    Raises:
        OSError: If the mode cannot be read or changed.
    """
    mode = stat.S_IMODE(path.stat().st_mode)
    path.chmod(mode & ~_EXEC_BITS)


def restore_execute(path: Path) -> None:
    """Grant execute to every class that may read *path*."""
    mode = stat.S_IMODE(path.stat().st_mode)
    readable = mode & (stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
    path.chmod(mode | (readable >> 2))


class IntegrityVerifier:
    """Maintains the binary manifest across container restarts.

    Args:
        store: Where the manifest is persisted.
    """

    def __init__(self, store: ManifestStore) -> None:
        self._store = store

    @property
    def store(self) -> ManifestStore:
        return self._store

    def run(self, directories: Iterable[Path]) -> VerificationReport:
        """Bootstrap on first use, otherwise verify each directory.

        Directories are processed in the order given so log output and
        manifest order are reproducible.
        """
        directories = list(directories)
        if not self._store.exists():
            logger.info(
                "No binary manifest at %s; recording current binaries",
                self._store.location,
            )
            return self.bootstrap(directories)

        report = VerificationReport()
        for directory in directories:
            report.extend(self.verify(directory))
        return report

    def bootstrap(self, directories: Iterable[Path]) -> VerificationReport:
        """Record every file currently present as trusted.

        The manifest is rebuilt from scratch, so repeating a bootstrap on
        unchanged directories yields the same manifest.  File
        permissions are never modified.
        """
        report = VerificationReport(bootstrapped=True)
        manifest = Manifest()
        for directory in directories:
            for path in scan_directory(directory):
                check = self._hash_for_record(path)
                if check.outcome is Outcome.CREATED:
                    assert check.digest is not None
                    manifest = manifest.with_entry(
                        ManifestEntry(check.path, check.digest)
                    )
                report.checks.append(check)

        self._store.save(manifest)
        logger.info("Binary manifest: %s", report.summary())
        return report

    def verify(self, directory: Path) -> VerificationReport:
        """Check every file in *directory* against the manifest.

        Entries for paths outside *directory* are preserved untouched.

        Raises:
            ManifestMissingError: If no manifest has been bootstrapped.
            OSError: If the updated manifest cannot be saved.
        """
        if not self._store.exists():
            raise ManifestMissingError(
                f"No manifest at {self._store.location}; bootstrap first"
            )

        manifest = self._store.load()
        report = VerificationReport()
        for path in scan_directory(directory):
            check, manifest = self._check_file(path, manifest)
            report.checks.append(check)

        self._store.save(manifest)
        if report.checks:
            logger.info("%s: %s", directory, report.summary())
        return report

    def retrust(self, path: Path) -> ManifestEntry:
        """Accept the current contents of a tracked file.

        Records the current digest without a flag and restores execute
        permission.  This is the only way a ``TAMPERED`` flag is cleared.

        Raises:
            UnknownPathError: If *path* is not in the manifest.
            OSError: If the file cannot be hashed or re-permissioned, or
                the manifest cannot be saved.
        """
        key = str(path.absolute())
        manifest = self._store.load()
        previous = manifest.get(key)
        if previous is None:
            raise UnknownPathError(f"Not tracked by the manifest: {key}")

        entry = ManifestEntry(key, hash_file(path))
        restore_execute(path)
        self._store.save(manifest.with_entry(entry))
        logger.warning(
            "Re-trusted %s (was %s)",
            key,
            "TAMPERED" if previous.tampered else "trusted",
        )
        return entry

    def _hash_for_record(self, path: Path) -> FileCheck:
        """Hash a file for a new, unflagged entry."""
        key = str(path)
        if not is_recordable_path(key):
            logger.warning(
                "Skipping %r: path cannot be recorded in the manifest", key
            )
            return FileCheck(key, Outcome.SKIPPED_UNSAFE_PATH)
        try:
            digest = hash_file(path)
        except OSError as e:
            logger.error("Cannot hash %s, skipping: %s", key, e)
            return FileCheck(key, Outcome.SKIPPED_UNREADABLE, detail=str(e))
        return FileCheck(key, Outcome.CREATED, digest=digest)

    def _check_file(
        self, path: Path, manifest: Manifest
    ) -> tuple[FileCheck, Manifest]:
        """Compare one file against the manifest and apply the outcome."""
        check = self._hash_for_record(path)
        if check.outcome is not Outcome.CREATED:
            return check, manifest
        key, digest = check.path, check.digest
        assert digest is not None

        expected = manifest.get(key)
        if expected is None:
            logger.info(
                "New binary detected, adding to manifest: %s", key
            )
            return check, manifest.with_entry(ManifestEntry(key, digest))

        if expected.digest == digest:
            return FileCheck(key, Outcome.MATCHED, digest=digest), manifest

        logger.warning(
            "Binary hash mismatch for %s, removing execute "
            "permission",
            key,
        )
        revoked = True
        detail = None
        try:
            revoke_execute(path)
        except OSError as e:
            revoked = False
            detail = str(e)
            logger.error(
                "Cannot remove execute permission from %s: %s", key, e
            )

        flagged = ManifestEntry(key, digest, EntryFlag.TAMPERED)
        return (
            FileCheck(
                key,
                Outcome.TAMPERED,
                digest=digest,
                detail=detail,
                permissions_revoked=revoked,
            ),
            manifest.with_entry(flagged),
        )
