# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Binary manifest model, line codec and persistence.

The manifest is a plain-text file with one entry per line::

    /data/go/bin/blogwatcher 3f1c...e9
    /data/node_modules/.bin/tsc 0a7b...41 TAMPERED

Fields are separated by a single space, so recorded paths must not
contain whitespace.  ``Manifest`` objects are immutable snapshots; all
changes produce a new snapshot which is committed through a
``ManifestStore``.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol


logger = logging.getLogger(__name__)

#: Access mode of the manifest file at rest (owner read/write only).
MANIFEST_MODE = 0o600

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")
_WHITESPACE_RE = re.compile(r"\s")


class EntryFlag(Enum):
    """Marker attached to a manifest entry."""

    TAMPERED = "TAMPERED"


def is_recordable_path(path: str) -> bool:
    """Return True if *path* can be stored in the line format.

    File names that are not valid UTF-8 reach Python as lone surrogates
    (PEP 383) and cannot be written to the manifest.
    """
    if not os.path.isabs(path) or _WHITESPACE_RE.search(path):
        return False
    try:
        path.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


@dataclass(frozen=True)
class ManifestEntry:
    """A single trusted (or distrusted) executable.

    Attributes:
        path: Absolute path of the executable, as seen in its watched
            directory (symlinks are not resolved).
        digest: Lowercase hex SHA-256 of the file contents.
        flag: ``EntryFlag.TAMPERED`` once a mismatch was detected.
    """

    path: str
    digest: str
    flag: EntryFlag | None = None

    def __post_init__(self) -> None:
        """Validate the entry.

        Raises:
            ValueError: If the path or digest cannot be recorded.
        """
        if not is_recordable_path(self.path):
            raise ValueError(
                f"Manifest path must be absolute UTF-8 without whitespace: "
                f"{self.path!r}"
            )
        if not _DIGEST_RE.match(self.digest):
            raise ValueError(f"Invalid SHA-256 digest: {self.digest!r}")

    @property
    def tampered(self) -> bool:
        return self.flag is EntryFlag.TAMPERED

    def to_line(self) -> str:
        """Render the entry as a manifest line (without newline)."""
        if self.flag is None:
            return f"{self.path} {self.digest}"
        return f"{self.path} {self.digest} {self.flag.value}"


class Manifest:
    """Immutable, ordered collection of entries keyed by path."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[ManifestEntry] = ()) -> None:
        data: dict[str, ManifestEntry] = {}
        for entry in entries:
            # Later duplicates replace earlier ones but keep the slot
            data[entry.path] = entry
        self._entries = data

    def get(self, path: str) -> ManifestEntry | None:
        return self._entries.get(path)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self._entries.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return list(self) == list(other)

    def __repr__(self) -> str:
        return f"Manifest({len(self)} entries)"

    def with_entry(self, entry: ManifestEntry) -> Manifest:
        """Return a copy with *entry* added or replacing its path."""
        updated = Manifest(self)
        updated._entries[entry.path] = entry
        return updated

    def without(self, path: str) -> Manifest:
        """Return a copy without the entry for *path* (if any)."""
        return Manifest(e for e in self if e.path != path)

    def entries_under(self, directory: str | Path) -> list[ManifestEntry]:
        """Entries whose path lives directly inside *directory*."""
        prefix = str(directory).rstrip("/")
        return [e for e in self if os.path.dirname(e.path) == prefix]

    def tampered(self) -> list[ManifestEntry]:
        return [e for e in self if e.tampered]


def parse_manifest(text: str, source: str = "<manifest>") -> Manifest:
    """Parse manifest text.

    Malformed lines are logged and dropped rather than failing the whole
    load: a corrupt line must not prevent the remaining binaries from
    being checked.

    Args:
        text: File contents.
        source: Name used in log messages.

    Returns:
        The parsed snapshot.
    """
    entries: list[ManifestEntry] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        fields = line.split(" ")
        if len(fields) not in (2, 3):
            logger.warning(
                "%s:%d: ignoring malformed manifest line", source, lineno
            )
            continue
        flag: EntryFlag | None = None
        if len(fields) == 3:
            try:
                flag = EntryFlag(fields[2])
            except ValueError:
                logger.warning(
                    "%s:%d: ignoring unknown flag %r",
                    source,
                    lineno,
                    fields[2],
                )
                continue
        try:
            entries.append(ManifestEntry(fields[0], fields[1], flag))
        except ValueError as e:
            logger.warning("%s:%d: %s", source, lineno, e)
    return Manifest(entries)


def format_manifest(manifest: Manifest) -> str:
    """Serialize a snapshot to manifest text."""
    return "".join(f"{entry.to_line()}\n" for entry in manifest)


class ManifestStore(Protocol):
    """Load/save access to the persisted manifest."""

    @property
    def location(self) -> str: ...

    def exists(self) -> bool: ...

    def load(self) -> Manifest: ...

    def save(self, manifest: Manifest) -> None: ...


class FileManifestStore:
    """Manifest persisted as a file, committed by atomic replace.

    Args:
        path: Manifest file path.  The parent directory must exist.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @property
    def location(self) -> str:
        return str(self._path)

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> Manifest:
        """Read the manifest.  A missing file loads as empty.

        Undecodable bytes are kept as surrogates, so the lines holding
        them fail validation and are dropped like any other malformed
        line.

        Raises:
            OSError: If the file exists but cannot be read.
        """
        try:
            text = self._path.read_text(
                encoding="utf-8", errors="surrogateescape"
            )
        except FileNotFoundError:
            return Manifest()
        return parse_manifest(text, source=str(self._path))

    def save(self, manifest: Manifest) -> None:
        """Write *manifest* to a temp file, then rename it into place.

        The temp file is created owner-only, so the manifest is never
        readable by others, not even briefly.

        Raises:
            OSError: If the write or rename fails.  The previous
                manifest is left intact.
        """
        fd, tmp = tempfile.mkstemp(
            dir=self._path.parent, prefix=f"{self._path.name}.", suffix=".tmp"
        )
        try:
            os.fchmod(fd, MANIFEST_MODE)
            with open(fd, "w", encoding="utf-8") as f:
                f.write(format_manifest(manifest))
                f.flush()
                os.fsync(f.fileno())
            Path(tmp).replace(self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        self._path.chmod(MANIFEST_MODE)
        logger.debug("Saved %d manifest entries to %s", len(manifest), self)

    def __str__(self) -> str:
        return str(self._path)


class MemoryManifestStore:
    """In-memory store holding the last saved snapshot."""

    def __init__(self, manifest: Manifest | None = None) -> None:
        self._manifest = manifest
        self.saves = 0

    @property
    def location(self) -> str:
        return "<memory>"

    def exists(self) -> bool:
        return self._manifest is not None

    def load(self) -> Manifest:
        return self._manifest if self._manifest is not None else Manifest()

    def save(self, manifest: Manifest) -> None:
        self._manifest = manifest
        self.saves += 1
