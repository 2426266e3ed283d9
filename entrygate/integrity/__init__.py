# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Binary integrity verification for executables on the persistent volume.

A trust-on-first-use manifest records a SHA-256 digest per executable.
Later boots detect changed binaries and revoke their execute permission.
"""

from entrygate.integrity.manifest import (
    MANIFEST_MODE,
    EntryFlag,
    FileManifestStore,
    Manifest,
    ManifestEntry,
    ManifestStore,
    MemoryManifestStore,
    format_manifest,
    parse_manifest,
)
from entrygate.integrity.verifier import (
    FileCheck,
    IntegrityError,
    IntegrityVerifier,
    ManifestMissingError,
    Outcome,
    UnknownPathError,
    VerificationReport,
    hash_file,
    scan_directory,
)


__all__ = [
    # manifest
    "MANIFEST_MODE",
    "EntryFlag",
    "FileManifestStore",
    "Manifest",
    "ManifestEntry",
    "ManifestStore",
    "MemoryManifestStore",
    "format_manifest",
    "parse_manifest",
    # verifier
    "FileCheck",
    "IntegrityError",
    "IntegrityVerifier",
    "ManifestMissingError",
    "Outcome",
    "UnknownPathError",
    "VerificationReport",
    "hash_file",
    "scan_directory",
]
