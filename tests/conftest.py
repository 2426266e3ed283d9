# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

import os
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from entrygate.dotenv_loader import reset_dotenv_state
from entrygate.logging import SecretFilter


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[None]:
    """Keep tests away from the real config dir and process state."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.delenv("ENTRYGATE_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    reset_dotenv_state()
    SecretFilter.clear_secrets()
    yield
    reset_dotenv_state()
    SecretFilter.clear_secrets()


@pytest.fixture
def make_binary() -> Callable[..., Path]:
    """Factory writing an executable file.

    Returns:
        ``make_binary(directory, name, content=b"...", mode=0o755)``.
    """

    def _make(
        directory: Path,
        name: str,
        content: bytes = b"#!/bin/sh\necho ok\n",
        mode: int = 0o755,
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_bytes(content)
        path.chmod(mode)
        return path

    return _make


@pytest.fixture
def go_bin(tmp_path: Path) -> Path:
    """Toolchain binary directory (created empty)."""
    path = tmp_path / "data" / "go" / "bin"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def npm_bin(tmp_path: Path) -> Path:
    """Package-manager binary directory (created empty)."""
    path = tmp_path / "data" / "node_modules" / ".bin"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Gateway state directory holding the manifest."""
    path = tmp_path / "data" / ".openclaw"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def undecodable_name() -> str:
    """File name whose bytes are not valid UTF-8 (``tool\\xff``)."""
    return os.fsdecode(b"tool\xff")
