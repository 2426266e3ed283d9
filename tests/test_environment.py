# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for entrygate/environment.py."""

import os
from pathlib import Path

import pytest

from entrygate.config import ConfigError, EntrypointConfig
from entrygate.environment import build_environment, resolve_port


class TestResolvePort:
    def test_default_when_unset(self) -> None:
        assert resolve_port(EntrypointConfig(), {}) == 8080

    def test_default_when_empty(self) -> None:
        assert resolve_port(EntrypointConfig(), {"PORT": " "}) == 8080

    def test_from_environment(self) -> None:
        assert resolve_port(EntrypointConfig(), {"PORT": "3000"}) == 3000

    def test_custom_variable(self) -> None:
        config = EntrypointConfig(port_env="GATEWAY_PORT", default_port=9)
        assert resolve_port(config, {"PORT": "3000"}) == 9
        assert resolve_port(config, {"GATEWAY_PORT": "3000"}) == 3000

    @pytest.mark.parametrize("value", ["http", "0", "65536", "-1"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ConfigError, match="PORT"):
            resolve_port(EntrypointConfig(), {"PORT": value})


class TestBuildEnvironment:
    """Tests for build_environment."""

    def test_gateway_variables(self) -> None:
        env = build_environment(
            EntrypointConfig(), {"PORT": "3000"}, volume_present=True
        )
        assert env["OPENCLAW_STATE_DIR"] == "/data/.openclaw"
        assert env["OPENCLAW_WORKSPACE_DIR"] == "/data/workspace"
        assert env["OPENCLAW_GATEWAY_TRUSTED_PROXIES"] == "100.64.0.0/10"
        assert env["OPENCLAW_GATEWAY_PORT"] == "3000"

    def test_inherits_and_does_not_modify_input(self) -> None:
        environ = {"HOME": "/root", "PATH": "/usr/bin"}
        env = build_environment(
            EntrypointConfig(), environ, volume_present=True
        )
        assert env["HOME"] == "/root"
        assert environ == {"HOME": "/root", "PATH": "/usr/bin"}

    def test_toolchain_on_volume(self) -> None:
        env = build_environment(
            EntrypointConfig(),
            {"PATH": "/usr/local/bin:/usr/bin"},
            volume_present=True,
        )
        assert env["GOPATH"] == "/data/go"
        assert env["GOBIN"] == "/data/go/bin"
        assert env["PATH"] == (
            "/data/go/bin:/data/node_modules/.bin:/usr/local/bin:/usr/bin"
        )

    def test_path_not_duplicated(self) -> None:
        """Restarting inside the same environment keeps PATH stable."""
        config = EntrypointConfig()
        first = build_environment(
            config, {"PATH": "/usr/bin"}, volume_present=True
        )
        second = build_environment(config, first, volume_present=True)
        assert second["PATH"] == first["PATH"]

    def test_missing_path_uses_default(self) -> None:
        env = build_environment(EntrypointConfig(), {}, volume_present=True)
        assert env["PATH"].endswith(os.defpath)

    def test_no_volume(self) -> None:
        env = build_environment(
            EntrypointConfig(), {"PATH": "/usr/bin"}, volume_present=False
        )
        assert "GOPATH" not in env
        assert "GOBIN" not in env
        assert env["PATH"] == "/usr/bin"
        assert env["OPENCLAW_STATE_DIR"] == "/data/.openclaw"

    def test_custom_locations(self) -> None:
        config = EntrypointConfig(
            state_dir=Path("/vol/state"),
            gopath=Path("/vol/go"),
            path_prepend=(Path("/vol/go/bin"),),
        )
        env = build_environment(config, {"PATH": "/bin"}, True)
        assert env["OPENCLAW_STATE_DIR"] == "/vol/state"
        assert env["GOBIN"] == "/vol/go/bin"
        assert env["PATH"] == "/vol/go/bin:/bin"

    def test_extra_env_applied_last(self) -> None:
        config = EntrypointConfig(
            extra_env={"NODE_ENV": "production", "OPENCLAW_STATE_DIR": "/x"}
        )
        env = build_environment(config, {}, volume_present=False)
        assert env["NODE_ENV"] == "production"
        assert env["OPENCLAW_STATE_DIR"] == "/x"

    def test_invalid_port_raises(self) -> None:
        with pytest.raises(ConfigError):
            build_environment(
                EntrypointConfig(), {"PORT": "abc"}, volume_present=True
            )
