"""Tests for API host fallback strategies."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from pyk3d.hosts import (
    DockerMachineHostResolver,
    HostResolver,
    HostResolverError,
    NullHostResolver,
    apply_host_fallback,
)
from pyk3d.models import APIPort


class TestDockerMachineHostResolver:
    def test_no_machine_configured(self, monkeypatch):
        monkeypatch.delenv("DOCKER_MACHINE_NAME", raising=False)
        with patch("pyk3d.hosts.subprocess.run") as run:
            assert DockerMachineHostResolver().resolve() == ""
        run.assert_not_called()

    def test_resolves_machine_ip(self, monkeypatch):
        monkeypatch.setenv("DOCKER_MACHINE_NAME", "dev")
        completed = MagicMock(stdout="192.168.99.100\n")
        with (
            patch("pyk3d.hosts.shutil.which", return_value="/usr/bin/docker-machine"),
            patch("pyk3d.hosts.subprocess.run", return_value=completed) as run,
        ):
            assert DockerMachineHostResolver().resolve() == "192.168.99.100"
        args, kwargs = run.call_args
        assert args[0] == ["/usr/bin/docker-machine", "ip", "dev"]
        assert kwargs["check"] is True

    def test_explicit_machine_and_path(self, monkeypatch):
        monkeypatch.delenv("DOCKER_MACHINE_NAME", raising=False)
        completed = MagicMock(stdout="10.0.0.9")
        with patch("pyk3d.hosts.subprocess.run", return_value=completed) as run:
            resolver = DockerMachineHostResolver(machine="vm", docker_machine_path="/opt/dm")
            assert resolver.resolve() == "10.0.0.9"
        assert run.call_args.args[0] == ["/opt/dm", "ip", "vm"]

    def test_binary_missing(self, monkeypatch):
        monkeypatch.setenv("DOCKER_MACHINE_NAME", "dev")
        with (
            patch("pyk3d.hosts.shutil.which", return_value=None),
            pytest.raises(HostResolverError, match="not found"),
        ):
            DockerMachineHostResolver().resolve()

    def test_command_fails(self, monkeypatch):
        monkeypatch.setenv("DOCKER_MACHINE_NAME", "dev")
        error = subprocess.CalledProcessError(1, ["docker-machine"], stderr="Host does not exist\n")
        with (
            patch("pyk3d.hosts.shutil.which", return_value="/usr/bin/docker-machine"),
            patch("pyk3d.hosts.subprocess.run", side_effect=error),
            pytest.raises(HostResolverError, match="Host does not exist"),
        ):
            DockerMachineHostResolver().resolve()

    def test_satisfies_protocol(self):
        assert isinstance(DockerMachineHostResolver(), HostResolver)
        assert isinstance(NullHostResolver(), HostResolver)


class Failing:
    def resolve(self) -> str:
        raise HostResolverError("docker-machine ip dev failed")


class Fixed:
    def resolve(self) -> str:
        return "192.168.99.100"


class TestApplyHostFallback:
    def test_explicit_host_kept(self):
        api = APIPort(host="k3s.local", host_ip="10.0.0.5", port=6443)
        assert apply_host_fallback(api, Fixed()) == api

    def test_fills_host(self):
        api = apply_host_fallback(APIPort(port=6550), Fixed())
        assert api == APIPort(host="192.168.99.100", host_ip="192.168.99.100", port=6550)

    def test_null_resolver(self):
        assert apply_host_fallback(APIPort(), NullHostResolver()) == APIPort()

    def test_failure_is_a_warning(self, caplog):
        assert apply_host_fallback(APIPort(), Failing()) == APIPort()
        assert "DOCKER_MACHINE_NAME" in caplog.text
