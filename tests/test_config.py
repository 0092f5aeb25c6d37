"""Tests for the pyk3d config loader (pyk3d.yaml)."""

from pathlib import Path

import pytest

from pyk3d.config import (
    DEFAULT_API_PORT,
    DEFAULT_IMAGE,
    Pyk3dConfig,
    find_config,
    generate_cluster_secret,
    load_config,
)

# --- generate_cluster_secret ---


class TestGenerateClusterSecret:
    def test_returns_20_alphanumeric_chars(self):
        secret = generate_cluster_secret()
        assert len(secret) == 20
        assert secret.isalnum()
        assert secret.isascii()

    def test_custom_length(self):
        assert len(generate_cluster_secret(32)) == 32

    def test_unique_every_time(self):
        secrets = {generate_cluster_secret() for _ in range(20)}
        assert len(secrets) == 20


# --- find_config ---


class TestFindConfig:
    def test_finds_in_start_dir(self, tmp_path: Path):
        cfg = tmp_path / "pyk3d.yaml"
        cfg.write_text("image: rancher/k3s:v1.29\n", encoding="utf-8")
        assert find_config(tmp_path) == cfg

    def test_finds_in_parent(self, tmp_path: Path):
        cfg = tmp_path / "pyk3d.yaml"
        cfg.write_text("image: rancher/k3s:v1.29\n", encoding="utf-8")
        child = tmp_path / "sub" / "deep"
        child.mkdir(parents=True)
        assert find_config(child) == cfg

    def test_returns_none_when_missing(self, tmp_path: Path):
        assert find_config(tmp_path) is None

    def test_ignores_directories_named_config(self, tmp_path: Path):
        """A directory named pyk3d.yaml should not match."""
        (tmp_path / "pyk3d.yaml").mkdir()
        assert find_config(tmp_path) is None


# --- load_config ---


class TestLoadConfig:
    def test_explicit_path(self, tmp_path: Path):
        cfg_path = tmp_path / "pyk3d.yaml"
        cfg_path.write_text(
            "image: rancher/k3s:v1.29\napi_port: '6550'\ncluster_dir: ./clusters\n"
            "wait: 60\ndocker_machine_fallback: false\nnode_workers: 3\n",
            encoding="utf-8",
        )
        cfg = load_config(cfg_path)
        assert cfg.config_path == cfg_path
        assert cfg.image == "rancher/k3s:v1.29"
        assert cfg.api_port == "6550"
        assert cfg.cluster_dir == str((tmp_path / "clusters").resolve())
        assert cfg.wait == 60
        assert cfg.docker_machine_fallback is False
        assert cfg.node_workers == 3

    def test_numeric_api_port(self, tmp_path: Path):
        cfg_path = tmp_path / "pyk3d.yaml"
        cfg_path.write_text("api_port: 6550\n", encoding="utf-8")
        assert load_config(cfg_path).api_port == "6550"

    def test_explicit_path_not_found(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_auto_discover(self, tmp_path: Path, monkeypatch):
        cfg_path = tmp_path / "pyk3d.yaml"
        cfg_path.write_text("wait: 0\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        cfg = load_config()
        assert cfg.config_path == cfg_path.resolve()
        assert cfg.wait == 0

    def test_no_discover(self, tmp_path: Path, monkeypatch):
        (tmp_path / "pyk3d.yaml").write_text("wait: 0\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        assert load_config(auto_discover=False) == Pyk3dConfig()

    def test_defaults(self, tmp_path: Path):
        cfg_path = tmp_path / "pyk3d.yaml"
        cfg_path.write_text("", encoding="utf-8")
        cfg = load_config(cfg_path)
        assert cfg.image == DEFAULT_IMAGE
        assert cfg.api_port == DEFAULT_API_PORT
        assert cfg.cluster_dir is None
        assert cfg.wait is None
        assert cfg.docker_machine_fallback is True
        assert cfg.node_workers == 1

    def test_not_a_mapping(self, tmp_path: Path):
        cfg_path = tmp_path / "pyk3d.yaml"
        cfg_path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Expected a YAML mapping"):
            load_config(cfg_path)

    def test_invalid_node_workers(self, tmp_path: Path):
        cfg_path = tmp_path / "pyk3d.yaml"
        cfg_path.write_text("node_workers: 0\n", encoding="utf-8")
        with pytest.raises(ValueError, match="node_workers"):
            load_config(cfg_path)

    @pytest.mark.parametrize("value", ['"false"', "'no'", "0", "off-ish"])
    def test_docker_machine_fallback_must_be_bool(self, tmp_path: Path, value: str):
        cfg_path = tmp_path / "pyk3d.yaml"
        cfg_path.write_text(f"docker_machine_fallback: {value}\n", encoding="utf-8")
        with pytest.raises(ValueError, match="docker_machine_fallback"):
            load_config(cfg_path)

    def test_docker_machine_fallback_false(self, tmp_path: Path):
        cfg_path = tmp_path / "pyk3d.yaml"
        cfg_path.write_text("docker_machine_fallback: false\n", encoding="utf-8")
        assert load_config(cfg_path).docker_machine_fallback is False
