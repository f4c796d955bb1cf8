"""Tests for loading descriptors and topologies from YAML."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from conftest import api_descriptor, web_descriptor
from rollout.core.errors import ConfigError
from rollout.deploy.config import RolloutConfig
from rollout.deploy.loader import (
    deep_merge,
    default_target,
    discover_descriptor_files,
    load_descriptor,
    load_topology,
    overlay_path,
)


def _write(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


@pytest.fixture
def config_dir(tmp_path):
    root = tmp_path / "shop"
    _write(root / "config" / "deploy.api.yml", api_descriptor())
    _write(root / "config" / "deploy.web.yml", web_descriptor())
    return root / "config"


class TestDeepMerge:
    def test_nested_dicts_merged(self):
        base = {"env": {"clear": {"A": "1", "B": "2"}}, "image": "x:1"}
        overlay = {"env": {"clear": {"B": "3"}}}
        assert deep_merge(base, overlay) == {"env": {"clear": {"A": "1", "B": "3"}}, "image": "x:1"}

    def test_lists_replaced(self):
        assert deep_merge({"servers": ["a", "b"]}, {"servers": ["c"]}) == {"servers": ["c"]}

    def test_base_not_mutated(self):
        base = {"env": {"clear": {"A": "1"}}}
        deep_merge(base, {"env": {"clear": {"A": "2"}}})
        assert base == {"env": {"clear": {"A": "1"}}}

    def test_scalar_replaces_dict(self):
        assert deep_merge({"route": {"host": "a.com"}}, {"route": None}) == {"route": None}


class TestLoadDescriptor:
    def test_load(self, config_dir):
        desc = load_descriptor(config_dir / "deploy.api.yml")
        assert desc.service == "api"
        assert desc.source == str(config_dir / "deploy.api.yml")

    def test_destination_overlay(self, config_dir):
        _write(
            config_dir / "deploy.api.staging.yml",
            {"servers": ["10.0.0.9"], "route": {"host": "staging.example.com"}},
        )
        desc = load_descriptor(config_dir / "deploy.api.yml", "staging")
        assert desc.servers == ["10.0.0.9"]
        assert desc.route.host == "staging.example.com"
        assert desc.route.path_prefix == "/api"
        assert desc.image == "ghcr.io/acme/api:1.0"

    def test_missing_overlay_ignored(self, config_dir):
        desc = load_descriptor(config_dir / "deploy.web.yml", "production")
        assert desc.service == "web"

    def test_overlay_path(self):
        assert overlay_path(Path("c/deploy.api.yml"), "staging") == Path("c/deploy.api.staging.yml")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Descriptor not found"):
            load_descriptor(tmp_path / "deploy.nope.yml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "deploy.bad.yml"
        path.write_text("service: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_descriptor(path)

    def test_top_level_not_mapping(self, tmp_path):
        path = tmp_path / "deploy.bad.yml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="expected a mapping"):
            load_descriptor(path)

    def test_validation_error_names_file_and_field(self, tmp_path):
        path = _write(tmp_path / "deploy.web.yml", web_descriptor(servers=[], replicas=2))
        with pytest.raises(ConfigError) as exc_info:
            load_descriptor(path)
        message = str(exc_info.value)
        assert str(path) in message
        assert "servers:" in message
        assert "replicas:" in message


class TestDiscovery:
    def test_glob_in_name_order(self, config_dir):
        _write(config_dir / "deploy.api.staging.yml", {"servers": ["x"]})
        (config_dir / "notes.yml").write_text("x: 1\n")
        target, files = discover_descriptor_files(config_dir)
        assert target is None
        assert [f.name for f in files] == ["deploy.api.yml", "deploy.web.yml"]

    def test_manifest_order_and_target(self, config_dir):
        _write(
            config_dir / "rollout.yml",
            {"target": "storefront", "services": ["deploy.web.yml", "deploy.api.yml"]},
        )
        target, files = discover_descriptor_files(config_dir)
        assert target == "storefront"
        assert [f.name for f in files] == ["deploy.web.yml", "deploy.api.yml"]

    def test_manifest_services_must_be_list(self, config_dir):
        _write(config_dir / "rollout.yml", {"services": "deploy.web.yml"})
        with pytest.raises(ConfigError, match="must be a list"):
            discover_descriptor_files(config_dir)

    def test_default_target_from_parent_dir(self, tmp_path):
        assert default_target(tmp_path / "My Shop" / "config") == "my-shop"


class TestLoadTopology:
    def test_from_directory(self, config_dir):
        topology = load_topology(RolloutConfig(config_dir=config_dir))
        assert topology.target == "shop"
        assert [s.service for s in topology.services] == ["api", "web"]
        assert list(topology.accessories) == ["db", "redis"]

    def test_explicit_files_keep_order(self, config_dir):
        config = RolloutConfig(
            config_dir=config_dir,
            config_files=[config_dir / "deploy.web.yml", config_dir / "deploy.api.yml"],
        )
        assert [s.service for s in load_topology(config).services] == ["web", "api"]

    def test_destination_suffixes_target(self, config_dir):
        topology = load_topology(RolloutConfig(config_dir=config_dir, destination="staging"))
        assert topology.target == "shop-staging"

    def test_explicit_target_wins(self, config_dir):
        config = RolloutConfig(config_dir=config_dir, destination="staging", target="store")
        assert load_topology(config).target == "store"

    def test_no_descriptors(self, tmp_path):
        with pytest.raises(ConfigError, match="No deployment descriptors"):
            load_topology(RolloutConfig(config_dir=tmp_path))

    def test_invalid_target_name(self, config_dir):
        with pytest.raises(ConfigError, match="Invalid target name"):
            load_topology(RolloutConfig(config_dir=config_dir, target="Not Valid"))

    def test_structural_error(self, config_dir):
        _write(config_dir / "deploy.worker.yml", web_descriptor(service="web"))
        with pytest.raises(ConfigError, match="declared twice"):
            load_topology(RolloutConfig(config_dir=config_dir))
