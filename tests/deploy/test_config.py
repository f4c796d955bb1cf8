"""Tests for RolloutConfig."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from rollout.deploy.config import RolloutConfig


class TestRolloutConfig:
    def test_defaults(self):
        config = RolloutConfig()
        assert config.config_dir == Path("config")
        assert config.secrets_file == Path(".rollout/secrets")
        assert config.readiness_attempts == 30
        assert config.readiness_interval_seconds == 2.0
        assert config.lock_ttl_seconds is None
        assert len(config.run_id) == 12

    def test_run_ids_unique(self):
        assert RolloutConfig().run_id != RolloutConfig().run_id

    def test_derived_paths(self):
        config = RolloutConfig(state_dir=Path("/var/rollout"))
        assert config.lock_dir == Path("/var/rollout/locks")
        assert config.ingress_path == Path("/var/rollout/ingress.json")

    def test_network_name(self):
        assert RolloutConfig().network_name("shop") == "shop-net"
        assert RolloutConfig(network="edge").network_name("shop") == "edge"

    def test_readiness_attempts_positive(self):
        with pytest.raises(ValidationError):
            RolloutConfig(readiness_attempts=0)


class TestFromEnv:
    def test_reads_environment(self):
        env = {
            "ROLLOUT_CONFIG_FILES": "config/deploy.api.yml, config/deploy.web.yml",
            "ROLLOUT_DESTINATION": "staging",
            "ROLLOUT_READINESS_ATTEMPTS": "60",
            "ROLLOUT_READINESS_INTERVAL": "0.5",
            "ROLLOUT_LOCK_TTL": "3600",
            "ROLLOUT_CHECK_DOMAINS": "no",
        }
        with patch.dict(os.environ, env, clear=True):
            config = RolloutConfig.from_env()

        assert config.config_files == [Path("config/deploy.api.yml"), Path("config/deploy.web.yml")]
        assert config.destination == "staging"
        assert config.readiness_attempts == 60
        assert config.readiness_interval_seconds == 0.5
        assert config.lock_ttl_seconds == 3600
        assert config.check_domains is False

    def test_overrides_beat_environment(self):
        with patch.dict(os.environ, {"ROLLOUT_DESTINATION": "staging"}, clear=True):
            config = RolloutConfig.from_env(destination="production")
        assert config.destination == "production"

    def test_none_overrides_ignored(self):
        with patch.dict(os.environ, {"ROLLOUT_TARGET": "shop"}, clear=True):
            assert RolloutConfig.from_env(target=None).target == "shop"

    def test_invalid_number(self):
        with patch.dict(os.environ, {"ROLLOUT_READINESS_ATTEMPTS": "lots"}, clear=True):
            with pytest.raises(ValueError):
                RolloutConfig.from_env()
