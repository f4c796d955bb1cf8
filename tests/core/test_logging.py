"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from rollout.core import logging as rollout_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    rollout_logging._configured = False
    yield
    structlog.reset_defaults()
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    rollout_logging.clear_context()
    rollout_logging._configured = False


class TestConfigureLogging:
    def test_configures_once(self):
        rollout_logging.configure_logging(level="INFO", json_format=True)
        assert rollout_logging.is_configured()
        rollout_logging.configure_logging(level="DEBUG", json_format=True)
        assert not structlog.get_logger().is_enabled_for(logging.DEBUG)

    def test_force_reconfigures(self):
        rollout_logging.configure_logging(level="INFO", json_format=True)
        rollout_logging.configure_logging(level="DEBUG", json_format=True, force=True)
        assert structlog.get_logger().is_enabled_for(logging.DEBUG)

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("ROLLOUT_LOG_LEVEL", "warning")
        rollout_logging.configure_logging(json_format=True)
        logger = structlog.get_logger()
        assert logger.is_enabled_for(logging.WARNING)
        assert not logger.is_enabled_for(logging.INFO)

    def test_json_output(self, capsys):
        rollout_logging.configure_logging(level="INFO", json_format=True, service="rollout-test")
        rollout_logging.get_logger("rollout.test").info("accessory.ready", accessory="db")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "accessory.ready"
        assert event["accessory"] == "db"
        assert event["level"] == "info"
        assert event["logger"] == "rollout.test"
        assert event["service.name"] == "rollout-test"


class TestLogContext:
    def test_binds_and_unbinds(self, capsys):
        rollout_logging.configure_logging(level="INFO", json_format=True)
        logger = rollout_logging.get_logger("rollout.test")

        with rollout_logging.LogContext(run_id="abc123", target="shop"):
            logger.info("inside")
        logger.info("outside")

        lines = [json.loads(x) for x in capsys.readouterr().err.strip().splitlines()]
        inside = next(e for e in lines if e["event"] == "inside")
        outside = next(e for e in lines if e["event"] == "outside")
        assert inside["run_id"] == "abc123"
        assert inside["target"] == "shop"
        assert "run_id" not in outside
