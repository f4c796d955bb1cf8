"""Tests for rollout output collection."""

from __future__ import annotations

import json
from collections.abc import Iterator

from rollout.core.errors import ContainerError
from rollout.deploy.log_collector import LogCollector
from rollout.deploy.results import RolloutResult


class _LogsRuntime:
    def __init__(self, host, lines=None, error=None):
        self.host = host
        self.lines = lines or []
        self.error = error
        self.calls = []

    def logs(self, name, *, tail=None, follow=False) -> Iterator[str]:
        self.calls.append((name, tail))
        if self.error:
            raise self.error
        return iter(self.lines)


class TestLogCollector:
    def test_run_dir_not_created_eagerly(self, tmp_path):
        collector = LogCollector(tmp_path, "run1")
        assert collector.run_dir == tmp_path / "run1"
        assert not collector.run_dir.exists()

    def test_write_summary(self, tmp_path):
        result = RolloutResult(run_id="run1", target="shop")
        result.mark_complete()

        path = LogCollector(tmp_path, "run1").write_summary(result)
        assert path == tmp_path / "run1" / "summary.json"
        data = json.loads(path.read_text())
        assert data["run_id"] == "run1"
        assert data["overall_status"] == "SKIPPED"

    def test_capture_appends_per_host(self, tmp_path):
        collector = LogCollector(tmp_path, "run1")
        first = _LogsRuntime("10.0.0.1", ["booting", "crashed"])
        second = _LogsRuntime("10.0.0.2", ["ok"])

        collector.capture_service_logs(first, "shop-api", "api", tail=50)
        path = collector.capture_service_logs(second, "shop-api", "api")

        assert path == tmp_path / "run1" / "services" / "api.log"
        assert path.read_text() == (
            "==> 10.0.0.1/shop-api <==\nbooting\ncrashed\n"
            "==> 10.0.0.2/shop-api <==\nok\n"
        )
        assert first.calls == [("shop-api", 50)]
        assert second.calls == [("shop-api", 200)]

    def test_capture_error_recorded(self, tmp_path):
        runtime = _LogsRuntime("10.0.0.1", error=ContainerError("ssh: connection refused"))
        path = LogCollector(tmp_path, "run1").capture_service_logs(runtime, "shop-api", "api")
        assert "Failed to collect logs: ssh: connection refused" in path.read_text()
