"""Structured output for rollout runs.

Every rollout writes a self-contained ``{run_id}/`` directory that can be
archived as a CI artifact::

    {output_dir}/{run_id}/
    ├── summary.json
    └── services/
        └── api.log        # tail of the failed service's container logs

Key Concepts:
    LogCollector: Creates ``{output_dir}/{run_id}/``.
    write_summary(): Serialises a ``RolloutResult`` to JSON.
    capture_service_logs(): Appends one host's container log tail to
        ``services/<service>.log``.
"""

from __future__ import annotations

from pathlib import Path

from rollout.core.errors import ContainerError
from rollout.core.logging import get_logger
from rollout.deploy.results import RolloutResult
from rollout.deploy.runtime import ContainerRuntime

logger = get_logger(__name__)

DEFAULT_TAIL = 200


class LogCollector:
    """Collects the summary and container logs of one rollout.

    Parameters
    ----------
    output_dir
        Base directory for output.
    run_id
        Unique run identifier.
    """

    def __init__(self, output_dir: Path, run_id: str) -> None:
        self.run_dir = Path(output_dir) / run_id
        self.run_id = run_id

    def services_dir(self) -> Path:
        """Get or create the directory for service logs."""
        d = self.run_dir / "services"
        d.mkdir(parents=True, exist_ok=True)
        return d

    def capture_service_logs(
        self,
        runtime: ContainerRuntime,
        container: str,
        service: str,
        tail: int = DEFAULT_TAIL,
    ) -> Path:
        """Append the last ``tail`` log lines of ``container`` on ``runtime.host``."""
        try:
            lines = list(runtime.logs(container, tail=tail))
        except ContainerError as e:
            lines = [f"Failed to collect logs: {e}"]

        log_path = self.services_dir() / f"{service}.log"
        with log_path.open("a", encoding="utf-8") as fh:
            fh.write(f"==> {runtime.host}/{container} <==\n")
            for line in lines:
                fh.write(line + "\n")
        logger.debug("logs.captured", service=service, host=runtime.host, path=str(log_path))
        return log_path

    def write_summary(self, result: RolloutResult) -> Path:
        """Write machine-readable summary JSON."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        path = self.run_dir / "summary.json"
        path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        logger.info("summary.written", path=str(path))
        return path
