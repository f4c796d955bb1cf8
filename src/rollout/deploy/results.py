"""Result models for rollout-spine.

Pydantic v2 models capturing the structured outcome of a rollout and of the
per-service operations. Individual outcomes (one per accessory, one per
service) roll up into a ``RolloutResult`` whose ``mark_complete()`` computes
duration, overall status and a one-line summary.

Key Concepts:
    OverallStatus: PASSED, FAILED, PARTIAL, ERROR, SKIPPED, RUNNING, PENDING.
    ServiceAction: What happened to a service — started, unchanged, failed,
        skipped (not reached because an earlier service failed), removed.
    AccessoryOutcome: Whether an accessory was started or reused, and how
        many readiness attempts it took.
    RolloutResult: Run id, target, outcomes in deployment order, warnings,
        and the failing service with its reason.

Architecture Decisions:
    - ``mark_complete()`` pattern: the sequencer calls it once in ``finally``.
    - A failed rollout that already started some services is PARTIAL: nothing
      is rolled back, and the result says so.
    - ``changed`` is the idempotence signal: False means no container and no
      route was touched.

Tags:
    results, models, pydantic, rollout, status, reporting
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OverallStatus(str, Enum):
    """Overall status of a rollout or operation."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    RUNNING = "RUNNING"
    PENDING = "PENDING"


class ServiceAction(str, Enum):
    """What a rollout did to a service."""

    STARTED = "started"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"
    REMOVED = "removed"


class AccessoryOutcome(BaseModel):
    """Outcome for one accessory."""

    name: str
    host: str
    container_name: str
    action: ServiceAction = ServiceAction.SKIPPED
    ready_after_attempts: int | None = None
    error: str | None = None


class ServiceOutcome(BaseModel):
    """Outcome for one service across all of its servers."""

    name: str
    action: ServiceAction = ServiceAction.SKIPPED
    hosts: list[str] = Field(default_factory=list)
    containers: list[str] = Field(default_factory=list)
    url: str | None = None
    route_changed: bool = False
    fingerprint: str | None = None
    error: str | None = None
    error_type: str | None = None


class RolloutResult(BaseModel):
    """Result of one rollout against a target."""

    run_id: str
    target: str
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    accessories: list[AccessoryOutcome] = Field(default_factory=list)
    services: list[ServiceOutcome] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    failed_service: str | None = None
    error: str | None = None
    error_detail: dict[str, Any] | None = None
    overall_status: OverallStatus = OverallStatus.PENDING
    summary: str = ""

    @property
    def changed(self) -> bool:
        """True if any container or route was touched."""
        return any(a.action == ServiceAction.STARTED for a in self.accessories) or any(
            s.action in (ServiceAction.STARTED, ServiceAction.REMOVED) or s.route_changed
            for s in self.services
        )

    def service(self, name: str) -> ServiceOutcome | None:
        for outcome in self.services:
            if outcome.name == name:
                return outcome
        return None

    def mark_complete(self) -> None:
        """Finalize: compute duration, overall status and summary."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        done = [
            s for s in self.services
            if s.action in (ServiceAction.STARTED, ServiceAction.UNCHANGED, ServiceAction.REMOVED)
        ]
        if self.error and not done:
            self.overall_status = OverallStatus.FAILED
        elif self.error:
            self.overall_status = OverallStatus.PARTIAL
        elif not self.services:
            self.overall_status = OverallStatus.SKIPPED
        else:
            self.overall_status = OverallStatus.PASSED

        started = sum(1 for s in self.services if s.action == ServiceAction.STARTED)
        unchanged = sum(1 for s in self.services if s.action == ServiceAction.UNCHANGED)
        removed = sum(1 for s in self.services if s.action == ServiceAction.REMOVED)
        if removed:
            parts = [f"{removed}/{len(self.services)} services removed"]
        else:
            parts = [f"{len(done)}/{len(self.services)} services deployed"]
            parts.append(f"{started} started, {unchanged} unchanged")
        if self.failed_service:
            parts.append(f"failed at {self.failed_service}")
        elif self.error:
            parts.append("failed before any service")
        self.summary = f"{'; '.join(parts)} in {self.duration_seconds:.1f}s"


class ContainerStatus(BaseModel):
    """State of one container, as reported by ``details``."""

    name: str
    host: str
    status: str = "not_found"
    image: str | None = None
    health: str | None = None
    started_at: str | None = None
    fingerprint: str | None = None


class ServiceDetails(BaseModel):
    """Inspect-status report for one service."""

    service: str
    target: str
    url: str | None = None
    route_registered: bool = False
    containers: list[ContainerStatus] = Field(default_factory=list)
    accessories: list[ContainerStatus] = Field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return bool(self.containers) and all(
            c.status == "running" and c.health in (None, "healthy") for c in self.containers
        )
