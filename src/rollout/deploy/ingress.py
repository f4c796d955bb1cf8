"""Shared ingress route table.

Services become reachable by registering their ``RouteRule`` here once their
containers are up. The table is persisted as JSON under the state directory
so that a later run can tell an unchanged registration (no-op) from a new one
and can check new routes against routes owned by other targets.

Rollouts of different targets may run at the same time, so every change
re-reads the file under an exclusive lock before checking and writing.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import ValidationError

from rollout.core.errors import ConfigError
from rollout.core.locking import exclusive_lock
from rollout.core.logging import get_logger
from rollout.deploy.descriptor import RouteRule
from rollout.deploy.routing import RouteTable

logger = get_logger(__name__)


class Ingress:
    """Route table persisted at ``path``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.table = self._load()

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def _load(self) -> RouteTable:
        if not self.path.exists():
            return RouteTable()
        try:
            return RouteTable.model_validate_json(self.path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise ConfigError(f"Corrupt ingress route table {self.path}", cause=e) from e

    def refresh(self) -> RouteTable:
        """Re-read the table from disk."""
        self.table = self._load()
        return self.table

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(self.table.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def rules(self) -> dict[str, RouteRule]:
        return self.refresh().rules()

    def register(self, service: str, rule: RouteRule, upstreams: list[str]) -> bool:
        """Publish a route. Returns False when the registration was already current.

        Raises:
            RouteConflict: If a route registered by anyone else overlaps ``rule``.
        """
        with exclusive_lock(self.lock_path):
            changed = self.refresh().register(service, rule, upstreams)
            if changed:
                self.save()
        if changed:
            logger.info("route.registered", service=service, url=rule.url, upstreams=upstreams)
        else:
            logger.debug("route.unchanged", service=service, url=rule.url)
        return changed

    def unregister(self, service: str) -> bool:
        with exclusive_lock(self.lock_path):
            removed = self.refresh().unregister(service)
            if removed:
                self.save()
        if removed:
            logger.info("route.removed", service=service)
        return removed

    def resolve(self, host: str, path: str = "/") -> str | None:
        return self.refresh().resolve(host, path)
