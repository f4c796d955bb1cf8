"""Routing rule resolution policy.

Every published service claims a host and an optional path prefix on the
shared ingress. The policy:

- exactly one service may own the bare host with no path prefix (the
  default/root route);
- any number of other services may own the same host with distinct,
  non-overlapping path prefixes (``/api`` and ``/api/v2`` overlap, ``/api``
  and ``/apidocs`` do not);
- a request goes to the service whose prefix matches, otherwise to the root
  route of its host, otherwise nowhere.

Conflicts are configuration errors and are detected before any container is
started.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from pydantic import BaseModel, Field

from rollout.core.errors import RouteConflict
from rollout.core.logging import get_logger
from rollout.deploy.descriptor import RouteRule, ServiceDescriptor

logger = get_logger(__name__)


def _describe(rule: RouteRule) -> str:
    return rule.host + (rule.path_prefix or " (root)")


def find_conflicts(
    routes: Iterable[tuple[str, RouteRule]],
) -> list[RouteConflict]:
    """Return one ``RouteConflict`` per overlapping pair, in input order."""
    claimed: list[tuple[str, RouteRule]] = []
    conflicts: list[RouteConflict] = []
    for service, rule in routes:
        for other_service, other_rule in claimed:
            if other_service != service and rule.overlaps(other_rule):
                conflicts.append(
                    RouteConflict(
                        rule.host,
                        (other_service, service),
                        f"Route conflict on {rule.host}: {other_service!r} claims "
                        f"{_describe(other_rule)} and {service!r} claims {_describe(rule)}",
                    )
                )
        claimed.append((service, rule))
    return conflicts


def validate_routes(
    services: Iterable[ServiceDescriptor],
    existing: Mapping[str, RouteRule] | None = None,
) -> None:
    """Raise the first ``RouteConflict`` among the services' routes.

    ``existing`` holds routes already registered on the ingress by services
    outside this set; a service re-registering its own route is not a conflict.
    """
    services = list(services)
    names = {s.service for s in services}
    routes: list[tuple[str, RouteRule]] = [
        (name, rule) for name, rule in (existing or {}).items() if name not in names
    ]
    routes.extend((s.service, s.route) for s in services if s.route is not None)
    conflicts = find_conflicts(routes)
    if conflicts:
        logger.error("routes.conflict", count=len(conflicts), first=str(conflicts[0]))
        raise conflicts[0]


# ---------------------------------------------------------------------------
# Route table
# ---------------------------------------------------------------------------


class RouteEntry(BaseModel):
    """A registered route: the owning service, its rule and its upstreams."""

    service: str
    rule: RouteRule
    upstreams: list[str] = Field(default_factory=list)


class RouteTable(BaseModel):
    """Routes currently published on the shared ingress, keyed by service."""

    entries: dict[str, RouteEntry] = Field(default_factory=dict)

    def rules(self) -> dict[str, RouteRule]:
        return {name: entry.rule for name, entry in self.entries.items()}

    def register(self, service: str, rule: RouteRule, upstreams: list[str]) -> bool:
        """Publish ``rule`` for ``service``. Returns False when nothing changed.

        Raises:
            RouteConflict: If another registered service overlaps the rule.
        """
        for other, entry in self.entries.items():
            if other != service and rule.overlaps(entry.rule):
                raise RouteConflict(rule.host, (other, service))
        new = RouteEntry(service=service, rule=rule, upstreams=sorted(upstreams))
        if self.entries.get(service) == new:
            return False
        self.entries[service] = new
        return True

    def unregister(self, service: str) -> bool:
        return self.entries.pop(service, None) is not None

    def resolve(self, host: str, path: str = "/") -> str | None:
        """Return the service that receives a request, or None."""
        best: tuple[int, str] | None = None
        for name, entry in self.entries.items():
            if entry.rule.matches(host, path):
                depth = len(entry.rule.segments)
                if best is None or depth > best[0]:
                    best = (depth, name)
        return best[1] if best else None

    def hosts(self) -> list[str]:
        return sorted({entry.rule.host for entry in self.entries.values()})
