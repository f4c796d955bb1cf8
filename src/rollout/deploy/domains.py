"""Domain-resolution check.

Before a rollout, every route host is resolved and compared with the
addresses of the servers the service runs on. A mismatch (the domain points
somewhere else, or does not resolve) is reported as a warning: the operator
may be mid-cutover or fronting the hosts with a load balancer, so the
rollout proceeds.
"""

from __future__ import annotations

import socket
from collections.abc import Callable, Iterable

from pydantic import BaseModel

from rollout.core.logging import get_logger
from rollout.deploy.descriptor import ServiceDescriptor

logger = get_logger(__name__)

Resolver = Callable[[str], set[str]]


class DomainMismatch(BaseModel):
    """A route host that does not resolve to any of the service's servers."""

    service: str
    host: str
    resolved: list[str]
    expected: list[str]

    @property
    def message(self) -> str:
        if not self.resolved:
            return f"{self.service}: {self.host} does not resolve"
        return (
            f"{self.service}: {self.host} resolves to {', '.join(self.resolved)}, "
            f"not to any of {', '.join(self.expected)}"
        )


def resolve_addresses(name: str) -> set[str]:
    """All IPv4/IPv6 addresses ``name`` resolves to; empty when it does not."""
    try:
        infos = socket.getaddrinfo(name, None)
    except (socket.gaierror, UnicodeError):
        return set()
    return {info[4][0] for info in infos}


def check_domains(
    services: Iterable[ServiceDescriptor],
    resolver: Resolver = resolve_addresses,
) -> list[DomainMismatch]:
    """Return one ``DomainMismatch`` per routed service whose host looks wrong."""
    mismatches = []
    cache: dict[str, set[str]] = {}

    def lookup(name: str) -> set[str]:
        if name not in cache:
            cache[name] = resolver(name)
        return cache[name]

    for desc in services:
        if desc.route is None:
            continue
        resolved = lookup(desc.route.host)
        expected: set[str] = set()
        for server in desc.servers:
            expected |= lookup(server) or {server}
        if not resolved & expected:
            mismatch = DomainMismatch(
                service=desc.service,
                host=desc.route.host,
                resolved=sorted(resolved),
                expected=sorted(expected),
            )
            logger.warning(
                "domain.mismatch",
                service=desc.service,
                host=desc.route.host,
                resolved=mismatch.resolved,
            )
            mismatches.append(mismatch)
    return mismatches
