"""deploy - Multi-service rollouts onto container hosts.

Takes per-service deployment descriptors (image, servers, route, registry,
environment, accessories), validates them as a set, and rolls them out in
input order: accessories first and only until ready, then each service's
containers, then its route on the shared ingress.

Key Concepts:
    ServiceDescriptor / Topology: Pydantic models loaded from
        ``config/deploy.<service>.yml`` (plus destination overlays).
    Routing policy: one root route per host, non-overlapping path prefixes,
        prefix match beats root route.
    RolloutSequencer: validate → lock → registry login → accessories +
        services → routes. Idempotent via fingerprint labels; stops at the
        first failing service without rolling back.
    ServiceOperations: setup / deploy / remove / details / logs / exec for
        one service.
    DeployLock: at most one in-flight deployment per target.

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │                       rollout.deploy                          │
    ├──────────────┬──────────────┬─────────────┬──────────────────┤
    │  Loader      │  Routing     │  Sequencer  │  Operations      │
    │  (YAML)      │  policy      │             │  (per service)   │
    ├──────────────┴──────────────┴─────────────┴──────────────────┤
    │        ContainerRuntime (docker CLI subprocess, per host)     │
    ├──────────────────────────────────────────────────────────────┤
    │   Ingress table │ Deploy lock │ Log collector │ Results       │
    └──────────────────────────────────────────────────────────────┘

Tags:
    deploy, containers, docker, rollout, routing, accessories, lock

Example:
    >>> from rollout.deploy import RolloutConfig
    >>> RolloutConfig(destination="staging").readiness_attempts
    30
"""

from __future__ import annotations

from rollout.deploy.config import RolloutConfig
from rollout.deploy.descriptor import (
    AccessorySpec,
    EnvSpec,
    RegistryCredentials,
    RouteRule,
    ServiceDescriptor,
    Topology,
)
from rollout.deploy.ingress import Ingress
from rollout.deploy.loader import load_descriptor, load_topology
from rollout.deploy.lock import DeployLock
from rollout.deploy.operations import ServiceOperations
from rollout.deploy.readiness import poll_until_ready
from rollout.deploy.results import (
    AccessoryOutcome,
    OverallStatus,
    RolloutResult,
    ServiceAction,
    ServiceDetails,
    ServiceOutcome,
)
from rollout.deploy.routing import RouteTable, find_conflicts, validate_routes
from rollout.deploy.runtime import ContainerRuntime, DockerCliRuntime
from rollout.deploy.sequencer import RolloutSequencer

__all__ = [
    "AccessoryOutcome",
    "AccessorySpec",
    "ContainerRuntime",
    "DeployLock",
    "DockerCliRuntime",
    "EnvSpec",
    "Ingress",
    "OverallStatus",
    "RegistryCredentials",
    "RolloutConfig",
    "RolloutResult",
    "RolloutSequencer",
    "RouteRule",
    "RouteTable",
    "ServiceAction",
    "ServiceDescriptor",
    "ServiceDetails",
    "ServiceOperations",
    "ServiceOutcome",
    "Topology",
    "find_conflicts",
    "load_descriptor",
    "load_topology",
    "poll_until_ready",
    "validate_routes",
]
