"""Deployment descriptor models for rollout-spine.

A deployment descriptor describes one service: its image, the hosts it runs
on, its start command, its routing rule on the shared ingress, its registry
credentials, its environment (plaintext and secret-sourced) and the stateful
accessories (database, cache) it needs at startup.

Key Concepts:
    RouteRule: Host + optional path prefix + TLS flag + backend port. The
        prefix is normalised (``"api/"`` -> ``"/api"``, ``"/"`` -> no prefix)
        so that overlap checks compare like with like.
    EnvSpec: ``clear`` plaintext values and ``secret`` names resolved from
        the secrets file at deploy time.
    AccessorySpec: Image, host, port, environment, persistent directories and
        an optional readiness command run inside the container.
    ServiceDescriptor: One service. ``dependencies`` are the accessories that
        must be ready before its start command runs.
    Topology: Ordered services of one configuration target plus the merged
        accessory registry. Input order is deployment order.

Architecture Decisions:
    - Pydantic v2 models: descriptors are user input, so they get validation
      and readable error messages; ``model_dump(mode="json")`` feeds the
      fingerprint used for idempotent re-deploys.
    - Accessories may be declared by several descriptors (the API declares
      ``db``, a worker reuses it) as long as every declaration is identical.
    - Fingerprints cover the resolved environment, so rotating a secret value
      redeploys the containers that consume it.

Related Modules:
    - :mod:`rollout.deploy.loader` — builds these models from YAML
    - :mod:`rollout.deploy.routing` — route overlap policy
    - :mod:`rollout.deploy.sequencer` — consumes ``Topology``

Tags:
    descriptor, pydantic, configuration, routing, accessories
"""

from __future__ import annotations

import hashlib
import json
import shlex
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rollout.core.errors import ConfigError
from rollout.core.secrets import SecretValue

_NAME_PATTERN = r"^[a-z0-9][a-z0-9_.-]*$"


def _split_command(value: Any) -> Any:
    if isinstance(value, str):
        return shlex.split(value)
    return value


def _digest(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class RouteRule(BaseModel):
    """How a service is published on the shared ingress."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str
    path_prefix: str | None = None
    tls: bool = True
    app_port: int = Field(default=80, ge=1, le=65535)
    healthcheck_path: str = "/up"

    @field_validator("host")
    @classmethod
    def _normalise_host(cls, value: str) -> str:
        host = value.strip().lower().rstrip(".")
        if not host or any(c in host for c in "/ :"):
            raise ValueError(f"invalid route host {value!r}")
        return host

    @field_validator("path_prefix")
    @classmethod
    def _normalise_prefix(cls, value: str | None) -> str | None:
        if value is None:
            return None
        parts = [p for p in value.strip().split("/") if p]
        if not parts:
            return None
        return "/" + "/".join(parts)

    @property
    def is_root(self) -> bool:
        """True when the rule claims the bare host (no path prefix)."""
        return self.path_prefix is None

    @property
    def segments(self) -> tuple[str, ...]:
        if self.path_prefix is None:
            return ()
        return tuple(self.path_prefix.strip("/").split("/"))

    @property
    def url(self) -> str:
        scheme = "https" if self.tls else "http"
        return f"{scheme}://{self.host}{self.path_prefix or '/'}"

    def matches(self, host: str, path: str) -> bool:
        """Whether a request for ``host`` + ``path`` falls under this rule."""
        if host.strip().lower().rstrip(".") != self.host:
            return False
        if self.is_root:
            return True
        requested = tuple(p for p in path.split("?", 1)[0].split("/") if p)
        return requested[: len(self.segments)] == self.segments

    def overlaps(self, other: RouteRule) -> bool:
        """Two rules overlap when they share a host and neither prefix is disjoint.

        Both roots overlap; a root never overlaps a prefixed rule; two prefixes
        overlap when one equals or nests inside the other segment-wise.
        """
        if self.host != other.host:
            return False
        if self.is_root or other.is_root:
            return self.is_root and other.is_root
        shorter, longer = sorted((self.segments, other.segments), key=len)
        return longer[: len(shorter)] == shorter


# ---------------------------------------------------------------------------
# Environment / registry
# ---------------------------------------------------------------------------


class EnvSpec(BaseModel):
    """Declared environment: plaintext values and secret-sourced names."""

    model_config = ConfigDict(extra="forbid")

    clear: dict[str, str] = Field(default_factory=dict)
    secret: list[str] = Field(default_factory=list)

    @field_validator("clear", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _no_overlap(self) -> EnvSpec:
        both = sorted(set(self.clear) & set(self.secret))
        if both:
            raise ValueError(f"variables declared both clear and secret: {', '.join(both)}")
        return self

    def resolve(self, secrets: Mapping[str, SecretValue]) -> dict[str, str]:
        """Merge plaintext values with resolved secret values."""
        env = dict(self.clear)
        for name in self.secret:
            if name not in secrets:
                raise ConfigError(f"Secret {name!r} was not resolved")
            env[name] = secrets[name].get_secret()
        return env


class RegistryCredentials(BaseModel):
    """Container registry login. The password is referenced by secret name."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    server: str = "docker.io"
    username: str
    password_secret: str = "REGISTRY_PASSWORD"


# ---------------------------------------------------------------------------
# Accessories / services
# ---------------------------------------------------------------------------


class AccessorySpec(BaseModel):
    """A stateful supporting container (database, cache)."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="", pattern=r"^$|" + _NAME_PATTERN)
    image: str
    host: str
    port: int | None = Field(default=None, ge=1, le=65535)
    env: EnvSpec = Field(default_factory=EnvSpec)
    directories: list[str] = Field(default_factory=list)
    command: list[str] | None = None
    readiness: list[str] | None = None
    readiness_attempts: int | None = Field(default=None, ge=1)
    readiness_interval: float | None = Field(default=None, ge=0)

    @field_validator("command", "readiness", mode="before")
    @classmethod
    def _split_commands(cls, value: Any) -> Any:
        return _split_command(value)

    @field_validator("directories")
    @classmethod
    def _check_directories(cls, value: list[str]) -> list[str]:
        for entry in value:
            host_dir, sep, container_dir = entry.partition(":")
            if not sep or not host_dir or not container_dir.startswith("/"):
                raise ValueError(f"directory {entry!r} must be 'host_dir:/container/dir'")
        return value

    def fingerprint(self, env: Mapping[str, str]) -> str:
        return _digest({"spec": self.model_dump(mode="json"), "env": dict(env)})


class ServiceDescriptor(BaseModel):
    """Deployment descriptor for one service."""

    model_config = ConfigDict(extra="forbid")

    service: str = Field(pattern=_NAME_PATTERN)
    image: str
    servers: list[str] = Field(min_length=1)
    command: list[str] | None = None
    route: RouteRule | None = None
    registry: RegistryCredentials | None = None
    env: EnvSpec = Field(default_factory=EnvSpec)
    accessories: dict[str, AccessorySpec] = Field(default_factory=dict)
    depends_on: list[str] | None = None
    volumes: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    source: str | None = Field(default=None, exclude=True)

    @field_validator("command", mode="before")
    @classmethod
    def _split_start_command(cls, value: Any) -> Any:
        return _split_command(value)

    @field_validator("servers", mode="before")
    @classmethod
    def _single_server(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @model_validator(mode="before")
    @classmethod
    def _name_accessories(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and isinstance(data.get("accessories"), Mapping):
            named = {}
            for key, spec in data["accessories"].items():
                if isinstance(spec, Mapping):
                    spec = {**spec, "name": spec.get("name") or key}
                named[key] = spec
            data = {**data, "accessories": named}
        return data

    @model_validator(mode="after")
    def _accessory_keys_match(self) -> ServiceDescriptor:
        for key, spec in self.accessories.items():
            if spec.name != key:
                raise ValueError(f"accessory {key!r} declares name {spec.name!r}")
        return self

    @property
    def dependencies(self) -> list[str]:
        """Accessory names that must be ready before this service starts."""
        if self.depends_on is not None:
            return list(self.depends_on)
        return list(self.accessories)

    def secret_names(self) -> list[str]:
        names = list(self.env.secret)
        if self.registry:
            names.append(self.registry.password_secret)
        return names

    def fingerprint(self, env: Mapping[str, str]) -> str:
        """Digest of the descriptor (minus accessory declarations) and its resolved env."""
        spec = self.model_dump(mode="json", exclude={"accessories"})
        return _digest({"spec": spec, "env": dict(env)})


# ---------------------------------------------------------------------------
# Topology
# ---------------------------------------------------------------------------


class Topology(BaseModel):
    """The services of one configuration target, in deployment order."""

    target: str = Field(pattern=_NAME_PATTERN)
    services: list[ServiceDescriptor] = Field(default_factory=list)
    accessories: dict[str, AccessorySpec] = Field(default_factory=dict)

    @classmethod
    def from_descriptors(
        cls, target: str, descriptors: list[ServiceDescriptor]
    ) -> Topology:
        """Merge descriptors into a topology, checking structural consistency.

        Raises:
            ConfigError: Duplicate service names, conflicting accessory
                declarations, or a dependency on an undeclared accessory.
        """
        accessories: dict[str, AccessorySpec] = {}
        declared_by: dict[str, str] = {}
        seen: set[str] = set()
        for desc in descriptors:
            if desc.service in seen:
                raise ConfigError(f"Service {desc.service!r} is declared twice").with_context(
                    target=target, service=desc.service
                )
            seen.add(desc.service)
            for name, spec in desc.accessories.items():
                existing = accessories.get(name)
                if existing is not None and existing != spec:
                    raise ConfigError(
                        f"Accessory {name!r} is declared differently by "
                        f"{declared_by[name]!r} and {desc.service!r}"
                    ).with_context(target=target, accessory=name)
                accessories.setdefault(name, spec)
                declared_by.setdefault(name, desc.service)

        topology = cls(target=target, services=list(descriptors), accessories=accessories)
        topology.check_dependencies()
        return topology

    def check_dependencies(self) -> None:
        for desc in self.services:
            for dep in desc.dependencies:
                if dep not in self.accessories:
                    raise ConfigError(
                        f"Service {desc.service!r} depends on undeclared accessory {dep!r}"
                    ).with_context(target=self.target, service=desc.service, accessory=dep)

    def service(self, name: str) -> ServiceDescriptor:
        for desc in self.services:
            if desc.service == name:
                return desc
        available = ", ".join(d.service for d in self.services)
        raise ConfigError(f"Unknown service: {name!r}. Available: {available}")

    def scoped(self, name: str) -> Topology:
        """A topology holding only ``name`` and the accessories it depends on."""
        desc = self.service(name)
        return Topology(
            target=self.target,
            services=[desc],
            accessories={dep: self.accessories[dep] for dep in desc.dependencies},
        )

    def dependents(self, accessory: str) -> list[str]:
        return [d.service for d in self.services if accessory in d.dependencies]

    def secret_names(self) -> list[str]:
        names: list[str] = []
        for desc in self.services:
            names.extend(desc.secret_names())
        for spec in self.accessories.values():
            names.extend(spec.env.secret)
        return list(dict.fromkeys(names))


def container_name(target: str, name: str) -> str:
    """Stable container name for a service or accessory of a target."""
    return f"{target}-{name}"
