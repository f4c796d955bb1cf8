"""Rollout sequencer for rollout-spine.

Coordinates one rollout of a ``Topology``: validation → domain check →
deploy lock → registry login → accessories + services in input order →
route registration → summary.

Key Concepts:
    RolloutSequencer: Topology + secrets + runtime factory + ingress + lock →
        ``RolloutResult``. ``validate()`` runs every configuration check and
        can be used on its own (``rollout validate``); ``run()`` validates
        first, so nothing is started from an invalid configuration.
    Accessories: Started at most once per rollout, just before the first
        service that depends on them, and polled until ready. Later services
        reuse the ready accessory.
    Fingerprint labels: Every container carries ``rollout.fingerprint``. A
        running container with the expected fingerprint is left alone, which
        makes a repeated rollout of an unchanged topology a no-op.

Architecture Decisions:
    - Fail fast before side effects: route conflicts, unknown accessories and
      missing secrets raise from ``validate()``; a rejected registry login
      raises before any container is touched.
    - Stop at the first failing service and keep what already runs. The
      failure is recorded on the result (``failed_service``, ``error``) and
      later services are marked ``skipped``; nothing is rolled back.
    - The deploy lock is released and ``mark_complete()`` is called in
      ``finally``, also on Ctrl-C.

Related Modules:
    - :mod:`rollout.deploy.descriptor` — Topology consumed here
    - :mod:`rollout.deploy.readiness` — bounded accessory polling
    - :mod:`rollout.deploy.runtime` — ContainerRuntime driven per host
    - :mod:`rollout.deploy.operations` — per-service entry points

Tags:
    sequencer, orchestration, rollout, accessories, idempotence
"""

from __future__ import annotations

import time
from collections.abc import Callable

from rollout.core.errors import DependencyTimeout, RolloutError
from rollout.core.logging import LogContext, get_logger
from rollout.core.secrets import SecretsResolver, SecretValue
from rollout.deploy.config import RolloutConfig
from rollout.deploy.descriptor import AccessorySpec, ServiceDescriptor, Topology, container_name
from rollout.deploy.domains import Resolver, check_domains, resolve_addresses
from rollout.deploy.ingress import Ingress
from rollout.deploy.lock import DeployLock
from rollout.deploy.log_collector import LogCollector
from rollout.deploy.readiness import poll_until_ready
from rollout.deploy.results import (
    AccessoryOutcome,
    RolloutResult,
    ServiceAction,
    ServiceOutcome,
)
from rollout.deploy.routing import validate_routes
from rollout.deploy.runtime import ContainerRuntime, ContainerSpec

logger = get_logger(__name__)

RuntimeFactory = Callable[[str], ContainerRuntime]

LABEL_TARGET = "rollout.target"
LABEL_ROLE = "rollout.role"
LABEL_NAME = "rollout.name"
LABEL_FINGERPRINT = "rollout.fingerprint"


def upstream(server: str, name: str, port: int) -> str:
    """Ingress upstream address for a container on ``server``."""
    return f"{server}/{name}:{port}"


class RolloutSequencer:
    """Ordered, idempotent rollout of the services of one target.

    Parameters
    ----------
    topology
        Services in deployment order plus their accessories.
    secrets
        Resolver for every secret name the topology declares.
    runtime_factory
        Returns the ``ContainerRuntime`` for a host; called once per host.
    ingress
        Shared route table.
    lock
        Deploy lock of the target.
    config
        Readiness bounds, network name, domain check toggle.
    log_collector
        Optional; receives the summary and failed-service logs.
    sleep / resolver
        Injected for tests (readiness interval, DNS).

    Example::

        sequencer = RolloutSequencer(topology, secrets, DockerCliRuntime, ingress, lock)
        result = sequencer.run()
        print(result.summary)
    """

    def __init__(
        self,
        topology: Topology,
        secrets: SecretsResolver,
        runtime_factory: RuntimeFactory,
        ingress: Ingress,
        lock: DeployLock,
        config: RolloutConfig | None = None,
        *,
        log_collector: LogCollector | None = None,
        sleep: Callable[[float], None] = time.sleep,
        resolver: Resolver = resolve_addresses,
    ) -> None:
        self.topology = topology
        self.secrets = secrets
        self.runtime_factory = runtime_factory
        self.ingress = ingress
        self.lock = lock
        self.config = config or RolloutConfig()
        self.log_collector = log_collector
        self._sleep = sleep
        self._resolver = resolver
        self._runtimes: dict[str, ContainerRuntime] = {}
        self._resolved: dict[str, SecretValue] = {}
        self._accessories: dict[str, AccessoryOutcome] = {}

    @property
    def target(self) -> str:
        return self.topology.target

    @property
    def network(self) -> str:
        return self.config.network_name(self.target)

    def runtime(self, host: str) -> ContainerRuntime:
        if host not in self._runtimes:
            self._runtimes[host] = self.runtime_factory(host)
        return self._runtimes[host]

    def route_key(self, service: str) -> str:
        """Ingress key of a service; unique across targets."""
        return container_name(self.target, service)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> dict[str, SecretValue]:
        """Run every check that must pass before a container starts.

        Returns the resolved secrets.

        Raises:
            ConfigError: Unknown accessory or duplicate service.
            RouteConflict: Overlapping routes, within the topology or
                against routes other targets have registered.
            MissingSecretError: A declared secret has no value.
        """
        self.topology.check_dependencies()

        own = {self.route_key(d.service) for d in self.topology.services}
        existing = {k: v for k, v in self.ingress.rules().items() if k not in own}
        validate_routes(self.topology.services, existing)

        self._resolved = self.secrets.resolve_many(self.topology.secret_names())
        logger.info(
            "rollout.validated",
            target=self.target,
            services=len(self.topology.services),
            accessories=len(self.topology.accessories),
        )
        return self._resolved

    # ------------------------------------------------------------------
    # Rollout
    # ------------------------------------------------------------------

    def run(self, message: str = "") -> RolloutResult:
        """Execute the rollout.

        Configuration, lock and registry login failures raise. Failures
        while sequencing services are recorded on the returned result.
        """
        result = RolloutResult(run_id=self.config.run_id, target=self.target)
        result.services = [ServiceOutcome(name=d.service) for d in self.topology.services]

        with LogContext(run_id=self.config.run_id, target=self.target):
            self.validate()

            if self.config.check_domains:
                for mismatch in check_domains(self.topology.services, self._resolver):
                    result.warnings.append(mismatch.message)

            try:
                with self.lock.held(message=message, run_id=self.config.run_id):
                    logger.info("rollout.started", services=len(self.topology.services))
                    self._login_registries()
                    self._sequence(result)
            except RolloutError as e:
                result.error = str(e)
                result.error_detail = e.to_dict()
                raise
            finally:
                result.accessories = list(self._accessories.values())
                result.mark_complete()
                if self.log_collector is not None:
                    self.log_collector.write_summary(result)

            logger.info(
                "rollout.complete",
                status=result.overall_status.value,
                summary=result.summary,
            )
        return result

    def _login_registries(self) -> None:
        done: set[tuple[str, str, str]] = set()
        for desc in self.topology.services:
            if desc.registry is None:
                continue
            password = self._resolved[desc.registry.password_secret]
            for host in desc.servers:
                key = (host, desc.registry.server, desc.registry.username)
                if key in done:
                    continue
                self.runtime(host).login(desc.registry.server, desc.registry.username, password)
                done.add(key)

    def _sequence(self, result: RolloutResult) -> None:
        for index, desc in enumerate(self.topology.services):
            outcome = result.services[index]
            try:
                for name in desc.dependencies:
                    self._ensure_accessory(name)
                self._deploy_service(desc, outcome)
            except RolloutError as e:
                outcome.action = ServiceAction.FAILED
                outcome.error = str(e)
                outcome.error_type = type(e).__name__
                result.failed_service = desc.service
                result.error = f"{desc.service}: {e}"
                result.error_detail = e.with_context(service=desc.service).to_dict()
                logger.error("service.failed", service=desc.service, error=str(e))
                for later in result.services[index + 1:]:
                    later.action = ServiceAction.SKIPPED
                    logger.warning("service.skipped", service=later.name)
                self._capture_logs(desc)
                if isinstance(e, DependencyTimeout):
                    self._capture_accessory_logs(e.accessory)
                return

    # ------------------------------------------------------------------
    # Accessories
    # ------------------------------------------------------------------

    def _ensure_accessory(self, name: str) -> AccessoryOutcome:
        if name in self._accessories:
            return self._accessories[name]

        spec = self.topology.accessories[name]
        cname = container_name(self.target, name)
        outcome = AccessoryOutcome(name=name, host=spec.host, container_name=cname)
        self._accessories[name] = outcome

        runtime = self.runtime(spec.host)
        env = spec.env.resolve(self._resolved)
        fingerprint = spec.fingerprint(env)
        try:
            if self._is_current(runtime, cname, fingerprint):
                outcome.action = ServiceAction.UNCHANGED
                logger.info("accessory.unchanged", accessory=name, host=spec.host)
            else:
                runtime.remove_container(cname)
                runtime.run_container(self._accessory_container(spec, cname, env, fingerprint))
                outcome.action = ServiceAction.STARTED
                logger.info("accessory.started", accessory=name, host=spec.host)

            outcome.ready_after_attempts = poll_until_ready(
                lambda: runtime.probe(cname, spec.readiness),
                name=name,
                attempts=spec.readiness_attempts or self.config.readiness_attempts,
                interval=(
                    spec.readiness_interval
                    if spec.readiness_interval is not None
                    else self.config.readiness_interval_seconds
                ),
                sleep=self._sleep,
            )
        except RolloutError as e:
            outcome.action = ServiceAction.FAILED
            outcome.error = str(e)
            e.with_context(accessory=name, host=spec.host)
            raise
        return outcome

    def _accessory_container(
        self, spec: AccessorySpec, cname: str, env: dict[str, str], fingerprint: str
    ) -> ContainerSpec:
        return ContainerSpec(
            name=cname,
            image=spec.image,
            command=spec.command,
            env=env,
            labels=self._labels("accessory", spec.name, fingerprint),
            network=self.network,
            ports=[f"{spec.port}:{spec.port}"] if spec.port else [],
            volumes=list(spec.directories),
        )

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def _deploy_service(self, desc: ServiceDescriptor, outcome: ServiceOutcome) -> None:
        cname = container_name(self.target, desc.service)
        env = desc.env.resolve(self._resolved)
        fingerprint = desc.fingerprint(env)
        outcome.fingerprint = fingerprint
        outcome.hosts = list(desc.servers)

        started = False
        for host in desc.servers:
            runtime = self.runtime(host)
            try:
                if self._is_current(runtime, cname, fingerprint):
                    logger.info("service.unchanged", service=desc.service, host=host)
                else:
                    runtime.remove_container(cname)
                    runtime.run_container(
                        ContainerSpec(
                            name=cname,
                            image=desc.image,
                            command=desc.command,
                            env=env,
                            labels={
                                **desc.labels,
                                **self._labels("service", desc.service, fingerprint),
                            },
                            network=self.network,
                            volumes=list(desc.volumes),
                        )
                    )
                    started = True
                    logger.info("service.started", service=desc.service, host=host)
            except RolloutError as e:
                e.with_context(host=host)
                raise
            outcome.containers.append(f"{host}/{cname}")

        if desc.route is not None:
            upstreams = [upstream(h, cname, desc.route.app_port) for h in desc.servers]
            outcome.route_changed = self.ingress.register(
                self.route_key(desc.service), desc.route, upstreams
            )
            outcome.url = desc.route.url

        outcome.action = ServiceAction.STARTED if started else ServiceAction.UNCHANGED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _labels(self, role: str, name: str, fingerprint: str) -> dict[str, str]:
        return {
            LABEL_TARGET: self.target,
            LABEL_ROLE: role,
            LABEL_NAME: name,
            LABEL_FINGERPRINT: fingerprint,
        }

    @staticmethod
    def _is_current(runtime: ContainerRuntime, name: str, fingerprint: str) -> bool:
        state = runtime.inspect(name)
        return (
            state is not None
            and state.running
            and state.labels.get(LABEL_FINGERPRINT) == fingerprint
        )

    def _capture_logs(self, desc: ServiceDescriptor) -> None:
        if self.log_collector is None:
            return
        cname = container_name(self.target, desc.service)
        for host in desc.servers:
            self.log_collector.capture_service_logs(self.runtime(host), cname, desc.service)

    def _capture_accessory_logs(self, name: str) -> None:
        if self.log_collector is None:
            return
        spec = self.topology.accessories[name]
        self.log_collector.capture_service_logs(
            self.runtime(spec.host), container_name(self.target, name), name
        )
