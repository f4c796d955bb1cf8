"""Per-service operations: setup, deploy, remove, details, logs, exec.

Each operation is scoped to one service descriptor, or to every service of the
target when ``service`` is None. Deploy-type operations go through the
``RolloutSequencer`` with a topology reduced to the service and the
accessories it depends on; the others talk to the runtimes directly.

    ops = ServiceOperations.from_config(RolloutConfig.from_env())
    ops.setup("api")                  # network, registry, accessories, api
    ops.details("api").healthy
    for host, line in ops.logs("api", tail=100):
        print(host, line)
    ops.exec("api", ["bin/rails", "db:migrate"])
    ops.remove("api", accessories=True)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from functools import partial

from rollout.core.errors import ConfigError
from rollout.core.logging import get_logger
from rollout.core.secrets import SecretsResolver
from rollout.deploy.config import RolloutConfig
from rollout.deploy.descriptor import Topology, container_name
from rollout.deploy.domains import Resolver, resolve_addresses
from rollout.deploy.ingress import Ingress
from rollout.deploy.loader import load_topology
from rollout.deploy.lock import DeployLock
from rollout.deploy.log_collector import LogCollector
from rollout.deploy.results import (
    AccessoryOutcome,
    ContainerStatus,
    RolloutResult,
    ServiceAction,
    ServiceDetails,
    ServiceOutcome,
)
from rollout.deploy.runtime import ContainerRuntime, DockerCliRuntime, ExecResult
from rollout.deploy.sequencer import LABEL_FINGERPRINT, RolloutSequencer, RuntimeFactory

logger = get_logger(__name__)


class ServiceOperations:
    """Operations on the services of one target."""

    def __init__(
        self,
        topology: Topology,
        secrets: SecretsResolver,
        runtime_factory: RuntimeFactory,
        config: RolloutConfig | None = None,
        *,
        ingress: Ingress | None = None,
        lock: DeployLock | None = None,
        log_collector: LogCollector | None = None,
        sleep: Callable[[float], None] = time.sleep,
        resolver: Resolver = resolve_addresses,
    ) -> None:
        self.topology = topology
        self.secrets = secrets
        self.config = config or RolloutConfig()
        self.ingress = ingress or Ingress(self.config.ingress_path)
        self.lock = lock or DeployLock(
            self.config.lock_dir, topology.target, ttl_seconds=self.config.lock_ttl_seconds
        )
        self.log_collector = log_collector
        self._runtime_factory = runtime_factory
        self._runtimes: dict[str, ContainerRuntime] = {}
        self._sleep = sleep
        self._resolver = resolver

    @classmethod
    def from_config(cls, config: RolloutConfig) -> ServiceOperations:
        """Wire descriptors, secrets, docker runtimes and state from ``config``."""
        topology = load_topology(config)
        return cls(
            topology,
            SecretsResolver.from_file(config.secrets_file),
            partial(
                DockerCliRuntime,
                ssh_user=config.ssh_user,
                timeout=config.command_timeout_seconds,
            ),
            config,
            log_collector=LogCollector(config.output_dir, config.run_id),
        )

    @property
    def target(self) -> str:
        return self.topology.target

    def runtime(self, host: str) -> ContainerRuntime:
        if host not in self._runtimes:
            self._runtimes[host] = self._runtime_factory(host)
        return self._runtimes[host]

    def scope(self, service: str | None) -> Topology:
        return self.topology if service is None else self.topology.scoped(service)

    def sequencer(self, service: str | None = None) -> RolloutSequencer:
        return RolloutSequencer(
            self.scope(service),
            self.secrets,
            self.runtime,
            self.ingress,
            self.lock,
            self.config,
            log_collector=self.log_collector,
            sleep=self._sleep,
            resolver=self._resolver,
        )

    # ------------------------------------------------------------------
    # Deploy-type operations
    # ------------------------------------------------------------------

    def validate(self, service: str | None = None) -> None:
        self.sequencer(service).validate()

    def deploy(self, service: str | None = None, message: str = "") -> RolloutResult:
        """Run the sequencer for ``service`` (plus its accessories)."""
        return self.sequencer(service).run(message=message)

    def setup(self, service: str | None = None, message: str = "") -> RolloutResult:
        """Initialize target hosts, then deploy.

        Creates the target network on every host the scope touches before
        handing over to the sequencer, which logs in to registries, boots
        accessories and starts the service.
        """
        scope = self.scope(service)
        sequencer = self.sequencer(service)
        sequencer.validate()
        hosts = _hosts(scope)
        for host in hosts:
            self.runtime(host).ensure_network(sequencer.network)
        logger.info("setup.hosts_ready", target=self.target, hosts=hosts)
        return sequencer.run(message=message or "setup")

    def remove(self, service: str | None = None, accessories: bool = False) -> RolloutResult:
        """Tear down service containers and routes.

        With ``accessories``, also remove the accessories of the scope that no
        service outside the scope depends on.
        """
        scope = self.scope(service)
        result = RolloutResult(run_id=self.config.run_id, target=self.target)
        removed_names = {d.service for d in scope.services}

        with self.lock.held(message="remove", run_id=self.config.run_id):
            for desc in scope.services:
                cname = container_name(self.target, desc.service)
                outcome = ServiceOutcome(name=desc.service, hosts=list(desc.servers))
                for host in desc.servers:
                    if self.runtime(host).remove_container(cname):
                        outcome.containers.append(f"{host}/{cname}")
                outcome.route_changed = self.ingress.unregister(cname)
                outcome.action = ServiceAction.REMOVED
                result.services.append(outcome)

            if accessories:
                for name, spec in scope.accessories.items():
                    users = [s for s in self.topology.dependents(name) if s not in removed_names]
                    cname = container_name(self.target, name)
                    acc = AccessoryOutcome(name=name, host=spec.host, container_name=cname)
                    if users:
                        logger.info("accessory.kept", accessory=name, used_by=users)
                        acc.action = ServiceAction.SKIPPED
                    else:
                        self.runtime(spec.host).remove_container(cname)
                        acc.action = ServiceAction.REMOVED
                    result.accessories.append(acc)
        result.mark_complete()

        logger.info("remove.complete", target=self.target, summary=result.summary)
        return result

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def details(self, service: str) -> ServiceDetails:
        """Container state per host, route registration and accessory state."""
        desc = self.topology.service(service)
        cname = container_name(self.target, service)
        details = ServiceDetails(
            service=service,
            target=self.target,
            url=desc.route.url if desc.route else None,
            route_registered=cname in self.ingress.rules(),
        )
        for host in desc.servers:
            details.containers.append(self._status(host, cname))
        for name in desc.dependencies:
            spec = self.topology.accessories[name]
            details.accessories.append(self._status(spec.host, container_name(self.target, name)))
        return details

    def logs(
        self,
        service: str,
        *,
        host: str | None = None,
        tail: int | None = 100,
        follow: bool = False,
    ) -> Iterator[tuple[str, str]]:
        """Yield ``(host, line)`` for the service container on each host."""
        cname = container_name(self.target, service)
        hosts = self._select_hosts(service, host)
        if follow and len(hosts) > 1:
            raise ConfigError(
                f"Following logs needs a single host; pick one of {', '.join(hosts)} with --host"
            )
        for h in hosts:
            for line in self.runtime(h).logs(cname, tail=tail, follow=follow):
                yield h, line

    def exec(
        self, service: str, command: list[str], *, host: str | None = None
    ) -> dict[str, ExecResult]:
        """Run ``command`` in the service container on each host."""
        if not command:
            raise ConfigError("exec needs a command")
        cname = container_name(self.target, service)
        results = {}
        for h in self._select_hosts(service, host):
            results[h] = self.runtime(h).exec(cname, command)
            logger.info("exec.complete", service=service, host=h, exit_code=results[h].exit_code)
        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _select_hosts(self, service: str, host: str | None) -> list[str]:
        servers = list(self.topology.service(service).servers)
        if host is None:
            return servers
        if host not in servers:
            raise ConfigError(f"{service!r} does not run on {host!r}").with_context(
                service=service, host=host
            )
        return [host]

    def _status(self, host: str, name: str) -> ContainerStatus:
        state = self.runtime(host).inspect(name)
        if state is None:
            return ContainerStatus(name=name, host=host)
        return ContainerStatus(
            name=name,
            host=host,
            status=state.status,
            image=state.image,
            health=state.health,
            started_at=state.started_at,
            fingerprint=state.labels.get(LABEL_FINGERPRINT),
        )


def _hosts(topology: Topology) -> list[str]:
    hosts: list[str] = []
    for desc in topology.services:
        hosts.extend(desc.servers)
    hosts.extend(spec.host for spec in topology.accessories.values())
    return list(dict.fromkeys(hosts))
