"""Container runtime adapter for rollout-spine.

The sequencer never talks to Docker directly. It drives a ``ContainerRuntime``
per target host; ``DockerCliRuntime`` implements that interface with the
``docker`` CLI via subprocess, reaching remote hosts through
``docker --host ssh://user@host``.

Key Concepts:
    ContainerRuntime: Abstract interface — ``login()``, ``ensure_network()``,
        ``run_container()``, ``inspect()``, ``probe()``, ``remove_container()``,
        ``logs()``, ``exec()``.
    ContainerSpec: Everything needed for one ``docker run``.
    ContainerState: Inspected state (status, health, labels, image).
    DockerCliRuntime: subprocess implementation, one instance per host.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime exposing a ``docker``
      CLI and with SSH-reachable daemons without extra transports.
    - Label-based tracking: every container gets ``rollout.*`` labels
      (target, role, fingerprint) so state can be inspected without a
      separate database.
    - Environment via ``--env-file``: values are written to a private
      temporary file on the operator machine rather than passed as
      ``--env KEY=VALUE`` arguments visible in process listings.
    - Registry login reads the password from stdin and maps a rejected
      login to ``RegistryAuthError``; every other failure is a
      ``ContainerError``.

Related Modules:
    - :mod:`rollout.deploy.sequencer` — drives runtimes during a rollout
    - :mod:`rollout.deploy.operations` — details / logs / exec / remove

Tags:
    container, docker, subprocess, ssh, lifecycle
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field

from rollout.core.errors import ContainerError, RegistryAuthError
from rollout.core.logging import get_logger
from rollout.core.secrets import SecretValue

logger = get_logger(__name__)

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "local", "::1"})


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass
class ContainerSpec:
    """Arguments for starting one container."""

    name: str
    image: str
    command: list[str] | None = None
    env: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    network: str | None = None
    ports: list[str] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)
    restart: str = "unless-stopped"


@dataclass
class ContainerState:
    """Inspected state of a container on one host."""

    name: str
    status: str
    image: str | None = None
    container_id: str | None = None
    health: str | None = None
    started_at: str | None = None
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.status == "running"


@dataclass
class ExecResult:
    """Outcome of a command run inside a container."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class ContainerRuntime(ABC):
    """Container operations on a single target host."""

    host: str

    @abstractmethod
    def login(self, server: str, username: str, password: SecretValue) -> None:
        """Authenticate against a registry. Raises ``RegistryAuthError``."""

    @abstractmethod
    def ensure_network(self, name: str) -> None:
        """Create a bridge network if it does not exist."""

    @abstractmethod
    def run_container(self, spec: ContainerSpec) -> str:
        """Start a detached container and return its id."""

    @abstractmethod
    def inspect(self, name: str) -> ContainerState | None:
        """Return the container's state, or None if it does not exist."""

    @abstractmethod
    def remove_container(self, name: str) -> bool:
        """Stop and remove a container. Returns False if it did not exist."""

    @abstractmethod
    def exec(self, name: str, command: list[str]) -> ExecResult:
        """Run a command inside a running container."""

    @abstractmethod
    def logs(self, name: str, *, tail: int | None = None, follow: bool = False) -> Iterator[str]:
        """Yield log lines of a container."""

    def probe(self, name: str, command: list[str] | None = None) -> bool:
        """Readiness check: the container runs and ``command`` (if any) exits 0."""
        state = self.inspect(name)
        if state is None or not state.running:
            return False
        if state.health == "unhealthy":
            return False
        if not command:
            return True
        return self.exec(name, command).ok


# ---------------------------------------------------------------------------
# Docker CLI implementation
# ---------------------------------------------------------------------------


class DockerNotFoundError(ContainerError):
    """Raised when the docker CLI is not on PATH."""

    default_retryable = False


class DockerCliRuntime(ContainerRuntime):
    """``ContainerRuntime`` backed by the docker CLI.

    Parameters
    ----------
    host
        Target host. Local names (``localhost``) use the local daemon; anything
        else is reached with ``--host ssh://{ssh_user}@{host}``.
    ssh_user
        SSH user for remote daemons.
    timeout
        Per-command timeout in seconds.

    Example::

        runtime = DockerCliRuntime("203.0.113.10")
        runtime.run_container(ContainerSpec(name="shop-db", image="postgres:16"))
    """

    def __init__(
        self,
        host: str,
        ssh_user: str = "root",
        timeout: int = 600,
        docker_cmd: str | None = None,
    ) -> None:
        self.host = host
        self.ssh_user = ssh_user
        self.timeout = timeout
        self._docker_cmd = docker_cmd or self._find_docker()

    @staticmethod
    def _find_docker() -> str:
        docker = shutil.which("docker")
        if docker is None:
            raise DockerNotFoundError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH."
            )
        return docker

    @staticmethod
    def is_docker_available() -> bool:
        """Check if the docker CLI is installed and the local daemon answers."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run([docker, "info"], capture_output=True, timeout=10)
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    @property
    def base_command(self) -> list[str]:
        if self.host in LOCAL_HOSTS:
            return [self._docker_cmd]
        return [self._docker_cmd, "--host", f"ssh://{self.ssh_user}@{self.host}"]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def login(self, server: str, username: str, password: SecretValue) -> None:
        result = self._run_docker(
            ["login", server, "--username", username, "--password-stdin"],
            check=False,
            input_text=password.get_secret(),
        )
        if result.returncode != 0:
            logger.error("registry.login_failed", server=server, host=self.host)
            raise RegistryAuthError(server, self.host, result.stderr)
        logger.info("registry.login", server=server, host=self.host)

    def ensure_network(self, name: str) -> None:
        result = self._run_docker(["network", "inspect", name], check=False)
        if result.returncode == 0:
            return
        self._run_docker(["network", "create", "--driver", "bridge", name])
        logger.info("network.created", network=name, host=self.host)

    def run_container(self, spec: ContainerSpec) -> str:
        cmd = ["run", "--detach", "--name", spec.name, "--restart", spec.restart]
        if spec.network:
            cmd.extend(["--network", spec.network])
        for key, value in sorted(spec.labels.items()):
            cmd.extend(["--label", f"{key}={value}"])
        for port in spec.ports:
            cmd.extend(["--publish", port])
        for volume in spec.volumes:
            cmd.extend(["--volume", volume])

        env_file = self._write_env_file(spec.env) if spec.env else None
        try:
            if env_file:
                cmd.extend(["--env-file", env_file])
            cmd.append(spec.image)
            if spec.command:
                cmd.extend(spec.command)
            result = self._run_docker(cmd)
        finally:
            if env_file:
                os.unlink(env_file)

        container_id = result.stdout.strip()[:12]
        logger.info("container.started", container=spec.name, image=spec.image, host=self.host)
        return container_id

    def inspect(self, name: str) -> ContainerState | None:
        result = self._run_docker(["inspect", "--type", "container", name], check=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        try:
            data = json.loads(result.stdout)[0]
        except (json.JSONDecodeError, IndexError) as e:
            raise ContainerError(f"Unreadable inspect output for {name}", cause=e) from e

        state = data.get("State") or {}
        config = data.get("Config") or {}
        health = state.get("Health") or {}
        return ContainerState(
            name=name,
            status=state.get("Status", "unknown"),
            image=config.get("Image"),
            container_id=(data.get("Id") or "")[:12] or None,
            health=health.get("Status"),
            started_at=state.get("StartedAt"),
            labels=config.get("Labels") or {},
        )

    def remove_container(self, name: str) -> bool:
        if self.inspect(name) is None:
            return False
        self._run_docker(["stop", "--time", "10", name], check=False)
        self._run_docker(["rm", "--force", name])
        logger.info("container.removed", container=name, host=self.host)
        return True

    def exec(self, name: str, command: list[str]) -> ExecResult:
        result = self._run_docker(["exec", name, *command], check=False)
        return ExecResult(result.returncode, result.stdout, result.stderr)

    def logs(self, name: str, *, tail: int | None = None, follow: bool = False) -> Iterator[str]:
        cmd = ["logs", "--timestamps"]
        if tail is not None:
            cmd.extend(["--tail", str(tail)])
        if not follow:
            result = self._run_docker([*cmd, name], check=False)
            yield from (result.stdout + result.stderr).splitlines()
            return

        proc = subprocess.Popen(
            [*self.base_command, *cmd, "--follow", name],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                yield line.rstrip("\n")
        finally:
            proc.terminate()
            proc.wait(timeout=10)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _write_env_file(env: dict[str, str]) -> str:
        for key, value in env.items():
            if "\n" in value:
                raise ContainerError(f"Environment value for {key} contains a newline")
        fd, path = tempfile.mkstemp(prefix="rollout-env-", text=True)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            for key, value in sorted(env.items()):
                fh.write(f"{key}={value}\n")
        return path

    def _run_docker(
        self,
        args: list[str],
        check: bool = True,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker CLI command against this runtime's host."""
        cmd = [*self.base_command, *args]
        logger.debug("docker.exec", host=self.host, args=args[:3])
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                input=input_text,
            )
        except subprocess.TimeoutExpired as exc:
            raise ContainerError(
                f"Docker command timed out after {self.timeout}s on {self.host}: {' '.join(args[:3])}",
                cause=exc,
            ).with_context(host=self.host) from exc
        except OSError as exc:
            raise ContainerError(
                f"Could not run docker on {self.host}: {exc}", cause=exc
            ).with_context(host=self.host) from exc

        if check and result.returncode != 0:
            raise ContainerError(
                f"Docker command failed on {self.host} (exit {result.returncode}): "
                f"{' '.join(args[:3])}\n{result.stderr.strip()}"
            ).with_context(host=self.host)
        return result
