"""Configuration model for rollout-spine.

``RolloutConfig`` controls where descriptors, secrets and state live and how
patient the sequencer is. Every field can be overridden through
``ROLLOUT_*`` environment variables via ``from_env()``, so CI jobs can set
``ROLLOUT_DESTINATION=staging`` or ``ROLLOUT_READINESS_ATTEMPTS=60`` without
touching code.

Override precedence: kwargs > env vars > field defaults.

Tags:
    config, settings, pydantic, environment
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator


class RolloutConfig(BaseModel):
    """Configuration for one rollout or service operation.

    Example::

        config = RolloutConfig(
            config_files=[Path("config/deploy.api.yml"), Path("config/deploy.web.yml")],
            destination="staging",
        )
    """

    # What to deploy
    config_files: list[Path] = Field(
        default_factory=list,
        description="Descriptor files, in deployment order (default: config/deploy.*.yml)",
    )
    config_dir: Path = Field(
        default=Path("config"),
        description="Directory searched when config_files is empty",
    )
    target: str | None = Field(
        default=None,
        description="Configuration target name (default: config directory's parent name)",
    )
    destination: str | None = Field(
        default=None,
        description="Overlay suffix: deploy.api.yml + deploy.api.<destination>.yml",
    )

    # Secrets and state
    secrets_file: Path = Field(
        default=Path(".rollout/secrets"),
        description="KEY=VALUE secrets file (never committed)",
    )
    state_dir: Path = Field(
        default=Path(".rollout"),
        description="Directory for the ingress table and deploy locks",
    )
    output_dir: Path = Field(
        default=Path("rollout-results"),
        description="Directory for rollout summaries and captured logs",
    )

    # Sequencing
    readiness_attempts: int = Field(default=30, ge=1, description="Accessory readiness polls")
    readiness_interval_seconds: float = Field(
        default=2.0, ge=0, description="Fixed interval between readiness polls"
    )
    lock_ttl_seconds: int | None = Field(
        default=None,
        description="Age after which a deploy lock counts as stale (None = never)",
    )
    check_domains: bool = Field(default=True, description="Warn on route host DNS mismatch")

    # Runtime
    ssh_user: str = Field(default="root", description="SSH user for remote docker hosts")
    command_timeout_seconds: int = Field(default=600, description="Per docker command timeout")
    network: str | None = Field(
        default=None, description="Docker network name (default: <target>-net)"
    )

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> RolloutConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @property
    def lock_dir(self) -> Path:
        return self.state_dir / "locks"

    @property
    def ingress_path(self) -> Path:
        return self.state_dir / "ingress.json"

    def network_name(self, target: str) -> str:
        return self.network or f"{target}-net"

    @classmethod
    def from_env(cls, **overrides: Any) -> RolloutConfig:
        """Create config from ROLLOUT_* environment variables."""
        env_map = {
            "config_files": "ROLLOUT_CONFIG_FILES",
            "config_dir": "ROLLOUT_CONFIG_DIR",
            "target": "ROLLOUT_TARGET",
            "destination": "ROLLOUT_DESTINATION",
            "secrets_file": "ROLLOUT_SECRETS_FILE",
            "state_dir": "ROLLOUT_STATE_DIR",
            "output_dir": "ROLLOUT_OUTPUT_DIR",
            "readiness_attempts": "ROLLOUT_READINESS_ATTEMPTS",
            "readiness_interval_seconds": "ROLLOUT_READINESS_INTERVAL",
            "lock_ttl_seconds": "ROLLOUT_LOCK_TTL",
            "check_domains": "ROLLOUT_CHECK_DOMAINS",
            "ssh_user": "ROLLOUT_SSH_USER",
            "command_timeout_seconds": "ROLLOUT_COMMAND_TIMEOUT",
            "network": "ROLLOUT_NETWORK",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is None:
                continue
            if field_name == "config_files":
                values[field_name] = [Path(f.strip()) for f in env_val.split(",") if f.strip()]
            elif field_name in ("readiness_attempts", "lock_ttl_seconds", "command_timeout_seconds"):
                values[field_name] = int(env_val)
            elif field_name == "readiness_interval_seconds":
                values[field_name] = float(env_val)
            elif field_name == "check_domains":
                values[field_name] = env_val.lower() in ("true", "1", "yes")
            else:
                values[field_name] = env_val
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
