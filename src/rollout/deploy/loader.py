"""Load deployment descriptors from YAML.

Layout::

    config/
    ├── rollout.yml                # optional: target name + service order
    ├── deploy.api.yml             # one descriptor per service
    ├── deploy.api.staging.yml     # optional destination overlay
    └── deploy.web.yml

``rollout.yml`` fixes the deployment order::

    target: shop
    services:
      - deploy.api.yml
      - deploy.web.yml

Without it, every ``deploy.<service>.yml`` is loaded in file-name order and
the target is named after the directory holding ``config/``. With a
destination, ``deploy.<service>.<destination>.yml`` is deep-merged over the
base file (overlay wins; lists are replaced, not concatenated).
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from rollout.core.errors import ConfigError
from rollout.core.logging import get_logger
from rollout.deploy.config import RolloutConfig
from rollout.deploy.descriptor import ServiceDescriptor, Topology

logger = get_logger(__name__)

MANIFEST_NAME = "rollout.yml"
_DESCRIPTOR_RE = re.compile(r"^deploy\.([a-z0-9][a-z0-9_-]*)\.ya?ml$")


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overlay`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Descriptor not found: {path}", cause=e) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", cause=e) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return data


def overlay_path(path: Path, destination: str) -> Path:
    return path.with_name(f"{path.stem}.{destination}{path.suffix}")


def _format_validation_error(path: Path, error: ValidationError) -> str:
    lines = [f"Invalid descriptor {path}:"]
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "(root)"
        lines.append(f"  {location}: {item['msg']}")
    return "\n".join(lines)


def load_descriptor(path: str | Path, destination: str | None = None) -> ServiceDescriptor:
    """Load one descriptor, applying the destination overlay if present."""
    path = Path(path)
    data = _read_yaml(path)
    if destination:
        overlay = overlay_path(path, destination)
        if overlay.exists():
            data = deep_merge(data, _read_yaml(overlay))
            logger.debug("descriptor.overlay", path=str(overlay))
    try:
        return ServiceDescriptor.model_validate({**data, "source": str(path)})
    except ValidationError as e:
        raise ConfigError(_format_validation_error(path, e), cause=e) from e


def discover_descriptor_files(config_dir: Path) -> tuple[str | None, list[Path]]:
    """Return (target from manifest or None, descriptor files in order)."""
    manifest = config_dir / MANIFEST_NAME
    if manifest.exists():
        data = _read_yaml(manifest)
        entries = data.get("services") or []
        if not isinstance(entries, list) or not all(isinstance(e, str) for e in entries):
            raise ConfigError(f"{manifest}: 'services' must be a list of file names")
        return data.get("target"), [config_dir / entry for entry in entries]

    files = sorted(p for p in config_dir.glob("deploy.*.y*ml") if _DESCRIPTOR_RE.match(p.name))
    return None, files


def default_target(config_dir: Path) -> str:
    name = config_dir.resolve().parent.name.lower()
    name = re.sub(r"[^a-z0-9_.-]+", "-", name).strip("-.") or "default"
    return name


def load_topology(config: RolloutConfig) -> Topology:
    """Build the ``Topology`` described by ``config``.

    Raises:
        ConfigError: No descriptors found, invalid YAML or descriptor, or
            structural problems (duplicates, unknown accessories).
    """
    manifest_target = None
    files = list(config.config_files)
    if not files:
        manifest_target, files = discover_descriptor_files(config.config_dir)
    if not files:
        raise ConfigError(f"No deployment descriptors found in {config.config_dir}")

    descriptors = [load_descriptor(path, config.destination) for path in files]
    target = config.target or manifest_target or default_target(config.config_dir)
    if config.destination and not config.target:
        target = f"{target}-{config.destination}"

    logger.debug("topology.loaded", target=target, services=[d.service for d in descriptors])
    try:
        return Topology.from_descriptors(target, descriptors)
    except ValidationError as e:
        raise ConfigError(f"Invalid target name {target!r}", cause=e) from e
