"""``rollout init``: example configuration for a new project.

Writes the classic four-piece topology into ``config/``: an API backend under
``/api`` with a database and a cache accessory, and a frontend on the bare
host. Also writes the secrets template next to the (never committed) secrets
file and a ``.gitignore`` entry for the state directory.

Existing files are left alone unless ``force=True``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from rollout.core.logging import get_logger
from rollout.core.secrets import render_secrets_template
from rollout.deploy.loader import MANIFEST_NAME, default_target

logger = get_logger(__name__)

EXAMPLE_SECRETS = ["REGISTRY_PASSWORD", "POSTGRES_PASSWORD", "DATABASE_URL", "SECRET_KEY_BASE"]


def example_descriptors(
    target: str = "app",
    domain: str = "app.example.com",
    server: str = "203.0.113.10",
    registry_user: str = "deployer",
) -> dict[str, dict[str, Any]]:
    """File name -> descriptor mapping for the example topology."""
    registry = {"server": "ghcr.io", "username": registry_user}
    api = {
        "service": "api",
        "image": f"ghcr.io/{registry_user}/api:latest",
        "servers": [server],
        "command": "bin/server --port 3000",
        "route": {"host": domain, "path_prefix": "/api", "app_port": 3000},
        "registry": registry,
        "env": {
            "clear": {
                "APP_ENV": "production",
                "REDIS_URL": f"redis://{target}-redis:6379/0",
            },
            "secret": ["DATABASE_URL", "SECRET_KEY_BASE"],
        },
        "accessories": {
            "db": {
                "image": "postgres:16",
                "host": server,
                "port": 5432,
                "env": {"clear": {"POSTGRES_USER": "app"}, "secret": ["POSTGRES_PASSWORD"]},
                "directories": [f"{target}-db-data:/var/lib/postgresql/data"],
                "readiness": "pg_isready -U app",
            },
            "redis": {
                "image": "redis:7",
                "host": server,
                "port": 6379,
                "directories": [f"{target}-redis-data:/data"],
                "readiness": "redis-cli ping",
            },
        },
    }
    web = {
        "service": "web",
        "image": f"ghcr.io/{registry_user}/web:latest",
        "servers": [server],
        "route": {"host": domain, "app_port": 80},
        "registry": registry,
        "env": {"clear": {"API_URL": f"https://{domain}/api"}},
        "depends_on": [],
    }
    return {"deploy.api.yml": api, "deploy.web.yml": web}


def write_file(path: Path, content: str, force: bool) -> bool:
    if path.exists() and not force:
        logger.info("init.exists", path=str(path))
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("init.written", path=str(path))
    return True


def scaffold(
    root: str | Path = ".",
    *,
    target: str | None = None,
    domain: str = "app.example.com",
    server: str = "203.0.113.10",
    force: bool = False,
) -> list[Path]:
    """Write the example configuration under ``root``; return written files."""
    root = Path(root)
    config_dir = root / "config"
    descriptors = example_descriptors(
        target or default_target(config_dir), domain=domain, server=server
    )

    files: dict[Path, str] = {}
    manifest: dict[str, Any] = {"services": list(descriptors)}
    if target:
        manifest = {"target": target, **manifest}
    files[config_dir / MANIFEST_NAME] = yaml.dump(manifest, sort_keys=False)
    for name, data in descriptors.items():
        files[config_dir / name] = yaml.dump(data, sort_keys=False)
    files[root / ".rollout" / "secrets.example"] = render_secrets_template(
        EXAMPLE_SECRETS,
        header="Copy to .rollout/secrets and fill in. Never commit the real file.",
    )
    files[root / ".rollout" / ".gitignore"] = "*\n!.gitignore\n!secrets.example\n"

    return [path for path, content in files.items() if write_file(path, content, force)]
