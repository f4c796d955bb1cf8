"""Secrets file parsing and resolution.

The secrets file is the only place secret values live. It is newline-delimited
``KEY=VALUE`` text, one value per declared secret name, and is never committed
to version control (only its ``.example`` template is)::

    # .rollout/secrets
    REGISTRY_PASSWORD=ghp_xxx
    DATABASE_URL=postgres://app:${POSTGRES_PASSWORD}@db:5432/app
    POSTGRES_PASSWORD="s3cr3t"

Parsing rules:
    - Blank lines and lines starting with ``#`` are ignored.
    - The line is split on the first ``=``; the key must be a valid
      environment variable name.
    - One pair of matching surrounding quotes is stripped from the value.
    - ``$NAME`` and ``${NAME}`` are expanded from keys defined earlier in the
      file, then from the process environment; unknown names are left as-is.
    - A repeated key overrides the earlier value (a warning is logged).

Resolution tries backends in order: the secrets file, then the environment.
Resolved values are wrapped in ``SecretValue`` so they never leak through
``str()``/``repr()`` into logs or results.

Tags:
    secrets, credentials, dotenv, redaction
"""

from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from rollout.core.errors import MissingSecretError, SecretsFormatError
from rollout.core.logging import get_logger

logger = get_logger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_VAR_RE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")


# ---------------------------------------------------------------------------
# SecretValue wrapper
# ---------------------------------------------------------------------------


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    Example:
        >>> secret = SecretValue("my_password")
        >>> str(secret)
        '[REDACTED]'
        >>> secret.get_secret()
        'my_password'
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return "SecretValue('[REDACTED]')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _expand(value: str, known: dict[str, str]) -> str:
    def replace(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        if name in known:
            return known[name]
        return os.environ.get(name, match.group(0))

    return _VAR_RE.sub(replace, value)


def parse_secrets(text: str, source: str = "<secrets>") -> dict[str, str]:
    """Parse secrets-file text into a ``{KEY: VALUE}`` mapping.

    Raises:
        SecretsFormatError: On a non-blank, non-comment line that is not
            ``KEY=VALUE`` or whose key is not a valid variable name.
    """
    values: dict[str, str] = {}
    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            raise SecretsFormatError(source, line_no, "expected KEY=VALUE")
        key, value = line.split("=", 1)
        key = key.strip()
        if not _KEY_RE.match(key):
            raise SecretsFormatError(source, line_no, f"invalid key {key!r}")
        if key in values:
            logger.warning("secrets.duplicate_key", key=key, line=line_no, source=source)
        stripped = value.strip()
        value = _unquote(stripped)
        quoted_single = stripped.startswith("'") and value != stripped
        values[key] = value if quoted_single else _expand(value, values)
    return values


def load_secrets_file(path: str | Path) -> dict[str, str]:
    """Read and parse a secrets file. A missing file yields an empty mapping."""
    path = Path(path)
    if not path.exists():
        logger.debug("secrets.file_missing", path=str(path))
        return {}
    return parse_secrets(path.read_text(encoding="utf-8"), source=str(path))


# ---------------------------------------------------------------------------
# Secret backends
# ---------------------------------------------------------------------------


class SecretBackend(ABC):
    """Abstract base for secret backends."""

    name: str = "backend"

    @abstractmethod
    def get(self, name: str) -> str | None:
        """Retrieve a secret by name, or None if this backend lacks it."""
        ...

    def contains(self, name: str) -> bool:
        return self.get(name) is not None


class SecretsFileBackend(SecretBackend):
    """Resolve secrets from a ``KEY=VALUE`` secrets file.

    The file is read lazily on first lookup and cached.
    """

    name = "file"

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._values: dict[str, str] | None = None

    @property
    def values(self) -> dict[str, str]:
        if self._values is None:
            self._values = load_secrets_file(self.path)
        return self._values

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    def reload(self) -> None:
        """Drop the cached file contents."""
        self._values = None


class EnvSecretBackend(SecretBackend):
    """Resolve secrets from environment variables.

    Tries ``{KEY}`` first, then ``ROLLOUT_SECRET_{KEY}``.
    """

    name = "env"

    def get(self, name: str) -> str | None:
        for candidate in (name, f"ROLLOUT_SECRET_{name}"):
            value = os.environ.get(candidate)
            if value is not None:
                return value
        return None


class DictSecretBackend(SecretBackend):
    """In-memory secret backend for testing."""

    name = "dict"

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets) if secrets else {}

    def get(self, name: str) -> str | None:
        return self._secrets.get(name)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class SecretsResolver:
    """Multi-backend secrets resolver.

    Resolves secrets by trying backends in order until one succeeds.
    """

    def __init__(self, backends: list[SecretBackend] | None = None):
        self._backends: list[SecretBackend] = list(backends) if backends is not None else []

    @classmethod
    def from_file(cls, path: str | Path, *, use_env: bool = True) -> SecretsResolver:
        """Resolver reading ``path`` first and the environment second."""
        backends: list[SecretBackend] = [SecretsFileBackend(path)]
        if use_env:
            backends.append(EnvSecretBackend())
        return cls(backends)

    @property
    def backend_names(self) -> list[str]:
        return [b.name for b in self._backends]

    def get(self, key: str) -> SecretValue | None:
        """First non-empty value across backends. A bare ``KEY=`` counts as unset."""
        for backend in self._backends:
            value = backend.get(key)
            if value:
                return SecretValue(value)
        return None

    def missing(self, names: Iterable[str]) -> list[str]:
        """Return the names (in input order, deduplicated) with no value."""
        seen: set[str] = set()
        result = []
        for name in names:
            if name in seen:
                continue
            seen.add(name)
            if self.get(name) is None:
                result.append(name)
        return result

    def resolve_many(self, names: Iterable[str]) -> dict[str, SecretValue]:
        """Resolve every name or raise one ``MissingSecretError`` listing all gaps."""
        names = list(names)
        missing = self.missing(names)
        if missing:
            raise MissingSecretError(missing, self.backend_names)
        return {name: self.get(name) for name in names}  # type: ignore[misc]


def render_secrets_template(names: Iterable[str], header: str | None = None) -> str:
    """Render a secrets template: one ``NAME=`` line per unique name."""
    lines = []
    if header:
        lines.extend(f"# {line}" if line else "#" for line in header.splitlines())
    seen: set[str] = set()
    for name in names:
        if name not in seen:
            seen.add(name)
            lines.append(f"{name}=")
    return "\n".join(lines) + "\n"


__all__ = [
    "DictSecretBackend",
    "EnvSecretBackend",
    "SecretBackend",
    "SecretValue",
    "SecretsFileBackend",
    "SecretsResolver",
    "load_secrets_file",
    "parse_secrets",
    "render_secrets_template",
]
