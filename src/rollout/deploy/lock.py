"""Deploy lock: at most one in-flight deployment per configuration target.

The lock is a JSON file created with ``O_CREAT | O_EXCL`` so that acquisition
is atomic on the operator's filesystem. It records who holds it and why::

    {"target": "shop", "holder": "alice@laptop", "pid": 4242,
     "run_id": "3f9c1a2b4d5e", "message": "deploying 1.4.2",
     "acquired_at": "2026-10-18T09:12:03+00:00"}

An optional TTL lets a crashed deployment's lock be taken over once it is
older than ``ttl_seconds``. Acquisition and release run under an ``flock`` on a
per-target guard file, so a stale takeover and a release never act on a
record that changed underneath them. ``release(force=True)`` removes a lock held by
someone else (the operator's explicit override).
"""

from __future__ import annotations

import getpass
import json
import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from rollout.core.errors import DeployLockError
from rollout.core.locking import exclusive_lock
from rollout.core.logging import get_logger

logger = get_logger(__name__)


def _default_holder() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


class DeployLock:
    """File-based mutual exclusion for one target.

    Example:
        >>> lock = DeployLock(".rollout/locks", "shop")
        >>> with lock.held(message="deploying 1.4.2", run_id="abc"):
        ...     pass  # deploy
    """

    def __init__(
        self,
        lock_dir: str | Path,
        target: str,
        ttl_seconds: int | None = None,
        holder: str | None = None,
    ) -> None:
        self.lock_dir = Path(lock_dir)
        self.target = target
        self.ttl_seconds = ttl_seconds
        self.holder = holder or _default_holder()
        self._record: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self.lock_dir / f"{self.target}.lock"

    @property
    def guard_path(self) -> Path:
        return self.lock_dir / f".{self.target}.guard"

    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any] | None:
        """Return the current lock record, or None when unlocked."""
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError):
            return {"target": self.target, "holder": "unknown", "corrupt": True}

    def is_stale(self, record: dict[str, Any]) -> bool:
        if self.ttl_seconds is None:
            return False
        acquired = record.get("acquired_at")
        if not acquired:
            return True
        try:
            acquired_at = datetime.fromisoformat(acquired)
        except ValueError:
            return True
        return datetime.now(UTC) - acquired_at > timedelta(seconds=self.ttl_seconds)

    def acquire(self, message: str = "", run_id: str | None = None) -> dict[str, Any]:
        """Take the lock or raise ``DeployLockError`` if someone holds it.

        The check for a stale record and its removal happen under the guard
        lock, so two runs cannot both take over the same stale lock.
        """
        record = {
            "target": self.target,
            "holder": self.holder,
            "pid": os.getpid(),
            "run_id": run_id,
            "message": message,
            "acquired_at": datetime.now(UTC).isoformat(),
        }

        with exclusive_lock(self.guard_path):
            existing = self.status()
            if existing is not None:
                if not self.is_stale(existing):
                    raise DeployLockError(self.target, existing)
                logger.warning(
                    "lock.stale_taken_over",
                    target=self.target,
                    previous=existing.get("holder"),
                )
                self.path.unlink(missing_ok=True)
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                raise DeployLockError(self.target, self.status()) from None
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record, fh)

        self._record = record
        logger.info("lock.acquired", target=self.target, holder=self.holder)
        return record

    def release(self, force: bool = False) -> bool:
        """Remove the lock. Returns False if there was nothing to release.

        Without ``force`` only the lock this instance acquired, or one recorded
        under the same holder, is removed. If this instance's lock was taken
        over after going stale, the new holder's lock is left alone.
        """
        with exclusive_lock(self.guard_path):
            record = self.status()
            owned, self._record = self._record, None
            if record is None:
                return False
            if not force:
                if owned is not None:
                    if record != owned:
                        logger.warning(
                            "lock.lost",
                            target=self.target,
                            holder=record.get("holder"),
                        )
                        return False
                elif record.get("holder") != self.holder:
                    raise DeployLockError(self.target, record)
            self.path.unlink(missing_ok=True)
        logger.info("lock.released", target=self.target, forced=force)
        return True

    @contextmanager
    def held(self, message: str = "", run_id: str | None = None) -> Iterator[DeployLock]:
        """Hold the lock for the duration of a ``with`` block."""
        self.acquire(message, run_id)
        try:
            yield self
        finally:
            self.release()
