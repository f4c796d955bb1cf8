"""Advisory file locks for state shared between concurrent ``rollout`` runs.

``exclusive_lock`` takes a blocking ``flock`` on a sidecar file. The kernel
drops the lock when the holding process exits, so a crashed run never leaves
it behind. POSIX only.
"""

from __future__ import annotations

import fcntl
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


@contextmanager
def exclusive_lock(path: str | Path) -> Iterator[None]:
    """Hold an exclusive lock on ``path`` for the duration of the block.

    Example:
        >>> with exclusive_lock(".rollout/ingress.json.lock"):
        ...     pass  # read, modify, write
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as fh:
        fcntl.flock(fh, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)
