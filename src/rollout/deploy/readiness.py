"""Bounded readiness polling for accessories.

Unlike the backoff used for ad-hoc container health waits, accessory
readiness uses a fixed interval and a fixed number of attempts so that the
worst-case wait is ``attempts * interval`` and easy to reason about from the
descriptor.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from rollout.core.errors import DependencyTimeout
from rollout.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ATTEMPTS = 30
DEFAULT_INTERVAL = 2.0


def poll_until_ready(
    probe: Callable[[], bool],
    *,
    name: str,
    attempts: int = DEFAULT_ATTEMPTS,
    interval: float = DEFAULT_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Call ``probe`` until it returns True, at most ``attempts`` times.

    A probe that raises counts as "not ready". No sleep follows the final
    attempt.

    Returns
    -------
    int
        The attempt (1-based) on which the probe succeeded.

    Raises
    ------
    DependencyTimeout
        If the probe never succeeded within ``attempts`` calls.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            ready = probe()
        except Exception as e:
            logger.debug("readiness.probe_error", accessory=name, attempt=attempt, error=str(e))
            ready = False

        if ready:
            logger.info("accessory.ready", accessory=name, attempts=attempt)
            return attempt

        logger.debug("readiness.waiting", accessory=name, attempt=attempt, of=attempts)
        if attempt < attempts:
            sleep(interval)

    logger.error("accessory.timeout", accessory=name, attempts=attempts, interval=interval)
    raise DependencyTimeout(name, attempts, interval)
