"""Per-channel thread fan-out used by the spatial layers.

Each call to ``parallel_for`` starts a short-lived pool, runs one job per
index and waits for all of them before returning. Jobs must write disjoint
regions of any shared buffer.
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

WORKERS_ENV_VAR = "CLEAR_CONVNET_WORKERS"

_max_workers: Optional[int] = None


def get_max_workers() -> int:
    """Returns the worker count, read from ``CLEAR_CONVNET_WORKERS`` unless set explicitly."""
    if _max_workers is not None:
        return _max_workers
    value = os.environ.get(WORKERS_ENV_VAR)
    if value:
        try:
            return max(1, int(value))
        except ValueError:
            logging.warning(f"Ignoring invalid {WORKERS_ENV_VAR}={value!r}; using the CPU count.")
    return min(32, os.cpu_count() or 1)


def set_max_workers(workers: Optional[int]) -> None:
    """Overrides the worker count. ``None`` restores the environment/CPU default, 1 disables threading."""
    global _max_workers
    if workers is not None and workers < 1:
        raise ValueError(f"Worker count must be positive, got {workers}")
    _max_workers = workers
    logging.debug(f"parallel_for worker count set to {workers}")


def parallel_for(count: int, job: Callable[[int], None]) -> None:
    """Runs ``job(i)`` for every ``i`` in ``range(count)`` and waits for completion.

    The first exception raised by a job is re-raised in the caller.
    """
    workers = min(get_max_workers(), count)
    if workers <= 1:
        for i in range(count):
            job(i)
        return
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(job, i) for i in range(count)]
        for future in futures:
            future.result()
