"""Background job processing with ARQ.

Jobs run in a separate worker process started with::

    arq billsync.core.jobs.worker.WorkerSettings
"""

from billsync.core.jobs.registry import (
    close_arq_pool,
    enqueue,
    get_arq_pool,
    init_arq_pool,
)


__all__ = [
    "close_arq_pool",
    "enqueue",
    "get_arq_pool",
    "init_arq_pool",
]
