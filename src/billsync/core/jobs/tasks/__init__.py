"""Background job tasks.

Each task module defines async functions registered in the worker.
"""

from billsync.core.jobs.tasks.notifications import send_payment_failed_email


__all__ = [
    "send_payment_failed_email",
]
