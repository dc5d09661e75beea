"""billsync - subscription reconciliation between the billing store and Stripe."""

__version__ = "0.1.0"
