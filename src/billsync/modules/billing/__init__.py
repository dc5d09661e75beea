"""Billing module: Stripe subscription reconciliation and entitlements."""

from .routes import router


__all__ = ["router"]
