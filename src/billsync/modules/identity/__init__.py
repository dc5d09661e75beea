"""Identity tables owned by the session/organization provider.

Billing only reads these rows, apart from caching the Stripe customer id
on the user.
"""
