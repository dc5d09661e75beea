"""Application-wide constants.

This module defines constants used throughout the application
to avoid magic numbers and ensure consistency.
"""

# String field lengths
MAX_STRIPE_ID_LENGTH = 255
MAX_EMAIL_LENGTH = 255
MAX_NAME_LENGTH = 255
MAX_SLUG_LENGTH = 63
MAX_STATUS_LENGTH = 50
MAX_CURRENCY_LENGTH = 3

# Limits map sentinel meaning "no cap"
UNLIMITED = -1

# Organizations a user may belong to before one of them must lift the cap
FREE_TIER_ORGANIZATIONS = 1

# Pagination defaults
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Stripe webhook signature tolerance (matches stripe.Webhook default)
DEFAULT_WEBHOOK_TOLERANCE_SECONDS = 300

# Secret key requirements
MIN_SECRET_KEY_LENGTH = 32
DEFAULT_INSECURE_SECRET = "change-me-in-production"
