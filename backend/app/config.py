"""
Homework Marketplace Engine - Configuration

Environment-driven settings and the built-in pricing defaults.
The pricing defaults are only used until an operator saves a pricing
configuration row.
"""
import os
import string


# =============================================================================
# INFRASTRUCTURE
# =============================================================================

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/homework_engine"
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "homework-engine-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Shared secret for /internal scheduler endpoints
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


# =============================================================================
# CACHE
# =============================================================================

class CacheTTL:
    """Cache time-to-live values, in seconds."""
    SHORT = 30            # frequently changing data
    MEDIUM = 2 * 60       # order lists
    LONG = 15 * 60        # notification templates
    VERY_LONG = 60 * 60   # pricing configuration


CACHE_SWEEP_INTERVAL_SECONDS = int(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", "600"))
CACHE_SWEEP_ENABLED = os.getenv("CACHE_SWEEP_ENABLED", "true").lower() == "true"


# =============================================================================
# ORDERS & PAYMENTS
# =============================================================================

ORDER_ID_LENGTH = 5
ORDER_ID_ALPHABET = string.ascii_uppercase + string.digits
ORDER_ID_MAX_ATTEMPTS = 10

# Fees are quoted per this many words
WORDS_PER_UNIT = 500

PAYMENT_BANK_DETAILS = os.getenv(
    "PAYMENT_BANK_DETAILS",
    "Account: ProH Academic Services, Sort Code: 12-34-56, Account Number: 12345678",
)

PLATFORM_FEE_PER_ORDER = 0.50

NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "5"))


# =============================================================================
# PRICING DEFAULTS
# =============================================================================

DEFAULT_WORD_TIERS = {words: words // 25 for words in range(500, 20001, 500)}

DEFAULT_PRICING_CONFIG = {
    "word_tiers": {str(k): float(v) for k, v in DEFAULT_WORD_TIERS.items()},
    # Flat surcharge for deadlines within N days
    "deadline_tiers": {"1": 20.0, "3": 10.0, "7": 5.0},
    "fees": {
        "agent": 5.0,
        "super_worker": 10.0,
    },
}
