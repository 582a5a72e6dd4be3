"""Shared constants for rate acquisition and price calculation."""
from decimal import Decimal

# Conversion constant: troy ounce to grams
TROY_OZ_TO_GRAMS = Decimal('31.1035')

# Currency all rates and prices are expressed in
BASE_CURRENCY = 'INR'

# Cache
RATE_CACHE_TTL_SECONDS = 300
CURRENT_RATES_CACHE_PREFIX = 'gold_rates'

# Rate refresh retry budget (per provider)
RETRY_MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 1.0

# Per-attempt upstream timeout and local store timeout
FETCH_TIMEOUT_SECONDS = 10
STORE_TIMEOUT_SECONDS = 2

# Default charges applied when a calculation request omits them
DEFAULT_WASTAGE_PCT = Decimal('2')
DEFAULT_GST_PCT = Decimal('3')

# Making charge types
CHARGE_TYPE_PERCENTAGE = 'percentage'
CHARGE_TYPE_PER_GRAM = 'per_gram'
CHARGE_TYPE_FIXED = 'fixed'
CHARGE_TYPES = (CHARGE_TYPE_PERCENTAGE, CHARGE_TYPE_PER_GRAM, CHARGE_TYPE_FIXED)

# Source tag for fabricated rates so consumers can tell them from live quotes
STATIC_FALLBACK_SOURCE = 'static_fallback'
MANUAL_SOURCE_PREFIX = 'manual'

# Rate history query bounds
HISTORY_DEFAULT_DAYS = 30
HISTORY_MAX_DAYS = 365

# Monetary rounding quantum
MONEY_QUANTUM = Decimal('0.01')
