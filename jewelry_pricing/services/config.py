"""Configuration service for rate sync, caching and price defaults.

Environment variables are read only here. Everything else receives an
explicit PricingConfig built by load_pricing_config().
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal

from jewelry_pricing import constants


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


def _range(value: str, default: tuple[int, int]) -> tuple[int, int]:
    """Parse 'start-end' into an inclusive (start, end) tuple."""
    try:
        start, end = value.split('-', 1)
        return (int(start), int(end))
    except (AttributeError, ValueError):
        return default


# Provider API key getters
def get_goldapi_key() -> str | None:
    """Get GoldAPI key if configured."""
    return os.environ.get('GOLDAPI_KEY') or None


def get_metalpriceapi_key() -> str | None:
    """Get MetalPriceAPI key if configured."""
    return os.environ.get('METALPRICEAPI_KEY') or None


def get_user_agent() -> str:
    """Get the User-Agent string for provider HTTP requests."""
    default_ua = 'JewelryPricing/1.0'
    return os.environ.get('PRICING_SYNC_USER_AGENT', default_ua)


def get_fetch_timeout_seconds() -> float:
    """Per-attempt upstream timeout (PRICING_FETCH_TIMEOUT_SECONDS, default 10)."""
    return float(os.environ.get('PRICING_FETCH_TIMEOUT_SECONDS', constants.FETCH_TIMEOUT_SECONDS))


def get_retry_attempts() -> int:
    """Attempts per provider before failing over (PRICING_RETRY_ATTEMPTS, default 3)."""
    return int(os.environ.get('PRICING_RETRY_ATTEMPTS', constants.RETRY_MAX_ATTEMPTS))


def get_retry_delay_seconds() -> float:
    """Linear backoff unit (PRICING_RETRY_DELAY_SECONDS, default 1)."""
    return float(os.environ.get('PRICING_RETRY_DELAY_SECONDS', constants.RETRY_DELAY_SECONDS))


def get_cache_ttl_seconds() -> int:
    """TTL for the current rate set (PRICING_CACHE_TTL_SECONDS, default 300)."""
    return int(os.environ.get('PRICING_CACHE_TTL_SECONDS', constants.RATE_CACHE_TTL_SECONDS))


def get_cache_backend() -> str:
    """Cache backend: 'file' (default) or 'redis'."""
    return os.environ.get('PRICING_CACHE_BACKEND', 'file').lower()


def get_redis_url() -> str:
    return os.environ.get('REDIS_URL', 'redis://localhost:6379/0')


def get_store_timeout_seconds() -> float:
    """Timeout for cache/store reads (PRICING_STORE_TIMEOUT_SECONDS, default 2)."""
    return float(os.environ.get('PRICING_STORE_TIMEOUT_SECONDS', constants.STORE_TIMEOUT_SECONDS))


def is_static_fallback_enabled() -> bool:
    """Whether the static fallback provider closes the provider chain.

    Controlled by PRICING_ALLOW_STATIC_FALLBACK (default: 1).
    """
    return _flag('PRICING_ALLOW_STATIC_FALLBACK', '1')


def get_default_wastage_pct() -> Decimal:
    return Decimal(os.environ.get('PRICING_DEFAULT_WASTAGE_PCT', str(constants.DEFAULT_WASTAGE_PCT)))


def get_default_gst_pct() -> Decimal:
    return Decimal(os.environ.get('PRICING_DEFAULT_GST_PCT', str(constants.DEFAULT_GST_PCT)))


def get_sync_interval_seconds() -> int:
    """Background refresh interval (PRICING_SYNC_INTERVAL_SECONDS, default 300)."""
    return int(os.environ.get('PRICING_SYNC_INTERVAL_SECONDS', '300'))


def get_business_hours() -> tuple[int, int]:
    """Inclusive hour range for scheduled refreshes (PRICING_BUSINESS_HOURS, default 9-18)."""
    return _range(os.environ.get('PRICING_BUSINESS_HOURS', '9-18'), (9, 18))


def get_business_days() -> tuple[int, int]:
    """Inclusive weekday range, Monday=0 (PRICING_BUSINESS_DAYS, default 0-5)."""
    return _range(os.environ.get('PRICING_BUSINESS_DAYS', '0-5'), (0, 5))


def get_timezone_name() -> str:
    return os.environ.get('PRICING_TIMEZONE', 'Asia/Kolkata')


def is_background_sync_enabled() -> bool:
    """Check if the in-process refresh thread should start (PRICING_BACKGROUND_SYNC, default 0)."""
    return _flag('PRICING_BACKGROUND_SYNC', '0')


@dataclass(frozen=True)
class PricingConfig:
    """Explicit configuration injected into providers, cache and services."""
    goldapi_key: str | None = None
    metalpriceapi_key: str | None = None
    user_agent: str = 'JewelryPricing/1.0'
    fetch_timeout_seconds: float = constants.FETCH_TIMEOUT_SECONDS
    retry_attempts: int = constants.RETRY_MAX_ATTEMPTS
    retry_delay_seconds: float = constants.RETRY_DELAY_SECONDS
    cache_ttl_seconds: int = constants.RATE_CACHE_TTL_SECONDS
    cache_backend: str = 'file'
    redis_url: str = 'redis://localhost:6379/0'
    store_timeout_seconds: float = constants.STORE_TIMEOUT_SECONDS
    allow_static_fallback: bool = True
    static_fallback_rates: dict = field(default_factory=lambda: {
        'AU': Decimal('6500.00'),
        'AG': Decimal('85.00'),
        'PT': Decimal('3200.00'),
    })
    default_wastage_pct: Decimal = constants.DEFAULT_WASTAGE_PCT
    default_gst_pct: Decimal = constants.DEFAULT_GST_PCT
    sync_interval_seconds: int = 300
    business_hours: tuple = (9, 18)
    business_days: tuple = (0, 5)
    timezone: str = 'Asia/Kolkata'
    background_sync: bool = False


def load_pricing_config() -> PricingConfig:
    """Build a PricingConfig from environment variables."""
    return PricingConfig(
        goldapi_key=get_goldapi_key(),
        metalpriceapi_key=get_metalpriceapi_key(),
        user_agent=get_user_agent(),
        fetch_timeout_seconds=get_fetch_timeout_seconds(),
        retry_attempts=get_retry_attempts(),
        retry_delay_seconds=get_retry_delay_seconds(),
        cache_ttl_seconds=get_cache_ttl_seconds(),
        cache_backend=get_cache_backend(),
        redis_url=get_redis_url(),
        store_timeout_seconds=get_store_timeout_seconds(),
        allow_static_fallback=is_static_fallback_enabled(),
        default_wastage_pct=get_default_wastage_pct(),
        default_gst_pct=get_default_gst_pct(),
        sync_interval_seconds=get_sync_interval_seconds(),
        business_hours=get_business_hours(),
        business_days=get_business_days(),
        timezone=get_timezone_name(),
        background_sync=is_background_sync_enabled(),
    )


def get_provider_keys_status(config: PricingConfig) -> dict:
    """Get status of configured provider API keys. Never returns the keys."""
    return {
        'goldapi': bool(config.goldapi_key),
        'metalpriceapi': bool(config.metalpriceapi_key),
    }


def get_sync_config(config: PricingConfig) -> dict:
    """Get non-secret sync configuration for status endpoints."""
    return {
        'background_sync_enabled': config.background_sync,
        'sync_interval_seconds': config.sync_interval_seconds,
        'business_hours': list(config.business_hours),
        'business_days': list(config.business_days),
        'timezone': config.timezone,
        'cache_backend': config.cache_backend,
        'cache_ttl_seconds': config.cache_ttl_seconds,
        'static_fallback_enabled': config.allow_static_fallback,
        'user_agent': config.user_agent,
    }
