"""Provider registry and ordering logic."""
from jewelry_pricing.services.config import PricingConfig
from . import MetalRateProvider
from .metal_providers import GoldAPIProvider, MetalPriceAPIProvider, StaticFallbackProvider


def get_rate_providers(config: PricingConfig) -> list[MetalRateProvider]:
    """Get the ordered provider chain.

    Order is fixed regardless of which keys are configured:
    1. GoldAPI - primary
    2. MetalPriceAPI - secondary
    3. Static fallback (if enabled) - tagged 'static_fallback'

    Unconfigured providers stay in the chain and fail fast, so the
    order seen in logs and sync_log never changes.
    """
    providers: list[MetalRateProvider] = [
        GoldAPIProvider(config),
        MetalPriceAPIProvider(config),
    ]
    if config.allow_static_fallback:
        providers.append(StaticFallbackProvider(config))
    return providers


def get_provider_status(config: PricingConfig) -> list[dict]:
    """Return status of every provider in chain order."""
    return [
        {
            'provider': provider.name,
            'position': position,
            'requires_key': provider.requires_api_key,
            'configured': provider.is_configured(),
        }
        for position, provider in enumerate(get_rate_providers(config), start=1)
    ]
