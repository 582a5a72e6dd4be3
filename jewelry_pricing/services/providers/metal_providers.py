"""Metal rate provider implementations."""
import json
import logging
import time
import urllib.error
import urllib.request
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from jewelry_pricing.constants import BASE_CURRENCY, MONEY_QUANTUM, STATIC_FALLBACK_SOURCE, TROY_OZ_TO_GRAMS
from jewelry_pricing.data.metals import SUPPORTED_METALS, provider_symbol_map
from jewelry_pricing.services.config import PricingConfig
from . import (
    MetalRateProvider,
    RateQuote,
    UnconfiguredError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    MalformedResponseError,
)

logger = logging.getLogger(__name__)


def per_ounce_to_per_gram(price_per_oz) -> Decimal:
    """Convert a per-troy-ounce price into a per-gram rate rounded to paise."""
    try:
        price = Decimal(str(price_per_oz))
    except (InvalidOperation, ValueError, TypeError):
        raise MalformedResponseError(f"Non-numeric price: {price_per_oz!r}")
    if not price.is_finite() or price <= 0:
        raise MalformedResponseError(f"Non-positive price: {price_per_oz!r}")
    return (price / TROY_OZ_TO_GRAMS).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def _get_json(url: str, headers: dict, timeout: float) -> dict:
    """Issue one GET and decode the JSON body, mapping failures to provider errors."""
    req = urllib.request.Request(url, headers=headers)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            data = json.loads(response.read().decode('utf-8'))
    except urllib.error.HTTPError as e:
        if e.code == 429:
            raise RateLimitError("Rate limit exceeded")
        if e.code in (401, 403):
            raise AuthenticationError("Invalid API key")
        raise NetworkError(f"HTTP error: {e.code}")
    except urllib.error.URLError as e:
        raise NetworkError(f"Network error: {e.reason}")
    except TimeoutError:
        raise NetworkError(f"Timed out after {timeout}s")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedResponseError("Invalid JSON response")

    if not isinstance(data, dict):
        raise MalformedResponseError("Unexpected JSON payload")
    return data


class GoldAPIProvider(MetalRateProvider):
    """GoldAPI.io provider - requires API key.

    Quotes one metal per request, in INR per troy ounce. All requests of one
    fetch share a single fetch_timeout_seconds deadline; metals left when it
    runs out are skipped.
    """

    BASE_URL = "https://www.goldapi.io/api"

    def __init__(self, config: PricingConfig, clock=time.monotonic):
        self._api_key = config.goldapi_key
        self._timeout = config.fetch_timeout_seconds
        self._user_agent = config.user_agent
        self._clock = clock

    @property
    def name(self) -> str:
        return "goldapi"

    @property
    def requires_api_key(self) -> bool:
        return True

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def fetch_rates(self, symbols: list[str]) -> list[RateQuote]:
        if not self._api_key:
            raise UnconfiguredError("GoldAPI key not configured")

        deadline = self._clock() + self._timeout
        quotes = []
        for symbol in symbols:
            provider_symbol = SUPPORTED_METALS[symbol]['provider_symbol']
            url = f"{self.BASE_URL}/{provider_symbol}/{BASE_CURRENCY}"
            headers = {
                'User-Agent': self._user_agent,
                'x-access-token': self._api_key,
            }
            try:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise NetworkError(f"Fetch deadline of {self._timeout}s spent")
                data = _get_json(url, headers, remaining)
                rate = per_ounce_to_per_gram(data.get('price'))
            except (AuthenticationError, NetworkError, MalformedResponseError) as e:
                # Gold is mandatory, the other metals are best effort
                if symbol == 'AU':
                    raise
                logger.warning(f"GoldAPI: skipping {symbol}: {e}")
                continue

            quotes.append(RateQuote(symbol=symbol, rate_per_gram=rate, source=self.name))

        return quotes


class MetalPriceAPIProvider(MetalRateProvider):
    """MetalPriceAPI.com provider - requires API key.

    One request returns all metals as ounces per INR, which we invert.
    """

    BASE_URL = "https://api.metalpriceapi.com/v1"

    def __init__(self, config: PricingConfig):
        self._api_key = config.metalpriceapi_key
        self._timeout = config.fetch_timeout_seconds
        self._user_agent = config.user_agent

    @property
    def name(self) -> str:
        return "metalpriceapi"

    @property
    def requires_api_key(self) -> bool:
        return True

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def fetch_rates(self, symbols: list[str]) -> list[RateQuote]:
        if not self._api_key:
            raise UnconfiguredError("MetalPriceAPI key not configured")

        wanted = [SUPPORTED_METALS[s]['provider_symbol'] for s in symbols]
        url = (
            f"{self.BASE_URL}/latest?api_key={self._api_key}"
            f"&base={BASE_CURRENCY}&currencies={','.join(wanted)}"
        )
        data = _get_json(url, {'User-Agent': self._user_agent}, self._timeout)

        if data.get('success') is False:
            error = data.get('error') or {}
            if isinstance(error, dict) and error.get('statusCode') in (101, 102):
                raise AuthenticationError(error.get('message', 'Invalid API key'))
            raise MalformedResponseError(f"API error: {error or 'unknown'}")

        rates = data.get('rates')
        if not isinstance(rates, dict):
            raise MalformedResponseError("Response missing 'rates'")

        symbol_map = provider_symbol_map()
        quotes = []
        for provider_symbol in wanted:
            symbol = symbol_map[provider_symbol]
            raw = rates.get(provider_symbol)
            try:
                ounces_per_inr = Decimal(str(raw))
                if not ounces_per_inr.is_finite() or ounces_per_inr <= 0:
                    raise MalformedResponseError(f"Non-positive rate for {provider_symbol}")
                rate = per_ounce_to_per_gram(Decimal(1) / ounces_per_inr)
            except (InvalidOperation, MalformedResponseError) as e:
                if symbol == 'AU':
                    raise MalformedResponseError(f"Invalid gold rate: {raw!r}") from e
                logger.warning(f"MetalPriceAPI: skipping {symbol}: {raw!r}")
                continue

            quotes.append(RateQuote(symbol=symbol, rate_per_gram=rate, source=self.name))

        return quotes


class StaticFallbackProvider(MetalRateProvider):
    """Last-resort provider returning configured static rates.

    Quotes are tagged source='static_fallback' so they are never mistaken
    for live market data.
    """

    def __init__(self, config: PricingConfig):
        self._rates = dict(config.static_fallback_rates)

    @property
    def name(self) -> str:
        return STATIC_FALLBACK_SOURCE

    @property
    def requires_api_key(self) -> bool:
        return False

    def is_configured(self) -> bool:
        return bool(self._rates)

    def fetch_rates(self, symbols: list[str]) -> list[RateQuote]:
        if 'AU' not in self._rates:
            raise UnconfiguredError("No static gold rate configured")

        logger.warning("Using static fallback rates - live providers unavailable")
        return [
            RateQuote(
                symbol=symbol,
                rate_per_gram=Decimal(str(self._rates[symbol])).quantize(MONEY_QUANTUM),
                source=self.name,
            )
            for symbol in symbols
            if symbol in self._rates
        ]
