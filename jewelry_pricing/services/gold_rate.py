"""Gold rate service: ordered provider fallback, history and cache publishing."""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from flask import current_app

from jewelry_pricing.constants import HISTORY_MAX_DAYS, MANUAL_SOURCE_PREFIX, MONEY_QUANTUM
from jewelry_pricing.data.metals import SUPPORTED_METALS, is_valid_metal
from jewelry_pricing.db import get_db
from jewelry_pricing.services.cache import CURRENT_RATES_KEY, CacheError
from jewelry_pricing.services.config import PricingConfig
from jewelry_pricing.services.exceptions import (
    AllSourcesUnavailableError,
    InvalidInputError,
    RatesUnavailableError,
)
from jewelry_pricing.services.providers import (
    MetalRateProvider,
    ProviderError,
    RateQuote,
    UnconfiguredError,
    MalformedResponseError,
)
from jewelry_pricing.services.providers.registry import get_rate_providers
from jewelry_pricing.services.rate_history import MetalRate, RateHistoryRepository
from jewelry_pricing.services.retry import RetryPolicy, linear_backoff
from jewelry_pricing.services.time_provider import TimeProvider, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of a successful refresh."""
    provider: str
    rates: dict
    recorded_at: str

    def to_dict(self) -> dict:
        return {
            'provider': self.provider,
            'recorded_at': self.recorded_at,
            'rates': {symbol: rate.to_dict() for symbol, rate in self.rates.items()},
        }


@dataclass(frozen=True)
class CurrentRates:
    """Current rate set and where it was read from ('cache' or 'store')."""
    rates: dict
    source: str

    def rate_map(self) -> dict:
        return {symbol: float(rate.rate_per_gram) for symbol, rate in self.rates.items()}

    def to_dict(self) -> dict:
        return {
            'rates': self.rate_map(),
            'details': {symbol: rate.to_dict() for symbol, rate in self.rates.items()},
            'cache_status': 'hit' if self.source == 'cache' else 'miss',
        }


def build_retry_policy(config: PricingConfig, sleep=time.sleep) -> RetryPolicy:
    """Retry policy applied to every provider: linear backoff, no retry when unconfigured."""
    return RetryPolicy(
        max_attempts=config.retry_attempts,
        delay=linear_backoff(config.retry_delay_seconds),
        give_up_on=(UnconfiguredError,),
        sleep=sleep,
    )


class GoldRateService:
    """Produces a trustworthy current rate set despite unreliable upstreams."""

    def __init__(
        self,
        providers: list[MetalRateProvider],
        cache,
        history: RateHistoryRepository,
        retry_policy: RetryPolicy | None = None,
        cache_ttl: int = 300,
        symbols: list[str] | None = None,
        time_provider: TimeProvider | None = None,
    ):
        self._providers = providers
        self._cache = cache
        self._history = history
        self._retry = retry_policy or RetryPolicy(give_up_on=(UnconfiguredError,))
        self._cache_ttl = cache_ttl
        self._symbols = symbols or list(SUPPORTED_METALS)
        self._time_provider = time_provider

    @property
    def providers(self) -> list[MetalRateProvider]:
        return list(self._providers)

    def _now(self):
        return (self._time_provider or TimeProvider.get_default()).now()

    def _fetch(self, provider: MetalRateProvider) -> list[RateQuote]:
        quotes = provider.fetch_rates(self._symbols)
        if not any(q.symbol == 'AU' for q in quotes):
            raise MalformedResponseError(f"{provider.name} returned no gold rate")
        return quotes

    def update_rates(self, trigger: str = 'manual') -> UpdateResult:
        """Refresh rates from the first provider that succeeds.

        Each provider gets the full retry budget before the next one is
        tried. Cache and history are untouched unless a provider succeeds.

        Raises:
            AllSourcesUnavailableError: every provider failed
        """
        logger.info(f"Starting rate update ({trigger})")
        errors = {}

        for provider in self._providers:
            if not provider.is_configured():
                errors[provider.name] = 'not configured'
                logger.info(f"Skipping {provider.name}: not configured")
                continue
            try:
                quotes = self._retry.call(self._fetch, provider)
            except UnconfiguredError as e:
                errors[provider.name] = str(e)
                logger.warning(f"{provider.name} unconfigured: {e}")
                continue
            except ProviderError as e:
                errors[provider.name] = str(e)
                logger.warning(f"{provider.name} failed after retries: {e}")
                continue
            except Exception as e:
                errors[provider.name] = str(e)
                logger.exception(f"{provider.name} raised unexpectedly: {e}")
                continue

            return self._publish(provider, quotes, trigger)

        self._history.log_sync(None, 'failed', 0, error=str(errors), trigger=trigger)
        logger.error(f"All rate sources unavailable: {errors}")
        raise AllSourcesUnavailableError(errors)

    def _publish(self, provider: MetalRateProvider, quotes: list[RateQuote], trigger: str) -> UpdateResult:
        now = self._now()
        rows = self._history.append(quotes, recorded_at=now)
        self._history.log_sync(provider.name, 'success', len(rows), trigger=trigger)

        rates = {row.symbol: row for row in rows}
        # A provider may skip AG/PT; earlier rows for those stay current
        current = {**self._history.latest_rates(), **rates}
        payload = {
            'provider': provider.name,
            'recorded_at': to_iso(now),
            'rates': {symbol: rate.to_dict() for symbol, rate in current.items()},
        }
        try:
            self._cache.set(CURRENT_RATES_KEY, payload, ttl=self._cache_ttl)
        except CacheError as e:
            # History already holds the rates; readers fall back to it
            logger.warning(f"Rates persisted but cache write failed: {e}")

        logger.info(
            f"Rates updated from {provider.name}: "
            + ', '.join(f"{s}={r.rate_per_gram}" for s, r in rates.items())
        )
        return UpdateResult(provider=provider.name, rates=rates, recorded_at=to_iso(now))

    def get_current_rates(self) -> CurrentRates:
        """Cache first, then the most recent persisted rate per symbol.

        Never fetches from upstream.

        Raises:
            RatesUnavailableError: nothing cached or persisted, or store unreachable
        """
        try:
            cached = self._cache.get(CURRENT_RATES_KEY)
        except CacheError as e:
            logger.warning(f"Cache read failed, using store: {e}")
            cached = None

        if cached:
            try:
                rates = {symbol: MetalRate.from_dict(data) for symbol, data in cached['rates'].items()}
            except (KeyError, TypeError, ValueError, InvalidOperation):
                logger.warning("Ignoring malformed cached rate set")
                rates = {}
            if rates:
                return CurrentRates(rates=rates, source='cache')

        rates = self._history.latest_rates()
        if not rates:
            raise RatesUnavailableError('No metal rates available yet')
        return CurrentRates(rates=rates, source='store')

    def get_rate(self, symbol: str) -> MetalRate:
        """Current rate for one metal symbol."""
        current = self.get_current_rates()
        rate = current.rates.get(symbol.upper())
        if rate is None:
            raise RatesUnavailableError(f'No current rate for {symbol}')
        return rate

    def get_rate_history(self, days: int, symbol: str | None = None) -> list[MetalRate]:
        if not isinstance(days, int) or isinstance(days, bool) or not 1 <= days <= HISTORY_MAX_DAYS:
            raise InvalidInputError(f'days must be between 1 and {HISTORY_MAX_DAYS}')
        if symbol is not None and not is_valid_metal(symbol):
            raise InvalidInputError(f'Unsupported metal: {symbol}')
        return self._history.history(days, symbol=symbol.upper() if symbol else None, now=self._now())

    def get_price_trends(self, symbol: str, days: int) -> list[dict]:
        if not is_valid_metal(symbol):
            raise InvalidInputError(f'Unsupported metal: {symbol}')
        if not isinstance(days, int) or isinstance(days, bool) or not 1 <= days <= HISTORY_MAX_DAYS:
            raise InvalidInputError(f'days must be between 1 and {HISTORY_MAX_DAYS}')
        return self._history.daily_trends(symbol.upper(), days, now=self._now())

    def manual_rate_update(self, symbol, rate_per_gram, source) -> MetalRate:
        """Record an operator-entered rate and drop the cached set.

        The next read comes from the store, which now holds this row.
        """
        if not is_valid_metal(symbol):
            raise InvalidInputError(f'Unsupported metal: {symbol}')
        if not source or not str(source).strip():
            raise InvalidInputError('source is required')
        try:
            rate = Decimal(str(rate_per_gram))
        except (InvalidOperation, ValueError):
            raise InvalidInputError('ratePerGram must be a number')
        if not rate.is_finite() or rate <= 0:
            raise InvalidInputError('ratePerGram must be positive')

        quote = RateQuote(
            symbol=symbol.upper(),
            rate_per_gram=rate.quantize(MONEY_QUANTUM),
            source=f'{MANUAL_SOURCE_PREFIX}:{str(source).strip()}',
        )
        [row] = self._history.append([quote], recorded_at=self._now())
        self._history.log_sync(quote.source, 'success', 1, trigger='manual_entry')

        try:
            self._cache.delete(CURRENT_RATES_KEY)
        except CacheError as e:
            logger.warning(f"Failed to invalidate rate cache: {e}")

        logger.info(f"Manual rate update: {row.symbol} = {row.rate_per_gram} from {row.source}")
        return row

    def get_last_update_time(self) -> str | None:
        return self._history.last_update_time()


def build_gold_rate_service(config: PricingConfig, db, cache) -> GoldRateService:
    """Wire a GoldRateService from explicit dependencies (daemon, CLI)."""
    return GoldRateService(
        providers=get_rate_providers(config),
        cache=cache,
        history=RateHistoryRepository(db),
        retry_policy=build_retry_policy(config),
        cache_ttl=config.cache_ttl_seconds,
    )


def get_gold_rate_service(db=None) -> GoldRateService:
    """Build a GoldRateService wired to the current app's config, cache and DB."""
    return build_gold_rate_service(
        current_app.config['PRICING_CONFIG'],
        db if db is not None else get_db(),
        current_app.extensions['rate_cache'],
    )
