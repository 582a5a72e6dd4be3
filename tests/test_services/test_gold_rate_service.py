"""Tests for GoldRateService: provider fallback, history and cache publishing."""
import sqlite3
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from jewelry_pricing.db import get_schema
from jewelry_pricing.services.cache import CURRENT_RATES_KEY, CacheError, FileRateCache
from jewelry_pricing.services.exceptions import (
    AllSourcesUnavailableError,
    InvalidInputError,
    RatesUnavailableError,
)
from jewelry_pricing.services.gold_rate import GoldRateService, build_retry_policy
from jewelry_pricing.services.providers import (
    MalformedResponseError,
    MetalRateProvider,
    NetworkError,
    RateQuote,
    UnconfiguredError,
)
from jewelry_pricing.services.rate_history import RateHistoryRepository
from jewelry_pricing.services.retry import RetryPolicy, linear_backoff
from tests.conftest import make_config


class ScriptedProvider(MetalRateProvider):
    """Provider whose calls follow a script of exceptions and rate maps."""

    def __init__(self, name, script, configured=True):
        self._name = name
        self._script = list(script)
        self._configured = configured
        self.calls = 0

    @property
    def name(self):
        return self._name

    @property
    def requires_api_key(self):
        return True

    def is_configured(self):
        return self._configured

    def fetch_rates(self, symbols):
        self.calls += 1
        step = self._script[min(self.calls, len(self._script)) - 1]
        if isinstance(step, Exception):
            raise step
        return [RateQuote(symbol=s, rate_per_gram=Decimal(str(r)), source=self._name) for s, r in step.items()]


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def db():
    conn = sqlite3.connect(':memory:')
    conn.row_factory = sqlite3.Row
    conn.executescript(get_schema())
    yield conn
    conn.close()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def rate_cache(tmp_path, clock):
    return FileRateCache(str(tmp_path / 'cache'), clock=clock)


@pytest.fixture
def sleeps():
    return []


def make_service(providers, db, rate_cache, sleeps, frozen_time=None, ttl=300):
    return GoldRateService(
        providers=providers,
        cache=rate_cache,
        history=RateHistoryRepository(db),
        retry_policy=RetryPolicy(
            max_attempts=3,
            delay=linear_backoff(1.0),
            give_up_on=(UnconfiguredError,),
            sleep=sleeps.append,
        ),
        cache_ttl=ttl,
        time_provider=frozen_time,
    )


def history_count(db):
    return db.execute('SELECT COUNT(*) FROM metal_rates').fetchone()[0]


RATES = {'AU': 6800, 'AG': 85, 'PT': 3200}


class TestUpdateRates:

    def test_first_success_wins(self, db, rate_cache, sleeps, frozen_time):
        primary = ScriptedProvider('primary', [RATES])
        secondary = ScriptedProvider('secondary', [RATES])
        service = make_service([primary, secondary], db, rate_cache, sleeps, frozen_time)

        result = service.update_rates(trigger='test')

        assert result.provider == 'primary'
        assert primary.calls == 1
        assert secondary.calls == 0
        assert history_count(db) == 3
        assert sleeps == []

    def test_retries_before_failing_over(self, db, rate_cache, sleeps, frozen_time):
        """A fails twice then succeeds on the third attempt; B is never called."""
        primary = ScriptedProvider('primary', [NetworkError('t/o'), NetworkError('t/o'), RATES])
        secondary = ScriptedProvider('secondary', [RATES])
        service = make_service([primary, secondary], db, rate_cache, sleeps, frozen_time)

        result = service.update_rates()

        assert result.provider == 'primary'
        assert primary.calls == 3
        assert secondary.calls == 0
        assert sleeps == [1.0, 2.0]

    def test_fails_over_after_retry_budget(self, db, rate_cache, sleeps, frozen_time):
        primary = ScriptedProvider('primary', [NetworkError('down')])
        secondary = ScriptedProvider('secondary', [RATES])
        service = make_service([primary, secondary], db, rate_cache, sleeps, frozen_time)

        result = service.update_rates()

        assert result.provider == 'secondary'
        assert primary.calls == 3
        assert secondary.calls == 1
        rows = db.execute('SELECT DISTINCT source FROM metal_rates').fetchall()
        assert [r['source'] for r in rows] == ['secondary']

    def test_malformed_response_is_retried(self, db, rate_cache, sleeps, frozen_time):
        primary = ScriptedProvider('primary', [MalformedResponseError('bad'), RATES])
        service = make_service([primary], db, rate_cache, sleeps, frozen_time)

        assert service.update_rates().provider == 'primary'
        assert primary.calls == 2

    def test_response_without_gold_counts_as_failure(self, db, rate_cache, sleeps, frozen_time):
        primary = ScriptedProvider('primary', [{'AG': 85}])
        secondary = ScriptedProvider('secondary', [RATES])
        service = make_service([primary, secondary], db, rate_cache, sleeps, frozen_time)

        assert service.update_rates().provider == 'secondary'
        assert primary.calls == 3

    def test_unconfigured_provider_skipped_without_retry(self, db, rate_cache, sleeps, frozen_time):
        unconfigured = ScriptedProvider('nokey', [RATES], configured=False)
        rejected = ScriptedProvider('badkey', [UnconfiguredError('rejected')])
        working = ScriptedProvider('working', [RATES])
        service = make_service([unconfigured, rejected, working], db, rate_cache, sleeps, frozen_time)

        assert service.update_rates().provider == 'working'
        assert unconfigured.calls == 0
        assert rejected.calls == 1
        assert sleeps == []

    def test_all_fail_leaves_cache_and_history_untouched(self, db, rate_cache, sleeps, frozen_time):
        seeded = make_service([ScriptedProvider('seed', [RATES])], db, rate_cache, sleeps, frozen_time)
        seeded.update_rates()
        before_rows = history_count(db)
        before_cache = rate_cache.get(CURRENT_RATES_KEY)

        failing = [ScriptedProvider(n, [NetworkError('down')]) for n in ('a', 'b', 'c')]
        service = make_service(failing, db, rate_cache, sleeps, frozen_time)

        with pytest.raises(AllSourcesUnavailableError) as exc:
            service.update_rates()

        assert set(exc.value.errors) == {'a', 'b', 'c'}
        assert exc.value.status_code == 503
        assert history_count(db) == before_rows
        assert rate_cache.get(CURRENT_RATES_KEY) == before_cache

    def test_all_fail_logs_failed_sync(self, db, rate_cache, sleeps, frozen_time):
        service = make_service([ScriptedProvider('a', [NetworkError('down')])], db, rate_cache, sleeps, frozen_time)
        with pytest.raises(AllSourcesUnavailableError):
            service.update_rates(trigger='scheduler')

        row = db.execute('SELECT status, trigger, error_message FROM sync_log').fetchone()
        assert row['status'] == 'failed'
        assert row['trigger'] == 'scheduler'
        assert 'down' in row['error_message']

    def test_success_writes_cache_with_ttl(self, db, rate_cache, sleeps, clock, frozen_time):
        service = make_service([ScriptedProvider('primary', [RATES])], db, rate_cache, sleeps, frozen_time)
        service.update_rates()

        cached = rate_cache.get(CURRENT_RATES_KEY)
        assert cached['provider'] == 'primary'
        assert cached['rates']['AU']['rate_per_gram'] == 6800.0

        clock.now += 300
        assert rate_cache.get(CURRENT_RATES_KEY) is None

    def test_partial_response_keeps_stored_rates_current(self, db, rate_cache, sleeps, frozen_time):
        """Provider returns only gold: silver and platinum stay readable from the cache."""
        RateHistoryRepository(db).append([
            RateQuote('AG', Decimal('85'), 'seed'),
            RateQuote('PT', Decimal('3200'), 'seed'),
        ])
        service = make_service([ScriptedProvider('primary', [{'AU': 6800}])], db, rate_cache, sleeps, frozen_time)

        result = service.update_rates()

        assert list(result.rates) == ['AU']
        current = service.get_current_rates()
        assert current.source == 'cache'
        assert current.rate_map() == {'AU': 6800.0, 'AG': 85.0, 'PT': 3200.0}
        assert service.get_rate('AG').source == 'seed'

    def test_cache_write_failure_does_not_fail_update(self, db, sleeps, frozen_time):
        broken_cache = MagicMock()
        broken_cache.set.side_effect = CacheError('disk full')
        service = make_service([ScriptedProvider('primary', [RATES])], db, broken_cache, sleeps, frozen_time)

        result = service.update_rates()

        assert result.provider == 'primary'
        assert history_count(db) == 3

    def test_records_frozen_timestamp(self, db, rate_cache, sleeps, frozen_time):
        service = make_service([ScriptedProvider('primary', [RATES])], db, rate_cache, sleeps, frozen_time)
        result = service.update_rates()
        assert result.recorded_at == '2026-01-15T10:30:00.000000Z'
        assert result.rates['AU'].recorded_at == result.recorded_at


class TestGetCurrentRates:

    def test_cache_hit(self, db, rate_cache, sleeps, frozen_time):
        service = make_service([ScriptedProvider('primary', [RATES])], db, rate_cache, sleeps, frozen_time)
        service.update_rates()

        current = service.get_current_rates()

        assert current.source == 'cache'
        assert current.rate_map() == {'AU': 6800.0, 'AG': 85.0, 'PT': 3200.0}

    def test_falls_back_to_store_after_ttl(self, db, rate_cache, sleeps, clock, frozen_time):
        service = make_service([ScriptedProvider('primary', [RATES])], db, rate_cache, sleeps, frozen_time)
        service.update_rates()
        clock.now += 301

        current = service.get_current_rates()

        assert current.source == 'store'
        assert current.rates['AU'].rate_per_gram == Decimal('6800.00')
        assert current.rates['AU'].source == 'primary'

    def test_store_returns_latest_row_per_symbol(self, db, rate_cache, sleeps, clock, frozen_time):
        first = make_service([ScriptedProvider('a', [RATES])], db, rate_cache, sleeps, frozen_time)
        first.update_rates()
        second = make_service([ScriptedProvider('b', [{'AU': 6900}])], db, rate_cache, sleeps, frozen_time)
        second.update_rates()
        rate_cache.delete(CURRENT_RATES_KEY)

        rates = second.get_current_rates().rates

        assert rates['AU'].rate_per_gram == Decimal('6900.00')
        assert rates['AG'].rate_per_gram == Decimal('85.00')

    def test_cache_error_falls_back_to_store(self, db, sleeps, frozen_time):
        RateHistoryRepository(db).append([RateQuote('AU', Decimal('6800'), 'seed')])
        broken_cache = MagicMock()
        broken_cache.get.side_effect = CacheError('redis down')
        service = make_service([], db, broken_cache, sleeps, frozen_time)

        current = service.get_current_rates()

        assert current.source == 'store'
        assert current.rate_map() == {'AU': 6800.0}

    def test_never_fetches_upstream(self, db, rate_cache, sleeps, frozen_time):
        provider = ScriptedProvider('primary', [RATES])
        service = make_service([provider], db, rate_cache, sleeps, frozen_time)

        with pytest.raises(RatesUnavailableError):
            service.get_current_rates()
        assert provider.calls == 0

    def test_get_rate_unknown_symbol(self, db, rate_cache, sleeps, frozen_time):
        service = make_service([ScriptedProvider('primary', [{'AU': 6800}])], db, rate_cache, sleeps, frozen_time)
        service.update_rates()
        assert service.get_rate('au').rate_per_gram == Decimal('6800.00')
        with pytest.raises(RatesUnavailableError):
            service.get_rate('PT')


class TestManualUpdate:

    def test_appends_manual_row_and_invalidates_cache(self, db, rate_cache, sleeps, frozen_time):
        service = make_service([ScriptedProvider('primary', [RATES])], db, rate_cache, sleeps, frozen_time)
        service.update_rates()

        row = service.manual_rate_update('AU', '6850.5', 'counter')

        assert row.source == 'manual:counter'
        assert row.rate_per_gram == Decimal('6850.50')
        assert rate_cache.get(CURRENT_RATES_KEY) is None
        current = service.get_current_rates()
        assert current.source == 'store'
        assert current.rates['AU'].rate_per_gram == Decimal('6850.50')
        assert current.rates['AG'].rate_per_gram == Decimal('85.00')

    @pytest.mark.parametrize('symbol,rate,source', [
        ('XX', 100, 'counter'),
        ('AU', 0, 'counter'),
        ('AU', -5, 'counter'),
        ('AU', 'abc', 'counter'),
        ('AU', 100, ''),
    ])
    def test_rejects_invalid_input(self, db, rate_cache, sleeps, symbol, rate, source):
        service = make_service([], db, rate_cache, sleeps)
        with pytest.raises(InvalidInputError):
            service.manual_rate_update(symbol, rate, source)
        assert history_count(db) == 0


class TestHistory:

    def test_days_bounds(self, db, rate_cache, sleeps, frozen_time):
        service = make_service([], db, rate_cache, sleeps, frozen_time)
        for days in (0, 366, -1):
            with pytest.raises(InvalidInputError):
                service.get_rate_history(days)
        assert service.get_rate_history(365) == []

    def test_history_newest_first(self, db, rate_cache, sleeps, frozen_time):
        service = make_service([ScriptedProvider('a', [{'AU': 6800}])], db, rate_cache, sleeps, frozen_time)
        service.update_rates()
        service.manual_rate_update('AU', 6900, 'counter')

        rows = service.get_rate_history(30)

        assert [r.source for r in rows] == ['manual:counter', 'a']
        assert service.get_last_update_time() == '2026-01-15T10:30:00.000000Z'


def test_build_retry_policy_uses_config():
    sleeps = []
    policy = build_retry_policy(make_config(retry_attempts=2, retry_delay_seconds=0.5), sleep=sleeps.append)
    assert policy.max_attempts == 2
    assert policy.delay(2) == 1.0
    assert policy.give_up_on == (UnconfiguredError,)
