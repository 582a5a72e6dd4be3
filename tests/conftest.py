"""Pytest fixtures for jewelry pricing tests."""
import pytest
from datetime import datetime, timedelta, timezone

from jewelry_pricing import create_app
from jewelry_pricing.db import get_db
from jewelry_pricing.services.config import PricingConfig
from jewelry_pricing.services.time_provider import TimeProvider, to_iso


# Fixed "now" for deterministic tests - 2026-01-15 is a Thursday, 16:00 in Kolkata
FROZEN_NOW = datetime(2026, 1, 15, 10, 30, tzinfo=timezone.utc)
FROZEN_TODAY = FROZEN_NOW.date()


def make_config(**overrides) -> PricingConfig:
    """PricingConfig for tests: no keys, no backoff sleep."""
    values = {'retry_delay_seconds': 0}
    values.update(overrides)
    return PricingConfig(**values)


@pytest.fixture
def frozen_time():
    """Fixture that freezes time to FROZEN_NOW (2026-01-15 10:30 UTC).

    Yields the TimeProvider for use in tests. Automatically resets
    the default TimeProvider after the test completes.
    """
    provider = TimeProvider(frozen_at=FROZEN_NOW)
    TimeProvider.set_default(provider)
    yield provider
    TimeProvider.reset_default()


@pytest.fixture
def app(tmp_path):
    """Create application for testing with an empty database.

    Yields:
        Flask application configured for testing.
    """
    app = create_app({
        'TESTING': True,
        'DATA_DIR': str(tmp_path),
        'PRICING_CONFIG': make_config(),
    })
    yield app


@pytest.fixture
def client(app):
    """Create test client.

    Yields:
        Flask test client for making requests.
    """
    with app.test_client() as client:
        yield client


SEED_RATES = [
    # symbol, rate_per_gram, source, age
    ('AU', 6700.00, 'goldapi', timedelta(days=2)),
    ('AU', 6800.00, 'goldapi', timedelta(hours=1)),
    ('AG', 85.00, 'goldapi', timedelta(hours=1)),
    ('PT', 3200.00, 'goldapi', timedelta(hours=1)),
]

SEED_RULES = [
    # category_id, purity_id, charge_type, rate_value, minimum, maximum, effective_from, effective_to
    (None, None, 'percentage', 12.0, 0, None, '2025-01-01', None),
    ('rings', None, 'percentage', 10.0, 0, None, '2025-01-01', None),
    ('rings', '22K', 'per_gram', 500.0, 0, None, '2025-06-01', None),
    (None, '18K', 'fixed', 1500.0, 0, None, '2025-01-01', None),
    ('chains', None, 'percentage', 8.0, 0, None, '2024-01-01', '2025-01-01'),
]


@pytest.fixture
def db_app(tmp_path, frozen_time):
    """Create application with seeded rates and making charge rules.

    Yields:
        Flask application with a seeded pricing database.
    """
    app = create_app({
        'TESTING': True,
        'DATA_DIR': str(tmp_path),
        'PRICING_CONFIG': make_config(),
    })

    with app.app_context():
        db = get_db()
        db.executemany(
            'INSERT INTO metal_rates (symbol, rate_per_gram, source, recorded_at) VALUES (?, ?, ?, ?)',
            [(symbol, rate, source, to_iso(FROZEN_NOW - age)) for symbol, rate, source, age in SEED_RATES]
        )
        db.executemany(
            '''INSERT INTO making_charge_rules
               (category_id, purity_id, charge_type, rate_value, minimum_charge, maximum_charge,
                effective_from, effective_to)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)''',
            SEED_RULES
        )
        db.commit()

    yield app


@pytest.fixture
def db_client(db_app):
    """Create test client with seeded database.

    Yields:
        Flask test client with seeded pricing database.
    """
    with db_app.test_client() as client:
        yield client
