"""SQLite database connection management for rate history and charge rules."""
import os
import sqlite3
from flask import current_app, g

from jewelry_pricing.constants import STORE_TIMEOUT_SECONDS

DB_FILENAME = 'pricing.sqlite'


def get_db_path() -> str:
    """Get the path to the SQLite database file."""
    data_dir = current_app.config.get('DATA_DIR', os.path.join(os.path.dirname(__file__), '..', 'data'))
    os.makedirs(data_dir, exist_ok=True)
    return os.path.join(data_dir, DB_FILENAME)


def connect(db_path: str, timeout: float = STORE_TIMEOUT_SECONDS) -> sqlite3.Connection:
    """Open a connection outside of a request (daemon, background thread).

    The timeout bounds how long a read or insert waits on a locked database.
    """
    conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def get_db() -> sqlite3.Connection:
    """Get a database connection, creating one if needed for this request."""
    if 'db' not in g:
        config = current_app.config.get('PRICING_CONFIG')
        timeout = config.store_timeout_seconds if config else STORE_TIMEOUT_SECONDS
        g.db = connect(get_db_path(), timeout=timeout)
    return g.db


def close_db(e=None):
    """Close the database connection at end of request."""
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_db():
    """Initialize the database with schema."""
    db = get_db()
    db.executescript(get_schema())
    db.commit()


def get_schema() -> str:
    """Return the database schema SQL."""
    return '''
-- Metal rate history (append-only, INR per gram of pure metal)
-- The latest row per symbol is the current rate.
CREATE TABLE IF NOT EXISTS metal_rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    rate_per_gram REAL NOT NULL CHECK (rate_per_gram > 0),
    source TEXT NOT NULL,
    recorded_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_metal_rates_symbol ON metal_rates(symbol, recorded_at);
CREATE INDEX IF NOT EXISTS idx_metal_rates_recorded ON metal_rates(recorded_at);

-- Making charge rules
-- category_id / purity_id NULL act as wildcards during resolution.
-- Dates are ISO YYYY-MM-DD; effective_to NULL means open-ended.
CREATE TABLE IF NOT EXISTS making_charge_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category_id TEXT,
    purity_id TEXT,
    charge_type TEXT NOT NULL CHECK (charge_type IN ('percentage', 'per_gram', 'fixed')),
    rate_value REAL NOT NULL CHECK (rate_value >= 0),
    minimum_charge REAL NOT NULL DEFAULT 0,
    maximum_charge REAL,
    weight_range_min REAL,
    weight_range_max REAL,
    effective_from TEXT NOT NULL,
    effective_to TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_rules_category ON making_charge_rules(category_id, purity_id);
CREATE INDEX IF NOT EXISTS idx_rules_purity ON making_charge_rules(purity_id);

-- Sync log for tracking rate refreshes
CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    provider TEXT,
    status TEXT NOT NULL,
    records_count INTEGER,
    error_message TEXT,
    trigger TEXT,
    synced_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_sync_log_synced ON sync_log(synced_at);

-- Metadata table for tracking import/update status
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
'''


def init_app(app):
    """Register database functions with Flask app and ensure database exists."""
    app.teardown_appcontext(close_db)

    # Always run schema (CREATE IF NOT EXISTS handles idempotency)
    with app.app_context():
        db = get_db()
        db.executescript(get_schema())
        db.commit()
