#!/usr/bin/env python3
"""
Rate Sync Daemon

Standalone process that refreshes metal rates once at start, then every
PRICING_SYNC_INTERVAL_SECONDS during business hours. Use this instead of
the in-process background thread when the API runs with several workers.

Usage:
    python scripts/rate_sync_daemon.py

Environment Variables:
    DATA_DIR: Path to data directory (default: /app/data)
    PRICING_SYNC_INTERVAL_SECONDS: Sleep between cycles (default: 300)
    PRICING_BUSINESS_HOURS / PRICING_BUSINESS_DAYS / PRICING_TIMEZONE:
        refresh window (default: 9-18, Monday-Saturday, Asia/Kolkata)
    GOLDAPI_KEY, METALPRICEAPI_KEY: provider credentials
"""

import os
import sqlite3
import sys
import time
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from jewelry_pricing.db import DB_FILENAME, connect, get_schema  # noqa: E402
from jewelry_pricing.services.background_sync import is_within_business_hours  # noqa: E402
from jewelry_pricing.services.cache import get_rate_cache  # noqa: E402
from jewelry_pricing.services.config import PricingConfig, load_pricing_config  # noqa: E402
from jewelry_pricing.services.exceptions import PricingError  # noqa: E402
from jewelry_pricing.services.gold_rate import build_gold_rate_service  # noqa: E402
from jewelry_pricing.services.time_provider import get_now  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('rate_daemon')

DAEMON_VERSION = '1.0.0'


class RateSyncDaemon:
    """Refreshes metal rates on a fixed interval inside business hours."""

    def __init__(self, config: Optional[PricingConfig] = None, data_dir: Optional[str] = None, sleep=time.sleep):
        self.config = config or load_pricing_config()
        self.data_dir = data_dir or os.environ.get('DATA_DIR', '/app/data')
        self.db_path = os.path.join(self.data_dir, DB_FILENAME)
        self.sleep_seconds = self.config.sync_interval_seconds
        self._sleep = sleep

    def run(self):
        """Main daemon loop."""
        logger.info(f"Starting rate sync daemon v{DAEMON_VERSION}")
        logger.info(f"  DB path: {self.db_path}")
        logger.info(f"  Sync interval: {self.sleep_seconds}s")
        logger.info(f"  Cache backend: {self.config.cache_backend}")

        self.ensure_database()

        # Once at start regardless of the window
        self.sync_cycle(trigger='startup')

        while True:
            next_sync = datetime.now(timezone.utc) + timedelta(seconds=self.sleep_seconds)
            logger.info(f"Sleeping until {next_sync.isoformat()}")
            self._sleep(self.sleep_seconds)

            if not is_within_business_hours(get_now(), self.config):
                logger.info("Outside business hours, skipping refresh")
                continue
            self.sync_cycle(trigger='daemon')

    def ensure_database(self):
        """Ensure database exists with proper schema."""
        os.makedirs(self.data_dir, exist_ok=True)
        conn = connect(self.db_path, timeout=self.config.store_timeout_seconds)
        try:
            conn.executescript(get_schema())
            conn.commit()
        finally:
            conn.close()

    def sync_cycle(self, trigger: str = 'daemon') -> bool:
        """Execute one refresh. Failures are logged; the next tick retries."""
        conn = connect(self.db_path, timeout=self.config.store_timeout_seconds)
        try:
            service = build_gold_rate_service(self.config, conn, get_rate_cache(self.config, self.data_dir))
            result = service.update_rates(trigger=trigger)
            self.update_state(conn, 'success', None)
            logger.info(f"Refreshed {len(result.rates)} rates from {result.provider}")
            return True
        except PricingError as e:
            logger.error(f"Refresh failed: {e.message}")
            self.update_state(conn, 'failed', e.message)
            return False
        except Exception as e:
            logger.exception(f"Sync cycle failed: {e}")
            return False
        finally:
            conn.close()

    def update_state(self, conn, result: str, error: Optional[str]):
        """Record the last daemon run in the meta table."""
        next_sync = (datetime.now(timezone.utc) + timedelta(seconds=self.sleep_seconds)).isoformat()
        value = f'{result}|{error or ""}|next={next_sync}|v{DAEMON_VERSION}'
        try:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO meta (key, value, updated_at) VALUES ('rate_daemon_state', ?, datetime('now'))",
                    (value,)
                )
        except sqlite3.Error as e:
            logger.warning(f"Failed to record daemon state: {e}")


def main():
    """Entry point."""
    daemon = RateSyncDaemon()
    daemon.run()


if __name__ == '__main__':
    main()
