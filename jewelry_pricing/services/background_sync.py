"""
Background Rate Refresh Thread

Runs the gold rate refresh in-process as a background thread when the web
app starts. Used for single-container deployments; multi-worker setups
should run scripts/rate_sync_daemon.py as its own process instead.

The thread refreshes once at start, then every PRICING_SYNC_INTERVAL_SECONDS
while the shop is open (business hours in the configured timezone).
Failures are logged and the next tick tries again.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from jewelry_pricing.services.config import PricingConfig
from jewelry_pricing.services.time_provider import get_now

logger = logging.getLogger('background_sync')

# Global to track if sync thread is running
_sync_thread: Optional[threading.Thread] = None
_stop_event = threading.Event()


def is_within_business_hours(now: datetime, config: PricingConfig) -> bool:
    """True when `now` falls inside the configured shop hours.

    Hours and weekdays are inclusive ranges: (9, 18) means 09:00 to 18:59,
    (0, 5) means Monday to Saturday.
    """
    local = now.astimezone(ZoneInfo(config.timezone))
    first_day, last_day = config.business_days
    open_hour, close_hour = config.business_hours
    return first_day <= local.weekday() <= last_day and open_hour <= local.hour <= close_hour


def run_sync_cycle(app, trigger: str = 'scheduler') -> bool:
    """Run one refresh inside an app context. Returns True on success."""
    from jewelry_pricing.services.exceptions import PricingError
    from jewelry_pricing.services.gold_rate import get_gold_rate_service

    with app.app_context():
        try:
            result = get_gold_rate_service().update_rates(trigger=trigger)
        except PricingError as e:
            logger.error(f"Rate refresh failed: {e.message}")
            return False
    logger.info(f"Rate refresh complete via {result.provider}")
    return True


def start_background_sync(app):
    """Start the background sync thread if not already running.

    Should be called once when the Flask app starts.
    """
    global _sync_thread

    if _sync_thread is not None and _sync_thread.is_alive():
        logger.info("Background sync thread already running")
        return

    _stop_event.clear()
    _sync_thread = threading.Thread(target=_sync_loop, args=(app,), daemon=True, name='rate-sync')
    _sync_thread.start()
    logger.info("Background sync thread started")


def stop_background_sync():
    """Stop the background sync thread gracefully."""
    global _sync_thread

    if _sync_thread is None:
        return

    logger.info("Stopping background sync thread...")
    _stop_event.set()
    _sync_thread.join(timeout=5)
    _sync_thread = None
    logger.info("Background sync thread stopped")


def is_running() -> bool:
    return _sync_thread is not None and _sync_thread.is_alive()


def _run_cycle_safely(app, trigger: str):
    try:
        run_sync_cycle(app, trigger=trigger)
    except Exception as e:
        logger.exception(f"Sync cycle failed: {e}")


def _sync_loop(app):
    """Main sync loop that runs in background thread."""
    config: PricingConfig = app.config['PRICING_CONFIG']
    interval = config.sync_interval_seconds

    logger.info("Background sync loop started")
    logger.info(f"  Sync interval: {interval}s")
    logger.info(f"  Business hours: {config.business_hours} days {config.business_days} ({config.timezone})")

    _run_cycle_safely(app, trigger='startup')

    while not _stop_event.is_set():
        next_sync = datetime.now(timezone.utc) + timedelta(seconds=interval)
        logger.debug(f"Next sync at {next_sync.isoformat()}")

        if _stop_event.wait(timeout=interval):
            return

        if not is_within_business_hours(get_now(), config):
            logger.debug("Outside business hours, skipping refresh")
            continue
        _run_cycle_safely(app, trigger='scheduler')
