"""Health check endpoint."""
import sqlite3

from flask import Blueprint, current_app, jsonify

from jewelry_pricing.db import get_db
from jewelry_pricing.services import background_sync
from jewelry_pricing.services.exceptions import PricingError
from jewelry_pricing.services.rate_history import RateHistoryRepository

health_bp = Blueprint('health', __name__)


@health_bp.route('/healthz')
def healthz():
    """Return health status: DB reachability, cache backend and last rate update.

    200 when the database answers, 503 otherwise. A cache outage only
    degrades the status because reads fall back to the database.
    """
    cache = current_app.extensions['rate_cache']
    cache_ok = cache.ping()

    try:
        db = get_db()
        db.execute('SELECT 1').fetchone()
        last_update = RateHistoryRepository(db).last_update_time()
        db_ok = True
    except (sqlite3.Error, PricingError) as e:
        current_app.logger.error(f"Health check database query failed: {e}")
        db_ok = False
        last_update = None

    if not db_ok:
        status = 'error'
    elif not cache_ok:
        status = 'degraded'
    else:
        status = 'ok'

    return jsonify({
        'status': status,
        'database': 'ok' if db_ok else 'unreachable',
        'cache': {'backend': cache.backend, 'reachable': cache_ok},
        'last_rate_update': last_update,
        'background_sync': background_sync.is_running(),
    }), 200 if db_ok else 503
