"""SQLite-backed rate history (append-only) and sync log."""
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from jewelry_pricing.constants import MONEY_QUANTUM
from jewelry_pricing.services.exceptions import RatesUnavailableError
from jewelry_pricing.services.providers import RateQuote
from jewelry_pricing.services.time_provider import get_now, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetalRate:
    """One persisted rate row."""
    symbol: str
    rate_per_gram: Decimal
    source: str
    recorded_at: str

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'rate_per_gram': float(self.rate_per_gram),
            'source': self.source,
            'recorded_at': self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'MetalRate':
        return cls(
            symbol=data['symbol'],
            rate_per_gram=Decimal(str(data['rate_per_gram'])).quantize(MONEY_QUANTUM),
            source=data['source'],
            recorded_at=data['recorded_at'],
        )

    @classmethod
    def from_row(cls, row) -> 'MetalRate':
        return cls(
            symbol=row['symbol'],
            rate_per_gram=Decimal(str(row['rate_per_gram'])).quantize(MONEY_QUANTUM),
            source=row['source'],
            recorded_at=row['recorded_at'],
        )


class RateHistoryRepository:
    """Reads and appends rows in metal_rates and sync_log.

    Rows are never updated in place, so concurrent refreshes only ever
    add rows and the newest insert per symbol wins.
    """

    def __init__(self, db: sqlite3.Connection):
        self._db = db

    def append(self, quotes: list[RateQuote], recorded_at: datetime | None = None) -> list[MetalRate]:
        """Insert one row per quote in a single transaction."""
        stamp = to_iso(recorded_at or get_now())
        rows = []
        for quote in quotes:
            if quote.rate_per_gram <= 0:
                raise ValueError(f"Rate for {quote.symbol} must be positive")
            rows.append(MetalRate(
                symbol=quote.symbol,
                rate_per_gram=Decimal(quote.rate_per_gram).quantize(MONEY_QUANTUM),
                source=quote.source,
                recorded_at=stamp,
            ))

        try:
            with self._db:
                self._db.executemany(
                    'INSERT INTO metal_rates (symbol, rate_per_gram, source, recorded_at) VALUES (?, ?, ?, ?)',
                    [(r.symbol, float(r.rate_per_gram), r.source, r.recorded_at) for r in rows],
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to persist rates: {e}")
            raise RatesUnavailableError('Rate store unavailable') from e
        return rows

    def latest_rates(self) -> dict[str, MetalRate]:
        """Most recently recorded row per symbol; ties go to the later insert."""
        try:
            rows = self._db.execute('''
                SELECT symbol, rate_per_gram, source, recorded_at
                FROM (
                    SELECT symbol, rate_per_gram, source, recorded_at,
                           ROW_NUMBER() OVER (PARTITION BY symbol ORDER BY recorded_at DESC, id DESC) AS rn
                    FROM metal_rates
                )
                WHERE rn = 1
                ORDER BY symbol
            ''').fetchall()
        except sqlite3.Error as e:
            raise RatesUnavailableError('Rate store unavailable') from e
        return {row['symbol']: MetalRate.from_row(row) for row in rows}

    def history(self, days: int, symbol: str | None = None, now: datetime | None = None) -> list[MetalRate]:
        """Rows recorded within the last `days` days, newest first."""
        cutoff = to_iso((now or get_now()) - timedelta(days=days))
        query = 'SELECT symbol, rate_per_gram, source, recorded_at FROM metal_rates WHERE recorded_at >= ?'
        params: list = [cutoff]
        if symbol:
            query += ' AND symbol = ?'
            params.append(symbol)
        query += ' ORDER BY recorded_at DESC, id DESC'
        try:
            rows = self._db.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise RatesUnavailableError('Rate store unavailable') from e
        return [MetalRate.from_row(row) for row in rows]

    def daily_trends(self, symbol: str, days: int, now: datetime | None = None) -> list[dict]:
        """Per-day min/max/average for one symbol, oldest day first."""
        cutoff = to_iso((now or get_now()) - timedelta(days=days))
        try:
            rows = self._db.execute('''
                SELECT substr(recorded_at, 1, 10) AS day,
                       MIN(rate_per_gram) AS min_rate,
                       MAX(rate_per_gram) AS max_rate,
                       AVG(rate_per_gram) AS avg_rate,
                       COUNT(*) AS samples
                FROM metal_rates
                WHERE symbol = ? AND recorded_at >= ?
                GROUP BY day
                ORDER BY day
            ''', (symbol, cutoff)).fetchall()
        except sqlite3.Error as e:
            raise RatesUnavailableError('Rate store unavailable') from e
        return [
            {
                'date': row['day'],
                'min': round(row['min_rate'], 2),
                'max': round(row['max_rate'], 2),
                'average': round(row['avg_rate'], 2),
                'samples': row['samples'],
            }
            for row in rows
        ]

    def last_update_time(self) -> str | None:
        try:
            row = self._db.execute('SELECT MAX(recorded_at) AS last_update FROM metal_rates').fetchone()
        except sqlite3.Error as e:
            raise RatesUnavailableError('Rate store unavailable') from e
        return row['last_update'] if row else None

    def log_sync(
        self,
        provider: str | None,
        status: str,
        records: int,
        error: str | None = None,
        trigger: str | None = None,
    ) -> None:
        """Log a refresh attempt. Logging failures never fail the refresh."""
        try:
            with self._db:
                self._db.execute('''
                    INSERT INTO sync_log (provider, status, records_count, error_message, trigger)
                    VALUES (?, ?, ?, ?, ?)
                ''', (provider, status, records, error, trigger))
        except sqlite3.Error as e:
            logger.warning(f"Failed to write sync log: {e}")

    def recent_syncs(self, limit: int = 10) -> list[dict]:
        rows = self._db.execute(
            'SELECT provider, status, records_count, error_message, trigger, synced_at '
            'FROM sync_log ORDER BY id DESC LIMIT ?',
            (limit,)
        ).fetchall()
        return [dict(row) for row in rows]
