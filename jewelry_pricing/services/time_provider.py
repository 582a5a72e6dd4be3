"""Time provider abstraction for testable time handling.

All timestamps in this module are UTC. Rule effective dates are compared
against the UTC calendar date.

This module provides a TimeProvider class that can be frozen for testing,
allowing deterministic tests that don't depend on the actual clock.
"""
from datetime import date, datetime, timezone
from typing import Optional


class TimeProvider:
    """Provides the current time, allowing tests to freeze it.

    Usage:
        # Production: uses real UTC time
        provider = TimeProvider()
        now = provider.now()

        # Testing: freeze to a specific instant
        provider = TimeProvider(frozen_at=datetime(2026, 1, 15, 10, 30, tzinfo=timezone.utc))
        today = provider.today()  # Always returns 2026-01-15
    """

    _instance: Optional['TimeProvider'] = None

    def __init__(self, frozen_at: Optional[datetime] = None):
        """Initialize TimeProvider.

        Args:
            frozen_at: If provided, now() always returns this instant.
                       Naive values are treated as UTC.
        """
        if frozen_at is not None and frozen_at.tzinfo is None:
            frozen_at = frozen_at.replace(tzinfo=timezone.utc)
        self._frozen_at = frozen_at

    def now(self) -> datetime:
        """Get current UTC time, or the frozen instant if set."""
        if self._frozen_at is not None:
            return self._frozen_at
        return datetime.now(timezone.utc)

    def today(self) -> date:
        """Get current UTC date."""
        return self.now().date()

    @classmethod
    def get_default(cls) -> 'TimeProvider':
        """Get the default TimeProvider instance (singleton for production)."""
        if cls._instance is None:
            cls._instance = TimeProvider()
        return cls._instance

    @classmethod
    def set_default(cls, provider: 'TimeProvider') -> None:
        """Set the default TimeProvider (for testing)."""
        cls._instance = provider

    @classmethod
    def reset_default(cls) -> None:
        """Reset to production TimeProvider."""
        cls._instance = None


def get_now(time_provider: Optional[TimeProvider] = None) -> datetime:
    """Convenience function to get the current UTC time."""
    if time_provider is None:
        time_provider = TimeProvider.get_default()
    return time_provider.now()


def get_today(time_provider: Optional[TimeProvider] = None) -> date:
    """Convenience function to get today's UTC date."""
    if time_provider is None:
        time_provider = TimeProvider.get_default()
    return time_provider.today()


def to_iso(moment: datetime) -> str:
    """Serialize a timestamp as ISO-8601 UTC with a 'Z' suffix."""
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def parse_iso(value: str) -> datetime:
    """Parse timestamps written by to_iso() (or any ISO-8601 string)."""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
