"""Pluggable metal rate provider interface."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class RateQuote:
    """Metal rate data point, normalized to INR per gram of pure metal."""
    symbol: str             # AU, AG, PT
    rate_per_gram: Decimal
    source: str


class MetalRateProvider(ABC):
    """Abstract base for metal rate providers.

    Providers make exactly one attempt per call. Retrying and failing over
    to the next provider is the caller's job.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier."""
        pass

    @property
    @abstractmethod
    def requires_api_key(self) -> bool:
        """Whether this provider needs an API key."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if provider is properly configured (API key set if required)."""
        pass

    @abstractmethod
    def fetch_rates(self, symbols: list[str]) -> list[RateQuote]:
        """Fetch current rates for the given metal symbols.

        Args:
            symbols: Metal symbols to fetch (AU first; AU is mandatory)

        Returns:
            List of RateQuote objects

        Raises:
            UnconfiguredError: Credentials missing or rejected
            NetworkError: Transport failure or timeout
            MalformedResponseError: Response could not be parsed
        """
        pass


class ProviderError(Exception):
    """Base exception for provider errors."""
    pass


class UnconfiguredError(ProviderError):
    """Provider credentials are missing. Retrying cannot help."""
    pass


class AuthenticationError(UnconfiguredError):
    """API key rejected by the provider."""
    pass


class NetworkError(ProviderError):
    """Network connectivity issue or timeout."""
    pass


class RateLimitError(NetworkError):
    """API rate limit exceeded."""
    pass


class MalformedResponseError(ProviderError):
    """Provider answered with something we could not parse."""
    pass
