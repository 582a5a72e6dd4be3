"""Caller-facing pricing errors.

Each error carries the HTTP status and machine-readable code the API
renders for it.
"""


class PricingError(Exception):
    """Base exception for all pricing business errors."""
    status_code = 500
    code = 'PRICING_ERROR'

    def __init__(self, message: str = 'Pricing service error'):
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}


class InvalidInputError(PricingError):
    """Caller supplied an invalid value (weight, percentage, rule field...)."""
    status_code = 400
    code = 'INVALID_INPUT'


class UnknownPurityError(PricingError):
    """Purity label is not in the purity table."""
    status_code = 400
    code = 'UNKNOWN_PURITY'

    def __init__(self, purity: str):
        self.purity = purity
        super().__init__(f'Unknown purity: {purity}')


class NotFoundError(PricingError):
    """Requested record does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


class RuleNotFoundError(NotFoundError):
    """No making-charge rule applies to the request."""
    code = 'RULE_NOT_FOUND'


class AllSourcesUnavailableError(PricingError):
    """Every rate provider failed during a refresh."""
    status_code = 503
    code = 'ALL_SOURCES_UNAVAILABLE'

    def __init__(self, errors: dict | None = None):
        self.errors = errors or {}
        detail = '; '.join(f'{name}: {err}' for name, err in self.errors.items())
        message = 'All rate sources unavailable'
        if detail:
            message = f'{message} ({detail})'
        super().__init__(message)


class RatesUnavailableError(PricingError):
    """No current rate could be read from the cache or the store."""
    status_code = 503
    code = 'RATES_UNAVAILABLE'
