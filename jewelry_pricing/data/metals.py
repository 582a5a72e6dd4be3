"""Supported metals and purity reference tables."""
from decimal import Decimal

# Supported metals keyed by the symbol used throughout the service
SUPPORTED_METALS = {
    'AU': {
        'name': 'Gold',
        'provider_symbol': 'XAU',
    },
    'AG': {
        'name': 'Silver',
        'provider_symbol': 'XAG',
    },
    'PT': {
        'name': 'Platinum',
        'provider_symbol': 'XPT',
    },
}

# Purity labels and the fraction of pure metal they contain
PURITY_FACTORS = {
    '24K': Decimal('1.0'),
    '22K': Decimal('0.916'),
    '18K': Decimal('0.75'),
    '14K': Decimal('0.583'),
    '10K': Decimal('0.417'),
}


def get_supported_metals() -> list[dict]:
    """Get list of supported metals for dropdowns and status pages."""
    return [
        {
            'symbol': symbol,
            'name': info['name'],
        }
        for symbol, info in SUPPORTED_METALS.items()
    ]


def is_valid_metal(symbol: str) -> bool:
    """Check if a metal symbol is supported."""
    return isinstance(symbol, str) and symbol.upper() in SUPPORTED_METALS


def provider_symbol_map() -> dict[str, str]:
    """Map provider symbols (XAU, XAG, ...) to our metal symbols."""
    return {info['provider_symbol']: symbol for symbol, info in SUPPORTED_METALS.items()}


def normalize_purity(label: str) -> str:
    """Normalize a purity label: '22k' and ' 22K ' both become '22K'."""
    return str(label).strip().upper()


def is_valid_purity(label: str) -> bool:
    return normalize_purity(label) in PURITY_FACTORS


def get_purity_factor(label: str) -> Decimal | None:
    """Get purity fraction for a label, or None if the label is unknown."""
    return PURITY_FACTORS.get(normalize_purity(label))


def get_purities() -> list[dict]:
    """Purity table ordered from purest to least pure."""
    return [
        {'label': label, 'factor': float(factor)}
        for label, factor in sorted(PURITY_FACTORS.items(), key=lambda kv: kv[1], reverse=True)
    ]
