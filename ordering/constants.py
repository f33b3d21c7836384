"""Engine constants and accessors for the VENUETAB settings dict."""
from decimal import Decimal

DEFAULTS = {
    'DEFAULT_CURRENCY': 'TRY',
    'MAX_ITEM_QTY': 99,
    'NEAR_LIMIT_RATIO': '0.8',
    'CONFLICT_RETRY_ATTEMPTS': 3,
    'SUBSCRIBE_TIMEOUT': 30.0,
    'CLOSE_PAID_AFTER_MINUTES': 30,
}

# Minor-unit exponent per ISO 4217 code; anything not listed uses 2.
CURRENCY_MINOR_UNITS = {
    'JPY': 0,
    'KRW': 0,
    'VND': 0,
    'CLP': 0,
    'ISK': 0,
    'BHD': 3,
    'KWD': 3,
    'OMR': 3,
    'JOD': 3,
    'TND': 3,
}

# Order and item money columns hold two decimal places.
STORED_DECIMAL_PLACES = 2

ALLOWED_CURRENCY_CODES = frozenset({'TRY', 'USD', 'EUR', 'GBP', 'JPY', 'NPR', 'INR'})


def setting(name):
    """Return VENUETAB[name] from Django settings, falling back to DEFAULTS."""
    from django.conf import settings

    overrides = getattr(settings, 'VENUETAB', None) or {}
    return overrides.get(name, DEFAULTS[name])


def max_item_qty() -> int:
    return int(setting('MAX_ITEM_QTY'))


def near_limit_ratio() -> Decimal:
    return Decimal(str(setting('NEAR_LIMIT_RATIO')))


def default_currency() -> str:
    return normalize_currency(setting('DEFAULT_CURRENCY'))


def normalize_currency(code: str) -> str:
    """Strip whitespace and upper-case; return ISO code (e.g. ' try' -> 'TRY')."""
    if not code:
        return ''
    return (code or '').strip().upper()


def is_storable_currency(code: str) -> bool:
    """True when the currency's minor unit fits the stored money columns."""
    return CURRENCY_MINOR_UNITS.get(normalize_currency(code), 2) <= STORED_DECIMAL_PLACES
