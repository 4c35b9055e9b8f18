"""Currency precision helpers for building canonical assets."""

from typing import Dict

# ISO 4217 minor units for the currencies connectors currently report.
ISO4217_DECIMALS: Dict[str, int] = {
    "AUD": 2,
    "BHD": 3,
    "CAD": 2,
    "CHF": 2,
    "CZK": 2,
    "DKK": 2,
    "EUR": 2,
    "GBP": 2,
    "HKD": 2,
    "HUF": 2,
    "INR": 2,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "MXN": 2,
    "NOK": 2,
    "NZD": 2,
    "PLN": 2,
    "SEK": 2,
    "SGD": 2,
    "USD": 2,
    "ZAR": 2,
}


def get_precision(currency: str, supported: Dict[str, int] = ISO4217_DECIMALS) -> int:
    """Return the number of minor-unit digits for ``currency``.

    Raises:
        ValueError: If the currency is not supported.
    """
    code = (currency or "").upper()
    if code not in supported:
        raise ValueError(f"Unsupported currency: {currency!r}")
    return supported[code]


def format_asset(currency: str, supported: Dict[str, int] = ISO4217_DECIMALS) -> str:
    """Format a currency code as a canonical asset, e.g. ``usd`` -> ``USD/2``."""
    return f"{currency.upper()}/{get_precision(currency, supported)}"
