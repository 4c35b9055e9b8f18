"""Provider page sources."""

from functools import partial
from typing import Any

from ..timeline.source import PageSource
from .base import SENSITIVE_FIELDS, sanitize_payload, parse_timestamp, asset_or_none
from .currency import ISO4217_DECIMALS, format_asset, get_precision
from .stripe_source import StripePageSource
from .column_source import ColumnPageSource
from .increase_source import IncreasePageSource
from .simulator_source import SimulatorPageSource, SimulatorConfig

PAGE_SOURCES = {
    "stripe": StripePageSource,
    "column": ColumnPageSource,
    "increase": IncreasePageSource,
    "increase_pending": partial(IncreasePageSource, endpoint="pending_transactions"),
    "increase_declined": partial(IncreasePageSource, endpoint="declined_transactions"),
    "simulator": SimulatorPageSource,
}


def get_page_source(provider: str, **kwargs: Any) -> PageSource:
    """Factory function to get the page source for a provider.

    Args:
        provider: PSP provider name.
        **kwargs: Constructor arguments for the page source.

    Returns:
        PageSource implementation for the provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    source_class = PAGE_SOURCES.get(provider.lower())
    if not source_class:
        raise ValueError(f"Unsupported PSP provider: {provider}")
    return source_class(**kwargs)


__all__ = [
    # Helpers
    "SENSITIVE_FIELDS",
    "sanitize_payload",
    "parse_timestamp",
    "asset_or_none",
    "ISO4217_DECIMALS",
    "format_asset",
    "get_precision",
    # Page sources
    "PAGE_SOURCES",
    "get_page_source",
    "StripePageSource",
    "ColumnPageSource",
    "IncreasePageSource",
    "SimulatorPageSource",
    "SimulatorConfig",
]
