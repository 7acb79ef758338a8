"""Payment method resolution."""
from collections.abc import Iterable
from typing import Optional

from loguru import logger
from paydesk.checkout.models.services import (
    MethodResolution,
    PaymentMethodOption,
    ServicesCatalog,
)

METHOD_NAMES = {
    "upi": "UPI",
    "upi_lite": "UPI Lite",
    "wallet": "Wallet",
    "bank_card": "Bank Card",
    "bank_transfer": "Bank Transfer",
    "usdt": "USDT",
    "credit_card": "Credit Card",
}
"""Display names of known method codes."""

APP_NAMES = {
    "upi": "Paytm",
    "bank_transfer": "SBI Online",
    "credit_card": "Visa",
}
"""The payer app reported at confirm time, by method code."""

UNKNOWN_APP_NAME = "Unknown"

DEFAULT_OPTIONS = (
    PaymentMethodOption(
        code="upi",
        display_name="UPI",
        description="Scan or transfer with a UPI app",
    ),
    PaymentMethodOption(
        code="bank_transfer",
        display_name="Bank Transfer",
        description="Direct transfer between bank accounts",
    ),
)
"""Options offered when the catalog yields none."""


def get_method_name(code: str) -> str:
    """Get the display name for a method code."""
    return METHOD_NAMES.get(code.lower(), code.upper())


def get_app_name(code: Optional[str]) -> str:
    """Get the payer app name for a method code."""
    if not code:
        return UNKNOWN_APP_NAME
    return APP_NAMES.get(code.lower(), UNKNOWN_APP_NAME)


def make_option(code: str) -> PaymentMethodOption:
    """Make a :class:`PaymentMethodOption` for a method code."""
    name = get_method_name(code)
    return PaymentMethodOption(
        code=code,
        display_name=name,
        description=f"Pay with {name}",
    )


def resolve_country(
    catalog: Optional[ServicesCatalog], country: Optional[str]
) -> Optional[str]:
    """Get the country to resolve methods for.

    Uses ``country`` if given, otherwise the first country in the catalog.
    """
    if country:
        return country
    if catalog is not None and catalog.countries:
        return catalog.countries[0]
    return None


def _unique_options(codes: Iterable[str]) -> list[PaymentMethodOption]:
    seen = set()
    options = []
    for code in codes:
        if not code:
            continue
        key = code.lower()
        if key in seen:
            continue
        seen.add(key)
        options.append(make_option(code))
    return options


def resolve_payment_methods(
    catalog: Optional[ServicesCatalog], country: Optional[str] = None
) -> MethodResolution:
    """Resolve the payment options of a checkout.

    Options follow the order of the country's method codes, without duplicates.
    If the country is unresolvable, unconfigured, or has no methods, the
    :data:`DEFAULT_OPTIONS` are returned instead; the result is never empty.

    Args:
        catalog: The services catalog, or None if it could not be loaded.
        country: The session's country, if known.

    Returns:
        A :class:`MethodResolution`.
    """
    target = resolve_country(catalog, country)
    country_config = catalog.get_country_config(target) if catalog else None

    options = _unique_options(country_config.method_codes) if country_config else []

    if not options:
        logger.debug(f"No payment methods for country {target!r}, using defaults")
        return MethodResolution(country=target, options=DEFAULT_OPTIONS, fallback=True)

    return MethodResolution(country=target, options=tuple(options))
