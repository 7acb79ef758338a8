"""Config models."""
from collections.abc import Sequence

from attrs import field, frozen, validators

SUCCESS_CODE = "0000"
"""The envelope code signalling success."""


@frozen
class ErrorCodeConfig:
    """Envelope codes that map to specific errors."""

    not_found: Sequence[str] = ("4004",)
    """Codes meaning the checkout ID is unknown."""

    expired: Sequence[str] = ("4010",)
    """Codes meaning the checkout has expired."""

    method_rejected: Sequence[str] = ("4022",)
    """Codes meaning the method is not accepted for the country."""


@frozen
class ApiConfig:
    """Backend API config."""

    base_url: str
    """The base URL of the payment platform."""

    timeout: float = field(default=30.0, validator=validators.gt(0))
    """Seconds to wait for any single request."""

    error_codes: ErrorCodeConfig = ErrorCodeConfig()
    """Envelope code mapping."""


@frozen
class CheckoutConfig:
    """Checkout session defaults."""

    currency: str = "INR"
    """The default currency code."""

    country: str = "IN"
    """Country sent at submit time when none is known."""

    tick_interval: float = field(default=1.0, validator=validators.gt(0))
    """Seconds between expiry clock ticks."""

    synthesize_transaction_id: bool = True
    """Generate a transaction ID at confirm time if the backend sent none."""


@frozen
class Config:
    """The main config class."""

    api: ApiConfig
    checkout: CheckoutConfig = CheckoutConfig()
