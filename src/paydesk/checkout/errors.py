"""Checkout errors."""
from typing import Optional


class CheckoutError(RuntimeError):
    """Base class for errors raised by a checkout operation."""

    pass


class ValidationError(ValueError, CheckoutError):
    """Raised when input does not validate.

    Always raised before any request is sent.
    """

    pass


class CheckoutStateError(CheckoutError):
    """Raised when an operation is not allowed in the current session state."""

    pass


class OperationInProgressError(CheckoutStateError):
    """Raised when the same operation is already awaiting a response."""

    pass


class InvalidSelectionError(CheckoutError):
    """Raised when a payment method is not in the resolved option set."""

    pass


class BackendError(CheckoutError):
    """Raised when the backend responds with a non-success envelope."""

    code: Optional[str]
    """The envelope code."""

    msg: str
    """The envelope message."""

    def __init__(self, msg: str = "", code: Optional[str] = None):
        super().__init__(msg or (f"Backend error {code}" if code else "Backend error"))
        self.code = code
        self.msg = msg


class SessionNotFoundError(BackendError):
    """Raised when the checkout ID is unknown to the backend."""

    pass


class SessionExpiredError(BackendError):
    """Raised when the checkout session has expired."""

    pass


class ExpiredError(SessionExpiredError):
    """Raised when the local expiry clock has fired."""

    pass


class MethodRejectedError(BackendError):
    """Raised when the backend refuses the payment method for the country."""

    pass


class NetworkError(CheckoutError):
    """Raised when a request could not be completed."""

    pass


class NetworkTimeoutError(NetworkError):
    """Raised when a request does not complete within its time limit."""

    pass
