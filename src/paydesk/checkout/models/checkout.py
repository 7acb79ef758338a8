"""Checkout models."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Union

from attrs import define, field, frozen, setters
from cattrs import Converter
from paydesk.checkout.errors import CheckoutStateError, ValidationError
from paydesk.checkout.util import generate_request_id, is_absolute_url


class CheckoutState(str, Enum):
    """State of a checkout session."""

    created = "created"
    """The checkout was created and has an ID."""

    info_loaded = "info_loaded"
    """The order info and authorization token were retrieved."""

    method_selected = "method_selected"
    """A payment method was chosen."""

    submitted = "submitted"
    """The payment was submitted and a transaction issued."""

    confirmed = "confirmed"
    """The payment was confirmed."""

    @property
    def order(self) -> int:
        """The position of this state in the lifecycle."""
        return STATE_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, CheckoutState):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other):
        if not isinstance(other, CheckoutState):
            return NotImplemented
        return self.order <= other.order

    def __gt__(self, other):
        if not isinstance(other, CheckoutState):
            return NotImplemented
        return self.order > other.order

    def __ge__(self, other):
        if not isinstance(other, CheckoutState):
            return NotImplemented
        return self.order >= other.order


STATE_ORDER = (
    CheckoutState.created,
    CheckoutState.info_loaded,
    CheckoutState.method_selected,
    CheckoutState.submitted,
    CheckoutState.confirmed,
)
"""The lifecycle order of :class:`CheckoutState`."""


def _required(name: str, value: Optional[str]) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{name} is required")
    return value


@frozen(kw_only=True)
class CreateCheckoutForm:
    """Input for creating a checkout."""

    amount: str
    product_id: str
    return_url: str
    notify_url: str
    request_id: Optional[str] = None
    currency: Optional[str] = None

    def validate(self, default_currency: str) -> CreateCheckoutRequest:
        """Validate the form and build the request body.

        Args:
            default_currency: The currency used when none is given.

        Raises:
            ValidationError: If a field is missing or invalid.
        """
        amount = _required("amount", self.amount)
        try:
            amount_value = Decimal(amount)
        except InvalidOperation:
            raise ValidationError(f"Invalid amount: {amount!r}")

        if not amount_value.is_finite() or amount_value <= 0:
            raise ValidationError(f"Invalid amount: {amount!r}")

        product_id = _required("product_id", self.product_id)

        return_url = _required("return_url", self.return_url)
        if not is_absolute_url(return_url):
            raise ValidationError(f"Invalid return_url: {return_url!r}")

        notify_url = _required("notify_url", self.notify_url)
        if not is_absolute_url(notify_url):
            raise ValidationError(f"Invalid notify_url: {notify_url!r}")

        request_id = (self.request_id or "").strip() or generate_request_id()
        currency = (self.currency or "").strip().upper() or default_currency

        return CreateCheckoutRequest(
            req_id=request_id,
            ccy=currency,
            amount=amount,
            product_id=product_id,
            return_url=return_url,
            notify_url=notify_url,
        )


@frozen
class CreateCheckoutRequest:
    """Body of the create request."""

    req_id: str
    ccy: str
    amount: str
    product_id: str
    return_url: str
    notify_url: str


@frozen
class CheckoutInfo:
    """Order info returned by the info step."""

    checkout_id: str
    """The checkout ID."""

    token: str = field(repr=False)
    """The bearer token for later calls."""

    amount: Optional[str] = None
    """The amount, as a decimal string."""

    currency: Optional[str] = None
    """The currency code."""

    country: Optional[str] = None
    """The country code."""

    expires_at: Optional[datetime] = None
    """When the checkout expires."""

    status: Optional[str] = None
    """The backend's order status."""


def _optional_str(v: object) -> Optional[str]:
    if v is None or v == "":
        return None
    elif isinstance(v, bool):
        raise TypeError(f"Invalid value: {v!r}")
    elif isinstance(v, (str, int, float, Decimal)):
        return str(v)
    else:
        raise TypeError(f"Invalid value: {v!r}")


def structure_checkout_info(
    c: Converter, v: object, envelope_token: Optional[str] = None
) -> CheckoutInfo:
    """Structure the ``data`` of an info response.

    The token may be sent in ``data`` or on the envelope itself.
    """
    if not isinstance(v, Mapping):
        raise TypeError(f"Invalid checkout info: {v!r}")

    checkout_id = _optional_str(v.get("checkout_id")) or _optional_str(v.get("id"))
    if not checkout_id:
        raise ValueError("Missing checkout ID")

    token = _optional_str(v.get("token")) or envelope_token
    if not token:
        raise ValueError("Missing authorization token")

    expired_at = v.get("expired_at")

    return CheckoutInfo(
        checkout_id=checkout_id,
        token=token,
        amount=_optional_str(v.get("amount")),
        currency=_optional_str(v.get("ccy")),
        country=_optional_str(v.get("country")),
        expires_at=c.structure(expired_at, datetime) if expired_at else None,
        status=_optional_str(v.get("status")),
    )


# Payment payloads


@frozen
class UpiPayload:
    """UPI transfer details."""

    vpa: Optional[str] = None
    """The UPI ID to pay."""

    holder_name: Optional[str] = None
    holder_phone: Optional[str] = None


@frozen
class BankTransferPayload:
    """Bank transfer details."""

    account_no: str
    """The account number to pay."""

    bank_name: Optional[str] = None
    holder_name: Optional[str] = None
    bank_code: Optional[str] = None


@frozen
class OtherPayload:
    """Details for any other method."""

    method: str
    account_no: Optional[str] = None
    account_name: Optional[str] = None


PaymentPayload = Union[UpiPayload, BankTransferPayload, OtherPayload]


@frozen
class Transaction:
    """A transaction issued at submit time."""

    id: Optional[str]
    """The transaction ID, if the backend sent one."""

    payload: PaymentPayload
    """Method-specific payment details."""

    links: Mapping[str, str] = field(factory=dict)
    """Payer app deep links, by app name."""

    amount: Optional[str] = None
    currency: Optional[str] = None


def structure_payload(method: str, v: Mapping[str, Any]) -> PaymentPayload:
    """Structure the method-specific part of a transaction."""
    holder_name = _optional_str(v.get("holder_name")) or _optional_str(
        v.get("account_name")
    )
    method_key = method.lower()
    if method_key == "upi":
        return UpiPayload(
            vpa=_optional_str(v.get("upi")) or _optional_str(v.get("account_no")),
            holder_name=holder_name,
            holder_phone=_optional_str(v.get("holder_phone")),
        )
    elif method_key == "bank_transfer":
        account_no = _optional_str(v.get("account_no"))
        if not account_no:
            raise ValueError("Missing bank account number")
        return BankTransferPayload(
            account_no=account_no,
            bank_name=_optional_str(v.get("bank_name")),
            holder_name=holder_name,
            bank_code=_optional_str(v.get("bank_code")),
        )
    else:
        return OtherPayload(
            method=method,
            account_no=_optional_str(v.get("account_no")),
            account_name=_optional_str(v.get("account_name"))
            or _optional_str(v.get("holder_name")),
        )


def structure_transaction(c: Converter, v: object, method: str) -> Transaction:
    """Structure the ``data`` of a submit response for ``method``."""
    if not isinstance(v, Mapping):
        raise TypeError(f"Invalid submit response: {v!r}")

    tx = v.get("transaction")
    if not isinstance(tx, Mapping):
        raise ValueError("Missing transaction")

    links = tx.get("links") or {}
    return Transaction(
        id=_optional_str(tx.get("id")) or _optional_str(tx.get("trx_id")),
        payload=structure_payload(method, tx),
        links=c.structure(links, dict[str, str]),
        amount=_optional_str(tx.get("amount")),
        currency=_optional_str(tx.get("ccy")),
    )


# Confirmation


@frozen(kw_only=True)
class ConfirmProof:
    """Evidence that an off-band transfer was completed."""

    proof_id: Optional[str] = None
    """The proof ID; generated when absent or ``"auto"``."""

    proof_urls: Sequence[str] = ()
    """URLs of uploaded proof documents."""


@frozen
class ConfirmRecord:
    """Body of the confirm request."""

    checkout_id: str
    trx_id: str
    proof_id: str
    trx_app: str
    proof_urls: Sequence[str] = ()
    synthetic_transaction_id: bool = False
    """Whether ``trx_id`` was generated locally."""

    def to_body(self) -> dict[str, Any]:
        """Get the request body."""
        return {
            "checkout_id": self.checkout_id,
            "trx_id": self.trx_id,
            "proof_id": self.proof_id,
            "trx_app": self.trx_app,
            "proof_urls": list(self.proof_urls),
        }


# Session


def _set_once(instance, attribute, value):
    current = getattr(instance, attribute.name)
    if current is not None and value != current:
        raise AttributeError(f"{attribute.name} cannot be changed once set")
    return value


@define(kw_only=True)
class CheckoutSession:
    """A single checkout attempt.

    Identity fields are frozen after construction; ``expires_at`` may only be set
    once.
    """

    checkout_id: str = field(on_setattr=setters.frozen)
    """The server-issued checkout ID."""

    request_id: Optional[str] = field(default=None, on_setattr=setters.frozen)
    """The idempotency key of the create request."""

    amount: Optional[str] = field(default=None, on_setattr=_set_once)
    currency: Optional[str] = field(default=None, on_setattr=_set_once)
    country: Optional[str] = None

    state: CheckoutState = CheckoutState.created
    """The current state."""

    auth_token: Optional[str] = field(default=None, repr=False)
    """The bearer token."""

    expires_at: Optional[datetime] = field(default=None, on_setattr=_set_once)
    """When the session expires."""

    expired: bool = False
    """Whether the expiry deadline has passed."""

    resolved_country: Optional[str] = None
    """The country the payment methods were resolved for."""

    selected_method: Optional[str] = None
    """The selected method code."""

    rejected_methods: set[str] = field(factory=set)
    """Method codes refused by the backend at submit time."""

    transaction: Optional[Transaction] = None
    """The submitted transaction."""

    confirmation: Optional[ConfirmRecord] = None
    """The record sent at confirm time."""

    def __repr__(self):
        return (
            "<CheckoutSession "
            f"checkout_id={self.checkout_id} "
            f"state={self.state.value}"
            ">"
        )

    @property
    def is_open(self) -> bool:
        """Whether the session may still be submitted."""
        return self.state < CheckoutState.submitted and not self.expired

    def advance(self, state: CheckoutState) -> bool:
        """Move forward to ``state``.

        Returns:
            Whether a change was made.

        Raises:
            CheckoutStateError: If ``state`` is behind the current state, or the
                session has no token.
        """
        if state == self.state:
            return False

        if state < self.state:
            raise CheckoutStateError(
                f"Cannot go from {self.state.value} to {state.value}"
            )

        if state >= CheckoutState.info_loaded and not self.auth_token:
            raise CheckoutStateError("Session has no authorization token")

        if state >= CheckoutState.submitted and not self.selected_method:
            raise CheckoutStateError("No payment method selected")

        self.state = state
        return True

    def back(self) -> CheckoutState:
        """Go back exactly one state.

        Returns:
            The new state.

        Raises:
            CheckoutStateError: If the current state cannot be left backwards.
        """
        if self.state == CheckoutState.method_selected:
            self.selected_method = None
            self.state = CheckoutState.info_loaded
        elif self.state == CheckoutState.submitted:
            self.transaction = None
            self.state = CheckoutState.method_selected
        else:
            raise CheckoutStateError(f"Cannot go back from {self.state.value}")

        return self.state
