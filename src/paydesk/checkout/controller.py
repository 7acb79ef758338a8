"""Checkout session controller."""
from collections.abc import Awaitable, Callable, Mapping
from functools import wraps
from typing import Any, Generic, Optional, TypeVar, Union

from attrs import frozen
from cattrs.errors import BaseValidationError
from loguru import logger
from paydesk.checkout.api import CheckoutAPI
from paydesk.checkout.clock import ExpiryClock, TickCallback
from paydesk.checkout.errors import (
    BackendError,
    CheckoutError,
    CheckoutStateError,
    ExpiredError,
    InvalidSelectionError,
    MethodRejectedError,
    NetworkError,
    OperationInProgressError,
    SessionExpiredError,
    SessionNotFoundError,
    ValidationError,
)
from paydesk.checkout.log import AuditLogType, audit_log
from paydesk.checkout.methods import get_app_name, resolve_payment_methods
from paydesk.checkout.models.checkout import (
    CheckoutSession,
    CheckoutState,
    ConfirmProof,
    ConfirmRecord,
    CreateCheckoutForm,
    Transaction,
    structure_checkout_info,
    structure_transaction,
)
from paydesk.checkout.models.config import CheckoutConfig
from paydesk.checkout.models.services import (
    MethodResolution,
    PaymentMethodOption,
    ServicesCatalog,
    structure_services_catalog,
)
from paydesk.checkout.serialization import get_converter
from paydesk.checkout.util import generate_proof_id, generate_transaction_id

T = TypeVar("T")

AUTO_PROOF_ID = "auto"
"""Proof ID value requesting a generated ID."""

_PARSE_ERRORS = (TypeError, ValueError, KeyError, BaseValidationError)


@frozen
class OperationResult(Generic[T]):
    """The outcome of a controller operation.

    Exactly one of ``value`` and ``error`` is set, unless the operation has no
    value.
    """

    value: Optional[T] = None
    error: Optional[CheckoutError] = None

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.error is None

    def unwrap(self) -> T:
        """Get the value, raising the error if the operation failed."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore


def _operation(name: str):
    """Wrap an async operation.

    Rejects a call while another call of the same operation on the same session
    is awaiting, and converts :class:`CheckoutError` to a failed result.
    """

    def decorator(
        func: Callable[..., Awaitable[T]]
    ) -> Callable[..., Awaitable[OperationResult[T]]]:
        @wraps(func)
        async def wrapped(self: "CheckoutController", *args, **kwargs):
            key = (self._generation, name)
            if key in self._in_flight:
                return OperationResult(
                    error=OperationInProgressError(f"{name} is already in progress")
                )

            self._in_flight.add(key)
            try:
                value = await func(self, *args, **kwargs)
            except CheckoutError as e:
                logger.info(f"Checkout {name} failed: {e!r}")
                return OperationResult(error=e)
            finally:
                self._in_flight.discard(key)

            return OperationResult(value=value)

        return wrapped

    return decorator


def _local_operation(func: Callable[..., T]) -> Callable[..., OperationResult[T]]:
    """Wrap a local operation, converting :class:`CheckoutError` to a result."""

    @wraps(func)
    def wrapped(self: "CheckoutController", *args, **kwargs):
        try:
            return OperationResult(value=func(self, *args, **kwargs))
        except CheckoutError as e:
            logger.info(f"Checkout {func.__name__} failed: {e!r}")
            return OperationResult(error=e)

    return wrapped


def _parse(func: Callable[..., T], *args) -> T:
    """Call a structure function, raising :class:`BackendError` on bad data."""
    try:
        return func(*args)
    except _PARSE_ERRORS as e:
        raise BackendError(f"Invalid response: {e}") from e


class CheckoutController:
    """Drives a checkout session from creation to confirmation.

    Operations never raise :class:`CheckoutError`; they return an
    :class:`OperationResult` and leave the session in its last successful state
    on failure. No operation retries a request.

    Warning:
        Not thread-safe. Must be used from within a single event loop.
    """

    session: Optional[CheckoutSession]
    """The current session."""

    resolution: Optional[MethodResolution]
    """The last resolved payment methods."""

    def __init__(
        self,
        api: CheckoutAPI,
        config: Optional[CheckoutConfig] = None,
        *,
        on_tick: Optional[TickCallback] = None,
        on_expire: Optional[Callable[[CheckoutSession], Any]] = None,
    ):
        self.api = api
        self.config = config if config is not None else CheckoutConfig()
        self.session = None
        self.resolution = None
        self.clock = ExpiryClock(
            self._handle_expire, interval=self.config.tick_interval, on_tick=on_tick
        )
        self._on_expire = on_expire
        self._generation = 0
        self._in_flight: set[tuple[int, str]] = set()

    @property
    def state(self) -> Optional[CheckoutState]:
        """The session state, or None before a session exists."""
        return self.session.state if self.session is not None else None

    @property
    def options(self) -> tuple[PaymentMethodOption, ...]:
        """The selectable payment methods."""
        return tuple(self.resolution.options) if self.resolution is not None else ()

    def _require_session(self) -> CheckoutSession:
        if self.session is None:
            raise CheckoutStateError("No checkout session")
        return self.session

    def _check_current(self, generation: int, session: Optional[CheckoutSession]):
        """Raise if the session was reset or replaced while awaiting."""
        if generation != self._generation or self.session is not session:
            raise CheckoutStateError("Checkout session was reset")

    @_operation("create")
    async def create(
        self, form: Union[CreateCheckoutForm, Mapping[str, Any]]
    ) -> CheckoutSession:
        """Create a checkout.

        Args:
            form: A :class:`CreateCheckoutForm` or a mapping of its fields.

        Returns:
            The new :class:`CheckoutSession`, in the ``created`` state.
        """
        if self.session is not None:
            raise CheckoutStateError("A checkout session already exists")

        if not isinstance(form, CreateCheckoutForm):
            try:
                form = get_converter().structure(form, CreateCheckoutForm)
            except _PARSE_ERRORS as e:
                raise ValidationError(f"Invalid checkout form: {e}") from e

        request = form.validate(self.config.currency)

        generation = self._generation
        envelope = await self.api.create(get_converter().unstructure(request))
        self._check_current(generation, None)

        data = envelope.data if isinstance(envelope.data, Mapping) else {}
        checkout_id = data.get("checkout_id")
        if not checkout_id or not isinstance(checkout_id, (str, int)):
            raise BackendError("Missing checkout ID")

        token = data.get("token")
        session = CheckoutSession(
            checkout_id=str(checkout_id),
            request_id=request.req_id,
            amount=request.amount,
            currency=request.ccy,
            auth_token=token if isinstance(token, str) and token else envelope.token,
        )
        self.session = session

        audit_log.bind(type=AuditLogType.checkout_create).success(
            "Checkout {checkout} created, request {}",
            request.req_id,
            checkout=session,
        )
        return session

    @_operation("info")
    async def load_info(self, checkout_id: Optional[str] = None) -> CheckoutSession:
        """Load the checkout info and resolve its payment methods.

        Opens a session for ``checkout_id`` if none exists. Starts the expiry
        clock if the checkout has a deadline.

        Args:
            checkout_id: The checkout ID. Defaults to the current session's.

        Returns:
            The :class:`CheckoutSession`, in the ``info_loaded`` state.
        """
        session = self.session
        checkout_id = (checkout_id or "").strip()
        if not checkout_id:
            if session is None:
                raise ValidationError("checkout_id is required")
            checkout_id = session.checkout_id

        if session is not None:
            if checkout_id != session.checkout_id:
                raise CheckoutStateError("A different checkout session is active")
            if session.state > CheckoutState.info_loaded:
                raise CheckoutStateError(
                    f"Cannot reload info in state {session.state.value}"
                )

        generation = self._generation
        envelope = await self.api.info(checkout_id)
        self._check_current(generation, session)

        info = _parse(
            structure_checkout_info, get_converter(), envelope.data, envelope.token
        )

        country = (session.country if session is not None else None) or info.country
        catalog = await self._load_catalog(checkout_id, info.token)
        self._check_current(generation, session)

        resolution = resolve_payment_methods(catalog, country)
        if resolution.fallback:
            logger.warning(
                f"Checkout {checkout_id} has no payment methods for "
                f"{resolution.country!r}, offering defaults"
            )

        if session is None:
            session = CheckoutSession(
                checkout_id=checkout_id,
                amount=info.amount,
                currency=info.currency,
            )
            self.session = session
        else:
            if session.amount is None:
                session.amount = info.amount
            if session.currency is None:
                session.currency = info.currency

        if session.country is None:
            session.country = info.country

        if info.expires_at is not None:
            if session.expires_at is None:
                session.expires_at = info.expires_at
            elif session.expires_at != info.expires_at:
                logger.warning(
                    f"Checkout {checkout_id} reported a new deadline "
                    f"{info.expires_at}, keeping {session.expires_at}"
                )

        session.auth_token = info.token
        session.resolved_country = resolution.country
        self.resolution = resolution
        session.advance(CheckoutState.info_loaded)

        if session.expires_at is not None and not session.expired:
            self.clock.start(session.expires_at)

        audit_log.bind(type=AuditLogType.checkout_info).success(
            "Checkout {checkout} loaded, country {}, methods {}",
            resolution.country,
            ",".join(resolution.codes),
            checkout=session,
        )
        return session

    async def _load_catalog(
        self, checkout_id: str, token: str
    ) -> Optional[ServicesCatalog]:
        """Get the services catalog.

        Returns None for failures that should fall back to the default methods.
        """
        try:
            envelope = await self.api.services(checkout_id, token)
        except (SessionNotFoundError, SessionExpiredError):
            raise
        except (BackendError, NetworkError) as e:
            logger.warning(f"Could not load services for checkout {checkout_id}: {e}")
            return None

        try:
            return structure_services_catalog(get_converter(), envelope.data)
        except _PARSE_ERRORS as e:
            logger.warning(f"Invalid services catalog for checkout {checkout_id}: {e}")
            return None

    @_local_operation
    def select_method(self, code: str) -> CheckoutSession:
        """Select a payment method from the resolved options.

        Returns:
            The :class:`CheckoutSession`, in the ``method_selected`` state.
        """
        session = self._require_session()
        if (
            session.state < CheckoutState.info_loaded
            or session.state > CheckoutState.method_selected
        ):
            raise CheckoutStateError(
                f"Cannot select a method in state {session.state.value}"
            )

        if self.resolution is None or self.resolution.get_option(code) is None:
            raise InvalidSelectionError(f"Payment method {code!r} is not available")

        if code in session.rejected_methods:
            raise InvalidSelectionError(f"Payment method {code!r} was rejected")

        session.selected_method = code
        session.advance(CheckoutState.method_selected)

        audit_log.bind(type=AuditLogType.checkout_select).info(
            "Checkout {checkout} selected {}", code, checkout=session
        )
        return session

    @_operation("submit")
    async def submit(self) -> Transaction:
        """Submit the selected payment method.

        Returns:
            The issued :class:`Transaction`.
        """
        session = self._require_session()
        if session.state != CheckoutState.method_selected:
            raise CheckoutStateError(
                "A payment method must be selected before submitting"
            )

        if not session.auth_token:
            raise CheckoutStateError("Session has no authorization token")

        if session.expired or self.clock.expired:
            raise ExpiredError("Checkout session has expired")

        method = session.selected_method
        assert method is not None
        country = session.country or session.resolved_country or self.config.country

        if method in session.rejected_methods:
            raise MethodRejectedError(
                f"Payment method {method!r} is not accepted for {country}"
            )

        generation = self._generation
        try:
            envelope = await self.api.submit(
                session.checkout_id, method, country, session.auth_token
            )
        except MethodRejectedError:
            if generation == self._generation:
                session.rejected_methods.add(method)
            raise

        self._check_current(generation, session)
        if (
            session.state != CheckoutState.method_selected
            or session.selected_method != method
        ):
            raise CheckoutStateError("Checkout session changed while submitting")

        transaction = _parse(structure_transaction, get_converter(), envelope.data, method)

        session.transaction = transaction
        session.advance(CheckoutState.submitted)

        audit_log.bind(type=AuditLogType.checkout_submit).success(
            "Checkout {checkout} submitted with {} for {}, transaction {}",
            method,
            country,
            transaction.id,
            checkout=session,
        )
        return transaction

    def _make_confirm_record(
        self, session: CheckoutSession, proof: ConfirmProof
    ) -> ConfirmRecord:
        transaction = session.transaction
        assert transaction is not None

        synthetic = False
        trx_id = transaction.id
        if not trx_id:
            if not self.config.synthesize_transaction_id:
                raise BackendError("Submit response had no transaction ID")
            trx_id = generate_transaction_id()
            synthetic = True
            logger.warning(
                f"Checkout {session.checkout_id} has no transaction ID, "
                f"confirming with generated {trx_id}"
            )

        proof_id = (proof.proof_id or "").strip()
        if not proof_id or proof_id == AUTO_PROOF_ID:
            proof_id = generate_proof_id()

        return ConfirmRecord(
            checkout_id=session.checkout_id,
            trx_id=trx_id,
            proof_id=proof_id,
            trx_app=get_app_name(session.selected_method),
            proof_urls=tuple(proof.proof_urls),
            synthetic_transaction_id=synthetic,
        )

    @_operation("confirm")
    async def confirm(
        self, proof: Union[ConfirmProof, Mapping[str, Any], None] = None
    ) -> ConfirmRecord:
        """Confirm that the payment was made.

        Args:
            proof: The payment proof. A proof ID is generated when absent.

        Returns:
            The :class:`ConfirmRecord` that was sent.
        """
        session = self._require_session()
        if session.state != CheckoutState.submitted:
            raise CheckoutStateError("The payment must be submitted before confirming")

        if proof is None:
            proof = ConfirmProof()
        elif not isinstance(proof, ConfirmProof):
            try:
                proof = get_converter().structure(proof, ConfirmProof)
            except _PARSE_ERRORS as e:
                raise ValidationError(f"Invalid proof: {e}") from e

        record = self._make_confirm_record(session, proof)

        generation = self._generation
        await self.api.confirm(record.to_body(), session.auth_token or "")
        self._check_current(generation, session)
        if session.state != CheckoutState.submitted:
            raise CheckoutStateError("Checkout session changed while confirming")

        session.confirmation = record
        session.advance(CheckoutState.confirmed)
        self.clock.stop()

        audit_log.bind(type=AuditLogType.checkout_confirm).success(
            "Checkout {checkout} confirmed, transaction {} via {}",
            record.trx_id,
            record.trx_app,
            checkout=session,
        )
        return record

    @_local_operation
    def back(self) -> CheckoutState:
        """Go back one step.

        Returns:
            The new state.
        """
        session = self._require_session()
        state = session.back()
        logger.debug(f"Checkout {session.checkout_id} went back to {state.value}")
        return state

    def reset(self):
        """Discard the session.

        Results of calls still awaiting a response are dropped.
        """
        session = self.session
        self.clock.reset()
        self.session = None
        self.resolution = None
        self._generation += 1

        if session is not None:
            audit_log.bind(type=AuditLogType.checkout_reset).info(
                "Checkout {checkout} discarded in state {}",
                session.state.value,
                checkout=session,
            )

    async def close(self):
        """Discard the session and wait for the expiry clock to stop."""
        await self.clock.close()
        self.reset()

    def _handle_expire(self):
        session = self.session
        if session is None:
            return

        session.expired = True
        audit_log.bind(type=AuditLogType.checkout_expire).warning(
            "Checkout {checkout} expired in state {}",
            session.state.value,
            checkout=session,
        )

        if self._on_expire is not None:
            self._on_expire(session)
