import asyncio
from unittest.mock import Mock

import httpx
import pytest
from paydesk.checkout.api import CheckoutAPI
from paydesk.checkout.controller import CheckoutController, OperationResult
from paydesk.checkout.errors import (
    BackendError,
    CheckoutStateError,
    ExpiredError,
    InvalidSelectionError,
    MethodRejectedError,
    NetworkTimeoutError,
    OperationInProgressError,
    SessionExpiredError,
    SessionNotFoundError,
    ValidationError,
)
from paydesk.checkout.methods import DEFAULT_OPTIONS
from paydesk.checkout.models.checkout import (
    BankTransferPayload,
    CheckoutState,
    ConfirmProof,
    CreateCheckoutForm,
    UpiPayload,
)
from paydesk.checkout.models.config import ApiConfig, CheckoutConfig


async def _open(controller, create_form):
    (await controller.create(create_form)).unwrap()
    (await controller.load_info()).unwrap()


async def _submit(controller, create_form, method="upi"):
    await _open(controller, create_form)
    controller.select_method(method).unwrap()
    return (await controller.submit()).unwrap()


async def _wait_for_request(backend, name):
    while not backend.calls(name):
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_checkout_flow(controller, backend, create_form):
    result = await controller.create(create_form)
    assert result.ok
    session = result.value
    assert session.checkout_id == "CK1"
    assert controller.state == CheckoutState.created

    (body,) = backend.bodies("create")
    assert body["ccy"] == "INR"
    assert body["amount"] == "100.00"
    assert body["product_id"] == "p1"
    assert body["req_id"] == session.request_id

    result = await controller.load_info()
    assert result.ok
    assert controller.state == CheckoutState.info_loaded
    assert session.auth_token == "tok-1"
    assert session.country == "IN"
    assert session.expires_at is not None
    assert controller.clock.running
    assert [o.code for o in controller.options] == ["upi", "bank_transfer"]
    assert [o.display_name for o in controller.options] == ["UPI", "Bank Transfer"]

    result = controller.select_method("upi")
    assert result.ok
    assert controller.state == CheckoutState.method_selected

    result = await controller.submit()
    assert result.ok
    transaction = result.value
    assert transaction.id == "T1"
    assert transaction.payload == UpiPayload(vpa="merchant@upi", holder_name="Merchant")
    assert transaction.links == {"paytm": "paytmmp://pay?pa=merchant@upi"}
    assert controller.state == CheckoutState.submitted
    assert backend.bodies("submit") == [
        {"checkout_id": "CK1", "trx_method": "upi", "country": "IN"}
    ]

    result = await controller.confirm(ConfirmProof(proof_id="auto"))
    assert result.ok
    record = result.value
    assert record.trx_id == "T1"
    assert record.trx_app == "Paytm"
    assert record.proof_id.startswith("PROOF_")
    assert not record.synthetic_transaction_id
    assert controller.state == CheckoutState.confirmed
    assert session.confirmation == record
    assert not controller.clock.running
    assert backend.bodies("confirm") == [record.to_body()]

    for name in ("services", "submit", "confirm"):
        (request,) = backend.calls(name)
        assert request.headers["Authorization"] == "Bearer tok-1"

    for name in ("create", "info"):
        (request,) = backend.calls(name)
        assert "Authorization" not in request.headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "key, value",
    [
        ("amount", ""),
        ("amount", "free"),
        ("product_id", "  "),
        ("return_url", "/ok"),
        ("notify_url", None),
    ],
)
async def test_create_validation(controller, backend, create_form, key, value):
    create_form[key] = value
    result = await controller.create(create_form)
    assert isinstance(result.error, ValidationError)
    assert backend.requests == []
    assert controller.session is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "form",
    [
        {"product_id": "p1"},
        {
            "amount": 100,
            "product_id": "p1",
            "return_url": "https://x/ok",
            "notify_url": "https://x/hook",
        },
    ],
)
async def test_create_invalid_form(controller, backend, form):
    result = await controller.create(form)
    assert isinstance(result.error, ValidationError)
    assert backend.requests == []


@pytest.mark.asyncio
async def test_create_form_object(controller, backend):
    result = await controller.create(
        CreateCheckoutForm(
            amount="250",
            product_id="p2",
            return_url="https://x/ok",
            notify_url="https://x/hook",
            request_id="req-1",
            currency="usd",
        )
    )
    assert result.ok
    assert result.value.request_id == "req-1"
    assert result.value.currency == "USD"
    (body,) = backend.bodies("create")
    assert body["req_id"] == "req-1"
    assert body["ccy"] == "USD"


@pytest.mark.asyncio
async def test_create_twice(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()
    result = await controller.create(create_form)
    assert isinstance(result.error, CheckoutStateError)
    assert len(backend.calls("create")) == 1


@pytest.mark.asyncio
async def test_create_token_on_envelope(controller, backend, create_form):
    backend.responses["create"] = backend.ok({"checkout_id": "CK1"}, token="tok-0")
    session = (await controller.create(create_form)).unwrap()
    assert session.auth_token == "tok-0"


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [None, {}, {"checkout_id": ""}])
async def test_create_missing_checkout_id(controller, backend, create_form, data):
    backend.responses["create"] = backend.ok(data)
    result = await controller.create(create_form)
    assert isinstance(result.error, BackendError)
    assert controller.session is None


@pytest.mark.asyncio
async def test_load_info_by_id(controller, backend):
    session = (await controller.load_info("CK1")).unwrap()
    assert session.checkout_id == "CK1"
    assert session.request_id is None
    assert session.amount == "100.00"
    assert session.currency == "INR"
    assert session.state == CheckoutState.info_loaded
    assert backend.bodies("info") == [{"checkout_id": "CK1"}]


@pytest.mark.asyncio
async def test_load_info_requires_id(controller, backend):
    result = await controller.load_info("  ")
    assert isinstance(result.error, ValidationError)
    assert backend.requests == []


@pytest.mark.asyncio
async def test_load_info_other_checkout(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()
    result = await controller.load_info("CK2")
    assert isinstance(result.error, CheckoutStateError)
    assert backend.calls("info") == []


@pytest.mark.asyncio
async def test_load_info_not_found(controller, backend):
    backend.responses["info"] = {"code": "4004", "msg": "checkout not found"}
    result = await controller.load_info("missing")
    assert isinstance(result.error, SessionNotFoundError)
    assert controller.session is None
    assert backend.calls("services") == []


@pytest.mark.asyncio
async def test_load_info_failure_keeps_state(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()
    backend.responses["info"] = {"code": "5000", "msg": "busy"}
    result = await controller.load_info()
    assert isinstance(result.error, BackendError)
    assert controller.state == CheckoutState.created
    assert controller.options == ()


@pytest.mark.asyncio
async def test_load_info_invalid_data(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()
    backend.responses["info"] = backend.ok({"checkout_id": "CK1"})
    result = await controller.load_info()
    assert isinstance(result.error, BackendError)
    assert controller.state == CheckoutState.created


@pytest.mark.asyncio
async def test_load_info_timeout(backend, http_client, create_form):
    api = CheckoutAPI(ApiConfig(base_url="https://pay.test", timeout=0.05), http_client)
    controller = CheckoutController(api)
    try:
        (await controller.create(create_form)).unwrap()
        backend.delays["info"] = 0.5
        result = await controller.load_info()
        assert isinstance(result.error, NetworkTimeoutError)
        assert controller.state == CheckoutState.created
    finally:
        await controller.close()


@pytest.mark.asyncio
async def test_load_info_reload(controller, backend, create_form):
    await _open(controller, create_form)
    result = await controller.load_info()
    assert result.ok
    assert controller.state == CheckoutState.info_loaded
    assert len(backend.calls("info")) == 2

    controller.select_method("upi").unwrap()
    result = await controller.load_info()
    assert isinstance(result.error, CheckoutStateError)
    assert len(backend.calls("info")) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "services",
    [
        {"code": "5000", "msg": "unavailable"},
        {"code": "4022", "msg": "rejected"},
        {"code": "0000", "data": "broken"},
        {"code": "0000", "data": {"countries": ["IN"], "configs": {}}},
        {"code": "0000", "data": {"countries": ["IN"], "configs": {"IN": {}}}},
    ],
)
async def test_load_info_services_fallback(controller, backend, create_form, services):
    backend.responses["services"] = services
    await _open(controller, create_form)
    assert controller.resolution.fallback
    assert controller.options == DEFAULT_OPTIONS
    assert controller.state == CheckoutState.info_loaded


@pytest.mark.asyncio
async def test_load_info_services_network_error(controller, backend, create_form):
    backend.errors["services"] = httpx.ConnectError("connection refused")
    await _open(controller, create_form)
    assert controller.options == DEFAULT_OPTIONS


@pytest.mark.asyncio
async def test_load_info_services_expired(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()
    backend.responses["services"] = {"code": "4010", "msg": "expired"}
    result = await controller.load_info()
    assert isinstance(result.error, SessionExpiredError)
    assert controller.state == CheckoutState.created
    assert not controller.clock.running


@pytest.mark.asyncio
async def test_load_info_catalog_country(controller, backend, create_form):
    info = backend.expires_in(600000)

    def info_without_country(request):
        body = info(request)
        del body["data"]["country"]
        return body

    backend.responses["info"] = info_without_country
    backend.responses["services"] = backend.ok(
        {
            "countries": ["BD", "IN"],
            "configs": {
                "BD": {"trx_methods": ["bkash", "nagad"]},
                "IN": {"trx_methods": ["upi"]},
            },
        }
    )
    backend.responses["submit"] = backend.ok(
        {"transaction": {"id": "T9", "account_no": "01700000000"}}
    )

    await _open(controller, create_form)
    assert controller.session.country is None
    assert controller.session.resolved_country == "BD"
    assert [o.code for o in controller.options] == ["bkash", "nagad"]
    assert [o.display_name for o in controller.options] == ["BKASH", "NAGAD"]

    controller.select_method("bkash").unwrap()
    (await controller.submit()).unwrap()
    (body,) = backend.bodies("submit")
    assert body["country"] == "BD"


@pytest.mark.asyncio
async def test_select_method(controller, create_form):
    result = controller.select_method("upi")
    assert isinstance(result.error, CheckoutStateError)

    (await controller.create(create_form)).unwrap()
    result = controller.select_method("upi")
    assert isinstance(result.error, CheckoutStateError)

    (await controller.load_info()).unwrap()
    result = controller.select_method("credit_card")
    assert isinstance(result.error, InvalidSelectionError)
    assert controller.state == CheckoutState.info_loaded

    controller.select_method("upi").unwrap()
    controller.select_method("bank_transfer").unwrap()
    assert controller.session.selected_method == "bank_transfer"
    assert controller.state == CheckoutState.method_selected


@pytest.mark.asyncio
async def test_submit_before_select(controller, backend, create_form):
    await _open(controller, create_form)
    result = await controller.submit()
    assert isinstance(result.error, CheckoutStateError)
    assert controller.state == CheckoutState.info_loaded
    assert backend.calls("submit") == []


@pytest.mark.asyncio
async def test_submit_without_session(controller, backend):
    result = await controller.submit()
    assert isinstance(result.error, CheckoutStateError)
    assert backend.requests == []


@pytest.mark.asyncio
async def test_submit_after_expiry(backend, api, create_form):
    on_expire = Mock()
    controller = CheckoutController(api, CheckoutConfig(), on_expire=on_expire)
    backend.responses["info"] = backend.expires_in(500)
    try:
        await _open(controller, create_form)
        controller.select_method("upi").unwrap()

        await asyncio.sleep(0.6)

        result = await controller.submit()
        assert isinstance(result.error, ExpiredError)
        assert controller.state == CheckoutState.method_selected
        assert controller.session.expired
        assert not controller.session.is_open
        assert backend.calls("submit") == []
        on_expire.assert_called_once_with(controller.session)
    finally:
        await controller.close()


@pytest.mark.asyncio
async def test_submit_in_progress(controller, backend, create_form):
    await _open(controller, create_form)
    controller.select_method("upi").unwrap()

    gate = backend.gate("submit")
    task = asyncio.create_task(controller.submit())
    await _wait_for_request(backend, "submit")

    result = await controller.submit()
    assert isinstance(result.error, OperationInProgressError)

    gate.set()
    result = await task
    assert result.ok
    assert controller.state == CheckoutState.submitted
    assert len(backend.calls("submit")) == 1


@pytest.mark.asyncio
async def test_submit_rejected_method(controller, backend, create_form):
    await _open(controller, create_form)
    controller.select_method("upi").unwrap()
    backend.responses["submit"] = {"code": "4022", "msg": "method not supported"}

    result = await controller.submit()
    assert isinstance(result.error, MethodRejectedError)
    assert controller.state == CheckoutState.method_selected
    assert controller.session.rejected_methods == {"upi"}

    result = await controller.submit()
    assert isinstance(result.error, MethodRejectedError)
    assert len(backend.calls("submit")) == 1

    result = controller.select_method("upi")
    assert isinstance(result.error, InvalidSelectionError)

    backend.responses["submit"] = backend.ok(
        {"transaction": {"id": "T2", "account_no": "000123", "bank_name": "SBI"}}
    )
    controller.select_method("bank_transfer").unwrap()
    transaction = (await controller.submit()).unwrap()
    assert transaction.payload == BankTransferPayload(
        account_no="000123", bank_name="SBI"
    )
    assert controller.state == CheckoutState.submitted


@pytest.mark.asyncio
async def test_submit_invalid_response(controller, backend, create_form):
    await _open(controller, create_form)
    controller.select_method("upi").unwrap()
    backend.responses["submit"] = backend.ok({"trx_id": "T1"})

    result = await controller.submit()
    assert isinstance(result.error, BackendError)
    assert controller.state == CheckoutState.method_selected
    assert controller.session.transaction is None


@pytest.mark.asyncio
async def test_confirm_before_submit(controller, backend, create_form):
    await _open(controller, create_form)
    result = await controller.confirm()
    assert isinstance(result.error, CheckoutStateError)
    assert backend.calls("confirm") == []


@pytest.mark.asyncio
async def test_confirm_failure(controller, backend, create_form):
    await _submit(controller, create_form)
    backend.responses["confirm"] = {"code": "5000", "msg": "busy"}

    result = await controller.confirm()
    assert isinstance(result.error, BackendError)
    assert controller.state == CheckoutState.submitted
    assert controller.session.confirmation is None

    backend.responses["confirm"] = backend.ok()
    result = await controller.confirm()
    assert result.ok
    assert controller.state == CheckoutState.confirmed


@pytest.mark.asyncio
async def test_confirm_proof(controller, backend, create_form):
    await _submit(controller, create_form)
    record = (
        await controller.confirm(
            {"proof_id": "P1", "proof_urls": ["https://x/proof.png"]}
        )
    ).unwrap()
    assert record.proof_id == "P1"
    assert backend.bodies("confirm") == [
        {
            "checkout_id": "CK1",
            "trx_id": "T1",
            "proof_id": "P1",
            "trx_app": "Paytm",
            "proof_urls": ["https://x/proof.png"],
        }
    ]


@pytest.mark.asyncio
async def test_confirm_invalid_proof(controller, backend, create_form):
    await _submit(controller, create_form)
    result = await controller.confirm({"proof_urls": "https://x/proof.png"})
    assert isinstance(result.error, ValidationError)
    assert backend.calls("confirm") == []


@pytest.mark.asyncio
async def test_confirm_synthetic_transaction_id(controller, backend, create_form):
    backend.responses["submit"] = backend.ok({"transaction": {"upi": "merchant@upi"}})
    await _submit(controller, create_form)

    record = (await controller.confirm()).unwrap()
    assert record.trx_id.startswith("TRX_")
    assert record.synthetic_transaction_id
    assert record.proof_id.startswith("PROOF_")
    (body,) = backend.bodies("confirm")
    assert body["trx_id"] == record.trx_id
    assert "synthetic_transaction_id" not in body


@pytest.mark.asyncio
async def test_confirm_no_synthetic_transaction_id(api, backend, create_form):
    controller = CheckoutController(
        api, CheckoutConfig(synthesize_transaction_id=False)
    )
    backend.responses["submit"] = backend.ok({"transaction": {"upi": "merchant@upi"}})
    try:
        await _submit(controller, create_form)
        result = await controller.confirm()
        assert isinstance(result.error, BackendError)
        assert controller.state == CheckoutState.submitted
        assert backend.calls("confirm") == []
    finally:
        await controller.close()


@pytest.mark.asyncio
async def test_back(controller, create_form):
    await _open(controller, create_form)
    controller.select_method("upi").unwrap()

    assert controller.back().value == CheckoutState.info_loaded
    assert controller.session.selected_method is None

    result = controller.back()
    assert isinstance(result.error, CheckoutStateError)
    assert controller.state == CheckoutState.info_loaded


@pytest.mark.asyncio
async def test_back_from_submitted(controller, backend, create_form):
    await _submit(controller, create_form)
    assert controller.back().value == CheckoutState.method_selected
    assert controller.session.transaction is None

    (await controller.submit()).unwrap()
    assert len(backend.calls("submit")) == 2


@pytest.mark.asyncio
async def test_reset(controller, create_form):
    await _open(controller, create_form)
    assert controller.clock.running

    controller.reset()
    controller.reset()

    assert controller.session is None
    assert controller.state is None
    assert controller.options == ()
    assert not controller.clock.running
    assert controller.clock.deadline is None

    result = await controller.create(create_form)
    assert result.ok


@pytest.mark.asyncio
async def test_reset_drops_pending_result(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()

    gate = backend.gate("info")
    task = asyncio.create_task(controller.load_info())
    await _wait_for_request(backend, "info")

    controller.reset()
    gate.set()

    result = await task
    assert isinstance(result.error, CheckoutStateError)
    assert controller.session is None
    assert not controller.clock.running


@pytest.mark.asyncio
async def test_reset_allows_new_call(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()

    gate = backend.gate("info")
    task = asyncio.create_task(controller.load_info())
    await _wait_for_request(backend, "info")
    controller.reset()

    # the pending call belongs to the discarded session
    (await controller.create(create_form)).unwrap()
    task2 = asyncio.create_task(controller.load_info())
    await asyncio.sleep(0.05)
    gate.set()

    assert isinstance((await task).error, CheckoutStateError)
    assert (await task2).ok
    assert controller.state == CheckoutState.info_loaded


def test_operation_result_unwrap():
    assert OperationResult(value=1).unwrap() == 1
    assert OperationResult().ok

    error = BackendError("failed", "5000")
    result = OperationResult(error=error)
    assert not result.ok
    with pytest.raises(BackendError):
        result.unwrap()


@pytest.mark.asyncio
async def test_load_info_timestamp_out_of_range(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()
    backend.responses["info"] = backend.ok(
        {"checkout_id": "CK1", "token": "tok-1", "expired_at": 10**30}
    )
    result = await controller.load_info()
    assert isinstance(result.error, BackendError)
    assert controller.state == CheckoutState.created
    assert not controller.clock.running


@pytest.mark.asyncio
async def test_expire_fires_once_across_reload(api, backend, create_form):
    on_expire = Mock()
    controller = CheckoutController(
        api, CheckoutConfig(tick_interval=0.05), on_expire=on_expire
    )
    backend.responses["info"] = backend.expires_in(100)
    try:
        await _open(controller, create_form)
        await asyncio.sleep(0.2)
        on_expire.assert_called_once_with(controller.session)

        (await controller.load_info()).unwrap()
        await asyncio.sleep(0.2)

        on_expire.assert_called_once_with(controller.session)
        assert controller.session.expired
        assert controller.clock.expired
    finally:
        await controller.close()


@pytest.mark.asyncio
async def test_load_info_in_progress(controller, backend, create_form):
    (await controller.create(create_form)).unwrap()

    gate = backend.gate("info")
    task = asyncio.create_task(controller.load_info())
    await _wait_for_request(backend, "info")

    result = await controller.load_info()
    assert isinstance(result.error, OperationInProgressError)

    gate.set()
    assert (await task).ok
    assert controller.state == CheckoutState.info_loaded
    assert len(backend.calls("info")) == 1


@pytest.mark.asyncio
async def test_confirm_in_progress(controller, backend, create_form):
    await _submit(controller, create_form)

    gate = backend.gate("confirm")
    task = asyncio.create_task(controller.confirm())
    await _wait_for_request(backend, "confirm")

    result = await controller.confirm()
    assert isinstance(result.error, OperationInProgressError)
    assert controller.state == CheckoutState.submitted

    gate.set()
    assert (await task).ok
    assert controller.state == CheckoutState.confirmed
    assert len(backend.calls("confirm")) == 1
