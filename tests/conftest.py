import asyncio
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Optional, Union

import httpx
import pytest
import pytest_asyncio
from paydesk.checkout.api import CheckoutAPI
from paydesk.checkout.controller import CheckoutController
from paydesk.checkout.models.config import ApiConfig, CheckoutConfig
from paydesk.checkout.serialization.json import json_loads
from paydesk.checkout.util import get_now, get_timestamp_ms

BASE_URL = "https://pay.test"

ResponseBody = Union[dict[str, Any], Callable[[httpx.Request], Any]]


def ok(data: Any = None, **kwargs) -> dict[str, Any]:
    """A success envelope."""
    return {"code": "0000", "msg": "success", "data": data, **kwargs}


def expires_in(ms: int) -> Callable[[httpx.Request], dict[str, Any]]:
    """An info response expiring ``ms`` after the request arrives."""

    def handler(request: httpx.Request) -> dict[str, Any]:
        return ok(
            {
                "checkout_id": "CK1",
                "amount": "100.00",
                "ccy": "INR",
                "country": "IN",
                "expired_at": get_timestamp_ms(get_now() + timedelta(milliseconds=ms)),
                "token": "tok-1",
            }
        )

    return handler


class FakeBackend:
    """Mock transport handler for the checkout endpoints."""

    ok = staticmethod(ok)
    expires_in = staticmethod(expires_in)

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, ResponseBody] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.delays: dict[str, float] = {}
        self.errors: dict[str, Exception] = {}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        name = request.url.path.rsplit("/", 1)[-1]

        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()

        delay = self.delays.get(name)
        if delay is not None:
            await asyncio.sleep(delay)

        error = self.errors.get(name)
        if error is not None:
            raise error

        body = self.responses.get(name)
        if callable(body):
            body = body(request)

        if body is None:
            return httpx.Response(404, json={"code": "9404", "msg": "Not found"})

        return httpx.Response(200, json=body)

    def calls(self, name: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(f"/{name}")]

    def bodies(self, name: str) -> list[Any]:
        return [json_loads(r.content) for r in self.calls(name)]

    def gate(self, name: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[name] = event
        return event


@pytest.fixture
def backend() -> FakeBackend:
    backend = FakeBackend()
    backend.responses = {
        "create": ok({"checkout_id": "CK1"}),
        "info": expires_in(600000),
        "services": ok(
            {
                "countries": ["IN"],
                "configs": {
                    "IN": {"trx_methods": ["upi", "bank_transfer"], "configs": {}},
                },
            }
        ),
        "submit": ok(
            {
                "transaction": {
                    "id": "T1",
                    "upi": "merchant@upi",
                    "holder_name": "Merchant",
                    "links": {"paytm": "paytmmp://pay?pa=merchant@upi"},
                }
            }
        ),
        "confirm": ok(),
    }
    return backend


@pytest.fixture
def api_config() -> ApiConfig:
    return ApiConfig(base_url=BASE_URL, timeout=5)


@pytest.fixture
def checkout_config() -> CheckoutConfig:
    return CheckoutConfig(tick_interval=0.05)


@pytest_asyncio.fixture
async def http_client(backend: FakeBackend):
    client = httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(backend)
    )
    yield client
    await client.aclose()


@pytest.fixture
def api(api_config: ApiConfig, http_client: httpx.AsyncClient) -> CheckoutAPI:
    return CheckoutAPI(api_config, http_client)


@pytest_asyncio.fixture
async def controller(api: CheckoutAPI, checkout_config: CheckoutConfig):
    controller = CheckoutController(api, checkout_config)
    yield controller
    await controller.close()


@pytest.fixture
def create_form() -> dict[str, Optional[str]]:
    return {
        "amount": "100.00",
        "product_id": "p1",
        "return_url": "https://x/ok",
        "notify_url": "https://x/hook",
    }
