"""Payment platform checkout API."""
import asyncio
from collections.abc import Mapping
from typing import Any, Optional

import httpx
from attrs import frozen
from loguru import logger
from paydesk.checkout.errors import (
    BackendError,
    MethodRejectedError,
    NetworkError,
    NetworkTimeoutError,
    SessionExpiredError,
    SessionNotFoundError,
)
from paydesk.checkout.http_client import get_http_client
from paydesk.checkout.models.config import SUCCESS_CODE, ApiConfig
from paydesk.checkout.serialization.json import json_dumps, json_loads

CREATE_PATH = "/api/checkout/create"
INFO_PATH = "/api/checkout/info"
SERVICES_PATH = "/api/checkout/services"
SUBMIT_PATH = "/api/checkout/submit"
CONFIRM_PATH = "/api/checkout/confirm"


@frozen
class Envelope:
    """A response envelope."""

    code: str
    """The result code, ``"0000"`` on success."""

    msg: str = ""
    """The result message."""

    data: Any = None
    """The response data."""

    token: Optional[str] = None
    """A token sent alongside ``data``."""

    @property
    def ok(self) -> bool:
        """Whether the call succeeded."""
        return self.code == SUCCESS_CODE


def parse_envelope(body: object) -> Envelope:
    """Parse a decoded response body.

    Raises:
        BackendError: If the body is not an envelope.
    """
    if not isinstance(body, Mapping) or body.get("code") is None:
        raise BackendError("Invalid response")

    code = body["code"]
    msg = body.get("msg")
    token = body.get("token")
    return Envelope(
        code=str(code),
        msg=msg if isinstance(msg, str) else "",
        data=body.get("data"),
        token=token if isinstance(token, str) and token else None,
    )


class CheckoutAPI:
    """Client for the checkout endpoints.

    Each call is attempted once and bounded by the configured timeout.
    """

    def __init__(self, config: ApiConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """The HTTP client."""
        return self._client if self._client is not None else get_http_client()

    def raise_for_envelope(self, envelope: Envelope):
        """Raise the error matching a non-success envelope."""
        if envelope.ok:
            return

        codes = self.config.error_codes
        if envelope.code in codes.not_found:
            raise SessionNotFoundError(envelope.msg, envelope.code)
        elif envelope.code in codes.expired:
            raise SessionExpiredError(envelope.msg, envelope.code)
        elif envelope.code in codes.method_rejected:
            raise MethodRejectedError(envelope.msg, envelope.code)
        else:
            raise BackendError(envelope.msg, envelope.code)

    async def post(
        self, path: str, body: Mapping[str, Any], *, token: Optional[str] = None
    ) -> Envelope:
        """Send a request and return the successful envelope.

        Args:
            path: The endpoint path.
            body: The JSON body.
            token: The bearer token, if the call is authenticated.

        Raises:
            NetworkTimeoutError: If no response arrives in time.
            NetworkError: If the request fails.
            BackendError: If the envelope is not successful.
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        client = self.client
        url = path if str(client.base_url) else self.config.base_url.rstrip("/") + path

        logger.debug(f"POST {path}")
        try:
            response = await asyncio.wait_for(
                client.post(url, content=json_dumps(body), headers=headers),
                self.config.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise NetworkTimeoutError(f"{path} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{path} failed: {e}") from e

        try:
            decoded = json_loads(response.content)
        except ValueError:
            raise BackendError(
                f"Invalid response (HTTP {response.status_code})",
                str(response.status_code),
            )

        envelope = parse_envelope(decoded)
        logger.debug(f"POST {path}: {envelope.code} {envelope.msg}")
        self.raise_for_envelope(envelope)
        return envelope

    async def create(self, body: Mapping[str, Any]) -> Envelope:
        """Create a checkout."""
        return await self.post(CREATE_PATH, body)

    async def info(self, checkout_id: str) -> Envelope:
        """Get the checkout info and a new token."""
        return await self.post(INFO_PATH, {"checkout_id": checkout_id})

    async def services(self, checkout_id: str, token: str) -> Envelope:
        """Get the services catalog."""
        return await self.post(SERVICES_PATH, {"checkout_id": checkout_id}, token=token)

    async def submit(
        self, checkout_id: str, method: str, country: str, token: str
    ) -> Envelope:
        """Submit the payment method."""
        return await self.post(
            SUBMIT_PATH,
            {
                "checkout_id": checkout_id,
                "trx_method": method,
                "country": country,
            },
            token=token,
        )

    async def confirm(self, body: Mapping[str, Any], token: str) -> Envelope:
        """Confirm the payment."""
        return await self.post(CONFIRM_PATH, body, token=token)
