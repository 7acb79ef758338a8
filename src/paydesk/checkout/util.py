"""Common utilities."""
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

import httpx


def get_now() -> datetime:
    """Get the current tz-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def get_timestamp_ms(dt: Optional[datetime] = None) -> int:
    """Get the epoch time in milliseconds."""
    dt = dt if dt is not None else get_now()
    return int(dt.timestamp() * 1000)


def generate_request_id() -> str:
    """Generate an idempotency key for a create request."""
    return str(uuid.uuid4())


def generate_proof_id(now: Optional[datetime] = None) -> str:
    """Generate a proof identifier."""
    return f"PROOF_{get_timestamp_ms(now)}"


def generate_transaction_id(now: Optional[datetime] = None) -> str:
    """Generate a synthetic transaction ID."""
    return f"TRX_{get_timestamp_ms(now)}_{secrets.token_hex(3)}"


def is_absolute_url(value: str) -> bool:
    """Get whether ``value`` is an absolute http(s) URL."""
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError):
        return False

    return url.is_absolute_url and url.scheme in ("http", "https") and bool(url.host)
