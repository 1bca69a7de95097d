"""
Common utilities and helper functions for mtauthz.
"""

import inspect
import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional


def generate_id(prefix: str = "") -> str:
    """Generate a unique identifier with optional prefix."""
    unique_id = str(uuid.uuid4())
    return f"{prefix}{unique_id}" if prefix else unique_id


def generate_request_id() -> str:
    """Generate a request ID for tracing."""
    return f"req_{int(time.time())}_{secrets.token_hex(8)}"


def get_current_time() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 instant.

    Accepts datetime objects as-is and strings with a trailing 'Z'.
    Returns None when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


async def maybe_await(value: Any) -> Any:
    """Await the value if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value
