"""
Common utilities shared across mtauthz subsystems.
"""

from .utils import (
    generate_id,
    generate_request_id,
    get_current_time,
    ensure_utc,
    parse_iso_datetime,
    maybe_await,
)

__all__ = [
    "generate_id",
    "generate_request_id",
    "get_current_time",
    "ensure_utc",
    "parse_iso_datetime",
    "maybe_await",
]
