"""
Per-request network context for audit records.

The HTTP layer wraps each request in ``request_context(headers)``; audit
calls made inside it pick up the client IP and user agent. Outside a
request both resolve to "unknown".
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Dict, Iterator, Mapping, Optional

UNKNOWN = "unknown"

_request_headers: ContextVar[Optional[Dict[str, str]]] = ContextVar(
    "storeguard_request_headers", default=None
)


@contextmanager
def request_context(headers: Mapping[str, str]) -> Iterator[Dict[str, str]]:
    """Make ``headers`` the current request's headers for the duration of the block."""
    normalized = {str(k).lower(): str(v) for k, v in headers.items()}
    token = _request_headers.set(normalized)
    try:
        yield normalized
    finally:
        _request_headers.reset(token)


def get_request_headers() -> Dict[str, str]:
    return _request_headers.get() or {}


def get_client_ip(headers: Optional[Mapping[str, str]] = None) -> str:
    """
    Resolve the client IP.

    Order: first entry of x-forwarded-for, x-real-ip, cf-connecting-ip.
    """
    if headers is None:
        headers = get_request_headers()
    else:
        headers = {str(k).lower(): str(v) for k, v in headers.items()}

    forwarded_for = headers.get('x-forwarded-for')
    if forwarded_for:
        first = forwarded_for.split(',')[0].strip()
        if first:
            return first

    return headers.get('x-real-ip') or headers.get('cf-connecting-ip') or UNKNOWN


def get_user_agent(headers: Optional[Mapping[str, str]] = None) -> str:
    if headers is None:
        headers = get_request_headers()
    else:
        headers = {str(k).lower(): str(v) for k, v in headers.items()}
    return headers.get('user-agent') or UNKNOWN
