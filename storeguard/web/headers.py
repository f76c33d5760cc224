"""
Security response headers.

SECURITY_HEADERS is plain configuration. apply_security_headers returns a
copy of an httpx.Response with the headers merged in; get_security_headers
returns them for frameworks that attach headers themselves.
"""

from typing import Dict

import httpx


SECURITY_HEADERS: Dict[str, str] = {
    'Content-Security-Policy': (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https:; "
        "font-src 'self' data:; "
        "connect-src 'self'; "
        "frame-ancestors 'none'; "
        "base-uri 'self'; "
        "form-action 'self'"
    ),
    'X-Frame-Options': 'DENY',
    'X-Content-Type-Options': 'nosniff',
    'X-XSS-Protection': '1; mode=block',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
    'Cache-Control': 'no-store, no-cache, must-revalidate, proxy-revalidate',
    'Permissions-Policy': 'camera=(), microphone=(), geolocation=(), payment=()',
}

# Describe the original encoded body; the copy carries decoded content
_BODY_HEADERS = ('content-encoding', 'content-length', 'transfer-encoding')


def get_security_headers() -> Dict[str, str]:
    return dict(SECURITY_HEADERS)


def apply_security_headers(response: httpx.Response) -> httpx.Response:
    """
    Copy ``response`` with every security header set.

    Security headers replace any existing header of the same name. The
    original response is not modified.
    """
    content = response.read()

    headers = httpx.Headers(response.headers)
    for name in _BODY_HEADERS:
        if name in headers:
            del headers[name]
    for name, value in SECURITY_HEADERS.items():
        headers[name] = value

    return httpx.Response(
        status_code=response.status_code,
        headers=headers,
        content=content,
        extensions=dict(response.extensions),
    )
