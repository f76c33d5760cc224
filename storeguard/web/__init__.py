# Web Module
"""
HTTP response hardening headers.
"""

from .headers import (
    SECURITY_HEADERS,
    apply_security_headers,
    get_security_headers,
)

__all__ = [
    'SECURITY_HEADERS',
    'apply_security_headers',
    'get_security_headers',
]
