"""
StoreGuard - security services for a multi-tenant retail platform.

Modules:
- crypto: field-level AES-256-GCM encryption and search hashing
- auth: passwords, lockout, rate limiting, TOTP/SMS MFA, login
- audit: tamper-evident audit trail
- web: security response headers
- validation: untrusted input validation
"""

__version__ = "1.0.0"

from .config import Settings, get_settings
from .exceptions import (
    StoreGuardError,
    ConfigurationError,
    DecryptionError,
    SmsDeliveryError,
    MFAStateError,
    StoreError,
    AuditIntegrityError,
)
from .logging_config import configure_logging
from .store import UserRecord, UserStore, InMemoryUserStore

__all__ = [
    'Settings',
    'get_settings',
    'StoreGuardError',
    'ConfigurationError',
    'DecryptionError',
    'SmsDeliveryError',
    'MFAStateError',
    'StoreError',
    'AuditIntegrityError',
    'configure_logging',
    'UserRecord',
    'UserStore',
    'InMemoryUserStore',
]
