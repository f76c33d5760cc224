"""
Exceptions raised by the security layer.

Only configuration problems and operational failures are raised. Bad caller
input is reported through result objects instead.
"""


class StoreGuardError(Exception):
    """Base class for all security layer errors."""


class ConfigurationError(StoreGuardError):
    """Required configuration (key material, provider credentials) is missing or invalid."""


class DecryptionError(StoreGuardError):
    """Ciphertext could not be authenticated or decoded."""

    def __init__(self, message: str = "Decryption failed - possible tampering detected"):
        super().__init__(message)


class SmsDeliveryError(StoreGuardError):
    """The SMS provider did not accept the message."""

    def __init__(self, message: str = "Failed to send SMS"):
        super().__init__(message)


class MFAStateError(StoreGuardError):
    """The requested MFA transition is not valid from the user's current MFA state."""


class StoreError(StoreGuardError):
    """The backing record store is unavailable or rejected the operation."""


class AuditIntegrityError(StoreGuardError):
    """A hash-chained audit log no longer matches its recorded hashes."""
