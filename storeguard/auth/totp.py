"""
TOTP (Time-based One-Time Password) Implementation

Implements RFC 6238 TOTP (on top of RFC 4226 HOTP) for the authenticator
app second factor.

Features:
- TOTP code generation and verification
- +/- one time step drift tolerance
- Secret key generation and base32 encoding
- otpauth:// provisioning URI and QR code (PNG data URL)

Compatible with Google Authenticator, Authy, Microsoft Authenticator and
any other RFC 6238 authenticator.
"""

import base64
import hashlib
import hmac
import io
import secrets
import struct
import time
from typing import Optional
from urllib.parse import quote

import qrcode
from qrcode.constants import ERROR_CORRECT_L


# TOTP configuration (RFC 6238 defaults)
TOTP_DIGITS = 6           # Number of digits in OTP
TOTP_TIME_STEP = 30       # Time step in seconds
TOTP_SECRET_BYTES = 20    # Secret key length (160 bits for SHA-1)
TOTP_ALGORITHM = 'SHA1'   # Hash algorithm
TOTP_DRIFT_TOLERANCE = 1  # Accept codes from +/- this many time steps


def generate_secret(length: int = TOTP_SECRET_BYTES) -> bytes:
    """
    Generate a cryptographically secure random secret.

    Args:
        length: Secret length in bytes (default 20 for SHA-1)

    Returns:
        Random bytes for use as TOTP secret
    """
    return secrets.token_bytes(length)


def secret_to_base32(secret: bytes) -> str:
    """Encode secret as unpadded base32 (the form authenticator apps expect)."""
    return base64.b32encode(secret).decode('ascii').rstrip('=')


def base32_to_secret(encoded: str) -> bytes:
    """
    Decode base32 secret string to bytes.

    Raises:
        binascii.Error: If the string is not valid base32
    """
    encoded = encoded.strip().replace(' ', '').upper()
    padding = 8 - (len(encoded) % 8)
    if padding != 8:
        encoded += '=' * padding
    return base64.b32decode(encoded)


def get_time_counter(timestamp: Optional[float] = None,
                     time_step: int = TOTP_TIME_STEP) -> int:
    """Time counter T = floor(time / time_step)."""
    if timestamp is None:
        timestamp = time.time()
    return int(timestamp) // time_step


def hotp(secret: bytes, counter: int, digits: int = TOTP_DIGITS,
         algorithm: str = TOTP_ALGORITHM) -> str:
    """
    Generate HOTP (HMAC-based OTP) value.

    Implements RFC 4226.

    Args:
        secret: Shared secret key
        counter: Counter value (8-byte integer)
        digits: Number of digits in OTP (default 6)
        algorithm: Hash algorithm (SHA1, SHA256, SHA512)

    Returns:
        OTP string with specified number of digits
    """
    counter_bytes = struct.pack('>Q', counter)

    hash_algo = {
        'SHA1': hashlib.sha1,
        'SHA256': hashlib.sha256,
        'SHA512': hashlib.sha512,
    }.get(algorithm.upper(), hashlib.sha1)

    hmac_hash = hmac.new(secret, counter_bytes, hash_algo).digest()

    # Dynamic truncation (RFC 4226 section 5.3)
    offset = hmac_hash[-1] & 0x0F
    truncated = struct.unpack('>I', hmac_hash[offset:offset + 4])[0]
    truncated &= 0x7FFFFFFF

    otp = truncated % (10 ** digits)
    return str(otp).zfill(digits)


def totp(secret: bytes, timestamp: Optional[float] = None,
         digits: int = TOTP_DIGITS,
         time_step: int = TOTP_TIME_STEP,
         algorithm: str = TOTP_ALGORITHM) -> str:
    """
    Generate TOTP value for the given (or current) time.

    Implements RFC 6238.
    """
    counter = get_time_counter(timestamp, time_step)
    return hotp(secret, counter, digits, algorithm)


def verify_totp(secret: bytes, code: str,
                timestamp: Optional[float] = None,
                digits: int = TOTP_DIGITS,
                time_step: int = TOTP_TIME_STEP,
                algorithm: str = TOTP_ALGORITHM,
                drift_tolerance: int = TOTP_DRIFT_TOLERANCE) -> bool:
    """
    Verify a TOTP code with drift tolerance.

    Checks the code against the current time step and +/- drift_tolerance
    steps to absorb clock drift between server and authenticator.

    Args:
        secret: Shared secret key
        code: OTP code to verify
        timestamp: Unix timestamp (uses current time if None)
        digits: Expected number of digits
        time_step: Time step in seconds
        algorithm: Hash algorithm
        drift_tolerance: Number of time steps to check in each direction

    Returns:
        True if code is valid, False otherwise
    """
    if timestamp is None:
        timestamp = time.time()

    code = str(code).replace(' ', '').strip()
    if len(code) != digits or not code.isdigit():
        return False

    current_counter = get_time_counter(timestamp, time_step)

    for offset in range(-drift_tolerance, drift_tolerance + 1):
        expected = hotp(secret, current_counter + offset, digits, algorithm)
        if hmac.compare_digest(code, expected):
            return True

    return False


def get_remaining_seconds(time_step: int = TOTP_TIME_STEP) -> int:
    """Seconds until the next TOTP code."""
    return time_step - (int(time.time()) % time_step)


def render_qr_data_url(data: str) -> str:
    """
    Render data as a QR code PNG and return it as a data URL.

    The result can be used directly as an <img src>.
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")

    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode('ascii')


class TOTPGenerator:
    """
    TOTP generator and verifier for a specific secret.

    Example:
        >>> totp_gen = TOTPGenerator(account_name="owner@example.com")
        >>> code = totp_gen.generate()
        >>> totp_gen.verify(code)
        True
    """

    def __init__(self, secret: Optional[bytes] = None,
                 digits: int = TOTP_DIGITS,
                 time_step: int = TOTP_TIME_STEP,
                 algorithm: str = TOTP_ALGORITHM,
                 issuer: str = "StoreGuard",
                 account_name: str = "user"):
        """
        Args:
            secret: Shared secret (generated if None)
            digits: Number of digits in OTP
            time_step: Time step in seconds
            algorithm: Hash algorithm
            issuer: Service name for authenticator apps
            account_name: Account identifier (usually email)
        """
        self._secret = secret or generate_secret()
        self._digits = digits
        self._time_step = time_step
        self._algorithm = algorithm
        self._issuer = issuer
        self._account_name = account_name
        self._drift_tolerance = TOTP_DRIFT_TOLERANCE

    @classmethod
    def from_base32(cls, encoded: str, **kwargs) -> 'TOTPGenerator':
        return cls(secret=base32_to_secret(encoded), **kwargs)

    @property
    def secret(self) -> bytes:
        """Raw secret bytes."""
        return self._secret

    @property
    def secret_base32(self) -> str:
        """Base32-encoded secret for authenticator apps."""
        return secret_to_base32(self._secret)

    @property
    def time_step(self) -> int:
        return self._time_step

    @property
    def digits(self) -> int:
        return self._digits

    def generate(self, timestamp: Optional[float] = None) -> str:
        """TOTP code for the current or specified time."""
        return totp(
            self._secret,
            timestamp,
            self._digits,
            self._time_step,
            self._algorithm
        )

    def verify(self, code: str, timestamp: Optional[float] = None) -> bool:
        """Verify a TOTP code with drift tolerance."""
        return verify_totp(
            self._secret,
            code,
            timestamp,
            self._digits,
            self._time_step,
            self._algorithm,
            self._drift_tolerance
        )

    def get_provisioning_uri(self) -> str:
        """
        Generate otpauth:// URI for QR code.

        Returns:
            otpauth:// URI string
        """
        # Colon separator stays literal; issuer and account are encoded separately
        label = f"{quote(self._issuer)}:{quote(self._account_name)}"
        params = {
            'secret': self.secret_base32,
            'issuer': self._issuer,
            'algorithm': self._algorithm,
            'digits': str(self._digits),
            'period': str(self._time_step),
        }

        param_str = '&'.join(f"{k}={quote(str(v))}" for k, v in params.items())
        return f"otpauth://totp/{label}?{param_str}"

    def generate_qr_code(self) -> str:
        """QR code for the provisioning URI as a PNG data URL."""
        return render_qr_data_url(self.get_provisioning_uri())

    def remaining_seconds(self) -> int:
        """Get seconds until next code."""
        return get_remaining_seconds(self._time_step)

    def __repr__(self) -> str:
        return f"TOTPGenerator(issuer='{self._issuer}', account='{self._account_name}')"
