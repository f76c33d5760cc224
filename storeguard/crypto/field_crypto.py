"""
Field Encryption Module

Encrypts individual sensitive fields (card numbers, MFA secrets, backup
codes) before they are written to the record store.

Implements:
- AES-256-GCM authenticated encryption, fresh random IV per call
- Key from a 64-hex-char secret, or PBKDF2-HMAC-SHA256 (100,000 iterations)
  for any other secret
- HMAC-SHA256 search tokens for looking up encrypted values
- Re-encryption under a new key for key rotation

Stored format:
    base64(iv):base64(tag):base64(ciphertext)

Values without the ':' delimiter are treated as legacy plaintext written
before field encryption existed and are returned unchanged by decrypt.

Security considerations:
- Missing key material is a ConfigurationError; there is no default key
- Every decryption failure raises the same DecryptionError, whatever the
  cause, so callers cannot tell a bad tag from malformed input
"""

import base64
import binascii
import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import get_settings
from ..exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)


# Constants
IV_SIZE = 16                # 128-bit IV
TAG_SIZE = 16               # 128-bit GCM tag
KEY_SIZE = 32               # 256-bit key
FIELD_DELIMITER = ":"

# PBKDF2 configuration (used when the secret is not a raw 256-bit hex key)
PBKDF2_ITERATIONS = 100_000
PBKDF2_ALGORITHM = hashes.SHA256()
KEY_DERIVATION_SALT = b"storeguard-field-encryption-v1"

HEX_KEY_PATTERN = re.compile(r'^[0-9a-fA-F]{64}$')

CARD_MASK_FALLBACK = "*" * 16
CARD_MIN_DIGITS = 13


def derive_key_pbkdf2(secret: str, salt: bytes = KEY_DERIVATION_SALT,
                      iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a 256-bit key from secret material using PBKDF2.

    Args:
        secret: Key material from configuration
        salt: Fixed application salt
        iterations: PBKDF2 iteration count

    Returns:
        32-byte derived key
    """
    kdf = PBKDF2HMAC(
        algorithm=PBKDF2_ALGORITHM,
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode('utf-8'))


def derive_key(secret: Optional[str]) -> bytes:
    """
    Turn configured key material into an AES-256 key.

    A 64-character hex string is used directly; anything else goes
    through PBKDF2.

    Raises:
        ConfigurationError: If no key material is given
    """
    if not secret:
        raise ConfigurationError(
            "ENCRYPTION_KEY is not set; refusing to encrypt without key material"
        )
    if HEX_KEY_PATTERN.match(secret):
        return bytes.fromhex(secret)
    return derive_key_pbkdf2(secret)


def is_encrypted(value: Optional[str]) -> bool:
    """True if the value has the three-part encrypted field shape."""
    return bool(value) and len(value.split(FIELD_DELIMITER)) == 3


def generate_secure_token(length: int = 32) -> str:
    """Generate ``length`` random bytes, hex-encoded."""
    return secrets.token_hex(length)


def generate_encryption_key() -> str:
    """Generate a new 256-bit key as 64 hex characters (for ENCRYPTION_KEY)."""
    return secrets.token_hex(KEY_SIZE)


@dataclass
class CardEncryption:
    """Encrypted card number plus the digits safe to display."""
    encrypted: str
    last_four: str


class FieldEncryptor:
    """
    AES-256-GCM encryptor for individual record fields.

    Example:
        >>> enc = FieldEncryptor(generate_encryption_key())
        >>> token = enc.encrypt_field("4111111111111111")
        >>> enc.decrypt_field(token)
        '4111111111111111'
    """

    def __init__(self, secret: Optional[str]):
        """
        Args:
            secret: Key material (ENCRYPTION_KEY)

        Raises:
            ConfigurationError: If secret is missing
        """
        self._key = derive_key(secret)
        self._hmac_key = secret.encode('utf-8')

    @classmethod
    def from_settings(cls) -> 'FieldEncryptor':
        """Build an encryptor from the ENCRYPTION_KEY setting."""
        return cls(get_settings().ENCRYPTION_KEY)

    def encrypt_field(self, plaintext: Optional[str]) -> str:
        """
        Encrypt one field value.

        Args:
            plaintext: Value to protect; empty input returns ""

        Returns:
            base64(iv):base64(tag):base64(ciphertext)
        """
        if not plaintext:
            return ""
        return _encrypt_with_key(self._key, plaintext)

    def decrypt_field(self, value: Optional[str]) -> str:
        """
        Decrypt a field written by encrypt_field.

        Empty input returns "". Input without the delimiter is legacy
        plaintext and is returned as-is.

        Raises:
            DecryptionError: If the value fails authentication or decoding
        """
        if not value:
            return ""
        if FIELD_DELIMITER not in value:
            return value
        return _decrypt_with_key(self._key, value)

    def encrypt_card_number(self, card_number: str) -> CardEncryption:
        """
        Encrypt a card number, keeping the last four digits for display.

        Non-digits (spaces, dashes) are stripped before encryption.
        """
        digits = re.sub(r'\D', '', card_number or '')
        return CardEncryption(
            encrypted=self.encrypt_field(digits),
            last_four=digits[-4:],
        )

    @staticmethod
    def mask_card_number(card_number: str) -> str:
        """
        Mask a card number for display: first six and last four digits.

        Numbers shorter than 13 digits get a fixed mask.
        """
        return mask_card_number(card_number)

    def hash_for_search(self, data: str) -> str:
        """
        Deterministic HMAC-SHA256 token for looking up encrypted values.

        GCM output differs on every call, so encrypted columns cannot be
        searched directly; store this token alongside instead. Input is
        lowercased first so lookups are case-insensitive.
        """
        return hmac.new(
            self._hmac_key,
            (data or '').lower().encode('utf-8'),
            hashlib.sha256,
        ).hexdigest()

    def re_encrypt(self, value: str, new_key: str, old_key: Optional[str] = None) -> str:
        """
        Decrypt under the old key and encrypt under the new one.

        Callers are responsible for finding and rewriting every stored
        value during a rotation.

        Args:
            value: Stored encrypted field
            new_key: New key material
            old_key: Previous key material (defaults to this encryptor's key)

        Returns:
            The value encrypted under new_key with a fresh IV
        """
        source_key = derive_key(old_key) if old_key is not None else self._key
        if not value:
            return ""
        plaintext = (
            _decrypt_with_key(source_key, value)
            if FIELD_DELIMITER in value else value
        )
        return _encrypt_with_key(derive_key(new_key), plaintext) if plaintext else ""


def _encrypt_with_key(key: bytes, plaintext: str) -> str:
    iv = secrets.token_bytes(IV_SIZE)
    ciphertext_with_tag = AESGCM(key).encrypt(iv, plaintext.encode('utf-8'), None)

    ciphertext = ciphertext_with_tag[:-TAG_SIZE]
    tag = ciphertext_with_tag[-TAG_SIZE:]

    return FIELD_DELIMITER.join(
        base64.b64encode(part).decode('ascii') for part in (iv, tag, ciphertext)
    )


def _decrypt_with_key(key: bytes, value: str) -> str:
    parts = value.split(FIELD_DELIMITER)
    if len(parts) != 3:
        logger.warning("Rejected encrypted field with %d parts", len(parts))
        raise DecryptionError()

    try:
        iv, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts)
        if len(iv) != IV_SIZE or len(tag) != TAG_SIZE:
            raise ValueError("bad component length")
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        return plaintext.decode('utf-8')
    except (InvalidTag, binascii.Error, ValueError):
        # UnicodeDecodeError is a ValueError
        logger.warning("Encrypted field failed authentication")
        raise DecryptionError() from None


def mask_card_number(card_number: str) -> str:
    """Show first 6 and last 4 digits, replace the middle with '*'."""
    digits = re.sub(r'\D', '', card_number or '')
    if len(digits) < CARD_MIN_DIGITS:
        return CARD_MASK_FALLBACK
    return digits[:6] + '*' * (len(digits) - 10) + digits[-4:]


# ============================================================================
# Module-level convenience functions (key from settings)
# ============================================================================

@lru_cache(maxsize=1)
def get_default_encryptor() -> FieldEncryptor:
    """Process-wide encryptor built from Settings.ENCRYPTION_KEY."""
    return FieldEncryptor.from_settings()


def encrypt_field(plaintext: Optional[str]) -> str:
    return get_default_encryptor().encrypt_field(plaintext)


def decrypt_field(value: Optional[str]) -> str:
    return get_default_encryptor().decrypt_field(value)


def encrypt_card_number(card_number: str) -> CardEncryption:
    return get_default_encryptor().encrypt_card_number(card_number)


def hash_for_search(data: str) -> str:
    return get_default_encryptor().hash_for_search(data)


def re_encrypt(value: str, new_key: str, old_key: str) -> str:
    return get_default_encryptor().re_encrypt(value, new_key, old_key)
