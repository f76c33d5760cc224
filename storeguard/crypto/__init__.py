# Field Encryption Module
"""
Field-level encryption for data at rest:
- AES-256-GCM with a fresh IV per value
- PBKDF2 key derivation (100,000 iterations) for non-hex secrets
- HMAC-SHA256 search tokens
- Card number encryption and masking
"""

from .field_crypto import (
    FieldEncryptor,
    CardEncryption,
    derive_key,
    derive_key_pbkdf2,
    is_encrypted,
    mask_card_number,
    generate_secure_token,
    generate_encryption_key,
    get_default_encryptor,
    encrypt_field,
    decrypt_field,
    encrypt_card_number,
    hash_for_search,
    re_encrypt,
)

__all__ = [
    'FieldEncryptor',
    'CardEncryption',
    'derive_key',
    'derive_key_pbkdf2',
    'is_encrypted',
    'mask_card_number',
    'generate_secure_token',
    'generate_encryption_key',
    'get_default_encryptor',
    'encrypt_field',
    'decrypt_field',
    'encrypt_card_number',
    'hash_for_search',
    're_encrypt',
]
