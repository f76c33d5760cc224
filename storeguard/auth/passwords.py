"""
Password Policy Module

Implements password complexity rules and Argon2id password hashing.

Features:
- Configurable policy (length, character classes, common-password denylist)
- Every violated rule reported at once
- 0-100 strength score for UI meters
- Argon2id hashing via argon2-cffi with rehash detection

Security considerations:
- Never store or log plaintext passwords
- verify_password never raises; malformed hashes simply fail
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError


# Argon2id configuration
ARGON2_CONFIG = {
    'time_cost': 3,          # Number of iterations
    'memory_cost': 65536,    # 64 MiB memory
    'parallelism': 4,
    'hash_len': 32,          # 256-bit hash
    'salt_len': 16,          # 128-bit salt
    'type': Type.ID,
}

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
SPECIAL_CHARACTERS = r'[!@#$%^&*(),.?":{}|<>\[\]\\/\-_=+;\'`~]'

# Case-insensitive exact matches are rejected
COMMON_PASSWORDS = frozenset({
    'password', 'password1', 'password123', 'passw0rd', 'p@ssw0rd',
    '12345678', '123456789', '1234567890', 'qwerty123', 'qwertyuiop',
    'abc12345', 'abcd1234', 'letmein1', 'welcome1', 'welcome123',
    'admin123', 'administrator', 'iloveyou1', 'monkey123', 'dragon123',
    'football1', 'baseball1', 'sunshine1', 'princess1', 'trustno1',
    'changeme', 'changeme1', 'master123', 'login123', 'starwars1',
})


@dataclass
class PasswordRequirements:
    min_length: int = PASSWORD_MIN_LENGTH
    max_length: int = PASSWORD_MAX_LENGTH
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = False


@dataclass
class PasswordValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    score: int = 0


def validate_password(password: Optional[str],
                      requirements: Optional[PasswordRequirements] = None) -> PasswordValidation:
    """
    Validate a password against the policy.

    Args:
        password: Candidate password
        requirements: Policy to apply (defaults to PasswordRequirements())

    Returns:
        PasswordValidation listing every violated rule
    """
    req = requirements or PasswordRequirements()
    if not isinstance(password, str) or not password:
        return PasswordValidation(False, ["Password is required"], 0)

    errors = []

    if len(password) < req.min_length:
        errors.append(f"Password must be at least {req.min_length} characters")
    if len(password) > req.max_length:
        errors.append(f"Password must be at most {req.max_length} characters")

    if req.require_uppercase and not re.search(r'[A-Z]', password):
        errors.append("Password must contain at least one uppercase letter")
    if req.require_lowercase and not re.search(r'[a-z]', password):
        errors.append("Password must contain at least one lowercase letter")
    if req.require_digit and not re.search(r'\d', password):
        errors.append("Password must contain at least one number")
    if req.require_special and not re.search(SPECIAL_CHARACTERS, password):
        errors.append("Password must contain at least one special character")

    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common. Please choose a stronger password")

    return PasswordValidation(
        valid=not errors,
        errors=errors,
        score=calculate_password_score(password),
    )


def calculate_password_score(password: str) -> int:
    """
    Calculate a password strength score (0-100).

    Length and character variety add points; repeats, runs and denylisted
    passwords subtract them.
    """
    if not password:
        return 0

    score = 0

    # Length (up to 30 points)
    score += min(len(password) * 2, 30)

    # Character variety (up to 40 points)
    if re.search(r'[a-z]', password):
        score += 10
    if re.search(r'[A-Z]', password):
        score += 10
    if re.search(r'\d', password):
        score += 10
    if re.search(SPECIAL_CHARACTERS, password):
        score += 10

    # Long passwords (up to 20 points)
    if len(password) >= 12:
        score += 10
    if len(password) >= 16:
        score += 10

    # Common patterns
    if re.search(r'(.)\1{2,}', password):
        score -= 10
    if re.search(r'(012|123|234|345|456|567|678|789)', password):
        score -= 10
    if re.search(r'(abc|bcd|cde|def|efg|qwe|wer|ert|rty)', password.lower()):
        score -= 10
    if password.lower() in COMMON_PASSWORDS:
        score -= 40

    return max(0, min(100, score))


class PasswordHasher_:
    """
    Argon2id password hasher.

    Example:
        >>> hasher = PasswordHasher_()
        >>> stored = hasher.hash_password("Counter2Shop")
        >>> hasher.verify_password("Counter2Shop", stored)
        True
    """

    def __init__(self, requirements: Optional[PasswordRequirements] = None, **kwargs):
        """
        Args:
            requirements: Policy enforced by hash_password
            **kwargs: Override default Argon2 parameters
        """
        config = ARGON2_CONFIG.copy()
        config.update(kwargs)
        self._requirements = requirements or PasswordRequirements()
        self._hasher = PasswordHasher(**config)

    @property
    def requirements(self) -> PasswordRequirements:
        return self._requirements

    def hash_password(self, password: str) -> str:
        """
        Hash a password that satisfies the policy.

        Raises:
            ValueError: If the password violates the policy
        """
        validation = validate_password(password, self._requirements)
        if not validation.valid:
            raise ValueError(f"Password too weak: {', '.join(validation.errors)}")
        return self._hasher.hash(password)

    def hash_unchecked(self, password: str) -> str:
        """Hash without the policy check (timing-equalisation dummies only)."""
        return self._hasher.hash(password)

    def verify_password(self, password: str, hash_str: Optional[str]) -> bool:
        if not password or not hash_str:
            return False
        try:
            return self._hasher.verify(hash_str, password)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, hash_str: str) -> bool:
        """True if the hash was made with weaker parameters than the current ones."""
        return self._hasher.check_needs_rehash(hash_str)
