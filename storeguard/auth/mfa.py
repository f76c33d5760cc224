"""
MFA (TOTP) Service

Authenticator-app second factor with single-use backup codes.

Lifecycle per user:
    DISABLED -> PENDING_SETUP -> ENABLED -> DISABLED

Storage rules:
- The TOTP secret and the backup-code set are only ever stored encrypted
  (FieldEncryptor); plaintext is returned once, at setup, for display.
- MFAService is stateless. Consuming a backup code produces a NEW encrypted
  set which the caller must persist (remove_used_backup_code). MFAEnrollment
  does both steps against the user store for callers that use it.
"""

import binascii
import hmac
import json
import logging
import secrets
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

from ..config import get_settings
from ..crypto.field_crypto import FieldEncryptor
from ..exceptions import DecryptionError, MFAStateError
from ..store import UserRecord, UserStore
from .totp import TOTPGenerator, base32_to_secret, generate_secret, verify_totp

logger = logging.getLogger(__name__)


BACKUP_CODE_COUNT = 8
BACKUP_CODE_GROUP_BYTES = 2     # 4 hex chars per group, 32 bits per code
LOW_BACKUP_CODES_THRESHOLD = 3

# Role policy: who must enroll before full access, who is prompted
MFA_REQUIRED_ROLES = frozenset({'SUPER_ADMIN', 'FRANCHISOR', 'PROVIDER'})
MFA_RECOMMENDED_ROLES = frozenset({'OWNER', 'FRANCHISEE', 'MANAGER'})


def is_mfa_required_for_role(role: Optional[str]) -> bool:
    return (role or '').upper() in MFA_REQUIRED_ROLES


def is_mfa_recommended_for_role(role: Optional[str]) -> bool:
    """Required roles count as recommended too."""
    normalized = (role or '').upper()
    return normalized in MFA_RECOMMENDED_ROLES or normalized in MFA_REQUIRED_ROLES


# ============================================================================
# Credentials
# ============================================================================

@dataclass(frozen=True)
class TotpCredential:
    """Six-digit code from an authenticator app."""
    code: str


@dataclass(frozen=True)
class BackupCodeCredential:
    """XXXX-XXXX recovery code."""
    code: str

    def normalized(self) -> str:
        return self.code.strip().upper()


Credential = Union[TotpCredential, BackupCodeCredential]


def parse_credential(raw: Union[str, Credential, None]) -> Optional[Credential]:
    """
    Classify raw user input as a TOTP code or a backup code by shape.

    Only the HTTP edge should need this; internal callers pass typed
    credentials.

    Returns:
        TotpCredential, BackupCodeCredential, or None if neither shape fits
    """
    if isinstance(raw, (TotpCredential, BackupCodeCredential)):
        return raw
    if raw is None:
        return None

    token = str(raw).strip().replace(' ', '')
    if len(token) == 6 and token.isdigit():
        return TotpCredential(token)
    if len(token) == 9 and '-' in token:
        return BackupCodeCredential(token.upper())
    return None


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> List[str]:
    """Generate ``count`` codes of the form AB12-CD34."""
    return [
        f"{secrets.token_hex(BACKUP_CODE_GROUP_BYTES)}-"
        f"{secrets.token_hex(BACKUP_CODE_GROUP_BYTES)}".upper()
        for _ in range(count)
    ]


# ============================================================================
# Results
# ============================================================================

@dataclass
class MFASetup:
    """
    Everything produced at enrollment.

    ``secret`` and ``backup_codes`` are plaintext: show them to the user
    once and never store or log them.
    """
    secret: str
    qr_code_url: str
    backup_codes: List[str]
    encrypted_secret: str
    encrypted_backup_codes: str

    def __repr__(self) -> str:
        return f"MFASetup(backup_codes={len(self.backup_codes)}, secret=<redacted>)"


@dataclass
class MFAVerification:
    valid: bool
    used_backup_code: Optional[str] = None


class MFAState(Enum):
    DISABLED = "disabled"
    PENDING_SETUP = "pending_setup"
    ENABLED = "enabled"


@dataclass
class MFAStatus:
    state: MFAState
    required: bool
    recommended: bool
    backup_codes_remaining: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return self.state == MFAState.ENABLED


# ============================================================================
# Service
# ============================================================================

class MFAService:
    """
    Stateless TOTP + backup code operations over encrypted blobs.

    Example:
        >>> service = MFAService(FieldEncryptor(key))
        >>> setup = service.generate_mfa_setup("owner@example.com")
        >>> # persist setup.encrypted_secret / setup.encrypted_backup_codes
        >>> service.verify_mfa_token(code, setup.encrypted_secret)
        True
    """

    def __init__(self, encryptor: FieldEncryptor, issuer: Optional[str] = None):
        self._encryptor = encryptor
        self._issuer = issuer or get_settings().MFA_ISSUER

    def generate_mfa_setup(self, user_email: str) -> MFASetup:
        """
        Create a new secret, QR code and backup codes for enrollment.

        Args:
            user_email: Account name shown in the authenticator app

        Returns:
            MFASetup with plaintext values for display and encrypted values
            for storage
        """
        generator = TOTPGenerator(
            secret=generate_secret(),
            issuer=self._issuer,
            account_name=user_email,
        )
        backup_codes = generate_backup_codes()

        return MFASetup(
            secret=generator.secret_base32,
            qr_code_url=generator.generate_qr_code(),
            backup_codes=backup_codes,
            encrypted_secret=self._encryptor.encrypt_field(generator.secret_base32),
            encrypted_backup_codes=self._encrypt_codes(backup_codes),
        )

    def verify_mfa_token(self, token: str, encrypted_secret: str,
                         timestamp: Optional[float] = None) -> bool:
        """
        Check a 6-digit TOTP code against the stored secret.

        Accepts the previous, current and next 30-second window. Any failure,
        including a secret that cannot be decrypted, returns False.
        """
        if not token or not encrypted_secret:
            return False
        try:
            secret = base32_to_secret(self._encryptor.decrypt_field(encrypted_secret))
        except (DecryptionError, binascii.Error, ValueError):
            logger.warning("Stored MFA secret could not be decrypted")
            return False
        return verify_totp(secret, token, timestamp=timestamp)

    def verify_mfa_with_backup(self, credential: Union[str, Credential],
                               encrypted_secret: str,
                               encrypted_backup_codes: Optional[str],
                               timestamp: Optional[float] = None) -> MFAVerification:
        """
        Verify either factor: a TOTP code or an unused backup code.

        A matched backup code is reported in ``used_backup_code``; it stays
        valid until the caller persists remove_used_backup_code's result.
        """
        parsed = parse_credential(credential)

        if isinstance(parsed, TotpCredential):
            return MFAVerification(self.verify_mfa_token(parsed.code, encrypted_secret, timestamp))

        if isinstance(parsed, BackupCodeCredential) and encrypted_backup_codes:
            wanted = parsed.normalized()
            try:
                codes = self._decrypt_codes(encrypted_backup_codes)
            except DecryptionError:
                logger.warning("Stored backup codes could not be decrypted")
                return MFAVerification(False)

            matched = None
            for code in codes:
                if hmac.compare_digest(code.encode(), wanted.encode()):
                    matched = code
            if matched:
                return MFAVerification(True, used_backup_code=matched)

        return MFAVerification(False)

    def remove_used_backup_code(self, code: str, encrypted_codes: str) -> str:
        """
        Return a new encrypted set without ``code``.

        Raises:
            DecryptionError: If the stored set cannot be decrypted
        """
        used = code.strip().upper()
        remaining = [c for c in self._decrypt_codes(encrypted_codes) if c != used]
        return self._encrypt_codes(remaining)

    def regenerate_backup_codes(self) -> Tuple[List[str], str]:
        """A completely new set; every previous code becomes invalid once stored."""
        codes = generate_backup_codes()
        return codes, self._encrypt_codes(codes)

    def count_backup_codes(self, encrypted_codes: Optional[str]) -> int:
        if not encrypted_codes:
            return 0
        try:
            return len(self._decrypt_codes(encrypted_codes))
        except DecryptionError:
            return 0

    def _encrypt_codes(self, codes: List[str]) -> str:
        return self._encryptor.encrypt_field(json.dumps(codes))

    def _decrypt_codes(self, encrypted_codes: str) -> List[str]:
        try:
            codes = json.loads(self._encryptor.decrypt_field(encrypted_codes))
        except json.JSONDecodeError:
            raise DecryptionError() from None
        if not isinstance(codes, list):
            raise DecryptionError()
        return [str(c).upper() for c in codes]


# ============================================================================
# Enrollment state machine over the user store
# ============================================================================

class MFAEnrollment:
    """
    Drives a user's MFA state and persists every transition.

    All methods raise MFAStateError for unknown users or transitions that
    are not allowed from the current state; wrong codes return False.

    Transitions that read and then rewrite the stored secret or backup codes
    run under a per-user lock, so one backup code cannot be spent twice by
    concurrent logins in this process. Multi-process deployments need the
    store to serialise these writes as well.
    """

    def __init__(self, user_store: UserStore, mfa_service: MFAService):
        self._users = user_store
        self._mfa = mfa_service
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(user_id, threading.Lock())
        with lock:
            yield

    def _require_user(self, user_id: str) -> UserRecord:
        user = self._users.get_by_id(user_id)
        if user is None:
            raise MFAStateError("User not found")
        return user

    @staticmethod
    def _state_of(user: UserRecord) -> MFAState:
        if user.mfa_enabled:
            return MFAState.ENABLED
        if user.mfa_pending_secret:
            return MFAState.PENDING_SETUP
        return MFAState.DISABLED

    def begin_setup(self, user_id: str) -> MFASetup:
        """
        DISABLED/PENDING_SETUP -> PENDING_SETUP.

        Starting again while pending replaces the pending secret.
        """
        user = self._require_user(user_id)
        if user.mfa_enabled:
            raise MFAStateError("MFA is already enabled. Disable it first to re-enroll.")

        setup = self._mfa.generate_mfa_setup(user.email)
        self._users.update(
            user_id,
            mfa_pending_secret=setup.encrypted_secret,
            mfa_pending_backup_codes=setup.encrypted_backup_codes,
        )
        logger.info("MFA setup started for user %s", user_id)
        return setup

    def confirm_setup(self, user_id: str, token: str,
                      timestamp: Optional[float] = None) -> bool:
        """PENDING_SETUP -> ENABLED when the first code from the app verifies."""
        user = self._require_user(user_id)
        if self._state_of(user) != MFAState.PENDING_SETUP:
            raise MFAStateError("No MFA setup in progress")

        if not self._mfa.verify_mfa_token(token, user.mfa_pending_secret, timestamp):
            return False

        self._users.update(
            user_id,
            mfa_enabled=True,
            mfa_secret=user.mfa_pending_secret,
            mfa_backup_codes=user.mfa_pending_backup_codes,
            mfa_pending_secret=None,
            mfa_pending_backup_codes=None,
        )
        logger.info("MFA enabled for user %s", user_id)
        return True

    def disable(self, user_id: str, credential: Union[str, Credential],
                timestamp: Optional[float] = None) -> bool:
        """ENABLED -> DISABLED; requires a current TOTP or backup code."""
        with self._user_lock(user_id):
            user = self._require_user(user_id)
            if not user.mfa_enabled:
                raise MFAStateError("MFA is not enabled")

            result = self._mfa.verify_mfa_with_backup(
                credential, user.mfa_secret, user.mfa_backup_codes, timestamp
            )
            if not result.valid:
                return False

            self._users.update(
                user_id,
                mfa_enabled=False,
                mfa_secret=None,
                mfa_backup_codes=None,
                mfa_pending_secret=None,
                mfa_pending_backup_codes=None,
            )
        logger.info("MFA disabled for user %s", user_id)
        return True

    def regenerate_backup_codes(self, user_id: str, token: str,
                                timestamp: Optional[float] = None) -> Optional[List[str]]:
        """
        Replace the whole backup-code set after checking a current TOTP code.

        Returns:
            The new plaintext codes, or None if the code was wrong
        """
        with self._user_lock(user_id):
            user = self._require_user(user_id)
            if not user.mfa_enabled:
                raise MFAStateError("MFA is not enabled")

            if not self._mfa.verify_mfa_token(token, user.mfa_secret, timestamp):
                return None

            codes, encrypted = self._mfa.regenerate_backup_codes()
            self._users.update(user_id, mfa_backup_codes=encrypted)
        logger.info("Backup codes regenerated for user %s", user_id)
        return codes

    def verify_login_factor(self, user_id: str, credential: Union[str, Credential],
                            timestamp: Optional[float] = None) -> MFAVerification:
        """
        Verify the second factor at login and persist backup-code consumption.
        """
        with self._user_lock(user_id):
            user = self._require_user(user_id)
            if not user.mfa_enabled:
                raise MFAStateError("MFA is not enabled")

            result = self._mfa.verify_mfa_with_backup(
                credential, user.mfa_secret, user.mfa_backup_codes, timestamp
            )
            if result.valid and result.used_backup_code:
                remaining = self._mfa.remove_used_backup_code(
                    result.used_backup_code, user.mfa_backup_codes
                )
                self._users.update(user_id, mfa_backup_codes=remaining)
                logger.info("Backup code consumed for user %s", user_id)
        return result

    def status(self, user_id: str) -> MFAStatus:
        user = self._require_user(user_id)
        state = self._state_of(user)
        remaining = self._mfa.count_backup_codes(user.mfa_backup_codes) if user.mfa_enabled else 0

        warnings = []
        required = is_mfa_required_for_role(user.role)
        if required and state != MFAState.ENABLED:
            warnings.append("MFA is required for your role")
        if state == MFAState.ENABLED and remaining < LOW_BACKUP_CODES_THRESHOLD:
            warnings.append(
                f"Low backup codes remaining ({remaining}). Consider generating new ones."
            )

        return MFAStatus(
            state=state,
            required=required,
            recommended=is_mfa_recommended_for_role(user.role),
            backup_codes_remaining=remaining,
            warnings=warnings,
        )


__all__ = [
    'BACKUP_CODE_COUNT',
    'MFA_REQUIRED_ROLES',
    'MFA_RECOMMENDED_ROLES',
    'is_mfa_required_for_role',
    'is_mfa_recommended_for_role',
    'TotpCredential',
    'BackupCodeCredential',
    'Credential',
    'parse_credential',
    'generate_backup_codes',
    'MFASetup',
    'MFAVerification',
    'MFAState',
    'MFAStatus',
    'MFAService',
    'MFAEnrollment',
]
