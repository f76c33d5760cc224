"""
SMS one-time login codes.

A 6-digit code is held server-side per user for 10 minutes and may be
guessed at most 3 times. Codes live only in process memory; a restart
drops every pending code and the user simply requests a new one.
"""

import hmac
import logging
import secrets
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from ..exceptions import SmsDeliveryError, StoreError
from ..sms import SmsClient, mask_phone_number
from ..store import UserStore

logger = logging.getLogger(__name__)


CODE_TTL_SECONDS = 10 * 60
MAX_VERIFY_ATTEMPTS = 3
CODE_MIN = 100000
CODE_MAX = 999999

SMS_MESSAGE_TEMPLATE = "Your verification code is: {code}. It expires in 10 minutes."
SEND_FAILED = "Failed to send verification code"


@dataclass
class VerificationCode:
    code: str
    expires_at: float
    attempts: int = 0


@dataclass
class CodeVerification:
    success: bool
    error: Optional[str] = None
    attempts_remaining: Optional[int] = None


@dataclass
class LoginCodeRequest:
    success: bool
    masked_phone: Optional[str] = None
    error: Optional[str] = None


class VerificationCodeStore:
    """Lock-guarded map of user id -> pending VerificationCode."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._codes: Dict[str, VerificationCode] = {}
        self._lock = threading.Lock()
        self._clock = clock

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, VerificationCode]]:
        """Hold the lock and expose the underlying map for a read-modify-write."""
        with self._lock:
            yield self._codes

    def put(self, user_id: str, entry: VerificationCode) -> None:
        with self._lock:
            self._codes[user_id] = entry

    def get(self, user_id: str) -> Optional[VerificationCode]:
        with self._lock:
            return self._codes.get(user_id)

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._codes.pop(user_id, None)

    def cleanup_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [uid for uid, entry in self._codes.items() if entry.expires_at <= now]
            for uid in expired:
                del self._codes[uid]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)


class SmsMfaService:
    """
    Issue and check SMS login codes.

    Example:
        >>> service = SmsMfaService(VerificationCodeStore(), sms_client, users)
        >>> service.request_login_code(user.id).masked_phone
        '***-***-1234'
        >>> service.verify_code(user.id, entered).success
        True
    """

    def __init__(self, code_store: VerificationCodeStore,
                 sms_client: Optional[SmsClient],
                 user_store: UserStore,
                 clock: Callable[[], float] = time.time,
                 ttl_seconds: int = CODE_TTL_SECONDS,
                 max_attempts: int = MAX_VERIFY_ATTEMPTS):
        self._codes = code_store
        self._sms = sms_client
        self._users = user_store
        self._clock = clock
        self._ttl = ttl_seconds
        self._max_attempts = max_attempts

    @staticmethod
    def generate_verification_code() -> str:
        return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))

    def store_verification_code(self, user_id: str, code: str) -> None:
        """Replace any pending code for this user."""
        self._codes.put(
            user_id,
            VerificationCode(code=code, expires_at=self._clock() + self._ttl),
        )

    def verify_code(self, user_id: str, entered: str) -> CodeVerification:
        """
        Check an entered code.

        The attempt counter is incremented under the store lock before the
        comparison, so concurrent guesses still consume the budget.
        """
        with self._codes.transaction() as codes:
            entry = codes.get(user_id)
            if entry is None:
                return CodeVerification(False, "No verification code found. Please request a new one.")

            if self._clock() >= entry.expires_at:
                del codes[user_id]
                return CodeVerification(False, "Verification code has expired. Please request a new one.")

            if entry.attempts >= self._max_attempts:
                del codes[user_id]
                return CodeVerification(False, "Too many attempts. Please request a new code.")

            entry.attempts += 1
            matched = hmac.compare_digest(
                str(entered or '').strip().encode(), entry.code.encode()
            )
            if matched:
                del codes[user_id]
                return CodeVerification(True)

            remaining = self._max_attempts - entry.attempts

        logger.info("Incorrect SMS code for user %s (%d attempts left)", user_id, remaining)
        return CodeVerification(False, "Invalid verification code", attempts_remaining=remaining)

    def send_verification_sms(self, phone: str, code: str) -> None:
        """
        Raises:
            SmsDeliveryError: If no client is configured or delivery fails
        """
        if self._sms is None:
            logger.error("SMS verification requested but no SMS client is configured")
            raise SmsDeliveryError()
        self._sms.send_sms(phone, SMS_MESSAGE_TEMPLATE.format(code=code))

    def request_login_code(self, user_id: str) -> LoginCodeRequest:
        """Generate, store and text a code to the user's phone on file."""
        try:
            user = self._users.get_by_id(user_id)
        except StoreError:
            logger.error("User lookup failed for SMS login code (user %s)", user_id, exc_info=True)
            return LoginCodeRequest(False, error=SEND_FAILED)

        if user is None or not user.phone:
            return LoginCodeRequest(False, error="No phone number on file")

        code = self.generate_verification_code()
        self.store_verification_code(user_id, code)
        try:
            self.send_verification_sms(user.phone, code)
        except SmsDeliveryError:
            self._codes.delete(user_id)
            return LoginCodeRequest(False, error=SEND_FAILED)

        return LoginCodeRequest(True, masked_phone=mask_phone_number(user.phone))
