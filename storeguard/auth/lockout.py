"""
Account Lockout

Persistent failed-login counters and timed lockouts on the user record.

State per user: failed_login_attempts, locked_until.
- A failed login increments the counter (atomically, in the store); reaching
  max_attempts sets locked_until = now + lockout_minutes.
- While locked_until is in the future, authentication is refused whatever
  the credentials.
- The first check after locked_until has passed resets both fields.
- A successful login resets both fields.

If the lockout state cannot be read, the check fails open (allowed) and logs
a warning: a storage outage must not lock every user out. An active lock
that can be read is always enforced.
"""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..config import get_settings
from ..store import UserStore

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """Stores that drop tzinfo hand back naive UTC datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class LockoutStatus:
    allowed: bool
    locked_until: Optional[datetime] = None
    minutes_remaining: Optional[int] = None
    message: Optional[str] = None


@dataclass
class FailedLoginResult:
    locked: bool
    attempts_remaining: int
    locked_until: Optional[datetime] = None
    message: str = ""


class LockoutService:
    """
    Example:
        >>> lockout = LockoutService(users)
        >>> lockout.check_lockout("cashier@example.com").allowed
        True
        >>> lockout.record_failed_login(user.id).attempts_remaining
        4
    """

    def __init__(self, user_store: UserStore,
                 max_attempts: Optional[int] = None,
                 lockout_minutes: Optional[int] = None,
                 clock: Callable[[], float] = time.time):
        settings = get_settings()
        self._users = user_store
        self._max_attempts = max_attempts or settings.LOCKOUT_MAX_ATTEMPTS
        self._lockout_minutes = lockout_minutes or settings.LOCKOUT_DURATION_MINUTES
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def check_lockout(self, email: str) -> LockoutStatus:
        """
        Decide whether a login attempt for this email may proceed.

        Unknown emails are allowed, exactly like accounts with no failures.
        """
        try:
            user = self._users.get_by_email(email)
            if user is None or user.locked_until is None:
                return LockoutStatus(allowed=True)
            locked_until = _as_utc(user.locked_until)
            now = self._now()
            still_locked = locked_until > now
        except Exception:
            logger.warning("Lockout state unavailable, allowing login attempt", exc_info=True)
            return LockoutStatus(allowed=True)

        if still_locked:
            minutes = math.ceil((locked_until - now).total_seconds() / 60)
            return LockoutStatus(
                allowed=False,
                locked_until=locked_until,
                minutes_remaining=minutes,
                message=(
                    f"Account is temporarily locked. Try again in {minutes} "
                    f"minute{'s' if minutes != 1 else ''}."
                ),
            )

        # Lock has expired
        try:
            self._users.update(user.id, failed_login_attempts=0, locked_until=None)
            logger.info("Expired lockout cleared for user %s", user.id)
        except Exception:
            logger.warning("Could not clear expired lockout for user %s", user.id, exc_info=True)
        return LockoutStatus(allowed=True)

    def record_failed_login(self, user_id: str) -> FailedLoginResult:
        """
        Count one failed attempt and lock the account at the threshold.

        Raises:
            StoreError: If the user does not exist or the store is unavailable
        """
        attempts = self._users.increment_failed_login_attempts(user_id)
        remaining = max(self._max_attempts - attempts, 0)

        if attempts >= self._max_attempts:
            locked_until = self._now() + timedelta(minutes=self._lockout_minutes)
            self._users.update(user_id, locked_until=locked_until)
            logger.warning("User %s locked out after %d failed logins", user_id, attempts)
            return FailedLoginResult(
                locked=True,
                attempts_remaining=0,
                locked_until=locked_until,
                message=(
                    f"Too many failed attempts. Account locked for "
                    f"{self._lockout_minutes} minutes."
                ),
            )

        if remaining == 1:
            message = "Invalid credentials. 1 attempt remaining before your account is locked."
        else:
            message = f"Invalid credentials. {remaining} attempts remaining."
        return FailedLoginResult(locked=False, attempts_remaining=remaining, message=message)

    def reset_failed_logins(self, user_id: str) -> None:
        self._users.update(user_id, failed_login_attempts=0, locked_until=None)
