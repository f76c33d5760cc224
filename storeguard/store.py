"""
User Record Store

The lockout and MFA components read and write a handful of fields on the
user entity. Any persistence layer that offers lookup by id or email, field
updates and an atomic failed-login increment can back them; this module
defines that port and an in-memory implementation for tests and
single-process deployments.
"""

import copy
import threading
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Dict, Optional, Protocol

from .exceptions import StoreError


@dataclass
class UserRecord:
    """Security-relevant fields of a user account."""
    id: str
    email: str
    role: str = "EMPLOYEE"
    phone: Optional[str] = None
    password_hash: Optional[str] = None

    # Lockout state
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None

    # MFA (encrypted blobs only)
    mfa_enabled: bool = False
    mfa_secret: Optional[str] = None
    mfa_backup_codes: Optional[str] = None
    mfa_pending_secret: Optional[str] = None
    mfa_pending_backup_codes: Optional[str] = None


_UPDATABLE_FIELDS = frozenset(f.name for f in fields(UserRecord)) - {"id"}


class UserStore(Protocol):
    """Port for the user record store."""

    def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def update(self, user_id: str, **changes) -> UserRecord:
        ...

    def increment_failed_login_attempts(self, user_id: str) -> int:
        """Atomically add one failed attempt and return the new count."""
        ...


class InMemoryUserStore:
    """
    Thread-safe in-memory user store.

    Records are copied on the way in and out so callers can never mutate
    stored state except through ``update``.
    """

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._lock = threading.Lock()

    def add(self, user: UserRecord) -> UserRecord:
        with self._lock:
            if user.id in self._users:
                raise StoreError(f"User {user.id} already exists")
            self._users[user.id] = copy.copy(user)
        return copy.copy(user)

    def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.copy(user) if user else None

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        wanted = email.strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.email.lower() == wanted:
                    return copy.copy(user)
        return None

    def update(self, user_id: str, **changes) -> UserRecord:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise StoreError(f"Unknown user fields: {', '.join(sorted(unknown))}")

        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise StoreError(f"User {user_id} not found")
            for name, value in changes.items():
                setattr(user, name, value)
            return copy.copy(user)

    def increment_failed_login_attempts(self, user_id: str) -> int:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise StoreError(f"User {user_id} not found")
            user.failed_login_attempts += 1
            return user.failed_login_attempts

    def __len__(self) -> int:
        return len(self._users)
