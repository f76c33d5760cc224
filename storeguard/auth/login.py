"""
User Login Module

Orchestrates a password login with the security services:
- Per-IP rate limiting (auth policy)
- Persistent account lockout
- Argon2id password verification
- Second factor (TOTP or backup code) when MFA is enabled
- Audit record for every outcome

Security considerations:
- Unknown accounts and wrong passwords produce the same response, and
  unknown accounts still pay for one Argon2 verification
- Never log passwords or codes
"""

import logging
import secrets
from typing import Dict, Optional

from ..audit import AuditAction, AuditLogger, AuditStatus, get_client_ip
from ..store import UserRecord, UserStore
from ..validation import validate_email
from .lockout import LockoutService
from .mfa import MFAEnrollment, is_mfa_required_for_role
from .passwords import PasswordHasher_, validate_password
from .rate_limit import RATE_LIMITS, RateLimitConfig, RateLimiter, build_identifier

logger = logging.getLogger(__name__)


INVALID_CREDENTIALS = "Invalid email or password"
UNKNOWN_ROLE = "UNKNOWN"
MFA_UNAVAILABLE = "Two-factor verification is unavailable. Please try again later."


class LoginManager:
    """
    Complete login flow over injected services.

    Example:
        >>> manager = LoginManager(users, lockout, limiter, audit, enrollment, hasher)
        >>> result = manager.login("owner@example.com", "Counter2Shop", client_ip="203.0.113.9")
        >>> result['requires_mfa']
        True
        >>> manager.login("owner@example.com", "Counter2Shop", mfa_code="492039")['success']
        True
    """

    def __init__(self, user_store: UserStore,
                 lockout: LockoutService,
                 rate_limiter: RateLimiter,
                 audit_logger: AuditLogger,
                 mfa_enrollment: Optional[MFAEnrollment] = None,
                 hasher: Optional[PasswordHasher_] = None,
                 rate_limit_policy: RateLimitConfig = RATE_LIMITS['auth']):
        self._users = user_store
        self._lockout = lockout
        self._rate_limiter = rate_limiter
        self._audit = audit_logger
        self._mfa = mfa_enrollment
        self._hasher = hasher or PasswordHasher_()
        self._policy = rate_limit_policy
        self._dummy_hash: Optional[str] = None

    def _audit_attempt(self, email: str, user: Optional[UserRecord],
                       action: AuditAction, status: AuditStatus,
                       error_message: Optional[str] = None, **details) -> None:
        self._audit.log_audit(
            user_id=user.id if user else "unknown",
            user_email=email,
            user_role=user.role if user else UNKNOWN_ROLE,
            action=action,
            entity_type="User",
            entity_id=user.id if user else None,
            status=status,
            error_message=error_message,
            details=details or None,
        )

    def _burn_password_check(self, password: str) -> None:
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash_unchecked(secrets.token_hex(16))
        self._hasher.verify_password(password or "", self._dummy_hash)

    def login(self, email: str, password: str,
              mfa_code: Optional[str] = None,
              client_ip: Optional[str] = None) -> Dict:
        """
        Authenticate with email, password and (when enabled) a second factor.

        Args:
            email: Account email
            password: Plaintext password
            mfa_code: TOTP code or XXXX-XXXX backup code
            client_ip: Client IP (defaults to the current request context)

        Returns:
            Dict with 'success' and 'message', plus 'locked', 'requires_mfa',
            'retry_after' or 'user_id' as relevant
        """
        ip = client_ip or get_client_ip()
        email_check = validate_email(email)
        if not email_check.valid:
            return {'success': False, 'message': INVALID_CREDENTIALS}
        email = email_check.sanitized

        # Rate limiting per client IP
        limit = self._rate_limiter.check_rate_limit(build_identifier('ip', ip), self._policy)
        if not limit.allowed:
            self._audit_attempt(email, None, AuditAction.LOGIN_FAILED, AuditStatus.BLOCKED,
                                "Rate limit exceeded", ip=ip)
            return {
                'success': False,
                'message': (
                    f"Too many login attempts. Please try again in "
                    f"{limit.retry_after_seconds} seconds."
                ),
                'retry_after': limit.retry_after_seconds,
            }

        # Account lockout
        status = self._lockout.check_lockout(email)
        if not status.allowed:
            user = self._users.get_by_email(email)
            self._audit_attempt(email, user, AuditAction.LOGIN_FAILED, AuditStatus.BLOCKED,
                                "Account locked")
            return {
                'success': False,
                'message': status.message,
                'locked': True,
                'retry_after': (status.minutes_remaining or 0) * 60,
            }

        # Password
        user = self._users.get_by_email(email)
        if user is None:
            self._burn_password_check(password)
            self._audit_attempt(email, None, AuditAction.LOGIN_FAILED, AuditStatus.FAILURE,
                                "Invalid credentials")
            return {'success': False, 'message': INVALID_CREDENTIALS}

        if not self._hasher.verify_password(password, user.password_hash):
            failed = self._lockout.record_failed_login(user.id)
            self._audit_attempt(email, user, AuditAction.LOGIN_FAILED, AuditStatus.FAILURE,
                                "Invalid credentials", locked=failed.locked)
            if failed.locked:
                return {'success': False, 'message': failed.message, 'locked': True}
            return {'success': False, 'message': INVALID_CREDENTIALS}

        # Second factor
        used_backup_code = False
        if user.mfa_enabled:
            if self._mfa is None:
                logger.error("User %s has MFA enabled but no MFA service is configured", user.id)
                self._audit_attempt(email, user, AuditAction.LOGIN_FAILED, AuditStatus.BLOCKED,
                                    "MFA unavailable")
                return {'success': False, 'message': MFA_UNAVAILABLE}

            if not mfa_code:
                return {'success': False, 'message': 'MFA code required', 'requires_mfa': True}

            verification = self._mfa.verify_login_factor(user.id, mfa_code)
            if not verification.valid:
                failed = self._lockout.record_failed_login(user.id)
                self._audit_attempt(email, user, AuditAction.LOGIN_FAILED, AuditStatus.FAILURE,
                                    "Invalid MFA code", locked=failed.locked)
                if failed.locked:
                    return {'success': False, 'message': failed.message, 'locked': True}
                return {'success': False, 'message': 'Invalid MFA code', 'requires_mfa': True}
            used_backup_code = verification.used_backup_code is not None

        # Successful login
        self._lockout.reset_failed_logins(user.id)
        self._upgrade_hash(user, password)
        details = {'used_backup_code': True} if used_backup_code else {}
        self._audit_attempt(email, user, AuditAction.LOGIN, AuditStatus.SUCCESS, **details)
        logger.info("User %s logged in", user.id)

        return {
            'success': True,
            'message': 'Login successful',
            'user_id': user.id,
            'role': user.role,
            'used_backup_code': used_backup_code,
            'mfa_setup_required': is_mfa_required_for_role(user.role) and not user.mfa_enabled,
        }

    def _upgrade_hash(self, user: UserRecord, password: str) -> None:
        if not self._hasher.needs_rehash(user.password_hash):
            return
        try:
            self._users.update(user.id, password_hash=self._hasher.hash_password(password))
        except ValueError:
            # Password predates the current policy; keep the old hash
            pass

    def change_password(self, user_id: str, old_password: str, new_password: str) -> Dict:
        """
        Change a password after verifying the current one.

        Returns:
            Dict with 'success', 'message' and 'errors' for policy violations
        """
        user = self._users.get_by_id(user_id)
        if user is None:
            return {'success': False, 'message': 'User not found'}

        if not self._hasher.verify_password(old_password, user.password_hash):
            self._audit_attempt(user.email, user, AuditAction.PASSWORD_CHANGE,
                                AuditStatus.FAILURE, "Current password is incorrect")
            return {'success': False, 'message': 'Current password is incorrect'}

        if old_password == new_password:
            return {
                'success': False,
                'message': 'New password must be different from the current password',
            }

        validation = validate_password(new_password, self._hasher.requirements)
        if not validation.valid:
            return {
                'success': False,
                'message': 'Password does not meet requirements',
                'errors': validation.errors,
            }

        self._users.update(user_id, password_hash=self._hasher.hash_password(new_password))
        self._audit_attempt(user.email, user, AuditAction.PASSWORD_CHANGE, AuditStatus.SUCCESS)
        logger.info("Password changed for user %s", user_id)
        return {'success': True, 'message': 'Password updated successfully'}
