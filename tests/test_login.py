"""
Integration tests for the login flow.

Tests:
- Password login, generic failures and hash upgrades
- Account lockout and per-IP rate limiting
- Second factor (TOTP and single-use backup codes)
- Password change
- Audit records for every outcome
"""

import pytest

from storeguard.audit import AuditAction, AuditStatus, request_context
from storeguard.auth import LoginManager, PasswordHasher_, PasswordRequirements, RateLimitConfig
from storeguard.auth.login import MFA_UNAVAILABLE
from storeguard.auth.totp import base32_to_secret, totp
from storeguard.store import UserRecord


PASSWORD = "Counter2Shop"


@pytest.fixture
def manager(users, lockout, rate_limiter, audit_logger, enrollment, hasher):
    # Generous IP limit so lockout tests are not cut short by throttling
    return LoginManager(
        users, lockout, rate_limiter, audit_logger, enrollment, hasher,
        rate_limit_policy=RateLimitConfig(max_attempts=100, window_ms=60_000),
    )


@pytest.fixture
def mfa_owner(owner, enrollment):
    """Owner with MFA enabled; returns (user, setup)."""
    setup = enrollment.begin_setup(owner.id)
    assert enrollment.confirm_setup(owner.id, totp(base32_to_secret(setup.secret)))
    return owner, setup


class TestPasswordLogin:
    """Tests for the password step."""

    def test_success(self, manager, owner):
        result = manager.login("owner@example.com", PASSWORD, client_ip="203.0.113.9")

        assert result['success']
        assert result['message'] == "Login successful"
        assert result['user_id'] == owner.id
        assert result['role'] == "OWNER"
        assert not result['used_backup_code']
        assert not result['mfa_setup_required']

    def test_email_normalized(self, manager, owner):
        assert manager.login("  OWNER@Example.com ", PASSWORD)['success']

    def test_wrong_password_is_generic(self, manager, owner):
        result = manager.login("owner@example.com", "Wrong2Password", client_ip="203.0.113.9")
        assert result == {'success': False, 'message': "Invalid email or password"}

    def test_unknown_user_matches_wrong_password(self, manager, owner):
        unknown = manager.login("nobody@example.com", PASSWORD, client_ip="203.0.113.9")
        wrong = manager.login("owner@example.com", "Wrong2Password", client_ip="203.0.113.9")
        assert unknown == wrong

    def test_unknown_user_under_strict_policy(self, users, lockout, rate_limiter, audit_logger):
        strict = PasswordHasher_(PasswordRequirements(min_length=40, require_special=True),
                                 time_cost=1, memory_cost=8, parallelism=1)
        manager = LoginManager(users, lockout, rate_limiter, audit_logger, hasher=strict)

        result = manager.login("nobody@example.com", PASSWORD)
        assert result == {'success': False, 'message': "Invalid email or password"}

    @pytest.mark.parametrize("email", ["", None, "not-an-email"])
    def test_malformed_email(self, manager, email):
        assert manager.login(email, PASSWORD) == {'success': False, 'message': "Invalid email or password"}

    def test_success_resets_failures(self, manager, owner, users):
        manager.login("owner@example.com", "Wrong2Password")
        manager.login("owner@example.com", "Wrong2Password")
        assert users.get_by_id(owner.id).failed_login_attempts == 2

        manager.login("owner@example.com", PASSWORD)
        assert users.get_by_id(owner.id).failed_login_attempts == 0

    def test_mfa_setup_required_for_admin_roles(self, manager, users, hasher):
        users.add(UserRecord(
            id="admin1", email="admin@example.com", role="SUPER_ADMIN",
            password_hash=hasher.hash_password(PASSWORD),
        ))
        result = manager.login("admin@example.com", PASSWORD)
        assert result['success']
        assert result['mfa_setup_required']

    def test_hash_upgraded_on_login(self, users, lockout, rate_limiter, audit_logger, owner):
        stronger = PasswordHasher_(time_cost=2, memory_cost=16, parallelism=1)
        manager = LoginManager(users, lockout, rate_limiter, audit_logger, hasher=stronger)

        assert manager.login("owner@example.com", PASSWORD)['success']
        new_hash = users.get_by_id(owner.id).password_hash
        assert new_hash != owner.password_hash
        assert not stronger.needs_rehash(new_hash)


class TestLockoutAndRateLimit:
    """Tests for brute-force protection."""

    def test_locks_after_max_failures(self, manager, owner):
        results = [manager.login("owner@example.com", "Wrong2Password") for _ in range(5)]

        assert all(r['message'] == "Invalid email or password" for r in results[:4])
        assert results[4]['locked']
        assert results[4]['message'] == "Too many failed attempts. Account locked for 15 minutes."

    def test_locked_account_refuses_correct_password(self, manager, owner):
        for _ in range(5):
            manager.login("owner@example.com", "Wrong2Password")

        result = manager.login("owner@example.com", PASSWORD)
        assert not result['success']
        assert result['locked']
        assert result['retry_after'] == 15 * 60
        assert result['message'] == "Account is temporarily locked. Try again in 15 minutes."

    def test_lock_expires(self, manager, owner, clock):
        for _ in range(5):
            manager.login("owner@example.com", "Wrong2Password")
        clock.advance(15 * 60)
        assert manager.login("owner@example.com", PASSWORD)['success']

    def test_ip_rate_limit(self, users, lockout, rate_limiter, audit_logger, audit_store, hasher):
        manager = LoginManager(users, lockout, rate_limiter, audit_logger, hasher=hasher)
        for _ in range(5):
            manager.login("nobody@example.com", "Wrong2Password", client_ip="203.0.113.9")

        result = manager.login("nobody@example.com", "Wrong2Password", client_ip="203.0.113.9")
        assert not result['success']
        assert result['retry_after'] == 45 * 60
        assert result['message'] == "Too many login attempts. Please try again in 2700 seconds."
        assert audit_store.records[-1].status == AuditStatus.BLOCKED

        # A different client is unaffected
        other = manager.login("nobody@example.com", "Wrong2Password", client_ip="198.51.100.7")
        assert 'retry_after' not in other


class TestSecondFactor:
    """Tests for MFA at login."""

    def test_code_required(self, manager, mfa_owner):
        result = manager.login("owner@example.com", PASSWORD)
        assert not result['success']
        assert result['requires_mfa']
        assert result['message'] == "MFA code required"

    def test_totp_code(self, manager, mfa_owner):
        _, setup = mfa_owner
        code = totp(base32_to_secret(setup.secret))
        result = manager.login("owner@example.com", PASSWORD, mfa_code=code)
        assert result['success']
        assert not result['used_backup_code']

    def test_wrong_code_counts_as_failure(self, manager, mfa_owner, users):
        owner, _ = mfa_owner
        result = manager.login("owner@example.com", PASSWORD, mfa_code="not-a-code")
        assert result['message'] == "Invalid MFA code"
        assert result['requires_mfa']
        assert users.get_by_id(owner.id).failed_login_attempts == 1

    def test_fails_closed_without_mfa_service(self, users, lockout, rate_limiter,
                                              audit_logger, audit_store, hasher, mfa_owner):
        manager = LoginManager(users, lockout, rate_limiter, audit_logger, hasher=hasher)
        _, setup = mfa_owner

        for code in (None, totp(base32_to_secret(setup.secret))):
            result = manager.login("owner@example.com", PASSWORD, mfa_code=code)
            assert not result['success']
            assert result['message'] == MFA_UNAVAILABLE
        assert audit_store.records[-1].status == AuditStatus.BLOCKED

    def test_backup_code_single_use(self, manager, mfa_owner, enrollment):
        owner, setup = mfa_owner
        code = setup.backup_codes[0]

        first = manager.login("owner@example.com", PASSWORD, mfa_code=code.lower())
        assert first['success']
        assert first['used_backup_code']
        assert enrollment.status(owner.id).backup_codes_remaining == 7

        second = manager.login("owner@example.com", PASSWORD, mfa_code=code)
        assert not second['success']
        assert second['message'] == "Invalid MFA code"


class TestChangePassword:
    """Tests for change_password."""

    def test_success(self, manager, owner, hasher, users):
        result = manager.change_password(owner.id, PASSWORD, "Register9Till")
        assert result == {'success': True, 'message': "Password updated successfully"}
        assert hasher.verify_password("Register9Till", users.get_by_id(owner.id).password_hash)

    def test_wrong_current_password(self, manager, owner):
        result = manager.change_password(owner.id, "Wrong2Password", "Register9Till")
        assert result['message'] == "Current password is incorrect"

    def test_same_password(self, manager, owner):
        result = manager.change_password(owner.id, PASSWORD, PASSWORD)
        assert not result['success']
        assert "must be different" in result['message']

    def test_weak_new_password(self, manager, owner):
        result = manager.change_password(owner.id, PASSWORD, "password123")
        assert result['message'] == "Password does not meet requirements"
        assert "Password is too common. Please choose a stronger password" in result['errors']

    def test_unknown_user(self, manager):
        assert manager.change_password("missing", PASSWORD, "Register9Till")['message'] == "User not found"


class TestLoginAudit:
    """Tests for audit records written by the login flow."""

    def test_success_record(self, manager, owner, audit_store):
        with request_context({'X-Forwarded-For': '203.0.113.9', 'User-Agent': 'POS-Terminal/2.1'}):
            manager.login("owner@example.com", PASSWORD)

        record = audit_store.records[-1]
        assert record.action == AuditAction.LOGIN
        assert record.status == AuditStatus.SUCCESS
        assert record.user_id == owner.id
        assert record.ip_address == "203.0.113.9"
        assert record.user_agent == "POS-Terminal/2.1"

    def test_failure_records(self, manager, owner, audit_store):
        manager.login("nobody@example.com", PASSWORD)
        manager.login("owner@example.com", "Wrong2Password")

        unknown, wrong = audit_store.records
        assert unknown.action == AuditAction.LOGIN_FAILED
        assert unknown.user_id == "unknown"
        assert wrong.user_id == owner.id
        assert wrong.status == AuditStatus.FAILURE
        assert wrong.error_message == "Invalid credentials"

    def test_locked_attempt_blocked(self, manager, owner, audit_store):
        for _ in range(5):
            manager.login("owner@example.com", "Wrong2Password")
        manager.login("owner@example.com", PASSWORD)

        record = audit_store.records[-1]
        assert record.status == AuditStatus.BLOCKED
        assert record.error_message == "Account locked"

    def test_password_change_recorded(self, manager, owner, audit_store):
        manager.change_password(owner.id, PASSWORD, "Register9Till")
        assert audit_store.get_records_by_action(AuditAction.PASSWORD_CHANGE)[0].status == AuditStatus.SUCCESS

    def test_chain_intact_after_flow(self, manager, mfa_owner, audit_store):
        manager.login("owner@example.com", "Wrong2Password")
        manager.login("owner@example.com", PASSWORD)
        manager.login("owner@example.com", PASSWORD, mfa_code=mfa_owner[1].backup_codes[1])
        assert len(audit_store) == 2
        assert audit_store.verify_integrity()
