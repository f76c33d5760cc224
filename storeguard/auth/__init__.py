# Authentication Module
"""
Authentication services including:
- Password policy and Argon2id hashing - passwords.py
- Persistent account lockout - lockout.py
- Fixed-window rate limiting - rate_limit.py
- TOTP/HOTP (RFC 6238) - totp.py
- Authenticator-app MFA with backup codes - mfa.py
- SMS one-time login codes - sms_mfa.py
- Login orchestration - login.py

Security features:
- Constant-time comparison for codes and hashes
- Secrets and backup codes only stored encrypted
- Lockout fails open on storage errors, closed on an active lock
"""

from .passwords import (
    PasswordHasher_,
    PasswordRequirements,
    PasswordValidation,
    validate_password,
    calculate_password_score,
    COMMON_PASSWORDS,
)

from .lockout import (
    LockoutService,
    LockoutStatus,
    FailedLoginResult,
)

from .rate_limit import (
    RateLimiter,
    RateLimitConfig,
    RateLimitResult,
    InMemoryRateLimitStore,
    RATE_LIMITS,
    build_identifier,
    get_rate_limit_headers,
)

from .totp import (
    TOTPGenerator,
    generate_secret,
    totp,
    hotp,
    verify_totp,
    secret_to_base32,
    base32_to_secret,
)

from .mfa import (
    MFAService,
    MFAEnrollment,
    MFASetup,
    MFAVerification,
    MFAState,
    MFAStatus,
    TotpCredential,
    BackupCodeCredential,
    parse_credential,
    generate_backup_codes,
    is_mfa_required_for_role,
    is_mfa_recommended_for_role,
)

from .sms_mfa import (
    SmsMfaService,
    VerificationCodeStore,
    VerificationCode,
    CodeVerification,
    LoginCodeRequest,
)

from .login import LoginManager

__all__ = [
    # Passwords
    'PasswordHasher_',
    'PasswordRequirements',
    'PasswordValidation',
    'validate_password',
    'calculate_password_score',
    'COMMON_PASSWORDS',
    # Lockout
    'LockoutService',
    'LockoutStatus',
    'FailedLoginResult',
    # Rate limiting
    'RateLimiter',
    'RateLimitConfig',
    'RateLimitResult',
    'InMemoryRateLimitStore',
    'RATE_LIMITS',
    'build_identifier',
    'get_rate_limit_headers',
    # TOTP
    'TOTPGenerator',
    'generate_secret',
    'totp',
    'hotp',
    'verify_totp',
    'secret_to_base32',
    'base32_to_secret',
    # MFA
    'MFAService',
    'MFAEnrollment',
    'MFASetup',
    'MFAVerification',
    'MFAState',
    'MFAStatus',
    'TotpCredential',
    'BackupCodeCredential',
    'parse_credential',
    'generate_backup_codes',
    'is_mfa_required_for_role',
    'is_mfa_recommended_for_role',
    # SMS MFA
    'SmsMfaService',
    'VerificationCodeStore',
    'VerificationCode',
    'CodeVerification',
    'LoginCodeRequest',
    # Login
    'LoginManager',
]
