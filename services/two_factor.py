"""
Two-factor enrollment and verification.

Per user the flow is NO_CREDENTIAL -> PENDING_ENROLLMENT -> ENROLLED, and on
every new session ENROLLED -> AWAITING_VERIFICATION -> VERIFIED. Pending
enrollments are plain values held by the caller (the session store); only
a confirmed enrollment is written to the database.

Backup codes are stored as SHA-256 digests. The plaintext is handed to the
user once, when the codes are generated. A TOTP code is accepted at most
once: the credential remembers the last time step it accepted.
"""
import enum
import hashlib
from dataclasses import dataclass
from datetime import timezone
from typing import Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from models import db, TwoFactorCredential
from services import totp
from utils.helpers import utcnow, generate_backup_codes, normalize_backup_code

BACKUP_CODE_COUNT = 8
BACKUP_CODE_LENGTH = 8


class TwoFactorError(Exception):
    """Base class for 2FA workflow errors."""


class InvalidCodeFormat(TwoFactorError):
    """The submitted code is not 6 digits / not a plausible backup code."""


class NotEnrolled(TwoFactorError):
    """The user has no enabled 2FA credential."""


class TooManyAttempts(TwoFactorError):
    """Verification is locked for this user after repeated failures."""

    def __init__(self, retry_after):
        super().__init__(f'too many failed attempts, retry in {retry_after}s')
        self.retry_after = retry_after


class TwoFactorState(enum.Enum):
    NO_CREDENTIAL = 'no_credential'
    PENDING_ENROLLMENT = 'pending_enrollment'
    ENROLLED = 'enrolled'
    AWAITING_VERIFICATION = 'awaiting_verification'
    VERIFIED = 'verified'


class VerificationResult(enum.Enum):
    TOTP = 'totp'
    BACKUP_CODE = 'backup_code'
    INVALID = 'invalid'

    @property
    def success(self):
        return self is not VerificationResult.INVALID


@dataclass(frozen=True)
class PendingEnrollment:
    user_id: int
    secret: str
    backup_codes: Tuple[str, ...]

    @property
    def state(self):
        return TwoFactorState.PENDING_ENROLLMENT


def hash_backup_code(code):
    return hashlib.sha256(normalize_backup_code(code).encode('utf-8')).hexdigest()


def _timestamp(now):
    """Unix time for a datetime; naive datetimes are UTC like the rest of the app"""
    if now is None:
        return None
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.timestamp()


def get_credential(user_id):
    return TwoFactorCredential.query.filter_by(user_id=user_id, is_enabled=True).first()


def credential_state(user_id):
    if get_credential(user_id) is None:
        return TwoFactorState.NO_CREDENTIAL
    return TwoFactorState.ENROLLED


def is_two_factor_required(user, client_ip=None):
    """Organisational policy: 2FA for configured roles, except from trusted IPs"""
    if user is None:
        return False
    required_roles = current_app.config['TWO_FACTOR_REQUIRED_ROLES']
    if user.role not in required_roles:
        return False
    if client_ip and client_ip in current_app.config['TWO_FACTOR_TRUSTED_IPS']:
        print(f"[2FA] Skipping 2FA for user {user.id} from trusted IP {client_ip}")
        return False
    return True


def start_enrollment(user_id):
    """Draw a fresh secret and backup codes. Nothing is stored yet."""
    if get_credential(user_id) is not None:
        raise TwoFactorError('2FA is already enabled for this user')

    print(f"[2FA] Enrollment started for user {user_id}")
    return PendingEnrollment(
        user_id=user_id,
        secret=totp.generate_secret(),
        backup_codes=tuple(generate_backup_codes(BACKUP_CODE_COUNT, BACKUP_CODE_LENGTH)),
    )


def confirm_enrollment(pending, code, now=None):
    """Store the credential if ``code`` matches the pending secret.

    Returns the new TwoFactorCredential, or None when the code is wrong (the
    same pending enrollment can be confirmed again with a fresh code).
    """
    code = (code or '').strip()
    if not totp.is_valid_code_format(code):
        raise InvalidCodeFormat('authentication codes are 6 digits')

    step = totp.matching_step(pending.secret, code, for_time=_timestamp(now))
    if step is None:
        print(f"[2FA] Enrollment confirmation failed for user {pending.user_id}")
        return None

    credential = TwoFactorCredential.query.filter_by(user_id=pending.user_id).first()
    if credential is None:
        credential = TwoFactorCredential(user_id=pending.user_id)
        db.session.add(credential)
    credential.secret = pending.secret
    credential.backup_codes = [hash_backup_code(c) for c in pending.backup_codes]
    credential.is_enabled = True
    credential.last_used_at = now or utcnow()
    credential.last_used_step = step

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    print(f"[2FA] Enrollment completed for user {pending.user_id}")
    return credential


def verify(user_id, token=None, backup_code=None, now=None):
    """Check a TOTP code or consume a backup code for an enrolled user"""
    if not token and not backup_code:
        raise TwoFactorError('token or backup code required')

    credential = get_credential(user_id)
    if credential is None:
        raise NotEnrolled('2FA not enabled')

    if backup_code:
        return _consume_backup_code(credential, backup_code, now)

    token = token.strip()
    if not totp.is_valid_code_format(token):
        raise InvalidCodeFormat('token must be 6 digits')

    step = totp.matching_step(credential.secret, token, for_time=_timestamp(now))
    if step is None:
        print(f"[2FA] Invalid TOTP code for user {user_id}")
        return VerificationResult.INVALID
    if credential.last_used_step is not None and step <= credential.last_used_step:
        print(f"[2FA] Rejected reused TOTP code for user {user_id}")
        return VerificationResult.INVALID

    # Versioned update: a concurrent request accepting the same step makes this one stale
    credential.last_used_step = step
    credential.last_used_at = now or utcnow()
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        print(f"[2FA] TOTP code for user {user_id} was accepted concurrently")
        return VerificationResult.INVALID
    except SQLAlchemyError:
        db.session.rollback()
        raise

    print(f"[2FA] TOTP verified for user {user_id}")
    return VerificationResult.TOTP


def _consume_backup_code(credential, backup_code, now):
    normalized = normalize_backup_code(backup_code)
    if not normalized.isalnum() or len(normalized) != BACKUP_CODE_LENGTH:
        raise InvalidCodeFormat('backup codes are 8 letters or digits')

    digest = hash_backup_code(normalized)
    if digest not in (credential.backup_codes or []):
        print(f"[2FA] Invalid backup code for user {credential.user_id}")
        return VerificationResult.INVALID

    # Versioned update: a concurrent consumer of the same code makes this one stale
    credential.backup_codes = [c for c in credential.backup_codes if c != digest]
    credential.last_used_at = now or utcnow()
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        print(f"[2FA] Backup code for user {credential.user_id} was consumed concurrently")
        return VerificationResult.INVALID
    except SQLAlchemyError:
        db.session.rollback()
        raise

    print(f"[2FA] Backup code used by user {credential.user_id}, "
          f"{len(credential.backup_codes)} remaining")
    return VerificationResult.BACKUP_CODE


def verify_with_limiter(limiter, user_id, token=None, backup_code=None, now=None):
    """verify() behind the failed-attempt limiter"""
    if limiter.is_locked(user_id):
        raise TooManyAttempts(limiter.retry_after(user_id))

    result = verify(user_id, token=token, backup_code=backup_code, now=now)
    if result.success:
        limiter.reset(user_id)
    elif limiter.record_failure(user_id):
        print(f"[2FA] User {user_id} locked out after repeated failures")
    return result


def regenerate_backup_codes(user_id):
    """Replace every backup code; returns the new plaintext codes"""
    credential = get_credential(user_id)
    if credential is None:
        raise NotEnrolled('2FA not enabled')

    codes = generate_backup_codes(BACKUP_CODE_COUNT, BACKUP_CODE_LENGTH)
    credential.backup_codes = [hash_backup_code(c) for c in codes]
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    print(f"[2FA] Backup codes regenerated for user {user_id}")
    return codes


def disable(user_id):
    """Delete the user's credential; returns False if there was none"""
    credential = TwoFactorCredential.query.filter_by(user_id=user_id).first()
    if credential is None:
        return False

    db.session.delete(credential)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    print(f"[2FA] 2FA disabled for user {user_id}")
    return True
