"""
Tests for 2FA enrollment, verification, backup codes and lockout.
"""
import re
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from models import db, TwoFactorCredential, User
from services import totp, two_factor
from services.attempt_limiter import FailedAttemptLimiter
from services.two_factor import (InvalidCodeFormat, NotEnrolled, TooManyAttempts,
                                 TwoFactorError, TwoFactorState, VerificationResult)
from tests.helpers import enroll, make_user

NOW = datetime(2026, 3, 2, 9, 15, 10)  # naive UTC
ENROLLED_AT = NOW - timedelta(minutes=1)


def code_for(secret, when=NOW):
    return totp.code_at(secret, when.replace(tzinfo=timezone.utc).timestamp())


@pytest.fixture
def user_id(app_ctx):
    return make_user('admin', role='admin')


class TestEnrollment:
    def test_start_generates_fresh_material(self, user_id):
        pending = two_factor.start_enrollment(user_id)
        again = two_factor.start_enrollment(user_id)

        assert pending.state is TwoFactorState.PENDING_ENROLLMENT
        assert re.fullmatch(r'[A-Z2-7]{32}', pending.secret)
        assert len(pending.backup_codes) == 8
        assert len(set(pending.backup_codes)) == 8
        assert all(re.fullmatch(r'[A-Z0-9]{8}', c) for c in pending.backup_codes)
        assert again.secret != pending.secret
        assert TwoFactorCredential.query.count() == 0
        assert two_factor.credential_state(user_id) is TwoFactorState.NO_CREDENTIAL

    def test_invalid_code_keeps_pending(self, user_id):
        pending = two_factor.start_enrollment(user_id)
        wrong = code_for(pending.secret, NOW + timedelta(minutes=10))

        assert two_factor.confirm_enrollment(pending, wrong, now=NOW) is None
        assert TwoFactorCredential.query.count() == 0

        # Same secret, fresh code
        credential = two_factor.confirm_enrollment(pending, code_for(pending.secret), now=NOW)
        assert credential is not None
        assert credential.secret == pending.secret

    def test_confirm_persists_credential(self, user_id):
        pending = two_factor.start_enrollment(user_id)
        credential = two_factor.confirm_enrollment(pending, code_for(pending.secret), now=NOW)

        assert credential.is_enabled is True
        assert len(credential.backup_codes) == 8
        # Only digests are stored
        assert not set(pending.backup_codes) & set(credential.backup_codes)
        assert two_factor.credential_state(user_id) is TwoFactorState.ENROLLED

    def test_confirm_rejects_malformed_code(self, user_id):
        pending = two_factor.start_enrollment(user_id)
        with pytest.raises(InvalidCodeFormat):
            two_factor.confirm_enrollment(pending, '12ab56')

    def test_cannot_restart_when_enrolled(self, user_id):
        enroll(user_id, ENROLLED_AT)
        with pytest.raises(TwoFactorError):
            two_factor.start_enrollment(user_id)


class TestVerification:
    def test_totp(self, user_id):
        secret, _ = enroll(user_id, ENROLLED_AT)
        result = two_factor.verify(user_id, token=code_for(secret), now=NOW)
        assert result is VerificationResult.TOTP
        assert result.success

    def test_totp_previous_step(self, user_id):
        secret, _ = enroll(user_id, ENROLLED_AT)
        code = code_for(secret, NOW - timedelta(seconds=30))
        assert two_factor.verify(user_id, token=code, now=NOW).success

    def test_wrong_totp(self, user_id):
        secret, _ = enroll(user_id, ENROLLED_AT)
        code = code_for(secret, NOW - timedelta(minutes=5))
        assert two_factor.verify(user_id, token=code, now=NOW) is VerificationResult.INVALID

    def test_totp_code_is_accepted_once(self, user_id):
        secret, _ = enroll(user_id, ENROLLED_AT)
        code = code_for(secret)

        assert two_factor.verify(user_id, token=code, now=NOW) is VerificationResult.TOTP
        # Still inside the drift window, but the step was already used
        later = NOW + timedelta(seconds=25)
        assert two_factor.verify(user_id, token=code, now=later) is VerificationResult.INVALID
        assert two_factor.get_credential(user_id).last_used_step == int(
            NOW.replace(tzinfo=timezone.utc).timestamp()) // totp.INTERVAL

    def test_older_step_rejected_after_newer_one(self, user_id):
        secret, _ = enroll(user_id, ENROLLED_AT)
        assert two_factor.verify(user_id, token=code_for(secret), now=NOW).success

        previous = code_for(secret, NOW - timedelta(seconds=30))
        assert two_factor.verify(user_id, token=previous, now=NOW) is VerificationResult.INVALID

        following = code_for(secret, NOW + timedelta(seconds=30))
        assert two_factor.verify(user_id, token=following, now=NOW) is VerificationResult.TOTP

    def test_enrollment_code_cannot_be_replayed(self, user_id):
        pending = two_factor.start_enrollment(user_id)
        code = code_for(pending.secret)
        assert two_factor.confirm_enrollment(pending, code, now=NOW) is not None
        assert two_factor.verify(user_id, token=code, now=NOW) is VerificationResult.INVALID

    def test_malformed_totp(self, user_id):
        enroll(user_id, ENROLLED_AT)
        with pytest.raises(InvalidCodeFormat):
            two_factor.verify(user_id, token='12345')

    def test_requires_some_code(self, user_id):
        enroll(user_id, ENROLLED_AT)
        with pytest.raises(TwoFactorError):
            two_factor.verify(user_id)

    def test_not_enrolled(self, user_id):
        with pytest.raises(NotEnrolled):
            two_factor.verify(user_id, token='123456')

    def test_backup_code_single_use(self, user_id):
        _, codes = enroll(user_id, ENROLLED_AT)
        code = codes[0]

        assert two_factor.verify(user_id, backup_code=code) is VerificationResult.BACKUP_CODE
        assert two_factor.verify(user_id, backup_code=code) is VerificationResult.INVALID

        credential = two_factor.get_credential(user_id)
        assert two_factor.hash_backup_code(code) not in credential.backup_codes
        assert len(credential.backup_codes) == 7

    def test_backup_code_is_normalized(self, user_id):
        _, codes = enroll(user_id, ENROLLED_AT)
        typed = f' {codes[1][:4].lower()}-{codes[1][4:].lower()} '
        assert two_factor.verify(user_id, backup_code=typed) is VerificationResult.BACKUP_CODE

    def test_malformed_backup_code(self, user_id):
        enroll(user_id, ENROLLED_AT)
        with pytest.raises(InvalidCodeFormat):
            two_factor.verify(user_id, backup_code='short')

    def test_concurrent_backup_code_use_loses(self, user_id):
        _, codes = enroll(user_id, ENROLLED_AT)
        credential = two_factor.get_credential(user_id)
        version = credential.version

        # Another request consumed a code and bumped the row version meanwhile
        db.session.execute(text('UPDATE two_factor_credential SET version = version + 1 '
                                'WHERE user_id = :user_id'), {'user_id': user_id})

        assert two_factor.verify(user_id, backup_code=codes[0]) is VerificationResult.INVALID
        assert two_factor.get_credential(user_id).version == version


class TestMaintenance:
    def test_regenerate_replaces_every_code(self, user_id):
        _, old_codes = enroll(user_id, ENROLLED_AT)
        new_codes = two_factor.regenerate_backup_codes(user_id)

        assert len(new_codes) == 8
        assert two_factor.verify(user_id, backup_code=old_codes[0]) is VerificationResult.INVALID
        assert two_factor.verify(user_id, backup_code=new_codes[0]) is VerificationResult.BACKUP_CODE

    def test_regenerate_requires_enrollment(self, user_id):
        with pytest.raises(NotEnrolled):
            two_factor.regenerate_backup_codes(user_id)

    def test_disable(self, user_id):
        enroll(user_id, ENROLLED_AT)
        assert two_factor.disable(user_id) is True
        assert TwoFactorCredential.query.count() == 0
        assert two_factor.credential_state(user_id) is TwoFactorState.NO_CREDENTIAL
        assert two_factor.disable(user_id) is False

    def test_deleting_user_removes_credential(self, user_id):
        enroll(user_id, ENROLLED_AT)
        db.session.delete(db.session.get(User, user_id))
        db.session.commit()
        assert TwoFactorCredential.query.count() == 0


class TestPolicy:
    def test_required_for_admins(self, app_ctx, user_id):
        assert two_factor.is_two_factor_required(db.session.get(User, user_id))

    def test_not_required_for_other_roles(self, app_ctx):
        staff = db.session.get(User, make_user('staff'))
        assert not two_factor.is_two_factor_required(staff)

    def test_trusted_ip_skips(self, app_ctx, user_id):
        app_ctx.config['TWO_FACTOR_TRUSTED_IPS'] = {'10.1.2.3'}
        admin = db.session.get(User, user_id)
        assert not two_factor.is_two_factor_required(admin, '10.1.2.3')
        assert two_factor.is_two_factor_required(admin, '10.1.2.4')

    def test_anonymous(self, app_ctx):
        assert not two_factor.is_two_factor_required(None)


class TestLimitedVerification:
    def test_lockout_blocks_even_correct_codes(self, user_id):
        secret, _ = enroll(user_id, ENROLLED_AT)
        clock = [1000.0]
        limiter = FailedAttemptLimiter(max_failures=3, window_s=60, lockout_s=120,
                                       clock=lambda: clock[0])
        wrong = code_for(secret, NOW - timedelta(minutes=5))

        for _ in range(3):
            result = two_factor.verify_with_limiter(limiter, user_id, token=wrong, now=NOW)
            assert result is VerificationResult.INVALID

        with pytest.raises(TooManyAttempts) as excinfo:
            two_factor.verify_with_limiter(limiter, user_id, token=code_for(secret), now=NOW)
        assert excinfo.value.retry_after == 120

        clock[0] += 121
        result = two_factor.verify_with_limiter(limiter, user_id, token=code_for(secret), now=NOW)
        assert result is VerificationResult.TOTP

    def test_success_resets_failures(self, user_id):
        secret, _ = enroll(user_id, ENROLLED_AT)
        limiter = FailedAttemptLimiter(max_failures=2, window_s=60, lockout_s=60,
                                       clock=lambda: 0.0)
        wrong = code_for(secret, NOW - timedelta(minutes=5))

        two_factor.verify_with_limiter(limiter, user_id, token=wrong, now=NOW)
        two_factor.verify_with_limiter(limiter, user_id, token=code_for(secret), now=NOW)
        two_factor.verify_with_limiter(limiter, user_id, token=wrong, now=NOW)

        assert not limiter.is_locked(user_id)
