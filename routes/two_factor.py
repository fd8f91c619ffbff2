from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError
from routes.auth import safe_next
from services import login_required, two_factor_required
from services import totp, two_factor
from services.auth import attempt_limiter, current_user, gate_decision, gate_store, sign_out
from services.session_gate import GateDecision
from services.two_factor import InvalidCodeFormat, NotEnrolled, TooManyAttempts, TwoFactorError
from utils import t

two_factor_bp = Blueprint('two_factor', __name__, url_prefix='/2fa')


def next_url():
    return safe_next(request.args.get('next'), url_for('admin.dashboard'))


def submitted_codes():
    """(token, backup_code) from the verification form"""
    token = request.form.get('token', '').strip() or None
    backup_code = request.form.get('backup_code', '').strip() or None
    return token, backup_code


def check_codes(user):
    """Verify the posted code; returns (ok, error message, status code)"""
    token, backup_code = submitted_codes()
    try:
        result = two_factor.verify_with_limiter(attempt_limiter(), user.id,
                                                token=token, backup_code=backup_code)
    except TooManyAttempts:
        return False, t('two_factor_locked'), 429
    except InvalidCodeFormat:
        return False, t('two_factor_code_format'), 400
    except TwoFactorError:
        return False, t('two_factor_invalid_code'), 400

    if not result.success:
        return False, t('two_factor_invalid_code'), 400
    return True, None, 200


@two_factor_bp.route('/verify', methods=['GET', 'POST'])
@login_required
def verify():
    """2FA challenge for users who are enrolled but not verified this session"""
    user = current_user()
    decision = gate_decision(user)
    if decision is GateDecision.CONTENT:
        return redirect(next_url())
    if decision is GateDecision.ENROLL:
        return redirect(url_for('two_factor.setup', next=request.args.get('next')))

    if request.method == 'POST':
        try:
            ok, error, code = check_codes(user)
        except SQLAlchemyError as e:
            print(f"[2FA] Database error during verification for user {user.id}: {e}")
            ok, error, code = False, t('feedback_error_body'), 500

        if ok:
            gate_store().mark_verified(user.id, session['sid'])
            return redirect(next_url())

        flash(error, 'error')
        return render_template('two_factor_verify.html'), code

    return render_template('two_factor_verify.html')


@two_factor_bp.route('/setup', methods=['GET', 'POST'])
@login_required
def setup():
    """Enrollment: show the QR code and backup codes, confirm with a first code"""
    user = current_user()
    if two_factor.credential_state(user.id) is two_factor.TwoFactorState.ENROLLED:
        flash(t('two_factor_already_enabled'))
        return redirect(url_for('two_factor.manage'))

    store = gate_store()
    sid = session['sid']
    pending = store.get_pending(user.id, sid)
    if pending is None:
        pending = two_factor.start_enrollment(user.id)
        store.set_pending(user.id, sid, pending)

    status = 200
    if request.method == 'POST':
        try:
            credential = two_factor.confirm_enrollment(pending, request.form.get('token', ''))
        except InvalidCodeFormat:
            credential = None
            flash(t('two_factor_code_format'), 'error')
            status = 400
        else:
            if credential is None:
                flash(t('two_factor_invalid_code'), 'error')
                status = 400

        if credential is not None:
            store.pop_pending(user.id, sid)
            # Completing enrollment counts as verifying this session
            store.mark_verified(user.id, sid)
            flash(t('two_factor_enabled'))
            return redirect(next_url())

    uri = totp.provisioning_uri(pending.secret, user.email or user.username,
                                current_app.config['TWO_FACTOR_ISSUER'])
    return render_template('two_factor_setup.html',
                           secret=pending.secret,
                           qr_svg=totp.qr_code_svg(uri),
                           backup_codes=pending.backup_codes), status


@two_factor_bp.route('/cancel', methods=['POST'])
def cancel():
    """Backing out of the 2FA prompt signs the user out"""
    user = current_user()
    if user is not None:
        print(f"[2FA] User {user.id} cancelled 2FA, signing out")
    sign_out()
    return redirect(url_for('auth.login'))


@two_factor_bp.route('/manage')
@login_required
@two_factor_required
def manage():
    """2FA status page with backup-code regeneration and disable"""
    credential = two_factor.get_credential(current_user().id)
    return render_template('two_factor_manage.html',
                           credential=credential,
                           remaining_codes=len(credential.backup_codes) if credential else 0)


@two_factor_bp.route('/backup-codes', methods=['POST'])
@login_required
@two_factor_required
def regenerate_backup_codes():
    """Replace all backup codes and show the new ones once"""
    try:
        codes = two_factor.regenerate_backup_codes(current_user().id)
    except NotEnrolled:
        return redirect(url_for('two_factor.setup'))

    flash(t('two_factor_backup_regenerated'))
    return render_template('two_factor_backup_codes.html', backup_codes=codes)


@two_factor_bp.route('/disable', methods=['POST'])
@login_required
@two_factor_required
def disable():
    """Remove the credential after re-checking a current code"""
    user = current_user()
    token, backup_code = submitted_codes()
    if not token and not backup_code:
        flash(t('two_factor_required_to_disable'), 'error')
        return redirect(url_for('two_factor.manage'))

    ok, error, _ = check_codes(user)
    if not ok:
        flash(error, 'error')
        return redirect(url_for('two_factor.manage'))

    two_factor.disable(user.id)
    # Verified markers belonged to the old credential
    gate_store().clear_user(user.id)
    flash(t('two_factor_disabled'))
    return redirect(url_for('admin.dashboard'))
