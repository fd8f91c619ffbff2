from urllib.parse import urlparse
from flask import Blueprint, render_template, request, redirect, url_for, flash
from werkzeug.security import check_password_hash
from models import User
from services.auth import current_user, sign_in, sign_out
from utils import t

auth_bp = Blueprint('auth', __name__)


def safe_next(target, fallback):
    """Only follow same-site relative redirects"""
    if not target:
        return fallback
    parts = urlparse(target)
    if parts.scheme or parts.netloc or not target.startswith('/'):
        return fallback
    return target


@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    """Staff login page"""
    if request.method == 'POST':
        username = request.form.get('username', '').strip()
        password = request.form.get('password', '')

        user = User.query.filter_by(username=username).first()

        if user and user.is_active and check_password_hash(user.password_hash, password):
            sign_in(user)
            print(f"[AUTH] User {user.id} signed in")
            return redirect(safe_next(request.args.get('next'), url_for('admin.dashboard')))

        print(f"[AUTH] Failed login for username '{username}'")
        flash(t('invalid_login'), 'error')
    elif current_user() is not None:
        return redirect(url_for('admin.dashboard'))

    return render_template('login.html')


@auth_bp.route('/logout')
def logout():
    """Sign out and forget this session's 2FA state"""
    sign_out()
    flash(t('logged_out'))
    return redirect(url_for('auth.login'))
