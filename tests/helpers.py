"""Helpers shared by the test modules."""
import time
from datetime import datetime, timezone

from werkzeug.security import generate_password_hash

from models import db, User, FeedbackLink
from services import totp
from services.two_factor import confirm_enrollment, start_enrollment

PASSWORD = 'correct horse battery'


def make_user(username, role='user', password=PASSWORD, is_active=True):
    """Create a user inside the current app context and return its id"""
    user = User(
        name=username.title(),
        email=f'{username}@example.com',
        username=username,
        role=role,
        is_active=is_active,
        password_hash=generate_password_hash(password)
    )
    db.session.add(user)
    db.session.commit()
    return user.id


def enroll(user_id, now=None):
    """Complete 2FA enrollment at ``now``; returns (secret, plaintext backup codes)

    Defaults to one time step ago, so the current code has not been used yet.
    """
    if now is None:
        now = datetime.fromtimestamp(time.time() - totp.INTERVAL, tz=timezone.utc).replace(tzinfo=None)
    pending = start_enrollment(user_id)
    code = totp.code_at(pending.secret, now.replace(tzinfo=timezone.utc).timestamp())
    credential = confirm_enrollment(pending, code, now=now)
    assert credential is not None
    return pending.secret, list(pending.backup_codes)


def current_code(secret):
    return totp.code_at(secret, time.time())


def login(client, username, password=PASSWORD):
    return client.post('/login', data={'username': username, 'password': password})


def get_link(token):
    return FeedbackLink.query.filter_by(token=token).first()


def stale_code(secret):
    """A well-formed code from ten minutes ago, outside the drift window"""
    return totp.code_at(secret, time.time() - 600)
