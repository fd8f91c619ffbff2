import secrets
from functools import wraps
from flask import current_app, flash, g, jsonify, redirect, request, session, url_for
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from models import db, User
from services.session_gate import GateDecision, decide
from services import two_factor
from utils.helpers import get_client_ip
from utils.i18n import t

API_TOKEN_SALT = 'api-token'


def get_serializer():
    """Get the token serializer"""
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'])


def issue_api_token(user):
    """Signed bearer token for the JSON API"""
    return get_serializer().dumps({'user_id': user.id}, salt=API_TOKEN_SALT)


def load_api_token(token):
    """Return the active user a bearer token belongs to, or None"""
    try:
        data = get_serializer().loads(token, salt=API_TOKEN_SALT,
                                      max_age=current_app.config['API_TOKEN_MAX_AGE'])
    except SignatureExpired:
        print("[API] Expired bearer token")
        return None
    except BadSignature:
        print("[API] Invalid bearer token")
        return None

    user = db.session.get(User, data.get('user_id')) if isinstance(data, dict) else None
    if user is None or not user.is_active:
        return None
    return user


def gate_store():
    return current_app.extensions['two_factor_sessions']


def attempt_limiter():
    return current_app.extensions['two_factor_limiter']


def current_user():
    """The signed-in user for this request, or None"""
    if 'current_user' not in g:
        user_id = session.get('user_id')
        user = db.session.get(User, user_id) if user_id is not None else None
        g.current_user = user if user is not None and user.is_active else None
    return g.current_user


def sign_in(user):
    session.clear()
    session['user_id'] = user.id
    session['user_name'] = user.name
    # Key for the session-scoped 2FA state
    session['sid'] = secrets.token_urlsafe(16)
    # Cookie lifetime matches the 2FA session store (PERMANENT_SESSION_LIFETIME)
    session.permanent = True
    g.pop('current_user', None)


def sign_out():
    user_id = session.get('user_id')
    sid = session.get('sid')
    if user_id is not None and sid is not None:
        gate_store().clear(user_id, sid)
    session.clear()
    g.pop('current_user', None)


def gate_decision(user=None):
    """Run the session 2FA gate for the current request"""
    user = user or current_user()
    return decide(
        user.id if user else None,
        session.get('sid'),
        gate_store(),
        is_required=lambda: two_factor.is_two_factor_required(user, get_client_ip(request)),
        is_enrolled=lambda: two_factor.get_credential(user.id) is not None,
    )


def login_required(f):
    """Decorator to require a signed-in user"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user() is None:
            return redirect(url_for('auth.login', next=request.path))
        return f(*args, **kwargs)
    return decorated_function


def two_factor_required(f):
    """Decorator that sends users through 2FA verification or setup first"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        decision = gate_decision()
        if decision is GateDecision.AUTHENTICATE:
            return redirect(url_for('auth.login', next=request.path))
        if decision is GateDecision.CHALLENGE:
            return redirect(url_for('two_factor.verify', next=request.path))
        if decision is GateDecision.ENROLL:
            return redirect(url_for('two_factor.setup', next=request.path))
        return f(*args, **kwargs)
    return decorated_function


def role_required(*roles):
    """Decorator to restrict a view to users with one of ``roles``"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = current_user()
            if user is None:
                return redirect(url_for('auth.login', next=request.path))
            if user.role not in roles:
                flash(t('admin_only'), 'error')
                return redirect(url_for('admin.dashboard'))
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def bearer_required(f):
    """Decorator for JSON endpoints; sets g.api_user from the Authorization header"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get('Authorization', '')
        if not auth_header:
            return jsonify({'error': 'No authorization header'}), 401
        if not auth_header.startswith('Bearer '):
            return jsonify({'error': 'Invalid authentication'}), 401

        user = load_api_token(auth_header[len('Bearer '):].strip())
        if user is None:
            return jsonify({'error': 'Invalid authentication'}), 401

        g.api_user = user
        return f(*args, **kwargs)
    return decorated_function
