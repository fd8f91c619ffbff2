from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash
from models import User
from services import bearer_required
from services import two_factor
from services.auth import attempt_limiter, issue_api_token
from services.links import LinkValidationError, create_link, feedback_url
from services.two_factor import InvalidCodeFormat, NotEnrolled, TooManyAttempts, TwoFactorError
from services.webhook import SIGNATURE_HEADER, verify_signature
from utils.helpers import get_client_ip

api_bp = Blueprint('api', __name__, url_prefix='/api')


def json_body():
    """Request JSON as a dict, or None when the body is not a JSON object"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def too_many_attempts(e):
    response = jsonify({'error': 'Too many failed attempts', 'retry_after': e.retry_after})
    response.headers['Retry-After'] = str(e.retry_after)
    return response, 429


def split_code(code):
    """Six digits are a TOTP code, anything else is treated as a backup code"""
    code = str(code or '').strip()
    if code.isdigit() and len(code) == 6:
        return code, None
    return None, code or None


def link_response(data):
    """Create a feedback link from a JSON payload and describe it"""
    if data is None:
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    try:
        link = create_link(
            data.get('ticket_number'),
            data.get('technician'),
            data.get('ticket_title'),
            customer_email=data.get('customer_email'),
            customer_name=data.get('customer_name'),
            expires_hours=data.get('expires_hours'),
            default_feedback_type=data.get('default_feedback_type'),
        )
    except LinkValidationError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError as e:
        print(f"[API] Error creating feedback link: {e}")
        return jsonify({'error': 'Failed to create feedback link'}), 500

    expires_in_hours = round((link.expires_at - link.created_at).total_seconds() / 3600)
    return jsonify({
        'success': True,
        'data': {
            'token': link.token,
            'feedback_url': feedback_url(link.token),
            'ticket_number': link.ticket_number,
            'technician': link.technician,
            'ticket_title': link.ticket_title,
            'expires_in_hours': expires_in_hours,
            'expires_at': link.expires_at.isoformat() + 'Z',
        },
    })


@api_bp.app_errorhandler(405)
def method_not_allowed(e):
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Method not allowed'}), 405
    return e


@api_bp.route('/auth/token', methods=['POST'])
def auth_token():
    """Exchange username/password (and a 2FA code when enrolled) for a bearer token.

    Users the 2FA policy covers must enroll through the web UI first.
    """
    data = json_body()
    if data is None:
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    username = str(data.get('username') or '').strip()
    password = str(data.get('password') or '')
    if not username or not password:
        return jsonify({'error': 'username and password are required'}), 400

    user = User.query.filter_by(username=username).first()
    if user is None or not user.is_active or not check_password_hash(user.password_hash, password):
        print(f"[API] Failed token request for username '{username}'")
        return jsonify({'error': 'Invalid credentials'}), 401

    if two_factor.get_credential(user.id) is None:
        if two_factor.is_two_factor_required(user, get_client_ip(request)):
            print(f"[API] Refused bearer token for user {user.id}: 2FA enrollment required")
            return jsonify({'error': '2FA enrollment required', 'two_factor_required': True}), 403
    else:
        token, backup_code = split_code(data.get('code'))
        if not token and not backup_code:
            return jsonify({'error': '2FA code required', 'two_factor_required': True}), 401
        try:
            result = two_factor.verify_with_limiter(attempt_limiter(), user.id,
                                                    token=token, backup_code=backup_code)
        except TooManyAttempts as e:
            return too_many_attempts(e)
        except TwoFactorError:
            result = two_factor.VerificationResult.INVALID
        except SQLAlchemyError as e:
            print(f"[API] Database error verifying 2FA for user {user.id}: {e}")
            return jsonify({'error': 'Internal server error'}), 500

        if not result.success:
            return jsonify({'error': 'Invalid 2FA code', 'two_factor_required': True}), 401

    print(f"[API] Issued bearer token for user {user.id}")
    return jsonify({
        'success': True,
        'data': {
            'token': issue_api_token(user),
            'expires_in': current_app.config['API_TOKEN_MAX_AGE'],
        },
    })


@api_bp.route('/links', methods=['POST'])
@bearer_required
def create_feedback_link():
    """Issue a feedback link for a closed ticket"""
    print(f"[API] Link request from user {g.api_user.id}")
    return link_response(json_body())


@api_bp.route('/webhook', methods=['POST'])
def webhook():
    """Ticketing-system webhook; requests are signed with WEBHOOK_SECRET"""
    secret = current_app.config.get('WEBHOOK_SECRET')
    allow_unsigned = current_app.config.get('WEBHOOK_ALLOW_UNSIGNED', False)
    signature = request.headers.get(SIGNATURE_HEADER)
    payload = request.get_data()

    if signature or not allow_unsigned:
        if not secret:
            print("[WEBHOOK] Rejecting webhook: WEBHOOK_SECRET is not configured")
            return jsonify({'error': 'Webhook not configured'}), 503
        if not verify_signature(secret, payload, signature):
            print("[WEBHOOK] Rejecting webhook with missing or invalid signature")
            return jsonify({'error': 'Invalid signature'}), 401
    else:
        # Development mode, mirrors running without a signing secret
        print("[WEBHOOK] Accepting unsigned webhook (WEBHOOK_ALLOW_UNSIGNED)")

    return link_response(json_body())


@api_bp.route('/2fa/verify', methods=['POST'])
@bearer_required
def verify_two_factor():
    """Check a TOTP or backup code for the bearer's account"""
    data = json_body() or {}
    token = str(data.get('token') or '').strip() or None
    backup_code = str(data.get('backup_code') or '').strip() or None
    if not token and not backup_code:
        return jsonify({'error': 'Token or backup code required'}), 400

    user = g.api_user
    try:
        result = two_factor.verify_with_limiter(attempt_limiter(), user.id,
                                                token=token, backup_code=backup_code)
    except TooManyAttempts as e:
        return too_many_attempts(e)
    except NotEnrolled:
        return jsonify({'error': '2FA not enabled'}), 400
    except InvalidCodeFormat as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError as e:
        print(f"[API] Database error verifying 2FA for user {user.id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    if not result.success:
        return jsonify({'error': 'Invalid token'}), 400

    return jsonify({'success': True, 'method': result.value})
