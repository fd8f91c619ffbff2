import hashlib
import hmac
import json
import requests
from flask import current_app
from utils.helpers import utcnow

WEBHOOK_TIMEOUT = 10
SIGNATURE_HEADER = 'X-Webhook-Signature'


def sign_payload(secret, body):
    """HMAC-SHA256 signature in the form ``sha256=<hex>``"""
    if isinstance(body, str):
        body = body.encode('utf-8')
    digest = hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret, body, signature):
    """Constant-time check of a ``sha256=<hex>`` signature header"""
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature.strip())


def feedback_event(link, submission):
    return {
        'event': 'feedback.submitted',
        'sent_at': utcnow().isoformat() + 'Z',
        'data': {
            'ticket_number': link.ticket_number,
            'ticket_title': link.ticket_title,
            'technician': link.technician,
            'customer_name': link.customer_name,
            'customer_email': link.customer_email,
            'feedback_type': submission.feedback_type,
            'comment': submission.comment,
            'submitted_at': submission.submitted_at.isoformat() + 'Z',
        },
    }


def post_feedback_webhook(link, submission, settings):
    """POST a feedback event to the configured outbound webhook"""
    if not settings.outbound_webhook_enabled or not settings.outbound_webhook_url:
        return False

    body = json.dumps(feedback_event(link, submission))
    headers = {'Content-Type': 'application/json'}
    secret = current_app.config.get('WEBHOOK_SECRET')
    if secret:
        headers[SIGNATURE_HEADER] = sign_payload(secret, body)

    try:
        print(f"[WEBHOOK] Posting feedback for ticket {link.ticket_number} to {settings.outbound_webhook_url}")
        response = requests.post(
            settings.outbound_webhook_url,
            data=body,
            headers=headers,
            timeout=WEBHOOK_TIMEOUT
        )

        if 200 <= response.status_code < 300:
            print(f"[WEBHOOK] Delivered feedback for ticket {link.ticket_number}")
            return True

        print(f"[WEBHOOK] Failed to deliver. Status: {response.status_code}")
        print(f"[WEBHOOK] Response: {response.text[:500]}")
        return False

    except requests.RequestException as e:
        print(f"[WEBHOOK] Error posting webhook: {str(e)}")
        return False
