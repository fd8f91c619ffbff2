"""
Email notification utilities for feedback recipients
"""
from email.utils import formataddr
from markupsafe import escape
from flask import current_app
from flask_mail import Message
from models import NotificationRecipient
from services.settings import load_email_settings, load_app_settings
from services.webhook import post_feedback_webhook

PLACEHOLDERS = ('ticket_number', 'ticket_title', 'technician', 'customer_name',
                'customer_email', 'feedback_type', 'comment')


def template_values(link, submission):
    """Values substituted into the notification templates"""
    return {
        'ticket_number': link.ticket_number,
        'ticket_title': link.ticket_title,
        'technician': link.technician,
        'customer_name': link.customer_name or 'N/A',
        'customer_email': link.customer_email or 'N/A',
        'feedback_type': submission.feedback_type,
        'comment': submission.comment or 'No comment provided',
    }


def render_template_string(template, values, html=False):
    """Replace {placeholder} markers; other braces (CSS, etc.) are left alone"""
    rendered = template
    for key in PLACEHOLDERS:
        value = values.get(key, '')
        rendered = rendered.replace('{' + key + '}', str(escape(value)) if html else str(value))
    return rendered


def notify_feedback_received(link, submission):
    """
    Send an email about a new feedback submission to every active recipient.

    Args:
        link: The FeedbackLink that was redeemed
        submission: The FeedbackSubmission that was recorded

    Returns:
        int: Number of emails sent successfully
    """
    settings = load_email_settings()
    if not settings.notifications_enabled:
        print("[NOTIFICATION] Feedback notifications are disabled")
        return 0

    recipients = NotificationRecipient.query.filter_by(is_active=True).all()
    if not recipients:
        print("[NOTIFICATION] No active notification recipients configured")
        return 0

    # Check if mail is configured
    if not current_app.config.get('MAIL_SERVER'):
        print("[NOTIFICATION] Email not configured - skipping notification")
        print(f"[NOTIFICATION] Would notify {len(recipients)} recipients about ticket {link.ticket_number}")
        return 0

    values = template_values(link, submission)
    subject = render_template_string(settings.notification_subject, values)
    body = render_template_string(settings.notification_text, values)
    html = render_template_string(settings.notification_html, values, html=True)

    sender = current_app.config.get('MAIL_DEFAULT_SENDER')
    if settings.from_email:
        sender = formataddr((settings.from_name, settings.from_email))

    mail = current_app.extensions['mail']
    sent = 0
    for recipient in recipients:
        try:
            msg = Message(
                subject=subject,
                recipients=[formataddr((recipient.name, recipient.email))],
                sender=sender,
                body=body,
                html=html,
            )
            mail.send(msg)
            sent += 1
        except Exception as e:
            print(f"[NOTIFICATION] Failed to send notification to {recipient.email}: {e}")

    print(f"[NOTIFICATION] Notification emails sent: {sent} successful, "
          f"{len(recipients) - sent} failed (ticket {link.ticket_number})")
    return sent


def dispatch_feedback_notifications(link, submission):
    """Best-effort fan-out after a redemption; never raises"""
    try:
        notify_feedback_received(link, submission)
    except Exception as e:
        print(f"[NOTIFICATION] Email notification failed for ticket {link.ticket_number}: {e}")

    try:
        post_feedback_webhook(link, submission, load_app_settings())
    except Exception as e:
        print(f"[WEBHOOK] Outbound webhook failed for ticket {link.ticket_number}: {e}")
