"""
Typed views over the key/value settings tables.

Rows in ``email_setting`` and ``app_setting`` are plain strings. They are
turned into ``EmailSettings`` / ``AppSettings`` here so the rest of the
application reads named attributes with defaults instead of string keys.
"""
from dataclasses import dataclass, fields
from typing import Optional

from models import db, EmailSetting, AppSetting

DEFAULT_NOTIFICATION_SUBJECT = 'New Feedback Received - Ticket #{ticket_number}'

DEFAULT_NOTIFICATION_TEXT = """A customer has submitted feedback.

Feedback: {feedback_type}
Ticket Number: {ticket_number}
Ticket Title: {ticket_title}
Technician: {technician}
Customer Name: {customer_name}
Customer Email: {customer_email}

Customer Comment:
{comment}
"""

DEFAULT_NOTIFICATION_HTML = """
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2 style="color: #667eea;">New Feedback Received</h2>
    <p><strong style="text-transform: uppercase;">{feedback_type}</strong> feedback</p>
    <div style="background-color: #f8f9fa; border-left: 4px solid #667eea; padding: 15px; margin: 20px 0;">
        <p style="margin: 5px 0;"><strong>Ticket Number:</strong> {ticket_number}</p>
        <p style="margin: 5px 0;"><strong>Ticket Title:</strong> {ticket_title}</p>
        <p style="margin: 5px 0;"><strong>Technician:</strong> {technician}</p>
        <p style="margin: 5px 0;"><strong>Customer Name:</strong> {customer_name}</p>
        <p style="margin: 5px 0;"><strong>Customer Email:</strong> {customer_email}</p>
    </div>
    <h3 style="color: #667eea;">Customer Comment:</h3>
    <p>{comment}</p>
</body>
</html>
"""


@dataclass
class EmailSettings:
    notifications_enabled: bool = True
    from_email: Optional[str] = None
    from_name: str = 'Feedback Portal'
    notification_subject: str = DEFAULT_NOTIFICATION_SUBJECT
    notification_html: str = DEFAULT_NOTIFICATION_HTML
    notification_text: str = DEFAULT_NOTIFICATION_TEXT


@dataclass
class AppSettings:
    public_feedback_url: Optional[str] = None
    default_expires_hours: int = 72
    outbound_webhook_url: Optional[str] = None
    outbound_webhook_enabled: bool = False
    company_name: str = 'Feedback Portal'
    redirect_url: Optional[str] = None


# Where each EmailSettings field lives in the email_setting table
EMAIL_SETTING_KEYS = {
    ('api', 'enabled'): 'notifications_enabled',
    ('api', 'from_email'): 'from_email',
    ('api', 'from_name'): 'from_name',
    ('template', 'notification_subject'): 'notification_subject',
    ('template', 'notification_html'): 'notification_html',
    ('template', 'notification_text'): 'notification_text',
}

TRUE_VALUES = {'1', 'true', 'yes', 'on'}
FALSE_VALUES = {'0', 'false', 'no', 'off'}


def _coerce(settings_cls, name, raw):
    """Convert a stored string to the type of ``settings_cls.<name>``.

    Raises ValueError when the string does not fit the field.
    """
    default = next(f.default for f in fields(settings_cls) if f.name == name)
    if isinstance(default, bool):
        value = raw.strip().lower()
        if value in TRUE_VALUES:
            return True
        if value in FALSE_VALUES:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if isinstance(default, int):
        return int(raw)
    return raw


def _build(settings_cls, values, source):
    settings = settings_cls()
    for name, raw in values.items():
        if raw is None or raw == '':
            continue
        try:
            setattr(settings, name, _coerce(settings_cls, name, raw))
        except ValueError as e:
            print(f"[SETTINGS] Ignoring bad value for {source}.{name}: {e}")
    return settings


def parse_email_settings(rows):
    """Build EmailSettings from (setting_type, setting_key, setting_value) tuples"""
    values = {}
    for setting_type, setting_key, setting_value in rows:
        name = EMAIL_SETTING_KEYS.get((setting_type, setting_key))
        if name is None:
            print(f"[SETTINGS] Unknown email setting {setting_type}.{setting_key} - ignored")
            continue
        values[name] = setting_value
    return _build(EmailSettings, values, 'email')


def parse_app_settings(rows):
    """Build AppSettings from (setting_key, setting_value) tuples"""
    known = {f.name for f in fields(AppSettings)}
    values = {}
    for setting_key, setting_value in rows:
        if setting_key not in known:
            print(f"[SETTINGS] Unknown app setting {setting_key} - ignored")
            continue
        values[setting_key] = setting_value
    return _build(AppSettings, values, 'app')


def load_email_settings():
    rows = db.session.query(EmailSetting.setting_type, EmailSetting.setting_key,
                            EmailSetting.setting_value).all()
    return parse_email_settings(rows)


def load_app_settings():
    rows = db.session.query(AppSetting.setting_key, AppSetting.setting_value).all()
    return parse_app_settings(rows)


def save_setting(scope, key, value):
    """Create or update one settings row.

    ``scope`` is ``app`` or an email setting type (``api`` / ``template``).
    Unknown keys raise KeyError so typos don't silently land in the table.
    """
    if scope == 'app':
        if key not in {f.name for f in fields(AppSettings)}:
            raise KeyError(key)
        row = AppSetting.query.filter_by(setting_key=key).first()
        if row is None:
            row = AppSetting(setting_key=key)
            db.session.add(row)
    else:
        if (scope, key) not in EMAIL_SETTING_KEYS:
            raise KeyError(f'{scope}.{key}')
        row = EmailSetting.query.filter_by(setting_type=scope, setting_key=key).first()
        if row is None:
            row = EmailSetting(setting_type=scope, setting_key=key)
            db.session.add(row)

    row.setting_value = value
    db.session.commit()
    return row
