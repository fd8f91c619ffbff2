from datetime import datetime
from .database import db

class EmailSetting(db.Model):
    """Key/value row for email configuration (sender, notification templates)."""
    id = db.Column(db.Integer, primary_key=True)
    setting_type = db.Column(db.String(50), nullable=False)  # api, template
    setting_key = db.Column(db.String(100), nullable=False)
    setting_value = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('setting_type', 'setting_key'),)


class AppSetting(db.Model):
    """Key/value row for general application configuration."""
    id = db.Column(db.Integer, primary_key=True)
    setting_key = db.Column(db.String(100), nullable=False, unique=True)
    setting_value = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
