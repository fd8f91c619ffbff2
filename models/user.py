from datetime import datetime
from .database import db

class User(db.Model):
    """Database model for staff accounts that sign in to the admin area."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    username = db.Column(db.String(50), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='user')  # admin, user
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationship - one credential per user, removed with the user
    two_factor = db.relationship('TwoFactorCredential', backref='user', uselist=False,
                                 cascade='all, delete-orphan')

    @property
    def is_admin(self):
        return self.role == 'admin'
