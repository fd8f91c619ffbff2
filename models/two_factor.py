from datetime import datetime
from .database import db

class TwoFactorCredential(db.Model):
    """TOTP seed and hashed backup codes for a user who completed 2FA enrollment."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'),
                        nullable=False, unique=True)
    secret = db.Column(db.String(64), nullable=False)  # base32 TOTP seed
    backup_codes = db.Column(db.JSON, nullable=False, default=list)  # sha256 digests
    is_enabled = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_used_at = db.Column(db.DateTime)
    last_used_step = db.Column(db.Integer)  # TOTP time step of the last accepted code

    # Optimistic lock so two requests cannot consume the same backup code
    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f'<TwoFactorCredential user_id={self.user_id} enabled={self.is_enabled}>'
