import enum
from datetime import datetime
from .database import db


class FeedbackType(str, enum.Enum):
    """Three-state satisfaction rating a customer can leave."""
    BAD = 'bad'
    NEUTRAL = 'neutral'
    HAPPY = 'happy'

    @classmethod
    def parse(cls, value):
        """Return the member for ``value`` or None if it is not a valid rating."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class FeedbackLink(db.Model):
    """Database model for single-use, expiring feedback links tied to a support ticket."""
    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), nullable=False, unique=True, index=True)

    # Ticket details
    ticket_number = db.Column(db.String(100), nullable=False)
    technician = db.Column(db.String(100), nullable=False)
    ticket_title = db.Column(db.Text, nullable=False)
    customer_email = db.Column(db.String(255))
    customer_name = db.Column(db.String(255))
    default_feedback_type = db.Column(db.String(10))  # bad, neutral, happy

    # Lifecycle
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_used = db.Column(db.Boolean, default=False, nullable=False)
    used_at = db.Column(db.DateTime)

    # Relationships
    submission = db.relationship('FeedbackSubmission', backref='link', uselist=False)

    def __repr__(self):
        return f'<FeedbackLink ticket={self.ticket_number} used={self.is_used}>'


class FeedbackSubmission(db.Model):
    """Database model for the rating a customer left through a feedback link."""
    id = db.Column(db.Integer, primary_key=True)
    # Unique: a link can only ever carry one submission
    feedback_link_id = db.Column(db.Integer, db.ForeignKey('feedback_link.id'),
                                 nullable=False, unique=True)
    feedback_type = db.Column(db.String(10), nullable=False)  # bad, neutral, happy
    comment = db.Column(db.Text)
    customer_ip = db.Column(db.String(64))
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
