"""
Feedback link lifecycle: issue, resolve and redeem single-use links.

A link is redeemable while ``is_used`` is false and ``expires_at`` lies in
the future. Redemption flips ``is_used`` with a conditional UPDATE and
inserts the submission in the same transaction, so two racing requests
cannot both record feedback for one link.
"""
import enum
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from flask import current_app, has_request_context, url_for
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db, FeedbackLink, FeedbackSubmission, FeedbackType
from services.settings import load_app_settings
from utils.helpers import utcnow, generate_link_token

# Token collisions are astronomically unlikely; retry a few times anyway
MAX_TOKEN_ATTEMPTS = 5


class LinkValidationError(ValueError):
    """Raised when link input is missing or malformed."""


class LinkStatus(enum.Enum):
    VALID = 'valid'
    NOT_FOUND = 'not_found'
    ALREADY_USED = 'already_used'
    EXPIRED = 'expired'


@dataclass(frozen=True)
class LinkResolution:
    status: LinkStatus
    link: Optional[FeedbackLink] = None

    @property
    def is_valid(self):
        return self.status is LinkStatus.VALID


@dataclass(frozen=True)
class RedemptionResult:
    status: LinkStatus
    link: Optional[FeedbackLink] = None
    submission: Optional[FeedbackSubmission] = None

    @property
    def success(self):
        return self.status is LinkStatus.VALID


def link_status(link, now=None):
    """Classify a link (or None) without touching the database"""
    if link is None:
        return LinkStatus.NOT_FOUND
    if link.is_used:
        return LinkStatus.ALREADY_USED
    if (now or utcnow()) >= link.expires_at:
        return LinkStatus.EXPIRED
    return LinkStatus.VALID


def parse_expires_hours(value):
    """Validate the lifetime of a new link in hours"""
    if value is None or value == '':
        return current_app.config['LINK_DEFAULT_EXPIRES_HOURS']
    if isinstance(value, bool):
        raise LinkValidationError('expires_hours must be a whole number of hours')
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            raise LinkValidationError('expires_hours must be a whole number of hours')
        value = int(value)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise LinkValidationError('expires_hours must be a whole number of hours')

    max_hours = current_app.config['LINK_MAX_EXPIRES_HOURS']
    if not 1 <= value <= max_hours:
        raise LinkValidationError(f'expires_hours must be between 1 and {max_hours}')
    return value


def _required(name, value):
    value = '' if value is None else str(value).strip()
    if not value:
        raise LinkValidationError(f'{name} is required')
    return value


def _optional(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def create_link(ticket_number, technician, ticket_title, customer_email=None,
                customer_name=None, expires_hours=None, default_feedback_type=None,
                now=None):
    """Create a feedback link and return it.

    Token generation and the insert happen in one transaction; the unique
    index on ``token`` decides collisions, in which case a fresh token is
    drawn. Store errors roll back and propagate to the caller.
    """
    ticket_number = _required('ticket_number', ticket_number)
    technician = _required('technician', technician)
    ticket_title = _required('ticket_title', ticket_title)
    expires_hours = parse_expires_hours(expires_hours)

    preselected = None
    if default_feedback_type not in (None, ''):
        preselected = FeedbackType.parse(default_feedback_type)
        if preselected is None:
            raise LinkValidationError('default_feedback_type must be one of bad, neutral, happy')

    created_at = now or utcnow()

    for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
        link = FeedbackLink(
            token=generate_link_token(),
            ticket_number=ticket_number,
            technician=technician,
            ticket_title=ticket_title,
            customer_email=_optional(customer_email),
            customer_name=_optional(customer_name),
            default_feedback_type=preselected.value if preselected else None,
            created_at=created_at,
            expires_at=created_at + timedelta(hours=expires_hours),
        )
        db.session.add(link)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            print(f"[LINKS] Token collision on attempt {attempt} for ticket {ticket_number}, retrying")
            continue
        except SQLAlchemyError:
            db.session.rollback()
            raise

        print(f"[LINKS] Created link {link.id} for ticket {ticket_number} "
              f"(technician: {technician}, expires in {expires_hours}h)")
        return link

    raise SQLAlchemyError('could not generate a unique feedback token')


def resolve_link(token, now=None):
    """Look up a token and say whether it can be redeemed. Read-only."""
    link = FeedbackLink.query.filter_by(token=token).first() if token else None
    return LinkResolution(link_status(link, now), link)


def redeem_link(token, feedback_type, comment=None, customer_ip=None, now=None):
    """Record feedback for a link and mark the link used, all or nothing."""
    rating = FeedbackType.parse(feedback_type)
    if rating is None:
        raise LinkValidationError('feedback_type must be one of bad, neutral, happy')

    resolution = resolve_link(token, now)
    if not resolution.is_valid:
        return RedemptionResult(resolution.status, resolution.link)

    link = resolution.link
    redeemed_at = now or utcnow()

    try:
        # Check-and-set in the store; whoever flips is_used first wins
        result = db.session.execute(
            update(FeedbackLink)
            .where(FeedbackLink.id == link.id,
                   FeedbackLink.is_used.is_(False),
                   FeedbackLink.expires_at > redeemed_at)
            .values(is_used=True, used_at=redeemed_at, updated_at=redeemed_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            lost = resolve_link(token, redeemed_at)
            print(f"[LINKS] Redemption of link {link.id} rejected: {lost.status.value}")
            return RedemptionResult(lost.status, lost.link)

        submission = FeedbackSubmission(
            feedback_link_id=link.id,
            feedback_type=rating.value,
            comment=_optional(comment),
            customer_ip=customer_ip,
            submitted_at=redeemed_at,
        )
        db.session.add(submission)
        db.session.flush()
        db.session.commit()
    except IntegrityError:
        # Unique feedback_link_id: another request got its submission in first
        db.session.rollback()
        print(f"[LINKS] Duplicate submission for link {link.id} rejected")
        return RedemptionResult(LinkStatus.ALREADY_USED, db.session.get(FeedbackLink, link.id))
    except SQLAlchemyError:
        db.session.rollback()
        raise

    db.session.refresh(link)
    print(f"[LINKS] Link {link.id} redeemed for ticket {link.ticket_number}: {rating.value}")
    return RedemptionResult(LinkStatus.VALID, link, submission)


def feedback_url(token, settings=None):
    """Public URL a customer opens to leave feedback.

    Pass already loaded AppSettings when building many URLs at once.
    """
    settings = settings or load_app_settings()
    base_url = settings.public_feedback_url or current_app.config.get('BASE_URL')
    if base_url:
        return f"{base_url.rstrip('/')}/feedback/{token}"
    if has_request_context():
        return url_for('feedback.feedback_form', token=token, _external=True)
    return f"/feedback/{token}"


def link_stats(now=None):
    """Aggregate numbers for the admin dashboard"""
    now = now or utcnow()

    total = FeedbackLink.query.count()
    used = FeedbackLink.query.filter_by(is_used=True).count()
    expired = FeedbackLink.query.filter(FeedbackLink.is_used.is_(False),
                                        FeedbackLink.expires_at <= now).count()

    by_type = {feedback_type.value: 0 for feedback_type in FeedbackType}
    rows = db.session.query(FeedbackSubmission.feedback_type,
                            func.count(FeedbackSubmission.id)) \
        .group_by(FeedbackSubmission.feedback_type).all()
    for feedback_type, count in rows:
        by_type[feedback_type] = count

    by_technician = {}
    rows = db.session.query(FeedbackLink.technician, FeedbackSubmission.feedback_type,
                            func.count(FeedbackSubmission.id)) \
        .join(FeedbackSubmission, FeedbackSubmission.feedback_link_id == FeedbackLink.id) \
        .group_by(FeedbackLink.technician, FeedbackSubmission.feedback_type).all()
    for technician, feedback_type, count in rows:
        counts = by_technician.setdefault(technician, {t.value: 0 for t in FeedbackType})
        counts[feedback_type] = count

    submissions = sum(by_type.values())
    satisfaction = round(100 * by_type['happy'] / submissions, 1) if submissions else 0

    return {
        'links_total': total,
        'links_used': used,
        'links_expired': expired,
        'links_open': total - used - expired,
        'submissions': submissions,
        'by_type': by_type,
        'by_technician': by_technician,
        'satisfaction': satisfaction,
    }
