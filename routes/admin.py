from flask import Blueprint, render_template, request, redirect, url_for, flash
from sqlalchemy.exc import SQLAlchemyError
from models import FeedbackLink, FeedbackType
from services import login_required, two_factor_required
from services.auth import current_user
from services.links import LinkValidationError, create_link, feedback_url, link_status, link_stats
from services.settings import load_app_settings
from utils import t, utcnow

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')

RECENT_LINKS = 50


@admin_bp.route('/')
@login_required
@two_factor_required
def dashboard():
    """Admin dashboard with link and feedback statistics"""
    return render_template('dashboard.html',
                           user=current_user(),
                           stats=link_stats(),
                           settings=load_app_settings())


@admin_bp.route('/links', methods=['GET', 'POST'])
@login_required
@two_factor_required
def links():
    """List recent feedback links and issue new ones by hand"""
    settings = load_app_settings()
    created = None

    if request.method == 'POST':
        try:
            created = create_link(
                request.form.get('ticket_number'),
                request.form.get('technician'),
                request.form.get('ticket_title'),
                customer_email=request.form.get('customer_email'),
                customer_name=request.form.get('customer_name'),
                expires_hours=request.form.get('expires_hours'),
                default_feedback_type=request.form.get('default_feedback_type'),
            )
            flash(t('link_created', created.ticket_number))
        except LinkValidationError as e:
            flash(str(e), 'error')
        except SQLAlchemyError as e:
            print(f"[ADMIN] Error creating feedback link: {e}")
            flash(t('feedback_error_body'), 'error')

    now = utcnow()
    recent = FeedbackLink.query.order_by(FeedbackLink.created_at.desc()).limit(RECENT_LINKS).all()
    rows = [{
        'link': link,
        'status': link_status(link, now).value,
        'url': feedback_url(link.token, settings),
    } for link in recent]

    return render_template('links.html',
                           rows=rows,
                           created=created,
                           created_url=feedback_url(created.token, settings) if created else None,
                           feedback_types=[ft.value for ft in FeedbackType],
                           default_expires_hours=settings.default_expires_hours)
