from flask import Blueprint, render_template, request
from sqlalchemy.exc import SQLAlchemyError
from models import FeedbackType
from services.links import LinkStatus, LinkValidationError, resolve_link, redeem_link
from services.settings import load_app_settings
from utils import get_client_ip, t
from utils.notifications import dispatch_feedback_notifications

feedback_bp = Blueprint('feedback', __name__)

# Terminal page copy and status code per rejection reason
UNAVAILABLE = {
    LinkStatus.NOT_FOUND: ('link_not_found_title', 'link_not_found_body', 404),
    LinkStatus.ALREADY_USED: ('link_used_title', 'link_used_body', 410),
    LinkStatus.EXPIRED: ('link_expired_title', 'link_expired_body', 410),
}


def render_unavailable(status, link=None):
    title_key, body_key, code = UNAVAILABLE[status]
    return render_template('feedback_unavailable.html',
                           reason=status.value,
                           title=t(title_key),
                           message=t(body_key),
                           link=link), code


def render_form(link, selected=None, comment='', error=None, code=200):
    return render_template('feedback_form.html',
                           link=link,
                           feedback_types=[ft.value for ft in FeedbackType],
                           selected=selected,
                           comment=comment,
                           error=error), code


@feedback_bp.route('/feedback/<token>', methods=['GET'])
def feedback_form(token):
    """Customer feedback form for a feedback link"""
    resolution = resolve_link(token)
    if not resolution.is_valid:
        return render_unavailable(resolution.status, resolution.link)

    link = resolution.link

    # One-click flows preselect the rating with ?type=happy
    preselected = FeedbackType.parse(request.args.get('type') or link.default_feedback_type or '')
    return render_form(link, selected=preselected.value if preselected else None)


@feedback_bp.route('/feedback/<token>', methods=['POST'])
def submit_feedback(token):
    """Redeem a feedback link with the customer's rating"""
    feedback_type = request.form.get('feedback_type', '')
    comment = request.form.get('comment', '').strip()

    try:
        result = redeem_link(token, feedback_type, comment=comment,
                             customer_ip=get_client_ip(request))
    except LinkValidationError:
        resolution = resolve_link(token)
        if not resolution.is_valid:
            return render_unavailable(resolution.status, resolution.link)
        return render_form(resolution.link, comment=comment,
                           error=t('feedback_choose_rating'), code=400)
    except SQLAlchemyError as e:
        print(f"[FEEDBACK] Error saving feedback for token: {e}")
        return render_template('feedback_error.html',
                               title=t('feedback_error_title'),
                               message=t('feedback_error_body')), 500

    if not result.success:
        return render_unavailable(result.status, result.link)

    # Feedback is stored; notification problems stay in the logs
    dispatch_feedback_notifications(result.link, result.submission)

    return render_template('feedback_thanks.html',
                           link=result.link,
                           submission=result.submission,
                           redirect_url=load_app_settings().redirect_url)
