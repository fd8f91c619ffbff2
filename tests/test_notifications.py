"""
Tests for feedback notification email and the outbound webhook.
"""
import json
from types import SimpleNamespace

import pytest
import requests

import services.webhook as webhook
import utils.notifications as notifications
from models import db, NotificationRecipient
from services.links import create_link, redeem_link
from services.settings import AppSettings, save_setting
from services.webhook import sign_payload, verify_signature


@pytest.fixture
def redeemed(app_ctx):
    link = create_link('T-9', 'Gina', 'Screen <flicker>', customer_name='Hal')
    result = redeem_link(link.token, 'neutral', comment='<b>ok</b>')
    return result.link, result.submission


def add_recipient(email, is_active=True):
    db.session.add(NotificationRecipient(name=email.split('@')[0], email=email, is_active=is_active))
    db.session.commit()


class FakeResponse:
    def __init__(self, status_code, text=''):
        self.status_code = status_code
        self.text = text


class TestTemplates:
    def test_placeholders_and_defaults(self, redeemed):
        link, submission = redeemed
        values = notifications.template_values(link, submission)
        assert values['customer_email'] == 'N/A'
        assert values['customer_name'] == 'Hal'

        text = notifications.render_template_string('{ticket_number}/{feedback_type}/{unknown}', values)
        assert text == 'T-9/neutral/{unknown}'

    def test_html_values_are_escaped(self, redeemed):
        values = notifications.template_values(*redeemed)
        html = notifications.render_template_string('<p>{comment}</p><style>p {color: red}</style>',
                                                    values, html=True)
        assert '&lt;b&gt;ok&lt;/b&gt;' in html
        assert '<style>p {color: red}</style>' in html

    def test_missing_comment(self, app_ctx):
        link = create_link('T-10', 'Gina', 'Title')
        result = redeem_link(link.token, 'happy')
        values = notifications.template_values(result.link, result.submission)
        assert values['comment'] == 'No comment provided'


class TestNotifyFeedbackReceived:
    def test_sends_to_active_recipients(self, app_ctx, redeemed):
        add_recipient('one@example.com')
        add_recipient('two@example.com')
        add_recipient('off@example.com', is_active=False)

        with app_ctx.extensions['mail'].record_messages() as outbox:
            sent = notifications.notify_feedback_received(*redeemed)

        assert sent == 2
        assert sorted(m.recipients[0].split('<')[1] for m in outbox) == \
            ['one@example.com>', 'two@example.com>']
        assert outbox[0].sender == 'noreply@example.com'

    def test_from_address_setting(self, app_ctx, redeemed):
        add_recipient('one@example.com')
        save_setting('api', 'from_email', 'help@example.com')
        save_setting('api', 'from_name', 'Helpdesk')

        with app_ctx.extensions['mail'].record_messages() as outbox:
            notifications.notify_feedback_received(*redeemed)

        assert outbox[0].sender == 'Helpdesk <help@example.com>'

    def test_disabled(self, app_ctx, redeemed):
        add_recipient('one@example.com')
        save_setting('api', 'enabled', 'false')
        assert notifications.notify_feedback_received(*redeemed) == 0

    def test_no_recipients(self, app_ctx, redeemed):
        assert notifications.notify_feedback_received(*redeemed) == 0

    def test_mail_not_configured(self, app_ctx, redeemed):
        add_recipient('one@example.com')
        app_ctx.config['MAIL_SERVER'] = None
        assert notifications.notify_feedback_received(*redeemed) == 0


class TestOutboundWebhook:
    def settings(self, **kwargs):
        kwargs.setdefault('outbound_webhook_enabled', True)
        kwargs.setdefault('outbound_webhook_url', 'https://hooks.example.com/feedback')
        return AppSettings(**kwargs)

    def test_posts_signed_event(self, redeemed, monkeypatch):
        calls = []

        def fake_post(url, data=None, headers=None, timeout=None):
            calls.append(SimpleNamespace(url=url, data=data, headers=headers, timeout=timeout))
            return FakeResponse(204)

        monkeypatch.setattr(requests, 'post', fake_post)

        assert webhook.post_feedback_webhook(*redeemed, self.settings()) is True

        call = calls[0]
        event = json.loads(call.data)
        assert call.url == 'https://hooks.example.com/feedback'
        assert event['event'] == 'feedback.submitted'
        assert event['data']['ticket_number'] == 'T-9'
        assert event['data']['feedback_type'] == 'neutral'
        assert verify_signature('whsec-test', call.data, call.headers['X-Webhook-Signature'])
        assert call.timeout == 10

    def test_disabled_does_not_post(self, redeemed, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError('should not post')

        monkeypatch.setattr(requests, 'post', fail)
        assert webhook.post_feedback_webhook(*redeemed, AppSettings()) is False
        assert webhook.post_feedback_webhook(*redeemed, self.settings(outbound_webhook_url=None)) is False

    def test_http_error(self, redeemed, monkeypatch):
        monkeypatch.setattr(requests, 'post', lambda *a, **kw: FakeResponse(500, 'boom'))
        assert webhook.post_feedback_webhook(*redeemed, self.settings()) is False

    def test_connection_error(self, redeemed, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.ConnectionError('refused')

        monkeypatch.setattr(requests, 'post', refuse)
        assert webhook.post_feedback_webhook(*redeemed, self.settings()) is False


class TestDispatch:
    def test_never_raises(self, app_ctx, redeemed, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError('down')

        monkeypatch.setattr(notifications, 'notify_feedback_received', broken)
        monkeypatch.setattr(notifications, 'post_feedback_webhook', broken)

        notifications.dispatch_feedback_notifications(*redeemed)

    def test_uses_stored_webhook_settings(self, app_ctx, redeemed, monkeypatch):
        save_setting('app', 'outbound_webhook_enabled', 'true')
        save_setting('app', 'outbound_webhook_url', 'https://hooks.example.com/x')
        urls = []
        monkeypatch.setattr(requests, 'post',
                            lambda url, **kw: urls.append(url) or FakeResponse(200))

        notifications.dispatch_feedback_notifications(*redeemed)

        assert urls == ['https://hooks.example.com/x']


class TestSignatures:
    def test_round_trip(self):
        body = b'{"a": 1}'
        assert verify_signature('s3cret', body, sign_payload('s3cret', body))

    def test_rejects_tampering_and_missing_values(self):
        signature = sign_payload('s3cret', b'{"a": 1}')
        assert not verify_signature('s3cret', b'{"a": 2}', signature)
        assert not verify_signature('s3cret', b'{"a": 1}', None)
        assert not verify_signature(None, b'{"a": 1}', signature)
