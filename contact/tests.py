"""
Tests for the contact form submission pipeline and endpoint
"""
from unittest.mock import MagicMock, patch

import pytest
import requests
from rest_framework import status

from contact.challenges import NoChallenge, TurnstileChallenge
from contact.exceptions import (
    CaptchaFailed,
    CaptchaMissing,
    DispatchFailed,
    FieldsInvalid,
    FieldsMissing,
    FieldsTooLong,
    InvalidEmail,
    RateLimited,
    StoreUnavailable,
)
from contact.rate_limiting import now_ms
from contact.services import ContactSubmissionPipeline, SubmissionResult
from core.mailgun_service import MailgunError

SUBMIT_URL = '/api/contact/submit'
MAILGUN_URL = 'https://api.mailgun.net/v3/mg.example.com/messages'


def mailgun_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = 'OK' if status_code < 400 else 'Error'
    response.content = b'{}'
    response.json.return_value = body or {
        'id': '<20261019.1@mg.example.com>',
        'message': 'Queued. Thank you.',
    }
    return response


@pytest.fixture
def mailgun_post():
    with patch('core.mailgun_service.requests.post') as post:
        post.return_value = mailgun_response()
        yield post


@pytest.fixture
def valid_data():
    return {
        'name': 'A',
        'email': 'a@b.com',
        'message': 'hi',
    }


@pytest.fixture
def mailer():
    mailer = MagicMock()
    mailer.send_message.return_value = {'id': '<msg-1@mg.example.com>'}
    return mailer


@pytest.fixture
def pipeline(store, mailer):
    return ContactSubmissionPipeline(
        store=store,
        mailer=mailer,
        recipient='inbox@example.com',
        email_checker=lambda email: (True, None),
        challenge=NoChallenge(),
    )


class TestContactFormSubmission:
    """Test public contact form submission."""

    def test_submit_then_rate_limited(self, api_client, mailgun_post, identity_set, valid_data):
        """A second message from the same address inside the window is refused."""
        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {'success': True}

        members = identity_set.members()
        assert '9.9.9.9' in members
        assert len(members) == 2  # client + window marker
        mailgun_post.assert_called_once()

        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.data['success'] is False
        assert response.data['code'] == 'RATE_LIMITED'
        assert response.data['error'] == 'Please wait before sending another message'
        assert 0 < response.data['retry_after'] <= 7200
        assert response['Retry-After'] == str(response.data['retry_after'])
        mailgun_post.assert_called_once()

    def test_mailgun_request(self, api_client, mailgun_post, valid_data):
        """The message is relayed with the sender in the From header."""
        api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')

        args, kwargs = mailgun_post.call_args
        assert args[0] == MAILGUN_URL
        assert kwargs['auth'] == ('api', 'test-mailgun-key')
        assert kwargs['data'] == {
            'from': 'A <a@b.com>',
            'to': 'inbox@example.com',
            'subject': 'Contact form submission from A',
            'text': 'hi',
        }

    def test_other_clients_are_not_limited(self, api_client, mailgun_post, valid_data):
        first = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')
        second = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='8.8.8.8')

        assert first.status_code == status.HTTP_200_OK
        assert second.status_code == status.HTTP_200_OK
        assert mailgun_post.call_count == 2

    def test_forwarded_address_is_the_identity(self, api_client, mailgun_post, identity_set, valid_data):
        api_client.post(
            SUBMIT_URL, valid_data,
            HTTP_X_FORWARDED_FOR='203.0.113.9', REMOTE_ADDR='10.0.0.1'
        )

        members = identity_set.members()
        assert '203.0.113.9' in members
        assert '10.0.0.1' not in members

    def test_json_body(self, api_client, mailgun_post, valid_data):
        response = api_client.post(SUBMIT_URL, valid_data, format='json')

        assert response.status_code == status.HTTP_200_OK

    def test_json_body_that_is_not_an_object(self, api_client, mailgun_post):
        response = api_client.post(SUBMIT_URL, ['name', 'email'], format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'FIELDS_MISSING'

    def test_submit_missing_required_fields(self, api_client, mailgun_post, identity_set):
        """Missing fields are rejected, but the request still opens a window."""
        response = api_client.post(SUBMIT_URL, {'name': 'Test User'}, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['success'] is False
        assert response.data['code'] == 'FIELDS_MISSING'
        assert response.data['error'] == 'Form data missing'

        members = identity_set.members()
        assert len(members) == 1
        assert '9.9.9.9' not in members
        mailgun_post.assert_not_called()

    def test_blank_fields_count_as_present(self, api_client, mailgun_post):
        response = api_client.post(
            SUBMIT_URL, {'name': '', 'email': 'a@b.com', 'message': ''}
        )

        assert response.status_code == status.HTTP_200_OK

    def test_name_length_bounds(self, api_client, mailgun_post, valid_data):
        """100 characters pass the length check, 101 do not."""
        too_long = dict(valid_data, name='x' * 101)
        response = api_client.post(SUBMIT_URL, too_long, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'FIELDS_TOO_LONG'

        at_limit = dict(valid_data, name='x' * 100)
        response = api_client.post(SUBMIT_URL, at_limit, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_200_OK

    def test_message_length_bound(self, api_client, mailgun_post, valid_data):
        response = api_client.post(SUBMIT_URL, dict(valid_data, message='m' * 501))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'FIELDS_TOO_LONG'

    def test_email_length_bound(self, api_client, mailgun_post, valid_data):
        email = 'a' * 92 + '@b.com'  # 98 chars
        assert api_client.post(SUBMIT_URL, dict(valid_data, email=email)).status_code == 200

        email = 'a' * 95 + '@b.com'  # 101 chars
        response = api_client.post(SUBMIT_URL, dict(valid_data, email=email), REMOTE_ADDR='5.5.5.5')
        assert response.data['code'] == 'FIELDS_TOO_LONG'

    def test_nul_character_is_not_a_length_error(self, api_client, mailgun_post, identity_set, valid_data):
        response = api_client.post(
            SUBMIT_URL, dict(valid_data, message='hi\x00'), format='json', REMOTE_ADDR='9.9.9.9'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'FIELDS_INVALID'
        assert response.data['error'] == 'Form data contains invalid characters'
        assert '9.9.9.9' not in identity_set.members()
        mailgun_post.assert_not_called()

    @pytest.mark.parametrize('email', ['invalid-email', 'spam@mailinator.com'])
    def test_submit_invalid_email(self, api_client, mailgun_post, identity_set, valid_data, email):
        response = api_client.post(SUBMIT_URL, dict(valid_data, email=email), REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'INVALID_EMAIL'
        assert response.data['error'] == 'The provided email is invalid'
        assert '9.9.9.9' not in identity_set.members()

    def test_dispatch_failure_keeps_client_cooling_down(self, api_client, mailgun_post, identity_set, valid_data):
        mailgun_post.return_value = mailgun_response(status_code=401)

        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['code'] == 'DISPATCH_FAILED'
        assert response.data['error'] == 'Failed to send email, please try again'
        assert '9.9.9.9' in identity_set.members()

        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS

    def test_transient_dispatch_errors_are_retried(self, api_client, mailgun_post, valid_data):
        mailgun_post.side_effect = [
            mailgun_response(status_code=503),
            requests.exceptions.Timeout(),
            mailgun_response(),
        ]

        response = api_client.post(SUBMIT_URL, valid_data)

        assert response.status_code == status.HTTP_200_OK
        assert mailgun_post.call_count == 3

    def test_retries_exhausted(self, api_client, mailgun_post, valid_data):
        mailgun_post.return_value = mailgun_response(status_code=502)

        response = api_client.post(SUBMIT_URL, valid_data)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['code'] == 'DISPATCH_FAILED'
        assert mailgun_post.call_count == 3  # first attempt + MAILGUN_MAX_RETRIES

    def test_non_json_mailgun_reply_is_success(self, api_client, mailgun_post, identity_set, valid_data):
        reply = mailgun_response()
        reply.content = b'Queued. Thank you.'
        reply.json.side_effect = requests.exceptions.JSONDecodeError('Expecting value', 'Queued. Thank you.', 0)
        mailgun_post.return_value = reply

        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {'success': True}
        assert '9.9.9.9' in identity_set.members()
        mailgun_post.assert_called_once()

    def test_mailgun_not_configured(self, api_client, mailgun_post, settings, valid_data):
        settings.MAILGUN_TO = ''

        response = api_client.post(SUBMIT_URL, valid_data)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        mailgun_post.assert_not_called()

    def test_store_unavailable(self, api_client, mailgun_post, valid_data):
        with patch('contact.backends.MemoryIdentitySet.members', side_effect=StoreUnavailable()):
            response = api_client.post(SUBMIT_URL, valid_data)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['code'] == 'STORE_UNAVAILABLE'
        assert response.data['error'] == 'Something went wrong, please try again later'
        mailgun_post.assert_not_called()


class TestBatchExpiry:
    """The whole batch of clients is released once its window has passed."""

    def test_expired_batch_lets_client_back_in(self, api_client, mailgun_post, identity_set, valid_data):
        stale = str(now_ms() - 1000)
        identity_set.add(stale, '9.9.9.9')

        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_200_OK
        members = identity_set.members()
        assert stale not in members
        assert '9.9.9.9' in members
        assert len(members) == 2

    def test_invalid_submission_still_expires_batch(self, api_client, mailgun_post, identity_set):
        identity_set.add(str(now_ms() - 1000), '1.2.3.4', '5.6.7.8')

        response = api_client.post(SUBMIT_URL, {}, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        members = identity_set.members()
        assert '1.2.3.4' not in members
        assert '5.6.7.8' not in members
        assert len(members) == 1  # fresh window marker

    def test_live_batch_still_limits(self, api_client, mailgun_post, identity_set, valid_data):
        identity_set.add(str(now_ms() + 60_000), '1.2.3.4')

        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='1.2.3.4')

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert '1.2.3.4' in identity_set.members()
        mailgun_post.assert_not_called()

    def test_clients_without_window_are_limited_until_a_new_one_ends(
            self, api_client, mailgun_post, identity_set, valid_data):
        identity_set.add('1.2.3.4')

        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='1.2.3.4')

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.data['retry_after'] == 7200
        assert response['Retry-After'] == '7200'
        members = identity_set.members()
        assert '1.2.3.4' in members
        assert len(members) == 2


class TestCaptcha:
    """Turnstile is only required when CONTACT_CAPTCHA_ENABLED is on."""

    @pytest.fixture(autouse=True)
    def enable_captcha(self, settings):
        settings.CONTACT_CAPTCHA_ENABLED = True

    def test_missing_token(self, api_client, mailgun_post, identity_set, valid_data):
        response = api_client.post(SUBMIT_URL, valid_data, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'CAPTCHA_MISSING'
        assert '9.9.9.9' not in identity_set.members()

    def test_failed_token(self, api_client, mailgun_post, identity_set, valid_data):
        data = dict(valid_data, **{'cf-turnstile-response': 'bad-token'})

        with patch('core.turnstile_service.TurnstileService.verify_token', return_value=False) as verify:
            response = api_client.post(SUBMIT_URL, data, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'CAPTCHA_FAILED'
        verify.assert_called_once_with('bad-token', user_ip='9.9.9.9')
        assert '9.9.9.9' not in identity_set.members()
        mailgun_post.assert_not_called()

    def test_verified_token(self, api_client, mailgun_post, valid_data):
        data = dict(valid_data, captcha_token='good-token')

        with patch('core.turnstile_service.TurnstileService.verify_token', return_value=True):
            response = api_client.post(SUBMIT_URL, data, REMOTE_ADDR='9.9.9.9')

        assert response.status_code == status.HTTP_200_OK
        mailgun_post.assert_called_once()

    def test_disabled_captcha_ignores_token(self, api_client, mailgun_post, settings, valid_data):
        settings.CONTACT_CAPTCHA_ENABLED = False

        with patch('core.turnstile_service.TurnstileService.verify_token') as verify:
            response = api_client.post(SUBMIT_URL, valid_data)

        assert response.status_code == status.HTTP_200_OK
        verify.assert_not_called()


class TestSubmissionPipeline:
    """Pipeline ordering, exercised without HTTP."""

    def test_accepts_and_records(self, pipeline, store, mailer, valid_data):
        result = pipeline.submit(valid_data, identity='9.9.9.9')

        assert result == SubmissionResult(identity='9.9.9.9', message_id='<msg-1@mg.example.com>')
        assert store.is_cooling_down(store.snapshot(), '9.9.9.9')
        mailer.send_message.assert_called_once_with(
            sender='A <a@b.com>',
            to='inbox@example.com',
            subject='Contact form submission from A',
            text='hi',
        )

    def test_accepted_without_message_id(self, pipeline, mailer, valid_data):
        mailer.send_message.return_value = {}

        result = pipeline.submit(valid_data, identity='9.9.9.9')

        assert result == SubmissionResult(identity='9.9.9.9', message_id=None)

    def test_rate_limited_carries_retry_after(self, pipeline, clock, valid_data):
        pipeline.submit(valid_data, identity='9.9.9.9')
        clock.advance(600)

        with pytest.raises(RateLimited) as excinfo:
            pipeline.submit(valid_data, identity='9.9.9.9')

        assert excinfo.value.status_code == 429
        assert excinfo.value.retry_after == 7200 - 600

    def test_released_after_window(self, pipeline, clock, mailer, valid_data):
        pipeline.submit(valid_data, identity='9.9.9.9')
        clock.advance(7201)

        pipeline.submit(valid_data, identity='9.9.9.9')

        assert mailer.send_message.call_count == 2

    def test_field_checks_run_before_email_check(self, pipeline):
        checker = MagicMock(return_value=(False, 'nope'))
        pipeline.email_checker = checker

        with pytest.raises(FieldsMissing):
            pipeline.submit({'name': 'A'}, identity='9.9.9.9')
        with pytest.raises(FieldsTooLong):
            pipeline.submit({'name': 'A' * 101, 'email': 'a@b.com', 'message': 'hi'}, identity='9.9.9.9')

        checker.assert_not_called()

    def test_custom_max_lengths(self, store, mailer, valid_data):
        pipeline = ContactSubmissionPipeline(
            store=store, mailer=mailer, recipient='inbox@example.com',
            challenge=NoChallenge(), max_lengths={'name': 5, 'email': 100, 'message': 500},
        )

        with pytest.raises(FieldsTooLong):
            pipeline.submit(dict(valid_data, name='Abcdef'), identity='9.9.9.9')

    @pytest.mark.parametrize('field, value', [
        ('message', 'hi\x00'),
        ('name', 'A\ud800'),
    ])
    def test_prohibited_characters(self, pipeline, store, mailer, valid_data, field, value):
        with pytest.raises(FieldsInvalid) as excinfo:
            pipeline.submit(dict(valid_data, **{field: value}), identity='9.9.9.9')

        assert excinfo.value.status_code == 400
        assert excinfo.value.code == 'FIELDS_INVALID'
        assert not store.is_cooling_down(store.snapshot(), '9.9.9.9')
        mailer.send_message.assert_not_called()

    def test_length_wins_over_prohibited_characters(self, pipeline, valid_data):
        with pytest.raises(FieldsTooLong):
            pipeline.submit(dict(valid_data, message='m' * 501 + '\x00'), identity='9.9.9.9')

    def test_invalid_email(self, pipeline, store, valid_data):
        pipeline.email_checker = lambda email: (False, 'malformed address')

        with pytest.raises(InvalidEmail):
            pipeline.submit(valid_data, identity='9.9.9.9')

        assert not store.is_cooling_down(store.snapshot(), '9.9.9.9')

    def test_challenge_runs_before_cooldown_check(self, pipeline, store, valid_data):
        challenge = MagicMock(spec=TurnstileChallenge, required=True)
        challenge.verify.return_value = False
        pipeline.challenge = challenge
        store.prepare()
        store.track('9.9.9.9')

        with pytest.raises(CaptchaFailed):
            pipeline.submit(valid_data, identity='9.9.9.9', captcha_token='tok')

        challenge.verify.assert_called_once_with('tok', '9.9.9.9')

    def test_required_challenge_without_token(self, pipeline, valid_data):
        pipeline.challenge = MagicMock(spec=TurnstileChallenge, required=True)

        with pytest.raises(CaptchaMissing):
            pipeline.submit(valid_data, identity='9.9.9.9')

    @pytest.mark.parametrize('error', [
        MailgunError('Mailgun API error: 400', status_code=400),
        requests.exceptions.InvalidURL('bad url'),
    ])
    def test_dispatch_errors(self, pipeline, store, mailer, valid_data, error):
        mailer.send_message.side_effect = error

        with pytest.raises(DispatchFailed) as excinfo:
            pipeline.submit(valid_data, identity='9.9.9.9')

        assert excinfo.value.status_code == 500
        assert store.is_cooling_down(store.snapshot(), '9.9.9.9')

    def test_store_failure_on_track(self, pipeline, identity_set, mailer, valid_data):
        pipeline.store.prepare()
        with patch.object(identity_set, 'add', side_effect=StoreUnavailable()):
            with pytest.raises(StoreUnavailable):
                pipeline.submit(valid_data, identity='9.9.9.9')

        mailer.send_message.assert_not_called()
