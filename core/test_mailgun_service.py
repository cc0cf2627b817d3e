"""
Tests for the Mailgun email service and retry helper.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from core.mailgun_service import MailgunError, MailgunService
from core.retry import RetryableError, retry_on_failure


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = 'OK' if status_code < 400 else 'Bad Request'
    response.content = b'{}'
    response.json.return_value = body or {'id': '<1@mg.example.com>', 'message': 'Queued. Thank you.'}
    return response


@pytest.fixture
def service():
    return MailgunService(api_key='key-123', domain='mg.example.com')


@pytest.fixture
def post():
    with patch('core.mailgun_service.requests.post') as post:
        post.return_value = make_response()
        yield post


def send(service):
    return service.send_message(
        sender='Jane <jane@example.com>',
        to='inbox@example.com',
        subject='Contact form submission from Jane',
        text='Hello',
    )


class TestMailgunService:

    def test_send_message(self, service, post):
        data = send(service)

        assert data['id'] == '<1@mg.example.com>'
        post.assert_called_once_with(
            'https://api.mailgun.net/v3/mg.example.com/messages',
            data={
                'from': 'Jane <jane@example.com>',
                'to': 'inbox@example.com',
                'subject': 'Contact form submission from Jane',
                'text': 'Hello',
            },
            auth=('api', 'key-123'),
            timeout=10,
        )

    def test_custom_base_url(self, post):
        service = MailgunService(api_key='key-123', domain='mg.example.com', base_url='https://api.eu.mailgun.net/')

        send(service)

        assert post.call_args[0][0] == 'https://api.eu.mailgun.net/v3/mg.example.com/messages'

    def test_accepted_with_non_json_body(self, service, post):
        response = make_response()
        response.content = b'Queued. Thank you.'
        response.json.side_effect = requests.exceptions.JSONDecodeError('Expecting value', 'Queued. Thank you.', 0)
        post.return_value = response

        assert send(service) == {}
        post.assert_called_once()

    @pytest.mark.parametrize('content, body', [(b'', None), (b'[]', [])])
    def test_accepted_without_message_id(self, service, post, content, body):
        response = make_response()
        response.content = content
        response.json.return_value = body
        post.return_value = response

        assert send(service) == {}

    def test_client_error_is_not_retried(self, service, post):
        post.return_value = make_response(status_code=400)

        with pytest.raises(MailgunError) as excinfo:
            send(service)

        assert excinfo.value.status_code == 400
        post.assert_called_once()

    @pytest.mark.parametrize('status_code', [429, 500, 502, 503, 504])
    def test_server_errors_are_retried(self, service, post, status_code):
        post.side_effect = [make_response(status_code=status_code), make_response()]

        send(service)

        assert post.call_count == 2

    def test_connection_errors_are_retried(self, service, post):
        post.side_effect = [requests.exceptions.ConnectionError('reset'), make_response()]

        send(service)

        assert post.call_count == 2

    def test_gives_up_after_max_retries(self, service, post, settings):
        settings.MAILGUN_MAX_RETRIES = 1
        post.side_effect = requests.exceptions.Timeout()

        with pytest.raises(RetryableError):
            send(service)

        assert post.call_count == 2

    def test_missing_configuration(self, post):
        service = MailgunService(api_key='key-123', domain='mg.example.com')
        service.api_key = ''

        with pytest.raises(MailgunError):
            send(service)

        post.assert_not_called()


class TestRetryOnFailure:

    def test_backoff_delays(self):
        calls = []

        @retry_on_failure(max_retries=3, base_delay=1, max_delay=3)
        def flaky():
            calls.append(1)
            if len(calls) < 4:
                raise RetryableError('try again')
            return 'done'

        with patch('core.retry.time.sleep') as sleep:
            assert flaky() == 'done'

        assert [c.args[0] for c in sleep.call_args_list] == [1, 2, 3]

    def test_other_exceptions_propagate(self):
        @retry_on_failure(max_retries=3, base_delay=0)
        def broken():
            raise KeyError('nope')

        with pytest.raises(KeyError):
            broken()

    def test_callable_settings_are_resolved_per_call(self):
        attempts = {'limit': 0}
        calls = []

        @retry_on_failure(max_retries=lambda: attempts['limit'], base_delay=0)
        def always_fails():
            calls.append(1)
            raise RetryableError('down')

        with pytest.raises(RetryableError):
            always_fails()
        assert len(calls) == 1

        attempts['limit'] = 2
        with pytest.raises(RetryableError):
            always_fails()
        assert len(calls) == 4
