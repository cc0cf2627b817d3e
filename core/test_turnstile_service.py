"""
Tests for Cloudflare Turnstile verification.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from core.turnstile_service import TurnstileService, TurnstileVerificationError


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = str(body)
    response.json.return_value = body if body is not None else {'success': True}
    return response


@pytest.fixture
def service():
    return TurnstileService(secret_key='secret-123')


@pytest.fixture
def post():
    with patch('core.turnstile_service.requests.post') as post:
        post.return_value = make_response()
        yield post


class TestTurnstileService:

    def test_valid_token(self, service, post):
        assert service.verify_token('token-abc', user_ip='9.9.9.9') is True

        post.assert_called_once_with(
            TurnstileService.VERIFY_URL,
            json={'response': 'token-abc', 'secret': 'secret-123', 'remoteip': '9.9.9.9'},
            timeout=10,
        )

    def test_remoteip_omitted_without_ip(self, service, post):
        service.verify_token('token-abc')

        assert 'remoteip' not in post.call_args.kwargs['json']

    def test_rejected_token(self, service, post):
        post.return_value = make_response(body={'success': False, 'error-codes': ['invalid-input-response']})

        assert service.verify_token('token-abc', user_ip='9.9.9.9') is False

    def test_success_must_be_true(self, service, post):
        post.return_value = make_response(body={'success': 'yes'})

        assert service.verify_token('token-abc') is False

    def test_non_200_status(self, service, post):
        post.return_value = make_response(status_code=500, body={'success': True})

        assert service.verify_token('token-abc') is False

    @pytest.mark.parametrize('error', [
        requests.exceptions.Timeout(),
        requests.exceptions.ConnectionError('refused'),
    ])
    def test_network_errors_fail_closed(self, service, post, error):
        post.side_effect = error

        assert service.verify_token('token-abc') is False

    def test_empty_token_skips_request(self, service, post):
        assert service.verify_token('') is False

        post.assert_not_called()

    def test_missing_secret(self, post, settings):
        settings.TURNSTILE_SECRET_KEY = ''

        assert TurnstileService().verify_token('token-abc') is False
        post.assert_not_called()

    def test_malformed_body(self, service, post):
        post.return_value.json.side_effect = ValueError('not json')

        with pytest.raises(TurnstileVerificationError):
            service.verify_token('token-abc')

    def test_error_messages(self, service):
        message = service.get_error_message(['timeout-or-duplicate', 'bogus'])

        assert message == 'CAPTCHA expired or already used; Unknown error: bogus'
