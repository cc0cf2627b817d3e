"""
Mailgun Email Service

Relays contact form messages through the Mailgun messages API.

Documentation: https://documentation.mailgun.com/docs/mailgun/api-reference/
"""

import logging
import requests
from typing import Optional
from django.conf import settings

from core.retry import RetryableError, retry_on_failure

logger = logging.getLogger(__name__)


class MailgunError(Exception):
    """Raised when Mailgun rejects a message or is not configured."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MailgunService:
    """
    Service for sending plain-text email via Mailgun.

    Usage:
        service = MailgunService()
        service.send_message(
            sender='Jane <jane@example.com>',
            to='inbox@example.com',
            subject='Contact form submission from Jane',
            text='Hello!',
        )
    """

    DEFAULT_BASE_URL = 'https://api.mailgun.net'

    # Statuses worth another attempt; everything else is final
    RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(self, api_key=None, domain=None, base_url=None, timeout=None):
        self.api_key = api_key or getattr(settings, 'MAILGUN_API_KEY', '')
        self.domain = domain or getattr(settings, 'MAILGUN_DOMAIN', '')
        self.base_url = (
            base_url or getattr(settings, 'MAILGUN_BASE_URL', self.DEFAULT_BASE_URL)
        ).rstrip('/')
        self.timeout = timeout or getattr(settings, 'MAILGUN_TIMEOUT', 10)

        if not self.api_key or not self.domain:
            logger.warning("Mailgun credentials not configured. Email sending will fail.")

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/v3/{self.domain}/messages"

    def send_message(self, sender: str, to: str, subject: str, text: str) -> dict:
        """
        Send a message, retrying transient failures.

        Returns:
            dict: Mailgun response body (contains the queued message id)

        Raises:
            MailgunError: Configuration missing or message rejected
            RetryableError: Transient failure persisted past the last retry
        """
        if not self.api_key or not self.domain or not to:
            raise MailgunError("Mailgun environment variables not set")

        payload = {
            'from': sender,
            'to': to,
            'subject': subject,
            'text': text,
        }

        response = self._post(payload)

        if not response.ok:
            logger.error(
                f"Failed to send email: {response.status_code} {response.reason}"
            )
            raise MailgunError(
                f"Mailgun API error: {response.status_code}",
                status_code=response.status_code
            )

        # The message is queued once Mailgun answers 2xx, whatever the body
        try:
            data = response.json() if response.content else {}
        except ValueError:
            logger.warning(
                f"Mailgun accepted the message but returned a non-JSON body "
                f"(status {response.status_code})"
            )
            data = {}
        if not isinstance(data, dict):
            data = {}

        logger.info(f"Email queued by Mailgun. MessageId: {data.get('id')}")
        return data


    @retry_on_failure(
        max_retries=lambda: getattr(settings, 'MAILGUN_MAX_RETRIES', 3),
        base_delay=lambda: getattr(settings, 'MAILGUN_RETRY_BASE_DELAY', 0.5),
        max_delay=lambda: getattr(settings, 'MAILGUN_RETRY_MAX_DELAY', 10.0),
    )
    def _post(self, payload: dict) -> requests.Response:
        try:
            response = requests.post(
                self.messages_url,
                data=payload,
                auth=('api', self.api_key),
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            raise RetryableError("Mailgun request timeout")
        except requests.exceptions.ConnectionError as e:
            raise RetryableError(f"Mailgun connection error: {e}")

        if response.status_code in self.RETRY_STATUS_CODES:
            raise RetryableError(f"Mailgun API returned status {response.status_code}")

        return response
