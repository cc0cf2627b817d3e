"""
Cloudflare Turnstile CAPTCHA Verification Service

Verifies Turnstile tokens from frontend against Cloudflare API.

Documentation: https://developers.cloudflare.com/turnstile/
"""

import requests
import logging
from django.conf import settings

logger = logging.getLogger(__name__)


class TurnstileVerificationError(Exception):
    """Raised when Turnstile verification fails unexpectedly."""
    pass


class TurnstileService:
    """
    Service for verifying Cloudflare Turnstile CAPTCHA tokens.

    Usage:
        service = TurnstileService()
        is_valid = service.verify_token(token, user_ip='192.168.1.1')
    """

    VERIFY_URL = 'https://challenges.cloudflare.com/turnstile/v0/siteverify'

    def __init__(self, secret_key=None, verify_url=None, timeout=None):
        self.secret_key = secret_key or getattr(settings, 'TURNSTILE_SECRET_KEY', None)
        self.verify_url = verify_url or getattr(settings, 'TURNSTILE_VERIFY_URL', self.VERIFY_URL)
        self.timeout = timeout or getattr(settings, 'TURNSTILE_TIMEOUT', 10)

        if not self.secret_key:
            logger.warning(
                "TURNSTILE_SECRET_KEY is not set. "
                "CAPTCHA verification will fail!"
            )

    def verify_token(self, token: str, user_ip: str = None) -> bool:
        """
        Verify a Turnstile token.

        Args:
            token: The Turnstile response token from frontend
            user_ip: Optional user IP address for additional verification

        Returns:
            True if token is valid, False otherwise
        """
        if not token:
            logger.warning("No Turnstile token provided")
            return False

        if not self.secret_key:
            logger.error("TURNSTILE_SECRET_KEY not configured")
            return False

        payload = {
            'response': token,
            'secret': self.secret_key,
        }
        if user_ip:
            payload['remoteip'] = user_ip

        try:
            response = requests.post(
                self.verify_url,
                json=payload,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            logger.error("Turnstile verification timeout")
            return False  # Fail closed

        except requests.exceptions.RequestException as e:
            logger.error(f"Turnstile verification network error: {e}")
            return False  # Fail closed

        if response.status_code != 200:
            logger.error(
                f"Turnstile API returned status {response.status_code}: {response.text}"
            )
            return False

        try:
            result = response.json()
        except ValueError as e:
            raise TurnstileVerificationError(f"Malformed Turnstile response: {e}")

        if result.get('success') is True:
            logger.info("Turnstile token verified successfully")
            return True

        error_codes = result.get('error-codes', [])
        logger.warning(
            f"Turnstile verification failed: {self.get_error_message(error_codes)}"
        )
        return False

    def get_error_message(self, error_codes: list) -> str:
        """
        Convert Turnstile error codes to human-readable messages.

        Common error codes:
        - missing-input-secret: Secret key missing
        - invalid-input-secret: Secret key invalid
        - missing-input-response: Token missing
        - invalid-input-response: Token invalid or expired
        - timeout-or-duplicate: Token already used or expired
        """
        error_map = {
            'missing-input-secret': 'Server configuration error',
            'invalid-input-secret': 'Server configuration error',
            'missing-input-response': 'CAPTCHA verification required',
            'invalid-input-response': 'CAPTCHA verification failed',
            'timeout-or-duplicate': 'CAPTCHA expired or already used',
        }

        messages = [error_map.get(code, f'Unknown error: {code}') for code in error_codes]
        return '; '.join(messages) or 'no error codes'
