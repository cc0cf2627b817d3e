"""
Human-Presence Challenge Strategies

The submission pipeline always asks a challenge strategy whether to let a
request through. Deployments without a CAPTCHA use NoChallenge.
"""
from django.conf import settings

from core.turnstile_service import TurnstileService


class NoChallenge:
    """Accepts every request."""

    required = False

    def verify(self, token, user_ip):
        return True


class TurnstileChallenge:
    """Requires a valid Cloudflare Turnstile token."""

    required = True

    def __init__(self, service=None):
        self.service = service or TurnstileService()

    def verify(self, token, user_ip):
        return self.service.verify_token(token, user_ip=user_ip)


def get_challenge_verifier():
    """Pick the challenge strategy from CONTACT_CAPTCHA_ENABLED."""
    if getattr(settings, 'CONTACT_CAPTCHA_ENABLED', False):
        return TurnstileChallenge()
    return NoChallenge()
