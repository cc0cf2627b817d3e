"""
Contact Form Submission Pipeline

Runs one contact form submission from raw form data to a relayed email:

    cooldown state -> field checks -> sender email -> challenge
    -> cooldown check -> record client -> send

Every rejection is raised as a ContactFormError subclass.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import requests
from django.conf import settings

from core.mailgun_service import MailgunError, MailgunService
from core.retry import RetryableError
from core.turnstile_service import TurnstileVerificationError

from .challenges import get_challenge_verifier
from .exceptions import (
    CaptchaFailed,
    CaptchaMissing,
    DispatchFailed,
    FieldsInvalid,
    FieldsMissing,
    FieldsTooLong,
    InvalidEmail,
    RateLimited,
)
from .rate_limiting import get_cooldown_store
from .serializers import ContactFormSubmitSerializer
from .validators import check_sender_email

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    identity: str
    message_id: Optional[str] = None
    success: bool = True


class ContactSubmissionPipeline:
    """
    Validates, rate limits and relays contact form messages.

    Usage:
        pipeline = ContactSubmissionPipeline.from_settings()
        result = pipeline.submit(request.data, identity='203.0.113.9')
    """

    def __init__(self, store, mailer, recipient, email_checker=check_sender_email,
                 challenge=None, max_lengths=None):
        self.store = store
        self.mailer = mailer
        self.recipient = recipient
        self.email_checker = email_checker
        self.challenge = challenge or get_challenge_verifier()
        self.max_lengths = max_lengths

    @classmethod
    def from_settings(cls):
        return cls(
            store=get_cooldown_store(),
            mailer=MailgunService(),
            recipient=getattr(settings, 'MAILGUN_TO', ''),
        )

    def submit(self, data, identity, captcha_token=None):
        # A stale batch is expired even when the form turns out to be invalid
        snapshot = self.store.prepare()

        name, sender_email, message = self.validate_fields(data)
        self.check_sender(sender_email)
        self.check_challenge(captcha_token, identity)

        if self.store.is_cooling_down(snapshot, identity):
            logger.info(f"Rate limited contact form submission from {identity}")
            raise RateLimited(retry_after=self.store.retry_after(snapshot))

        self.store.track(identity)

        message_id = self.dispatch(name, sender_email, message)
        return SubmissionResult(identity=identity, message_id=message_id)

    def validate_fields(self, data):
        context = {'max_lengths': self.max_lengths} if self.max_lengths else {}
        serializer = ContactFormSubmitSerializer(data=data, context=context)
        if not serializer.is_valid():
            if serializer.has_missing_fields():
                raise FieldsMissing()
            if serializer.has_too_long_fields():
                raise FieldsTooLong()
            logger.info(f"Rejected contact form fields: {sorted(serializer.errors)}")
            raise FieldsInvalid()

        validated = serializer.validated_data
        return validated['name'], validated['email'], validated['message']

    def check_sender(self, sender_email):
        is_valid, reason = self.email_checker(sender_email)
        if not is_valid:
            logger.info(f"Failed to validate email {sender_email}: {reason}")
            raise InvalidEmail()

    def check_challenge(self, token, identity):
        if not self.challenge.required:
            return

        if not token:
            logger.info(f"Missing CAPTCHA token from {identity}")
            raise CaptchaMissing()

        try:
            verified = self.challenge.verify(token, identity)
        except TurnstileVerificationError as e:
            logger.warning(f"CAPTCHA verification error for {identity}: {e}")
            raise CaptchaFailed() from e

        if not verified:
            logger.info(f"CAPTCHA verification failed for {identity}")
            raise CaptchaFailed()

    def dispatch(self, name, sender_email, message):
        try:
            response = self.mailer.send_message(
                sender=f"{name} <{sender_email}>",
                to=self.recipient,
                subject=f"Contact form submission from {name}",
                text=message,
            )
        except (MailgunError, RetryableError, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to send contact form email: {e}")
            raise DispatchFailed() from e

        return response.get('id')
