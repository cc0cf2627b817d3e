"""
Sender Email Checks

Decides whether a submitted sender address is worth relaying.
"""
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import validate_email

DEFAULT_BLOCKED_DOMAINS = (
    'tempmail.com', 'throwaway.email', '10minutemail.com',
    'guerrillamail.com', 'mailinator.com', 'trashmail.com',
)


def check_sender_email(email):
    """
    Check that an email address is well formed and not disposable.

    Returns:
        tuple: (is_valid, reason) where reason is None for valid addresses
    """
    try:
        validate_email(email)
    except ValidationError:
        return False, 'malformed address'

    domain = email.rsplit('@', 1)[1].lower()
    blocked = getattr(settings, 'CONTACT_BLOCKED_EMAIL_DOMAINS', DEFAULT_BLOCKED_DOMAINS)
    if domain in blocked:
        return False, f'disposable domain {domain}'

    return True, None
