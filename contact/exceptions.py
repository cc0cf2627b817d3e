"""
Contact Form Errors

Every rejection the submission pipeline can produce. Each error carries the
HTTP status and the user-facing message the view returns.
"""


class ContactFormError(Exception):
    """Base exception for contact form rejections."""

    status_code = 400
    code = 'CONTACT_ERROR'
    default_message = 'Unable to process the contact form'

    def __init__(self, message: str = None, code: str = None, status_code: int = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


# User-correctable input

class ValidationError(ContactFormError):
    code = 'VALIDATION_ERROR'


class FieldsMissing(ValidationError):
    code = 'FIELDS_MISSING'
    default_message = 'Form data missing'


class FieldsTooLong(ValidationError):
    code = 'FIELDS_TOO_LONG'
    default_message = 'Form data does not meet length requirements'


class FieldsInvalid(ValidationError):
    code = 'FIELDS_INVALID'
    default_message = 'Form data contains invalid characters'


# Input we refuse to trust

class UntrustedInput(ContactFormError):
    code = 'UNTRUSTED_INPUT'


class InvalidEmail(UntrustedInput):
    code = 'INVALID_EMAIL'
    default_message = 'The provided email is invalid'


class CaptchaMissing(UntrustedInput):
    code = 'CAPTCHA_MISSING'
    default_message = 'CAPTCHA verification required'


class CaptchaFailed(UntrustedInput):
    code = 'CAPTCHA_FAILED'
    default_message = 'CAPTCHA verification failed. Please try again.'


class RateLimited(ContactFormError):
    status_code = 429
    code = 'RATE_LIMITED'
    default_message = 'Please wait before sending another message'

    def __init__(self, message: str = None, retry_after: int = None):
        super().__init__(message)
        self.retry_after = retry_after


# Backing services

class DependencyUnavailable(ContactFormError):
    status_code = 500
    code = 'DEPENDENCY_UNAVAILABLE'
    default_message = 'Something went wrong, please try again later'


class StoreUnavailable(DependencyUnavailable):
    code = 'STORE_UNAVAILABLE'


class DispatchFailed(DependencyUnavailable):
    code = 'DISPATCH_FAILED'
    default_message = 'Failed to send email, please try again'
