"""
Contact Form Serializers

Field presence and length checks for contact form submissions.

Serializer error codes map to pipeline rejections:
    required, null, invalid  -> FieldsMissing
    max_length               -> FieldsTooLong
    anything else (NUL or surrogate characters) -> FieldsInvalid
"""
from django.conf import settings
from rest_framework import serializers

MISSING_ERROR_CODES = {'required', 'null', 'invalid'}
TOO_LONG_ERROR_CODES = {'max_length'}

DEFAULT_MAX_LENGTHS = {
    'name': 100,
    'email': 100,
    'message': 500,
}


def get_max_lengths():
    return {
        'name': getattr(settings, 'CONTACT_MAX_NAME_LENGTH', DEFAULT_MAX_LENGTHS['name']),
        'email': getattr(settings, 'CONTACT_MAX_EMAIL_LENGTH', DEFAULT_MAX_LENGTHS['email']),
        'message': getattr(settings, 'CONTACT_MAX_MESSAGE_LENGTH', DEFAULT_MAX_LENGTHS['message']),
    }


class ContactFormSubmitSerializer(serializers.Serializer):
    """
    Public contact form submission serializer.

    Values are kept exactly as submitted; blank strings count as present.
    Limits come from the `max_lengths` context entry or from settings.
    """

    def get_fields(self):
        max_lengths = self.context.get('max_lengths') or get_max_lengths()
        return {
            name: serializers.CharField(
                max_length=max_lengths[name],
                required=True,
                allow_blank=True,
                trim_whitespace=False,
            )
            for name in ('name', 'email', 'message')
        }

    def error_codes(self):
        """Flat set of error codes raised by is_valid()."""
        return {
            getattr(detail, 'code', None)
            for details in self.errors.values()
            for detail in details
        }

    def has_missing_fields(self):
        return bool(self.error_codes() & MISSING_ERROR_CODES)

    def has_too_long_fields(self):
        return bool(self.error_codes() & TOO_LONG_ERROR_CODES)
