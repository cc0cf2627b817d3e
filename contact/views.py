"""
Contact Form Views

Public API endpoint for contact form submission.
"""
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from rest_framework import status

from .exceptions import ContactFormError, RateLimited
from .rate_limiting import get_client_ip
from .services import ContactSubmissionPipeline

CAPTCHA_TOKEN_FIELDS = ('cf-turnstile-response', 'captcha_token')


def get_captcha_token(data):
    if not hasattr(data, 'get'):
        return None
    for field in CAPTCHA_TOKEN_FIELDS:
        token = data.get(field)
        if token:
            return str(token)
    return None


class ContactFormSubmitView(APIView):
    """
    Public endpoint for contact form submissions.

    POST /api/contact/submit

    No authentication required. One message per client per cooldown window.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    def get_pipeline(self):
        return ContactSubmissionPipeline.from_settings()

    def post(self, request):
        """Submit a contact form."""
        try:
            self.get_pipeline().submit(
                request.data,
                identity=get_client_ip(request),
                captcha_token=get_captcha_token(request.data),
            )
        except ContactFormError as e:
            return self.error_response(e)

        return Response({'success': True}, status=status.HTTP_200_OK)

    def error_response(self, error):
        body = {
            'success': False,
            'error': error.message,
            'code': error.code,
        }
        headers = {}

        if isinstance(error, RateLimited) and error.retry_after is not None:
            body['retry_after'] = error.retry_after
            headers['Retry-After'] = str(error.retry_after)

        return Response(body, status=error.status_code, headers=headers)
