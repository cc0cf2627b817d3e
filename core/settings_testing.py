"""
Settings for the test suite.

Uses the in-memory cooldown store and never talks to Redis, Mailgun or
Cloudflare.
"""
import os

os.environ.setdefault('SECRET_KEY', 'test-secret-key-not-for-production')
os.environ.setdefault('DEBUG', 'True')

from core.settings import *  # noqa: E402,F401,F403

REDIS_ENABLED = False
CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'contact-tests',
    }
}

CONTACT_COOLDOWN_STORE = 'memory'
CONTACT_COOLDOWN_KEY = 'test-mail-clients'
CONTACT_COOLDOWN_WINDOW_SECONDS = 60 * 60 * 2
CONTACT_CAPTCHA_ENABLED = False

TURNSTILE_SECRET_KEY = 'test-turnstile-secret'

MAILGUN_API_KEY = 'test-mailgun-key'
MAILGUN_DOMAIN = 'mg.example.com'
MAILGUN_TO = 'inbox@example.com'
MAILGUN_BASE_URL = 'https://api.mailgun.net'
MAILGUN_MAX_RETRIES = 2
MAILGUN_RETRY_BASE_DELAY = 0
MAILGUN_RETRY_MAX_DELAY = 0

LOG_TO_FILE = False
