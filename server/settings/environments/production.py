"""Overriding settings used in production."""

from typing import Final

from server.settings.components import config

DEBUG = False

ALLOWED_HOSTS: Final = [
    config('DOMAIN_NAME'),
]

SECURE_CONTENT_TYPE_NOSNIFF = True
SECURE_BROWSER_XSS_FILTER = True
X_FRAME_OPTIONS = 'DENY'
