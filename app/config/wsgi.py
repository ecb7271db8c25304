"""
WSGI config for the billing service.

Fallback entry point for WSGI servers such as gunicorn; the ASGI
application in asgi.py serves the same routes.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
