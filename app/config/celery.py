"""
Celery configuration for the billing service.

Celery runs the daily compliance sweeps (grace-period deactivation and
provider suspension) on the schedule in CELERY_BEAT_SCHEDULE. The same
sweeps can be triggered over HTTP, so a plain cron can replace beat.

Tasks are auto-discovered from the tasks.py module of each installed app.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
