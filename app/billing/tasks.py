"""
Celery tasks for billing.

Re-exports the compliance sweeps so Celery's autodiscovery registers them.
Both are scheduled daily (see CELERY_BEAT_SCHEDULE) and can also be
triggered over HTTP through the job endpoints.

Usage:
    from billing.tasks import run_grace_period_sweep

    run_grace_period_sweep.delay()
"""

from billing.workers import run_grace_period_sweep, run_suspension_sweep  # noqa: F401
