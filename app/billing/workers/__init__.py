"""
Workers for scheduled billing compliance.

- ComplianceJobRunner: grace-period and provider suspension sweeps
- run_grace_period_sweep / run_suspension_sweep: Celery entry points

Usage:
    from billing.workers import run_grace_period_sweep, run_suspension_sweep

    run_grace_period_sweep.delay()
    run_suspension_sweep.delay()
"""

from billing.workers.compliance import (
    ComplianceJobRunner,
    run_grace_period_sweep,
    run_suspension_sweep,
)

__all__ = [
    "ComplianceJobRunner",
    "run_grace_period_sweep",
    "run_suspension_sweep",
]
