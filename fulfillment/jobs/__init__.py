"""
Background Jobs Module

Handles scheduled tasks for:
- Releasing reservations of abandoned and refunded orders
"""

from fulfillment.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from fulfillment.jobs.reservation_jobs import SweepResult, release_abandoned_reservations

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "SweepResult",
    "release_abandoned_reservations",
]
