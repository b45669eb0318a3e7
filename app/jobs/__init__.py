"""
Background Jobs Module

Handles scheduled tasks for:
- Order notification delivery
- Payment status checks
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from app.jobs.notification_jobs import dispatch_order_notifications
from app.jobs.order_jobs import check_pending_payments

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "dispatch_order_notifications",
    "check_pending_payments",
]
