"""
Scheduled cleanup jobs.

Each job is a module runnable from cron:
    python -m storesight.jobs.session_cleanup
    python -m storesight.jobs.notification_cleanup
    python -m storesight.jobs.audit_log_cleanup
"""

from storesight.jobs.audit_log_cleanup import run_audit_log_cleanup
from storesight.jobs.notification_cleanup import run_notification_cleanup
from storesight.jobs.session_cleanup import run_session_cleanup

__all__ = [
    "run_session_cleanup",
    "run_notification_cleanup",
    "run_audit_log_cleanup",
]
