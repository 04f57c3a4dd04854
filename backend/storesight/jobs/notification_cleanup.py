"""
Notification Cleanup Job.

Deletes notifications past the retention age and trims each shop down to
its read and unread caps, oldest first.

Run daily from cron:
    python -m storesight.jobs.notification_cleanup

Configuration (config/retention_policy.yml):
- notifications.cleanup_enabled
- notifications.retention_days
- notifications.max_read_per_shop / max_unread_per_shop
"""

import logging
import sys
from typing import Dict

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from storesight.database.session import get_db_session_sync
from storesight.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def run_notification_cleanup(db_session: Session) -> Dict[str, int]:
    service = NotificationService(db_session)
    if not service.policy.cleanup_enabled:
        logger.info("Notification cleanup disabled by retention policy")
        return {"notifications_deleted": 0, "skipped": 1}

    deleted = service.cleanup_old_notifications()
    stats = {"notifications_deleted": deleted, "skipped": 0}
    logger.info("Notification cleanup completed", extra=stats)
    return stats


def main():
    """Main entry point for the notification cleanup job."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Notification Cleanup starting")

    try:
        for session in get_db_session_sync():
            run_notification_cleanup(session)
    except Exception as e:
        logger.error("Notification Cleanup failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)

    logger.info("Notification Cleanup finished")


if __name__ == "__main__":
    main()
