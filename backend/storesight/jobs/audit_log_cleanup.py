"""
Audit Log Cleanup Job.

Deletes audit entries older than the audit retention period
(audit.retention_days, 365 by default).

Run daily from cron:
    python -m storesight.jobs.audit_log_cleanup
"""

import logging
import sys
from typing import Dict

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from storesight.database.session import get_db_session_sync
from storesight.services.data_privacy_service import DataPrivacyService

logger = logging.getLogger(__name__)


def run_audit_log_cleanup(db_session: Session) -> Dict[str, int]:
    service = DataPrivacyService(db_session)
    deleted = service.cleanup_old_audit_logs()
    stats = {
        "audit_logs_deleted": deleted,
        "retention_days": service.audit_log_retention_days,
    }
    logger.info("Audit log cleanup completed", extra=stats)
    return stats


def main():
    """Main entry point for the audit log cleanup job."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Audit Log Cleanup starting")

    try:
        for session in get_db_session_sync():
            run_audit_log_cleanup(session)
    except Exception as e:
        logger.error("Audit Log Cleanup failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)

    logger.info("Audit Log Cleanup finished")


if __name__ == "__main__":
    main()
