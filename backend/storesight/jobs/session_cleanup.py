"""
Session Cleanup Job.

Deactivates expired and idle shop sessions and deletes inactive sessions
past the cleanup window. Cached session tokens are evicted along with them.

Run every 30 minutes from cron:
    python -m storesight.jobs.session_cleanup

Configuration:
- sessions.cleanup_days in config/retention_policy.yml
"""

import logging
import sys
import time
from typing import Dict

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from storesight.database.session import get_db_session_sync
from storesight.platform.redis_cache import get_cache
from storesight.services.shop_service import ShopService

logger = logging.getLogger(__name__)


def run_session_cleanup(db_session: Session, cache=None) -> Dict[str, int]:
    started = time.monotonic()
    service = ShopService(db_session, cache=cache if cache is not None else get_cache())
    stats = service.cleanup_expired_sessions()
    logger.info(
        "Session cleanup completed",
        extra={"duration_seconds": round(time.monotonic() - started, 2), **stats},
    )
    return stats


def main():
    """Main entry point for the session cleanup job."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Session Cleanup starting")

    try:
        for session in get_db_session_sync():
            run_session_cleanup(session)
    except Exception as e:
        logger.error("Session Cleanup failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)

    logger.info("Session Cleanup finished")


if __name__ == "__main__":
    main()
