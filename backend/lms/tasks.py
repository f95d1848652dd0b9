"""Background tasks executed by Celery workers."""

import logging

from lms.celery_app import celery_app
from lms.db.session import session_scope
from lms.services.attempts import expire_overdue

logger = logging.getLogger(__name__)


@celery_app.task(name="expire_stale_attempts")
def expire_stale_attempts() -> dict:
    """Auto-submit every in-progress attempt past its deadline and grace period.

    Each attempt is graded from its last auto-save snapshot; attempts that
    finish concurrently are skipped by the conditional terminal update.
    """
    try:
        with session_scope() as db:
            expired = expire_overdue(db)
    except Exception:
        logger.exception("Expiry sweep failed")
        raise
    if expired:
        logger.info("Expiry sweep auto-submitted %d attempt(s)", expired)
    return {"success": True, "expired": expired}
