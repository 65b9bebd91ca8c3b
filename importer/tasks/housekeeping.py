from logging import getLogger

from importer.sessions import StateStore
from siteport.celery import app
from siteport.logging import SiteportLogger

logger = getLogger(__name__)
structured_logger = SiteportLogger.get_logger(__name__)

# Tasks


@app.task(bind=True)
def cleanup_expired_sessions_task(self, max_age_days=None):
    """
    Remove import sessions which haven't been written to for a while

    Does nothing while session expiry is disabled in ``IMPORTER``.
    """
    result = StateStore().cleanup_expired(max_age_days)
    if result["removed_count"]:
        structured_logger.info(
            "Expired import sessions removed.",
            event_code="import_sessions_expired",
            removed_count=result["removed_count"],
        )
    return result


@app.task(bind=True)
def delete_sessions_by_tag_task(self, tag, current_session_id):
    removed = StateStore().delete_by_tag(tag, current_session_id)
    logger.info("Removed %s import sessions tagged %s", len(removed), tag)
    return removed


# End tasks


def discard_session(import_job):
    """
    Forget all progress of a job so that the next run starts from scratch
    """
    deleted = StateStore().delete(import_job.session_id)
    if deleted:
        structured_logger.info(
            "Import session discarded.",
            event_code="import_session_discarded",
            job=import_job,
        )
    return deleted
