from logging import getLogger

import structlog
from django.utils.timezone import now

from importer import models
from importer.exceptions import FatalImportError
from importer.pipeline import ImportPipeline
from siteport.celery import app
from siteport.logging import SiteportLogger

from .decorators import update_task_status

logger = getLogger(__name__)
structured_logger = SiteportLogger.get_logger(__name__)


class JobContinuationTransport:
    """
    Records where a suspended import will continue on its ImportJob.

    The job is saved by ``update_task_status``; the follow-up task is queued
    by ``import_archive_task`` once that has happened.
    """

    def __init__(self, import_job):
        self.import_job = import_job

    def emit_continue(self, continuation):
        self.import_job.suspended = now()
        self.import_job.continuation = continuation
        structured_logger.info(
            "Import suspended.",
            event_code="import_suspended",
            job=self.import_job,
            context=continuation.get("context"),
        )


def start_import(
    archive_path, *, user=None, tag="", fetch_attachments=True, force_chunks=False
):
    import_job = models.ImportJob.objects.create(
        created_by=user,
        archive_path=archive_path,
        tag=tag,
        fetch_attachments=fetch_attachments,
        force_chunks=force_chunks,
    )
    structured_logger.info(
        "Import job created.",
        event_code="import_job_created",
        job=import_job,
        user=user,
        archive=archive_path,
    )
    import_archive_task.delay(import_job.pk)
    return import_job


def resume_import(import_job):
    """
    Queue another run of a job which didn't complete
    """
    if import_job.completed:
        logger.warning("Import %s has already completed", import_job)
        return None
    return import_archive_task.delay(import_job.pk)


# Tasks


@app.task(bind=True)
def import_archive_task(self, import_job_pk):
    import_job = models.ImportJob.objects.get(pk=import_job_pk)

    structlog.contextvars.bind_contextvars(session_id=import_job.session_id)
    try:
        outcome = import_archive(self, import_job)
    finally:
        structlog.contextvars.unbind_contextvars("session_id")

    if outcome is None:
        return None
    if outcome.is_suspended:
        import_archive_task.delay(import_job.pk)
    return outcome.as_dict()


@update_task_status
def import_archive(self, import_job):
    pipeline = ImportPipeline(
        import_job.session_id,
        import_job.archive_path,
        transport=JobContinuationTransport(import_job),
        fetch_attachments=import_job.fetch_attachments,
        force_chunks=import_job.force_chunks or None,
        tag=import_job.tag,
        name=f"import-job-{import_job.pk}",
    )
    outcome = pipeline.run()

    if outcome.summary:
        import_job.summary = outcome.summary
    import_job.errors = outcome.errors

    if outcome.is_suspended:
        return outcome

    if not outcome.is_success:
        if outcome.failure is not None:
            raise outcome.failure
        raise FatalImportError(
            f"Nothing could be imported from {import_job.archive_path}"
        )

    import_job.continuation = {}
    structured_logger.info(
        "Import job completed.",
        event_code="import_job_completed",
        job=import_job,
        error_count=len(outcome.errors),
    )
    return outcome


# End tasks
