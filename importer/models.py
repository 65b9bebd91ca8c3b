"""
See the importer package docstring for implementation details
"""

import uuid
from logging import getLogger

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

from configuration.utils import configuration_value

logger = getLogger(__name__)


def generate_session_id():
    return uuid.uuid4().hex


class TaskStatusModel(models.Model):
    class FailureReason(models.TextChoices):
        ATTACHMENT = "Attachment"
        SKIPS = "Skips"
        RETRIES = "Retries"

    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)

    last_started = models.DateTimeField(
        help_text="Last time when a worker started processing this job",
        null=True,
        blank=True,
    )
    completed = models.DateTimeField(
        help_text="Time when the job completed without error", null=True, blank=True
    )
    failed = models.DateTimeField(
        help_text="Time when the job failed due to an error", null=True, blank=True
    )

    status = models.TextField(
        help_text="Status message, if any, from the last worker", blank=True, default=""
    )

    task_id = models.UUIDField(
        help_text="UUID of the last Celery task to process this record",
        null=True,
        blank=True,
    )

    failure_reason = models.CharField(
        help_text="Reason the task failed, if one was provided",
        max_length=50,
        blank=True,
        default="",
        choices=FailureReason.choices,
    )

    retry_count = models.IntegerField(
        help_text="Number of times the task was retried", default=0
    )

    failure_history = models.JSONField(
        help_text="Information about previous failures of the task, if any",
        encoder=DjangoJSONEncoder,
        default=list,
    )

    class Meta:
        abstract = True

    def update_status(self, status, do_save=True):
        self.status = status
        if do_save:
            self.save()

    def retry_if_possible(self):
        return False

    def update_failure_history(self, do_save=True):
        self.failure_history.append(
            {
                "failed": self.failed,
                "failure_reason": self.failure_reason,
                "status": self.status,
            }
        )
        if do_save:
            self.save()

    def reset_for_retry(self):
        if self.failed:
            logger.info(
                "Resetting task %s for retrying",
                self,
            )
            self.update_failure_history(do_save=False)
            self.failed = None
            self.failure_reason = ""
            self.status = "Retrying"
            self.retry_count += 1
            self.save()
            return True
        else:
            self.status = (
                "Task was not marked as failed, so it will "
                "not be reset for retrying."
            )
            self.save()
            logger.warning(
                "Task %s was not marked as failed, so it will not be "
                "reset for retrying",
                self,
            )
            return False


class ImportJob(TaskStatusModel):
    """
    A request to import one archive into the content store.

    All progress lives in the ImportSession with the same session_id, so a
    job which was suspended or failed can be run again and will pick up
    after the last item it committed.
    """

    created_by = models.ForeignKey("auth.User", null=True, on_delete=models.SET_NULL)

    session_id = models.CharField(
        max_length=100, unique=True, default=generate_session_id
    )
    archive_path = models.CharField(
        max_length=500, verbose_name="Path to the archive file"
    )
    tag = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Batch identity shared by repeated imports of the same archive",
    )
    fetch_attachments = models.BooleanField(default=True)
    force_chunks = models.BooleanField(
        default=False, help_text="Suspend after every item"
    )

    suspended = models.DateTimeField(
        help_text="Last time the import yielded at a chunk boundary",
        null=True,
        blank=True,
    )
    continuation = models.JSONField(
        help_text="Where the next invocation resumes, if suspended",
        encoder=DjangoJSONEncoder,
        default=dict,
        blank=True,
    )
    summary = models.JSONField(
        help_text="Succeeded and failed ids per entity kind",
        encoder=DjangoJSONEncoder,
        default=dict,
        blank=True,
    )
    errors = models.JSONField(encoder=DjangoJSONEncoder, default=list, blank=True)

    def __str__(self):
        return "ImportJob(created_by=%s, session_id=%s, archive=%s)" % (
            self.created_by.username if self.created_by else None,
            self.session_id,
            self.archive_path,
        )

    def retry_if_possible(self):
        # Attachment failures are often transient and the session keeps every
        # committed item, so a retry resumes rather than restarts
        if self.failure_reason == TaskStatusModel.FailureReason.ATTACHMENT:
            max_retries = configuration_value("import_job_max_retries", 0)
            retry_delay = configuration_value("import_job_retry_delay", 0)
            if self.retry_count < max_retries and retry_delay > 0:
                if self.reset_for_retry():
                    from importer.tasks.imports import import_archive_task

                    return import_archive_task.apply_async(
                        (self.pk,), countdown=retry_delay * 60  # Convert to seconds
                    )
                logger.warning(
                    "Task %s was not reset for retrying, so it will not be retried",
                    self,
                )
                return False
            else:
                logger.warning(
                    "Task %s has reached the maximum number of retries %s "
                    "and will not be repeated",
                    self,
                    max_retries,
                )
                self.update_failure_history(do_save=False)
                self.failed = timezone.now()
                self.status = (
                    "Maximum number of retries reached while retrying the "
                    f"import. The failure reason before retrying was "
                    f"{self.failure_reason} and the status was {self.status}"
                )
                self.failure_reason = TaskStatusModel.FailureReason.RETRIES
                self.save()
                return False
        return False


class ImportSession(models.Model):
    """
    The durable state document of one import session
    """

    session_id = models.CharField(max_length=100, unique=True)
    data = models.JSONField(encoder=DjangoJSONEncoder, default=dict)
    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"ImportSession({self.session_id})"


class LegacySessionStore(models.Model):
    """
    Combined store used by older releases: one row holding every session
    keyed by session id. Read as a fallback, never written except to remove
    deleted sessions.
    """

    name = models.CharField(max_length=100, unique=True)
    data = models.JSONField(encoder=DjangoJSONEncoder, default=dict)

    def __str__(self):
        return self.name
