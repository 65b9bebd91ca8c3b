import json

from django.contrib import admin, messages
from django.contrib.humanize.templatetags.humanize import naturaltime
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.html import format_html

from importer.tasks.housekeeping import discard_session
from importer.tasks.imports import resume_import

from .models import ImportJob, ImportSession, LegacySessionStore


@admin.action(description="Resume import")
def resume_import_action(
    modeladmin: admin.ModelAdmin,
    request: HttpRequest,
    queryset: QuerySet[ImportJob],
) -> None:
    """
    Queue the import task again for selected jobs which haven't completed.
    """
    queued = 0
    for import_job in queryset.filter(completed__isnull=True):
        if resume_import(import_job):
            queued += 1
    messages.add_message(request, messages.INFO, "Queued %d tasks" % queued)


@admin.action(description="Discard session state")
def discard_session_action(
    modeladmin: admin.ModelAdmin,
    request: HttpRequest,
    queryset: QuerySet[ImportJob],
) -> None:
    """
    Delete the session documents of the selected jobs, so that running them
    again starts from the first item.
    """
    discarded = sum(1 for import_job in queryset if discard_session(import_job))
    messages.add_message(
        request, messages.INFO, "Discarded %d import sessions" % discarded
    )


class NullableTimestampFilter(admin.SimpleListFilter):
    """
    Base class for Admin list filters which define whether a datetime field has
    a value or is null
    """

    # Title displayed on the list filter URL
    title = ""
    # Model field name:
    parameter_name = ""
    # Choices displayed
    lookup_labels = ("NULL", "NOT NULL")

    def lookups(self, request, model_admin):
        return zip(("null", "not-null"), self.lookup_labels, strict=False)

    def queryset(self, request, queryset):
        kwargs = {"%s__isnull" % self.parameter_name: True}
        if self.value() == "null":
            return queryset.filter(**kwargs)
        elif self.value() == "not-null":
            return queryset.exclude(**kwargs)
        return queryset


class LastStartedFilter(NullableTimestampFilter):
    title = "Last Started"
    parameter_name = "last_started"
    lookup_labels = ("Unstarted", "Started")


class CompletedFilter(NullableTimestampFilter):
    title = "Completed"
    parameter_name = "completed"
    lookup_labels = ("Incomplete", "Completed")


class FailedFilter(NullableTimestampFilter):
    title = "Failed"
    parameter_name = "failed"
    lookup_labels = ("Has not failed", "Has failed")


class SuspendedFilter(NullableTimestampFilter):
    title = "Suspended"
    parameter_name = "suspended"
    lookup_labels = ("Never suspended", "Was suspended")


def pretty_json(value):
    return format_html(
        "<pre>{}</pre>", json.dumps(value, indent=2, sort_keys=True, default=str)
    )


class TaskStatusModelAdmin(admin.ModelAdmin):
    """
    Base ModelAdmin for task-like models with standard readonly fields.

    Also adds human-friendly timestamp display properties (e.g., "3 minutes
    ago") for common lifecycle fields.
    """

    readonly_fields = (
        "created",
        "modified",
        "last_started",
        "completed",
        "failed",
        "status",
        "task_id",
        "failure_reason",
        "retry_count",
        "failure_history",
    )

    @staticmethod
    def generate_natural_timestamp_display_property(field_name: str):
        def inner(obj):
            try:
                value = getattr(obj, field_name)
            except AttributeError:
                return None
            if value:
                return naturaltime(value)
            else:
                return value

        inner.short_description = field_name.replace("_", " ").title()
        inner.admin_order_field = field_name
        return inner

    def __init__(self, *args, **kwargs):
        for field_name in (
            "created",
            "modified",
            "last_started",
            "completed",
            "failed",
            "suspended",
        ):
            setattr(
                self,
                f"display_{field_name}",
                self.generate_natural_timestamp_display_property(field_name),
            )

        super().__init__(*args, **kwargs)


@admin.register(ImportJob)
class ImportJobAdmin(TaskStatusModelAdmin):
    readonly_fields = TaskStatusModelAdmin.readonly_fields + (
        "created_by",
        "session_id",
        "archive_path",
        "tag",
        "fetch_attachments",
        "force_chunks",
        "suspended",
        "continuation",
        "summary",
        "errors",
    )
    list_display = (
        "display_created",
        "display_last_started",
        "display_suspended",
        "display_completed",
        "archive_path",
        "tag",
        "failure_reason",
        "status",
    )
    list_filter = (
        LastStartedFilter,
        SuspendedFilter,
        CompletedFilter,
        FailedFilter,
        "failure_reason",
        ("created_by", admin.RelatedOnlyFieldListFilter),
    )
    search_fields = ("archive_path", "session_id", "tag", "status")
    actions = (resume_import_action, discard_session_action)


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(ImportSession)
class ImportSessionAdmin(ReadOnlyAdmin):
    list_display = ("session_id", "created", "modified")
    search_fields = ("session_id",)
    fields = ("session_id", "created", "modified", "formatted_data")
    readonly_fields = fields

    @admin.display(description="Data")
    def formatted_data(self, obj):
        return pretty_json(obj.data)


@admin.register(LegacySessionStore)
class LegacySessionStoreAdmin(ReadOnlyAdmin):
    list_display = ("name", "session_count")
    fields = ("name", "formatted_data")
    readonly_fields = fields

    @admin.display(description="Sessions")
    def session_count(self, obj):
        return len(obj.data) if isinstance(obj.data, dict) else 0

    @admin.display(description="Data")
    def formatted_data(self, obj):
        return pretty_json(obj.data)
