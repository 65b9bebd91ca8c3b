from unittest import mock

from django.contrib import admin, messages
from django.test import RequestFactory, TestCase
from django.utils import timezone

from importer.admin import (
    CompletedFilter,
    ImportJobAdmin,
    LegacySessionStoreAdmin,
    SuspendedFilter,
    TaskStatusModelAdmin,
    discard_session_action,
    pretty_json,
    resume_import_action,
)
from importer.models import ImportJob, LegacySessionStore
from importer.sessions import StateStore

from .utils import create_import_job, create_import_session, create_legacy_sessions


@mock.patch("importer.admin.messages.add_message", autospec=True)
class ActionTests(TestCase):
    @mock.patch("importer.admin.resume_import", autospec=True)
    def test_resume_import_action(self, resume_mock, messages_mock):
        import_jobs = [create_import_job() for i in range(3)]
        create_import_job(completed=timezone.now())
        modeladmin_mock = mock.MagicMock()
        request = RequestFactory().get("/")

        resume_import_action(modeladmin_mock, request, ImportJob.objects.all())

        self.assertEqual(
            sorted(call.args[0].pk for call in resume_mock.call_args_list),
            sorted(import_job.pk for import_job in import_jobs),
        )
        self.assertEqual(messages_mock.call_count, 1)
        self.assertEqual(
            messages_mock.call_args.args,
            (request, messages.INFO, "Queued 3 tasks"),
        )

    def test_discard_session_action(self, messages_mock):
        with_session = create_import_job()
        create_import_session(with_session.session_id, {"tag": "site-a"})
        create_import_job()
        request = RequestFactory().get("/")

        discard_session_action(mock.MagicMock(), request, ImportJob.objects.all())

        self.assertEqual(StateStore().get_data(with_session.session_id), {})
        self.assertEqual(
            messages_mock.call_args.args,
            (request, messages.INFO, "Discarded 1 import sessions"),
        )


class NullableTimestampFilterTests(TestCase):
    def get_filter(self, filter_class):
        return filter_class(
            RequestFactory().get("/"),
            {},
            ImportJob,
            ImportJobAdmin(ImportJob, admin.site),
        )

    def test_lookups(self):
        list_filter = self.get_filter(CompletedFilter)

        self.assertEqual(
            list(list_filter.lookups(None, None)),
            [("null", "Incomplete"), ("not-null", "Completed")],
        )

    def test_queryset(self):
        incomplete = create_import_job()
        completed = create_import_job(completed=timezone.now())
        list_filter = self.get_filter(CompletedFilter)

        with mock.patch.object(CompletedFilter, "value", return_value="null"):
            self.assertEqual(
                list(list_filter.queryset(None, ImportJob.objects.all())),
                [incomplete],
            )

        with mock.patch.object(CompletedFilter, "value", return_value="not-null"):
            self.assertEqual(
                list(list_filter.queryset(None, ImportJob.objects.all())),
                [completed],
            )

    def test_queryset_without_value(self):
        create_import_job()
        list_filter = self.get_filter(SuspendedFilter)

        self.assertEqual(
            list_filter.queryset(None, ImportJob.objects.all()).count(), 1
        )


@mock.patch("importer.admin.naturaltime")
class TaskStatusModelAdminTest(TestCase):
    def test_generate_natural_timestamp_display_property(self, naturaltime_mock):
        inner = TaskStatusModelAdmin.generate_natural_timestamp_display_property(
            "test_field"
        )

        obj = mock.MagicMock()
        inner(obj)
        self.assertTrue(naturaltime_mock.called)

        naturaltime_mock.reset_mock()
        obj = mock.MagicMock(spec=["test_field"])
        obj.test_field = None
        value = inner(obj)
        self.assertEqual(value, None)
        self.assertFalse(naturaltime_mock.called)

        naturaltime_mock.reset_mock()
        # Passing an empty list to spec means there are no
        # attributes on the mock, so accessing any attribute
        # will raise an AttributeError
        obj = mock.MagicMock(spec=[])
        value = inner(obj)
        self.assertEqual(value, None)
        self.assertFalse(naturaltime_mock.called)

    def test_display_properties(self, naturaltime_mock):
        model_admin = ImportJobAdmin(ImportJob, admin.site)
        import_job = create_import_job()

        self.assertEqual(model_admin.display_suspended(import_job), None)
        model_admin.display_created(import_job)
        naturaltime_mock.assert_called_once_with(import_job.created)
        self.assertEqual(
            model_admin.display_last_started.short_description, "Last Started"
        )


class SessionAdminTests(TestCase):
    def test_pretty_json(self):
        self.assertEqual(
            pretty_json({"b": 1, "a": "<x>"}),
            "<pre>{\n  &quot;a&quot;: &quot;&lt;x&gt;&quot;,\n"
            "  &quot;b&quot;: 1\n}</pre>",
        )

    def test_legacy_session_store_admin(self):
        store = create_legacy_sessions({"one": {}, "two": {}})
        model_admin = LegacySessionStoreAdmin(LegacySessionStore, admin.site)
        request = RequestFactory().get("/")

        self.assertEqual(model_admin.session_count(store), 2)
        self.assertFalse(model_admin.has_add_permission(request))
        self.assertFalse(model_admin.has_change_permission(request, store))
