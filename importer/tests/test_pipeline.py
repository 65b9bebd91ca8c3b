import tempfile

from django.db import DatabaseError
from django.test import TestCase

from importer.checkpoints import CheckpointTracker
from importer.exceptions import (
    ArchiveError,
    AttachmentImportFailure,
    FatalImportError,
    SkippableImportError,
)
from importer.loop import ExecutionBudget, LoopExecutor
from importer.pipeline import (
    STATE_KEY,
    ImportPipeline,
    ImportStatus,
    PipelineState,
    archive_key,
)
from importer.resolver import ENTITY
from importer.sessions import StateStore
from importer.store import DjangoContentStore
from siteport.models import Comment, Entity, Term

from .utils import FakeFetcher, create_import_session, write_archive

BASE_URL = "https://old.example.com"
PHOTO_URL = f"{BASE_URL}/uploads/photo.png"


def site_archive():
    return {
        "metadata": {"base_url": BASE_URL, "page_on_front": 10},
        "terms": [
            {"id": 1, "taxonomy": "category", "slug": "news", "name": "News"},
            {"id": 2, "taxonomy": "nav_menu", "slug": "main", "name": "Main"},
        ],
        "entities": [
            {"id": 11, "type": "page", "title": "Team", "slug": "team", "parent": 10},
            {"id": 10, "type": "page", "title": "Home", "slug": "home"},
            {
                "id": 2001,
                "type": "attachment",
                "title": "Photo",
                "attachment_url": PHOTO_URL,
                "guid": f"{BASE_URL}/?attachment_id=2001",
            },
            {
                "id": 2002,
                "type": "attachment",
                "title": "Same photo",
                "attachment_url": PHOTO_URL,
            },
            {
                "id": 30,
                "type": "post",
                "title": "Hello",
                "content": f"<img src='{PHOTO_URL}'>",
                "terms": [
                    {"taxonomy": "category", "slug": "news"},
                    {"domain": "tag", "slug": "local", "name": "Local"},
                ],
                "comments": [
                    {"id": 2, "parent": 1, "content": "Reply"},
                    {"id": 1, "content": "First", "approved": "1"},
                ],
                "meta": [
                    {"key": "_thumbnail_id", "value": "2001"},
                    {"key": "_edit_lock", "value": "1700000000:1"},
                    {"key": "subtitle", "value": "Greetings"},
                ],
            },
            {
                "id": 40,
                "type": "nav_menu_item",
                "title": "Home",
                "terms": [{"taxonomy": "nav_menu", "slug": "main"}],
                "meta": {
                    "_menu_item_type": "post_type",
                    "_menu_item_object": "page",
                    "_menu_item_object_id": "10",
                    "_menu_item_menu_item_parent": "41",
                    "_menu_item_classes": ["", "highlight", "wide"],
                },
            },
            {
                "id": 41,
                "type": "nav_menu_item",
                "title": "About",
                "terms": [{"taxonomy": "nav_menu", "slug": "main"}],
                "meta": {
                    "_menu_item_type": "custom",
                    "_menu_item_url": f"{BASE_URL}/about/",
                    "_menu_item_menu_item_parent": "0",
                },
            },
            {"id": 50, "type": "revision", "title": "Old draft"},
        ],
    }


class ImportPipelineTestCase(TestCase):
    def setUp(self):
        self.directory = tempfile.TemporaryDirectory()
        self.addCleanup(self.directory.cleanup)
        self.fetcher = FakeFetcher()

    def write(self, data):
        return write_archive(self.directory.name, data)

    def make_pipeline(self, archive_path, session_id="S1", **kwargs):
        kwargs.setdefault("fetcher", self.fetcher)
        kwargs.setdefault("budget", ExecutionBudget(600, 30))
        kwargs.setdefault("force_chunks", False)
        return ImportPipeline(session_id, archive_path, **kwargs)

    def run_to_completion(self, archive_path, **kwargs):
        invocations = 0
        while True:
            invocations += 1
            outcome = self.make_pipeline(archive_path, **kwargs).run()
            if not outcome.is_suspended:
                return outcome, invocations
            self.assertLess(invocations, 50)


class ImportPipelineTests(ImportPipelineTestCase):
    def assertSiteImported(self, outcome):
        self.assertEqual(outcome.status, ImportStatus.SUCCESS)
        self.assertEqual(self.fetcher.calls, [PHOTO_URL])

        home = Entity.objects.get(kind="page", slug="home")
        team = Entity.objects.get(kind="page", slug="team")
        self.assertEqual(team.parent, home)
        self.assertTrue(home.is_front_page)

        photo = Entity.objects.get(kind="attachment")
        post = Entity.objects.get(kind="post")
        self.assertEqual(post.content, f"<img src='{photo.url}'>")
        self.assertEqual(post.get_meta("_thumbnail_id"), photo.pk)
        self.assertEqual(post.get_meta("subtitle"), "Greetings")
        self.assertIsNone(post.get_meta("_edit_lock"))
        self.assertEqual(
            sorted(post.terms.values_list("taxonomy", "slug")),
            [("category", "news"), ("post_tag", "local")],
        )

        first = Comment.objects.get(content="First")
        reply = Comment.objects.get(content="Reply")
        self.assertTrue(first.approved)
        self.assertEqual(reply.parent, first)

        menu = Term.objects.get(taxonomy="nav_menu", slug="main")
        home_item = Entity.objects.get(kind="nav_menu_item", title="Home")
        about_item = Entity.objects.get(kind="nav_menu_item", title="About")
        self.assertEqual(home_item.menu, menu)
        self.assertEqual(home_item.get_meta("_menu_item_object_id"), home.pk)
        self.assertEqual(home_item.get_meta("_menu_item_classes"), "highlight wide")
        self.assertEqual(home_item.parent, about_item)
        self.assertEqual(
            home_item.get_meta("_menu_item_menu_item_parent"), about_item.pk
        )
        self.assertEqual(about_item.get_meta("_menu_item_url"), "/about/")
        self.assertIsNone(about_item.parent)

        self.assertEqual(
            outcome.errors,
            [{"type": "revision", "id": "50", "message": "Unknown entity type revision"}],
        )
        self.assertEqual(outcome.summary["entities"]["revision"]["failed"], [50])

    def test_import(self):
        path = self.write(site_archive())

        outcome = self.make_pipeline(path).run()

        self.assertSiteImported(outcome)
        self.assertEqual(outcome.summary["terms"]["category"]["succeeded"], [1])
        self.assertEqual(outcome.summary["entities"]["page"]["succeeded"], [11, 10])
        self.assertEqual(
            outcome.summary["entities"]["attachment"]["succeeded"], [2001, 2002]
        )
        self.assertEqual(Entity.objects.filter(kind="attachment").count(), 1)
        self.assertEqual(Entity.objects.count(), 6)
        self.assertIsNone(outcome.continuation)

    def test_chunked_import_matches_uninterrupted_import(self):
        path = self.write(site_archive())
        uninterrupted = self.make_pipeline(path, session_id="reference").run()
        Entity.objects.all().delete()
        Term.objects.all().delete()
        self.fetcher.calls.clear()

        outcome, invocations = self.run_to_completion(path, force_chunks=True)

        self.assertGreater(invocations, 1)
        self.assertSiteImported(outcome)
        self.assertEqual(outcome.summary, uninterrupted.summary)
        self.assertEqual(outcome.errors, uninterrupted.errors)
        self.assertEqual(Entity.objects.count(), 6)

    def test_suspended_outcome(self):
        path = self.write(site_archive())
        transport = FakeTransport()

        outcome = self.make_pipeline(path, force_chunks=True, transport=transport).run()

        self.assertEqual(outcome.status, ImportStatus.SUSPENDED)
        self.assertTrue(outcome.is_suspended)
        self.assertEqual(
            outcome.continuation["context"], f"terms::{archive_key(path)}"
        )
        self.assertEqual(outcome.continuation["next_hint"], 0)
        self.assertEqual(outcome.continuation["session_id"], "S1")
        self.assertEqual(outcome.continuation["archive_path"], path)
        self.assertEqual(transport.emitted, [outcome.continuation])
        self.assertEqual(outcome.as_dict()["status"], "suspended")

    def test_rerun_after_completion_does_nothing(self):
        path = self.write(site_archive())
        self.make_pipeline(path).run()

        outcome = self.make_pipeline(path).run()

        self.assertEqual(outcome.status, ImportStatus.SUCCESS)
        self.assertEqual(Entity.objects.count(), 6)
        self.assertEqual(self.fetcher.calls, [PHOTO_URL])

    def test_state_is_persisted(self):
        path = self.write(site_archive())

        self.make_pipeline(path).run()

        state = PipelineState()
        state.restore(CheckpointTracker("S1").restore(STATE_KEY))
        photo = Entity.objects.get(kind="attachment")
        self.assertEqual(state.resolver.lookup(ENTITY, 2002), photo.pk)
        self.assertEqual(list(state.hash_cache.values()), [photo.pk])
        self.assertEqual(len(state.errors), 1)

    def test_existing_menu_is_duplicated(self):
        Term.objects.create(taxonomy="nav_menu", slug="main", name="Main")
        path = self.write(site_archive())

        outcome = self.make_pipeline(path).run()

        self.assertEqual(outcome.status, ImportStatus.SUCCESS)
        duplicate = Term.objects.get(taxonomy="nav_menu", slug="main-duplicate")
        self.assertEqual(duplicate.name, "Main duplicate")
        self.assertEqual(
            set(Entity.objects.filter(kind="nav_menu_item").values_list("menu", flat=True)),
            {duplicate.pk},
        )

    def test_existing_category_is_reused(self):
        news = Term.objects.create(taxonomy="category", slug="news", name="News")
        path = self.write(site_archive())

        self.make_pipeline(path).run()

        self.assertEqual(Term.objects.filter(taxonomy="category").get(), news)
        self.assertIn(news, Entity.objects.get(kind="post").terms.all())

    def test_attachments_disabled(self):
        path = self.write(site_archive())

        outcome = self.make_pipeline(path, fetch_attachments=False).run()

        self.assertEqual(outcome.status, ImportStatus.SUCCESS)
        self.assertEqual(self.fetcher.calls, [])
        self.assertFalse(Entity.objects.filter(kind="attachment").exists())
        self.assertEqual(
            outcome.summary["entities"]["attachment"]["failed"], [2001, 2002]
        )

    def test_menu_item_without_menu(self):
        path = self.write(
            {
                "entities": [
                    {"id": 1, "type": "post", "title": "Post"},
                    {
                        "id": 2,
                        "type": "nav_menu_item",
                        "meta": {"_menu_item_type": "custom"},
                    },
                    {
                        "id": 3,
                        "type": "nav_menu_item",
                        "terms": [{"taxonomy": "nav_menu", "slug": "missing"}],
                        "meta": {"_menu_item_type": "custom"},
                    },
                    {
                        "id": 4,
                        "type": "nav_menu_item",
                        "status": "draft",
                        "terms": [{"taxonomy": "nav_menu", "slug": "missing"}],
                    },
                ]
            }
        )

        outcome = self.make_pipeline(path).run()

        self.assertEqual(outcome.status, ImportStatus.SUCCESS)
        self.assertEqual(
            outcome.summary["entities"]["nav_menu_item"],
            {"succeeded": [], "failed": [2, 3]},
        )
        self.assertEqual(len(outcome.errors), 2)

    def test_auto_drafts_are_ignored(self):
        path = self.write(
            {
                "entities": [
                    {"id": 1, "type": "post", "title": "Post"},
                    {"id": 2, "type": "post", "status": "auto-draft"},
                ]
            }
        )

        outcome = self.make_pipeline(path).run()

        self.assertEqual(outcome.summary["entities"]["post"]["succeeded"], [1])
        self.assertEqual(Entity.objects.count(), 1)

    def test_missing_archive(self):
        outcome = self.make_pipeline("/nonexistent/archive.json").run()

        self.assertEqual(outcome.status, ImportStatus.FAILED)
        self.assertIsInstance(outcome.failure, ArchiveError)
        self.assertEqual(outcome.errors[0]["type"], "archive")

    def test_nothing_imported(self):
        path = self.write({"entities": [{"id": 1, "type": "revision"}]})

        outcome = self.make_pipeline(path).run()

        self.assertEqual(outcome.status, ImportStatus.FAILED)
        self.assertIsNone(outcome.failure)

    def test_claim_tag(self):
        create_import_session("earlier", {"tag": "site-a"})
        create_import_session("unrelated", {"tag": "site-b"})
        path = self.write(site_archive())

        self.make_pipeline(path, tag="site-a").run()

        store = StateStore()
        self.assertEqual(store.get_data("earlier"), {})
        self.assertEqual(store.get("unrelated", "tag"), "site-b")
        self.assertEqual(store.get("S1", "tag"), "site-a")


class AttachmentFailureTests(ImportPipelineTestCase):
    def setUp(self):
        super().setUp()
        self.fetcher = FakeFetcher({PHOTO_URL: {"status_code": 404}})
        self.path = self.write(
            {
                "entities": [
                    {"id": 20, "type": "attachment", "attachment_url": PHOTO_URL},
                    {"id": 30, "type": "post", "title": "Hello"},
                ]
            }
        )

    def test_failure_aborts_import(self):
        outcome = self.make_pipeline(self.path).run()

        self.assertEqual(outcome.status, ImportStatus.FAILED)
        self.assertIsInstance(outcome.failure, FatalImportError)
        self.assertIsInstance(outcome.failure.__cause__, SkippableImportError)
        self.assertIsInstance(
            outcome.failure.__cause__.__cause__, AttachmentImportFailure
        )
        self.assertFalse(Entity.objects.exists())

    def test_failure_is_skipped(self):
        executor = LoopExecutor(
            CheckpointTracker("S1"),
            budget=ExecutionBudget(600, 30),
            skip_on_error=True,
            max_error_attempts=2,
        )

        outcome = self.make_pipeline(self.path, executor=executor).run()

        self.assertEqual(outcome.status, ImportStatus.SUCCESS)
        self.assertEqual(outcome.summary["entities"]["post"]["succeeded"], [30])
        skipped = CheckpointTracker("S1").skipped_items()
        self.assertEqual(len(skipped), 1)
        self.assertEqual(skipped[0]["key"], "20")
        self.assertIn("404", skipped[0]["reason"])
        self.assertEqual(Entity.objects.get().kind, "post")


class InterruptedEntityTests(ImportPipelineTestCase):
    def setUp(self):
        super().setUp()
        self.path = self.write(
            {
                "entities": [
                    {"id": 29, "type": "post", "title": "Earlier"},
                    {
                        "id": 30,
                        "type": "post",
                        "title": "Hello",
                        "comments": [{"id": 1, "content": "First"}],
                        "meta": [{"key": "subtitle", "value": "Greetings"}],
                    },
                ]
            }
        )

    def test_entity_is_imported_again_after_a_crash(self):
        with self.assertRaises(DatabaseError):
            self.make_pipeline(self.path, writer=CommentFailingStore("S1")).run()

        self.assertEqual(Entity.objects.get().title, "Earlier")
        state = PipelineState()
        state.restore(CheckpointTracker("S1").restore(STATE_KEY))
        self.assertIsNotNone(state.resolver.lookup(ENTITY, 29))
        self.assertIsNone(state.resolver.lookup(ENTITY, 30))

        outcome = self.make_pipeline(self.path).run()

        self.assertEqual(outcome.status, ImportStatus.SUCCESS)
        self.assertEqual(outcome.summary["entities"]["post"]["succeeded"], [29, 30])
        self.assertEqual(Entity.objects.count(), 2)
        post = Entity.objects.get(title="Hello")
        self.assertEqual(post.get_meta("subtitle"), "Greetings")
        self.assertEqual(Comment.objects.get().entity, post)


class CommentFailingStore(DjangoContentStore):
    def create_comment(self, store_id, fields):
        raise DatabaseError("Connection lost")


class FakeTransport:
    def __init__(self):
        self.emitted = []

    def emit_continue(self, continuation):
        self.emitted.append(continuation)
