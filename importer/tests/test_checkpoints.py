from django.test import TestCase

from importer.checkpoints import CheckpointTracker, progress_entry
from importer.sessions import StateStore


class CheckpointTrackerTests(TestCase):
    def setUp(self):
        self.tracker = CheckpointTracker("S1")

    def test_progress_entry(self):
        self.assertEqual(progress_entry(3), "key_3")
        self.assertEqual(progress_entry("abc"), "key_abc")

    def test_mark_processed_is_idempotent(self):
        self.assertFalse(self.tracker.is_processed("posts", 1))

        self.tracker.mark_processed("posts", 1)
        self.tracker.mark_processed("posts", 1)

        self.assertTrue(self.tracker.is_processed("posts", 1))
        self.assertEqual(StateStore().get("S1", "loop.progress.posts"), ["key_1"])

    def test_contexts_do_not_collide(self):
        self.tracker.mark_processed("terms::abc", 1)

        self.assertFalse(self.tracker.is_processed("entities::abc", 1))
        self.assertFalse(CheckpointTracker("S2").is_processed("terms::abc", 1))

    def test_context_with_dots(self):
        self.tracker.mark_processed("archive.json", 1)

        self.assertTrue(self.tracker.is_processed("archive.json", 1))
        self.assertEqual(
            StateStore().get("S1", "loop.progress.archive%2Ejson"), ["key_1"]
        )

    def test_result(self):
        self.assertEqual(self.tracker.get_result("posts", {}), {})

        self.tracker.set_result("posts", {"succeeded": [1, 2]})

        self.assertEqual(self.tracker.get_result("posts"), {"succeeded": [1, 2]})

    def test_error_attempts(self):
        self.assertEqual(self.tracker.error_attempts("posts", "a.b"), 0)

        self.assertEqual(self.tracker.increment_error_attempts("posts", "a.b"), 1)
        self.assertEqual(self.tracker.increment_error_attempts("posts", "a.b"), 2)
        self.assertEqual(self.tracker.error_attempts("posts", "a.b"), 2)
        self.assertEqual(self.tracker.error_attempts("pages", "a.b"), 0)

    def test_skipped_items(self):
        self.tracker.mark_skipped("posts", 4, "Broken")
        self.tracker.mark_skipped("pages", 5, "Also broken")

        self.assertTrue(self.tracker.is_skipped("posts", 4))
        self.assertTrue(self.tracker.is_skipped("posts", "4"))
        self.assertFalse(self.tracker.is_skipped("pages", 4))

        records = self.tracker.skipped_items()
        self.assertEqual(len(records), 2)
        self.assertEqual(records[0]["context"], "posts")
        self.assertEqual(records[0]["key"], 4)
        self.assertEqual(records[0]["reason"], "Broken")
        self.assertIn("timestamp", records[0])

    def test_skipping_does_not_mark_processed(self):
        self.tracker.mark_skipped("posts", 4, "Broken")

        self.assertFalse(self.tracker.is_processed("posts", 4))

    def test_consecutive_skips_are_session_wide(self):
        self.assertEqual(self.tracker.increment_consecutive_skips(), 1)
        self.assertEqual(self.tracker.increment_consecutive_skips(), 2)

        self.assertEqual(CheckpointTracker("S1").consecutive_skips(), 2)
        self.assertEqual(CheckpointTracker("S2").consecutive_skips(), 0)

        self.tracker.reset_consecutive_skips()
        self.assertEqual(self.tracker.consecutive_skips(), 0)

    def test_steps(self):
        self.assertFalse(self.tracker.is_step_complete("backfill_urls"))

        self.tracker.mark_step_complete("backfill_urls")

        self.assertTrue(self.tracker.is_step_complete("backfill_urls"))
        self.assertFalse(self.tracker.is_step_complete("remap_featured"))

    def test_backup_and_restore(self):
        self.assertIsNone(self.tracker.restore("pipeline"))

        self.tracker.backup("pipeline", {"remap": {"entity": {"1": 10}}})

        self.assertEqual(
            self.tracker.restore("pipeline"), {"remap": {"entity": {"1": 10}}}
        )
