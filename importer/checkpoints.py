import time
from typing import Any, Optional

from importer.sessions import StateStore, path_segment


def progress_entry(key: Any) -> str:
    return f"key_{key}"


class CheckpointTracker:
    """
    Per-session checkpoint bookkeeping on top of a StateStore.

    Everything is scoped by an execution context, a string naming one loop
    call site and its discriminator, except the skip log and the
    consecutive-skip counter, which are shared by the whole session.

    Layout inside the session document::

        loop.progress.<context>                 ["key_1", "key_2", ...]
        loop.result.<context>                   accumulated loop result
        loop.error_attempts.<context>.key_<k>   failure count
        loop.backup_attributes.<context>        resumable state snapshot
        loop.skipped_items                      [{context, key, reason, timestamp}]
        loop.consecutive_skips                  int
        progress.<step>                         True once a one-shot step ran
    """

    def __init__(self, session_id: str, store: Optional[StateStore] = None):
        self.session_id = session_id
        self.store = store or StateStore()

    def _context_path(self, prefix: str, context: str) -> str:
        return f"{prefix}.{path_segment(context)}"

    def _attempts_path(self, context: str, key: Any) -> str:
        return "%s.%s" % (
            self._context_path("loop.error_attempts", context),
            progress_entry(path_segment(key)),
        )

    def is_processed(self, context: str, key: Any) -> bool:
        progress = self.store.get(
            self.session_id, self._context_path("loop.progress", context), []
        )
        return progress_entry(key) in progress

    def mark_processed(self, context: str, key: Any) -> bool:
        if self.is_processed(context, key):
            return True
        return self.store.append(
            self.session_id,
            self._context_path("loop.progress", context),
            progress_entry(key),
        )

    def get_result(self, context: str, default: Any = None) -> Any:
        return self.store.get(
            self.session_id, self._context_path("loop.result", context), default
        )

    def set_result(self, context: str, result: Any) -> bool:
        return self.store.set(
            self.session_id, self._context_path("loop.result", context), result
        )

    def error_attempts(self, context: str, key: Any) -> int:
        return int(self.store.get(self.session_id, self._attempts_path(context, key), 0))

    def increment_error_attempts(self, context: str, key: Any) -> int:
        count = self.error_attempts(context, key) + 1
        self.store.set(self.session_id, self._attempts_path(context, key), count)
        return count

    def mark_skipped(self, context: str, key: Any, reason: str = "") -> bool:
        record = {
            "context": context,
            "key": key,
            "reason": reason,
            "timestamp": int(time.time()),
        }
        return self.store.append(self.session_id, "loop.skipped_items", record)

    def is_skipped(self, context: str, key: Any) -> bool:
        return any(
            record.get("context") == context and str(record.get("key")) == str(key)
            for record in self.skipped_items()
        )

    def skipped_items(self) -> list:
        return self.store.get(self.session_id, "loop.skipped_items", [])

    def consecutive_skips(self) -> int:
        return int(self.store.get(self.session_id, "loop.consecutive_skips", 0))

    def increment_consecutive_skips(self) -> int:
        count = self.consecutive_skips() + 1
        self.store.set(self.session_id, "loop.consecutive_skips", count)
        return count

    def reset_consecutive_skips(self) -> bool:
        return self.store.set(self.session_id, "loop.consecutive_skips", 0)

    def is_step_complete(self, step: str) -> bool:
        return bool(
            self.store.get(self.session_id, f"progress.{path_segment(step)}", False)
        )

    def mark_step_complete(self, step: str) -> bool:
        return self.store.set(self.session_id, f"progress.{path_segment(step)}", True)

    def backup(self, context: str, state: dict) -> bool:
        return self.store.set(
            self.session_id, self._context_path("loop.backup_attributes", context), state
        )

    def restore(self, context: str) -> Optional[dict]:
        return self.store.get(
            self.session_id, self._context_path("loop.backup_attributes", context)
        )
