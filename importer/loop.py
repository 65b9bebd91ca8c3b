"""
Chunked, checkpointed iteration over a collection of work items.

A loop run is identified by its execution context. For every item the
executor consults the CheckpointTracker first, so an item committed by an
earlier invocation is never executed again. Committing an item also snapshots
the registered resumable state, so working state changed by an item which
failed half way is never persisted. After each committed item the executor
may suspend by raising ImportSuspended, which the orchestrator turns into a
suspended outcome. A
later invocation with the same context continues after the last committed
item.
"""

import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from logging import getLogger
from typing import Any, Callable, Iterable, Optional, Protocol

from django.conf import settings
from flags.state import flag_enabled

from configuration.utils import configuration_value
from importer.checkpoints import CheckpointTracker
from importer.exceptions import (
    FatalImportError,
    ImportSuspended,
    SkippableImportError,
    TooManySkippedItems,
)
from siteport.logging import SiteportLogger

logger = getLogger(__name__)
structured_logger = SiteportLogger.get_logger(__name__)

MAX_ATTEMPTS_REASON = "Max error attempts reached"


class _SoftContinue:
    def __repr__(self):
        return "SOFT_CONTINUE"


# Returned by a per-item operation that has nothing to do for an item. The item
# is neither marked processed nor does it change the accumulated result.
SOFT_CONTINUE = _SoftContinue()


def build_context(*parts: Any) -> str:
    """
    Join a call site name and its discriminators into an execution context
    """
    return "::".join(str(part) for part in parts if part not in (None, ""))


@dataclass
class Continuation:
    """
    Where a suspended import will pick up again
    """

    context: str
    next_hint: Any
    name: str = ""
    extra: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return asdict(self)


class Resumable(Protocol):
    """
    Working state which has to survive a suspension
    """

    def dump(self) -> dict: ...

    def restore(self, data: dict) -> None: ...


class ExecutionBudget:
    """
    Wall-clock budget of one invocation.

    ``should_exit`` turns true once less than ``margin`` seconds of the
    budget remain.
    """

    def __init__(self, seconds: Optional[float] = None, margin: Optional[float] = None):
        if seconds is None:
            seconds = settings.IMPORTER["EXECUTION_BUDGET_SECONDS"]
        if margin is None:
            margin = settings.IMPORTER["EXECUTION_SAFETY_MARGIN_SECONDS"]
        self.seconds = seconds
        self.margin = margin
        self.started = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def remaining(self) -> float:
        return self.seconds - self.elapsed()

    def should_exit(self) -> bool:
        return self.remaining() <= self.margin


def _as_pairs(items: Any) -> list:
    if isinstance(items, Mapping):
        return list(items.items())
    if isinstance(items, (list, tuple)):
        return list(enumerate(items))
    raise TypeError("Loop items must be a mapping or a sequence")


class LoopExecutor:
    """
    Drives per-item operations for one import session.

    One executor is created per invocation. ``skip_on_error`` defaults to the
    ``IMPORT_SKIP_ON_ERROR`` flag, ``max_error_attempts`` to the
    ``import_max_error_attempts`` configuration value and
    ``max_consecutive_skips`` to ``import_max_consecutive_skips``.
    """

    def __init__(
        self,
        tracker: CheckpointTracker,
        *,
        budget: Optional[ExecutionBudget] = None,
        skip_on_error: Optional[bool] = None,
        max_error_attempts: Optional[int] = None,
        max_consecutive_skips: Optional[int] = None,
        name: str = "",
    ):
        self.tracker = tracker
        self.budget = budget or ExecutionBudget()
        if skip_on_error is None:
            skip_on_error = flag_enabled("IMPORT_SKIP_ON_ERROR")
        self.skip_on_error = skip_on_error
        if max_error_attempts is None:
            max_error_attempts = configuration_value("import_max_error_attempts", 2)
        self.max_error_attempts = max_error_attempts
        if max_consecutive_skips is None:
            max_consecutive_skips = configuration_value(
                "import_max_consecutive_skips", 5
            )
        self.max_consecutive_skips = max_consecutive_skips
        self.name = name
        self._restored_state_keys = set()

    def run(
        self,
        items: Iterable,
        operation: Callable[[Any, Any, Any], Any],
        context: str,
        *,
        initial: Any = None,
        split_to_chunks: bool = False,
        resumable: Optional[Resumable] = None,
        state_key: Optional[str] = None,
    ) -> Any:
        """
        Run ``operation(key, value, result)`` for every uncommitted item.

        ``items`` is a mapping or a sequence (keyed by position). The value an
        operation returns becomes the accumulated result passed to the next
        item and is persisted with the item's checkpoint.

        ``resumable`` is snapshotted under ``state_key`` (the context by
        default) with every committed item, and restored from there the first
        time this executor runs a loop with that key.

        Raises:
            ImportSuspended: At a chunk boundary. Not an error.
            FatalImportError: When a skippable failure can't be skipped.
        """
        if not callable(operation):
            raise TypeError("The loop operation is not callable")

        pairs = _as_pairs(items)
        last_index = len(pairs) - 1
        state_key = state_key or context

        result = self.tracker.get_result(context, initial if initial is not None else {})

        if resumable is not None:
            self.restore_state(resumable, state_key)

        for index, (key, value) in enumerate(pairs):
            if self.tracker.is_processed(context, key):
                continue

            if self.skip_on_error and self._skip_exhausted(context, key):
                continue

            try:
                outcome = operation(key, value, result)
            except ImportSuspended:
                raise
            except SkippableImportError as exc:
                if not self.skip_on_error:
                    raise FatalImportError(exc.message) from exc
                attempts = self.tracker.increment_error_attempts(context, key)
                self.tracker.mark_skipped(context, key, exc.message)
                structured_logger.warning(
                    "Item failed and was skipped.",
                    event_code="import_item_skipped",
                    reason=exc.message,
                    reason_code="item_failed",
                    context=context,
                    item_key=str(key),
                    item_type=exc.item_type,
                    attempts=attempts,
                    session_id=self.tracker.session_id,
                )
                continue
            except Exception:
                if self.skip_on_error:
                    self.tracker.increment_error_attempts(context, key)
                raise

            if outcome is SOFT_CONTINUE:
                continue

            result = outcome
            if self.tracker.consecutive_skips():
                self.tracker.reset_consecutive_skips()

            self.tracker.mark_processed(context, key)
            self.tracker.set_result(context, result)
            if resumable is not None:
                self.tracker.backup(state_key, resumable.dump())

            if index != last_index and (split_to_chunks or self.budget.should_exit()):
                self._suspend(context, key)

        return result

    def restore_state(self, resumable: Resumable, state_key: str) -> bool:
        """
        Load the snapshot saved under ``state_key`` into ``resumable``.

        Only the first call per key has any effect, so state built up by
        earlier loops of this invocation is never overwritten.
        """
        if state_key in self._restored_state_keys:
            return False
        self._restored_state_keys.add(state_key)

        saved_state = self.tracker.restore(state_key)
        if not saved_state:
            return False
        resumable.restore(saved_state)
        return True

    def _skip_exhausted(self, context: str, key: Any) -> bool:
        """
        Permanently skip an item which has failed too often

        The item is committed as processed so that it is skipped, and counted
        against the consecutive-skip counter, exactly once.

        Raises:
            TooManySkippedItems: When too many items in a row were skipped.
        """
        attempts = self.tracker.error_attempts(context, key)
        if attempts < self.max_error_attempts:
            return False

        self.tracker.mark_skipped(context, key, MAX_ATTEMPTS_REASON)
        skipped_in_a_row = self.tracker.increment_consecutive_skips()
        self.tracker.mark_processed(context, key)
        structured_logger.warning(
            "Item reached the maximum number of attempts.",
            event_code="import_item_abandoned",
            reason=MAX_ATTEMPTS_REASON,
            reason_code="max_attempts",
            context=context,
            item_key=str(key),
            attempts=attempts,
            session_id=self.tracker.session_id,
        )
        if self.max_consecutive_skips and skipped_in_a_row >= self.max_consecutive_skips:
            raise TooManySkippedItems(
                f"{skipped_in_a_row} items in a row were skipped, "
                f"the last one was {key} in {context}"
            )
        return True

    def _suspend(self, context: str, key: Any):
        continuation = Continuation(context=context, next_hint=key, name=self.name)
        logger.info(
            "Suspending %s after item %s in %s", self.name or "loop", key, context
        )
        raise ImportSuspended(continuation)
