"""
Durable, session-scoped state for imports.

Each session is one JSON document addressed by session id. Values inside the
document are addressed with dot-separated paths such as
``loop.progress.posts``. Writes never merge: ``set`` builds the mapping nodes
along the path, assigns the leaf and rewrites the whole document, leaving
sibling keys untouched.

Sessions written by older releases live in a single combined row
(``LegacySessionStore``) keyed by session id. That row is only read as a
fallback; the first write moves the session to its own ``ImportSession`` row.
"""

import time
from datetime import timedelta
from logging import getLogger
from typing import Any, Optional
from urllib.parse import quote

from django.conf import settings
from django.utils import timezone

from importer.models import ImportSession, LegacySessionStore

logger = getLogger(__name__)

LEGACY_STORE_NAME = "import_sessions"
UPDATED_AT_KEY = "_updated_at"
TAG_KEY = "tag"


def path_segment(key: Any) -> str:
    """
    Encode an arbitrary key so it is a single path segment

    Dots and percent signs are escaped so that a key like ``"a.b"`` can't be
    split into two segments.
    """
    return quote(str(key), safe="").replace(".", "%2E")


def _legacy_sessions() -> dict:
    store = LegacySessionStore.objects.filter(name=LEGACY_STORE_NAME).first()
    if store is None or not isinstance(store.data, dict):
        return {}
    return store.data


class StateStore:
    def get_data(self, session_id: str) -> dict:
        """
        Return the whole document for a session, or an empty dict.

        The session's own row takes precedence over the legacy combined row.
        """
        if not session_id:
            return {}

        session = ImportSession.objects.filter(session_id=session_id).first()
        if session is not None and isinstance(session.data, dict):
            return session.data

        legacy_data = _legacy_sessions().get(session_id)
        if isinstance(legacy_data, dict):
            return legacy_data

        return {}

    def save(self, session_id: str, data: dict) -> bool:
        """
        Overwrite the document for a session
        """
        if not session_id or not isinstance(data, dict):
            return False

        data[UPDATED_AT_KEY] = int(time.time())
        ImportSession.objects.update_or_create(
            session_id=session_id, defaults={"data": data}
        )
        return True

    def get(self, session_id: str, path: str, default: Any = None) -> Any:
        data = self.get_data(session_id)
        for key in path.split("."):
            if not isinstance(data, dict) or data.get(key) is None:
                return default
            data = data[key]
        return data

    def set(self, session_id: str, path: str, value: Any) -> bool:
        if not session_id:
            return False

        data = self.get_data(session_id)
        keys = path.split(".")
        current = data
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

        return self.save(session_id, data)

    def append(self, session_id: str, path: str, value: Any) -> bool:
        current = self.get(session_id, path, [])
        if not isinstance(current, list):
            current = []
        current.append(value)
        return self.set(session_id, path, current)

    def delete(self, session_id: str) -> bool:
        """
        Remove a session from both the session table and the legacy row.

        Returns True if anything was deleted.
        """
        if not session_id:
            return False

        deleted, _ = ImportSession.objects.filter(session_id=session_id).delete()
        deleted = bool(deleted)

        store = LegacySessionStore.objects.filter(name=LEGACY_STORE_NAME).first()
        if store is not None and session_id in store.data:
            del store.data[session_id]
            store.save(update_fields=["data"])
            deleted = True

        if deleted:
            logger.info("Deleted import session %s", session_id)
        return deleted

    def get_all_data(self) -> dict:
        """
        Every known session, keyed by session id.

        Only meant for housekeeping. A session present in both stores is
        reported with its new-style data.
        """
        all_sessions = {
            session.session_id: session.data
            for session in ImportSession.objects.all()
            if isinstance(session.data, dict)
        }
        for session_id, session_data in _legacy_sessions().items():
            if session_id not in all_sessions and isinstance(session_data, dict):
                all_sessions[session_id] = session_data
        return all_sessions

    def delete_by_tag(self, tag: str, current_session_id: str) -> list:
        """
        Delete every session carrying ``tag`` except the current one

        Repeated imports of the same archive share a tag, so this discards the
        abandoned state of earlier attempts.
        """
        if not tag or not current_session_id:
            return []

        removed_session_ids = []
        for session_id, session_data in self.get_all_data().items():
            if session_id == current_session_id:
                continue
            if session_data.get(TAG_KEY) == tag:
                self.delete(session_id)
                removed_session_ids.append(session_id)
        return removed_session_ids

    def cleanup_expired(self, max_age_days: Optional[int] = None) -> dict:
        """
        Delete sessions which haven't been written for ``max_age_days``.

        Does nothing unless ``IMPORTER["SESSION_EXPIRY_ENABLED"]`` is set.
        Sessions without an update timestamp count as expired.
        """
        if not settings.IMPORTER.get("SESSION_EXPIRY_ENABLED", False):
            return {"removed_count": 0, "removed_ids": []}

        if max_age_days is None:
            max_age_days = settings.IMPORTER.get("SESSION_MAX_AGE_DAYS", 7)
        threshold = (timezone.now() - timedelta(days=max_age_days)).timestamp()

        removed_session_ids = []
        for session_id, session_data in self.get_all_data().items():
            updated_at = session_data.get(UPDATED_AT_KEY) or 0
            if int(updated_at) < threshold:
                self.delete(session_id)
                removed_session_ids.append(session_id)

        return {
            "removed_count": len(removed_session_ids),
            "removed_ids": removed_session_ids,
        }
