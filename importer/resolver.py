import re
from logging import getLogger
from typing import Any, Callable, Iterable, Optional

logger = getLogger(__name__)

ENTITY = "entity"
TERM = "term"
MENU_ITEM = "menu_item"

FEATURED_IMAGE_META_KEY = "_thumbnail_id"


def _key(archive_id: Any) -> str:
    # Tables are persisted as JSON, which only has string keys
    return str(archive_id)


class ReferenceResolver:
    """
    Forward-reference bookkeeping for the two-pass import.

    While entities are created, ``remap`` maps archive ids to store ids per
    kind and ``orphans`` remembers children whose parent hadn't been created
    yet. Once every kind has been created, the backfill methods link the
    orphans, rewrite archive URLs in content and point featured images at
    their imported attachments.
    """

    def __init__(self):
        self.remap: dict[str, dict[str, Any]] = {}
        self.orphans: dict[str, dict[str, str]] = {}
        self.urls: dict[str, str] = {}
        self.featured: dict[str, str] = {}

    def register(self, kind: str, archive_id: Any, store_id: Any) -> None:
        self.remap.setdefault(kind, {})[_key(archive_id)] = store_id

    def lookup(self, kind: str, archive_id: Any) -> Optional[Any]:
        if archive_id in (None, "", 0, "0"):
            return None
        return self.remap.get(kind, {}).get(_key(archive_id))

    def is_registered(self, kind: str, archive_id: Any) -> bool:
        return self.lookup(kind, archive_id) is not None

    def resolve_parent(
        self, kind: str, child_archive_id: Any, parent_archive_id: Any
    ) -> Optional[Any]:
        """
        Return the parent's store id, or record the child as an orphan

        A child without a parent reference is neither resolved nor orphaned.
        """
        if parent_archive_id in (None, "", 0, "0"):
            return None

        parent_store_id = self.lookup(kind, parent_archive_id)
        if parent_store_id is None:
            self.orphans.setdefault(kind, {})[_key(child_archive_id)] = _key(
                parent_archive_id
            )
        return parent_store_id

    def backfill_parents(self, kind: str, set_parent: Callable[[Any, Any], Any]) -> int:
        """
        Link orphans of ``kind`` whose parent now exists.

        Orphans whose parent was never created stay top-level. Returns the
        number of links made.
        """
        linked = 0
        for child_archive_id, parent_archive_id in self.orphans.get(kind, {}).items():
            child_store_id = self.lookup(kind, child_archive_id)
            parent_store_id = self.lookup(kind, parent_archive_id)
            if child_store_id is None or parent_store_id is None:
                logger.info(
                    "Parent %s of %s %s was never imported",
                    parent_archive_id,
                    kind,
                    child_archive_id,
                )
                continue
            set_parent(child_store_id, parent_store_id)
            linked += 1
        self.orphans.pop(kind, None)
        return linked

    def add_url(self, source_url: str, store_url: str) -> None:
        if source_url and store_url and source_url != store_url:
            self.urls[source_url] = store_url

    def ordered_url_remap(self) -> list[tuple[str, str]]:
        """
        URL pairs, longest source first, so a URL is always replaced before
        any shorter URL which is a prefix of it
        """
        return sorted(self.urls.items(), key=lambda pair: len(pair[0]), reverse=True)

    def url_pattern(self) -> Optional[re.Pattern]:
        if not self.urls:
            return None
        return re.compile(
            "|".join(re.escape(source) for source, _ in self.ordered_url_remap())
        )

    def apply_url_remap(self, text: str, pattern: Optional[re.Pattern] = None) -> str:
        """
        Replace every archive URL in ``text`` with its store URL

        The alternation is tried longest first at each position and the text
        is scanned once, so replaced URLs are never rewritten again.
        """
        if not text:
            return text
        pattern = pattern or self.url_pattern()
        if pattern is None:
            return text
        return pattern.sub(lambda match: self.urls[match.group(0)], text)

    def backfill_urls(
        self, store_ids: Iterable[Any], rewrite: Callable[[Iterable[Any], Callable], int]
    ) -> int:
        """
        Rewrite archive URLs in the content of the given entities.

        ``rewrite(store_ids, transform)`` applies ``transform`` to every
        content field and returns the number of entities changed.
        """
        pattern = self.url_pattern()
        if pattern is None:
            return 0
        return rewrite(
            list(store_ids), lambda text: self.apply_url_remap(text, pattern)
        )

    def record_featured(self, store_id: Any, archive_attachment_id: Any) -> None:
        self.featured[_key(store_id)] = _key(archive_attachment_id)

    def remap_featured(self, update_meta: Callable[[Any, str, Any], Any]) -> int:
        """
        Point featured images at the store ids of their imported attachments
        """
        updated = 0
        for store_id, archive_attachment_id in self.featured.items():
            new_id = self.lookup(ENTITY, archive_attachment_id)
            if new_id is None or _key(new_id) == archive_attachment_id:
                continue
            update_meta(int(store_id), FEATURED_IMAGE_META_KEY, new_id)
            updated += 1
        return updated

    def dump(self) -> dict:
        return {
            "remap": self.remap,
            "orphans": self.orphans,
            "urls": self.urls,
            "featured": self.featured,
        }

    def restore(self, data: dict) -> None:
        for name in ("remap", "orphans", "urls", "featured"):
            values = dict(data.get(name) or {})
            table = getattr(self, name)
            table.clear()
            table.update(values)
