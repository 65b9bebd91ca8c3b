"""
Orchestration of one archive import.

An import runs in passes over the parsed archive:

1. Terms, so that entities can be assigned to them.
2. Entities, in archive order. Attachments are fetched here, and any parent
   which hasn't been created yet is remembered as an orphan.
3. One-shot backfill steps: linking orphans to their parents, rewriting
   archive URLs in the imported content and remapping featured images.

The term and entity passes run through a LoopExecutor and may suspend at any
item boundary. Everything a later pass needs from an earlier one (the id and
URL remap tables, the attachment hash cache, duplicated menu slugs and the
error list) is kept in a PipelineState which is persisted with the session, so
a resumed invocation continues with exactly the state the suspended one had.
"""

import hashlib
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Optional

from django.db import models, transaction
from flags.state import flag_enabled

from importer.archive import JSONArchiveReader
from importer.attachments import (
    SOURCE_HASH_META_KEY,
    AttachmentMaterializer,
    RequestsFetcher,
)
from importer.checkpoints import CheckpointTracker
from importer.exceptions import (
    ArchiveError,
    AttachmentImportFailure,
    ContentStoreError,
    FatalImportError,
    ImportSuspended,
    SkippableImportError,
)
from importer.interfaces import (
    ArchiveReader,
    ContentStoreWriter,
    ContinuationTransport,
    RemoteFetcher,
)
from importer.loop import (
    SOFT_CONTINUE,
    Continuation,
    ExecutionBudget,
    LoopExecutor,
    build_context,
)
from importer.resolver import (
    ENTITY,
    FEATURED_IMAGE_META_KEY,
    MENU_ITEM,
    TERM,
    ReferenceResolver,
)
from importer.sessions import TAG_KEY, StateStore
from importer.store import DjangoContentStore
from siteport.logging import SiteportLogger

logger = getLogger(__name__)
structured_logger = SiteportLogger.get_logger(__name__)

STATE_KEY = "pipeline"

ENTITY_TYPES = ("post", "page", "attachment", "nav_menu_item")
NAV_MENU_TAXONOMY = "nav_menu"
MENU_ITEM_TYPE = "nav_menu_item"

# Meta which describes the source site's files and locks rather than content
SKIPPED_META_KEYS = (
    "_attached_file",
    "_attachment_metadata",
    "_edit_lock",
    SOURCE_HASH_META_KEY,
)

MENU_ITEM_META_KEYS = (
    "_menu_item_type",
    "_menu_item_object",
    "_menu_item_object_id",
    "_menu_item_menu_item_parent",
    "_menu_item_url",
    "_menu_item_target",
    "_menu_item_classes",
    "_menu_item_xfn",
)
MENU_ITEM_PARENT_META_KEY = "_menu_item_menu_item_parent"

BACKFILL_STEPS = ("backfill_parents", "backfill_urls", "remap_featured")


class ImportStatus(models.TextChoices):
    SUCCESS = "success"
    FAILED = "failed"
    SUSPENDED = "suspended"


@dataclass
class ImportOutcome:
    status: str
    summary: dict = field(default_factory=dict)
    errors: list = field(default_factory=list)
    continuation: Optional[dict] = None
    failure: Optional[Exception] = None

    @property
    def is_suspended(self) -> bool:
        return self.status == ImportStatus.SUSPENDED

    @property
    def is_success(self) -> bool:
        return self.status == ImportStatus.SUCCESS

    def as_dict(self) -> dict:
        return {
            "status": str(self.status),
            "summary": self.summary,
            "errors": self.errors,
            "continuation": self.continuation,
        }


class PipelineState:
    """
    Working state shared by every pass of one import.

    ``restore`` updates the existing containers in place, so collaborators
    holding a reference to one of them (the materializer's hash cache, for
    instance) keep seeing the current data.
    """

    def __init__(self):
        self.resolver = ReferenceResolver()
        self.hash_cache = {}
        self.menu_slugs = {}
        self.errors = []

    def dump(self) -> dict:
        return {
            "resolver": self.resolver.dump(),
            "hash_cache": self.hash_cache,
            "menu_slugs": self.menu_slugs,
            "errors": self.errors,
        }

    def restore(self, data: dict) -> None:
        self.resolver.restore(data.get("resolver") or {})
        for name in ("hash_cache", "menu_slugs"):
            values = dict(data.get(name) or {})
            table = getattr(self, name)
            table.clear()
            table.update(values)
        self.errors[:] = list(data.get("errors") or [])


class NullTransport:
    """
    Continuation transport for imports which nobody will resume automatically
    """

    def emit_continue(self, continuation: dict) -> None:
        logger.info("Import suspended at %s", continuation.get("context"))


def archive_key(archive_path: str) -> str:
    return hashlib.md5(archive_path.encode("utf-8"), usedforsecurity=False).hexdigest()


def _meta_pairs(meta: Any) -> list:
    if isinstance(meta, dict):
        return list(meta.items())
    return [(item.get("key"), item.get("value")) for item in meta or []]


def _numeric(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _has_successes(result: dict) -> bool:
    return any(counts.get("succeeded") for counts in result.values())


class ImportPipeline:
    """
    Imports one archive within one session.

    ``run`` may be called any number of times for the same session; each call
    continues where the previous one stopped.
    """

    def __init__(
        self,
        session_id: str,
        archive_path: str,
        *,
        reader: Optional[ArchiveReader] = None,
        writer: Optional[ContentStoreWriter] = None,
        fetcher: Optional[RemoteFetcher] = None,
        transport: Optional[ContinuationTransport] = None,
        store: Optional[StateStore] = None,
        fetch_attachments: bool = True,
        force_chunks: Optional[bool] = None,
        tag: str = "",
        budget: Optional[ExecutionBudget] = None,
        executor: Optional[LoopExecutor] = None,
        name: str = "import",
    ):
        self.session_id = session_id
        self.archive_path = archive_path
        self.reader = reader or JSONArchiveReader()
        self.writer = writer or DjangoContentStore(session_id)
        self.fetcher = fetcher or RequestsFetcher()
        self.transport = transport or NullTransport()
        self.store = store or StateStore()
        self.fetch_attachments = fetch_attachments
        if force_chunks is None:
            force_chunks = flag_enabled("IMPORT_FORCE_CHUNKS")
        self.force_chunks = force_chunks
        self.tag = tag
        self.budget = budget
        self.executor = executor
        self.name = name

        self.tracker = CheckpointTracker(session_id, self.store)
        self.state = PipelineState()
        self.metadata = {}
        self.materializer = None

    @property
    def resolver(self) -> ReferenceResolver:
        return self.state.resolver

    def run(self) -> ImportOutcome:
        if self.executor is None:
            self.executor = LoopExecutor(
                self.tracker, budget=self.budget or ExecutionBudget(), name=self.name
            )
        self.executor.restore_state(self.state, STATE_KEY)
        self.claim_tag()

        try:
            archive = self.reader.parse(self.archive_path)
        except ArchiveError as exc:
            logger.error("Unable to read archive %s: %s", self.archive_path, exc)
            self.record_error("archive", self.archive_path, str(exc))
            return self.outcome(ImportStatus.FAILED, failure=exc)

        self.metadata = archive.metadata
        self.materializer = AttachmentMaterializer(
            self.writer,
            self.resolver,
            self.fetcher,
            hash_cache=self.state.hash_cache,
            base_url=self.metadata.get("base_url", ""),
        )

        key = archive_key(self.archive_path)
        try:
            terms_result = self.executor.run(
                archive.terms,
                self.import_term,
                build_context("terms", key),
                split_to_chunks=self.force_chunks,
                resumable=self.state,
                state_key=STATE_KEY,
            )
            entities_result = self.executor.run(
                {str(entity["id"]): entity for entity in archive.entities},
                self.import_entity,
                build_context("entities", key),
                split_to_chunks=self.force_chunks,
                resumable=self.state,
                state_key=STATE_KEY,
            )
            self.backfill()
        except ImportSuspended as suspended:
            continuation = self.continuation(suspended.continuation)
            self.transport.emit_continue(continuation)
            return self.outcome(ImportStatus.SUSPENDED, continuation=continuation)
        except FatalImportError as exc:
            logger.error("Import of %s failed: %s", self.archive_path, exc)
            self.record_error("import", self.archive_path, str(exc))
            return self.outcome(ImportStatus.FAILED, failure=exc)

        summary = {"terms": terms_result, "entities": entities_result}
        if _has_successes(terms_result) or _has_successes(entities_result):
            status = ImportStatus.SUCCESS
        else:
            status = ImportStatus.FAILED

        structured_logger.info(
            "Archive import finished.",
            event_code="import_finished",
            session_id=self.session_id,
            archive=self.archive_path,
            status=str(status),
            error_count=len(self.state.errors),
        )
        return self.outcome(status, summary=summary)

    def claim_tag(self) -> None:
        """
        Tag a new session and discard earlier sessions with the same tag
        """
        if not self.tag or self.store.get(self.session_id, TAG_KEY):
            return
        self.store.set(self.session_id, TAG_KEY, self.tag)
        removed = self.store.delete_by_tag(self.tag, self.session_id)
        if removed:
            logger.info(
                "Discarded %s earlier sessions tagged %s", len(removed), self.tag
            )

    def continuation(self, continuation: Continuation) -> dict:
        data = continuation.as_dict()
        data["session_id"] = self.session_id
        data["archive_path"] = self.archive_path
        return data

    def outcome(self, status, *, summary=None, continuation=None, failure=None):
        return ImportOutcome(
            status=status,
            summary=summary or {},
            errors=list(self.state.errors),
            continuation=continuation,
            failure=failure,
        )

    def record_error(self, item_type: str, item_id: Any, message: str) -> None:
        self.state.errors.append(
            {"type": item_type, "id": str(item_id), "message": message}
        )

    # Terms

    def import_term(self, key: Any, term: dict, result: dict) -> dict:
        taxonomy = term["taxonomy"]
        term_id = term.get("id") or f"{taxonomy}:{term['slug']}"
        counts = result.setdefault(taxonomy, {"succeeded": [], "failed": []})

        fields = dict(term)
        existing = self.writer.term_exists(taxonomy, term["slug"])
        if existing is not None:
            if taxonomy != NAV_MENU_TAXONOMY:
                self.resolver.register(TERM, term_id, existing)
                counts["succeeded"].append(term_id)
                return result
            fields.update(self.duplicate_menu_fields(term))

        parent_slug = term.get("parent")
        fields["parent"] = (
            self.writer.term_exists(taxonomy, parent_slug) if parent_slug else None
        )

        try:
            store_id = self.writer.create_term(taxonomy, fields)
        except ContentStoreError as exc:
            counts["failed"].append(term_id)
            self.record_error(taxonomy, term_id, str(exc))
            return result

        for meta_key, meta_value in _meta_pairs(term.get("meta")):
            if meta_key:
                self.writer.attach_term_meta(store_id, meta_key, meta_value)

        self.resolver.register(TERM, term_id, store_id)
        counts["succeeded"].append(term_id)
        return result

    def duplicate_menu_fields(self, term: dict) -> dict:
        """
        Pick a free ``-duplicate`` slug for a navigation menu which exists
        already, and send the archive's menu items to the duplicate
        """
        slug = f"{term['slug']}-duplicate"
        name = f"{term.get('name') or term['slug']} duplicate"
        while self.writer.term_exists(NAV_MENU_TAXONOMY, slug) is not None:
            slug += "-duplicate"
            name += " duplicate"
        self.state.menu_slugs[term["slug"]] = slug
        return {"slug": slug, "name": name}

    # Entities

    def import_entity(self, key: Any, entity: dict, result: dict) -> Any:
        entity_type = entity["type"]
        archive_id = entity["id"]

        if entity_type not in ENTITY_TYPES:
            counts = result.setdefault(entity_type, {"succeeded": [], "failed": []})
            counts["failed"].append(archive_id)
            self.record_error(
                entity_type, archive_id, f"Unknown entity type {entity_type}"
            )
            return result

        remap_kind = MENU_ITEM if entity_type == MENU_ITEM_TYPE else ENTITY
        if self.resolver.is_registered(remap_kind, archive_id):
            return SOFT_CONTINUE

        if entity.get("status") == "auto-draft":
            return result

        if entity_type == MENU_ITEM_TYPE:
            return self.import_menu_item(entity, result)

        counts = result.setdefault(entity_type, {"succeeded": [], "failed": []})
        fields = dict(entity)
        fields["parent"] = self.resolver.resolve_parent(
            ENTITY, archive_id, entity.get("parent")
        )

        # An entity whose comments, terms or meta fail is rolled back whole and
        # only registered once everything was written
        with transaction.atomic():
            if entity_type == "attachment":
                store_id = self.import_attachment(entity, fields)
            else:
                store_id = self.create_entity(entity_type, archive_id, fields)
            if store_id is None:
                counts["failed"].append(archive_id)
                return result

            if entity_type == "page" and str(archive_id) == str(
                self.metadata.get("page_on_front")
            ):
                self.writer.set_front_page(store_id)

            self.assign_terms(store_id, entity.get("terms"))
            self.import_comments(store_id, entity.get("comments"))
            featured = self.import_meta(store_id, entity.get("meta"))

        if entity_type != "attachment":
            self.resolver.register(ENTITY, archive_id, store_id)
        if featured is not None:
            self.resolver.record_featured(store_id, featured)

        counts["succeeded"].append(archive_id)
        return result

    def create_entity(self, entity_type: str, archive_id: Any, fields: dict):
        try:
            return self.writer.create_entity(entity_type, fields)
        except ContentStoreError as exc:
            self.record_error(entity_type, archive_id, str(exc))
            return None

    def import_attachment(self, entity: dict, fields: dict) -> Optional[Any]:
        """
        Materialize an attachment entity, or return None if it can't be.

        Raises:
            SkippableImportError: If the fetch or its validation failed.
        """
        archive_id = entity["id"]
        if not self.fetch_attachments:
            self.record_error(
                "attachment", archive_id, "Fetching attachments is disabled"
            )
            return None

        url = entity.get("attachment_url") or entity.get("guid")
        if not url:
            self.record_error("attachment", archive_id, "Attachment has no URL")
            return None

        try:
            return self.materializer.materialize(
                archive_id, fields, url, entity.get("sizes")
            )
        except AttachmentImportFailure as exc:
            raise SkippableImportError(
                str(exc), item_key=archive_id, item_type="attachment"
            ) from exc
        except ContentStoreError as exc:
            self.record_error("attachment", archive_id, str(exc))
            return None

    def assign_terms(self, store_id: Any, terms: Optional[list]) -> None:
        term_ids = []
        for term in terms or []:
            taxonomy = term.get("taxonomy") or term.get("domain")
            slug = term.get("slug")
            if taxonomy == "tag":
                taxonomy = "post_tag"
            if not taxonomy or not slug or taxonomy == NAV_MENU_TAXONOMY:
                continue

            term_id = self.writer.term_exists(taxonomy, slug)
            if term_id is None:
                try:
                    term_id = self.writer.create_term(
                        taxonomy, {"slug": slug, "name": term.get("name") or slug}
                    )
                except ContentStoreError as exc:
                    logger.warning(
                        "Unable to create %s %s for %s: %s",
                        taxonomy,
                        slug,
                        store_id,
                        exc,
                    )
                    continue
            term_ids.append(term_id)

        if term_ids:
            self.writer.set_terms(store_id, term_ids)

    def import_comments(self, store_id: Any, comments: Optional[list]) -> int:
        comment_remap = {}
        for comment in sorted(comments or [], key=lambda c: _numeric(c.get("id"))):
            fields = dict(comment)
            fields["parent"] = comment_remap.get(str(comment.get("parent")))
            comment_remap[str(comment.get("id"))] = self.writer.create_comment(
                store_id, fields
            )
        return len(comment_remap)

    def import_meta(self, store_id: Any, meta: Any) -> Optional[Any]:
        """
        Attach an entity's meta and return its featured image's archive id
        """
        featured = None
        for meta_key, meta_value in _meta_pairs(meta):
            if not meta_key or meta_key in SKIPPED_META_KEYS:
                continue
            if meta_key == FEATURED_IMAGE_META_KEY:
                featured = meta_value
            self.writer.attach_meta(store_id, meta_key, meta_value)
        return featured

    # Menu items

    def import_menu_item(self, item: dict, result: dict) -> dict:
        archive_id = item["id"]
        counts = result.setdefault(MENU_ITEM_TYPE, {"succeeded": [], "failed": []})

        if item.get("status") == "draft":
            return result

        menu_slug = None
        for term in item.get("terms") or []:
            if (term.get("taxonomy") or term.get("domain")) == NAV_MENU_TAXONOMY:
                menu_slug = term.get("slug")
                break
        if not menu_slug:
            counts["failed"].append(archive_id)
            self.record_error(
                MENU_ITEM_TYPE, archive_id, "Menu item has no navigation menu"
            )
            return result

        menu_slug = self.state.menu_slugs.get(menu_slug, menu_slug)
        menu_id = self.writer.term_exists(NAV_MENU_TAXONOMY, menu_slug)
        if menu_id is None:
            counts["failed"].append(archive_id)
            self.record_error(
                MENU_ITEM_TYPE, archive_id, f"Navigation menu {menu_slug} does not exist"
            )
            return result

        meta = dict(_meta_pairs(item.get("meta")))
        item_type = meta.get("_menu_item_type")
        object_id = meta.get("_menu_item_object_id")
        url = meta.get("_menu_item_url") or ""

        if item_type == "taxonomy":
            object_id = self.resolver.lookup(TERM, object_id)
        elif item_type == "post_type":
            object_id = self.resolver.lookup(ENTITY, object_id)
        elif item_type == "custom":
            url = self.site_relative_url(url)
        else:
            object_id = None

        if item_type != "custom" and object_id is None:
            counts["failed"].append(archive_id)
            self.record_error(
                MENU_ITEM_TYPE, archive_id, "Menu item target was not imported"
            )
            return result

        parent_id = self.resolver.resolve_parent(
            MENU_ITEM, archive_id, meta.get(MENU_ITEM_PARENT_META_KEY)
        )

        fields = dict(item)
        fields["parent"] = parent_id
        fields["menu"] = menu_id
        try:
            store_id = self.writer.create_entity(MENU_ITEM_TYPE, fields)
        except ContentStoreError as exc:
            counts["failed"].append(archive_id)
            self.record_error(MENU_ITEM_TYPE, archive_id, str(exc))
            return result
        self.resolver.register(MENU_ITEM, archive_id, store_id)

        meta.update(
            {
                "_menu_item_object_id": object_id,
                "_menu_item_url": url,
                MENU_ITEM_PARENT_META_KEY: parent_id or 0,
            }
        )
        classes = meta.get("_menu_item_classes")
        if isinstance(classes, list):
            meta["_menu_item_classes"] = " ".join(str(i) for i in classes if i)
        for meta_key in MENU_ITEM_META_KEYS:
            if meta_key in meta:
                self.writer.attach_meta(store_id, meta_key, meta[meta_key])

        counts["succeeded"].append(archive_id)
        return result

    def site_relative_url(self, url: str) -> str:
        base_url = (self.metadata.get("base_url") or "").rstrip("/")
        if base_url and url.startswith(base_url):
            return url[len(base_url) :] or "/"
        return url

    # Backfill

    def backfill(self) -> None:
        """
        Run the one-shot steps that need the complete remap tables
        """
        for step in BACKFILL_STEPS:
            if self.tracker.is_step_complete(step):
                continue
            getattr(self, step)()
            self.tracker.backup(STATE_KEY, self.state.dump())
            self.tracker.mark_step_complete(step)

    def backfill_parents(self) -> None:
        linked = self.resolver.backfill_parents(
            ENTITY,
            lambda child, parent: self.writer.set_parent(ENTITY, child, parent),
        )
        linked += self.resolver.backfill_parents(MENU_ITEM, self.set_menu_item_parent)
        logger.info("Linked %s orphaned entities to their parents", linked)

    def set_menu_item_parent(self, child: Any, parent: Any) -> None:
        self.writer.set_parent(MENU_ITEM, child, parent)
        self.writer.attach_meta(child, MENU_ITEM_PARENT_META_KEY, parent)

    def backfill_urls(self) -> None:
        store_ids = set(self.resolver.remap.get(ENTITY, {}).values())
        changed = self.resolver.backfill_urls(store_ids, self.writer.rewrite_content)
        logger.info("Rewrote archive URLs in %s entities", changed)

    def remap_featured(self) -> None:
        updated = self.resolver.remap_featured(self.writer.attach_meta)
        logger.info("Remapped %s featured images", updated)
