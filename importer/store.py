"""
Content-store writer backed by the siteport models
"""

import os
from logging import getLogger
from typing import Any, Callable, Iterable, Optional

from django.core.files import File
from django.db import DatabaseError, IntegrityError, transaction
from django.utils.dateparse import parse_datetime
from django.utils.text import slugify

from importer.attachments import SOURCE_HASH_META_KEY
from importer.exceptions import ContentStoreError
from siteport.models import Comment, Entity, EntityMeta, Term
from siteport.storage import ASSET_STORAGE

logger = getLogger(__name__)

ENTITY_FIELDS = (
    "title",
    "slug",
    "content",
    "excerpt",
    "status",
    "menu_order",
    "guid",
    "mime_type",
)

# Meta values rewritten together with entity content
REWRITTEN_META_KEYS = ("enclosure",)


class DjangoContentStore:
    def __init__(self, session_id: str = ""):
        self.session_id = session_id

    def create_entity(self, kind: str, fields: dict) -> int:
        if kind not in Entity.Kind.values:
            raise ContentStoreError(f"Unknown entity kind {kind}")

        values = {name: fields[name] for name in ENTITY_FIELDS if fields.get(name)}
        if values.get("status") not in Entity.Status.values:
            values.pop("status", None)
        if "slug" in values:
            values["slug"] = slugify(values["slug"], allow_unicode=True)[:200]
        if fields.get("published"):
            values["published"] = parse_datetime(str(fields["published"]))

        try:
            with transaction.atomic():
                entity = Entity.objects.create(
                    kind=kind,
                    parent_id=fields.get("parent"),
                    menu_id=fields.get("menu"),
                    sticky=bool(fields.get("sticky")),
                    import_session=self.session_id,
                    **values,
                )
        except (DatabaseError, ValueError) as exc:
            raise ContentStoreError(
                f"Failed to create {kind} {fields.get('title', '')}: {exc}"
            ) from exc
        return entity.pk

    def set_parent(self, kind: str, store_id: Any, parent_store_id: Any) -> None:
        Entity.objects.filter(pk=store_id).update(parent_id=parent_store_id)

    def attach_meta(self, store_id: Any, key: str, value: Any) -> None:
        EntityMeta.objects.update_or_create(
            entity_id=store_id, key=key, defaults={"value": value}
        )

    def entity_with_hash(self, content_hash: str) -> Optional[int]:
        meta = (
            EntityMeta.objects.filter(
                key=SOURCE_HASH_META_KEY,
                value=content_hash,
                entity__kind=Entity.Kind.ATTACHMENT,
            )
            .order_by("pk")
            .first()
        )
        return meta.entity_id if meta else None

    def term_exists(self, taxonomy: str, slug: str) -> Optional[int]:
        return (
            Term.objects.filter(taxonomy=taxonomy, slug=slug)
            .values_list("pk", flat=True)
            .first()
        )

    def create_term(self, taxonomy: str, fields: dict) -> int:
        try:
            with transaction.atomic():
                term = Term.objects.create(
                    taxonomy=taxonomy,
                    name=fields.get("name") or fields["slug"],
                    slug=fields["slug"],
                    description=fields.get("description") or "",
                    parent_id=fields.get("parent"),
                )
        except (IntegrityError, KeyError) as exc:
            raise ContentStoreError(
                f"Failed to import {taxonomy} {fields.get('name', '')}: {exc}"
            ) from exc
        return term.pk

    def attach_term_meta(self, term_id: Any, key: str, value: Any) -> None:
        term = Term.objects.get(pk=term_id)
        term.metadata[key] = value
        term.save(update_fields=["metadata"])

    def set_terms(self, store_id: Any, term_ids: Iterable[Any]) -> None:
        Entity.objects.get(pk=store_id).terms.add(*term_ids)

    def create_comment(self, store_id: Any, fields: dict) -> int:
        comment = Comment.objects.create(
            entity_id=store_id,
            parent_id=fields.get("parent"),
            author=fields.get("author") or "",
            author_email=fields.get("author_email") or "",
            author_url=fields.get("author_url") or "",
            content=fields.get("content") or "",
            approved=str(fields.get("approved", "")) in ("1", "True", "true"),
            comment_type=fields.get("comment_type") or "comment",
            submitted=parse_datetime(str(fields["date"])) if fields.get("date") else None,
        )
        return comment.pk

    def store_attachment(
        self, store_id: Any, source_path: str, file_name: str, mime_type: str
    ) -> str:
        entity = Entity.objects.get(pk=store_id)
        with open(source_path, "rb") as source:
            entity.storage_file.save(file_name, File(source), save=False)
        entity.mime_type = mime_type
        entity.guid = entity.storage_file.url
        entity.save(update_fields=["storage_file", "mime_type", "guid"])
        return entity.guid

    def store_variant(self, store_id: Any, name: str, source_path: str) -> str:
        entity = Entity.objects.get(pk=store_id)
        directory = os.path.dirname(entity.storage_file.name)
        with open(source_path, "rb") as source:
            stored_name = ASSET_STORAGE.save(os.path.join(directory, name), File(source))
        return ASSET_STORAGE.url(stored_name)

    def entity_url(self, store_id: Any) -> str:
        entity = Entity.objects.get(pk=store_id)
        return entity.url or entity.guid

    def rewrite_content(
        self, store_ids: Iterable[Any], transform: Callable[[str], str]
    ) -> int:
        changed = 0
        for entity in Entity.objects.filter(pk__in=list(store_ids)):
            content = transform(entity.content)
            if content != entity.content:
                entity.content = content
                entity.save(update_fields=["content"])
                changed += 1

            for meta in entity.meta.filter(key__in=REWRITTEN_META_KEYS):
                if isinstance(meta.value, str):
                    value = transform(meta.value)
                    if value != meta.value:
                        meta.value = value
                        meta.save(update_fields=["value"])
        return changed

    def set_front_page(self, store_id: Any) -> None:
        with transaction.atomic():
            Entity.objects.filter(is_front_page=True).update(is_front_page=False)
            Entity.objects.filter(pk=store_id).update(is_front_page=True)
