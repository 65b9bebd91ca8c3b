"""
Reader for JSON content archives.

An archive is a single JSON document::

    {
        "metadata": {"base_url": "https://example.com", "page_on_front": 12},
        "terms": [{"id": 3, "taxonomy": "category", "slug": "news", ...}],
        "entities": [{"id": 12, "type": "page", "parent": 0, ...}]
    }

Paths which aren't absolute are looked up in ``IMPORTER["ARCHIVE_FOLDER"]``.
"""

import json
import os
from logging import getLogger

from django.conf import settings

from importer.exceptions import ArchiveError
from importer.interfaces import Archive

logger = getLogger(__name__)


def _normalize_entity(entity: dict) -> dict:
    if "id" not in entity or not entity.get("type"):
        raise ArchiveError(f"Archive entity is missing an id or type: {entity!r}")

    normalized = dict(entity)
    normalized.setdefault("parent", 0)
    normalized.setdefault("title", "")
    normalized.setdefault("slug", "")
    normalized.setdefault("content", "")
    normalized.setdefault("excerpt", "")
    normalized.setdefault("status", "publish")
    normalized.setdefault("menu_order", 0)
    normalized.setdefault("guid", "")
    normalized.setdefault("sticky", False)
    normalized.setdefault("terms", [])
    normalized.setdefault("comments", [])
    normalized.setdefault("meta", [])
    return normalized


def _normalize_term(term: dict) -> dict:
    if not term.get("taxonomy") or not term.get("slug"):
        raise ArchiveError(f"Archive term is missing a taxonomy or slug: {term!r}")

    normalized = dict(term)
    normalized.setdefault("name", term["slug"])
    normalized.setdefault("description", "")
    normalized.setdefault("parent", "")
    normalized.setdefault("meta", [])
    return normalized


class JSONArchiveReader:
    def resolve_path(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(settings.IMPORTER["ARCHIVE_FOLDER"], path)

    def parse(self, path: str) -> Archive:
        full_path = self.resolve_path(path)
        if not os.path.isfile(full_path):
            raise ArchiveError(f"The archive {path} does not exist")

        try:
            with open(full_path, encoding="utf-8") as archive_file:
                data = json.load(archive_file)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ArchiveError(f"The archive {path} could not be read: {exc}") from exc

        if not isinstance(data, dict):
            raise ArchiveError(f"The archive {path} is not a JSON object")

        archive = Archive(
            entities=[_normalize_entity(i) for i in data.get("entities") or []],
            terms=[_normalize_term(i) for i in data.get("terms") or []],
            metadata=data.get("metadata") or {},
        )
        logger.info(
            "Parsed archive %s: %s entities, %s terms",
            path,
            len(archive.entities),
            len(archive.terms),
        )
        return archive
