"""
Collaborators the import pipeline depends on.

The pipeline only talks to these protocols; ``importer.archive``,
``importer.store`` and ``importer.attachments`` provide the implementations
used in production.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Protocol


@dataclass
class Archive:
    """
    Parsed archive contents.

    ``entities`` and ``terms`` are lists of dicts, each with a stable
    archive-local id. ``metadata`` holds archive-wide values such as
    ``base_url`` and ``page_on_front``.
    """

    entities: list = field(default_factory=list)
    terms: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


@dataclass
class FetchResult:
    path: str
    size: int
    status_code: int
    headers: dict = field(default_factory=dict)


class ArchiveReader(Protocol):
    def parse(self, path: str) -> Archive: ...


class ContentStoreWriter(Protocol):
    def create_entity(self, kind: str, fields: dict) -> Any: ...

    def set_parent(self, kind: str, store_id: Any, parent_store_id: Any) -> None: ...

    def attach_meta(self, store_id: Any, key: str, value: Any) -> None: ...

    def entity_with_hash(self, content_hash: str) -> Optional[Any]: ...

    def term_exists(self, taxonomy: str, slug: str) -> Optional[Any]: ...

    def create_term(self, taxonomy: str, fields: dict) -> Any: ...

    def attach_term_meta(self, term_id: Any, key: str, value: Any) -> None: ...

    def set_terms(self, store_id: Any, term_ids: Iterable[Any]) -> None: ...

    def create_comment(self, store_id: Any, fields: dict) -> Any: ...

    def store_attachment(
        self, store_id: Any, source_path: str, file_name: str, mime_type: str
    ) -> str: ...

    def store_variant(self, store_id: Any, name: str, source_path: str) -> str: ...

    def entity_url(self, store_id: Any) -> str: ...

    def rewrite_content(
        self, store_ids: Iterable[Any], transform: Callable[[str], str]
    ) -> int: ...

    def set_front_page(self, store_id: Any) -> None: ...


class RemoteFetcher(Protocol):
    def get(self, url: str, dest: str, timeout: int) -> FetchResult: ...


class ContinuationTransport(Protocol):
    def emit_continue(self, continuation: dict) -> None: ...
