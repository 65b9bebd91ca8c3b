"""
Fetching, deduplicating and storing attachment binaries.

An attachment is identified by the SHA-1 of its resolved source URL. If an
entity tagged with that hash already exists, from an earlier import or an
earlier attempt at this one, it is reused instead of fetched again. Fetches
go through a requests session whose adapter retries a fixed number of times
without backoff; the downloaded file is validated before anything is written
to the content store.
"""

import hashlib
import mimetypes
import os
import posixpath
from logging import getLogger
from tempfile import NamedTemporaryFile
from typing import Any, Optional
from urllib.parse import unquote, urlsplit, urlunsplit

import requests
from django.conf import settings
from PIL import Image, ImageOps
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from configuration.utils import configuration_value
from importer.exceptions import AttachmentImportFailure
from importer.interfaces import ContentStoreWriter, FetchResult, RemoteFetcher
from importer.resolver import ENTITY, ReferenceResolver
from siteport.logging import SiteportLogger

logger = getLogger(__name__)
structured_logger = SiteportLogger.get_logger(__name__)

SOURCE_HASH_META_KEY = "_source_url_hash"
VARIANTS_META_KEY = "_variants"


def source_hash(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8"), usedforsecurity=False).hexdigest()


def remove_extension(url: str) -> str:
    parts = urlsplit(url)
    stem = posixpath.splitext(parts.path)[0]
    return urlunsplit((parts.scheme, parts.netloc, stem, "", ""))


def get_filename_from_disposition(disposition: str) -> Optional[str]:
    """
    Return the ``filename`` parameter of a Content-Disposition header
    """
    if not disposition or ";" not in disposition:
        return None

    _, attr_parts = disposition.split(";", 1)
    filename = None
    for part in attr_parts.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        if key.strip().lower() == "filename" and value.strip():
            filename = value.strip()
            if filename.startswith('"') and filename.endswith('"'):
                filename = filename[1:-1]
    return filename


def get_file_extension_by_mime_type(mime_type: str) -> Optional[str]:
    if not mime_type:
        return None
    extension = mimetypes.guess_extension(mime_type.split(";")[0].strip())
    if extension == ".jpe":
        extension = ".jpg"
    return extension.lstrip(".") if extension else None


def requests_retry_session(
    retries=3,
    backoff_factor=0,
    status_forcelist=(429, 500, 502, 503, 504),
    session=None,
):
    session = session or requests.Session()
    retry = Retry(
        total=retries,
        read=retries,
        connect=retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class RequestsFetcher:
    """
    Streams a remote file to a local path with requests.

    ``attempts`` defaults to the ``import_attachment_fetch_retries``
    configuration value and counts the first request.
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        attempts: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.chunk_size = chunk_size or settings.IMPORTER["FETCH_CHUNK_SIZE"]
        if session is None:
            if attempts is None:
                attempts = configuration_value("import_attachment_fetch_retries", 3)
            session = requests_retry_session(retries=max(0, attempts - 1))
        self.session = session

    def get(self, url: str, dest: str, timeout: int) -> FetchResult:
        size = 0
        with self.session.get(
            url,
            stream=True,
            timeout=timeout,
            headers={"Accept-Encoding": "identity"},
        ) as resp:
            with open(dest, "wb") as dest_file:
                for chunk in resp.iter_content(chunk_size=self.chunk_size):
                    dest_file.write(chunk)
                    size += len(chunk)

            headers = {key.lower(): value for key, value in resp.headers.items()}
            if resp.url and resp.url != url:
                headers["x-final-location"] = resp.url

            return FetchResult(
                path=dest, size=size, status_code=resp.status_code, headers=headers
            )


class AttachmentMaterializer:
    """
    Turns attachment references into stored attachment entities.

    ``hash_cache`` maps source hashes to store ids. The pipeline owns it and
    persists it with the rest of its resumable state.
    """

    def __init__(
        self,
        writer: ContentStoreWriter,
        resolver: ReferenceResolver,
        fetcher: RemoteFetcher,
        *,
        hash_cache: Optional[dict] = None,
        base_url: str = "",
        size_limit: Optional[int] = None,
        timeout: Optional[int] = None,
    ):
        self.writer = writer
        self.resolver = resolver
        self.fetcher = fetcher
        self.hash_cache = hash_cache if hash_cache is not None else {}
        self.base_url = base_url or ""
        if size_limit is None:
            size_limit = configuration_value("import_attachment_size_limit", 0)
        if timeout is None:
            timeout = configuration_value("import_attachment_fetch_timeout", 300)
        self.size_limit = size_limit
        self.timeout = timeout

    def resolve_url(self, url: str) -> str:
        # Site-relative URLs are relative to the archive's origin
        if url.startswith("/") and not url.startswith("//") and self.base_url:
            return self.base_url.rstrip("/") + url
        return url

    def find_existing(self, content_hash: str) -> Optional[Any]:
        if content_hash in self.hash_cache:
            return self.hash_cache[content_hash]
        store_id = self.writer.entity_with_hash(content_hash)
        if store_id is not None:
            self.hash_cache[content_hash] = store_id
        return store_id

    def materialize(
        self,
        archive_id: Any,
        fields: dict,
        url: str,
        sizes: Optional[dict] = None,
    ) -> Any:
        """
        Return the store id of the attachment at ``url``, fetching it if no
        entity with the same source hash exists yet.

        Raises:
            AttachmentImportFailure: If the fetch fails or the download is
                invalid.
        """
        url = self.resolve_url(url)
        content_hash = source_hash(url)

        existing = self.find_existing(content_hash)
        if existing is not None:
            stored_url = self.writer.entity_url(existing)
            self.resolver.add_url(url, stored_url)
            self.add_stem_url(url, stored_url)
            self.resolver.register(ENTITY, archive_id, existing)
            logger.info("Reusing attachment %s for %s", existing, url)
            return existing

        with NamedTemporaryFile(mode="w+b", suffix=".download") as temp_file:
            result = self.fetch(url, temp_file.name)
            self.validate(url, result)

            file_name = self.file_name(url, result.headers)
            mime_type = self.mime_type(file_name, result.headers)

            store_id = self.writer.create_entity(
                "attachment", {**fields, "mime_type": mime_type}
            )
            stored_url = self.writer.store_attachment(
                store_id, result.path, file_name, mime_type
            )
            self.writer.attach_meta(store_id, SOURCE_HASH_META_KEY, content_hash)
            self.hash_cache[content_hash] = store_id

            self.resolver.register(ENTITY, archive_id, store_id)
            self.resolver.add_url(url, stored_url)
            if fields.get("guid"):
                self.resolver.add_url(fields["guid"], stored_url)
            final_location = result.headers.get("x-final-location")
            if final_location and final_location != url:
                self.resolver.add_url(final_location, stored_url)
            if mime_type.startswith("image/"):
                self.add_stem_url(url, stored_url)
                if sizes:
                    self.import_sizes(store_id, result.path, file_name, sizes)

        structured_logger.info(
            "Attachment imported.",
            event_code="import_attachment_stored",
            entity_id=store_id,
            source_url=url,
            size=result.size,
        )
        return store_id

    def add_stem_url(self, url: str, stored_url: str) -> None:
        # Resized copies share the stem of the original. A URL without an
        # extension has no stem distinct from itself.
        if not posixpath.splitext(urlsplit(url).path)[1]:
            return
        self.resolver.add_url(remove_extension(url), remove_extension(stored_url))

    def fetch(self, url: str, dest: str) -> FetchResult:
        try:
            return self.fetcher.get(url, dest, self.timeout)
        except (requests.RequestException, OSError) as exc:
            logger.warning("Unable to fetch %s: %s", url, exc)
            raise AttachmentImportFailure(
                f"Request for {url} failed due to an error: {exc}"
            ) from exc

    def validate(self, url: str, result: FetchResult) -> None:
        if result.status_code != 200:
            raise AttachmentImportFailure(
                f"Remote server returned an unexpected result for {url}: "
                f"{result.status_code}"
            )
        if not result.headers:
            raise AttachmentImportFailure(f"Remote server did not respond for {url}")
        if result.size == 0:
            raise AttachmentImportFailure(f"Zero size file downloaded from {url}")

        content_length = result.headers.get("content-length")
        if (
            "content-encoding" not in result.headers
            and content_length is not None
            and str(content_length).isdigit()
            and int(content_length) != result.size
        ):
            raise AttachmentImportFailure(
                f"Downloaded file from {url} has incorrect size: expected "
                f"{content_length} bytes, got {result.size}"
            )

        if self.size_limit and result.size > self.size_limit:
            raise AttachmentImportFailure(
                f"Remote file {url} is too large, limit is {self.size_limit} bytes"
            )

    def file_name(self, url: str, headers: dict) -> str:
        file_name = posixpath.basename(unquote(urlsplit(url).path)) or "attachment"
        from_disposition = get_filename_from_disposition(
            headers.get("content-disposition", "")
        )
        if from_disposition:
            file_name = os.path.basename(from_disposition)

        if not posixpath.splitext(file_name)[1]:
            extension = get_file_extension_by_mime_type(headers.get("content-type", ""))
            if extension:
                file_name = f"{file_name}.{extension}"
        return file_name

    def mime_type(self, file_name: str, headers: dict) -> str:
        content_type = headers.get("content-type", "").split(";")[0].strip()
        if content_type and content_type != "application/octet-stream":
            return content_type
        guessed, _ = mimetypes.guess_type(file_name)
        return guessed or content_type or "application/octet-stream"

    def import_sizes(
        self, store_id: Any, full_size_path: str, file_name: str, sizes: dict
    ) -> dict:
        """
        Generate resized variants of an image.

        A variant which can't be generated is logged and left out; the
        full-size attachment is kept either way.
        """
        stem, extension = posixpath.splitext(file_name)
        variants = {}
        for size_name, size in sizes.items():
            try:
                width, height = int(size["width"]), int(size["height"])
                variant_name = f"{stem}-{width}x{height}{extension}"
                with NamedTemporaryFile(mode="w+b", suffix=extension) as variant_file:
                    with Image.open(full_size_path) as image:
                        resized = ImageOps.fit(image, (width, height))
                        resized.save(variant_file, format=image.format)
                    variant_file.flush()
                    variants[str(size_name)] = self.writer.store_variant(
                        store_id, variant_name, variant_file.name
                    )
            except (KeyError, TypeError, ValueError, OSError) as exc:
                structured_logger.warning(
                    "Unable to generate attachment variant.",
                    event_code="import_attachment_variant_failed",
                    reason=str(exc),
                    reason_code="variant_failed",
                    entity_id=store_id,
                    size_name=str(size_name),
                )

        if variants:
            self.writer.attach_meta(store_id, VARIANTS_META_KEY, variants)
        return variants
