import io
import json
import os

from django.contrib.auth.models import User
from PIL import Image

from importer.interfaces import FetchResult
from importer.models import ImportJob, ImportSession, LegacySessionStore
from importer.sessions import LEGACY_STORE_NAME


def create_user(username="tester", **kwargs):
    return User.objects.create_user(username=username, **kwargs)


def create_import_job(*, archive_path="archive.json", **kwargs):
    import_job = ImportJob(archive_path=archive_path, **kwargs)
    import_job.save()
    return import_job


def create_import_session(session_id="test-session", data=None):
    return ImportSession.objects.create(session_id=session_id, data=data or {})


def create_legacy_sessions(sessions):
    # sessions maps session ids to their documents
    return LegacySessionStore.objects.create(name=LEGACY_STORE_NAME, data=sessions)


def write_archive(directory, data, name="archive.json"):
    path = os.path.join(directory, name)
    with open(path, "w", encoding="utf-8") as archive_file:
        json.dump(data, archive_file)
    return path


def png_bytes(width=40, height=30, color="red"):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeFetcher:
    """
    RemoteFetcher which serves canned responses and records every request

    ``responses`` maps URLs to a dict with optional ``body``, ``status_code``
    and ``headers`` keys, or to an exception to raise.
    """

    def __init__(self, responses=None, default_body=b"file contents"):
        self.responses = responses or {}
        self.default_body = default_body
        self.calls = []

    def get(self, url, dest, timeout):
        self.calls.append(url)

        response = self.responses.get(url, {})
        if isinstance(response, Exception):
            raise response

        body = response.get("body", self.default_body)
        with open(dest, "wb") as dest_file:
            dest_file.write(body)

        headers = {
            "content-type": "application/octet-stream",
            "content-length": str(len(body)),
        }
        headers.update(response.get("headers", {}))
        return FetchResult(
            path=dest,
            size=len(body),
            status_code=response.get("status_code", 200),
            headers=headers,
        )
