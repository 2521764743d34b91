"""
Object store access for the Composer DAG bucket.

Provides GcsObjectStore for Google Cloud Storage operations:
- upload / delete / download of single objects
- list: keys under a prefix
- get_content_digest: the MD5 digest GCS keeps for every non-composite object
- bulk_upload: mirror a local folder (plugins, data) into the bucket

Uses Application Default Credentials. The storage client is created lazily
on first use and shared by all worker threads.
"""
from __future__ import annotations

import base64
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional, Protocol, Tuple
from urllib.parse import urlparse

from google.api_core import exceptions as gcs_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage

from ..exceptions import StorageError

logger = logging.getLogger(__name__)

GCS_SCHEME = "gs"
SKIPPED_DIRS = frozenset({"__pycache__"})

# Missing credentials and failed token refreshes surface as GoogleAuthError
GCS_ERRORS = (gcs_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError)


class ObjectStore(Protocol):
    """Operations the reconciler and executor need from an object store."""

    @property
    def uri(self) -> str: ...

    def upload(self, dest_key: str, local_path: Path | str) -> None: ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str) -> List[str]: ...

    def download(self, key: str) -> bytes: ...

    def get_content_digest(self, key: str) -> bytes: ...


def parse_gcs_uri(uri: str) -> Tuple[str, str]:
    """Split ``gs://bucket/some/path`` into ``("bucket", "some/path")``.

    Raises:
        StorageError: If the URI is not a gs:// URI with a bucket
    """
    parsed = urlparse(uri)
    if parsed.scheme != GCS_SCHEME:
        raise StorageError(f"couldn't parse GCS URI {uri!r}: scheme should be 'gs'")
    if not parsed.netloc:
        raise StorageError(f"couldn't parse GCS URI {uri!r}: missing bucket")
    return parsed.netloc, parsed.path.strip("/")


class GcsObjectStore:
    """Google Cloud Storage bucket wrapper with per-call timeouts."""

    def __init__(self, bucket: str, project: Optional[str] = None, timeout: float = 50.0) -> None:
        self.bucket_name = bucket
        self.project = project or None
        self.timeout = timeout

        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None
        self._client_lock = threading.Lock()

    @classmethod
    def from_prefix(
        cls, dag_gcs_prefix: str, project: Optional[str] = None, timeout: float = 50.0
    ) -> Tuple["GcsObjectStore", str]:
        """Build a store from a Composer ``dagGcsPrefix`` such as ``gs://bucket/dags``.

        Returns:
            Tuple of (store, key prefix of the DAGs folder)
        """
        bucket, prefix = parse_gcs_uri(dag_gcs_prefix)
        return cls(bucket, project=project, timeout=timeout), prefix

    @property
    def uri(self) -> str:
        return f"{GCS_SCHEME}://{self.bucket_name}"

    def _get_bucket(self) -> storage.Bucket:
        """Get the bucket handle (lazy, thread-safe initialization)."""
        if self._bucket is None:
            with self._client_lock:
                if self._bucket is None:
                    try:
                        self._client = storage.Client(project=self.project)
                    except auth_exceptions.GoogleAuthError as e:
                        raise StorageError(f"couldn't create storage client for {self.uri}: {e}") from e
                    self._bucket = self._client.bucket(self.bucket_name)
                    logger.debug(f"storage client initialized for {self.uri}")
        return self._bucket

    def upload(self, dest_key: str, local_path: Path | str) -> None:
        """Upload a local file to ``dest_key``."""
        try:
            blob = self._get_bucket().blob(dest_key)
            blob.upload_from_filename(str(local_path), timeout=self.timeout)
        except GCS_ERRORS + (OSError,) as e:
            raise StorageError(f"error copying file {local_path} to {self.uri}/{dest_key}: {e}") from e
        logger.info(f"{self.uri}/{dest_key} uploaded")

    def delete(self, key: str) -> None:
        """Delete the object at ``key``."""
        try:
            self._get_bucket().blob(key).delete(timeout=self.timeout)
        except gcs_exceptions.NotFound as e:
            raise StorageError(f"object {self.uri}/{key} does not exist") from e
        except GCS_ERRORS as e:
            raise StorageError(f"Object({key!r}).Delete: {e}") from e
        logger.info(f"{self.uri}/{key} deleted")

    def list(self, prefix: str) -> List[str]:
        """List object keys under ``prefix``, skipping folder placeholders."""
        try:
            blobs = self._get_bucket().list_blobs(prefix=prefix or None, timeout=self.timeout)
            return [blob.name for blob in blobs if not blob.name.endswith("/")]
        except GCS_ERRORS as e:
            raise StorageError(f"Bucket({self.bucket_name!r}).Objects: {e}") from e

    def download(self, key: str) -> bytes:
        """Download the content of ``key``."""
        try:
            return self._get_bucket().blob(key).download_as_bytes(timeout=self.timeout)
        except GCS_ERRORS as e:
            raise StorageError(f"Object({key!r}).NewReader: {e}") from e

    def get_content_digest(self, key: str) -> bytes:
        """Return the raw MD5 digest GCS stores for ``key``.

        Raises:
            StorageError: If the object is missing or has no MD5 (composite objects)
        """
        try:
            blob = self._get_bucket().get_blob(key, timeout=self.timeout)
        except GCS_ERRORS as e:
            raise StorageError(f"couldn't read file hash for {key}: {e}") from e
        if blob is None:
            raise StorageError(f"GCS file not found {self.uri}/{key}")
        if not blob.md5_hash:
            raise StorageError(f"GCS object {self.uri}/{key} has no MD5 hash")
        return base64.b64decode(blob.md5_hash)

    def bulk_upload(self, local_dir: Path | str, folder: str) -> int:
        """Upload every file below ``local_dir`` to ``<folder>/<relative path>``.

        ``__pycache__`` directories are skipped.

        Returns:
            Number of files uploaded
        """
        root = Path(local_dir)
        if not root.is_dir():
            raise StorageError(f"cannot sync {root}: not a directory")

        uploaded = 0
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRS)
            for name in sorted(filenames):
                local_path = Path(dirpath) / name
                rel = local_path.relative_to(root).as_posix()
                dest = f"{folder.strip('/')}/{rel}" if folder else rel
                self.upload(dest, local_path)
                uploaded += 1
        return uploaded
