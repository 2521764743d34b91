"""Byte-equality check between a local file and a stored object.

The object store keeps an MD5 digest for each object, so comparison needs a
single metadata request and a local hash, never a download.
"""
from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Optional, Tuple

from ..exceptions import DagDeployError
from .storage import ObjectStore

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


def local_md5(path: Path | str) -> bytes:
    """Raw MD5 digest of a local file, read in chunks."""
    md5 = hashlib.md5()
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            md5.update(chunk)
    return md5.digest()


class ContentComparator:
    """Compares local files against objects in one store."""

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    def content_equals(self, local_path: Path | str, remote_key: str) -> Tuple[bool, Optional[str]]:
        """Check whether a local file and a stored object hold the same bytes.

        Returns:
            ``(True, None)`` when the digests match, ``(False, None)`` when they
            differ, and ``(False, reason)`` when either side cannot be read.
        """
        try:
            local_digest = local_md5(local_path)
        except OSError as e:
            reason = f"couldn't read local file {local_path}: {e}"
            logger.warning(reason)
            return False, reason

        try:
            remote_digest = self.store.get_content_digest(remote_key)
        except (DagDeployError, OSError) as e:
            reason = f"couldn't read file hash for {remote_key}: {e}"
            logger.warning(reason)
            return False, reason

        equal = local_digest == remote_digest
        logger.debug(f"{local_path} {'matches' if equal else 'differs from'} {self.store.uri}/{remote_key}")
        return equal, None
