"""Pytest configuration and shared fixtures for unit tests.

This module provides in-memory stand-ins for the Composer control plane and
the DAG bucket, plus helpers that lay out DAG folders on disk.

Key Fixtures:
    - clear_dagdeploy_env: Ensures no DAGDEPLOY_* variable leaks into a test
    - make_tree: Writes a mapping of relative paths to contents under a directory
    - fake_store: FakeObjectStore holding objects in memory
    - fake_control_plane: FakeControlPlane recording every call
    - no_wait_retry: Retry policies with five attempts and no delay
"""

import hashlib
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from dagdeploy.exceptions import CommandError, StorageError
from dagdeploy.utils.logging_factory import LoggingFactory
from dagdeploy.utils.retry import RetryConfig


class FakeObjectStore:
    """Thread-safe in-memory object store with failure injection."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None, bucket: str = "test-bucket"):
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.bucket = bucket
        self.calls: List[Tuple[str, str]] = []
        self.fail_delete: set = set()
        self.fail_upload: set = set()
        self.fail_digest: set = set()
        self._lock = threading.Lock()

    @property
    def uri(self) -> str:
        return f"gs://{self.bucket}"

    def _record(self, op: str, key: str) -> None:
        with self._lock:
            self.calls.append((op, key))

    def upload(self, dest_key, local_path):
        self._record("upload", dest_key)
        if dest_key in self.fail_upload:
            raise StorageError(f"upload of {dest_key} failed")
        data = Path(local_path).read_bytes()
        with self._lock:
            self.objects[dest_key] = data

    def delete(self, key):
        self._record("delete", key)
        if key in self.fail_delete:
            raise StorageError(f"delete of {key} failed")
        with self._lock:
            if key not in self.objects:
                raise StorageError(f"object {self.uri}/{key} does not exist")
            del self.objects[key]

    def list(self, prefix):
        self._record("list", prefix)
        with self._lock:
            return sorted(k for k in self.objects if k.startswith(prefix))

    def download(self, key):
        self._record("download", key)
        with self._lock:
            if key not in self.objects:
                raise StorageError(f"object {self.uri}/{key} does not exist")
            return self.objects[key]

    def get_content_digest(self, key):
        self._record("digest", key)
        if key in self.fail_digest:
            raise StorageError(f"digest of {key} failed")
        with self._lock:
            if key not in self.objects:
                raise StorageError(f"GCS file not found {self.uri}/{key}")
            return hashlib.md5(self.objects[key]).digest()


class FakeControlPlane:
    """Records lifecycle calls and tracks which DAGs are known to Airflow.

    ``failures`` maps ``(operation, dag_id)`` to the number of times that
    call fails before it starts succeeding.
    """

    def __init__(self, running: Iterable[str] = ()):
        self.running = set(running)
        self.paused: set = set()
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def _call(self, op: str, dag_id: str) -> None:
        with self._lock:
            self.calls.append((op, dag_id))
            remaining = self.failures.get((op, dag_id), 0)
            if remaining:
                self.failures[(op, dag_id)] = remaining - 1
                raise CommandError(["airflow", op, dag_id], 1, f"{op} {dag_id} failed")

    def calls_for(self, dag_id: str) -> List[str]:
        return [op for op, d in self.calls if d == dag_id]

    def list_running(self):
        return frozenset(self.running - {"airflow_monitoring"})

    def pause(self, dag_id):
        self._call("pause", dag_id)
        with self._lock:
            self.paused.add(dag_id)

    def unpause(self, dag_id):
        self._call("unpause", dag_id)
        with self._lock:
            self.paused.discard(dag_id)
            self.running.add(dag_id)

    def purge_metadata(self, dag_id):
        self._call("purge", dag_id)
        with self._lock:
            self.running.discard(dag_id)


def write_tree(root: Path, files: Dict[str, str]) -> Path:
    """Write ``{relative path: content}`` below ``root``."""
    root.mkdir(parents=True, exist_ok=True)
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture(autouse=True)
def clear_dagdeploy_env(monkeypatch):
    """Remove DAGDEPLOY_* variables so Config defaults are predictable."""
    import os

    for key in list(os.environ):
        if key.startswith("DAGDEPLOY_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def reset_logging_factory():
    """Let each test initialize logging from scratch."""
    LoggingFactory.reset()
    yield
    LoggingFactory.reset()
    package_logger = logging.getLogger("dagdeploy")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_tree(tmp_path):
    """Return a helper that writes files under ``tmp_path/<name>``."""

    def _make(files: Dict[str, str], name: str = "dags") -> Path:
        return write_tree(tmp_path / name, files)

    return _make


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def fake_control_plane():
    return FakeControlPlane()


@pytest.fixture
def no_wait_retry():
    """Stop and unpause retry policies with five attempts and zero delay."""
    return RetryConfig.fixed(5, 0.0), RetryConfig.jittered(5, 0.0, 0.10)
