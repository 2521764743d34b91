"""File trees the resolver can walk: a local directory or an object store prefix."""
from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Set, Tuple

if TYPE_CHECKING:
    from ..services.storage import ObjectStore

logger = logging.getLogger(__name__)

WalkEntry = Tuple[str, List[str], List[str]]


def join_rel(rel_dir: str, name: str) -> str:
    """Join a root-relative directory and an entry name."""
    return name if rel_dir in ("", ".") else f"{rel_dir}/{name}"


class FileTree(ABC):
    """A read-only tree of files addressed by root-relative POSIX paths."""

    @property
    @abstractmethod
    def label(self) -> str:
        """Human readable location of the tree root."""

    @abstractmethod
    def walk(self) -> Iterator[WalkEntry]:
        """Walk the tree top-down, depth-first, in sorted order.

        Yields ``(rel_dir, dirnames, filenames)`` like ``os.walk``. The root is
        ``"."``. Callers may remove names from ``dirnames`` in place to prune.
        """

    @abstractmethod
    def read_text(self, rel_path: str) -> str:
        """Read a file of the tree as text."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label!r})"


class LocalFileTree(FileTree):
    """A directory on the local filesystem."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    @property
    def label(self) -> str:
        return str(self.root)

    def path_for(self, rel_path: str) -> Path:
        """Absolute local path of a root-relative path."""
        return self.root.joinpath(*rel_path.split("/"))

    def walk(self) -> Iterator[WalkEntry]:
        if not self.root.is_dir():
            raise FileNotFoundError(f"DAG root {self.root} is not a directory")

        def _raise(error: OSError) -> None:
            raise error

        for dirpath, dirnames, filenames in os.walk(self.root, topdown=True, onerror=_raise):
            rel = os.path.relpath(dirpath, self.root)
            rel_dir = "." if rel == "." else Path(rel).as_posix()
            dirnames.sort()
            filenames.sort()
            # os.walk honours in-place edits of dirnames, so pruning passes through
            yield rel_dir, dirnames, filenames

    def read_text(self, rel_path: str) -> str:
        return self.path_for(rel_path).read_text(encoding="utf-8")


@dataclass
class _DirNode:
    dirs: Set[str] = field(default_factory=set)
    files: Set[str] = field(default_factory=set)


class ObjectStoreTree(FileTree):
    """Objects under a key prefix, viewed as a directory tree.

    Directories are synthesized from ``/``-separated key segments. The
    listing is fetched once, on first walk; file contents are downloaded
    only when read.
    """

    def __init__(self, store: "ObjectStore", prefix: str) -> None:
        self.store = store
        self.prefix = prefix.strip("/")
        self._nodes: Optional[Dict[str, _DirNode]] = None

    @property
    def label(self) -> str:
        return f"{self.store.uri}/{self.prefix}" if self.prefix else self.store.uri

    def key_for(self, rel_path: str) -> str:
        """Object key of a root-relative path."""
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path

    def _load(self) -> Dict[str, _DirNode]:
        if self._nodes is not None:
            return self._nodes

        nodes: Dict[str, _DirNode] = {".": _DirNode()}
        list_prefix = f"{self.prefix}/" if self.prefix else ""
        keys = self.store.list(list_prefix)
        logger.info(f"listed {len(keys)} objects under {self.label}")

        for key in keys:
            rel = key[len(list_prefix):]
            if not rel or rel.endswith("/"):
                continue
            parts = rel.split("/")
            parent = "."
            for part in parts[:-1]:
                nodes[parent].dirs.add(part)
                parent = join_rel(parent, part)
                nodes.setdefault(parent, _DirNode())
            nodes[parent].files.add(parts[-1])

        self._nodes = nodes
        return nodes

    def walk(self) -> Iterator[WalkEntry]:
        nodes = self._load()
        stack = ["."]
        while stack:
            rel_dir = stack.pop()
            node = nodes[rel_dir]
            dirnames = sorted(node.dirs)
            filenames = sorted(node.files)
            yield rel_dir, dirnames, filenames
            for name in reversed(dirnames):
                stack.append(join_rel(rel_dir, name))

    def read_text(self, rel_path: str) -> str:
        return self.store.download(self.key_for(rel_path)).decode("utf-8")

