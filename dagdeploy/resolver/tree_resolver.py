"""Resolve DAG IDs to the single source file that defines each of them.

The resolver walks a file tree depth-first, collecting ``.airflowignore``
rules as it enters each directory. A rule declared in a directory applies to
everything below it. Ignored directories are pruned from the walk, and only
files whose DAG ID is a candidate are matched against the rules.
"""
from __future__ import annotations

import logging
from typing import AbstractSet, Dict, List

from ..exceptions import IgnoreFileError, ResolutionError
from ..models import DagID, RelPath, Resolution
from .ignore_rules import (
    IGNORE_FILE_NAME,
    IgnoreRule,
    effective_rules,
    first_match,
    parse_ignore_file,
)
from .trees import FileTree, join_rel

logger = logging.getLogger(__name__)

DAG_FILE_SUFFIX = ".py"


def dag_id_for(file_name: str, suffix: str = DAG_FILE_SUFFIX) -> str | None:
    """DAG ID of a source file name, or None if it is not a DAG source file."""
    if not file_name.endswith(suffix) or file_name == suffix:
        return None
    return file_name[: -len(suffix)]


def single_paths(resolution: Resolution) -> Dict[DagID, RelPath]:
    """Unnest a validated resolution into a DAG ID to path mapping."""
    return {dag_id: paths[0] for dag_id, paths in resolution.items() if len(paths) == 1}


class TreeResolver:
    """Finds the single file implementing each candidate DAG ID in a tree."""

    def __init__(self, ignore_file_name: str = IGNORE_FILE_NAME, suffix: str = DAG_FILE_SUFFIX) -> None:
        self.ignore_file_name = ignore_file_name
        self.suffix = suffix

    def resolve(self, tree: FileTree, candidate_ids: AbstractSet[DagID]) -> Resolution:
        """Resolve every candidate DAG ID to exactly one root-relative path.

        Args:
            tree: Tree to search
            candidate_ids: DAG IDs to look for

        Returns:
            Mapping of each candidate to a one-element list of paths

        Raises:
            ResolutionError: Listing every DAG ID with zero or several matches.
                The partial resolution is attached as ``error.resolution``.
            IgnoreFileError: If an ignore file holds an invalid pattern
        """
        if not candidate_ids:
            return {}

        logger.info(f"searching for {len(candidate_ids)} DAGs in {tree.label}")
        logger.debug(f"candidates: {sorted(candidate_ids)}")

        index: Dict[str, List[IgnoreRule]] = {}
        matches: Dict[DagID, List[RelPath]] = {}

        for rel_dir, dirnames, filenames in tree.walk():
            if self.ignore_file_name in filenames:
                ignore_path = join_rel(rel_dir, self.ignore_file_name)
                logger.info(f"found {ignore_path} in {tree.label}, adding to ignore index")
                source = f"{tree.label}/{ignore_path}"
                try:
                    content = tree.read_text(ignore_path)
                except UnicodeDecodeError as e:
                    raise IgnoreFileError(source, "", f"not valid UTF-8: {e}") from e
                index[rel_dir] = parse_ignore_file(content, rel_dir, source)

            rules = effective_rules(index, rel_dir)

            kept = []
            for name in dirnames:
                child = join_rel(rel_dir, name)
                rule = first_match(rules, child)
                if rule is not None:
                    logger.debug(f"ignoring dir: {child} because matched {rule.pattern}")
                    continue
                kept.append(name)
            dirnames[:] = kept

            for name in filenames:
                if name == self.ignore_file_name:
                    continue
                dag_id = dag_id_for(name, self.suffix)
                if dag_id is None or dag_id not in candidate_ids:
                    continue

                rel_path = join_rel(rel_dir, name)
                rule = first_match(rules, rel_path)
                if rule is not None:
                    logger.debug(f"ignoring path: {rel_path} because matched {rule.pattern}")
                    continue
                # Each path is visited once, after its rules are known
                matches.setdefault(dag_id, []).append(rel_path)

        resolution = {dag_id: list(matches.get(dag_id, [])) for dag_id in sorted(candidate_ids)}
        defects = self._validate(resolution)
        if defects:
            raise ResolutionError(defects, resolution)
        return resolution

    @staticmethod
    def _validate(resolution: Resolution) -> Dict[DagID, str]:
        """Collect one defect per DAG ID that did not resolve to exactly one path."""
        defects = {}
        for dag_id, paths in resolution.items():
            if not paths:
                defects[dag_id] = f"no file found for DAG {dag_id}"
            elif len(paths) > 1:
                defects[dag_id] = f"ambiguous file for DAG {dag_id}: {', '.join(paths)}"
        return defects
