"""Reading of the desired DAG list and set helpers over DAG ID sets."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import AbstractSet, FrozenSet

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"


def read_dag_list(path: Path | str) -> FrozenSet[str]:
    """Read a newline-delimited list of DAG IDs that should be running.

    Surrounding whitespace is stripped; blank lines and lines starting with
    ``#`` are skipped.

    Raises:
        FileNotFoundError: If the list does not exist
    """
    dag_ids = set()
    with open(path, encoding="utf-8") as f:
        for line in f:
            candidate = line.strip()
            if not candidate or candidate.startswith(COMMENT_PREFIX):
                continue
            dag_ids.add(candidate)

    logger.info(f"read {len(dag_ids)} DAGs from {path}")
    for dag_id in sorted(dag_ids):
        logger.debug(f"  {dag_id}")
    return frozenset(dag_ids)


def dag_list_intersect(a: AbstractSet[str], b: AbstractSet[str]) -> FrozenSet[str]:
    """IDs present in both sets, iterating over the smaller one."""
    small, large = (a, b) if len(a) <= len(b) else (b, a)
    return frozenset(dag_id for dag_id in small if dag_id in large)


def dag_list_diff(a: AbstractSet[str], b: AbstractSet[str]) -> FrozenSet[str]:
    """IDs present in ``a`` but not in ``b``."""
    return frozenset(dag_id for dag_id in a if dag_id not in b)
