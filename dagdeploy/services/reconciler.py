"""Reconciliation of the desired DAG set against the DAGs running in Composer.

Planning happens in two resolution passes. DAGs that are both desired and
running are first located in the deployed tree and compared byte-for-byte
with their local copy; any that differ are restarted. The final stop set is
then resolved against the deployed tree and the final start set against the
local tree. Nothing is returned unless every DAG in both sets resolves.
"""
from __future__ import annotations

import logging
from typing import AbstractSet, Dict, Set, Tuple

from ..exceptions import PlanningError, ResolutionError
from ..models import DagID, ReconciliationPlan, Resolution
from ..resolver import FileTree, LocalFileTree, ObjectStoreTree, TreeResolver, single_paths
from .content_comparator import ContentComparator
from .dag_list import dag_list_diff, dag_list_intersect

logger = logging.getLogger(__name__)


class Reconciler:
    """Computes the stop and start plan that converges Composer to the desired set."""

    def __init__(self, resolver: TreeResolver, comparator: ContentComparator) -> None:
        self.resolver = resolver
        self.comparator = comparator

    def _resolve_lenient(self, tree: FileTree, candidates: AbstractSet[DagID]) -> Tuple[Resolution, Dict[DagID, str]]:
        """Resolve ``candidates`` and return the resolution with its defects instead of raising."""
        try:
            return self.resolver.resolve(tree, candidates), {}
        except ResolutionError as e:
            return e.resolution, e.defects

    def find_drifted(
        self,
        same: AbstractSet[DagID],
        local_tree: LocalFileTree,
        remote_tree: ObjectStoreTree,
    ) -> Set[DagID]:
        """DAG IDs whose deployed file differs from the local one.

        A DAG that cannot be located remotely, or whose content cannot be
        compared, counts as drifted.
        """
        if not same:
            return set()

        resolution, defects = self._resolve_lenient(remote_tree, same)
        drifted = set(defects)
        for dag_id in sorted(defects):
            logger.warning(f"cannot locate deployed file for {dag_id}, restarting: {defects[dag_id]}")

        for dag_id, rel_path in sorted(single_paths(resolution).items()):
            if dag_id in drifted:
                continue
            equal, reason = self.comparator.content_equals(
                local_tree.path_for(rel_path), remote_tree.key_for(rel_path)
            )
            if not equal:
                if reason:
                    logger.warning(f"assuming {dag_id} changed: {reason}")
                else:
                    logger.info(f"{dag_id} changed since last deploy, restarting")
                drifted.add(dag_id)
        return drifted

    def plan(
        self,
        desired: AbstractSet[DagID],
        observed: AbstractSet[DagID],
        local_tree: LocalFileTree,
        remote_tree: ObjectStoreTree,
    ) -> ReconciliationPlan:
        """Build the fully resolved stop and start plan.

        Args:
            desired: DAG IDs that should be running
            observed: DAG IDs the environment currently knows
            local_tree: Working copy of the DAGs folder
            remote_tree: Deployed DAGs folder in the object store

        Raises:
            PlanningError: Listing every DAG of the final stop or start set
                that did not resolve to exactly one file
            IgnoreFileError: If an ignore file in either tree is invalid
        """
        raw_stop = set(dag_list_diff(observed, desired))
        raw_start = set(dag_list_diff(desired, observed))
        same = dag_list_intersect(observed, desired)
        logger.info(f"{len(raw_stop)} DAGs to stop, {len(raw_start)} to start, {len(same)} to check for changes")

        drifted = self.find_drifted(same, local_tree, remote_tree)
        raw_stop |= drifted
        raw_start |= drifted

        stop_resolution, stop_defects = self._resolve_lenient(remote_tree, raw_stop)
        start_resolution, start_defects = self._resolve_lenient(local_tree, raw_start)

        defects: Dict[DagID, str] = {}
        for tree, tree_defects in ((remote_tree, stop_defects), (local_tree, start_defects)):
            for dag_id, message in tree_defects.items():
                entry = f"{message} in {tree.label}"
                defects[dag_id] = f"{defects[dag_id]}; {entry}" if dag_id in defects else entry

        if defects:
            raise PlanningError(defects, {**stop_resolution, **start_resolution})

        plan = ReconciliationPlan(
            to_stop=single_paths(stop_resolution),
            to_start=single_paths(start_resolution),
            raw_stop=frozenset(raw_stop),
            raw_start=frozenset(raw_start),
            same=frozenset(same),
            drifted=frozenset(drifted),
        )
        logger.info(f"plan: stop {sorted(plan.to_stop)}, start {sorted(plan.to_start)}")
        return plan
