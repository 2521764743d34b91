"""Concurrent execution of a reconciliation plan.

The stop phase runs to completion before the start phase begins. Within a
phase every DAG gets its own worker; a failing worker is recorded in the
report and never stops its siblings.
"""
from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Callable, Dict, Optional, Protocol

from ..exceptions import DagDeployError, OperationCancelledError
from ..models import ApplyReport, DagAction, DagID, DagResult, DagStatus, ReconciliationPlan, RelPath
from ..resolver import LocalFileTree, ObjectStoreTree
from ..utils.retry import RetryConfig, RetryExhaustedError, call_with_retry
from .composer import MONITORING_DAG

logger = logging.getLogger(__name__)

Worker = Callable[[DagID, RelPath], DagResult]


class ControlPlane(Protocol):
    """Lifecycle operations the executor needs from the orchestration environment."""

    def pause(self, dag_id: str) -> None: ...

    def unpause(self, dag_id: str) -> None: ...

    def purge_metadata(self, dag_id: str) -> None: ...


def default_stop_retry() -> RetryConfig:
    return RetryConfig.fixed(max_attempts=5, delay=5.0)


def default_unpause_retry() -> RetryConfig:
    return RetryConfig.jittered(max_attempts=5, delay=60.0, jitter_ratio=0.10)


class ApplyExecutor:
    """Applies a ReconciliationPlan against Composer and its DAG bucket."""

    def __init__(
        self,
        control_plane: ControlPlane,
        remote_tree: ObjectStoreTree,
        local_tree: LocalFileTree,
        stop_retry: Optional[RetryConfig] = None,
        unpause_retry: Optional[RetryConfig] = None,
        max_workers: int = 0,
        monitoring_dag: str = MONITORING_DAG,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Initialize the executor.

        Args:
            control_plane: Environment to pause, unpause and purge DAGs in
            remote_tree: Deployed DAGs folder; its store receives uploads and deletes
            local_tree: Working copy the start phase uploads from
            stop_retry: Retry policy for purging DAG metadata
            unpause_retry: Retry policy for unpausing freshly uploaded DAGs
            max_workers: Upper bound on concurrent workers per phase, 0 for one per DAG
            monitoring_dag: DAG unpaused after every apply
            cancel_event: When set, workers stop between steps and retry waits end early
        """
        if max_workers < 0:
            raise ValueError("max_workers must be >= 0")
        self.control_plane = control_plane
        self.remote_tree = remote_tree
        self.local_tree = local_tree
        self.stop_retry = stop_retry or default_stop_retry()
        self.unpause_retry = unpause_retry or default_unpause_retry()
        self.max_workers = max_workers
        self.monitoring_dag = monitoring_dag
        self.cancel_event = cancel_event

    @property
    def store(self):
        return self.remote_tree.store

    def _check_cancelled(self, dag_id: DagID, step: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelledError(f"cancelled before {step} of {dag_id}")

    def apply(self, plan: ReconciliationPlan) -> ApplyReport:
        """Run the stop phase, then the start phase, then unpause the monitoring DAG."""
        report = ApplyReport()

        self._run_phase(DagAction.STOP, plan.to_stop, self.stop_dag, report)
        self._run_phase(DagAction.START, plan.to_start, self.start_dag, report)
        report.add(self.start_monitoring_dag())

        failed = report.failed
        if failed:
            logger.warning(f"apply finished with {len(failed)} failures: {[r.dag_id for r in failed]}")
        else:
            logger.info("apply finished successfully")
        return report

    def _run_phase(
        self,
        action: DagAction,
        items: Dict[DagID, RelPath],
        worker: Worker,
        report: ApplyReport,
    ) -> None:
        if not items:
            logger.info(f"nothing to {action.value}")
            return

        workers = self.max_workers or len(items)
        logger.info(f"{action.value} phase: {len(items)} DAGs with {min(workers, len(items))} workers")

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=f"dagdeploy-{action.value}"
        ) as executor:
            futures = {
                executor.submit(worker, dag_id, rel_path): (dag_id, rel_path)
                for dag_id, rel_path in sorted(items.items())
            }

            for future in concurrent.futures.as_completed(futures):
                dag_id, rel_path = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"{action.value} worker for {dag_id} crashed: {e}")
                    result = DagResult(dag_id=dag_id, action=action, rel_path=rel_path).complete(error=str(e))
                report.add(result)

    def stop_dag(self, dag_id: DagID, rel_path: RelPath) -> DagResult:
        """Pause a DAG, delete its deployed file and purge its metadata."""
        result = DagResult(dag_id=dag_id, action=DagAction.STOP, rel_path=rel_path)
        key = self.remote_tree.key_for(rel_path)
        try:
            self._check_cancelled(dag_id, "pause")
            logger.info(f"pausing dag: {dag_id} with relPath: {rel_path}")
            self.control_plane.pause(dag_id)

            self._check_cancelled(dag_id, "delete")
            logger.info(f"deleting {self.store.uri}/{key}")
            self.store.delete(key)

            self._check_cancelled(dag_id, "metadata purge")
            _, result.attempts = call_with_retry(
                lambda: self.control_plane.purge_metadata(dag_id),
                self.stop_retry,
                f"delete {dag_id}",
                self.cancel_event,
            )
        except OperationCancelledError as e:
            logger.warning(str(e))
            return result.complete(error=str(e), status=DagStatus.CANCELLED)
        except RetryExhaustedError as e:
            result.attempts = e.attempts
            logger.error(f"failed to stop {dag_id}: {e}")
            return result.complete(error=f"retried {e.attempts}x, delete still failing with: {e.last_exception}")
        except DagDeployError as e:
            logger.error(f"failed to stop {dag_id}: {e}")
            return result.complete(error=str(e))

        logger.info(f"stopped {dag_id}")
        return result.complete()

    def start_dag(self, dag_id: DagID, rel_path: RelPath) -> DagResult:
        """Replace a DAG's deployed file with the local one and unpause it."""
        result = DagResult(dag_id=dag_id, action=DagAction.START, rel_path=rel_path)
        key = self.remote_tree.key_for(rel_path)
        local_path = self.local_tree.path_for(rel_path)
        try:
            self._check_cancelled(dag_id, "delete")
            try:
                self.store.delete(key)
            except DagDeployError as e:
                # The object usually does not exist yet
                logger.debug(f"cant delete {key} before upload: {e}")
                result.warnings.append(f"pre-upload delete of {key} failed: {e}")

            self._check_cancelled(dag_id, "upload")
            self.store.upload(key, local_path)

            self._check_cancelled(dag_id, "unpause")
            _, result.attempts = call_with_retry(
                lambda: self.control_plane.unpause(dag_id),
                self.unpause_retry,
                f"unpause {dag_id}",
                self.cancel_event,
            )
        except OperationCancelledError as e:
            logger.warning(str(e))
            return result.complete(error=str(e), status=DagStatus.CANCELLED)
        except RetryExhaustedError as e:
            result.attempts = e.attempts
            logger.error(f"failed to start {dag_id}: {e}")
            return result.complete(error=f"retried {e.attempts}x, unpause still failing with: {e.last_exception}")
        except DagDeployError as e:
            logger.error(f"failed to start {dag_id}: {e}")
            return result.complete(error=str(e))

        logger.info(f"started {dag_id}")
        return result.complete()

    def start_monitoring_dag(self) -> DagResult:
        """Unpause the environment's monitoring DAG, independent of the plan."""
        result = DagResult(dag_id=self.monitoring_dag, action=DagAction.HOUSEKEEPING, attempts=1)
        try:
            self._check_cancelled(self.monitoring_dag, "unpause")
            self.control_plane.unpause(self.monitoring_dag)
        except OperationCancelledError as e:
            return result.complete(error=str(e), status=DagStatus.CANCELLED)
        except DagDeployError as e:
            logger.warning(f"failed to unpause {self.monitoring_dag}: {e}")
            return result.complete(error=str(e))
        return result.complete()
