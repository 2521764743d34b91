"""Data models for reconciliation plans and apply results."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

DagID = str
RelPath = str
Resolution = Dict[DagID, List[RelPath]]


@dataclass(frozen=True)
class ReconciliationPlan:
    """Fully resolved stop and start plan for one reconciliation run.

    ``to_stop`` paths are relative to the remote DAG prefix and ``to_start``
    paths are relative to the local DAGs folder.
    """

    to_stop: Dict[DagID, RelPath] = field(default_factory=dict)
    to_start: Dict[DagID, RelPath] = field(default_factory=dict)
    raw_stop: FrozenSet[DagID] = frozenset()
    raw_start: FrozenSet[DagID] = frozenset()
    same: FrozenSet[DagID] = frozenset()
    drifted: FrozenSet[DagID] = frozenset()

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to stop or start."""
        return not self.to_stop and not self.to_start

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "to_stop": dict(sorted(self.to_stop.items())),
            "to_start": dict(sorted(self.to_start.items())),
            "same": sorted(self.same),
            "drifted": sorted(self.drifted),
        }


class DagAction(Enum):
    """Kind of work a worker performed for a DAG."""

    STOP = "stop"
    START = "start"
    HOUSEKEEPING = "housekeeping"


class DagStatus(Enum):
    """Outcome of a worker."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class DagResult:
    """Result of stopping or starting a single DAG."""

    dag_id: DagID
    action: DagAction
    rel_path: Optional[RelPath] = None
    status: DagStatus = DagStatus.SUCCEEDED
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    attempts: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    duration: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status == DagStatus.SUCCEEDED

    def complete(self, error: Optional[str] = None, status: Optional[DagStatus] = None) -> "DagResult":
        """Mark the result finished, failed if ``error`` is given."""
        self.end_time = datetime.now()
        self.duration = (self.end_time - self.start_time).total_seconds()
        if error is not None:
            self.status = status or DagStatus.FAILED
            self.error = error
        elif status is not None:
            self.status = status
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "dag_id": self.dag_id,
            "action": self.action.value,
            "rel_path": self.rel_path,
            "status": self.status.value,
            "error": self.error,
            "warnings": list(self.warnings),
            "attempts": self.attempts,
            "duration": self.duration,
        }


class ApplyReport:
    """Thread-safe aggregation of per-DAG apply results."""

    def __init__(self) -> None:
        self._results: List[DagResult] = []
        self._lock = threading.Lock()

    def add(self, result: DagResult) -> None:
        with self._lock:
            self._results.append(result)

    @property
    def results(self) -> List[DagResult]:
        """Snapshot of all results, ordered by action then DAG ID."""
        order = {DagAction.STOP: 0, DagAction.START: 1, DagAction.HOUSEKEEPING: 2}
        with self._lock:
            snapshot = list(self._results)
        return sorted(snapshot, key=lambda r: (order[r.action], r.dag_id))

    def for_action(self, action: DagAction) -> List[DagResult]:
        return [r for r in self.results if r.action == action]

    @property
    def failed(self) -> List[DagResult]:
        return [r for r in self.results if not r.ok]

    @property
    def succeeded(self) -> List[DagResult]:
        return [r for r in self.results if r.ok]

    @property
    def ok(self) -> bool:
        """True when every DAG worker succeeded. Housekeeping failures do not count."""
        return all(r.ok for r in self.results if r.action != DagAction.HOUSEKEEPING)

    def to_dict(self) -> Dict[str, Any]:
        results = self.results
        return {
            "ok": self.ok,
            "succeeded": sum(1 for r in results if r.ok),
            "failed": sum(1 for r in results if not r.ok),
            "results": [r.to_dict() for r in results],
        }
