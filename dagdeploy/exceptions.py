"""Exception hierarchy for dagdeploy."""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence


class DagDeployError(Exception):
    """Base class for all dagdeploy errors."""


class ConfigurationError(DagDeployError):
    """Raised when required settings are missing or invalid."""

    def __init__(self, message: str, fields: Optional[Sequence[str]] = None) -> None:
        self.fields = list(fields or [])
        super().__init__(message)


class IgnoreFileError(DagDeployError):
    """Raised when an .airflowignore file contains a pattern that cannot be compiled."""

    def __init__(self, path: str, pattern: str, reason: str) -> None:
        self.path = path
        self.pattern = pattern
        super().__init__(f"invalid ignore pattern {pattern!r} in {path}: {reason}")


class ResolutionError(DagDeployError):
    """Raised when one or more DAG IDs do not resolve to exactly one file.

    Attributes:
        defects: Mapping of DAG ID to a human readable defect message
        resolution: The (partial) resolution computed before validation
    """

    def __init__(
        self,
        defects: Dict[str, str],
        resolution: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        self.defects = dict(defects)
        self.resolution = dict(resolution or {})
        lines = "; ".join(self.defects[dag_id] for dag_id in sorted(self.defects))
        super().__init__(f"encountered errors matching files to DAGs: {lines}")

    @property
    def dag_ids(self) -> List[str]:
        """Sorted DAG IDs that failed to resolve."""
        return sorted(self.defects)


class PlanningError(ResolutionError):
    """Raised when the final stop/start sets cannot be fully resolved."""


class CommandError(DagDeployError):
    """Raised when a control plane command exits unsuccessfully."""

    def __init__(self, command: Sequence[str], returncode: Optional[int], output: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"command {' '.join(self.command)!r} failed with exit code {returncode}: {output.strip()}"
        )


class StorageError(DagDeployError):
    """Raised when an object store operation fails."""


class OperationCancelledError(DagDeployError):
    """Raised inside a worker when the run has been cancelled."""
