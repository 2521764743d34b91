"""Data models for the DAG reconciliation system.

This module provides data structures for reconciliation plans, file
resolutions and per-DAG apply results.
"""

from .plan import (
    ApplyReport,
    DagAction,
    DagID,
    DagResult,
    DagStatus,
    ReconciliationPlan,
    RelPath,
    Resolution,
)

__all__ = [
    "ApplyReport",
    "DagAction",
    "DagID",
    "DagResult",
    "DagStatus",
    "ReconciliationPlan",
    "RelPath",
    "Resolution",
]
