"""Console management with Rich integration.

This module provides a ConsoleManager that adapts output to:
- Rich-rendered tables and panels when attached to a terminal
- JSON events for machine-readable logs (CI/CD)
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..models import ApplyReport, DagStatus, ReconciliationPlan

STATUS_STYLES = {
    DagStatus.SUCCEEDED: "green",
    DagStatus.FAILED: "red",
    DagStatus.CANCELLED: "yellow",
}


class ThreadSafeConsole:
    """Thread-safe wrapper around Rich Console."""

    def __init__(self, console: Console):
        self._console = console
        self._lock = threading.RLock()

    @property
    def raw(self) -> Console:
        return self._console

    def print(self, *args, **kwargs):
        """Thread-safe print method."""
        with self._lock:
            self._console.print(*args, **kwargs)


class ConsoleManager:
    """Manages console output with Rich integration."""

    def __init__(self, verbose: bool = False, json_output: bool = False, console: Optional[Console] = None):
        self.verbose = verbose
        self.json_output = json_output
        self._json_max_field_length = 500

        if self.json_output:
            self.console = None
        else:
            self.console = ThreadSafeConsole(console or Console(stderr=True))

    def setup_logging(self, logger: logging.Logger) -> None:
        """Attach a Rich handler, or a plain message handler in JSON mode.

        Sets the logger level based on `verbose`.
        """

        def _has_handler_of_type(h_type):
            return any(isinstance(h, h_type) for h in logger.handlers)

        if self.json_output:
            if not _has_handler_of_type(logging.StreamHandler):
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(logging.Formatter("%(message)s"))
                logger.addHandler(handler)
        else:
            if not _has_handler_of_type(RichHandler):
                handler = RichHandler(
                    console=self.console.raw,
                    show_time=True,
                    show_path=self.verbose,
                    rich_tracebacks=True,
                )
                logger.addHandler(handler)
        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def _emit_json(self, event_type: str, **payload: Any) -> None:
        print(json.dumps({"timestamp": self._get_timestamp(), "type": event_type, **payload}))

    def print_stage(self, stage: str, status: str = "starting") -> None:
        """Print stage information with appropriate renderer."""
        if self.json_output:
            self._emit_json("stage", stage=self._sanitize_json_field(stage), status=status)
            return

        status_color = {
            "starting": "blue",
            "complete": "green",
            "error": "red",
            "warning": "yellow",
        }.get(status, "white")
        self.console.print(Panel(f"[bold]{escape(stage)}[/bold]", style=status_color, padding=(0, 1)))

    def print_plan(self, plan: ReconciliationPlan) -> None:
        """Print the stop/start plan as a table or a JSON event."""
        if self.json_output:
            self._emit_json("plan", plan=plan.to_dict())
            return

        if plan.is_empty:
            self.console.print("[green]Nothing to do: running DAGs match the DAG list[/green]")
            return

        table = Table(title="Reconciliation Plan")
        table.add_column("Action", style="bold")
        table.add_column("DAG", style="cyan")
        table.add_column("Path")
        table.add_column("Reason")

        for dag_id, rel_path in sorted(plan.to_stop.items()):
            reason = "changed" if dag_id in plan.drifted else "not in DAG list"
            table.add_row("[red]stop[/red]", escape(dag_id), escape(rel_path), reason)
        for dag_id, rel_path in sorted(plan.to_start.items()):
            reason = "changed" if dag_id in plan.drifted else "not running"
            table.add_row("[green]start[/green]", escape(dag_id), escape(rel_path), reason)

        self.console.print(table)

    def print_report(self, report: ApplyReport) -> None:
        """Print per-DAG apply results as a table or a JSON event."""
        if self.json_output:
            self._emit_json("report", report=report.to_dict())
            return

        table = Table(title="Apply Summary")
        table.add_column("Action", style="bold")
        table.add_column("DAG", style="cyan")
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Duration", style="green")
        table.add_column("Details")

        for result in report.results:
            style = STATUS_STYLES[result.status]
            details = "; ".join(([result.error] if result.error else []) + result.warnings)
            table.add_row(
                result.action.value,
                escape(result.dag_id),
                f"[{style}]{result.status.value}[/{style}]",
                str(result.attempts),
                f"{result.duration or 0:.1f}s",
                escape(details),
            )

        self.console.print(table)

    def print_error(self, message: str) -> None:
        """Print an error message."""
        if self.json_output:
            self._emit_json("error", message=self._sanitize_json_field(message))
        else:
            self.console.print(f"[red]ERROR: {escape(message)}[/red]")

    def _get_timestamp(self) -> str:
        """Get ISO timestamp for JSON output."""
        return datetime.now().isoformat()

    def _sanitize_json_field(self, value: str) -> str:
        """Remove control characters and limit length."""
        if not isinstance(value, str):
            value = str(value)
        sanitized = "".join(char for char in value if ord(char) >= 32)
        return sanitized[: self._json_max_field_length]
