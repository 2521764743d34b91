"""Cloud Composer control plane, driven through the gcloud CLI.

Airflow subcommands are executed with ``gcloud beta composer environments
run``. Airflow 1 and Airflow 2 spell most subcommands differently, so every
operation is looked up in a per-version command table.
"""
from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import CommandError, ConfigurationError

logger = logging.getLogger(__name__)

MONITORING_DAG = "airflow_monitoring"
SUPPORTED_AIRFLOW_VERSIONS = (1, 2)

# Airflow 1 prints DAG IDs after the second of these separator lines
_LIST_SEPARATOR_MIN_WIDTH = 10


@dataclass(frozen=True)
class AirflowCommand:
    """An Airflow CLI subcommand and the fixed arguments that follow it."""

    subcommand: Tuple[str, ...]
    args: Tuple[str, ...] = ()


COMMANDS: Dict[int, Dict[str, AirflowCommand]] = {
    1: {
        "list": AirflowCommand(("list_dags",)),
        "pause": AirflowCommand(("pause",)),
        "unpause": AirflowCommand(("unpause",)),
        "delete": AirflowCommand(("delete_dag",), ("-y",)),
        "variables_import": AirflowCommand(("variables",), ("-i",)),
    },
    2: {
        "list": AirflowCommand(("dags", "list")),
        "pause": AirflowCommand(("dags", "pause")),
        "unpause": AirflowCommand(("dags", "unpause")),
        "delete": AirflowCommand(("dags", "delete"), ("--yes",)),
        "variables_import": AirflowCommand(("variables", "import")),
    },
}


class Connection(BaseModel):
    """An Airflow connection as listed in a connections JSON file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    uri: str = ""
    type: str = ""
    conn_schema: str = Field("", alias="schema")
    port: Union[int, str] = ""
    password: str = ""
    login: str = ""
    host: str = ""
    extra: Dict[str, Any] = Field(default_factory=dict)

    def add_options(self, airflow_version: int) -> List[str]:
        """Options for ``connections add``, omitting empty values."""
        sep = "-" if airflow_version >= 2 else "_"
        values = [
            ("uri", self.uri),
            ("type", self.type),
            ("schema", self.conn_schema),
            ("port", str(self.port) if self.port else ""),
            ("password", self.password),
            ("login", self.login),
            ("host", self.host),
            ("extra", json.dumps(self.extra) if self.extra else ""),
        ]
        options = []
        for key, value in values:
            if value:
                options.extend([f"--conn{sep}{key}", value])
        return options


def load_connections(path: Path | str) -> List[Connection]:
    """Read and validate a JSON list of connections.

    Raises:
        ConfigurationError: If the file cannot be read or is not a valid list
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"cannot read connections file {path}: {e}", ["connections_file"]) from e
    if not isinstance(raw, list):
        raise ConfigurationError(f"connections file {path} must contain a JSON list", ["connections_file"])
    try:
        return [Connection.model_validate(item) for item in raw]
    except ValidationError as e:
        raise ConfigurationError(f"invalid connection in {path}: {e}", ["connections_file"]) from e


def _is_separator(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) >= _LIST_SEPARATOR_MIN_WIDTH and set(stripped) == {"-"}


def _is_table_rule(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and set(stripped) <= set("-=+| ")


def _columns(line: str) -> List[str]:
    return line.replace("|", " ").split()


def parse_list_dags_output(output: str, exclude: Sequence[str] = (MONITORING_DAG,)) -> FrozenSet[str]:
    """Extract DAG IDs from ``list_dags`` (Airflow 1) or ``dags list`` (Airflow 2) output.

    Airflow 1 prints a banner between two dashed separator lines followed by
    one DAG ID per line. Airflow 2 prints a table whose first column is
    ``dag_id``.

    Raises:
        ValueError: If the output matches neither layout
    """
    lines = output.splitlines()
    excluded = set(exclude)

    separators = [i for i, line in enumerate(lines) if _is_separator(line)]
    header = next((i for i, line in enumerate(lines) if _columns(line)[:1] == ["dag_id"]), None)

    if header is not None:
        dag_ids = {
            _columns(line)[0]
            for line in lines[header + 1:]
            if line.strip() and not _is_table_rule(line)
        }
    elif len(separators) >= 2:
        dag_ids = {line.strip() for line in lines[separators[1] + 1:] if line.strip()}
    else:
        raise ValueError(f"list output did not contain expected separators: {output!r}")

    return frozenset(dag_ids - excluded)


class ComposerEnvironment:
    """Runs Airflow CLI commands against one Cloud Composer environment."""

    def __init__(
        self,
        name: str,
        location: str,
        project: Optional[str] = None,
        airflow_version: int = 2,
        gcloud_binary: str = "gcloud",
        timeout: float = 600.0,
        monitoring_dag: str = MONITORING_DAG,
    ) -> None:
        if airflow_version not in SUPPORTED_AIRFLOW_VERSIONS:
            raise ConfigurationError(
                f"unsupported airflow version {airflow_version}, expected one of {SUPPORTED_AIRFLOW_VERSIONS}",
                ["airflow_version"],
            )
        self.name = name
        self.location = location
        self.project = project or None
        self.airflow_version = airflow_version
        self.gcloud_binary = gcloud_binary
        self.timeout = timeout
        self.monitoring_dag = monitoring_dag

    def _scope_flags(self) -> List[str]:
        flags = [f"--location={self.location}"]
        if self.project:
            flags.append(f"--project={self.project}")
        return flags

    def assemble_run_command(self, subcommand: Sequence[str], args: Sequence[str] = ()) -> List[str]:
        """Build the argv of ``gcloud beta composer environments run``."""
        cmd = [self.gcloud_binary, "beta", "composer", "environments", "run", self.name]
        cmd.extend(self._scope_flags())
        cmd.extend(subcommand)
        if args:
            cmd.append("--")
            cmd.extend(args)
        return cmd

    def _execute(self, cmd: List[str]) -> str:
        logger.info(f"running {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise CommandError(cmd, None, f"{self.gcloud_binary} is not installed or not on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(cmd, None, f"timed out after {self.timeout}s") from e

        if result.returncode != 0:
            raise CommandError(cmd, result.returncode, f"{result.stdout}{result.stderr}")
        logger.debug(f"output of {cmd[-1]}: {result.stdout}")
        return result.stdout

    def run(self, subcommand: Sequence[str], *args: str) -> str:
        """Run an Airflow subcommand in the environment and return its stdout.

        Raises:
            CommandError: If gcloud is missing, times out or exits non-zero
        """
        return self._execute(self.assemble_run_command(subcommand, args))

    def _run_named(self, operation: str, *args: str) -> str:
        command = COMMANDS[self.airflow_version][operation]
        return self.run(command.subcommand, *command.args, *args)

    def describe(self) -> str:
        """Return the environment's DAG bucket prefix (``config.dagGcsPrefix``).

        Raises:
            CommandError: If describe fails or the output lacks the prefix
        """
        cmd = [self.gcloud_binary, "composer", "environments", "describe", self.name]
        cmd.extend(self._scope_flags())
        cmd.append("--format=yaml")
        output = self._execute(cmd)
        try:
            described = yaml.safe_load(output) or {}
        except yaml.YAMLError as e:
            raise CommandError(cmd, 0, f"cannot parse describe output: {e}") from e

        prefix = (described.get("config") or {}).get("dagGcsPrefix")
        if not prefix:
            raise CommandError(cmd, 0, "describe output has no config.dagGcsPrefix")
        logger.info(f"environment {self.name} uses DAG bucket prefix {prefix}")
        return prefix

    def list_running(self) -> FrozenSet[str]:
        """DAG IDs currently known to the environment, without the monitoring DAG."""
        output = self._run_named("list")
        try:
            running = parse_list_dags_output(output, exclude=(self.monitoring_dag,))
        except ValueError as e:
            command = COMMANDS[self.airflow_version]["list"]
            raise CommandError(self.assemble_run_command(command.subcommand), 0, str(e)) from e
        logger.info(f"running DAGs: {sorted(running)}")
        return running

    def pause(self, dag_id: str) -> None:
        self._run_named("pause", dag_id)

    def unpause(self, dag_id: str) -> None:
        self._run_named("unpause", dag_id)

    def purge_metadata(self, dag_id: str) -> None:
        """Delete all metadata of ``dag_id`` from the Airflow database."""
        self._run_named("delete", dag_id)

    def import_variables(self, path: Path | str) -> str:
        """Import Airflow variables from a JSON file readable by the environment."""
        output = self._run_named("variables_import", str(path))
        logger.info(f"imported variables: {path}")
        return output

    def import_connections(self, path: Path | str) -> int:
        """Replace every connection listed in ``path``.

        Each connection is deleted first (a missing connection is not an
        error) and then added again.

        Returns:
            Number of connections imported
        """
        connections = load_connections(path)
        for connection in connections:
            self._delete_connection(connection.name)
            if self.airflow_version >= 2:
                self.run(("connections", "add"), connection.name, *connection.add_options(2))
            else:
                self.run(("connections",), "--add", "--conn_id", connection.name, *connection.add_options(1))
            logger.info(f"imported connection {connection.name}")
        logger.info(f"imported {len(connections)} connections from {path}")
        return len(connections)

    def _delete_connection(self, name: str) -> None:
        try:
            if self.airflow_version >= 2:
                self.run(("connections", "delete"), name)
            else:
                self.run(("connections",), "--delete", "--conn_id", name)
        except CommandError as e:
            if "not found" not in e.output.lower() and "did not find" not in e.output.lower():
                raise
            logger.debug(f"connection {name} did not exist")
