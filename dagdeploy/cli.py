"""Command line interface for deploying DAGs to Cloud Composer.

This module serves as the main entry point for the CLI with all commands
consolidated in a single file.
"""
from __future__ import annotations

import argparse
import logging
import posixpath
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Tuple

from . import __version__
from .config import Config, load_environment
from .exceptions import (
    CommandError,
    ConfigurationError,
    DagDeployError,
    IgnoreFileError,
    ResolutionError,
    StorageError,
)
from .resolver import LocalFileTree, ObjectStoreTree, TreeResolver
from .services import (
    ApplyExecutor,
    ComposerEnvironment,
    ContentComparator,
    GcsObjectStore,
    Reconciler,
    read_dag_list,
)
from .ui.console import ConsoleManager
from .utils.logging_factory import LoggingFactory

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2

PLUGINS_FOLDER = "plugins"
DATA_FOLDER = "data"
# Where Composer mounts the bucket's data/ folder inside Airflow workers
COMPOSER_DATA_MOUNT = "/home/airflow/gcs/data"


def _add_environment_arguments(parser: argparse.ArgumentParser) -> None:
    """Flags shared by every command that talks to an environment."""
    env = parser.add_argument_group("environment")
    env.add_argument("--name", help="Composer environment name (env: DAGDEPLOY_NAME)")
    env.add_argument("--location", help="Composer environment region (env: DAGDEPLOY_LOCATION)")
    env.add_argument("--project", help="GCP project of the environment (env: DAGDEPLOY_PROJECT)")
    env.add_argument(
        "--airflow-version",
        type=int,
        choices=[1, 2],
        help="Airflow major version of the environment (default: 2)",
    )
    env.add_argument(
        "--dag-bucket-prefix",
        help="gs:// DAGs folder; skips describing the environment when set",
    )

    paths = parser.add_argument_group("paths")
    paths.add_argument(
        "--list",
        dest="dag_list",
        help="File listing the DAG IDs that should be running (default: ./config/running_dags.txt)",
    )
    paths.add_argument("--dags", dest="dags_dir", help="Local DAGs folder (default: ./dags)")

    tuning = parser.add_argument_group("tuning")
    tuning.add_argument(
        "--max-workers",
        type=int,
        help="Maximum concurrent DAG workers per phase (default: 0, one per DAG)",
    )
    tuning.add_argument("--log-file", help="Also write logs to this file")


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="dagdeploy",
        description="Reconcile the DAGs running in Cloud Composer with a declared DAG list",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
  # Show what would be stopped and started
  dagdeploy plan --name my-env --location us-central1 --list running_dags.txt --dags ./dags

  # Deploy, also syncing plugins and data
  dagdeploy sync --name my-env --location us-central1 --plugins ./plugins --data ./data

  # Keep reconciling every 5 minutes
  dagdeploy sync --loop --interval 300

Exit codes:
  0  success
  1  configuration or planning failure, nothing was applied
  2  some DAGs failed to stop or start
        """,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--json-output",
        action="store_true",
        help="Emit machine-readable JSON events to stdout",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands", required=True)

    # Sync subcommand
    sync_parser = subparsers.add_parser(
        "sync",
        help="Sync plugins, data, variables, connections and DAGs to an environment",
        description="Stop DAGs no longer listed, restart changed DAGs and start new ones",
    )
    _add_environment_arguments(sync_parser)
    sync_parser.add_argument("--plugins", dest="plugins_dir", help="Local plugins folder to upload")
    sync_parser.add_argument("--data", dest="data_dir", help="Local data folder to upload")
    sync_parser.add_argument("--variables", dest="variables_file", help="Airflow variables JSON file to import")
    sync_parser.add_argument(
        "--connections", dest="connections_file", help="Airflow connections JSON file to import"
    )
    sync_parser.add_argument(
        "--loop",
        action="store_true",
        default=None,
        help="Keep reconciling until interrupted",
    )
    sync_parser.add_argument(
        "--interval",
        dest="loop_interval",
        type=float,
        help="Seconds between reconciliations in loop mode (default: 60)",
    )
    sync_parser.add_argument("--dry-run", action="store_true", help="Print the plan without applying it")

    # Plan subcommand
    plan_parser = subparsers.add_parser(
        "plan",
        help="Compute and print the reconciliation plan",
        description="Resolve the stop and start sets without changing the environment",
    )
    _add_environment_arguments(plan_parser)

    return parser


def build_config(args: argparse.Namespace) -> Config:
    """Environment-backed configuration with command line overrides applied."""
    overrides = {
        key: getattr(args, key, None)
        for key in (
            "name",
            "location",
            "project",
            "airflow_version",
            "dag_bucket_prefix",
            "dag_list",
            "dags_dir",
            "max_workers",
            "log_file",
            "plugins_dir",
            "data_dir",
            "variables_file",
            "connections_file",
            "loop",
            "loop_interval",
        )
    }
    return Config().with_overrides(**overrides)


def build_environment(config: Config) -> ComposerEnvironment:
    return ComposerEnvironment(
        name=config.name,
        location=config.location,
        project=config.project,
        airflow_version=config.airflow_version,
        gcloud_binary=config.gcloud_binary,
        timeout=config.command_timeout,
        monitoring_dag=config.monitoring_dag,
    )


def configure_bucket(config: Config, composer: ComposerEnvironment) -> Tuple[GcsObjectStore, str]:
    """Find the environment's DAG bucket, describing the environment if needed.

    Returns:
        Tuple of (bucket store, key prefix of the DAGs folder)
    """
    prefix = config.dag_bucket_prefix or composer.describe()
    return GcsObjectStore.from_prefix(prefix, project=config.project, timeout=config.storage_timeout)


def sync_folders(config: Config, store: GcsObjectStore) -> None:
    """Upload the optional plugins and data folders to the environment bucket."""
    for local_dir, folder in ((config.plugins_dir, PLUGINS_FOLDER), (config.data_dir, DATA_FOLDER)):
        if local_dir:
            logger.info(f"syncing {folder} from {local_dir}")
            count = store.bulk_upload(local_dir, folder)
            logger.info(f"uploaded {count} files to {store.uri}/{folder}")


def import_settings(config: Config, composer: ComposerEnvironment, store: GcsObjectStore) -> None:
    """Import Airflow variables and connections when their files are configured."""
    if config.variables_file:
        # The import runs inside the environment, so the file has to be in the bucket first
        name = Path(config.variables_file).name
        store.upload(f"{DATA_FOLDER}/{name}", config.variables_file)
        composer.import_variables(posixpath.join(COMPOSER_DATA_MOUNT, name))
    if config.connections_file:
        composer.import_connections(config.connections_file)


def reconcile_once(
    config: Config,
    composer: ComposerEnvironment,
    store: GcsObjectStore,
    dags_prefix: str,
    console_manager: ConsoleManager,
    dry_run: bool = False,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """Plan and, unless ``dry_run``, apply one reconciliation.

    Returns:
        Exit code
    """
    desired = read_dag_list(config.dag_list)
    observed = composer.list_running()

    local_tree = LocalFileTree(config.dags_dir)
    remote_tree = ObjectStoreTree(store, dags_prefix)
    reconciler = Reconciler(TreeResolver(), ContentComparator(store))

    console_manager.print_stage("Planning")
    plan = reconciler.plan(desired, observed, local_tree, remote_tree)
    console_manager.print_plan(plan)

    if dry_run:
        return EXIT_OK
    if cancel_event is not None and cancel_event.is_set():
        logger.warning("cancelled before apply")
        return EXIT_FAILURE

    console_manager.print_stage("Applying")
    executor = ApplyExecutor(
        composer,
        remote_tree,
        local_tree,
        stop_retry=config.stop_retry_config(),
        unpause_retry=config.unpause_retry_config(),
        max_workers=config.max_workers,
        monitoring_dag=config.monitoring_dag,
        cancel_event=cancel_event,
    )
    report = executor.apply(plan)
    console_manager.print_report(report)

    if report.ok:
        console_manager.print_stage("Sync complete", "complete")
        return EXIT_OK
    console_manager.print_stage(f"{len(report.failed)} DAG operations failed", "error")
    return EXIT_PARTIAL


def _report_planning_failure(error: DagDeployError, console_manager: ConsoleManager) -> int:
    if isinstance(error, ResolutionError):
        for dag_id in error.dag_ids:
            console_manager.print_error(error.defects[dag_id])
    else:
        console_manager.print_error(str(error))
    return EXIT_FAILURE


def sync_command(
    args: argparse.Namespace,
    console_manager: ConsoleManager,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """Handle the sync command.

    Returns:
        Exit code
    """
    cancel_event = cancel_event or threading.Event()
    try:
        config = build_config(args)
        config.validate()
        composer = build_environment(config)

        console_manager.print_stage("Configuring environment")
        store, dags_prefix = configure_bucket(config, composer)
        if not args.dry_run:
            sync_folders(config, store)
            import_settings(config, composer, store)
    except (ConfigurationError, CommandError, StorageError, OSError) as e:
        logger.error(f"Sync failed: {e}")
        console_manager.print_error(str(e))
        return EXIT_FAILURE

    while True:
        try:
            code = reconcile_once(
                config, composer, store, dags_prefix, console_manager, args.dry_run, cancel_event
            )
        except (ResolutionError, IgnoreFileError, CommandError, StorageError) as e:
            logger.error(f"Planning failed: {e}")
            code = _report_planning_failure(e, console_manager)
        except OSError as e:
            logger.error(f"Planning failed: {e}")
            console_manager.print_error(str(e))
            code = EXIT_FAILURE

        if not config.loop:
            return code
        logger.info(f"sleeping {config.loop_interval:.0f}s before next reconciliation")
        if cancel_event.wait(config.loop_interval):
            logger.info("loop cancelled")
            return code


def plan_command(args: argparse.Namespace, console_manager: ConsoleManager) -> int:
    """Handle the plan command.

    Returns:
        Exit code
    """
    try:
        config = build_config(args)
        config.validate()
        composer = build_environment(config)
        store, dags_prefix = configure_bucket(config, composer)
        return reconcile_once(config, composer, store, dags_prefix, console_manager, dry_run=True)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        console_manager.print_error(str(e))
        return EXIT_FAILURE
    except (ResolutionError, IgnoreFileError, CommandError, StorageError) as e:
        logger.error(f"Planning failed: {e}")
        return _report_planning_failure(e, console_manager)
    except OSError as e:
        logger.error(f"Planning failed: {e}")
        console_manager.print_error(str(e))
        return EXIT_FAILURE


def setup_logging(args: argparse.Namespace, console_manager: ConsoleManager) -> None:
    """Configure the logging system once, from flags and environment."""
    log_file = getattr(args, "log_file", None) or Config().log_file
    level = logging.DEBUG if args.verbose else getattr(logging, Config().log_level, logging.INFO)
    LoggingFactory.initialize(level=level, log_file=Path(log_file) if log_file else None, console=False)
    package_logger = logging.getLogger("dagdeploy")
    console_manager.setup_logging(package_logger)
    if not args.verbose:
        package_logger.setLevel(level)


def _install_interrupt_handler(cancel_event: threading.Event) -> None:
    def _handler(signum, frame):
        logger.error("Operation cancelled by user")
        cancel_event.set()

    signal.signal(signal.SIGINT, _handler)


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    load_environment()
    console_manager = ConsoleManager(verbose=args.verbose, json_output=args.json_output)

    try:
        setup_logging(args, console_manager)
        cancel_event = threading.Event()

        if args.command == "sync":
            _install_interrupt_handler(cancel_event)
            return sync_command(args, console_manager, cancel_event)
        elif args.command == "plan":
            return plan_command(args, console_manager)
        else:
            parser.print_help()
            return EXIT_FAILURE
    except ConfigurationError as e:
        console_manager.print_error(str(e))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.error("Operation cancelled by user")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
