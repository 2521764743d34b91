"""Services for planning and applying DAG deployments to Cloud Composer."""

from .composer import MONITORING_DAG, ComposerEnvironment, Connection, parse_list_dags_output
from .content_comparator import ContentComparator, local_md5
from .dag_list import dag_list_diff, dag_list_intersect, read_dag_list
from .executor import ApplyExecutor
from .reconciler import Reconciler
from .storage import GcsObjectStore, ObjectStore, parse_gcs_uri

__all__ = [
    "ApplyExecutor",
    "ComposerEnvironment",
    "Connection",
    "ContentComparator",
    "GcsObjectStore",
    "MONITORING_DAG",
    "ObjectStore",
    "Reconciler",
    "dag_list_diff",
    "dag_list_intersect",
    "local_md5",
    "parse_gcs_uri",
    "parse_list_dags_output",
    "read_dag_list",
]
