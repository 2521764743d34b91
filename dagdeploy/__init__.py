"""Reconcile the DAGs running in Cloud Composer with a declared DAG list."""

__version__ = "1.0.0"
