"""Resolution of DAG IDs to source files under .airflowignore rules."""

from .ignore_rules import IGNORE_FILE_NAME, IgnoreRule, compile_rule, parse_ignore_file
from .tree_resolver import DAG_FILE_SUFFIX, TreeResolver, dag_id_for, single_paths
from .trees import FileTree, LocalFileTree, ObjectStoreTree

__all__ = [
    "DAG_FILE_SUFFIX",
    "FileTree",
    "IGNORE_FILE_NAME",
    "IgnoreRule",
    "LocalFileTree",
    "ObjectStoreTree",
    "TreeResolver",
    "compile_rule",
    "dag_id_for",
    "parse_ignore_file",
    "single_paths",
]
