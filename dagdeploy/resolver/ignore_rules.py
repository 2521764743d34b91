"""Parsing and matching of .airflowignore rules.

Each rule is rebased onto the tree root when it is parsed, so a pattern
declared in ``team_a/.airflowignore`` is stored as ``team_a/<pattern>`` and
matched against root-relative paths. Rules containing ``**`` are glob
patterns; all other rules are regular expressions searched in the path.
Compiled matchers are memoized per pattern string.
"""
from __future__ import annotations

import functools
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from wcmatch import glob as wcglob

from ..exceptions import IgnoreFileError

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".airflowignore"
GLOBSTAR_TOKEN = "**"
COMMENT_PATTERN = re.compile(r"#.*")

# Paths are made absolute under this base before glob matching
GLOB_BASE = "/"

_GLOB_FLAGS = wcglob.GLOBSTAR | wcglob.DOTGLOB

Matcher = Callable[[str], bool]


@dataclass(frozen=True)
class IgnoreRule:
    """A single ignore pattern, rebased onto the tree root.

    Attributes:
        pattern: Pattern relative to the tree root
        source_dir: Root-relative directory of the declaring ignore file
        is_glob: Whether the pattern is matched as a glob instead of a regex
    """

    pattern: str
    source_dir: str = "."
    is_glob: bool = False
    _matcher: Matcher = field(default=None, compare=False, repr=False)  # type: ignore[assignment]

    def matches(self, rel_path: str) -> bool:
        """Check a root-relative POSIX path against this rule."""
        return self._matcher(rel_path)


@functools.lru_cache(maxsize=None)
def _compile_glob(pattern: str) -> Matcher:
    absolute = posixpath.join(GLOB_BASE, pattern)
    return lambda rel_path: wcglob.globmatch(
        posixpath.join(GLOB_BASE, rel_path), absolute, flags=_GLOB_FLAGS
    )


@functools.lru_cache(maxsize=None)
def _compile_regex(pattern: str) -> Matcher:
    compiled = re.compile(pattern)
    return lambda rel_path: compiled.search(rel_path) is not None


def compile_rule(pattern: str, source_dir: str = ".") -> IgnoreRule:
    """Compile a root-relative pattern into an IgnoreRule.

    Raises:
        re.error: If a non-glob pattern is not a valid regular expression
    """
    if GLOBSTAR_TOKEN in pattern:
        return IgnoreRule(pattern, source_dir, True, _compile_glob(pattern))
    return IgnoreRule(pattern, source_dir, False, _compile_regex(pattern))


# Anything with a literal ``tmp`` path segment is never deployed
IMPLICIT_RULE = compile_rule(r"(^|/)tmp(/|$)")


def scrub_comments(lines: Iterable[str]) -> List[str]:
    """Strip everything from ``#`` to end of line and drop blank results."""
    scrubbed = []
    for line in lines:
        candidate = COMMENT_PATTERN.sub("", line).strip()
        if candidate:
            scrubbed.append(candidate)
    return scrubbed


def rebase_pattern(rel_dir: str, pattern: str) -> str:
    """Re-express ``pattern`` declared in ``rel_dir`` relative to the tree root."""
    anchored = pattern.startswith("^")
    body = pattern[1:] if anchored else pattern
    if rel_dir in ("", "."):
        rebased = posixpath.normpath(body)
    else:
        rebased = posixpath.normpath(posixpath.join(rel_dir, body))
    return f"^{rebased}" if anchored else rebased


def parse_ignore_file(content: str, rel_dir: str, source: str) -> List[IgnoreRule]:
    """Parse the text of an ignore file declared in ``rel_dir``.

    Args:
        content: Raw file content
        rel_dir: Root-relative directory holding the ignore file
        source: Display name of the file, used in errors

    Raises:
        IgnoreFileError: If a pattern cannot be compiled
    """
    rules = []
    for raw in scrub_comments(content.splitlines()):
        pattern = rebase_pattern(rel_dir, raw)
        try:
            rules.append(compile_rule(pattern, rel_dir))
        except re.error as e:
            raise IgnoreFileError(source, raw, str(e)) from e
    logger.debug(f"adding the following patterns to ignore index [{rel_dir}]: {[r.pattern for r in rules]}")
    return rules


def ancestors(rel_dir: str) -> List[str]:
    """Return ``rel_dir`` followed by each ancestor up to and including the root ``.``."""
    chain = []
    current = rel_dir or "."
    while True:
        chain.append(current)
        if current == ".":
            return chain
        parent = posixpath.dirname(current)
        current = parent or "."


def effective_rules(index: Dict[str, List[IgnoreRule]], rel_dir: str) -> List[IgnoreRule]:
    """Rules that apply to entries directly inside ``rel_dir``.

    The implicit ``tmp`` rule comes first, then the rules declared in
    ``rel_dir`` itself and then those of every ancestor up to the root.
    """
    rules = [IMPLICIT_RULE]
    for directory in ancestors(rel_dir):
        rules.extend(index.get(directory, ()))
    return rules


def first_match(rules: Iterable[IgnoreRule], rel_path: str) -> Optional[IgnoreRule]:
    """Return the first rule matching ``rel_path``, if any."""
    for rule in rules:
        if rule.matches(rel_path):
            return rule
    return None
