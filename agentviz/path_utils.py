"""Project-relative path helpers."""
from __future__ import annotations

from collections import Counter
from typing import Iterable

_SEPARATORS = ("/", "\\")


def _strip_trailing_separator(path: str) -> str:
    if len(path) > 1 and path[-1] in _SEPARATORS:
        return path[:-1]
    return path


def normalize_path(absolute_path: str | None, project_dir: str | None) -> str | None:
    """Convert an absolute path into one relative to ``project_dir``.

    Returns ``"."`` for the project root itself and the input unchanged when it
    lies outside the project or either argument is missing.
    """
    if not absolute_path or not project_dir:
        return absolute_path

    base = _strip_trailing_separator(project_dir)
    if absolute_path == base:
        return "."
    if absolute_path.startswith(base) and len(absolute_path) > len(base):
        if absolute_path[len(base)] in _SEPARATORS:
            return absolute_path[len(base) + 1:]
    return absolute_path


def is_within(path: str | None, project_dir: str | None) -> bool:
    """Loose containment used for correlation evidence (prefix or substring)."""
    if not path or not project_dir or not isinstance(path, str):
        return False
    base = _strip_trailing_separator(project_dir)
    return path.startswith(base) or base in path


def infer_project_dir(paths: Iterable[str], depth: int = 3) -> str | None:
    """Most common leading ``depth`` directory segments across absolute POSIX paths.

    The final segment of each path is treated as a file name and never counted.
    """
    counts: Counter[str] = Counter()
    for value in paths:
        if not isinstance(value, str) or not value.startswith("/"):
            continue
        segments = [s for s in value.split("/") if s][:-1]
        if len(segments) < depth:
            continue
        counts["/" + "/".join(segments[:depth])] += 1
    if not counts:
        return None
    return counts.most_common(1)[0][0]
