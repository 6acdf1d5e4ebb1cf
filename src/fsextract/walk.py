"""Pre-order traversal over a source tree with skip/abort control.

The visitor returns `None` (or `CONTINUE`) to keep going, `SKIP_DIR` to
not descend into the visited directory, or `Abort(cause)` to stop the
whole walk. Visiting a directory happens before any of its children, so
side effects of the visit (creating the directory) are in place when the
children are processed.

`SKIP_DIR` returned for a non-directory skips the rest of its siblings.
"""

from __future__ import annotations

import posixpath
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Final

from .entry import Entry
from .errors import SourceError
from .source import Source, normalize_path


class _SkipDir:
    def __repr__(self) -> str:
        return "SKIP_DIR"


SKIP_DIR: Final = _SkipDir()
CONTINUE: Final = None


@dataclass(frozen=True)
class Abort:
    cause: BaseException | None = None


VisitResult = Abort | _SkipDir | None
Visitor = Callable[[str, Entry | None, SourceError | None], VisitResult]


def walk(source: Source, root: str, visit: Visitor) -> Abort | None:
    root = normalize_path(root)
    try:
        entry = source.lookup(root)
    except SourceError as exc:
        result = visit(root, None, exc)
        return result if isinstance(result, Abort) else None

    result, names = _enter(source, root, entry, visit)
    if names is None:
        return result if isinstance(result, Abort) else None

    # one (directory path, remaining child names) pair per open level.
    stack: list[tuple[str, Iterator[str]]] = [(root, names)]
    while stack:
        parent, pending = stack[-1]
        name = next(pending, None)
        if name is None:
            _ = stack.pop()
            continue

        child_path = posixpath.join(parent, name)
        try:
            child = source.lookup(child_path)
        except SourceError as exc:
            result = visit(child_path, None, exc)
            if isinstance(result, Abort):
                return result
            continue

        result, child_names = _enter(source, child_path, child, visit)
        if isinstance(result, Abort):
            return result
        if result is SKIP_DIR and not child.is_dir:
            _ = stack.pop()
            continue
        if child_names is not None:
            stack.append((child_path, child_names))
    return None


def _enter(
    source: Source, path: str, entry: Entry, visit: Visitor
) -> tuple[VisitResult, Iterator[str] | None]:
    """Visit one entry; return the visit result and the names to descend into."""
    if not entry.is_dir:
        return visit(path, entry, None), None

    names: list[str] = []
    list_error: SourceError | None = None
    try:
        names = list(source.list_children(entry))
    except SourceError as exc:
        list_error = exc

    result = visit(path, entry, list_error)
    if list_error is not None or result is not None:
        return result, None
    return None, iter(names)
