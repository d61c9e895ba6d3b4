"""Unified diff of two kubectl object trees.

kubectl hands its external diff program two directories (live and merged)
holding one file per object.  :func:`diff_trees` produces the same unified
diff text ``diff -u -N`` would for those directories, with two differences
that the structured parser relies on:

* objects that only exist on one side use ``/dev/null`` for the other, and
* identical objects still get a header-only segment, so a verbose run can
  list them as unchanged.

The ``kubeapply kdiff`` command wraps :func:`kdiff` so it can be used
directly as ``KUBECTL_EXTERNAL_DIFF``.
"""

from __future__ import annotations

import difflib
import os

from kubeapply.diff.parser import DEV_NULL, StructuredDiffParser
from kubeapply.errors import ExecutionError
from kubeapply.models.diff import DiffResultSet

_CONTEXT_LINES = 3


def _list_objects(root: str) -> dict[str, str]:
    """Map object file name to full path for every regular file under *root*."""
    if not os.path.isdir(root):
        raise ExecutionError(f"Diff tree {root} does not exist or is not a directory")

    objects: dict[str, str] = {}
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            if filename.startswith("."):
                continue
            objects[filename] = os.path.join(dirpath, filename)
    return objects


def _read_lines(path: str) -> list[str]:
    with open(path, encoding="utf-8") as f:
        return f.read().splitlines()


def diff_trees(old_root: str, new_root: str) -> str:
    """Return unified diff text for two object trees, one segment per object.

    Objects are paired by file name and emitted in sorted name order.
    """
    old_objects = _list_objects(old_root)
    new_objects = _list_objects(new_root)

    chunks: list[str] = []
    for name in sorted(old_objects.keys() | new_objects.keys()):
        old_path = old_objects.get(name)
        new_path = new_objects.get(name)
        old_lines = _read_lines(old_path) if old_path else []
        new_lines = _read_lines(new_path) if new_path else []

        from_label = f"old/{name}" if old_path else DEV_NULL
        to_label = f"new/{name}" if new_path else DEV_NULL
        chunks.append(f"--- {from_label}\n+++ {to_label}\n")

        body = difflib.unified_diff(old_lines, new_lines, n=_CONTEXT_LINES, lineterm="")
        # Skip difflib's own ---/+++ header pair; ours is emitted above.
        for i, line in enumerate(body):
            if i < 2:
                continue
            chunks.append(line + "\n")
    return "".join(chunks)


def kdiff(old_root: str, new_root: str, short_diff: bool = False, verbose: bool = False) -> DiffResultSet:
    """Diff two object trees and parse the result into a DiffResultSet."""
    raw = diff_trees(old_root, new_root)
    return StructuredDiffParser(short_diff=short_diff, verbose=verbose).parse(raw)
