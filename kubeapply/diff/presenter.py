"""Rendering of structured diff results.

print_full   -- Per-resource human-readable output with +/- markers.
print_summary -- One row per changed resource with added/removed counts.
to_json      -- Stable, indented JSON envelope for downstream tooling.
to_json_many -- The same envelope for several clusters in one document.

None of these mutate the DiffResultSet; the only side effect is writing to
the sink passed in.
"""

from __future__ import annotations

import json
from typing import TextIO

import click

from kubeapply.models.diff import ChangeKind, ChangeRecord, DiffHunk, DiffResultSet, LineOp

_LINE_MARKERS = {
    LineOp.CONTEXT: "  ",
    LineOp.ADDED: "+ ",
    LineOp.REMOVED: "- ",
}

_LINE_COLORS = {
    LineOp.CONTEXT: None,
    LineOp.ADDED: "green",
    LineOp.REMOVED: "red",
}

_CHANGE_COLORS = {
    ChangeKind.ADDED: "green",
    ChangeKind.REMOVED: "red",
    ChangeKind.MODIFIED: "yellow",
    ChangeKind.UNCHANGED: None,
}


def _style(text: str, fg: str | None, color: bool, bold: bool = False) -> str:
    if not color or (fg is None and not bold):
        return text
    return click.style(text, fg=fg, bold=bold)


def _visible(results: DiffResultSet, verbose: bool) -> list[ChangeRecord]:
    return [r for r in results.records if verbose or r.change is not ChangeKind.UNCHANGED]


def _write_hunk(hunk: DiffHunk, out: TextIO, color: bool) -> None:
    out.write(_style(hunk.header, "cyan", color) + "\n")
    for line in hunk.lines:
        out.write(_style(_LINE_MARKERS[line.op] + line.text, _LINE_COLORS[line.op], color) + "\n")
    if hunk.omitted:
        out.write(_style(f"  ... {hunk.omitted} unchanged lines not shown", None, color) + "\n")


def print_full(results: DiffResultSet, out: TextIO, verbose: bool = False, color: bool = False) -> None:
    """Write every changed resource and its hunks to *out*.

    Unchanged resources are only listed when *verbose* is set.
    """
    records = _visible(results, verbose)
    if not records:
        out.write("No differences found\n")
        return

    for record in records:
        header = f">>> {record.key} ({record.change.value})"
        out.write(_style(header, _CHANGE_COLORS[record.change], color, bold=True) + "\n")
        for hunk in record.hunks:
            _write_hunk(hunk, out, color)
        out.write("\n")

    if results.short:
        out.write("(short diff: long runs of unchanged lines were collapsed)\n")


def print_summary(results: DiffResultSet, out: TextIO, verbose: bool = False) -> None:
    """Write a fixed-width table of resource, change kind and line counts."""
    records = _visible(results, verbose)
    rows = [("RESOURCE", "CHANGE", "ADDED", "REMOVED")]
    rows.extend(
        (str(r.key), r.change.value, f"+{r.num_added}", f"-{r.num_removed}")
        for r in records
    )
    widths = [max(len(row[col]) for row in rows) for col in range(len(rows[0]))]
    for row in rows:
        out.write("  ".join(cell.ljust(width) for cell, width in zip(row, widths, strict=True)).rstrip() + "\n")


def to_json(results: DiffResultSet) -> str:
    """Serialise *results* as indented JSON under a ``results`` key."""
    return json.dumps(results.to_dict(), indent=2)


def to_json_many(results: list[tuple[str, DiffResultSet]]) -> str:
    """Serialise several clusters' results as one document under a ``clusters`` key."""
    return json.dumps(
        {"clusters": [{"cluster": name, **result_set.to_dict()} for name, result_set in results]},
        indent=2,
    )
