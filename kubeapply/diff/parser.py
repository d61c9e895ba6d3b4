"""Structured parser for kubectl unified diff output.

``kubectl diff`` writes every object it compares to a file named
``[group.]version.Kind.namespace.name`` in two temporary trees (live and
merged) and hands both trees to an external diff program.  With the default
``diff -u -N`` the output is one unified-diff segment per differing object:

    diff -u -N /tmp/LIVE-1/v1.Service.default.web /tmp/MERGED-2/v1.Service.default.web
    --- /tmp/LIVE-1/v1.Service.default.web	2024-05-01 10:00:00
    +++ /tmp/MERGED-2/v1.Service.default.web	2024-05-01 10:00:00
    @@ -5,7 +5,7 @@
     spec:
       ports:
    -  - port: 80
    +  - port: 8080

Segments are delimited only by these file headers; the resource key comes
from the object file name, never from the YAML content.  Hunk bodies are
consumed by the line counts in their ``@@`` header, so a removed line that
happens to start with ``-- `` is never mistaken for a new segment.

Lines are split on line feeds only.  A trailing carriage return is dropped
from every line, so CRLF input parses the same as LF input and never leaves
a carriage return in ``DiffLine.text``.

Anything that does not fit this shape raises :class:`ParseError`; a partial
result is never returned.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field

from kubeapply.errors import ParseError
from kubeapply.models.diff import (
    ChangeKind,
    ChangeRecord,
    DiffHunk,
    DiffLine,
    DiffResultSet,
    LineOp,
    ResourceKey,
)
from kubeapply.observability.logging import get_logger

_logger = get_logger("diff.parser")

DEV_NULL = "/dev/null"

_RE_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_RE_VERSION = re.compile(r"^v\d+((alpha|beta)\d+)?$")

_NO_NEWLINE_MARKER = "\\"

# Runs of context lines longer than this are collapsed in short mode.
_SHORT_CONTEXT_KEEP = 2


def parse_object_name(file_name: str) -> ResourceKey:
    """Derive the ResourceKey from a kubectl diff object file name.

    The name is ``[group.]version.Kind.namespace.name``; the group may contain
    dots, the namespace is empty for cluster-scoped objects and the object name
    may itself contain dots, so the version token is used as the anchor.

    Raises:
        ParseError: if the name does not follow the kubectl convention.
    """
    tokens = file_name.split(".")
    for i, token in enumerate(tokens):
        if not _RE_VERSION.match(token):
            continue
        rest = tokens[i + 1 :]
        if len(rest) < 3 or not rest[0][:1].isupper():
            continue
        kind, namespace = rest[0], rest[1]
        name = ".".join(rest[2:])
        if name:
            return ResourceKey(namespace=namespace, kind=kind, name=name)
    raise ParseError(f"Unrecognised kubectl object file name: {file_name!r}", resource=file_name)


# ---------------------------------------------------------------------------
# Intermediate segment representation
# ---------------------------------------------------------------------------


@dataclass
class _Hunk:
    header: str
    old_len: int
    new_len: int
    lines: list[DiffLine] = field(default_factory=list)


@dataclass
class _Segment:
    old_path: str
    new_path: str
    start_line: int
    key: ResourceKey
    file_name: str = ""
    hunks: list[_Hunk] = field(default_factory=list)

    @property
    def old_absent(self) -> bool:
        if self.old_path == DEV_NULL:
            return True
        return bool(self.hunks) and all(h.old_len == 0 for h in self.hunks)

    @property
    def new_absent(self) -> bool:
        if self.new_path == DEV_NULL:
            return True
        return bool(self.hunks) and all(h.new_len == 0 for h in self.hunks)


class StructuredDiffParser:
    """Turns unified diff text into an ordered :class:`DiffResultSet`.

    Args:
        short_diff: Collapse long runs of context lines to their first and
                    last line.  Records produced this way are flagged
                    ``short=True`` and each hunk counts what it dropped.
        verbose:    Keep records for objects without change lines.

    The parser holds no state between calls; ``parse`` is a pure function of
    its input text and the two flags.
    """

    def __init__(self, short_diff: bool = False, verbose: bool = False) -> None:
        self.short_diff = short_diff
        self.verbose = verbose

    def parse(self, raw: str, cluster: str = "") -> DiffResultSet:
        """Parse *raw* diff text into a DiffResultSet sorted by ResourceKey."""
        try:
            segments = _split_segments(raw)
        except ParseError as exc:
            exc.cluster = exc.cluster or cluster
            raise

        records: list[ChangeRecord] = []
        seen: dict[ResourceKey, int] = {}
        for segment in segments:
            if segment.key in seen:
                raise ParseError(
                    f"Resource appears in more than one segment (first at line {seen[segment.key]})",
                    line=segment.start_line,
                    resource=str(segment.key),
                    cluster=cluster,
                )
            seen[segment.key] = segment.start_line

            record = self._build_record(segment)
            if record.change is ChangeKind.UNCHANGED and not self.verbose:
                continue
            records.append(record)

        records.sort(key=lambda r: r.key)
        _logger.debug(
            "diff_parsed",
            cluster=cluster,
            segments=len(segments),
            records=len(records),
            short=self.short_diff,
        )
        return DiffResultSet(records=records, cluster=cluster, short=self.short_diff)

    def _build_record(self, segment: _Segment) -> ChangeRecord:
        change = _classify(segment)
        hunks = [_to_hunk(h, self.short_diff) for h in segment.hunks]
        return ChangeRecord(
            key=segment.key,
            change=change,
            hunks=hunks,
            short=self.short_diff,
            source=segment.file_name,
        )


def parse_diff(raw: str, short_diff: bool = False, verbose: bool = False, cluster: str = "") -> DiffResultSet:
    """Convenience wrapper around :meth:`StructuredDiffParser.parse`."""
    return StructuredDiffParser(short_diff=short_diff, verbose=verbose).parse(raw, cluster=cluster)


def shorten_raw_diff(raw: str) -> str:
    """Collapse long runs of context lines in raw unified diff text.

    Used for raw-mode output when a short diff is requested.  Headers and
    change lines are kept verbatim; each collapsed run leaves its first and
    last line with a marker in between stating how many lines were dropped.
    """
    out: list[str] = []
    run: list[str] = []

    def _flush() -> None:
        if len(run) > _SHORT_CONTEXT_KEEP:
            out.append(run[0])
            out.append(f" ... ({len(run) - _SHORT_CONTEXT_KEEP} unchanged lines)")
            out.append(run[-1])
        else:
            out.extend(run)
        run.clear()

    for line in raw.splitlines():
        if line.startswith(" "):
            run.append(line)
            continue
        _flush()
        out.append(line)
    _flush()
    return "\n".join(out) + ("\n" if raw.endswith("\n") else "")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _split_lines(raw: str) -> list[str]:
    lines = raw.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def _header_path(line: str, prefix: str) -> str:
    """Extract the path from a ``---``/``+++`` header, dropping any timestamp."""
    return line[len(prefix) :].split("\t", 1)[0].strip()


def _split_segments(raw: str) -> list[_Segment]:
    """Walk the diff line by line, building one segment per file header pair."""
    lines = _split_lines(raw)
    segments: list[_Segment] = []
    current: _Segment | None = None
    i = 0
    n = len(lines)

    while i < n:
        line = lines[i]
        lineno = i + 1

        if line.startswith("diff "):
            if i + 1 >= n or not lines[i + 1].startswith("--- "):
                raise ParseError("'diff' command line is not followed by a '---' header", line=lineno)
            i += 1
            continue

        if line.startswith("--- "):
            if i + 1 >= n or not lines[i + 1].startswith("+++ "):
                raise ParseError("'---' header without a matching '+++' header", line=lineno)
            current = _open_segment(
                _header_path(line, "--- "),
                _header_path(lines[i + 1], "+++ "),
                lineno,
            )
            segments.append(current)
            i += 2
            continue

        if line.startswith("+++ "):
            raise ParseError("'+++' header without a preceding '---' header", line=lineno)

        if line.startswith("@@"):
            if current is None:
                raise ParseError("Hunk found before any file header", line=lineno)
            i = _read_hunk(lines, i, current)
            continue

        if line == "":
            i += 1
            continue

        raise ParseError(
            f"Unexpected line outside of a hunk: {line[:80]!r}",
            line=lineno,
            resource=str(current.key) if current and current.key else "",
        )

    return segments


def _open_segment(old_path: str, new_path: str, lineno: int) -> _Segment:
    old_name = posixpath.basename(old_path) if old_path != DEV_NULL else ""
    new_name = posixpath.basename(new_path) if new_path != DEV_NULL else ""
    if not old_name and not new_name:
        raise ParseError("Both sides of the segment are /dev/null", line=lineno)
    if old_name and new_name and old_name != new_name:
        raise ParseError(
            f"Segment headers name different objects: {old_name!r} vs {new_name!r}",
            line=lineno,
        )
    file_name = old_name or new_name
    try:
        key = parse_object_name(file_name)
    except ParseError as exc:
        exc.line = lineno
        raise
    return _Segment(old_path=old_path, new_path=new_path, start_line=lineno, file_name=file_name, key=key)


def _read_hunk(lines: list[str], start: int, segment: _Segment) -> int:
    """Consume one hunk starting at ``lines[start]``; return the next index."""
    header = lines[start]
    resource = str(segment.key)
    match = _RE_HUNK_HEADER.match(header)
    if match is None:
        raise ParseError(f"Malformed hunk header: {header!r}", line=start + 1, resource=resource)

    old_len = int(match.group(2)) if match.group(2) is not None else 1
    new_len = int(match.group(4)) if match.group(4) is not None else 1
    hunk = _Hunk(header=header, old_len=old_len, new_len=new_len)

    old_left, new_left = old_len, new_len
    i = start + 1
    n = len(lines)
    while old_left > 0 or new_left > 0:
        if i >= n:
            raise ParseError(
                f"Hunk ended early: expected {old_left} more old and {new_left} more new lines",
                line=start + 1,
                resource=resource,
            )
        line = lines[i]
        marker, text = line[:1], line[1:]
        if marker == " " or line == "":
            op = LineOp.CONTEXT
            old_left -= 1
            new_left -= 1
        elif marker == "-":
            op = LineOp.REMOVED
            old_left -= 1
        elif marker == "+":
            op = LineOp.ADDED
            new_left -= 1
        elif marker == _NO_NEWLINE_MARKER:
            i += 1
            continue
        else:
            raise ParseError(f"Unexpected line inside hunk: {line[:80]!r}", line=i + 1, resource=resource)

        if old_left < 0 or new_left < 0:
            raise ParseError("Hunk body is longer than its header declares", line=i + 1, resource=resource)
        hunk.lines.append(DiffLine(op=op, text=text))
        i += 1

    # A trailing "\ No newline at end of file" belongs to the last body line.
    while i < n and lines[i].startswith(_NO_NEWLINE_MARKER):
        i += 1

    segment.hunks.append(hunk)
    return i


def _classify(segment: _Segment) -> ChangeKind:
    has_added = any(line.op is LineOp.ADDED for h in segment.hunks for line in h.lines)
    has_removed = any(line.op is LineOp.REMOVED for h in segment.hunks for line in h.lines)

    if not has_added and not has_removed:
        return ChangeKind.UNCHANGED
    if has_added and not has_removed and segment.old_absent:
        return ChangeKind.ADDED
    if has_removed and not has_added and segment.new_absent:
        return ChangeKind.REMOVED
    return ChangeKind.MODIFIED


def _to_hunk(hunk: _Hunk, short_diff: bool) -> DiffHunk:
    if not short_diff:
        return DiffHunk(header=hunk.header, lines=list(hunk.lines))

    kept: list[DiffLine] = []
    omitted = 0
    run: list[DiffLine] = []

    def _flush() -> None:
        nonlocal omitted
        if len(run) > _SHORT_CONTEXT_KEEP:
            kept.append(run[0])
            kept.append(run[-1])
            omitted += len(run) - _SHORT_CONTEXT_KEEP
        else:
            kept.extend(run)
        run.clear()

    for line in hunk.lines:
        if line.op is LineOp.CONTEXT:
            run.append(line)
            continue
        _flush()
        kept.append(line)
    _flush()
    return DiffHunk(header=hunk.header, lines=kept, omitted=omitted)
