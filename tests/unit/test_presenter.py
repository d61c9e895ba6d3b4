"""Tests for human-readable and JSON rendering of diff results."""

from __future__ import annotations

import copy
import io
import json

from kubeapply.diff.parser import parse_diff
from kubeapply.diff.presenter import print_full, print_summary, to_json, to_json_many
from kubeapply.models.diff import ChangeKind, ChangeRecord, DiffResultSet, ResourceKey
from tests.conftest import CONFIGMAP_ADDED_DIFF, SERVICE_DIFF


def _results(verbose: bool = False, short: bool = False) -> DiffResultSet:
    raw = SERVICE_DIFF + CONFIGMAP_ADDED_DIFF + "--- old/v1.Secret.default.token\n+++ new/v1.Secret.default.token\n"
    return parse_diff(raw, verbose=verbose, short_diff=short)


class TestPrintFull:
    def test_records_and_markers(self) -> None:
        out = io.StringIO()
        print_full(_results(), out)
        text = out.getvalue()
        assert ">>> default/ConfigMap/settings (added)" in text
        assert ">>> default/Service/web (modified)" in text
        assert "- " + "  - port: 80" in text
        assert "+ " + "  - port: 8080" in text
        assert "\n  " + "  namespace: default\n" in text
        assert text.index("ConfigMap/settings") < text.index("Service/web")

    def test_unchanged_hidden_unless_verbose(self) -> None:
        results = _results(verbose=True)
        quiet = io.StringIO()
        print_full(results, quiet)
        assert "Secret/token" not in quiet.getvalue()

        loud = io.StringIO()
        print_full(results, loud, verbose=True)
        assert ">>> default/Secret/token (unchanged)" in loud.getvalue()

    def test_no_differences(self) -> None:
        out = io.StringIO()
        print_full(DiffResultSet(), out)
        assert out.getvalue() == "No differences found\n"

    def test_short_mode_marked(self) -> None:
        out = io.StringIO()
        print_full(_results(short=True), out)
        text = out.getvalue()
        assert "unchanged lines not shown" in text
        assert "short diff" in text

    def test_color_uses_ansi_codes(self) -> None:
        out = io.StringIO()
        print_full(_results(), out, color=True)
        assert "\x1b[" in out.getvalue()

    def test_does_not_mutate(self) -> None:
        results = _results(verbose=True)
        before = copy.deepcopy(results.to_dict())
        print_full(results, io.StringIO(), verbose=True)
        print_summary(results, io.StringIO(), verbose=True)
        to_json(results)
        assert results.to_dict() == before


class TestPrintSummary:
    def test_table(self) -> None:
        out = io.StringIO()
        print_summary(_results(), out)
        lines = out.getvalue().splitlines()
        assert lines[0].split() == ["RESOURCE", "CHANGE", "ADDED", "REMOVED"]
        assert lines[1].split() == ["default/ConfigMap/settings", "added", "+6", "-0"]
        assert lines[2].split() == ["default/Service/web", "modified", "+1", "-1"]
        assert len(lines) == 3


class TestToJson:
    def test_envelope_shape(self) -> None:
        data = json.loads(to_json(_results()))
        assert list(data) == ["results"]
        first = data["results"][0]
        assert list(first) == [
            "namespace",
            "kind",
            "name",
            "change",
            "short",
            "source",
            "num_added",
            "num_removed",
            "hunks",
        ]
        assert first["kind"] == "ConfigMap"
        assert first["change"] == "added"
        assert list(first["hunks"][0]) == ["header", "omitted", "lines"]
        assert first["hunks"][0]["lines"][0] == {"op": "added", "text": "apiVersion: v1"}

    def test_empty_results_keep_envelope(self) -> None:
        assert to_json(DiffResultSet()) == '{\n  "results": []\n}'

    def test_indented(self) -> None:
        assert to_json(_results()).startswith('{\n  "results": [\n    {')

    def test_cluster_scoped_key(self) -> None:
        record = ChangeRecord(key=ResourceKey("", "Namespace", "team-a"), change=ChangeKind.ADDED)
        data = json.loads(to_json(DiffResultSet(records=[record])))
        assert data["results"][0]["namespace"] == ""
        assert data["results"][0]["hunks"] == []


class TestToJsonMany:
    def test_one_document_per_run(self) -> None:
        data = json.loads(to_json_many([("prod:east", _results()), ("prod:west", DiffResultSet())]))
        assert list(data) == ["clusters"]
        assert [c["cluster"] for c in data["clusters"]] == ["prod:east", "prod:west"]
        assert [r["kind"] for r in data["clusters"][0]["results"]] == ["ConfigMap", "Service"]
        assert data["clusters"][1]["results"] == []
