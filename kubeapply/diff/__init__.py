"""Structured diff engine.

Submodules:
    parser        -- StructuredDiffParser: unified diff text -> DiffResultSet.
    kdiff         -- Unified diff of two kubectl object trees.
    presenter     -- Human-readable and JSON rendering of results.
    orchestrator  -- DiffOrchestrator: verify -> lock -> run -> parse.
"""

from kubeapply.diff.kdiff import diff_trees, kdiff
from kubeapply.diff.orchestrator import DiffOrchestrator, DiffOutcome, DiffState, diff_targets
from kubeapply.diff.parser import StructuredDiffParser, parse_diff, parse_object_name
from kubeapply.diff.presenter import print_full, print_summary, to_json, to_json_many

__all__ = [
    "DiffOrchestrator",
    "DiffOutcome",
    "DiffState",
    "StructuredDiffParser",
    "diff_targets",
    "diff_trees",
    "kdiff",
    "parse_diff",
    "parse_object_name",
    "print_full",
    "print_summary",
    "to_json",
    "to_json_many",
]
