"""Cluster target and diff request data structures."""

from __future__ import annotations

import glob
import os
from dataclasses import dataclass, replace
from enum import StrEnum


class OutputMode(StrEnum):
    """What a diff run hands back to the caller."""

    RAW = "raw"
    STRUCTURED = "structured"


@dataclass(frozen=True)
class ClusterTarget:
    """One cluster to diff, as resolved from its cluster config.

    Immutable for the duration of a diff run.
    """

    name: str  # descriptive name, e.g. "stage-us-west-2"
    cluster: str  # cluster name the kubeconfig context must reference
    expanded_path: str
    kubeconfig_path: str = ""
    uid: str = ""  # recorded kube-system namespace UID; empty means unchecked
    subpaths: tuple[str, ...] = ()
    server_side_apply: bool = False
    use_locks: bool = False

    @property
    def lock_key(self) -> str:
        """Identity the concurrency lock is keyed on."""
        return self.uid or self.cluster

    def abs_subpaths(self) -> list[str]:
        """Return absolute paths for the configured subpaths.

        Subpaths may be globs relative to ``expanded_path``. With no subpaths
        the whole expanded tree is returned.
        """
        root = os.path.abspath(self.expanded_path)
        if not self.subpaths:
            return [root]

        paths: set[str] = set()
        for subpath in self.subpaths:
            matches = glob.glob(os.path.join(root, subpath))
            paths.update(os.path.abspath(m) for m in matches)
        return sorted(paths)


@dataclass(frozen=True)
class DiffRequest:
    """A single diff invocation against one ClusterTarget."""

    target: ClusterTarget
    mode: OutputMode = OutputMode.STRUCTURED
    subpaths: tuple[str, ...] = ()  # overrides target.subpaths when non-empty
    short_diff: bool = False
    verbose: bool = False
    lock_timeout: float | None = None

    def scoped_target(self) -> ClusterTarget:
        """Return the target restricted to this request's subpaths."""
        if not self.subpaths:
            return self.target
        return replace(self.target, subpaths=self.subpaths)
