"""Core data structures for kubeapply."""

from kubeapply.models.cluster import ClusterTarget, DiffRequest, OutputMode
from kubeapply.models.config import KubeapplyConfig
from kubeapply.models.diff import (
    ChangeKind,
    ChangeRecord,
    DiffHunk,
    DiffLine,
    DiffResultSet,
    LineOp,
    ResourceKey,
)

__all__ = [
    "ChangeKind",
    "ChangeRecord",
    "ClusterTarget",
    "DiffHunk",
    "DiffLine",
    "DiffRequest",
    "DiffResultSet",
    "KubeapplyConfig",
    "LineOp",
    "OutputMode",
    "ResourceKey",
]
