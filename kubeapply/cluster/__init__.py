"""Live-cluster side of a diff run.

Submodules:
    kubeconfig  -- Kubeconfig resolution and cluster-name matching.
    identity    -- ClusterIdentityGuard: context name and kube-system UID checks.
    lock        -- ConcurrencyGuard and its local / Lease backends.
    client      -- kubectl diff runner and namespace UID lookup.
"""

from kubeapply.cluster.client import KubectlDiffRunner, fetch_namespace_uid
from kubeapply.cluster.identity import ClusterIdentityGuard
from kubeapply.cluster.lock import ConcurrencyGuard, LeaseLockBackend, LocalLockBackend

__all__ = [
    "ClusterIdentityGuard",
    "ConcurrencyGuard",
    "KubectlDiffRunner",
    "LeaseLockBackend",
    "LocalLockBackend",
    "fetch_namespace_uid",
]
