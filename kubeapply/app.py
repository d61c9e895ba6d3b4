"""Component wiring for kubeapply.

Builds the diff pipeline from a KubeapplyConfig in dependency order:
config -> logging -> identity guard -> lock guard -> kubectl runner
-> orchestrator.  No component reads global state; everything it needs is
passed in here.
"""

from __future__ import annotations

from collections.abc import Mapping

from kubeapply.cluster.client import KubectlDiffRunner, fetch_namespace_uid
from kubeapply.cluster.identity import ClusterIdentityGuard, UIDFetcher
from kubeapply.cluster.lock import ConcurrencyGuard, LeaseLockBackend, LocalLockBackend, LockBackend
from kubeapply.diff.orchestrator import DiffOrchestrator, DiffRunner
from kubeapply.models.config import KubeapplyConfig, LockConfig
from kubeapply.observability.logging import get_logger

_logger = get_logger("app")


def build_lock_backend(config: LockConfig) -> LockBackend:
    """Return the lock backend named by ``config.backend``."""
    if config.backend == "lease":
        return LeaseLockBackend(lease_duration=config.lease_duration_seconds)
    return LocalLockBackend()


def build_orchestrator(
    config: KubeapplyConfig,
    environ: Mapping[str, str] | None = None,
    uid_fetcher: UIDFetcher | None = None,
    runner: DiffRunner | None = None,
    lock_backend: LockBackend | None = None,
) -> DiffOrchestrator:
    """Wire a DiffOrchestrator from *config*.

    The keyword overrides exist for tests and embedding callers; by default
    the live Kubernetes API and the configured kubectl binary are used.
    """
    identity = ClusterIdentityGuard(uid_fetcher or fetch_namespace_uid, environ=environ)
    locks = ConcurrencyGuard(
        backend=lock_backend or build_lock_backend(config.locks),
        enabled=config.locks.enabled,
    )
    diff_runner = runner or KubectlDiffRunner(config.kubectl, environ=environ)
    _logger.debug(
        "orchestrator_built",
        locks_enabled=config.locks.enabled,
        lock_backend=config.locks.backend,
        kubectl=config.kubectl.path,
    )
    return DiffOrchestrator(identity_guard=identity, runner=diff_runner, lock_guard=locks)
