"""Cluster identity verification.

Operating against the wrong cluster is the most damaging failure mode of a
diff, so this check runs before any lock is taken or kubectl is invoked.
Two checks are made:

1. The kubeconfig's active context must reference the target's cluster name.
2. If the target records a cluster UID, the live ``kube-system`` namespace UID
   must equal it exactly.  This costs one API call.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping

from kubeapply.cluster.kubeconfig import kubeconfig_matches_cluster, resolve_kubeconfig
from kubeapply.errors import ConfigurationError, IdentityMismatch, KubeapplyError
from kubeapply.models.cluster import ClusterTarget
from kubeapply.observability.logging import get_logger

_logger = get_logger("cluster.identity")

IDENTITY_NAMESPACE = "kube-system"

# (kubeconfig path, namespace) -> namespace UID
UIDFetcher = Callable[[str, str], Awaitable[str]]


class ClusterIdentityGuard:
    """Confirms a kubeconfig targets the intended cluster.

    Args:
        uid_fetcher: Coroutine returning the UID of a namespace on the cluster
                     the kubeconfig points at.
        environ:     Environment used for the ``KUBECONFIG`` fallback;
                     defaults to ``os.environ``.
    """

    def __init__(self, uid_fetcher: UIDFetcher, environ: Mapping[str, str] | None = None) -> None:
        self._uid_fetcher = uid_fetcher
        self._environ = environ

    async def verify(self, target: ClusterTarget) -> str:
        """Verify *target* and return the kubeconfig path that was checked.

        Raises:
            ConfigurationError: no kubeconfig source, or an unreadable kubeconfig.
            IdentityMismatch:   the context or live UID belongs to another cluster.
        """
        try:
            kubeconfig = resolve_kubeconfig(target.kubeconfig_path, self._environ)
            matches = kubeconfig_matches_cluster(kubeconfig, target.cluster)
        except ConfigurationError as exc:
            exc.cluster = exc.cluster or target.name
            raise

        if not matches:
            raise IdentityMismatch(
                f"Kubeconfig in {kubeconfig} does not appear to reference cluster {target.cluster}",
                cluster=target.name,
                expected=target.cluster,
            )

        if target.uid:
            try:
                actual_uid = await self._uid_fetcher(kubeconfig, IDENTITY_NAMESPACE)
            except KubeapplyError as exc:
                exc.cluster = exc.cluster or target.name
                raise
            if actual_uid != target.uid:
                raise IdentityMismatch(
                    "Kubeapply config does not match this cluster (wrong kube context?): "
                    f"{IDENTITY_NAMESPACE} uids do not match ({target.uid}!={actual_uid})",
                    cluster=target.name,
                    expected=target.uid,
                    actual=actual_uid,
                )

        _logger.info(
            "cluster_identity_verified",
            cluster=target.name,
            kubeconfig=kubeconfig,
            uid_checked=bool(target.uid),
        )
        return kubeconfig
