"""Per-cluster mutual exclusion for diff and apply runs.

LockBackend      -- ABC every backend must implement.
LocalLockBackend -- In-process asyncio locks keyed by cluster identity.
LeaseLockBackend -- Cross-process lock held as a coordination.k8s.io Lease
                    in the target cluster's kube-system namespace.
ConcurrencyGuard -- Scoped acquisition with a deadline and unconditional
                    release on success, error and cancellation.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import socket
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from kubeapply.errors import LockTimeout
from kubeapply.models.cluster import ClusterTarget
from kubeapply.observability.logging import get_logger

_logger = get_logger("cluster.lock")

LEASE_NAME = "kubeapply-lock"
LEASE_NAMESPACE = "kube-system"


def default_owner() -> str:
    """Identity recorded as the lock holder: host, pid and a random suffix."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class LockBackend(ABC):
    """Abstract base class for lock backends.

    ``acquire`` blocks until the lock is held; the guard bounds it with a
    deadline.  ``release`` must be safe to call exactly once after a
    successful ``acquire``.
    """

    @abstractmethod
    async def acquire(self, target: ClusterTarget, kubeconfig: str, owner: str) -> None:
        """Block until *owner* holds the lock for *target*."""

    @abstractmethod
    async def release(self, target: ClusterTarget, kubeconfig: str, owner: str) -> None:
        """Give up the lock for *target* held by *owner*."""

    def is_held(self, key: str) -> bool:
        """Return True if the lock for *key* is currently held (best effort)."""
        return False


class LocalLockBackend(LockBackend):
    """Exclusive in-process locks, one ``asyncio.Lock`` per cluster identity."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def acquire(self, target: ClusterTarget, kubeconfig: str, owner: str) -> None:
        await self._lock_for(target.lock_key).acquire()

    async def release(self, target: ClusterTarget, kubeconfig: str, owner: str) -> None:
        lock = self._locks.get(target.lock_key)
        if lock is not None and lock.locked():
            lock.release()

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class LeaseLockBackend(LockBackend):
    """Lock held as a Lease object on the target cluster itself.

    A Lease whose ``renewTime + leaseDurationSeconds`` is in the past is
    considered abandoned and may be taken over.  Updates use the object's
    resourceVersion, so two contenders can never both win a takeover.

    While held, a background task bumps ``renewTime`` every
    *renew_interval* seconds so a long kubectl run never lets the lease
    expire under its holder.

    Args:
        lease_duration: Seconds after which an unreleased lease expires.
        poll_interval:  Seconds between attempts while the lease is taken.
        renew_interval: Seconds between renewals; defaults to a third of
                        *lease_duration*.
    """

    def __init__(
        self,
        lease_duration: int = 300,
        poll_interval: float = 2.0,
        renew_interval: float | None = None,
    ) -> None:
        self._lease_duration = lease_duration
        self._poll_interval = poll_interval
        self._renew_interval = renew_interval if renew_interval is not None else lease_duration / 3
        self._renewals: dict[str, asyncio.Task[None]] = {}

    async def acquire(self, target: ClusterTarget, kubeconfig: str, owner: str) -> None:
        while not await self._try_acquire(kubeconfig, owner):
            _logger.debug("lease_busy", cluster=target.name, lease=LEASE_NAME)
            await asyncio.sleep(self._poll_interval)
        self._renewals[target.lock_key] = asyncio.create_task(self._renew_loop(target, kubeconfig, owner))

    def is_held(self, key: str) -> bool:
        task = self._renewals.get(key)
        return task is not None and not task.done()

    async def release(self, target: ClusterTarget, kubeconfig: str, owner: str) -> None:
        from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
        from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

        renewal = self._renewals.pop(target.lock_key, None)
        if renewal is not None:
            renewal.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await renewal

        async with await _api_client(kubeconfig) as api:
            coordination = k8s_client.CoordinationV1Api(api)
            try:
                lease = await coordination.read_namespaced_lease(LEASE_NAME, LEASE_NAMESPACE)
            except ApiException as exc:
                if exc.status == 404:
                    return
                raise
            if lease.spec.holder_identity != owner:
                _logger.warning("lease_not_ours", cluster=target.name, holder=lease.spec.holder_identity)
                return
            await coordination.delete_namespaced_lease(
                LEASE_NAME,
                LEASE_NAMESPACE,
                body=k8s_client.V1DeleteOptions(
                    preconditions=k8s_client.V1Preconditions(
                        resource_version=lease.metadata.resource_version,
                    ),
                ),
            )

    async def _try_acquire(self, kubeconfig: str, owner: str) -> bool:
        from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
        from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

        now = datetime.now(tz=UTC)
        spec = k8s_client.V1LeaseSpec(
            holder_identity=owner,
            lease_duration_seconds=self._lease_duration,
            acquire_time=now,
            renew_time=now,
        )

        async with await _api_client(kubeconfig) as api:
            coordination = k8s_client.CoordinationV1Api(api)
            try:
                lease = await coordination.read_namespaced_lease(LEASE_NAME, LEASE_NAMESPACE)
            except ApiException as exc:
                if exc.status != 404:
                    raise
                body = k8s_client.V1Lease(
                    metadata=k8s_client.V1ObjectMeta(name=LEASE_NAME, namespace=LEASE_NAMESPACE),
                    spec=spec,
                )
                try:
                    await coordination.create_namespaced_lease(LEASE_NAMESPACE, body)
                except ApiException as create_exc:
                    if create_exc.status == 409:
                        return False
                    raise
                return True

            if not _lease_expired(lease.spec, now) and lease.spec.holder_identity != owner:
                return False

            lease.spec = spec
            try:
                await coordination.replace_namespaced_lease(LEASE_NAME, LEASE_NAMESPACE, lease)
            except ApiException as exc:
                if exc.status == 409:
                    return False
                raise
            return True

    async def _renew_loop(self, target: ClusterTarget, kubeconfig: str, owner: str) -> None:
        while True:
            await asyncio.sleep(self._renew_interval)
            try:
                held = await self._renew(kubeconfig, owner)
            except Exception as exc:
                # Transient API errors are retried on the next tick; the lease
                # stays valid until renewTime + leaseDurationSeconds.
                _logger.warning("lease_renew_failed", cluster=target.name, error=str(exc))
                continue
            if not held:
                _logger.error("lease_lost", cluster=target.name, lease=LEASE_NAME)
                return

    async def _renew(self, kubeconfig: str, owner: str) -> bool:
        """Bump renewTime on our lease; return False if it is no longer ours."""
        from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
        from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

        async with await _api_client(kubeconfig) as api:
            coordination = k8s_client.CoordinationV1Api(api)
            try:
                lease = await coordination.read_namespaced_lease(LEASE_NAME, LEASE_NAMESPACE)
            except ApiException as exc:
                if exc.status == 404:
                    return False
                raise
            if lease.spec.holder_identity != owner:
                return False
            lease.spec.renew_time = datetime.now(tz=UTC)
            await coordination.replace_namespaced_lease(LEASE_NAME, LEASE_NAMESPACE, lease)
            return True


async def _api_client(kubeconfig: str) -> Any:
    from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
    from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]

    configuration = k8s_client.Configuration()
    await k8s_config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
    return k8s_client.ApiClient(configuration)


def _lease_expired(spec: object, now: datetime) -> bool:
    holder = getattr(spec, "holder_identity", None)
    renew_time = getattr(spec, "renew_time", None)
    duration = getattr(spec, "lease_duration_seconds", None)
    if not holder or renew_time is None or duration is None:
        return True
    if renew_time.tzinfo is None:
        renew_time = renew_time.replace(tzinfo=UTC)
    return renew_time + timedelta(seconds=duration) < now


class ConcurrencyGuard:
    """Ensures at most one diff or apply runs against a cluster at a time.

    The guard is off unless ``enabled`` is set here or the target itself opts
    in via ``use_locks``.

    Args:
        backend: Where the lock lives; defaults to an in-process backend.
        enabled: Lock every target regardless of its own setting.
        owner:   Holder identity; defaults to host-pid-random.
    """

    def __init__(
        self,
        backend: LockBackend | None = None,
        enabled: bool = False,
        owner: str | None = None,
    ) -> None:
        self._backend = backend or LocalLockBackend()
        self.enabled = enabled
        self.owner = owner or default_owner()

    def applies_to(self, target: ClusterTarget) -> bool:
        return self.enabled or target.use_locks

    def is_held(self, key: str) -> bool:
        return self._backend.is_held(key)

    @asynccontextmanager
    async def hold(
        self,
        target: ClusterTarget,
        kubeconfig: str,
        timeout: float | None = None,
    ) -> AsyncIterator[None]:
        """Hold the lock for *target* for the duration of the ``async with`` block.

        Raises:
            LockTimeout: the lock was not acquired within *timeout* seconds.
        """
        key = target.lock_key
        _logger.debug("lock_acquiring", cluster=target.name, key=key, timeout=timeout)
        try:
            async with asyncio.timeout(timeout):
                await self._backend.acquire(target, kubeconfig, self.owner)
        except TimeoutError as exc:
            raise LockTimeout(cluster=target.name, key=key, timeout=timeout) from exc
        _logger.info("lock_acquired", cluster=target.name, key=key, owner=self.owner)

        try:
            yield
        except BaseException:
            # The body's error wins over any failure to release.
            await self._release(target, kubeconfig, reraise=False)
            raise
        else:
            await self._release(target, kubeconfig, reraise=True)

    async def _release(self, target: ClusterTarget, kubeconfig: str, reraise: bool) -> None:
        key = target.lock_key
        try:
            # Shielded so a second cancellation cannot interrupt the release.
            await asyncio.shield(self._backend.release(target, kubeconfig, self.owner))
        except Exception as exc:
            _logger.error("lock_release_failed", cluster=target.name, key=key, error=str(exc))
            if reraise:
                raise
        else:
            _logger.info("lock_released", cluster=target.name, key=key)
