"""Boundary to the live cluster: kubectl diff and the Kubernetes API.

KubectlDiffRunner   -- Runs ``kubectl diff`` over the rendered manifest tree.
fetch_namespace_uid -- Reads a namespace UID through kubernetes-asyncio.

Both are the only blocking operations of a diff run.  Both honour asyncio
cancellation: a cancelled kubectl run kills the subprocess before the
cancellation propagates, and the API client is closed on every path.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping

from kubeapply.errors import ConfigurationError, ExecutionError
from kubeapply.models.cluster import ClusterTarget
from kubeapply.models.config import KubectlConfig
from kubeapply.observability.logging import get_logger

_logger = get_logger("cluster.client")

# kubectl diff: 0 = no differences, 1 = differences found, >1 = error
_DIFF_OK_CODES = (0, 1)


class KubectlDiffRunner:
    """Runs ``kubectl diff`` against one cluster target.

    Args:
        config:  kubectl path, external diff program and timeout.
        environ: Base environment for the subprocess; defaults to ``os.environ``.
    """

    def __init__(self, config: KubectlConfig | None = None, environ: Mapping[str, str] | None = None) -> None:
        self._config = config or KubectlConfig()
        self._environ = environ

    def build_command(self, target: ClusterTarget, kubeconfig: str) -> list[str]:
        paths = target.abs_subpaths()
        if not paths:
            raise ConfigurationError(
                f"No expanded configs match subpaths {list(target.subpaths)}",
                cluster=target.name,
            )

        args = [self._config.path, "diff", "--kubeconfig", kubeconfig, "-R"]
        for path in paths:
            args.extend(["-f", path])
        if target.server_side_apply:
            args.extend(["--server-side", "--force-conflicts"])
        return args

    def build_env(self, structured: bool) -> dict[str, str]:
        env = dict(os.environ if self._environ is None else self._environ)
        if structured:
            # The structured parser needs plain unified output whatever the
            # caller's own KUBECTL_EXTERNAL_DIFF says.
            env["KUBECTL_EXTERNAL_DIFF"] = self._config.external_diff
        return env

    async def diff(self, target: ClusterTarget, kubeconfig: str, structured: bool) -> str:
        """Run kubectl diff and return its stdout.

        Raises:
            ConfigurationError: the expanded path is missing or no subpath matched.
            ExecutionError:     kubectl could not be run, timed out, or failed.
        """
        if not os.path.isdir(target.expanded_path):
            raise ConfigurationError(
                f"Expanded path {target.expanded_path} does not exist",
                cluster=target.name,
            )

        args = self.build_command(target, kubeconfig)
        _logger.info("kubectl_diff_start", cluster=target.name, structured=structured, command=" ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(structured),
            )
        except OSError as exc:
            raise ExecutionError(f"Could not run {args[0]}: {exc}", cluster=target.name) from exc

        try:
            async with asyncio.timeout(self._config.timeout_seconds):
                stdout, stderr = await proc.communicate()
        except TimeoutError as exc:
            await _kill(proc)
            raise ExecutionError(
                f"kubectl diff timed out after {self._config.timeout_seconds}s",
                cluster=target.name,
            ) from exc
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode not in _DIFF_OK_CODES:
            raise ExecutionError(
                f"kubectl diff exited with code {proc.returncode}: {err.strip()[:500]}",
                cluster=target.name,
                stderr=err,
                returncode=proc.returncode,
            )

        _logger.info(
            "kubectl_diff_done",
            cluster=target.name,
            returncode=proc.returncode,
            bytes=len(out),
        )
        return out


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
        await proc.wait()


async def fetch_namespace_uid(kubeconfig: str, namespace: str) -> str:
    """Return ``metadata.uid`` of *namespace* on the cluster *kubeconfig* points at."""
    import aiohttp
    from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
    from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
    from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

    configuration = k8s_client.Configuration()
    try:
        await k8s_config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
    except k8s_config.ConfigException as exc:
        raise ConfigurationError(f"Cannot load kubeconfig {kubeconfig}: {exc}") from exc

    async with k8s_client.ApiClient(configuration) as api:
        v1 = k8s_client.CoreV1Api(api)
        try:
            ns = await v1.read_namespace(namespace)
        except ApiException as exc:
            raise ExecutionError(
                f"Could not read namespace {namespace}: {exc.status} {exc.reason}",
                hint="Check that the kubeconfig credentials are valid for this cluster.",
            ) from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise ExecutionError(
                f"Could not reach the API server for {kubeconfig}: {exc}",
                hint="Check that the cluster API server is reachable from this machine.",
            ) from exc
    return str(ns.metadata.uid)
