"""Shared fixtures and diff samples for kubeapply tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
import structlog
import yaml

from kubeapply.models.cluster import ClusterTarget

# ---------------------------------------------------------------------------
# kubectl diff -u -N samples
# ---------------------------------------------------------------------------

_TS = "2024-05-01 10:00:00.000000000 +0000"


def kubectl_headers(file_name: str) -> list[str]:
    """File header lines as kubectl's default external diff prints them."""
    return [
        f"diff -u -N /tmp/LIVE-1/{file_name} /tmp/MERGED-2/{file_name}",
        f"--- /tmp/LIVE-1/{file_name}\t{_TS}",
        f"+++ /tmp/MERGED-2/{file_name}\t{_TS}",
    ]


SERVICE_DIFF = "\n".join(
    kubectl_headers("v1.Service.default.web")
    + [
        "@@ -6,7 +6,7 @@",
        "   namespace: default",
        " spec:",
        "   ports:",
        "-  - port: 80",
        "+  - port: 8080",
        "     protocol: TCP",
        "   selector:",
        "     app: web",
    ]
) + "\n"

CONFIGMAP_ADDED_DIFF = "\n".join(
    kubectl_headers("v1.ConfigMap.default.settings")
    + [
        "@@ -0,0 +1,6 @@",
        "+apiVersion: v1",
        "+data:",
        "+  mode: fast",
        "+kind: ConfigMap",
        "+metadata:",
        "+  name: settings",
    ]
) + "\n"

DEPLOYMENT_REMOVED_DIFF = "\n".join(
    kubectl_headers("apps.v1.Deployment.default.old-api")
    + [
        "@@ -1,4 +0,0 @@",
        "-apiVersion: apps/v1",
        "-kind: Deployment",
        "-metadata:",
        "-  name: old-api",
    ]
) + "\n"

NAMESPACE_LABEL_DIFF = "\n".join(
    kubectl_headers("v1.Namespace..team-a")
    + [
        "@@ -3,3 +3,4 @@",
        " metadata:",
        "   labels:",
        "     team: a",
        "+    tier: gold",
    ]
) + "\n"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def captured_logs() -> Iterator[list[dict[str, object]]]:
    """Capture structlog output so tests stay quiet and can assert on events."""
    with structlog.testing.capture_logs() as logs:
        yield logs


@pytest.fixture
def write_kubeconfig(tmp_path: Path) -> Callable[..., str]:
    """Write a kubeconfig whose current context points at *cluster*."""

    def _write(cluster: str = "prod-east", context: str = "admin@cluster", name: str = "kubeconfig") -> str:
        data = {
            "apiVersion": "v1",
            "kind": "Config",
            "current-context": context,
            "clusters": [{"name": cluster, "cluster": {"server": "https://127.0.0.1:6443"}}],
            "contexts": [{"name": context, "context": {"cluster": cluster, "user": "admin"}}],
            "users": [{"name": "admin", "user": {"token": "test-token"}}],
        }
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


@pytest.fixture
def make_target(tmp_path: Path) -> Callable[..., ClusterTarget]:
    """Build a ClusterTarget whose expanded path exists on disk."""

    def _make(
        cluster: str = "prod-east",
        kubeconfig_path: str = "",
        uid: str = "",
        use_locks: bool = False,
        subpaths: tuple[str, ...] = (),
        server_side_apply: bool = False,
    ) -> ClusterTarget:
        expanded = tmp_path / "expanded" / cluster
        expanded.mkdir(parents=True, exist_ok=True)
        return ClusterTarget(
            name=f"prod:us-east-1:{cluster}",
            cluster=cluster,
            expanded_path=str(expanded),
            kubeconfig_path=kubeconfig_path,
            uid=uid,
            subpaths=subpaths,
            server_side_apply=server_side_apply,
            use_locks=use_locks,
        )

    return _make
