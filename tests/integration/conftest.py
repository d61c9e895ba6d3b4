"""Shared fixtures for kubeapply integration tests.

Provides a fake ``kubectl`` that diffs two prepared object trees with the
real ``diff -u -N`` program, so the full pipeline (identity check, lock,
subprocess, parser) runs without a Kubernetes cluster.
"""

from __future__ import annotations

import os
import shutil
import stat
from collections.abc import Callable
from pathlib import Path

import pytest

# kubectl writes live and merged objects to two directories and runs
# $KUBECTL_EXTERNAL_DIFF on them; this stand-in does the same with fixed trees.
_FAKE_KUBECTL = """#!/bin/sh
exec $KUBECTL_EXTERNAL_DIFF "$LIVE_DIR" "$MERGED_DIR"
"""

requires_diff = pytest.mark.skipif(shutil.which("diff") is None, reason="diff(1) is not installed")


SERVICE_LIVE = """apiVersion: v1
kind: Service
metadata:
  name: web
  namespace: default
spec:
  ports:
  - port: 80
    protocol: TCP
  selector:
    app: web
"""

SERVICE_MERGED = SERVICE_LIVE.replace("port: 80", "port: 8080")

CONFIGMAP_MERGED = """apiVersion: v1
data:
  mode: fast
kind: ConfigMap
metadata:
  name: settings
  namespace: default
"""


@pytest.fixture
def object_trees(tmp_path: Path) -> tuple[Path, Path]:
    """Live and merged trees: Service web changes port, ConfigMap settings is new."""
    live = tmp_path / "LIVE"
    merged = tmp_path / "MERGED"
    live.mkdir()
    merged.mkdir()
    (live / "v1.Service.default.web").write_text(SERVICE_LIVE)
    (merged / "v1.Service.default.web").write_text(SERVICE_MERGED)
    (merged / "v1.ConfigMap.default.settings").write_text(CONFIGMAP_MERGED)
    return live, merged


@pytest.fixture
def fake_kubectl(tmp_path: Path) -> str:
    path = tmp_path / "kubectl"
    path.write_text(_FAKE_KUBECTL)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def kubectl_environ(object_trees: tuple[Path, Path]) -> dict[str, str]:
    live, merged = object_trees
    return {
        "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
        "LIVE_DIR": str(live),
        "MERGED_DIR": str(merged),
    }


@pytest.fixture
def write_cluster_config(tmp_path: Path) -> Callable[..., str]:
    """Write a cluster config file whose expanded path exists."""

    def _write(cluster: str = "prod-east", uid: str = "", use_locks: bool = False) -> str:
        expanded = tmp_path / "expanded" / "prod" / "us-east-1"
        expanded.mkdir(parents=True, exist_ok=True)
        lines = [f"cluster: {cluster}", "region: us-east-1", "env: prod"]
        if uid:
            lines.append(f"uid: {uid}")
        if use_locks:
            lines.append("useLocks: true")
        path = tmp_path / f"{cluster}.yaml"
        path.write_text("\n".join(lines) + "\n")
        return str(path)

    return _write
