"""Tests for the kubeapply command-line interface."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from click.testing import CliRunner

from kubeapply import __version__
from kubeapply.app import build_orchestrator
from kubeapply.cli import cli
from kubeapply.diff.orchestrator import DiffOrchestrator
from kubeapply.models.config import KubeapplyConfig
from tests.integration.conftest import requires_diff


@pytest.fixture
def patched_cli(
    monkeypatch: pytest.MonkeyPatch,
    fake_kubectl: str,
    kubectl_environ: dict[str, str],
) -> dict[str, str]:
    """Keep logging unconfigured and route kubectl and the UID lookup to fakes."""
    monkeypatch.setattr("kubeapply.cli.main.setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setenv("KUBEAPPLY_KUBECTL_PATH", fake_kubectl)

    def _build(config: KubeapplyConfig, **kwargs: Any) -> DiffOrchestrator:
        return build_orchestrator(config, environ=kubectl_environ, uid_fetcher=AsyncMock(return_value="abc-123"))

    monkeypatch.setattr("kubeapply.cli.main.build_orchestrator", _build)
    return kubectl_environ


class TestGroup:
    def test_version(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("kubeapply.cli.main.setup_logging", lambda *args, **kwargs: None)
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_invalid_env_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("kubeapply.cli.main.setup_logging", lambda *args, **kwargs: None)
        monkeypatch.setenv("KUBEAPPLY_LOG_LEVEL", "loud")
        result = CliRunner().invoke(cli, ["diff", "x.yaml"])
        assert result.exit_code != 0


@requires_diff
class TestDiffCommand:
    def test_json_output(
        self,
        patched_cli: dict[str, str],
        write_kubeconfig: Callable[..., str],
        write_cluster_config: Callable[..., str],
    ) -> None:
        result = CliRunner().invoke(
            cli,
            ["diff", write_cluster_config(uid="abc-123"), "--kubeconfig", write_kubeconfig(), "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [(r["kind"], r["name"], r["change"]) for r in data["results"]] == [
            ("ConfigMap", "settings", "added"),
            ("Service", "web", "modified"),
        ]

    def test_human_output(
        self,
        patched_cli: dict[str, str],
        write_kubeconfig: Callable[..., str],
        write_cluster_config: Callable[..., str],
    ) -> None:
        result = CliRunner().invoke(cli, ["diff", write_cluster_config(), "--kubeconfig", write_kubeconfig()])
        assert result.exit_code == 0, result.output
        assert "Diff results for prod:us-east-1:prod-east:" in result.stdout
        assert "RESOURCE" in result.stdout
        assert ">>> default/Service/web (modified)" in result.stdout
        assert "+   - port: 8080" in result.stdout

    def test_kubeconfig_from_env(
        self,
        patched_cli: dict[str, str],
        write_kubeconfig: Callable[..., str],
        write_cluster_config: Callable[..., str],
    ) -> None:
        patched_cli["KUBECONFIG"] = write_kubeconfig()
        result = CliRunner().invoke(cli, ["diff", write_cluster_config(), "--json"])
        assert result.exit_code == 0, result.output

    def test_simple_output(
        self,
        patched_cli: dict[str, str],
        write_kubeconfig: Callable[..., str],
        write_cluster_config: Callable[..., str],
    ) -> None:
        patched_cli["KUBECTL_EXTERNAL_DIFF"] = "diff -u -N"
        result = CliRunner().invoke(
            cli,
            ["diff", write_cluster_config(), "--kubeconfig", write_kubeconfig(), "--simple-output"],
        )
        assert result.exit_code == 0, result.output
        assert "Raw diff results for prod:us-east-1:prod-east:" in result.stdout
        assert "+  - port: 8080" in result.stdout

    def test_json_many_clusters_single_document(
        self,
        patched_cli: dict[str, str],
        write_kubeconfig: Callable[..., str],
        write_cluster_config: Callable[..., str],
        tmp_path: Path,
    ) -> None:
        first = write_cluster_config(uid="abc-123")
        second = tmp_path / "prod-east-replica.yaml"
        second.write_text(Path(first).read_text())

        result = CliRunner().invoke(
            cli,
            ["diff", first, str(second), "--kubeconfig", write_kubeconfig(), "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [c["cluster"] for c in data["clusters"]] == ["prod:us-east-1:prod-east"] * 2
        for cluster in data["clusters"]:
            assert [r["change"] for r in cluster["results"]] == ["added", "modified"]

    def test_json_rejects_simple_output(self, patched_cli: dict[str, str], tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["diff", str(tmp_path / "x.yaml"), "--json", "--simple-output"])
        assert result.exit_code == 2
        assert "--json cannot be combined with --simple-output" in result.output

    def test_wrong_cluster(
        self,
        patched_cli: dict[str, str],
        write_kubeconfig: Callable[..., str],
        write_cluster_config: Callable[..., str],
    ) -> None:
        result = CliRunner().invoke(
            cli,
            ["diff", write_cluster_config(), "--kubeconfig", write_kubeconfig(cluster="prod-west")],
        )
        assert result.exit_code == 1
        assert "does not appear to reference cluster prod-east" in result.output

    def test_uid_mismatch(
        self,
        patched_cli: dict[str, str],
        write_kubeconfig: Callable[..., str],
        write_cluster_config: Callable[..., str],
    ) -> None:
        result = CliRunner().invoke(
            cli,
            ["diff", write_cluster_config(uid="xyz-789"), "--kubeconfig", write_kubeconfig()],
        )
        assert result.exit_code == 1
        assert "uids do not match (xyz-789!=abc-123)" in result.output

    def test_no_matching_configs(self, patched_cli: dict[str, str], tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["diff", str(tmp_path / "clusters" / "*.yaml")])
        assert result.exit_code == 1
        assert "No cluster configs match" in result.output


class TestKdiffCommand:
    def test_json_output(self, monkeypatch: pytest.MonkeyPatch, object_trees: tuple[Path, Path]) -> None:
        monkeypatch.setattr("kubeapply.cli.main.setup_logging", lambda *args, **kwargs: None)
        live, merged = object_trees
        result = CliRunner().invoke(cli, ["kdiff", str(live), str(merged), "true"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [r["change"] for r in data["results"]] == ["added", "modified"]
        assert all(r["short"] for r in data["results"])

    def test_missing_tree(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr("kubeapply.cli.main.setup_logging", lambda *args, **kwargs: None)
        result = CliRunner().invoke(cli, ["kdiff", str(tmp_path / "a"), str(tmp_path / "b")])
        assert result.exit_code == 2
