"""Configuration loading from environment variables and cluster config files."""

from __future__ import annotations

import os
from collections.abc import Sequence

import yaml

from kubeapply.errors import ConfigurationError
from kubeapply.models.cluster import ClusterTarget
from kubeapply.models.config import KubeapplyConfig, KubectlConfig, LockConfig, LogConfig


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEAPPLY_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_choice(name: str, value: str, valid: set[str]) -> str:
    if value.lower() not in valid:
        raise ValueError(f"Invalid {name}: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> KubeapplyConfig:
    """Load configuration from KUBEAPPLY_* environment variables."""
    return KubeapplyConfig(
        kubectl=KubectlConfig(
            path=_env("KUBECTL_PATH", "kubectl"),
            external_diff=_env("KUBECTL_EXTERNAL_DIFF", "diff -u -N"),
            timeout_seconds=_env_int("KUBECTL_TIMEOUT", 300, min_val=10, max_val=3600),
        ),
        locks=LockConfig(
            enabled=_env_bool("LOCKS_ENABLED", False),
            backend=_validate_choice("lock backend", _env("LOCKS_BACKEND", "local"), {"local", "lease"}),
            timeout_seconds=_env_int("LOCKS_TIMEOUT", 60, min_val=1, max_val=3600),
            lease_duration_seconds=_env_int("LOCKS_LEASE_DURATION", 300, min_val=15, max_val=3600),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_choice("log format", _env("LOG_FORMAT", "console"), {"console", "json"}),
        ),
    )


def load_cluster_target(
    path: str,
    kubeconfig: str = "",
    subpaths: Sequence[str] = (),
) -> ClusterTarget:
    """Build a ClusterTarget from a YAML cluster config file.

    Recognised keys: ``cluster`` (required), ``region``, ``env``, ``uid``,
    ``expandedPath``, ``serverSideApply`` and ``useLocks``. A relative
    ``expandedPath`` is resolved against the config file's directory and
    defaults to ``expanded/<env>/<region>``.
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read cluster config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Cluster config {path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Cluster config {path} must be a mapping")

    cluster = str(raw.get("cluster", "") or "")
    if not cluster:
        raise ConfigurationError(f"Cluster config {path} does not set 'cluster'")

    region = str(raw.get("region", "") or "")
    env = str(raw.get("env", "") or "")
    name_parts = [p for p in (env, region, cluster) if p]
    descriptive_name = ":".join(name_parts)

    config_dir = os.path.dirname(os.path.abspath(path))
    expanded = str(raw.get("expandedPath", "") or os.path.join("expanded", env, region))
    if not os.path.isabs(expanded):
        expanded = os.path.join(config_dir, expanded)

    return ClusterTarget(
        name=descriptive_name,
        cluster=cluster,
        expanded_path=os.path.normpath(expanded),
        kubeconfig_path=kubeconfig,
        uid=str(raw.get("uid", "") or ""),
        subpaths=tuple(subpaths),
        server_side_apply=bool(raw.get("serverSideApply", False)),
        use_locks=bool(raw.get("useLocks", False)),
    )
