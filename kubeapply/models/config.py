"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class KubectlConfig:
    """kubectl invocation configuration."""

    path: str = "kubectl"
    external_diff: str = "diff -u -N"
    timeout_seconds: int = 300


@dataclass
class LockConfig:
    """Per-cluster concurrency lock configuration."""

    enabled: bool = False
    backend: str = "local"  # "local" or "lease"
    timeout_seconds: int = 60
    lease_duration_seconds: int = 300


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class KubeapplyConfig:
    """Top-level kubeapply configuration."""

    kubectl: KubectlConfig = field(default_factory=KubectlConfig)
    locks: LockConfig = field(default_factory=LockConfig)
    log: LogConfig = field(default_factory=LogConfig)
