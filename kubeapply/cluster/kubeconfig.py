"""Kubeconfig resolution and cluster-name matching."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

import yaml

from kubeapply.errors import ConfigurationError

KUBECONFIG_ENV = "KUBECONFIG"


def resolve_kubeconfig(explicit: str = "", environ: Mapping[str, str] | None = None) -> str:
    """Return the kubeconfig path to use.

    Resolution order: the explicit argument, then the first entry of the
    ``KUBECONFIG`` environment variable.

    Raises:
        ConfigurationError: if neither source yields a path.
    """
    if explicit:
        return explicit

    env = os.environ if environ is None else environ
    for entry in env.get(KUBECONFIG_ENV, "").split(os.pathsep):
        if entry.strip():
            return entry.strip()

    raise ConfigurationError(f"Must either set --kubeconfig flag or {KUBECONFIG_ENV} env variable")


def load_kubeconfig(path: str) -> dict[str, Any]:
    """Read and parse a kubeconfig file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read kubeconfig {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Kubeconfig {path} is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Kubeconfig {path} must be a mapping")
    return data


def current_context(kubeconfig: Mapping[str, Any], path: str = "") -> tuple[str, str]:
    """Return ``(context name, cluster name)`` of the kubeconfig's active context."""
    name = str(kubeconfig.get("current-context", "") or "")
    if not name:
        raise ConfigurationError(f"Kubeconfig {path} has no current-context set")

    for entry in kubeconfig.get("contexts") or []:
        if isinstance(entry, dict) and entry.get("name") == name:
            context = entry.get("context") or {}
            return name, str(context.get("cluster", "") or "")

    raise ConfigurationError(f"Kubeconfig {path} does not define its current-context {name!r}")


def _cluster_names_match(candidate: str, expected: str) -> bool:
    if candidate == expected:
        return True
    # ARN-style names, e.g. arn:aws:eks:us-west-2:123456789012:cluster/prod-east
    return "/" in candidate and candidate.rsplit("/", 1)[1] == expected


def kubeconfig_matches_cluster(path: str, cluster: str) -> bool:
    """Return True if the active context of *path* references *cluster*.

    The active context matches when either its own name or the name of the
    cluster it points at equals *cluster*.
    """
    context_name, context_cluster = current_context(load_kubeconfig(path), path)
    return _cluster_names_match(context_cluster, cluster) or _cluster_names_match(context_name, cluster)
