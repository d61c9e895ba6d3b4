"""Exception types for kubeapply.

Every error is fatal to the single diff request that raised it; nothing in
this package retries internally.

Exception Hierarchy:
    KubeapplyError (base)
    ├── ConfigurationError - missing or invalid cluster target or kubeconfig
    ├── IdentityMismatch   - kubeconfig or live cluster is not the expected one
    ├── LockTimeout        - per-cluster lock not acquired in time
    ├── ExecutionError     - the underlying kubectl diff failed
    └── ParseError         - diff text did not have the expected two-sided shape
"""

from __future__ import annotations

EXECUTION_HINT = (
    "Try re-running with --simple-output, then with --debug to see verbose output. "
    "Note that diffs will not work if target namespace(s) don't exist yet."
)


class KubeapplyError(Exception):
    """Base class for all kubeapply errors.

    ``cluster`` names the cluster the failing request targeted, when known.
    """

    def __init__(self, message: str, cluster: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.cluster = cluster

    def __str__(self) -> str:
        if self.cluster:
            return f"[{self.cluster}] {self.message}"
        return self.message


class ConfigurationError(KubeapplyError):
    """Raised when a target cannot be resolved, e.g. no kubeconfig source."""


class IdentityMismatch(KubeapplyError):
    """Raised when the kubeconfig or live cluster is not the intended cluster."""

    def __init__(self, message: str, cluster: str = "", expected: str = "", actual: str = "") -> None:
        super().__init__(message, cluster=cluster)
        self.expected = expected
        self.actual = actual


class LockTimeout(KubeapplyError):
    """Raised when exclusive access to a cluster was not obtained in time."""

    def __init__(self, cluster: str, key: str, timeout: float | None) -> None:
        super().__init__(
            f"Timed out after {timeout}s waiting for the lock on {key}",
            cluster=cluster,
        )
        self.key = key
        self.timeout = timeout


class ExecutionError(KubeapplyError):
    """Raised when the diff invocation itself fails.

    Carries an actionable ``hint`` since this is the most common point of
    friction with the external tooling.
    """

    def __init__(
        self,
        message: str,
        cluster: str = "",
        stderr: str = "",
        returncode: int | None = None,
        hint: str = EXECUTION_HINT,
    ) -> None:
        super().__init__(message, cluster=cluster)
        self.stderr = stderr
        self.returncode = returncode
        self.hint = hint


class ParseError(KubeapplyError):
    """Raised when raw diff text does not conform to the two-sided structure.

    ``line`` is the 1-based input line the problem was detected on and
    ``resource`` the object the enclosing segment belongs to, when known.
    """

    def __init__(self, message: str, line: int | None = None, resource: str = "", cluster: str = "") -> None:
        super().__init__(message, cluster=cluster)
        self.line = line
        self.resource = resource

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.resource:
            parts.append(f"resource={self.resource}")
        if self.line is not None:
            parts.append(f"line={self.line}")
        if len(parts) == 1:
            return parts[0]
        return f"{parts[0]} ({', '.join(parts[1:])})"
