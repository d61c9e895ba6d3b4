"""Drives one diff run against one cluster.

State machine::

    idle -> verifying -> (locking) -> running -> (parsing) -> done
                 \\            \\          \\           \\
                  +------------+----------+-----------+--> failed

The order is fixed: the identity check is the cheapest and guards against
the most damaging mistake, so it always precedes locking, which precedes the
kubectl run, which precedes parsing.  A held lock is released on every exit
path before the error (or cancellation) reaches the caller.  Errors are
re-raised unmodified and never retried.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from kubeapply.cluster.identity import ClusterIdentityGuard
from kubeapply.cluster.lock import ConcurrencyGuard
from kubeapply.diff.parser import StructuredDiffParser, shorten_raw_diff
from kubeapply.errors import EXECUTION_HINT
from kubeapply.models.cluster import ClusterTarget, DiffRequest, OutputMode
from kubeapply.models.diff import DiffResultSet
from kubeapply.observability.logging import get_logger

_logger = get_logger("diff.orchestrator")


class DiffState(StrEnum):
    """Lifecycle state of a diff run."""

    IDLE = "idle"
    VERIFYING = "verifying"
    LOCKING = "locking"
    RUNNING = "running"
    PARSING = "parsing"
    DONE = "done"
    FAILED = "failed"


class DiffRunner(Protocol):
    """Runs the underlying comparison and returns its text output."""

    async def diff(self, target: ClusterTarget, kubeconfig: str, structured: bool) -> str: ...


@dataclass
class DiffOutcome:
    """Result of a successful run: exactly one of ``raw`` or ``results`` is set."""

    target: ClusterTarget
    raw: str | None = None
    results: DiffResultSet | None = None
    short: bool = False


class DiffOrchestrator:
    """Runs diff requests through identity check, locking, kubectl and parsing.

    Args:
        identity_guard: Verifies the kubeconfig targets the intended cluster.
        runner:         Produces the raw diff text (``KubectlDiffRunner``).
        lock_guard:     Optional per-cluster lock; when omitted, or when it does
                        not apply to a target, the locking state is skipped.
    """

    def __init__(
        self,
        identity_guard: ClusterIdentityGuard,
        runner: DiffRunner,
        lock_guard: ConcurrencyGuard | None = None,
    ) -> None:
        self._identity = identity_guard
        self._runner = runner
        self._locks = lock_guard
        self.state = DiffState.IDLE
        self.history: list[DiffState] = [DiffState.IDLE]

    def _transition(self, state: DiffState, cluster: str) -> None:
        _logger.debug("diff_state", cluster=cluster, previous=self.state.value, state=state.value)
        self.state = state
        self.history.append(state)

    async def run(self, request: DiffRequest) -> DiffOutcome:
        """Execute *request* and return its outcome.

        Raises:
            ConfigurationError, IdentityMismatch, LockTimeout, ExecutionError,
            ParseError: unmodified from the step that failed.
        """
        target = request.scoped_target()
        self.state = DiffState.IDLE
        self.history = [DiffState.IDLE]
        _logger.info("diffing_cluster", cluster=target.name, mode=request.mode.value)

        try:
            self._transition(DiffState.VERIFYING, target.name)
            kubeconfig = await self._identity.verify(target)

            async with contextlib.AsyncExitStack() as stack:
                if self._locks is not None and self._locks.applies_to(target):
                    self._transition(DiffState.LOCKING, target.name)
                    await stack.enter_async_context(
                        self._locks.hold(target, kubeconfig, request.lock_timeout),
                    )
                outcome = await self._execute(request, target, kubeconfig)
        except asyncio.CancelledError:
            failed_in = self.state
            self._transition(DiffState.FAILED, target.name)
            _logger.warning("diff_cancelled", cluster=target.name, state=failed_in.value)
            raise
        except Exception as exc:
            failed_in = self.state
            self._transition(DiffState.FAILED, target.name)
            _logger.error(
                "diff_failed",
                cluster=target.name,
                state=failed_in.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if failed_in in (DiffState.RUNNING, DiffState.PARSING):
                _logger.info(getattr(exc, "hint", EXECUTION_HINT), cluster=target.name)
            raise

        self._transition(DiffState.DONE, target.name)
        return outcome

    async def _execute(self, request: DiffRequest, target: ClusterTarget, kubeconfig: str) -> DiffOutcome:
        structured = request.mode is OutputMode.STRUCTURED

        self._transition(DiffState.RUNNING, target.name)
        raw = await self._runner.diff(target, kubeconfig, structured)

        if not structured:
            text = shorten_raw_diff(raw) if request.short_diff else raw
            return DiffOutcome(target=target, raw=text, short=request.short_diff)

        self._transition(DiffState.PARSING, target.name)
        parser = StructuredDiffParser(short_diff=request.short_diff, verbose=request.verbose)
        results = parser.parse(raw, cluster=target.name)
        _logger.info(
            "diff_complete",
            cluster=target.name,
            records=len(results),
            has_changes=results.has_changes,
        )
        return DiffOutcome(target=target, results=results, short=request.short_diff)


async def diff_targets(orchestrator: DiffOrchestrator, requests: Sequence[DiffRequest]) -> list[DiffOutcome]:
    """Run *requests* one after another; the first failure propagates.

    Whether a failure should abort a batch is the caller's decision: callers
    that want to continue catch the error around their own per-target call.
    """
    outcomes: list[DiffOutcome] = []
    for request in requests:
        outcomes.append(await orchestrator.run(request))
    return outcomes
