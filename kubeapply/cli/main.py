"""kubeapply command-line interface.

Example:
    $ kubeapply diff clusters/stage/*.yaml --subpath 'apps/*'
    $ kubeapply diff clusters/prod.yaml --json > diff.json
    $ KUBECTL_EXTERNAL_DIFF="kubeapply kdiff" kubectl diff -f manifests/
"""

from __future__ import annotations

import asyncio
import glob
import sys

import click

from kubeapply import __version__
from kubeapply.app import build_orchestrator
from kubeapply.config import load_cluster_target, load_config
from kubeapply.diff.kdiff import kdiff
from kubeapply.diff.orchestrator import DiffOrchestrator, DiffOutcome
from kubeapply.diff.presenter import print_full, print_summary, to_json, to_json_many
from kubeapply.errors import KubeapplyError
from kubeapply.models.cluster import DiffRequest, OutputMode
from kubeapply.models.config import KubeapplyConfig
from kubeapply.models.diff import DiffResultSet
from kubeapply.observability.logging import get_logger, setup_logging

_logger = get_logger("cli")


@click.group()
@click.version_option(version=__version__, prog_name="kubeapply")
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """kubeapply - safe, structured diffs of Kubernetes clusters."""
    config = load_config()
    if debug:
        config.log.level = "debug"
    setup_logging(config.log.level, config.log.format)
    ctx.obj = config


@cli.command("diff")
@click.argument("cluster_configs", nargs=-1, required=True)
@click.option("--kubeconfig", default="", help="Path to kubeconfig. Defaults to the KUBECONFIG env variable.")
@click.option("--simple-output", is_flag=True, default=False, help="Print kubectl's raw diff output.")
@click.option(
    "--subpath",
    "subpaths",
    multiple=True,
    help="Diff for expanded configs in the provided subpath(s) only. Globs are allowed.",
)
@click.option("--short", "short_diff", is_flag=True, default=False, help="Collapse long runs of unchanged lines.")
@click.option("--verbose", is_flag=True, default=False, help="Also list resources without changes.")
@click.option("--json", "json_output", is_flag=True, default=False, help="Print structured results as one JSON document.")
@click.option("--use-locks/--no-use-locks", default=None, help="Hold a per-cluster lock while diffing.")
@click.option("--lock-timeout", type=float, default=None, help="Seconds to wait for the cluster lock.")
@click.pass_obj
def diff_command(
    config: KubeapplyConfig,
    cluster_configs: tuple[str, ...],
    kubeconfig: str,
    simple_output: bool,
    subpaths: tuple[str, ...],
    short_diff: bool,
    verbose: bool,
    json_output: bool,
    use_locks: bool | None,
    lock_timeout: float | None,
) -> None:
    """Show the difference between the expanded configs and the API state.

    CLUSTER_CONFIGS are cluster config files or globs; clusters are diffed
    one at a time and the first failure stops the run.  With --json and more
    than one cluster, a single document lists every cluster's results.
    """
    if json_output and simple_output:
        raise click.UsageError("--json cannot be combined with --simple-output")
    if use_locks is not None:
        config.locks.enabled = use_locks
    if lock_timeout is None:
        lock_timeout = float(config.locks.timeout_seconds)

    paths: list[str] = []
    for arg in cluster_configs:
        matches = sorted(glob.glob(arg))
        if not matches:
            raise click.ClickException(f"No cluster configs match {arg}")
        paths.extend(matches)

    mode = OutputMode.RAW if simple_output else OutputMode.STRUCTURED
    orchestrator = build_orchestrator(config)
    try:
        requests = [
            DiffRequest(
                target=load_cluster_target(path, kubeconfig=kubeconfig),
                mode=mode,
                subpaths=subpaths,
                short_diff=short_diff,
                verbose=verbose,
                lock_timeout=lock_timeout,
            )
            for path in paths
        ]
        asyncio.run(_diff_all(orchestrator, requests, json_output))
    except KubeapplyError as exc:
        raise click.ClickException(str(exc)) from exc


async def _diff_all(orchestrator: DiffOrchestrator, requests: list[DiffRequest], json_output: bool) -> None:
    collected: list[tuple[str, DiffResultSet]] = []
    for request in requests:
        outcome = await orchestrator.run(request)
        if json_output and outcome.results is not None:
            collected.append((outcome.target.name, outcome.results))
        else:
            _print_outcome(outcome, request.verbose)

    if not json_output:
        return
    if len(collected) == 1:
        click.echo(to_json(collected[0][1]))
    else:
        click.echo(to_json_many(collected))


def _print_outcome(outcome: DiffOutcome, verbose: bool) -> None:
    color = sys.stdout.isatty()
    if outcome.results is not None:
        click.echo(f"Diff results for {outcome.target.name}:")
        print_summary(outcome.results, sys.stdout, verbose=verbose)
        click.echo()
        print_full(outcome.results, sys.stdout, verbose=verbose, color=color)
    else:
        click.echo(f"Raw diff results for {outcome.target.name}:")
        click.echo(outcome.raw or "No differences found")


@cli.command("kdiff", hidden=True)
@click.argument("old_path", type=click.Path(exists=True, file_okay=False))
@click.argument("new_path", type=click.Path(exists=True, file_okay=False))
@click.argument("short_diff", type=click.BOOL, required=False, default=False)
def kdiff_command(old_path: str, new_path: str, short_diff: bool) -> None:
    """Generate structured JSON output from two kubectl diff trees; for internal use only."""
    try:
        results = kdiff(old_path, new_path, short_diff=short_diff)
    except KubeapplyError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(to_json(results))
