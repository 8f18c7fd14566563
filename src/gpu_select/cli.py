from __future__ import annotations

import logging
import subprocess
from pathlib import Path

import click

from gpu_select.audit import AuditLogger, get_logger
from gpu_select.config import GpuSelectConfig
from gpu_select.partitions import DurationError, parse_duration
from gpu_select.query import QueryError
from gpu_select.resolver import find_available, find_nodes
from gpu_select.selection import Selection, read_preferences, select_gpu
from gpu_select.submit import build_sbatch_command, expected_output_file, submit_job

logger = logging.getLogger(__name__)


def _validate_duration(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    if value is None:
        return None
    try:
        parse_duration(value)
    except DurationError as exc:
        raise click.BadParameter(str(exc), ctx=ctx, param=param) from exc
    return value


def _select_for_script(
    script: str,
    config: GpuSelectConfig,
    audit: AuditLogger | None,
) -> Selection | None:
    """Apply the script's preference header, or return None when it has none.

    Progress goes to stderr so that stdout carries only the result.
    """
    preferences = read_preferences(script, config.select_marker)
    if preferences is None:
        return None
    click.echo(f"--> Found dynamic GPU request: {', '.join(preferences)}", err=True)

    try:
        available = find_available(config=config).available_types()
    except QueryError as exc:
        logger.warning("GPU availability scan failed: %s", exc)
        available = []
    click.echo(f"--> Currently available types: [ {' '.join(available)} ]", err=True)

    selection = select_gpu(preferences, available)
    if selection.matched:
        click.echo(f"--> Match found! Requesting: {selection.gres}", err=True)
    else:
        click.echo(
            "--> No GPUs from list are currently free. "
            f"Queueing for first preference: {selection.gres}",
            err=True,
        )
    if audit is not None:
        audit.log(
            "selected" if selection.matched else "fallback",
            script=script,
            gpu_type=selection.gpu_type,
            request=selection.request,
            detail=" ".join(available),
        )
    return selection


@click.group()
@click.option(
    "--config",
    "config_path",
    default=None,
    metavar="PATH",
    help="Path to YAML config file. Uses built-in defaults if omitted.",
)
@click.option(
    "--min-idle-cpus",
    "min_idle_cpus",
    default=None,
    type=click.IntRange(min=0),
    metavar="N",
    help="Minimum idle CPU cores for a node to count. Overrides config file.",
)
@click.option(
    "--min-mem",
    "min_mem",
    default=None,
    type=click.IntRange(min=0),
    metavar="MB",
    help="Minimum available memory (MB) for a node to count. Overrides config file.",
)
@click.option(
    "--log-file",
    "log_file",
    default=None,
    metavar="PATH",
    help="JSONL audit log for selections and submissions. Overrides config file.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    min_idle_cpus: int | None,
    min_mem: int | None,
    log_file: str | None,
) -> None:
    """gpu-select: find free Slurm GPU types and pick one at submission time."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    try:
        config = GpuSelectConfig.from_yaml(config_path) if config_path else GpuSelectConfig()
    except (OSError, ValueError, TypeError) as exc:
        raise click.UsageError(f"Cannot load config {config_path}: {exc}", ctx=ctx) from exc
    if min_idle_cpus is not None:
        config.min_idle_cpus = min_idle_cpus
    if min_mem is not None:
        config.min_available_mem_mb = min_mem
    if log_file is not None:
        config.log_file = Path(log_file)
    ctx.obj["config"] = config


@main.command()
@click.option("-n", "--counts", is_flag=True, help="Show free slot counts per GPU type.")
@click.option(
    "-t",
    "--time",
    "max_time",
    default=None,
    metavar="DURATION",
    callback=_validate_duration,
    help="Only scan partitions whose MaxTime allows a job this long (e.g. 2:00:00, 1-00:00:00).",
)
@click.pass_context
def avail(ctx: click.Context, counts: bool, max_time: str | None) -> None:
    """List GPU types with free capacity on healthy nodes."""
    config: GpuSelectConfig = ctx.obj["config"]
    try:
        report = find_available(counts=counts, max_time=max_time, config=config)
    except QueryError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(report.format())
    warning = report.warning()
    if warning is not None:
        click.echo(warning, err=True)


@main.command()
@click.option(
    "-t",
    "--time",
    "max_time",
    default=None,
    metavar="DURATION",
    callback=_validate_duration,
    help="Only scan partitions whose MaxTime allows a job this long.",
)
@click.pass_context
def nodes(ctx: click.Context, max_time: str | None) -> None:
    """Show every scanned node with its resources and eligibility verdict."""
    config: GpuSelectConfig = ctx.obj["config"]
    try:
        frame, mem_mode = find_nodes(max_time, config)
    except QueryError as exc:
        raise click.ClickException(str(exc)) from exc

    if mem_mode is None:
        click.echo("No partition allows the requested time.")
        return
    if frame.empty:
        click.echo("No nodes reported.")
        return

    click.echo(f"Memory mode: {mem_mode.value}")
    click.echo(frame.to_string(index=False))


@main.command()
@click.argument("script", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def pick(ctx: click.Context, script: str) -> None:
    """Print the GPU request chosen from SCRIPT's #SELECTGPU header."""
    config: GpuSelectConfig = ctx.obj["config"]
    selection = _select_for_script(script, config, get_logger(config))
    if selection is None:
        click.echo(f"--> No {config.select_marker} header; keeping the script's own request.", err=True)
        return
    click.echo(selection.request)


@main.command(context_settings={"ignore_unknown_options": True})
@click.option("--dry-run", is_flag=True, help="Print the sbatch command without submitting.")
@click.argument("script", type=click.Path(exists=True, dir_okay=False))
@click.argument("sbatch_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def submit(ctx: click.Context, dry_run: bool, script: str, sbatch_args: tuple[str, ...]) -> None:
    """Submit SCRIPT with sbatch, requesting the best free GPU from its header.

    Any extra SBATCH_ARGS (e.g. --time=2:00:00) are passed to sbatch unchanged.
    """
    config: GpuSelectConfig = ctx.obj["config"]
    audit = get_logger(config)
    selection = _select_for_script(script, config, audit)

    try:
        job_id = submit_job(script, sbatch_args, selection, dry_run=dry_run, audit=audit)
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise click.ClickException(f"sbatch command failed: {stderr or exc}") from exc
    except (RuntimeError, FileNotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc

    if job_id is None:
        cmd = build_sbatch_command(script, sbatch_args, selection)
        click.echo(f"[DRY RUN] Would submit: {' '.join(cmd)}")
        return

    click.echo(f"--> Submitted Job ID: {job_id}")
    click.echo(f"--> Output file: {expected_output_file(job_id)}")
