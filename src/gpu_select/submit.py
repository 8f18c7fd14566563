from __future__ import annotations

__all__ = ["build_sbatch_command", "expected_output_file", "submit_job"]

import logging
import subprocess
from collections.abc import Sequence
from typing import TYPE_CHECKING

from gpu_select.selection import Selection

if TYPE_CHECKING:
    from gpu_select.audit import AuditLogger

logger = logging.getLogger(__name__)


def build_sbatch_command(
    script: str,
    sbatch_args: Sequence[str] = (),
    selection: Selection | None = None,
) -> list[str]:
    """Return the sbatch command for *script*.

    ``--gres`` is prepended only when a GPU type was selected; the caller's
    own sbatch options follow it unchanged and the script comes last, so
    sbatch parses every option instead of passing it to the script.
    """
    cmd = ["sbatch", "--parsable"]
    if selection is not None:
        cmd.append(f"--gres={selection.gres}")
    cmd.extend(sbatch_args)
    cmd.append(script)
    return cmd


def expected_output_file(job_id: str) -> str:
    """Return sbatch's default output file name for *job_id*."""
    return f"slurm-{job_id}.out"


def submit_job(
    script: str,
    sbatch_args: Sequence[str] = (),
    selection: Selection | None = None,
    dry_run: bool = False,
    audit: AuditLogger | None = None,
) -> str | None:
    """Submit *script* with sbatch, requesting the selected GPU type.

    Parameters
    ----------
    script:
        Path to the batch script.
    sbatch_args:
        Extra sbatch options, passed through unmodified.
    selection:
        GPU selection from :func:`~gpu_select.selection.select_gpu`, or
        ``None`` to leave the script's own resource request untouched.
    dry_run:
        When *True*, logs the command that would be run and returns *None*
        without calling sbatch.
    audit:
        Optional audit logger for ``submitted`` / ``dry_run`` / ``error`` events.

    Returns
    -------
    str or None
        The Slurm job ID string on success, or *None* for dry runs.

    Raises
    ------
    RuntimeError
        If sbatch exits successfully but prints no job ID.
    subprocess.CalledProcessError
        If sbatch exits with a non-zero status.
    """
    cmd = build_sbatch_command(script, sbatch_args, selection)
    gpu_type = selection.gpu_type if selection is not None else ""
    request = selection.request if selection is not None else ""

    if dry_run:
        logger.info("[DRY RUN] Would submit: %s", " ".join(cmd))
        if audit is not None:
            audit.log("dry_run", script=script, gpu_type=gpu_type, request=request,
                      detail=" ".join(cmd))
        return None

    logger.info("Submitting: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        if audit is not None:
            audit.log("error", script=script, gpu_type=gpu_type, request=request,
                      detail=str(e))
        raise
    # --parsable prints "<jobid>" or "<jobid>;<cluster>"
    output = result.stdout.strip()
    if not output:
        raise RuntimeError("sbatch returned no job ID")
    job_id = output.split(";")[0]
    if audit is not None:
        audit.log("submitted", script=script, gpu_type=gpu_type, request=request,
                  job_id=job_id)
    return job_id
