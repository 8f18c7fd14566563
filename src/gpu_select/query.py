"""query.py — acquisition of raw node and partition text from Slurm.

The allocation-aware ``sinfo`` scan is tried first; when it fails the
total-memory-only scan is run instead, and the mode that produced the text
is returned alongside it so the resolver can apply the matching memory rule.

Typical usage::

    from gpu_select.query import fetch_node_status
    from gpu_select.resolver import resolve

    text, mem_mode = fetch_node_status(partitions=["gpu"])
    report = resolve(text, mem_mode)
"""
from __future__ import annotations

__all__ = [
    "QueryError",
    "build_sinfo_command",
    "fetch_node_status",
    "fetch_partition_info",
]

import logging
import subprocess
from collections.abc import Sequence

from gpu_select.config import GpuSelectConfig
from gpu_select.nodes import MemMode

logger = logging.getLogger(__name__)


class QueryError(RuntimeError):
    """Raised when a Slurm status command cannot be run or exits non-zero."""


def build_sinfo_command(
    mem_mode: MemMode,
    partitions: Sequence[str] | None = None,
    config: GpuSelectConfig | None = None,
) -> list[str]:
    """Return the ``sinfo`` command for one scan mode.

    ``-N`` lists one line per node per partition, which is why the resolver
    de-duplicates node names.
    """
    config = config or GpuSelectConfig()
    width = config.name_width
    columns = [
        f"NodeList:{width}",
        f"StateCompact:{width}",
        f"CPUsState:{width}",
        f"Memory:{width}",
    ]
    if mem_mode == MemMode.ALLOC:
        columns.append(f"AllocMem:{width}")
    columns += [f"Gres:{config.gres_width}", f"GresUsed:{config.gres_width}"]

    cmd = ["sinfo", "-N", "-h", "-t", ",".join(config.node_states)]
    if partitions:
        cmd += ["-p", ",".join(partitions)]
    cmd += ["-O", ",".join(columns)]
    return cmd


def _run(cmd: list[str]) -> str:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise QueryError(f"{cmd[0]} exited with status {exc.returncode}: {stderr}") from exc
    except FileNotFoundError as exc:
        raise QueryError(f"{cmd[0]} not found; is Slurm installed?") from exc
    return result.stdout


def fetch_node_status(
    partitions: Sequence[str] | None = None,
    config: GpuSelectConfig | None = None,
) -> tuple[str, MemMode]:
    """Run the node scan and return ``(text, mem_mode)``.

    Parameters
    ----------
    partitions:
        Restrict the scan to these partitions.  ``None`` or empty scans all.
    config:
        Supplies node states and column widths.

    Raises
    ------
    QueryError
        If both the allocation-aware and the total-only scans fail.
    """
    try:
        text = _run(build_sinfo_command(MemMode.ALLOC, partitions, config))
        return text, MemMode.ALLOC
    except QueryError as exc:
        logger.info("allocation-aware sinfo scan failed (%s); retrying without AllocMem", exc)

    text = _run(build_sinfo_command(MemMode.TOTAL, partitions, config))
    return text, MemMode.TOTAL


def fetch_partition_info() -> str:
    """Return ``scontrol show partition -o`` output.

    Raises
    ------
    QueryError
        If scontrol is missing or exits non-zero.
    """
    return _run(["scontrol", "show", "partition", "-o"])
