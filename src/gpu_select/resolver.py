"""resolver.py — GPU availability from sinfo node text.

:func:`resolve` is a pure function of the scan text and its
:class:`~gpu_select.nodes.MemMode`: it parses every node line, drops
duplicates, applies the eligibility checks and sums ``total - used`` per GPU
type.  Skipped nodes are counted in a :class:`SkipCounts` record attached to
the returned :class:`AvailabilityReport` instead of being printed.

:func:`find_available` wires the resolver to the live Slurm queries,
including the optional partition time-limit filter.

Typical usage::

    from gpu_select.resolver import find_available

    report = find_available(counts=True, max_time="2:00:00")
    print(report.format())
"""
from __future__ import annotations

__all__ = [
    "SkipCounts",
    "AvailabilityReport",
    "iter_node_records",
    "resolve",
    "nodes_frame",
    "find_available",
    "find_nodes",
    "scan_partitions",
]

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

import pandas as pd

from gpu_select.config import GpuSelectConfig
from gpu_select.nodes import (
    MemMode,
    NodeRecord,
    SkipReason,
    available_memory,
    check_node,
    parse_node_line,
)
from gpu_select.partitions import eligible_partitions, parse_duration
from gpu_select.query import QueryError, fetch_node_status, fetch_partition_info

logger = logging.getLogger(__name__)


@dataclass
class SkipCounts:
    """Per-reason counters for lines and nodes left out of a report."""

    bad_state: int = 0
    cpu: int = 0
    memory: int = 0
    no_gres: int = 0
    malformed: int = 0
    duplicate: int = 0

    def add(self, reason: SkipReason) -> None:
        setattr(self, reason.value, getattr(self, reason.value) + 1)

    @property
    def resource_skips(self) -> int:
        """Nodes rejected for state, CPU or memory."""
        return self.bad_state + self.cpu + self.memory


@dataclass
class AvailabilityReport:
    """Result of one resolver pass.

    In presence mode only ``types`` is populated; in counts mode only
    ``free`` is.  Both are sorted by GPU type and never hold a type with a
    non-positive free count.
    """

    counts: bool = False
    types: list[str] = field(default_factory=list)
    free: dict[str, int] = field(default_factory=dict)
    skipped: SkipCounts = field(default_factory=SkipCounts)

    def __bool__(self) -> bool:
        return bool(self.free) if self.counts else bool(self.types)

    def available_types(self) -> list[str]:
        """Sorted GPU types with free capacity, whichever mode the report is in."""
        return list(self.free) if self.counts else list(self.types)

    def format(self) -> str:
        """Render as ``"a b"`` (presence) or ``"a:3 b:1"`` (counts)."""
        if self.counts:
            return " ".join(f"{gpu_type}:{count}" for gpu_type, count in self.free.items())
        return " ".join(self.types)

    def warning(self) -> str | None:
        """Return a summary of skipped nodes when the report is empty, else ``None``."""
        if self or self.skipped.resource_skips == 0:
            return None
        return (
            "Warning: No GPUs found. "
            f"{self.skipped.bad_state} nodes skipped for state, "
            f"{self.skipped.cpu} for CPU, {self.skipped.memory} for memory."
        )


def iter_node_records(
    text: str,
    mem_mode: MemMode,
    skipped: SkipCounts | None = None,
) -> Iterator[NodeRecord]:
    """Yield one :class:`NodeRecord` per distinct node name, first line wins."""
    seen: set[str] = set()
    for line in text.splitlines():
        record = parse_node_line(line, mem_mode)
        if record is None:
            if line.strip() and skipped is not None:
                skipped.malformed += 1
            continue
        if record.name in seen:
            if skipped is not None:
                skipped.duplicate += 1
            continue
        seen.add(record.name)
        yield record


def resolve(
    text: str,
    mem_mode: MemMode,
    counts: bool = False,
    config: GpuSelectConfig | None = None,
) -> AvailabilityReport:
    """Compute GPU availability from raw sinfo node text.

    Parameters
    ----------
    text:
        sinfo output, one node per line.
    mem_mode:
        Which scan produced *text*; decides whether field 4 is AllocMem.
    counts:
        When ``True`` return free slot counts per type summed over nodes;
        otherwise return the set of types with at least one free slot.
    config:
        Eligibility thresholds.  Defaults to :class:`GpuSelectConfig`.
    """
    config = config or GpuSelectConfig()
    skipped = SkipCounts()
    types: set[str] = set()
    free: dict[str, int] = {}

    for record in iter_node_records(text, mem_mode, skipped):
        reason = check_node(record, mem_mode, config)
        if reason is not None:
            skipped.add(reason)
            continue
        for gpu_type, free_count in record.free_gpus().items():
            if free_count <= 0:
                continue
            if counts:
                free[gpu_type] = free.get(gpu_type, 0) + free_count
            else:
                types.add(gpu_type)

    return AvailabilityReport(
        counts=counts,
        types=sorted(types),
        free={gpu_type: free[gpu_type] for gpu_type in sorted(free)},
        skipped=skipped,
    )


_NODE_COLUMNS = [
    "node", "state", "idle_cpus", "total_mem_mb", "alloc_mem_mb",
    "avail_mem_mb", "gres", "gres_used", "free_gpus", "verdict",
]
# Nullable integers, so a missing value does not turn the column into floats
_INT_COLUMNS = {
    column: "Int64"
    for column in ("idle_cpus", "total_mem_mb", "alloc_mem_mb", "avail_mem_mb")
}


def nodes_frame(
    text: str,
    mem_mode: MemMode,
    config: GpuSelectConfig | None = None,
) -> pd.DataFrame:
    """Return one row per distinct node with its eligibility verdict.

    ``verdict`` is ``"ok"`` for eligible nodes, otherwise the
    :class:`~gpu_select.nodes.SkipReason` value.  ``free_gpus`` lists only
    types with a positive free count, as ``type:count`` pairs.
    """
    config = config or GpuSelectConfig()
    rows = []
    for record in iter_node_records(text, mem_mode):
        reason = check_node(record, mem_mode, config)
        free = " ".join(
            f"{gpu_type}:{count}"
            for gpu_type, count in sorted(record.free_gpus().items())
            if count > 0
        )
        rows.append({
            "node": record.name,
            "state": record.state,
            "idle_cpus": record.idle_cpus,
            "total_mem_mb": record.total_memory_mb,
            "alloc_mem_mb": record.alloc_memory_mb,
            "avail_mem_mb": available_memory(record, mem_mode),
            "gres": record.gres or "",
            "gres_used": record.gres_used or "",
            "free_gpus": free,
            "verdict": "ok" if reason is None else reason.value,
        })

    return pd.DataFrame(rows, columns=_NODE_COLUMNS).astype(_INT_COLUMNS)


def scan_partitions(max_time: str | None) -> list[str] | None:
    """Return the partitions able to run a job of *max_time*.

    ``None`` means "do not filter": no time was requested, or the partition
    list could not be read (a warning is logged).  An empty list means the
    list was read but no partition qualifies.

    Raises
    ------
    DurationError
        If *max_time* is not a valid duration.
    """
    if max_time is None:
        return None
    min_seconds = parse_duration(max_time)

    try:
        text = fetch_partition_info()
    except QueryError as exc:
        logger.warning("could not read partition limits (%s); scanning all partitions", exc)
        return None

    names = eligible_partitions(text, min_seconds)
    if names is None:
        logger.warning("no partition limits found in scontrol output; scanning all partitions")
        return None
    logger.debug("partitions allowing %s: %s", max_time, ", ".join(names) or "(none)")
    return names


def find_available(
    counts: bool = False,
    max_time: str | None = None,
    config: GpuSelectConfig | None = None,
) -> AvailabilityReport:
    """Query Slurm and resolve GPU availability.

    Raises
    ------
    DurationError
        If *max_time* is not a valid duration (raised before any query).
    QueryError
        If neither node scan can be run.
    """
    partitions = scan_partitions(max_time)
    if partitions is not None and not partitions:
        return AvailabilityReport(counts=counts)

    text, mem_mode = fetch_node_status(partitions, config)
    return resolve(text, mem_mode, counts=counts, config=config)


def find_nodes(
    max_time: str | None = None,
    config: GpuSelectConfig | None = None,
) -> tuple[pd.DataFrame, MemMode | None]:
    """Query Slurm and return the :func:`nodes_frame` table with its scan mode.

    The mode is ``None`` when the time filter leaves no partition to scan.
    """
    partitions = scan_partitions(max_time)
    if partitions is not None and not partitions:
        return pd.DataFrame(columns=_NODE_COLUMNS).astype(_INT_COLUMNS), None

    text, mem_mode = fetch_node_status(partitions, config)
    return nodes_frame(text, mem_mode, config), mem_mode
