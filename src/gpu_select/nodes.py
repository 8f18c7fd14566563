"""nodes.py — parsing and eligibility checks for ``sinfo`` node lines.

Each line of ``sinfo -N -O NodeList,StateCompact,CPUsState,Memory[,AllocMem],Gres,GresUsed``
output becomes a :class:`NodeRecord`.  The GRES columns are located by
content (the ``gpu:`` marker) rather than by index, because sinfo pads them
to different widths depending on the length of MIG profile names.

Typical usage::

    from gpu_select.nodes import MemMode, check_node, parse_node_line

    record = parse_node_line(line, MemMode.ALLOC)
    if record is not None and check_node(record, MemMode.ALLOC) is None:
        ...
"""
from __future__ import annotations

__all__ = [
    "MemMode",
    "SkipReason",
    "NodeRecord",
    "parse_gres",
    "parse_idle_cpus",
    "parse_node_line",
    "available_memory",
    "check_node",
]

import re
from dataclasses import dataclass, field
from enum import Enum

from gpu_select.config import GpuSelectConfig

GPU_MARKER = "gpu:"

_GRES_PATTERN = re.compile(r"gpu:([^:\s]+):(\d+)")
_CPU_STATE_PATTERN = re.compile(r"^\d+/\d+/\d+/\d+$")
_MIN_FIELDS = 4


class MemMode(str, Enum):
    """Shape of the sinfo scan, which decides how available memory is computed."""

    ALLOC = "alloc"  # AllocMem column present: available = total - allocated
    TOTAL = "total"  # fallback scan without AllocMem: available = total


class SkipReason(str, Enum):
    """Why a node was excluded from the availability report."""

    BAD_STATE = "bad_state"
    CPU = "cpu"
    MEMORY = "memory"
    NO_GRES = "no_gres"


@dataclass
class NodeRecord:
    """One node's reported state at scan time."""

    name: str
    state: str
    cpu_state: str | None = None
    idle_cpus: int | None = None
    total_memory_mb: int | None = None
    alloc_memory_mb: int | None = None
    gres: str | None = None  # raw total column
    gres_used: str | None = None  # raw used column
    gres_total: dict[str, int] = field(default_factory=dict)
    gres_used_counts: dict[str, int] = field(default_factory=dict)

    def free_gpus(self) -> dict[str, int]:
        """Return ``total - used`` for every GPU type on the node, including non-positive values."""
        return {
            gpu_type: total - self.gres_used_counts.get(gpu_type, 0)
            for gpu_type, total in self.gres_total.items()
        }


def _parse_int(value: str | None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_gres(gres_string: str | None, accumulate: bool = False) -> dict[str, int]:
    """Parse ``gpu:<type>:<count>`` mentions from a GRES column.

    A column may list several types, e.g.
    ``gpu:a100:4(S:0-1),gpu:nvidia_a100_3g.40gb:2``.  Socket and index
    annotations in parentheses are ignored by the pattern.

    Parameters
    ----------
    gres_string:
        Raw GRES or GresUsed column, or ``None``.
    accumulate:
        When ``True`` repeated mentions of a type are summed (used column);
        otherwise the last mention wins (total column).
    """
    counts: dict[str, int] = {}
    if not gres_string:
        return counts
    for match in _GRES_PATTERN.finditer(gres_string):
        gpu_type, count = match.group(1), int(match.group(2))
        if accumulate:
            counts[gpu_type] = counts.get(gpu_type, 0) + count
        else:
            counts[gpu_type] = count
    return counts


def parse_idle_cpus(cpu_state: str | None) -> int | None:
    """Return the idle count from an ``allocated/idle/other/total`` string, or ``None``."""
    if not cpu_state or not _CPU_STATE_PATTERN.match(cpu_state):
        return None
    return int(cpu_state.split("/")[1])


def parse_node_line(line: str, mem_mode: MemMode) -> NodeRecord | None:
    """Parse one sinfo line into a :class:`NodeRecord`.

    Returns ``None`` for lines with fewer than four whitespace-separated
    fields.  Unparsable numeric fields become ``None`` rather than raising,
    so that the eligibility checks can reject the node instead.
    """
    parts = line.split()
    if len(parts) < _MIN_FIELDS:
        return None

    cpu_state = parts[2]
    alloc_mem = None
    if mem_mode == MemMode.ALLOC and len(parts) > _MIN_FIELDS:
        alloc_mem = _parse_int(parts[4])

    gres = next((p for p in parts[2:] if GPU_MARKER in p), None)
    # The used column is the last gpu-like field, when it is not the total column itself
    gres_used = parts[-1] if GPU_MARKER in parts[-1] and parts[-1] != gres else None

    return NodeRecord(
        name=parts[0],
        state=parts[1].lower(),
        cpu_state=cpu_state,
        idle_cpus=parse_idle_cpus(cpu_state),
        total_memory_mb=_parse_int(parts[3]),
        alloc_memory_mb=alloc_mem,
        gres=gres,
        gres_used=gres_used,
        gres_total=parse_gres(gres),
        gres_used_counts=parse_gres(gres_used, accumulate=True),
    )


def available_memory(record: NodeRecord, mem_mode: MemMode) -> int | None:
    """Return available memory in MB, or ``None`` when total memory is unknown."""
    if record.total_memory_mb is None:
        return None
    if mem_mode == MemMode.ALLOC and record.alloc_memory_mb is not None:
        return record.total_memory_mb - record.alloc_memory_mb
    return record.total_memory_mb


def check_node(
    record: NodeRecord,
    mem_mode: MemMode,
    config: GpuSelectConfig | None = None,
) -> SkipReason | None:
    """Apply the eligibility checks in order and return the first failure.

    The order is health state, idle CPUs, available memory, then GPU
    presence.  Returns ``None`` when the node is eligible.
    """
    config = config or GpuSelectConfig()

    if "*" in record.state or any(bad in record.state for bad in config.bad_states):
        return SkipReason.BAD_STATE

    if record.idle_cpus is None or record.idle_cpus < config.min_idle_cpus:
        return SkipReason.CPU

    mem_available = available_memory(record, mem_mode)
    if mem_available is None or mem_available < config.min_available_mem_mb:
        return SkipReason.MEMORY

    if record.gres is None:
        return SkipReason.NO_GRES

    return None
