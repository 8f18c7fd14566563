"""partitions.py — partition time limits for narrowing the node scan.

Parses Slurm duration strings and ``scontrol show partition`` output so that
only partitions able to host a job of the requested length are scanned.

Typical usage::

    from gpu_select.partitions import eligible_partitions, parse_duration

    min_seconds = parse_duration("2:00:00")
    names = eligible_partitions(scontrol_text, min_seconds)
"""
from __future__ import annotations

__all__ = [
    "DurationError",
    "parse_duration",
    "parse_partition_limits",
    "eligible_partitions",
]

import logging
import math
import re

logger = logging.getLogger(__name__)

UNLIMITED_VALUES = frozenset({"infinite", "unlimited"})

# [D-]A[:B[:C]]; the meaning of A/B/C depends on whether a day part is present
_DURATION_PATTERN = re.compile(r"^(?:(\d+)-)?(\d+)(?::(\d+))?(?::(\d+))?$")
_RECORD_START = re.compile(r"(?=PartitionName=)")
_NAME_PATTERN = re.compile(r"PartitionName=(\S+)")
_MAX_TIME_PATTERN = re.compile(r"\bMaxTime=(\S+)")


class DurationError(ValueError):
    """Raised when a duration string is not in a recognised Slurm format."""


def parse_duration(value: str) -> float:
    """Parse a Slurm duration into seconds.

    Accepted forms are ``D-HH:MM:SS``, ``D-HH:MM``, ``D-HH``, ``HH:MM:SS``,
    ``MM:SS`` and ``MM``.  ``infinite`` and ``unlimited`` (any case) map to
    :data:`math.inf`.

    Raises
    ------
    DurationError
        If *value* matches none of the forms above.
    """
    text = value.strip()
    if text.lower() in UNLIMITED_VALUES:
        return math.inf

    match = _DURATION_PATTERN.match(text)
    if match is None:
        raise DurationError(f"Invalid duration {value!r}; expected [D-]HH:MM:SS, MM:SS or MM")

    days_text, first, second, third = match.groups()
    fields = [int(f) for f in (first, second, third) if f is not None]

    if days_text is not None:
        hours, minutes, seconds = (fields + [0, 0])[:3]
        days = int(days_text)
    elif len(fields) == 3:
        days, (hours, minutes, seconds) = 0, fields
    elif len(fields) == 2:
        days, hours, (minutes, seconds) = 0, 0, fields
    else:
        days, hours, minutes, seconds = 0, 0, fields[0], 0

    return float(((days * 24 + hours) * 60 + minutes) * 60 + seconds)


def parse_partition_limits(text: str) -> list[tuple[str, float]]:
    """Extract ``(partition, max_seconds)`` pairs from ``scontrol show partition`` output.

    Works for both the one-line-per-partition (``-o``) and the multi-line
    layouts: each record starts at a ``PartitionName=`` token and its
    ``MaxTime=`` token is found anywhere before the next one.  Records
    with a missing or unparsable MaxTime are skipped.
    """
    limits: list[tuple[str, float]] = []
    for chunk in _RECORD_START.split(text):
        name_match = _NAME_PATTERN.search(chunk)
        if name_match is None:
            continue
        time_match = _MAX_TIME_PATTERN.search(chunk)
        if time_match is None:
            logger.debug("partition %s has no MaxTime; skipping", name_match.group(1))
            continue
        try:
            max_seconds = parse_duration(time_match.group(1))
        except DurationError:
            logger.debug(
                "partition %s has unparsable MaxTime %r; skipping",
                name_match.group(1),
                time_match.group(1),
            )
            continue
        limits.append((name_match.group(1), max_seconds))
    return limits


def eligible_partitions(text: str, min_seconds: float) -> list[str] | None:
    """Return partitions whose MaxTime is at least *min_seconds*.

    Returns ``None`` when *text* contains no parsable partition records at
    all, so callers can tell "nothing qualifies" (empty list) apart from
    "could not read the partition list".
    """
    limits = parse_partition_limits(text)
    if not limits:
        return None

    names: list[str] = []
    for name, max_seconds in limits:
        if max_seconds >= min_seconds and name not in names:
            names.append(name)
    return names
