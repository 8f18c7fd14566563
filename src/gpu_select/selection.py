"""selection.py — choose a GPU type from a batch script's preference header.

A batch script may carry one header line such as::

    #SELECTGPU h100, nvidia_h100_80gb_hbm3_3g.40gb, a100

The first listed type that is currently available wins.  When none is
available the first preference is requested anyway, so the job queues for
the most wanted GPU instead of failing.
"""
from __future__ import annotations

__all__ = [
    "DEFAULT_MARKER",
    "Selection",
    "parse_preferences",
    "read_preferences",
    "select_gpu",
]

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "#SELECTGPU"


@dataclass(frozen=True)
class Selection:
    """A chosen GPU type and whether it was actually free at selection time."""

    gpu_type: str
    matched: bool
    count: int = 1

    @property
    def request(self) -> str:
        """Resource request in ``<type>:<count>`` form."""
        return f"{self.gpu_type}:{self.count}"

    @property
    def gres(self) -> str:
        """Value for sbatch's ``--gres`` option."""
        return f"gpu:{self.request}"


def parse_preferences(text: str, marker: str = DEFAULT_MARKER) -> list[str] | None:
    """Return the preference list from the first *marker* line in *text*.

    Only the first header line counts.  Entries are comma-separated and
    trimmed; empty entries are dropped.  Returns ``None`` when there is no
    header or it lists nothing.
    """
    for line in text.splitlines():
        if not line.startswith(marker):
            continue
        rest = line[len(marker):]
        if rest and not rest[0].isspace():
            # e.g. "#SELECTGPUS" is a different token
            continue
        preferences = [entry.strip() for entry in rest.split(",")]
        preferences = [entry for entry in preferences if entry]
        return preferences or None
    return None


def read_preferences(path: str | Path, marker: str = DEFAULT_MARKER) -> list[str] | None:
    """Read *path* and return its preference list (see :func:`parse_preferences`).

    Undecodable bytes are replaced, so a stray non-UTF-8 comment does not
    hide the header.
    """
    return parse_preferences(Path(path).read_text(encoding="utf-8", errors="replace"), marker)


def select_gpu(preferences: Sequence[str], available: Iterable[str]) -> Selection:
    """Pick the first preferred GPU type that is available.

    Falls back to the first preference when none is available, so the job
    queues until that type frees up.

    Raises
    ------
    ValueError
        If *preferences* is empty.
    """
    if not preferences:
        raise ValueError("preference list must contain at least one GPU type")

    available_set = set(available)
    for candidate in preferences:
        if candidate in available_set:
            logger.info("selected available GPU type %s", candidate)
            return Selection(gpu_type=candidate, matched=True)

    logger.info(
        "none of %s is free; queueing for first preference %s",
        ", ".join(preferences),
        preferences[0],
    )
    return Selection(gpu_type=preferences[0], matched=False)
