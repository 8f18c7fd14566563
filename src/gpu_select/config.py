from __future__ import annotations

__all__ = ["DEFAULT_BAD_STATES", "GpuSelectConfig"]

from dataclasses import dataclass, field
from pathlib import Path

import yaml


# Substrings that mark a node as unusable. The "*" (not responding) suffix is
# checked separately because it is a flag character, not a state name.
DEFAULT_BAD_STATES: list[str] = ["drain", "drng", "down", "fail", "maint"]


@dataclass
class GpuSelectConfig:
    """Thresholds, sinfo layout and selection settings in one place."""

    # Eligibility thresholds
    min_idle_cpus: int = 10
    min_available_mem_mb: int = 32768
    bad_states: list[str] = field(default_factory=lambda: list(DEFAULT_BAD_STATES))

    # sinfo query layout
    node_states: list[str] = field(default_factory=lambda: ["idle", "mix", "alloc"])
    name_width: int = 20  # width of the NodeList/State/CPU/Memory columns
    gres_width: int = 5000  # MIG profile names make Gres columns very wide

    # Header line in a batch script carrying the GPU preference list
    select_marker: str = "#SELECTGPU"

    # JSONL audit log. Auditing is disabled when unset.
    log_file: Path | None = None

    def __post_init__(self) -> None:
        """Validate thresholds and the selection marker.

        Raises
        ------
        ValueError
            If a threshold or column width is negative, a state list is not a
            list of strings, or the marker is empty.
        """
        for name in ("min_idle_cpus", "min_available_mem_mb"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)!r}")
        for name in ("name_width", "gres_width"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)!r}")
        for name in ("bad_states", "node_states"):
            value = getattr(self, name)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"{name} must be a list of strings, got {value!r}")
        if not self.select_marker.strip():
            raise ValueError("select_marker must not be empty")

    @classmethod
    def from_yaml(cls, path: str | Path) -> "GpuSelectConfig":
        """Load config from a YAML file, overriding defaults.

        Raises
        ------
        ValueError
            If the file contains invalid YAML syntax or its top level is
            not a mapping.
        FileNotFoundError
            If *path* does not exist.
        """
        with open(Path(path).expanduser()) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError(f"Config {path} must be a mapping, got {type(data).__name__}")

        if data.get("log_file") is not None:
            data["log_file"] = Path(data["log_file"]).expanduser()

        return cls(**data)
