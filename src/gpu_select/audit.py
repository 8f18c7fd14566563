"""audit.py — JSONL audit logger for gpu_select.

Each selection, fallback, submission or submission error is appended as a
single JSON object (one line) to the audit log file.  The file is created
(with parent directories) on the first write if it does not already exist.

Typical usage::

    from gpu_select.audit import get_logger

    audit = get_logger(config)
    if audit is not None:
        audit.log("submitted", gpu_type="h100", request="h100:1", job_id="12345")
"""
from __future__ import annotations

__all__ = ["AUDIT_EVENTS", "AuditLogger", "get_logger"]

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from gpu_select.config import GpuSelectConfig

logger = logging.getLogger(__name__)

#: Valid event names for the audit log.
AUDIT_EVENTS = frozenset({"selected", "fallback", "submitted", "dry_run", "error"})


class AuditLogger:
    """Appends structured JSON Lines entries to an audit log file.

    Parameters
    ----------
    log_file:
        Path to the JSONL audit file.  Parent directories are created
        automatically on the first write.
    """

    def __init__(self, log_file: Path) -> None:
        self.log_file = log_file

    def log(
        self,
        event: str,
        *,
        script: str = "",
        gpu_type: str = "",
        request: str = "",
        job_id: str | None = None,
        detail: str = "",
        **extra: Any,
    ) -> None:
        """Append a single audit event as a JSON line.

        Parameters
        ----------
        event:
            One of ``selected``, ``fallback``, ``submitted``, ``dry_run``,
            ``error``.
        script:
            Batch script the event relates to.
        gpu_type:
            Chosen GPU type, if any.
        request:
            Resource request string (e.g. ``h100:1``).
        job_id:
            Slurm job ID string, or ``None`` for events without a submission.
        detail:
            Free-text detail message.
        **extra:
            Any additional key-value pairs to include in the log entry.
        """
        entry: dict[str, Any] = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "event": event,
            "script": script,
            "gpu_type": gpu_type,
            "request": request,
            "job_id": job_id,
            "detail": detail,
        }
        entry.update(extra)

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with self.log_file.open("a") as fh:
            fh.write(json.dumps(entry) + "\n")

        logger.debug("audit %s: %s %s job_id=%s", event, script, request, job_id)


def get_logger(config: GpuSelectConfig) -> AuditLogger | None:
    """Return an :class:`AuditLogger` for *config*, or ``None`` when auditing is off."""
    if config.log_file is None:
        return None
    return AuditLogger(config.log_file)
