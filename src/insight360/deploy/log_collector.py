"""Persist deployment attempts and diagnostics.

Every invocation leaves two kinds of record behind:

- a few plain-text lines appended to the deployment log (``deploy.log``),
  the same file the structlog file handler writes to
- a self-contained ``{output_dir}/{attempt_id}/`` directory that can be
  archived or attached to an incident

Output Structure::

    {output_dir}/{attempt_id}/
    ├── summary.json       DeploymentAttempt.model_dump_json()
    └── diagnostics.log    rollback bundle + captured log tails (failures only)

Tags:
    logs, collector, artifacts, audit, deployment-log
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from insight360.core.logging import get_logger
from insight360.deploy.results import DeploymentAttempt, DiagnosticBundle

logger = get_logger(__name__)


class AttemptRecorder:
    """Writes the audit trail of one deployment attempt.

    Parameters
    ----------
    output_dir
        Base directory for per-attempt output.
    attempt_id
        Unique attempt identifier.
    log_file
        Append-only deployment log; ``None`` disables the plain-text lines.
    """

    def __init__(self, output_dir: Path, attempt_id: str, log_file: Path | None = None) -> None:
        self.run_dir = output_dir / attempt_id
        self.attempt_id = attempt_id
        self.log_file = log_file

    def _ensure_run_dir(self) -> Path:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        return self.run_dir

    # ------------------------------------------------------------------
    # Deployment log
    # ------------------------------------------------------------------

    def append_log(self, line: str) -> None:
        if self.log_file is None:
            return
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with self.log_file.open("a", encoding="utf-8") as fh:
            fh.write(line.rstrip("\n") + "\n")

    def record_start(self, attempt: DeploymentAttempt) -> None:
        self.append_log(
            f"Deployment started at {attempt.started_at} "
            f"(attempt {attempt.attempt_id}, tag {attempt.tag})"
        )

    def record_finish(self, attempt: DeploymentAttempt) -> None:
        stamp = attempt.completed_at or datetime.now(UTC).isoformat()
        self.append_log(f"Deployment completed at {stamp}: {attempt.summary}")
        if attempt.error:
            self.append_log(f"  error: {attempt.error}")

    # ------------------------------------------------------------------
    # Attempt directory
    # ------------------------------------------------------------------

    def write_summary(self, attempt: DeploymentAttempt) -> Path:
        """Write machine-readable summary JSON."""
        path = self._ensure_run_dir() / "summary.json"
        path.write_text(attempt.model_dump_json(indent=2), encoding="utf-8")
        logger.info("summary.written", path=str(path))
        return path

    def write_diagnostics(
        self,
        bundle: DiagnosticBundle | None,
        log_tails: dict[str, str] | None = None,
    ) -> Path:
        """Write the rollback bundle and per-service log tails as plain text."""
        lines: list[str] = [f"attempt: {self.attempt_id}"]
        if bundle is not None:
            lines += [
                f"failure stage: {bundle.failure_stage}",
                f"error: {bundle.error or '-'}",
                f"services stopped: {', '.join(bundle.services_stopped) or '-'}",
            ]
            if bundle.teardown_error:
                lines.append(f"teardown error: {bundle.teardown_error}")
            if bundle.statuses:
                lines.append(
                    "statuses: "
                    + ", ".join(f"{name}={status.value}" for name, status in bundle.statuses.items())
                )
        for service, tail in (log_tails or {}).items():
            lines += ["", f"===== {service} (tail) =====", tail.rstrip()]
        if bundle is not None and bundle.logs:
            lines += ["", "===== combined logs =====", bundle.logs.rstrip()]

        path = self._ensure_run_dir() / "diagnostics.log"
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.info("diagnostics.written", path=str(path))
        return path
