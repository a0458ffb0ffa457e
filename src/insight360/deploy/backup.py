"""Best-effort database backup before a redeploy.

The backup agent snapshots MongoDB with ``mongodump`` inside the running
database container, copies the dump out with ``docker cp`` and packs it into
a timestamped ``.tar.gz`` under the backup directory.

A backup never blocks a deployment:

- database container not running (first deployment) -> ``NoOp``
- dump contains zero bytes (empty database) -> ``NoOp`` plus a warning
- any runtime or filesystem error -> ``BackupWarning`` logged, ``NoOp``

After a successful deployment the driver calls ``prune()`` which keeps the
five most recent archives.

Tags:
    backup, mongodb, mongodump, retention, best-effort
"""

from __future__ import annotations

import shutil
import tarfile
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from insight360.core.errors import BackupWarning, DeployError
from insight360.core.logging import get_logger
from insight360.deploy.config import DeploySettings
from insight360.deploy.container import ContainerRuntime
from insight360.deploy.results import BackupRecord
from insight360.deploy.services import MONGODB, ServiceSpec

logger = get_logger(__name__)

BACKUP_PREFIX = "mongodb_backup_"
ARCHIVE_SUFFIX = ".tar.gz"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
SCRATCH_DIR = "/tmp/backup"
DUMP_URI_VAR = "INSIGHT360_DUMP_URI"


@dataclass(frozen=True)
class NoOp:
    """Backup was skipped; ``warning`` is set when the skip was caused by a failure."""

    reason: str
    warning: BackupWarning | None = None


def parse_backup_name(name: str) -> datetime | None:
    """Extract the timestamp from ``mongodb_backup_<ts>[.tar.gz]``."""
    if not name.startswith(BACKUP_PREFIX):
        return None
    stamp = name[len(BACKUP_PREFIX):]
    if stamp.endswith(ARCHIVE_SUFFIX):
        stamp = stamp[: -len(ARCHIVE_SUFFIX)]
    try:
        return datetime.strptime(stamp, TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None


def _path_size(path: Path) -> int:
    if path.is_dir():
        return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())
    return path.stat().st_size


def list_backups(backup_dir: Path) -> list[BackupRecord]:
    """Backups on disk, newest first. Legacy uncompressed dump directories are included."""
    if not backup_dir.is_dir():
        return []
    records = []
    for path in backup_dir.glob(f"{BACKUP_PREFIX}*"):
        timestamp = parse_backup_name(path.name)
        if timestamp is None:
            continue
        records.append(
            BackupRecord(
                timestamp=timestamp,
                source=MONGODB.name,
                path=path,
                size_bytes=_path_size(path),
            )
        )
    records.sort(key=lambda r: r.timestamp, reverse=True)
    return records


class BackupAgent:
    """Creates and prunes database backups.

    Parameters
    ----------
    runtime
        Container runtime used to inspect, exec into and copy from the
        database container.
    settings
        Deployment settings (credentials, backup directory, retention).
    now
        Clock, injectable for tests.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        settings: DeploySettings,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.runtime = runtime
        self.settings = settings
        self.backup_dir = settings.backup_dir
        self._now = now or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup(self, target: ServiceSpec = MONGODB) -> BackupRecord | NoOp:
        """Snapshot the persistent store. Never raises."""
        logger.info("backup.checking", container=target.container_name)
        try:
            if not self.runtime.is_container_running(target.container_name):
                logger.info(
                    "backup.skipped",
                    reason="no running database container (first deployment)",
                )
                return NoOp("database container not running")
            return self._dump_and_archive(target)
        except (DeployError, OSError, tarfile.TarError) as exc:
            warning = exc if isinstance(exc, BackupWarning) else BackupWarning(
                f"Backup failed: {exc}", cause=exc
            )
            logger.warning("backup.failed", continuing=True, **warning.to_dict())
            return NoOp(warning.message, warning=warning)

    def _dump_and_archive(self, target: ServiceSpec) -> BackupRecord | NoOp:
        container = target.container_name
        db = self.settings.database_name

        dump = self.runtime.exec(
            container,
            f"rm -rf {SCRATCH_DIR} && mkdir -p {SCRATCH_DIR} && "
            f'mongodump --quiet --uri="${DUMP_URI_VAR}" --out={SCRATCH_DIR}',
            env={DUMP_URI_VAR: self.settings.mongo_uri()},
        )
        if dump.returncode != 0:
            password = self.settings.mongo_password.get_secret_value()
            stderr = dump.stderr.strip()[-500:]
            if password:
                stderr = stderr.replace(password, "***")
            raise BackupWarning(
                f"mongodump exited with {dump.returncode}",
                context={"stderr": stderr},
            )

        size = self._dump_size(container, db)
        if size == 0:
            logger.warning("backup.empty_database", database=db, continuing=True)
            return NoOp("database dump is empty")

        timestamp = self._now().replace(microsecond=0)
        name = f"{BACKUP_PREFIX}{timestamp.strftime(TIMESTAMP_FORMAT)}"
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        archive = self.backup_dir / f"{name}{ARCHIVE_SUFFIX}"

        try:
            with tempfile.TemporaryDirectory(prefix="insight360-backup-") as tmp:
                staging = Path(tmp) / name
                self.runtime.copy_from(container, SCRATCH_DIR, staging)
                with tarfile.open(archive, "w:gz") as tar:
                    tar.add(staging, arcname=name)
        except BaseException:
            archive.unlink(missing_ok=True)
            raise
        finally:
            self.runtime.exec(container, f"rm -rf {SCRATCH_DIR}")

        record = BackupRecord(
            timestamp=timestamp,
            source=target.name,
            path=archive,
            size_bytes=archive.stat().st_size,
        )
        logger.info(
            "backup.created",
            path=str(archive),
            dump_bytes=size,
            archive_bytes=record.size_bytes,
        )
        return record

    def _dump_size(self, container: str, database: str) -> int:
        """Bytes of dumped data for the database (0 if nothing was dumped)."""
        result = self.runtime.exec(
            container,
            f"du -sb {SCRATCH_DIR}/{database} 2>/dev/null | cut -f1",
        )
        try:
            return int(result.stdout.strip() or 0)
        except ValueError:
            return 0

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def list_backups(self) -> list[BackupRecord]:
        return list_backups(self.backup_dir)

    def prune(self, keep: int | None = None) -> list[BackupRecord]:
        """Remove all but the ``keep`` most recent backups; returns the removed ones."""
        keep = self.settings.backup_retention if keep is None else keep
        removed = self.list_backups()[keep:]
        for record in removed:
            if record.path.is_dir():
                shutil.rmtree(record.path)
            else:
                record.path.unlink(missing_ok=True)
        if removed:
            logger.info("backup.pruned", removed=len(removed), kept=keep)
        return removed
