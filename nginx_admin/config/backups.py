"""
Backup Store

Point-in-time snapshots of configuration files, kept as plain files in one
directory. Backup names have the form

    <artifact>.<YYYYMMDD_HHMMSS>[_NN].backup

so a lexical sort of names is also a chronological sort. The optional
two-digit counter separates snapshots taken within the same second.
"""
import re
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import BackupError, ConfigIOError, InvalidNameError, NotFoundError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
BACKUP_SUFFIX = ".backup"
MAX_SAME_SECOND = 99

SAFE_NAME_PATTERN = re.compile(r'^[A-Za-z0-9._-]+$')
BACKUP_NAME_PATTERN = re.compile(
    r'^(?P<artifact>.+)\.(?P<timestamp>\d{8}_\d{6})(?:_(?P<seq>\d{2}))?\.backup$'
)


def is_safe_name(name: Optional[str]) -> bool:
    """True if name is a plain file name made only of [A-Za-z0-9._-]."""
    if not name or name in ('.', '..'):
        return False
    return bool(SAFE_NAME_PATTERN.match(name))


@dataclass
class Backup:
    """Metadata for one backup file."""
    name: str
    artifact: str
    created: datetime
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "created": self.created.isoformat()
        }


class BackupStore:
    """
    Directory of immutable configuration snapshots.

    Backups are written with exclusive create, so an existing snapshot is
    never overwritten. Nothing is pruned automatically.
    """

    def __init__(
        self,
        backup_dir: Union[str, Path],
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize BackupStore.

        Args:
            backup_dir: Directory holding backup files (created if missing)
            clock: Source of the current time, used for backup names
        """
        self.backup_dir = Path(backup_dir).resolve()
        self.clock = clock
        self._last_timestamp: Dict[str, datetime] = {}

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"BackupStore initialized: {self.backup_dir}")

    @staticmethod
    def artifact_of(name: str) -> str:
        """
        Return the name of the file a backup was taken from.

        Raises:
            InvalidNameError: If name does not follow the backup name grammar
        """
        match = BACKUP_NAME_PATTERN.match(name)
        if not match:
            raise InvalidNameError(f"Invalid backup name: {name}")
        return match.group('artifact')

    def _next_timestamp(self, artifact: str) -> datetime:
        # Never go backwards for the same artifact, even if the clock does
        now = self.clock().replace(microsecond=0)
        last = self._last_timestamp.get(artifact)
        if last and now < last:
            now = last
        self._last_timestamp[artifact] = now
        return now

    def create(self, artifact: str, content: bytes) -> Backup:
        """
        Write a new snapshot of an artifact.

        Args:
            artifact: Base name of the file being backed up (e.g. nginx.conf)
            content: Bytes to store

        Returns:
            Backup describing the new file

        Raises:
            InvalidNameError: If artifact is not a safe file name
            BackupError: If the snapshot cannot be written
        """
        if not is_safe_name(artifact):
            raise InvalidNameError(f"Invalid artifact name: {artifact}")

        timestamp = self._next_timestamp(artifact)
        stamp = timestamp.strftime(TIMESTAMP_FORMAT)

        for seq in range(MAX_SAME_SECOND + 1):
            suffix = f"_{seq:02d}" if seq else ""
            name = f"{artifact}.{stamp}{suffix}{BACKUP_SUFFIX}"
            path = self.backup_dir / name
            try:
                with open(path, 'xb') as f:
                    f.write(content)
            except FileExistsError:
                continue
            except OSError as e:
                raise BackupError(f"Error writing backup {name}: {e}")

            logger.info(f"Created backup: {name}")
            return Backup(name=name, artifact=artifact, created=timestamp, size=len(content))

        raise BackupError(
            f"Too many backups of {artifact} within {stamp}; try again in a second"
        )

    def list(self, artifact: Optional[str] = None) -> List[Backup]:
        """
        List backups, most recent first.

        Args:
            artifact: Optional filter on the owning artifact name

        Returns:
            Backups sorted by name descending

        Raises:
            ConfigIOError: If the backup directory cannot be read
        """
        try:
            entries = list(self.backup_dir.iterdir())
        except OSError as e:
            raise ConfigIOError(f"Error listing backups: {e}")

        backups = []
        for entry in entries:
            if not entry.name.endswith(BACKUP_SUFFIX) or not entry.is_file():
                continue

            stat = entry.stat()
            match = BACKUP_NAME_PATTERN.match(entry.name)
            if match:
                owner = match.group('artifact')
                created = datetime.strptime(match.group('timestamp'), TIMESTAMP_FORMAT)
            else:
                # Foreign file dropped into the directory
                owner = entry.name[:-len(BACKUP_SUFFIX)]
                created = datetime.fromtimestamp(stat.st_mtime).replace(microsecond=0)

            if artifact and owner != artifact:
                continue

            backups.append(Backup(name=entry.name, artifact=owner, created=created, size=stat.st_size))

        backups.sort(key=lambda b: b.name, reverse=True)
        return backups

    def _resolve(self, name: str) -> Path:
        """
        Map a backup name to its path, rejecting anything outside the store.

        Raises:
            InvalidNameError: On separators, traversal or a wrong suffix
            NotFoundError: If the backup does not exist
        """
        if not is_safe_name(name) or not name.endswith(BACKUP_SUFFIX):
            raise InvalidNameError(f"Invalid backup name: {name}")

        path = (self.backup_dir / name).resolve()
        if path.parent != self.backup_dir:
            raise InvalidNameError(f"Invalid backup name: {name}")

        if not path.is_file():
            raise NotFoundError("backup not found", name=name)

        return path

    def get(self, name: str) -> bytes:
        """
        Read a backup's content.

        Raises:
            InvalidNameError: If name is not a plain backup file name
            NotFoundError: If the backup does not exist
            ConfigIOError: If the backup cannot be read
        """
        path = self._resolve(name)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ConfigIOError(f"Error reading backup {name}: {e}")

    def delete(self, name: str) -> None:
        """
        Remove a backup.

        Raises:
            InvalidNameError: If name is not a plain backup file name
            NotFoundError: If the backup does not exist
            ConfigIOError: If the file cannot be removed
        """
        path = self._resolve(name)
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFoundError("backup not found", name=name)
        except OSError as e:
            raise ConfigIOError(f"Error deleting backup {name}: {e}")

        logger.info(f"Deleted backup: {name}")
