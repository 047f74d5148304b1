"""
Configuration Transaction

The safe update protocol for a single configuration file:

    Idle -> BackedUp -> Applied -> Validated -> Reloaded -> Committed
                           |            |
                           +-----+------+
                                 v
                             RolledBack

1. Snapshot the current content into the BackupStore (abort on failure)
2. Atomically write the new content
3. Validate with nginx -t; on failure restore the exact previous bytes
4. Reload nginx; on failure keep the (valid) new content
5. Commit
"""
import os
import asyncio
import logging
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Protocol, Union

from ..nginx.commands import CommandResult
from .backups import BackupStore
from .errors import (
    BackupError,
    CommandTimeoutError,
    ConfigIOError,
    ConfigurationError,
    ReloadError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class Validator(Protocol):
    async def validate(self, config_path: Optional[Union[str, Path]] = None) -> CommandResult: ...


class Reloader(Protocol):
    async def reload(self) -> CommandResult: ...


class ErrorKind(str, Enum):
    BACKUP_FAILED = "BackupFailed"
    WRITE_FAILED = "WriteFailed"
    VALIDATION_FAILED = "ValidationFailed"
    RELOAD_FAILED = "ReloadFailed"
    TIMEOUT = "Timeout"


@dataclass
class TransactionOutcome:
    """What happened during one apply() call."""
    artifact: str
    backup: Optional[str] = None
    backup_created: bool = False
    applied: bool = False
    validated: bool = False
    rolled_back: bool = False
    reload_attempted: bool = False
    reloaded: bool = False
    validation_output: str = ""
    reload_output: str = ""
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error_kind is None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["error_kind"] = self.error_kind.value if self.error_kind else None
        data["success"] = self.success
        return data

    def raise_for_error(self) -> None:
        """
        Raise the ConfigurationError matching error_kind, if any.

        The exception carries the backup name and the relevant command
        output so it can be reported as is.
        """
        if self.error_kind is None:
            return

        if self.error_kind == ErrorKind.VALIDATION_FAILED:
            raise ValidationError(self.error, output=self.validation_output, backup=self.backup)
        if self.error_kind == ErrorKind.RELOAD_FAILED:
            raise ReloadError(self.error, output=self.reload_output, backup=self.backup)
        if self.error_kind == ErrorKind.TIMEOUT:
            output = self.reload_output if self.validated else self.validation_output
            raise CommandTimeoutError(
                self.error,
                output=output,
                backup=self.backup,
                rolledBack=self.rolled_back
            )
        if self.error_kind == ErrorKind.BACKUP_FAILED:
            raise BackupError(self.error, backup=None)
        raise ConfigIOError(self.error, backup=self.backup)


def write_atomic(path: Path, content: bytes) -> None:
    """
    Replace a file's content in one step.

    The data goes to a temp file in the same directory which is then moved
    over the target, so readers never see a partial file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(content)
        if path.exists():
            os.chmod(temp_name, path.stat().st_mode & 0o777)
        else:
            os.chmod(temp_name, 0o644)
        os.replace(temp_name, path)
    except BaseException:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


class PathLocks:
    """Process-wide map from resolved file path to an asyncio.Lock."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, path: Union[str, Path]) -> asyncio.Lock:
        key = str(Path(path).resolve())
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def hold(self, *paths: Union[str, Path]) -> AsyncIterator[None]:
        """Acquire the locks for all paths, in sorted order to avoid deadlock."""
        keys = sorted({str(Path(p).resolve()) for p in paths})
        acquired = []
        try:
            for key in keys:
                lock = self.get(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class ConfigTransaction:
    """
    Backup, apply, validate, rollback and reload for one file at a time.

    Protocol failures are returned as data in the TransactionOutcome rather
    than raised, so the caller can report the backup name and diagnostics.
    """

    def __init__(
        self,
        backups: BackupStore,
        validator: Validator,
        reloader: Reloader,
        locks: Optional[PathLocks] = None
    ):
        """
        Initialize ConfigTransaction.

        Args:
            backups: Store that receives the pre-apply snapshot
            validator: Object with an async validate(path) method
            reloader: Object with an async reload() method
            locks: Shared per-path locks (a private set is created if omitted)
        """
        self.backups = backups
        self.validator = validator
        self.reloader = reloader
        self.locks = locks or PathLocks()

    async def apply(
        self,
        artifact_path: Union[str, Path],
        new_content: Union[str, bytes],
        artifact_name: Optional[str] = None,
        validate_path: Optional[Union[str, Path]] = None,
        reload: bool = True
    ) -> TransactionOutcome:
        """
        Safely replace a configuration file.

        Args:
            artifact_path: File being updated
            new_content: Replacement content (str is encoded as UTF-8)
            artifact_name: Name used for backups (defaults to the file name)
            validate_path: File passed to the validator (defaults to
                artifact_path; server files validate the primary config)
            reload: Whether to reload nginx after a successful validation

        Returns:
            TransactionOutcome describing every step taken
        """
        path = Path(artifact_path)
        name = artifact_name or path.name
        data = new_content.encode('utf-8') if isinstance(new_content, str) else new_content
        outcome = TransactionOutcome(artifact=name)

        async with self.locks.hold(path):
            # Step 1: snapshot the current content
            try:
                original: Optional[bytes] = path.read_bytes()
            except FileNotFoundError:
                logger.info(f"No prior content for {path}, treating as first write")
                original = None
            except OSError as e:
                # Without the current bytes there is nothing to roll back to
                logger.error(f"Cannot read {path} for a backup, not applying changes: {e}")
                outcome.error_kind = ErrorKind.BACKUP_FAILED
                outcome.error = f"Cannot back up {name}: {e}"
                return outcome

            try:
                backup = self.backups.create(name, original or b"")
            except ConfigurationError as e:
                logger.error(f"Backup of {name} failed, not applying changes: {e}")
                outcome.error_kind = ErrorKind.BACKUP_FAILED
                outcome.error = str(e)
                return outcome

            outcome.backup = backup.name
            outcome.backup_created = True

            # Step 2: apply
            try:
                write_atomic(path, data)
            except OSError as e:
                logger.error(f"Writing {path} failed: {e}")
                outcome.error_kind = ErrorKind.WRITE_FAILED
                outcome.error = f"Error writing {name}: {e}"
                return outcome

            outcome.applied = True
            logger.info(f"Applied new content to {path}")

            # Step 3: validate
            try:
                result = await self.validator.validate(validate_path or path)
            except Exception as e:
                logger.exception(f"Validator raised while checking {name}")
                result = CommandResult(exit_ok=False, output=str(e))

            outcome.validation_output = result.output
            if not result.exit_ok:
                outcome.validated = False
                outcome.error_kind = ErrorKind.TIMEOUT if result.timed_out else ErrorKind.VALIDATION_FAILED
                outcome.error = "config test timed out" if result.timed_out else "config test failed"
                self._rollback(path, original, outcome)
                return outcome

            outcome.validated = True

            # Step 4: reload
            if reload:
                outcome.reload_attempted = True
                try:
                    reloaded = await self.reloader.reload()
                except Exception as e:
                    logger.exception("Reloader raised")
                    reloaded = CommandResult(exit_ok=False, output=str(e))

                outcome.reload_output = reloaded.output
                if not reloaded.exit_ok:
                    logger.warning(f"{name} saved but nginx reload failed; keeping new content")
                    outcome.error_kind = ErrorKind.TIMEOUT if reloaded.timed_out else ErrorKind.RELOAD_FAILED
                    outcome.error = (
                        "config saved but reload timed out" if reloaded.timed_out
                        else "config saved but reload failed"
                    )
                    return outcome

                outcome.reloaded = True

            # Step 5: commit
            logger.info(f"Committed {name} (backup {outcome.backup})")
            return outcome

    def _rollback(self, path: Path, original: Optional[bytes], outcome: TransactionOutcome) -> None:
        """Put back exactly what was there before the transaction started."""
        try:
            if original is None:
                path.unlink(missing_ok=True)
            else:
                write_atomic(path, original)
        except OSError as e:
            logger.error(f"Rollback of {path} failed: {e}; restore {outcome.backup} manually")
            outcome.error = f"config test failed and rollback failed: {e}"
            return

        outcome.applied = False
        outcome.rolled_back = True
        logger.info(f"Validation failed, rolled back {path}")
