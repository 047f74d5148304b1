"""
Configuration Manager

Handles all nginx configuration file operations with:
- Backups before every change
- Atomic writes
- nginx -t validation with rollback on failure
- Reload after a successful change
- Path traversal protection for server files and backups
"""
import os
import re
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..nginx.commands import CommandResult
from ..nginx.controller import NginxController
from .backups import BackupStore, is_safe_name
from .errors import (
    AlreadyExistsError,
    BackupError,
    ConfigIOError,
    ConfigurationError,
    InvalidNameError,
    NotFoundError,
)
from .templates import render_default_server
from .transaction import ConfigTransaction, PathLocks, TransactionOutcome, write_atomic

logger = logging.getLogger(__name__)

SERVER_SUFFIX = ".conf"
SERVER_NAME_PATTERN = re.compile(r'^[A-Za-z0-9._-]+\.conf$')


def normalize_server_name(name: Optional[str]) -> str:
    """
    Turn a user supplied server name into a safe file name.

    Appends ".conf" when missing.

    Raises:
        InvalidNameError: If the name is empty, "." / "..", or contains
            characters outside [A-Za-z0-9._-]
    """
    if not name:
        raise InvalidNameError("name is required")
    if name in ('.', '..'):
        raise InvalidNameError("invalid file name")

    file_name = name if name.endswith(SERVER_SUFFIX) else f"{name}{SERVER_SUFFIX}"
    if not is_safe_name(file_name) or not SERVER_NAME_PATTERN.match(file_name):
        raise InvalidNameError("invalid file name")
    return file_name


class ConfigurationManager:
    """
    Manages the primary nginx.conf and the per-site server files.

    Writes that affect the running server go through ConfigTransaction.
    Deleting a server file takes a best-effort backup; saving and restoring
    refuse to continue without one.
    """

    def __init__(
        self,
        config_path: Union[str, Path],
        servers_dir: Union[str, Path],
        backups: BackupStore,
        controller: NginxController,
        locks: Optional[PathLocks] = None
    ):
        """
        Initialize ConfigurationManager.

        Args:
            config_path: Primary nginx configuration file
            servers_dir: Directory of included *.conf server files
            backups: BackupStore for snapshots
            controller: NginxController used to validate and reload
            locks: Per-path locks shared with the transaction
        """
        self.config_path = Path(config_path)
        self.servers_dir = Path(servers_dir)
        self.backups = backups
        self.controller = controller
        self.locks = locks or PathLocks()
        self.transaction = ConfigTransaction(backups, controller, controller, self.locks)

        logger.info(f"ConfigurationManager initialized:")
        logger.info(f"  Config file: {self.config_path}")
        logger.info(f"  Servers dir: {self.servers_dir}")
        logger.info(f"  Backup dir: {self.backups.backup_dir}")

    @staticmethod
    def _read(path: Path, label: str) -> str:
        try:
            return path.read_bytes().decode('utf-8', errors='replace')
        except FileNotFoundError:
            raise NotFoundError(f"{label} not found")
        except OSError as e:
            raise ConfigIOError(f"Error reading {label}: {e}")

    def _server_path(self, name: Optional[str]) -> Path:
        """
        Resolve a server name to its file in the servers directory.

        Backups are keyed by file name, so a server file may not share its
        name with the primary config.
        """
        file_name = normalize_server_name(name)
        if file_name == self.config_path.name:
            raise InvalidNameError(f"{file_name} is reserved for the primary config", name=file_name)
        return self.servers_dir / file_name

    # Primary configuration

    async def read_config(self) -> Dict[str, str]:
        """
        Read the primary configuration file.

        Returns:
            Dict with content and path

        Raises:
            NotFoundError: If the file does not exist
            ConfigIOError: If it cannot be read
        """
        content = self._read(self.config_path, "config file")
        return {"content": content, "path": str(self.config_path)}

    async def save_config(self, content: str) -> TransactionOutcome:
        """Back up, write, validate and reload the primary configuration."""
        logger.info(f"Saving primary config: {self.config_path}")
        return await self.transaction.apply(
            self.config_path,
            content,
            artifact_name=self.config_path.name,
            validate_path=self.config_path
        )

    async def test_config(self) -> CommandResult:
        """Validate the live primary configuration without changing anything."""
        return await self.controller.validate(self.config_path)

    # Server files

    def list_servers(self) -> List[Dict[str, Any]]:
        """
        List server files.

        Returns:
            List of dictionaries with keys:
                - name: File name
                - path: Full path
                - size: Size in bytes
                - updated: Modification time (unix seconds)

        Raises:
            ConfigIOError: If the servers directory cannot be read
        """
        try:
            entries = sorted(self.servers_dir.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise ConfigIOError(f"Error listing servers: {e}")

        servers = []
        for entry in entries:
            if not entry.name.endswith(SERVER_SUFFIX) or not entry.is_file():
                continue
            stat = entry.stat()
            servers.append({
                "name": entry.name,
                "path": str(entry),
                "size": stat.st_size,
                "updated": int(stat.st_mtime)
            })
        return servers

    async def read_server(self, name: str) -> Dict[str, str]:
        path = self._server_path(name)
        content = self._read(path, f"server file {path.name}")
        return {"name": path.name, "content": content, "path": str(path)}

    async def save_server(self, name: str, content: str) -> TransactionOutcome:
        """
        Back up, write and reload a server file.

        Validation runs against the primary config, which includes the
        servers directory.
        """
        path = self._server_path(name)
        logger.info(f"Saving server file: {path}")
        return await self.transaction.apply(
            path,
            content,
            artifact_name=path.name,
            validate_path=self.config_path
        )

    async def create_server(self, name: str, content: Optional[str] = None) -> Dict[str, str]:
        """
        Create a new server file.

        Args:
            name: File name; ".conf" is appended if missing
            content: Initial content; a default server block when empty

        Returns:
            Dict with name and path

        Raises:
            InvalidNameError: If the name is empty or unsafe
            AlreadyExistsError: If the file exists (it is left untouched)
            ConfigIOError: If the file cannot be written
        """
        path = self._server_path(name)
        body = content or render_default_server()

        async with self.locks.hold(path):
            try:
                with open(path, 'x', encoding='utf-8') as f:
                    f.write(body)
            except FileExistsError:
                raise AlreadyExistsError("file already exists", name=path.name)
            except OSError as e:
                raise ConfigIOError(f"Error creating {path.name}: {e}")

        logger.info(f"Created server file: {path}")
        return {"name": path.name, "path": str(path)}

    async def rename_server(self, old_name: str, new_name: str) -> Dict[str, str]:
        """
        Rename a server file.

        Raises:
            InvalidNameError: If either name is unsafe
            NotFoundError: If the old file does not exist
            AlreadyExistsError: If the new name is taken (nothing changes)
            ConfigIOError: If the rename fails
        """
        if not new_name:
            raise InvalidNameError("newName is required")

        old_path = self._server_path(old_name)
        new_path = self._server_path(new_name)

        async with self.locks.hold(old_path, new_path):
            if not old_path.is_file():
                raise NotFoundError("file not found", name=old_path.name)
            if new_path.exists():
                raise AlreadyExistsError("target file already exists", name=new_path.name)

            try:
                os.rename(old_path, new_path)
            except OSError as e:
                raise ConfigIOError(f"Error renaming {old_path.name}: {e}")

        logger.info(f"Renamed server file {old_path.name} -> {new_path.name}")
        return {"old_name": old_path.name, "new_name": new_path.name}

    async def delete_server(self, name: str) -> Optional[str]:
        """
        Delete a server file after a best-effort backup.

        A failed backup is logged and does not block the deletion.

        Returns:
            Name of the backup, or None if it could not be taken

        Raises:
            NotFoundError: If the file does not exist
            ConfigIOError: If the file cannot be removed
        """
        path = self._server_path(name)

        async with self.locks.hold(path):
            if not path.is_file():
                raise NotFoundError("file not found", name=path.name)

            backup_name = None
            try:
                backup_name = self.backups.create(path.name, path.read_bytes()).name
            except (OSError, ConfigurationError) as e:
                logger.warning(f"Could not back up {path.name} before deleting it: {e}")

            try:
                path.unlink()
            except FileNotFoundError:
                raise NotFoundError("file not found", name=path.name)
            except OSError as e:
                raise ConfigIOError(f"Error deleting {path.name}: {e}")

        logger.info(f"Deleted server file: {path}")
        return backup_name

    # Backups

    def list_backups(self) -> List[Dict[str, Any]]:
        return [backup.to_dict() for backup in self.backups.list()]

    async def create_backup(self) -> str:
        """
        Snapshot the primary configuration on demand.

        Returns:
            Name of the new backup
        """
        async with self.locks.hold(self.config_path):
            try:
                content = self.config_path.read_bytes()
            except FileNotFoundError:
                raise NotFoundError("config file not found")
            except OSError as e:
                raise ConfigIOError(f"Error reading config file: {e}")
            return self.backups.create(self.config_path.name, content).name

    async def delete_backup(self, name: str) -> None:
        self.backups.delete(name)

    def _restore_target(self, backup_name: str) -> Path:
        artifact = BackupStore.artifact_of(backup_name)
        if artifact == self.config_path.name:
            return self.config_path
        if SERVER_NAME_PATTERN.match(artifact) and is_safe_name(artifact):
            return self.servers_dir / artifact
        raise InvalidNameError(f"Cannot determine which file {backup_name} belongs to")

    async def restore_backup(self, name: str) -> Dict[str, Any]:
        """
        Restore a file from a backup.

        The backup is written back byte for byte, after a safety backup of the
        current content. nginx -t is run afterwards and its result reported,
        but a failed check does not undo the restore and nginx is not
        reloaded.

        Args:
            name: Backup file name

        Returns:
            Dict with:
                - artifact: Restored file name
                - path: Restored file path
                - backup: Safety backup of the replaced content (or None)
                - valid: bool (result of nginx -t)
                - output: nginx -t output

        Raises:
            InvalidNameError: If the name is unsafe or has no known owner
            NotFoundError: If the backup does not exist
            BackupError: If the safety backup cannot be written
            ConfigIOError: If the restore write fails
        """
        content = self.backups.get(name)
        target = self._restore_target(name)

        async with self.locks.hold(target):
            safety_backup = None
            if target.exists():
                try:
                    current = target.read_bytes()
                except OSError as e:
                    raise BackupError(f"Cannot read {target.name} for a safety backup: {e}")
                safety_backup = self.backups.create(target.name, current).name

            try:
                write_atomic(target, content)
            except OSError as e:
                raise ConfigIOError(f"Error restoring {target.name}: {e}")

            logger.info(f"Restored {target.name} from {name}")
            result = await self.controller.validate(self.config_path)

        if not result.exit_ok:
            logger.warning(f"Restored {target.name} does not pass nginx -t")

        return {
            "artifact": target.name,
            "path": str(target),
            "backup": safety_backup,
            "valid": result.exit_ok,
            "output": result.output
        }
