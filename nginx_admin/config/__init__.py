"""
Configuration Management Module

Provides safe nginx configuration file operations with:
- Timestamped backups before every change
- Atomic writes with automatic rollback on failed validation
- Reload after a successful change
- Server file create/rename/delete
"""
from .backups import Backup, BackupStore
from .errors import (
    AlreadyExistsError,
    BackupError,
    BadRequestError,
    CommandTimeoutError,
    ConfigIOError,
    ConfigurationError,
    ControlError,
    InvalidNameError,
    NotFoundError,
    ReloadError,
    ValidationError,
)
from .manager import ConfigurationManager
from .transaction import ConfigTransaction, ErrorKind, PathLocks, TransactionOutcome

__all__ = [
    'Backup',
    'BackupStore',
    'ConfigTransaction',
    'ConfigurationManager',
    'ErrorKind',
    'PathLocks',
    'TransactionOutcome',
    'AlreadyExistsError',
    'BackupError',
    'BadRequestError',
    'CommandTimeoutError',
    'ConfigIOError',
    'ConfigurationError',
    'ControlError',
    'InvalidNameError',
    'NotFoundError',
    'ReloadError',
    'ValidationError'
]
