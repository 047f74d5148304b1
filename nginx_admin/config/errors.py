"""
Configuration errors.

Each exception carries the HTTP status it maps to, plus optional extra
fields that are merged into the JSON error body.
"""
from typing import Any, Dict


class ConfigurationError(Exception):
    """Base exception for configuration errors."""
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class ConfigIOError(ConfigurationError):
    """Raised when a file cannot be read, written, renamed or removed."""
    status_code = 500


class BackupError(ConfigIOError):
    """Raised when a backup snapshot cannot be written."""
    pass


class NotFoundError(ConfigurationError):
    """Raised when a config file, server file or backup does not exist."""
    status_code = 404


class InvalidNameError(ConfigurationError):
    """Raised when a name fails the safe file name rules."""
    status_code = 400


class AlreadyExistsError(ConfigurationError):
    """Raised when a create or rename target already exists."""
    status_code = 409


class ValidationError(ConfigurationError):
    """Raised when nginx rejects a configuration."""
    status_code = 400


class ControlError(ConfigurationError):
    """Raised when nginx could not be started, stopped or restarted."""
    status_code = 500


class ReloadError(ControlError):
    """Raised when nginx could not be reloaded."""
    pass


class CommandTimeoutError(ConfigurationError):
    """Raised when an external command exceeds its time limit."""
    status_code = 504


class BadRequestError(ConfigurationError):
    """Raised for malformed request input."""
    status_code = 400
