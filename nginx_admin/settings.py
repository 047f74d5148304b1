"""
Application Settings

Immutable startup configuration for the nginx admin service. Values come
from an optional YAML file (NGINX_ADMIN_SETTINGS) and are overridden by
environment variables. The resulting Settings object is built once and
passed to every component constructor.
"""
import os
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from ruamel.yaml import YAML

logger = logging.getLogger(__name__)

# Environment variable -> Settings field
ENV_FIELDS = {
    'NGINX_CONFIG_PATH': 'config_path',
    'NGINX_SERVERS_DIR': 'servers_dir',
    'BACKUP_DIR': 'backups_dir',
    'NGINX_BIN': 'nginx_bin',
    'NGINX_PROCESS_NAME': 'process_name',
    'COMMAND_TIMEOUT': 'command_timeout',
    'HOST': 'host',
    'PORT': 'port',
    'LOG_LEVEL': 'log_level',
}

SETTINGS_FILE_ENV = 'NGINX_ADMIN_SETTINGS'


class Settings(BaseModel):
    """Paths, binaries and limits used by the service."""

    model_config = ConfigDict(frozen=True, extra='forbid')

    config_path: Path = Path('/etc/nginx/nginx.conf')
    servers_dir: Path = Path('/etc/nginx/servers')
    backups_dir: Path = Path('./backups')
    nginx_bin: str = 'nginx'
    process_name: str = 'nginx'
    command_timeout: float = Field(default=30.0, gt=0)
    host: str = '0.0.0.0'
    port: int = Field(default=49856, ge=1, le=65535)
    log_level: str = 'info'

    @classmethod
    def load(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        settings_file: Optional[str] = None
    ) -> 'Settings':
        """
        Build settings from a YAML file and the environment.

        Args:
            environ: Environment mapping (defaults to os.environ)
            settings_file: Optional YAML file path; falls back to the
                NGINX_ADMIN_SETTINGS environment variable

        Returns:
            Frozen Settings instance

        Raises:
            pydantic.ValidationError: If a value has the wrong type or range
        """
        environ = os.environ if environ is None else environ
        settings_file = settings_file or environ.get(SETTINGS_FILE_ENV)

        values: Dict[str, Any] = {}
        if settings_file:
            values.update(cls._read_file(settings_file))

        for env_name, field in ENV_FIELDS.items():
            if environ.get(env_name):
                values[field] = environ[env_name]

        return cls(**values)

    @staticmethod
    def _read_file(settings_file: str) -> Dict[str, Any]:
        """Read a flat mapping of settings from a YAML file."""
        yaml = YAML(typ='safe')
        with open(settings_file, 'r', encoding='utf-8') as f:
            data = yaml.load(f)

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {settings_file} must contain a mapping")

        logger.info(f"Loaded settings from {settings_file}")
        return dict(data)
