"""
Test fixtures for the nginx admin service.

FakeCommand stands in for the nginx binary and pgrep, so no real nginx is
needed. Its default "nginx -t" rejects any config (or included server file)
containing the word "invalid".
"""
from pathlib import Path
from typing import Dict, List

import pytest

from nginx_admin.config import BackupStore, ConfigurationManager, PathLocks
from nginx_admin.nginx import CommandResult, NginxController
from nginx_admin.settings import Settings

from tests.fakes import FakeCommand, FixedClock

ORIGINAL_CONFIG = "events {}\nhttp {\n    include servers/*.conf;\n}\n"


@pytest.fixture
def nginx_dirs(tmp_path: Path) -> Dict[str, Path]:
    """A throwaway nginx layout: nginx.conf, servers/ and backups/."""
    config_path = tmp_path / "nginx.conf"
    config_path.write_text(ORIGINAL_CONFIG)
    servers_dir = tmp_path / "servers"
    servers_dir.mkdir()
    return {
        "config_path": config_path,
        "servers_dir": servers_dir,
        "backups_dir": tmp_path / "backups",
    }


@pytest.fixture
def fake_command(nginx_dirs: Dict[str, Path]) -> FakeCommand:
    command = FakeCommand()
    servers_dir = nginx_dirs["servers_dir"]

    def nginx_test(args: List[str]) -> CommandResult:
        files = [Path(args[args.index("-c") + 1])] + sorted(servers_dir.glob("*.conf"))
        for path in files:
            if path.exists() and "invalid" in path.read_text():
                return CommandResult(
                    exit_ok=False,
                    output=f"nginx: [emerg] unknown directive \"invalid\" in {path}\n"
                           "nginx: configuration file test failed\n",
                    exit_code=1
                )
        return CommandResult(
            exit_ok=True,
            output="nginx: configuration file test is successful\n",
            exit_code=0
        )

    command.respond("test", nginx_test)
    command.respond("reload", CommandResult(exit_ok=True, output="signal process started\n", exit_code=0))
    return command


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def settings(nginx_dirs: Dict[str, Path]) -> Settings:
    return Settings(
        config_path=nginx_dirs["config_path"],
        servers_dir=nginx_dirs["servers_dir"],
        backups_dir=nginx_dirs["backups_dir"],
        nginx_bin="/usr/sbin/nginx",
        command_timeout=5,
    )


@pytest.fixture
def controller(fake_command: FakeCommand, settings: Settings) -> NginxController:
    return NginxController(
        fake_command,
        nginx_bin=settings.nginx_bin,
        config_path=settings.config_path,
        process_name=settings.process_name
    )


@pytest.fixture
def store(settings: Settings, clock: FixedClock) -> BackupStore:
    return BackupStore(settings.backups_dir, clock=clock)


@pytest.fixture
def manager(settings: Settings, store: BackupStore, controller: NginxController) -> ConfigurationManager:
    return ConfigurationManager(
        config_path=settings.config_path,
        servers_dir=settings.servers_dir,
        backups=store,
        controller=controller,
        locks=PathLocks()
    )
