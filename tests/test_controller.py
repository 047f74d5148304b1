import sys
from pathlib import Path

import pytest

from nginx_admin.nginx import CommandResult, NginxController, SubprocessCommand

from tests.fakes import FakeCommand


@pytest.mark.asyncio
async def test_validate_passes_config_path(controller: NginxController, fake_command: FakeCommand, settings):
    result = await controller.validate()

    assert result.exit_ok
    assert fake_command.calls == [["/usr/sbin/nginx", "-t", "-c", str(settings.config_path)]]


@pytest.mark.asyncio
async def test_validate_failure_is_data(controller: NginxController, settings):
    settings.config_path.write_text("invalid;\n")

    result = await controller.validate(settings.config_path)

    assert not result.exit_ok
    assert "configuration file test failed" in result.output


@pytest.mark.asyncio
async def test_reload_start_stop_arguments(controller: NginxController, fake_command: FakeCommand, settings):
    await controller.reload()
    await controller.stop()
    await controller.start()

    assert fake_command.calls == [
        ["/usr/sbin/nginx", "-s", "reload"],
        ["/usr/sbin/nginx", "-s", "stop"],
        ["/usr/sbin/nginx", "-c", str(settings.config_path)],
    ]


@pytest.mark.asyncio
async def test_restart_starts_even_if_stop_fails(controller: NginxController, fake_command: FakeCommand):
    fake_command.respond("stop", CommandResult(exit_ok=False, output="nginx.pid not found", exit_code=1))
    fake_command.respond("start", CommandResult(exit_ok=True, output="", exit_code=0))

    result = await controller.restart()

    assert fake_command.actions() == ["stop", "start"]
    assert result.exit_ok
    assert "nginx.pid not found" in result.output


@pytest.mark.asyncio
async def test_restart_reports_start_failure(controller: NginxController, fake_command: FakeCommand):
    fake_command.respond("start", CommandResult(exit_ok=False, output="bind() failed", exit_code=1))

    result = await controller.restart()

    assert not result.exit_ok
    assert result.output == "bind() failed"


@pytest.mark.asyncio
async def test_status_running(controller: NginxController, fake_command: FakeCommand):
    fake_command.respond("status", CommandResult(exit_ok=True, output="101\n102\n", exit_code=0))

    status = await controller.status()

    assert status == {"running": True, "pids": ["101", "102"]}
    assert fake_command.calls == [["pgrep", "-x", "nginx"]]


@pytest.mark.asyncio
async def test_status_not_running(controller: NginxController, fake_command: FakeCommand):
    fake_command.respond("status", CommandResult(exit_ok=False, output="", exit_code=1))
    assert await controller.status() == {"running": False, "pids": []}


@pytest.mark.asyncio
async def test_subprocess_merges_stdout_and_stderr():
    command = SubprocessCommand(timeout=10)
    script = "import sys; print('out'); sys.stdout.flush(); print('err', file=sys.stderr); sys.exit(3)"

    result = await command.run([sys.executable, "-c", script])

    assert not result.exit_ok
    assert result.exit_code == 3
    assert "out" in result.output and "err" in result.output
    assert not result.timed_out


@pytest.mark.asyncio
async def test_subprocess_success():
    result = await SubprocessCommand(timeout=10).run([sys.executable, "-c", "print('ok')"])
    assert result.exit_ok
    assert result.output.strip() == "ok"


@pytest.mark.asyncio
async def test_subprocess_timeout():
    command = SubprocessCommand(timeout=0.2)

    result = await command.run([sys.executable, "-c", "import time; time.sleep(5)"])

    assert result.timed_out
    assert not result.exit_ok
    assert "timed out" in result.output


@pytest.mark.asyncio
async def test_subprocess_missing_binary(tmp_path: Path):
    result = await SubprocessCommand().run([str(tmp_path / "no-such-nginx"), "-t"])

    assert not result.exit_ok
    assert result.exit_code == 127
