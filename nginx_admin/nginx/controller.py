"""
nginx Process Controller

Wraps the nginx binary for:
- Configuration validation (nginx -t)
- Signals (reload, stop)
- Starting the master process
- Process status via pgrep
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .commands import CommandResult, ExternalCommand

logger = logging.getLogger(__name__)


class NginxController:
    """
    Validator, reloader and process controller for one nginx installation.

    None of the methods raise on a non-zero exit: failures come back as
    CommandResult objects with exit_ok set to False.
    """

    def __init__(
        self,
        command: ExternalCommand,
        nginx_bin: str = "nginx",
        config_path: Optional[Union[str, Path]] = None,
        process_name: str = "nginx"
    ):
        """
        Initialize the controller.

        Args:
            command: Runner used for every external program
            nginx_bin: Path or name of the nginx binary
            config_path: Primary configuration file validated by default
            process_name: Process name searched for by status()
        """
        self.command = command
        self.nginx_bin = nginx_bin
        self.config_path = Path(config_path) if config_path else None
        self.process_name = process_name

    async def validate(self, config_path: Optional[Union[str, Path]] = None) -> CommandResult:
        """
        Run nginx's syntax and semantic check.

        Args:
            config_path: File to check; defaults to the primary config, which
                also pulls in included server files

        Returns:
            CommandResult with the merged diagnostic text
        """
        target = config_path or self.config_path
        args = [self.nginx_bin, "-t"]
        if target:
            args += ["-c", str(target)]

        result = await self.command.run(args)
        if result.exit_ok:
            logger.info(f"nginx configuration test passed for {target or 'default config'}")
        else:
            logger.warning(f"nginx configuration test failed for {target or 'default config'}")
        return result

    async def reload(self) -> CommandResult:
        """Ask the running master process to re-read its configuration."""
        result = await self.command.run([self.nginx_bin, "-s", "reload"])
        self._log_result("reload", result)
        return result

    async def start(self) -> CommandResult:
        args = [self.nginx_bin]
        if self.config_path:
            args += ["-c", str(self.config_path)]
        result = await self.command.run(args)
        self._log_result("start", result)
        return result

    async def stop(self) -> CommandResult:
        result = await self.command.run([self.nginx_bin, "-s", "stop"])
        self._log_result("stop", result)
        return result

    async def restart(self) -> CommandResult:
        """
        Stop then start nginx.

        Start is attempted even if stop failed (nginx may simply not have
        been running). The returned result is the start result, with the
        output of both steps.
        """
        stopped = await self.stop()
        if not stopped.exit_ok:
            logger.warning("Stop failed during restart, starting anyway")

        started = await self.start()
        output = "\n".join(part for part in (stopped.output, started.output) if part)
        return CommandResult(
            exit_ok=started.exit_ok,
            output=output,
            exit_code=started.exit_code,
            timed_out=started.timed_out
        )

    async def status(self) -> Dict[str, Any]:
        """
        Report whether nginx is running.

        Returns:
            Dict with:
                - running: bool (pgrep found at least one process)
                - pids: List[str]
        """
        result = await self.command.run(["pgrep", "-x", self.process_name])
        pids: List[str] = result.output.split() if result.exit_ok else []
        return {
            "running": bool(pids),
            "pids": pids
        }

    def _log_result(self, action: str, result: CommandResult) -> None:
        if result.exit_ok:
            logger.info(f"nginx {action} succeeded")
        else:
            logger.error(f"nginx {action} failed: {result.output.strip()}")
