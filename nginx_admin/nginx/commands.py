"""
External command execution.

Every interaction with the nginx binary (and pgrep) goes through an
ExternalCommand, so tests can substitute a scripted fake.
"""
import asyncio
import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command: exit status plus merged output."""
    exit_ok: bool
    output: str = ""
    exit_code: Optional[int] = None
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExternalCommand(ABC):
    """Runs a program and reports its exit status and output."""

    @abstractmethod
    async def run(self, args: Sequence[str]) -> CommandResult:
        """
        Run a command to completion.

        A non-zero exit is reported through CommandResult.exit_ok, never
        raised.
        """


class SubprocessCommand(ExternalCommand):
    """ExternalCommand backed by asyncio subprocesses with a timeout."""

    def __init__(self, timeout: Optional[float] = 30.0):
        """
        Initialize the runner.

        Args:
            timeout: Seconds to wait for a command before killing it
                (None waits forever)
        """
        self.timeout = timeout

    async def run(self, args: Sequence[str]) -> CommandResult:
        logger.debug(f"Running command: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            # Missing binary or no permission to execute it
            logger.error(f"Could not start {args[0]}: {e}")
            return CommandResult(exit_ok=False, output=str(e), exit_code=127)

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error(f"Command timed out after {self.timeout}s: {' '.join(args)}")
            return CommandResult(
                exit_ok=False,
                output=f"{args[0]} timed out after {self.timeout} seconds",
                exit_code=process.returncode,
                timed_out=True
            )

        output = stdout.decode('utf-8', errors='replace') if stdout else ""
        return CommandResult(
            exit_ok=process.returncode == 0,
            output=output,
            exit_code=process.returncode
        )
