"""Test doubles for external commands and time."""
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Sequence, Union

from nginx_admin.nginx import CommandResult, ExternalCommand

Response = Union[CommandResult, Callable[[List[str]], CommandResult]]


def classify(args: Sequence[str]) -> str:
    """Name the nginx action an argument list performs."""
    if args[0] == "pgrep":
        return "status"
    if "-t" in args:
        return "test"
    if "-s" in args:
        return args[list(args).index("-s") + 1]
    return "start"


class FakeCommand(ExternalCommand):
    """Scripted ExternalCommand that records every call."""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.responses: Dict[str, Response] = {}

    def respond(self, action: str, response: Response) -> None:
        self.responses[action] = response

    def actions(self) -> List[str]:
        return [classify(call) for call in self.calls]

    async def run(self, args: Sequence[str]) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        response = self.responses.get(classify(args), CommandResult(exit_ok=True, output="", exit_code=0))
        if callable(response):
            return response(args)
        return response


class RaisingCommand(ExternalCommand):
    """ExternalCommand whose every call blows up."""

    async def run(self, args: Sequence[str]) -> CommandResult:
        raise RuntimeError("exec exploded")


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 1) -> None:
        self.now += timedelta(seconds=seconds)
