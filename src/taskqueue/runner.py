from __future__ import annotations

import subprocess
from typing import Sequence

from .models import CommandOutcome


def build_argv(command: Sequence[str], value: str) -> list[str]:
    return [*command, value]


class CommandRunner:
    def __init__(self, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds

    def run(self, argv: list[str]) -> CommandOutcome:
        """Run ``argv`` to completion; output goes to the parent's streams."""
        try:
            process = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                check=False,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            return CommandOutcome(
                argv=argv,
                returncode=None,
                error=f"timed out after {self.timeout_seconds}s",
            )
        except OSError as exc:
            return CommandOutcome(argv=argv, returncode=None, error=f"spawn failed: {exc}")
        return CommandOutcome(argv=argv, returncode=process.returncode)
