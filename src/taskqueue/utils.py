from __future__ import annotations

import shlex
from datetime import UTC, datetime
from typing import Iterable, TextIO


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def format_command(command: Iterable[str]) -> str:
    return shlex.join(list(command))


def read_input_lines(stream: TextIO) -> list[str]:
    """Read one input value per line, dropping only the line terminators."""
    return [line.rstrip("\r\n") for line in stream]
