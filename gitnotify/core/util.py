from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str


def run(cmd: list[str], cwd: str | None = None, input: str | None = None) -> CmdResult:
    logger.debug("running %s", " ".join(cmd))
    proc = subprocess.run(
        cmd,
        cwd=cwd,
        input=input,
        encoding="utf-8",
        errors="replace",
        capture_output=True,
        check=False,
    )
    return CmdResult(proc.returncode, proc.stdout, proc.stderr.strip())


def is_zero(sha: str | None) -> bool:
    return not sha or sha.strip("0") == ""


def short_sha(sha: str, length: int = 7) -> str:
    return sha[:length]


def short_text(text: str, max_len: int = 100) -> str:
    t = " ".join(text.split())
    if len(t) <= max_len:
        return t
    return t[: max_len - 3].rstrip() + "..."


def indent_lines(lines: Iterable[str], prefix: str = "  ") -> str:
    return "\n".join(prefix + line if line else line for line in lines)
