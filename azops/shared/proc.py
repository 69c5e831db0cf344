# shared/proc.py
from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Any, Sequence

from .errors import CmdError

LOGGER = logging.getLogger("azops.proc")

TAIL_LINES = 20


def _printable(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(c)) for c in cmd)


def _tail(text: str | None) -> str:
    lines = (text or "").strip().splitlines()
    return "\n".join(lines[-TAIL_LINES:])


def run(cmd: Sequence[str], *, cwd: str | os.PathLike | None = None) -> str:
    """
    Run an external tool and return its stdout.
    Raises CmdError when the tool is missing or exits non-zero; stderr is
    kept on the exception, never logged at INFO.
    """
    args = [str(c) for c in cmd]
    LOGGER.debug("[spawn] cwd=%s cmd=%s", cwd or os.getcwd(), _printable(args))
    try:
        proc = subprocess.run(
            args,
            cwd=cwd,
            check=True,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise CmdError(f"{args[0]} not found in PATH", cmd=args) from exc
    except subprocess.CalledProcessError as exc:
        tail = _tail(exc.stderr or exc.stdout)
        name = Path(args[0]).name
        msg = f"{name} failed (exit code {exc.returncode}): {_printable(args[1:])}"
        if tail:
            msg += f"\n--- {name} tail ---\n{tail}"
        raise CmdError(msg, cmd=args, returncode=exc.returncode, output=tail) from exc
    return proc.stdout or ""


def run_json(cmd: Sequence[str], *, cwd: str | os.PathLike | None = None) -> Any:
    out = run(cmd, cwd=cwd)
    if not out.strip():
        return None
    try:
        return json.loads(out)
    except json.JSONDecodeError as exc:
        raise CmdError(f"Invalid JSON from {Path(str(cmd[0])).name}: {exc}", cmd=cmd) from exc
