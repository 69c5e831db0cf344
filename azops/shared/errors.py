# shared/errors.py
from __future__ import annotations

from typing import Optional, Sequence


class AzOpsError(Exception):
    """Base class for every failure the tools report to the user."""


class ConfigError(AzOpsError): ...


class PreconditionError(AzOpsError): ...


class ExternalCallError(AzOpsError):
    """An external service (CLI or SDK) failed."""


class CmdError(ExternalCallError):
    def __init__(
        self,
        message: str,
        *,
        cmd: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        output: str = "",
    ):
        super().__init__(message)
        self.cmd = list(cmd or [])
        self.returncode = returncode
        self.output = output
