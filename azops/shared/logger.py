# shared/logger.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .config import get

# Public type for text loggers
LogFn = Callable[[str], None]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Azure SDK loggers are chatty at INFO (every HTTP request/response)
QUIET_LOGGERS = (
    "azure",
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
)


def setup_logging(verbose: bool = False, level: Optional[str] = None) -> None:
    if verbose:
        lvl = logging.DEBUG
    else:
        name = str(level or get("LOG_LEVEL", "INFO")).upper()
        lvl = getattr(logging, name, logging.INFO)
    logging.basicConfig(level=lvl, format=LOG_FORMAT)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _render(value: Any) -> str:
    s = str(value)
    return f'"{s}"' if (" " in s or not s) else s


def make_slogger(
    text_log: Optional[LogFn] = None,
    *,
    ctx: Optional[Dict[str, Any]] = None,
) -> Callable[..., None]:
    """
    Returns slog(event, msg=None, **fields) which renders
    "[event] msg k=v ..." through text_log (default: print).

    - ctx: static fields appended to every line (dry_run, subscription, ...)
    """
    context = dict(ctx or {})
    out = text_log or print

    def slog(event: str, msg: Optional[str] = None, **fields: Any) -> None:
        merged = {**context, **fields}
        kv = " ".join(f"{k}={_render(v)}" for k, v in merged.items() if v is not None)
        parts = [f"[{event}]"]
        if msg:
            parts.append(msg)
        if kv:
            parts.append(kv)
        out(" ".join(parts))

    return slog
