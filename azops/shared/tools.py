# shared/tools.py
from __future__ import annotations
import os, shutil

from .config import get
from .errors import CmdError


def _resolve(setting: str, names: tuple[str, ...], label: str) -> str:
    p = str(get(setting, "") or "").strip()
    if p:
        return p
    for cand in names:
        found = shutil.which(cand)
        if found:
            return found
        if os.path.isabs(cand) and os.path.exists(cand):
            return cand
    raise CmdError(f"{label} not found. Set {setting} or put it on PATH.")


def az_path() -> str:
    return _resolve("AZ_PATH", ("az", "/usr/bin/az", "/usr/local/bin/az"), "Azure CLI ('az')")


def func_path() -> str:
    return _resolve("FUNC_PATH", ("func", "/usr/local/bin/func", "/usr/bin/func"), "Azure Functions Core Tools ('func')")
