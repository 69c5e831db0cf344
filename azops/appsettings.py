"""
Rebuild local.settings.json from a deployed Function App.

Usage:
    azops-pull-settings \
        --function-app <app-name> \
        [--folder path/to/function/project] \
        [--slot <slot-name>] \
        [--overwrite] [--use-dev-storage] [--leave-decrypted] \
        [--secret-backend cli|sdk]

Steps: fetch the app settings with Functions Core Tools, decrypt them, swap
every `@Microsoft.KeyVault(VaultName=...;SecretName=...)` reference for the
secret's literal value, optionally point storage connection strings at the
local emulator, save, and encrypt again (unless --leave-decrypted).
"""
from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .keyvault import BACKENDS, find_secret_refs, make_resolver
from .shared.config import get
from .shared.errors import AzOpsError, ConfigError, PreconditionError
from .shared.logger import make_slogger, setup_logging
from .shared.proc import run
from .shared.tools import func_path

LOGGER = logging.getLogger("azops.appsettings")

LOCAL_SETTINGS = "local.settings.json"
DEV_STORAGE = "UseDevelopmentStorage=true"

STORAGE_CONN_RE = re.compile(
    r"DefaultEndpointsProtocol=(?:http|https);"
    r"AccountName=[^;\"\s]+;"
    r"AccountKey=[^;\"\s]+"
    r"(?:;EndpointSuffix=[^;\"\s]+)?"
)


class LocalSettings(BaseModel):
    """local.settings.json; sections other than these (Host, ...) ride along untouched."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    is_encrypted: bool = Field(default=False, alias="IsEncrypted")
    values: Dict[str, Any] = Field(default_factory=dict, alias="Values")
    connection_strings: Dict[str, Any] = Field(default_factory=dict, alias="ConnectionStrings")


@dataclass
class ReconcileResult:
    path: Path
    secrets_resolved: int = 0
    storage_replaced: int = 0
    encrypted: bool = False


def load_settings(path: Path) -> LocalSettings:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Settings file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Settings file must be a JSON object: {path}")
    return LocalSettings.model_validate(raw)


def save_settings(path: Path, doc: LocalSettings) -> None:
    data = doc.model_dump(by_alias=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _map_strings(obj: Any, fn: Callable[[str], str]) -> Any:
    if isinstance(obj, str):
        return fn(obj)
    if isinstance(obj, dict):
        return {k: _map_strings(v, fn) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_map_strings(v, fn) for v in obj]
    return obj


def _map_values(doc: LocalSettings, fn: Callable[[str], str]) -> None:
    doc.values = _map_strings(doc.values, fn)
    doc.connection_strings = _map_strings(doc.connection_strings, fn)


def resolve_secret_refs(doc: LocalSettings, resolver, log=None) -> int:
    """
    Replace Secret References inside setting values with literal secrets.
    One lookup per regex match; a token repeated in the same value is looked
    up again even though the first replace already covered it.
    """
    slog = make_slogger(log or LOGGER.info)
    lookups = 0

    def _sub(value: str) -> str:
        nonlocal lookups
        for ref in find_secret_refs(value):
            secret = resolver.resolve(ref)
            lookups += 1
            slog("secret", "resolved", provider=ref.provider, vault=ref.vault, name=ref.secret)
            value = value.replace(ref.token, secret)
        return value

    _map_values(doc, _sub)
    return lookups


def use_development_storage(doc: LocalSettings, sentinel: str = DEV_STORAGE) -> int:
    replaced = 0

    def _sub(value: str) -> str:
        nonlocal replaced
        new, n = STORAGE_CONN_RE.subn(lambda _m: sentinel, value)
        replaced += n
        return new

    _map_values(doc, _sub)
    return replaced


def fetch_app_settings(app: str, folder: Path, *, slot: Optional[str] = None) -> None:
    cmd = [func_path(), "azure", "functionapp", "fetch-app-settings", app]
    if slot:
        cmd += ["--slot", slot]
    run(cmd, cwd=folder)


def decrypt_settings(folder: Path) -> None:
    run([func_path(), "settings", "decrypt"], cwd=folder)


def encrypt_settings(folder: Path) -> None:
    run([func_path(), "settings", "encrypt"], cwd=folder)


def reconcile_settings(
    app: str,
    folder: Path,
    *,
    overwrite: bool = False,
    dev_storage: bool = False,
    leave_decrypted: bool = False,
    slot: Optional[str] = None,
    resolver=None,
    log=None,
) -> ReconcileResult:
    slog = make_slogger(log or LOGGER.info, ctx={"app": app})
    folder = Path(folder)
    path = folder / LOCAL_SETTINGS

    if path.exists() and not overwrite:
        raise PreconditionError(f"{path} already exists (use --overwrite to replace it)")
    resolver = resolver or make_resolver()
    folder.mkdir(parents=True, exist_ok=True)
    backup = None
    if path.exists():
        # func merges into an existing file; set it aside until the new one is saved
        backup = path.with_name(path.name + ".bak")
        slog("settings", f"moving existing {path} to {backup.name}")
        path.replace(backup)

    result = ReconcileResult(path=path)
    try:
        slog("fetch", f"fetching app settings into {path}", slot=slot)
        fetch_app_settings(app, folder, slot=slot)
        decrypt_settings(folder)

        doc = load_settings(path)
        result.secrets_resolved = resolve_secret_refs(doc, resolver, log=log)
        if dev_storage:
            sentinel = get("DEV_STORAGE_CONNECTION", DEV_STORAGE) or DEV_STORAGE
            result.storage_replaced = use_development_storage(doc, sentinel)
            slog("storage", f"replaced {result.storage_replaced} connection string(s)", sentinel=sentinel)
        save_settings(path, doc)
    except Exception:
        if backup is not None:
            slog("settings", f"restoring {path} from {backup.name}")
            backup.replace(path)
        raise
    if backup is not None:
        backup.unlink()

    if leave_decrypted:
        slog("settings", "leaving file decrypted")
    else:
        encrypt_settings(folder)
        result.encrypted = True

    slog("done", secrets=result.secrets_resolved, storage=result.storage_replaced, encrypted=result.encrypted)
    return result


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebuild local.settings.json from a deployed Function App")
    parser.add_argument("--function-app", required=True, help="Azure Function App name")
    parser.add_argument("--folder", default=".", help="Function project folder (default: current directory)")
    parser.add_argument("--slot", help="Optional deployment slot")
    parser.add_argument("--overwrite", action="store_true", help=f"Replace an existing {LOCAL_SETTINGS}")
    parser.add_argument("--use-dev-storage", action="store_true",
                        help="Point storage connection strings at the local storage emulator")
    parser.add_argument("--leave-decrypted", action="store_true", help="Skip the final encrypt step")
    parser.add_argument("--secret-backend", choices=BACKENDS, help="How to read Key Vault secrets (default: cli)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        setup_logging(args.verbose)
        result = reconcile_settings(
            args.function_app,
            Path(args.folder),
            overwrite=args.overwrite,
            dev_storage=args.use_dev_storage,
            leave_decrypted=args.leave_decrypted,
            slot=args.slot,
            resolver=make_resolver(args.secret_backend),
        )
    except AzOpsError as exc:
        LOGGER.error("%s", exc)
        return 1
    print(f"Wrote {result.path} ({result.secrets_resolved} secret(s) resolved)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
