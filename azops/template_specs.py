"""
Prune old Template Spec versions so every spec stays under the platform quota.

Examples:
  azops-prune-template-specs --subscription <id> --dry-run
  azops-prune-template-specs --subscription <id> --resource-group rg-templates --keep 350 -v

For each Template Spec in scope the versions are ordered oldest first (by
creation time, then name) and the oldest `count - keep` are deleted. Specs
already at or under `keep` are left alone, so a second run is a no-op.
"""
from __future__ import annotations

import argparse
import logging
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .shared.config import get
from .shared.errors import AzOpsError, ExternalCallError
from .shared.logger import make_slogger, setup_logging
from .shared.progress import Progress
from .shared.proc import run, run_json
from .shared.tools import az_path

LOGGER = logging.getLogger("azops.template_specs")

DEFAULT_KEEP = 400

_FRACTION_RE = re.compile(r"\.(\d+)")
_RG_RE = re.compile(r"/resourceGroups/([^/]+)/", re.IGNORECASE)


def parse_timestamp(value: Any) -> datetime:
    """ISO-8601 from az output; Azure emits up to 7 fractional digits and a trailing Z."""
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        s = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), s, count=1)
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class SpecVersion(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    created_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _from_az_row(cls, data):
        if not isinstance(data, dict) or "created_at" in data:
            return data
        system = data.get("systemData") or {}
        created = system.get("createdAt") or data.get("timeCreated") or data.get("creationTime")
        if not created:
            raise ValueError(f"version '{data.get('name')}' has no creation time")
        return {"name": data.get("name"), "created_at": created}

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created(cls, v):
        return parse_timestamp(v)


@dataclass(frozen=True)
class TemplateSpecRef:
    name: str
    resource_group: str
    id: str = ""

    @property
    def key(self) -> str:
        return f"{self.resource_group}/{self.name}"

    @classmethod
    def from_az(cls, row: Dict[str, Any]) -> "TemplateSpecRef":
        rid = row.get("id") or ""
        rg = row.get("resourceGroup")
        if not rg:
            m = _RG_RE.search(rid)
            rg = m.group(1) if m else ""
        if not row.get("name") or not rg:
            raise ExternalCallError(f"Unexpected template spec row from az: {row!r}")
        return cls(name=row["name"], resource_group=rg, id=rid)


def parse_versions(rows: Iterable[Dict[str, Any]]) -> List[SpecVersion]:
    try:
        return [SpecVersion.model_validate(r) for r in rows]
    except ValidationError as exc:
        raise ExternalCallError(f"Unexpected template spec version data from az: {exc}") from exc


def versions_to_delete(versions: Iterable[SpecVersion], keep: int) -> List[SpecVersion]:
    """The `count - keep` oldest versions, oldest first; name breaks timestamp ties."""
    if keep < 0:
        raise ValueError(f"keep must be >= 0 (got {keep})")
    ordered = sorted(versions, key=lambda v: (v.created_at, v.name))
    excess = len(ordered) - keep
    return ordered[:excess] if excess > 0 else []


class TemplateSpecClient:
    """`az ts` calls; every failure surfaces as CmdError."""

    def __init__(self, subscription: Optional[str] = None, az: Optional[str] = None):
        self.subscription = subscription or None
        self._az = az

    def _cmd(self, *args: str) -> List[str]:
        cmd = [self._az or az_path(), *args]
        if self.subscription:
            cmd += ["--subscription", self.subscription]
        return cmd

    def list_specs(self, resource_group: Optional[str] = None, name: Optional[str] = None) -> List[TemplateSpecRef]:
        args = ["ts", "list"]
        if resource_group:
            args += ["--resource-group", resource_group]
        rows = run_json(self._cmd(*args, "--output", "json")) or []
        specs = [TemplateSpecRef.from_az(r) for r in rows]
        if name:
            specs = [s for s in specs if s.name == name]
        return specs

    def list_versions(self, spec: TemplateSpecRef) -> List[SpecVersion]:
        rows = run_json(self._cmd(
            "ts", "list",
            "--resource-group", spec.resource_group,
            "--name", spec.name,
            "--output", "json",
        )) or []
        return parse_versions(rows)

    def delete_version(self, spec: TemplateSpecRef, version: SpecVersion) -> None:
        run(self._cmd(
            "ts", "delete",
            "--resource-group", spec.resource_group,
            "--name", spec.name,
            "--version", version.name,
            "--yes",
        ))


@dataclass
class PruneReport:
    dry_run: bool
    specs_scanned: int = 0
    deleted: int = 0
    planned: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def total_planned(self) -> int:
        return sum(len(v) for v in self.planned.values())


def prune_template_specs(
    client: TemplateSpecClient,
    *,
    keep: int = DEFAULT_KEEP,
    dry_run: bool = False,
    verbose: bool = False,
    resource_group: Optional[str] = None,
    name: Optional[str] = None,
    log=None,
) -> PruneReport:
    """
    Delete the oldest versions of each Template Spec until `keep` remain.

    - dry_run: no delete calls; every version that would go is logged
    - verbose: one line per deletion instead of a percentage progress line
    Any az failure propagates and stops the run.
    """
    if keep < 0:
        raise ValueError(f"keep must be >= 0 (got {keep})")
    text_log = log or LOGGER.info
    slog = make_slogger(text_log, ctx={"dry_run": True} if dry_run else None)
    report = PruneReport(dry_run=dry_run)

    for spec in client.list_specs(resource_group=resource_group, name=name):
        report.specs_scanned += 1
        versions = client.list_versions(spec)
        doomed = versions_to_delete(versions, keep)
        if not doomed:
            LOGGER.debug("[prune] %s versions=%d keep=%d nothing to do", spec.key, len(versions), keep)
            continue

        report.planned[spec.key] = [v.name for v in doomed]
        slog("prune", spec.key, versions=len(versions), keep=keep, delete=len(doomed))

        progress = None if (verbose or dry_run) else Progress(spec.key, len(doomed), log=text_log)
        for version in doomed:
            if dry_run:
                slog("would-delete", spec.key, version=version.name, created=version.created_at.isoformat())
                continue
            client.delete_version(spec, version)
            report.deleted += 1
            if progress is None:
                slog("deleted", spec.key, version=version.name, created=version.created_at.isoformat())
            else:
                progress.advance()

    return report


def _non_negative(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return n


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete the oldest Template Spec versions beyond a retention count")
    parser.add_argument("--subscription",
                        help="Subscription id or name (default: AZURE_SUBSCRIPTION_ID or the az default)")
    parser.add_argument("--resource-group", "-g", help="Only template specs in this resource group")
    parser.add_argument("--name", "-n", help="Only the template spec with this name")
    parser.add_argument("--keep", type=_non_negative,
                        help=f"Versions to keep per template spec (default: TS_RETENTION_COUNT or {DEFAULT_KEEP})")
    parser.add_argument("--dry-run", action="store_true", help="Report what would be deleted without deleting")
    parser.add_argument("--verbose", "-v", action="store_true", help="One line per deleted version instead of progress")
    parser.add_argument("--debug", action="store_true", help="Debug logging (spawned az commands)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        setup_logging(args.debug)
        keep = args.keep if args.keep is not None else get("TS_RETENTION_COUNT", DEFAULT_KEEP)
        client = TemplateSpecClient(subscription=args.subscription or get("AZURE_SUBSCRIPTION_ID", "") or None)
        report = prune_template_specs(
            client,
            keep=keep,
            dry_run=args.dry_run,
            verbose=args.verbose,
            resource_group=args.resource_group,
            name=args.name,
        )
    except AzOpsError as exc:
        LOGGER.error("%s", exc)
        return 1
    verb = "would delete" if report.dry_run else "deleted"
    count = report.total_planned if report.dry_run else report.deleted
    print(f"Scanned {report.specs_scanned} template spec(s); {verb} {count} version(s) (keep={keep})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
