"""
Delete wiki attachments that no page links to any more.

Examples:
  azops-clean-attachments --attachments docs/.attachments --docs docs --dry-run
  azops-clean-attachments --attachments docs/.attachments --docs docs

An attachment counts as referenced when its file name, with whitespace
URL-encoded (`my file.png` -> `my%20file.png`), appears verbatim in at least
one documentation file. Exit status: 0 nothing to do or cleanup done,
1 dry run found orphans, 2 error (missing directory, bad setting, I/O failure).
"""
from __future__ import annotations

import argparse
import enum
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List
from urllib.parse import quote

from .shared.config import get
from .shared.errors import AzOpsError, ConfigError
from .shared.logger import make_slogger, setup_logging

LOGGER = logging.getLogger("azops.attachments")

_WS_RE = re.compile(r"\s")


class CleanupOutcome(enum.Enum):
    NO_ACTION_NEEDED = "no-action-needed"
    ACTION_PENDING = "action-pending"
    COMPLETED = "completed"

    @property
    def exit_code(self) -> int:
        return 1 if self is CleanupOutcome.ACTION_PENDING else 0


@dataclass
class CleanupReport:
    dry_run: bool
    scanned: int = 0
    documents: int = 0
    orphans: List[Path] = field(default_factory=list)
    removed: List[Path] = field(default_factory=list)

    @property
    def outcome(self) -> CleanupOutcome:
        if not self.orphans:
            return CleanupOutcome.NO_ACTION_NEEDED
        if self.dry_run:
            return CleanupOutcome.ACTION_PENDING
        return CleanupOutcome.COMPLETED


def encode_attachment_name(name: str) -> str:
    return _WS_RE.sub(lambda m: quote(m.group(0)), name)


def _normalize_extension(extension: str) -> str:
    ext = extension.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def list_attachments(folder: Path) -> List[Path]:
    return sorted((p for p in Path(folder).iterdir() if p.is_file()), key=lambda p: p.name)


def iter_documents(root: Path, extension: str = ".md") -> Iterator[Path]:
    ext = _normalize_extension(extension)
    for p in sorted(Path(root).rglob("*")):
        if p.is_file() and p.suffix.lower() == ext:
            yield p


def _require_dir(path: Path, label: str) -> Path:
    p = Path(path)
    if not p.is_dir():
        raise ConfigError(f"{label} directory not found: {p}")
    return p


def find_orphans(attachments_dir: Path, docs_root: Path, extension: str = ".md") -> tuple[List[Path], int, int]:
    """Returns (orphans, attachments scanned, documents read)."""
    attachments = list_attachments(_require_dir(attachments_dir, "Attachment"))
    texts = [
        doc.read_text(encoding="utf-8", errors="replace")
        for doc in iter_documents(_require_dir(docs_root, "Documentation"), extension)
    ]
    orphans = [
        a for a in attachments
        if not any(encode_attachment_name(a.name) in text for text in texts)
    ]
    return orphans, len(attachments), len(texts)


def clean_orphans(
    attachments_dir: Path,
    docs_root: Path,
    *,
    extension: str = ".md",
    dry_run: bool = False,
    log=None,
) -> CleanupReport:
    slog = make_slogger(log or LOGGER.info, ctx={"dry_run": True} if dry_run else None)
    orphans, scanned, documents = find_orphans(attachments_dir, docs_root, extension)
    report = CleanupReport(dry_run=dry_run, scanned=scanned, documents=documents, orphans=orphans)

    for path in orphans:
        if dry_run:
            slog("orphan", path.name, action="would-delete")
            continue
        path.unlink()
        report.removed.append(path)
        slog("orphan", path.name, action="deleted")
    return report


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete attachments no documentation page references")
    parser.add_argument("--attachments", required=True, help="Attachment directory (scanned non-recursively)")
    parser.add_argument("--docs", required=True, help="Documentation root (searched recursively)")
    parser.add_argument("--extension", help="Documentation file extension (default: DOCS_EXTENSION or .md)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Only report orphans; exit 1 when any are found")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        setup_logging(args.verbose)
        report = clean_orphans(
            Path(args.attachments),
            Path(args.docs),
            extension=args.extension or get("DOCS_EXTENSION", ".md"),
            dry_run=args.dry_run,
        )
    except (AzOpsError, OSError) as exc:
        # 1 is reserved for "dry run found orphans"
        LOGGER.error("%s", exc)
        return 2
    outcome = report.outcome
    print(
        f"Checked {report.scanned} attachment(s) against {report.documents} document(s): "
        f"{len(report.orphans)} orphan(s), {len(report.removed)} deleted [{outcome.value}]"
    )
    return outcome.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
