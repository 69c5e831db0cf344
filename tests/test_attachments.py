import sys
from pathlib import Path
from unittest.mock import patch

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from azops import attachments  # noqa: E402
from azops.attachments import (  # noqa: E402
    CleanupOutcome,
    clean_orphans,
    encode_attachment_name,
    find_orphans,
    iter_documents,
)
from azops.shared.errors import ConfigError  # noqa: E402


@pytest.fixture
def wiki(tmp_path):
    """docs/ tree with an .attachments folder; one linked and one orphaned attachment."""
    docs = tmp_path / "docs"
    att = docs / ".attachments"
    (docs / "guides").mkdir(parents=True)
    att.mkdir()
    (att / "my file.png").write_bytes(b"png")
    (att / "old-diagram.png").write_bytes(b"png")
    (att / "nested").mkdir()
    (att / "nested" / "deep.png").write_bytes(b"png")
    (docs / "guides" / "setup.md").write_text("![shot](/.attachments/my%20file.png)\n", encoding="utf-8")
    (docs / "index.md").write_text("# Home\n", encoding="utf-8")
    return docs, att


def quiet(*_):
    return None


def test_encode_attachment_name():
    assert encode_attachment_name("my file.png") == "my%20file.png"
    assert encode_attachment_name("a\tb.png") == "a%09b.png"
    assert encode_attachment_name("plain.png") == "plain.png"


def test_find_orphans_is_exact_and_non_recursive(wiki):
    docs, att = wiki
    orphans, scanned, documents = find_orphans(att, docs)
    assert [p.name for p in orphans] == ["old-diagram.png"]
    assert scanned == 2
    assert documents == 2


def test_unencoded_name_does_not_count_as_reference(wiki):
    docs, att = wiki
    (docs / "guides" / "setup.md").write_text("see my file.png\n", encoding="utf-8")
    orphans, _, _ = find_orphans(att, docs)
    assert "my file.png" in [p.name for p in orphans]


def test_only_matching_extension_is_searched(wiki):
    docs, att = wiki
    (docs / "notes.txt").write_text("old-diagram.png", encoding="utf-8")
    assert [p.name for p in find_orphans(att, docs)[0]] == ["old-diagram.png"]
    assert find_orphans(att, docs, extension="txt")[0][0].name == "my file.png"


def test_iter_documents_matches_extension_case_insensitively(tmp_path):
    (tmp_path / "a.MD").write_text("x")
    (tmp_path / "b.md").write_text("x")
    (tmp_path / "c.txt").write_text("x")
    assert [p.name for p in iter_documents(tmp_path, ".md")] == ["a.MD", "b.md"]


def test_dry_run_deletes_nothing_and_signals_pending(wiki):
    docs, att = wiki
    lines: list[str] = []
    report = clean_orphans(att, docs, dry_run=True, log=lines.append)

    assert (att / "old-diagram.png").exists()
    assert report.removed == []
    assert report.outcome is CleanupOutcome.ACTION_PENDING
    assert report.outcome.exit_code == 1
    assert lines == ["[orphan] old-diagram.png dry_run=True action=would-delete"]


def test_live_run_deletes_orphans_only(wiki):
    docs, att = wiki
    report = clean_orphans(att, docs, log=quiet)

    assert not (att / "old-diagram.png").exists()
    assert (att / "my file.png").exists()
    assert (att / "nested" / "deep.png").exists()
    assert report.outcome is CleanupOutcome.COMPLETED
    assert report.outcome.exit_code == 0


def test_second_run_needs_no_action(wiki):
    docs, att = wiki
    clean_orphans(att, docs, log=quiet)
    report = clean_orphans(att, docs, dry_run=True, log=quiet)
    assert report.orphans == []
    assert report.outcome is CleanupOutcome.NO_ACTION_NEEDED
    assert report.outcome.exit_code == 0


def test_missing_directory_is_a_config_error(tmp_path):
    with pytest.raises(ConfigError):
        find_orphans(tmp_path / "nope", tmp_path)


def test_main_exit_codes(wiki, tmp_path):
    docs, att = wiki
    args = ["--attachments", str(att), "--docs", str(docs)]
    assert attachments.main(args + ["--dry-run"]) == 1
    assert (att / "old-diagram.png").exists()
    assert attachments.main(args) == 0
    assert attachments.main(args + ["--dry-run"]) == 0
    assert attachments.main(["--attachments", str(tmp_path / "missing"), "--docs", str(docs)]) == 2


def test_main_delete_failure_is_not_mistaken_for_pending_orphans(wiki):
    docs, att = wiki
    args = ["--attachments", str(att), "--docs", str(docs)]
    with patch.object(attachments.Path, "unlink", side_effect=PermissionError("read-only")):
        assert attachments.main(args) == 2
    assert (att / "old-diagram.png").exists()


def test_main_invalid_setting_exits_with_error_code(wiki, monkeypatch):
    docs, att = wiki
    monkeypatch.setenv("TS_RETENTION_COUNT", "lots")
    assert attachments.main(["--attachments", str(att), "--docs", str(docs), "--dry-run"]) == 2


def test_main_extension_from_environment(wiki, monkeypatch, capsys):
    docs, att = wiki
    (docs / "notes.txt").write_text("old-diagram.png my%20file.png", encoding="utf-8")
    monkeypatch.setenv("DOCS_EXTENSION", ".txt")
    assert attachments.main(["--attachments", str(att), "--docs", str(docs), "--dry-run"]) == 0
    assert "0 orphan(s)" in capsys.readouterr().out
