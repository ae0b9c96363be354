"""Tests for the per-file embedding writer."""

from __future__ import annotations

import json
import sqlite3

from docembed.ingest.checksum import create_checksum
from docembed.ingest.errors import API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED
from docembed.ingest.file_embeddings import WriterOptions, generate_file_embeddings_and_save_file
from docembed.ingest.quota import FileQuota, QuotaLedger, TokenAllowanceInfo
from docembed.ingest.types import FileData

_DOC = "# Guide\n\nFirst section body.\n\n## Install\n\nRun the installer.\n"


def _file(content: str = _DOC, path: str = "docs/guide.md") -> FileData:
    return FileData(path=path, name=path.rsplit("/", 1)[-1], content=content)


def _quota(allowance: int | None = None) -> tuple[QuotaLedger, FileQuota]:
    ledger = QuotaLedger(TokenAllowanceInfo(allowance))
    return ledger, FileQuota(ledger)


def _write(repo, embedder, file=None, quota=None, options=None):
    return generate_file_embeddings_and_save_file(
        repo,
        file or _file(),
        project_id="proj-1",
        source_id="src-1",
        embedder=embedder,
        quota=quota or _quota()[1],
        options=options,
    )


# ------------------------------------------------------------------
# Happy path
# ------------------------------------------------------------------


def test_stores_file_and_sections(repo, fake_embedder):
    ledger, quota = _quota(100)
    result = _write(repo, fake_embedder(tokens=4), quota=quota)

    assert result.ok
    assert result.sections == 2
    assert result.token_count == 8
    assert ledger.committed_tokens == 8

    record = repo.get_file(result.file_id)
    assert record.checksum == create_checksum(_DOC)
    assert record.token_count == 8
    assert record.title == "Guide"
    assert record.raw_content == _DOC
    assert json.loads(record.internal_metadata) == {"content_type": "markdown"}

    sections = repo.list_sections(result.file_id)
    assert [s.meta["leadHeading"]["value"] for s in sections] == ["Guide", "Install"]
    assert sections[1].meta["leadHeading"] == {"value": "Install", "depth": 2, "slug": "install"}
    assert all(s.cf_file_meta["title"] == "Guide" for s in sections)
    assert all(s.cf_project_id == "proj-1" for s in sections)


def test_section_without_heading_has_no_meta(repo, fake_embedder):
    result = _write(repo, fake_embedder(), file=_file("Just a paragraph of text.\n", "a.md"))
    assert repo.list_sections(result.file_id)[0].meta is None


def test_reembedding_replaces_sections(repo, fake_embedder):
    first = _write(repo, fake_embedder())
    second = _write(repo, fake_embedder(), file=_file("# Guide\n\nOnly one section now.\n"))

    assert second.file_id == first.file_id
    assert [s.content for s in repo.list_sections(second.file_id)] == [
        "# Guide\n\nOnly one section now."
    ]
    assert len(repo.list_files()) == 1


def test_short_sections_are_skipped(repo, fake_embedder):
    embedder = fake_embedder()
    result = _write(repo, embedder, file=_file("Hi\n", "short.md"))

    assert result.ok
    assert result.sections == 0
    assert embedder.calls == []
    # The file itself is still stored and marked up to date
    assert repo.get_file(result.file_id).checksum == create_checksum("Hi\n")


def test_min_content_length_option(repo, fake_embedder):
    embedder = fake_embedder()
    _write(repo, embedder, file=_file("Hi\n", "short.md"), options=WriterOptions(min_content_length=1))
    assert embedder.calls == ["Hi"]


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


def test_embedding_failure_reverts_file(repo, fake_embedder):
    ledger, quota = _quota(100)
    embedder = fake_embedder(fail_on="Install")
    result = _write(repo, embedder, quota=quota)

    assert not result.ok
    assert result.file_id is None
    assert len(result.errors) == 1
    assert result.errors[0].message.startswith(
        "Unable to generate embeddings for section starting with '## Install"
    )
    # Sibling sections were still attempted
    assert len(embedder.calls) == 2
    assert repo.list_files() == []
    assert repo.count_sections() == 0
    assert ledger.committed_tokens == 0


def test_quota_exceeded_reverts_with_single_error(repo, fake_embedder):
    ledger, quota = _quota(7)
    result = _write(repo, fake_embedder(tokens=4), quota=quota)

    assert [e.id for e in result.errors] == [API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED]
    assert result.errors[0].message.startswith("Training quota reached.")
    assert result.errors[0].attempted_tokens == 8
    assert result.file_id is None
    assert repo.list_files() == []
    assert ledger.committed_tokens == 0


def test_quota_error_replaces_earlier_section_errors(repo, fake_embedder):
    content = "# A\n\nbroken section\n\n# B\n\nfine section one\n\n# C\n\nfine section two\n"
    _, quota = _quota(6)
    result = _write(repo, fake_embedder(tokens=4, fail_on="broken"), file=_file(content), quota=quota)

    assert len(result.errors) == 1
    assert result.errors[0].id == API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED


def test_bulk_insert_failure_falls_back_to_rows(repo, fake_embedder, monkeypatch):
    def _bulk_fails(sections):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(repo, "insert_sections", _bulk_fails)
    result = _write(repo, fake_embedder())

    assert result.ok
    assert result.warnings == [
        "Error storing embeddings in bulk: database is locked - Storing one by one instead"
    ]
    assert repo.count_sections(file_id=result.file_id) == 2


def test_row_insert_failure_reverts_file(repo, fake_embedder):
    # Two-dimensional vectors do not fit the three-dimensional store.
    result = _write(repo, fake_embedder(vector=[1.0, 0.0]))

    assert not result.ok
    assert len(result.warnings) == 1
    assert "Unable to store 2 of 2 sections" in result.errors[0].message
    assert repo.list_files() == []


def test_failed_reembed_removes_previous_version(repo, fake_embedder):
    _write(repo, fake_embedder())
    _write(repo, fake_embedder(fail_on="Guide"))

    # Absent rather than stale, so the next run retries it
    assert repo.get_checksums("src-1") == {}


def test_frontmatter_date_is_stored(repo, fake_embedder):
    post = "---\ndate: 2024-01-01\n---\n\n# Hello\n\nSome body text here.\n"
    result = _write(repo, fake_embedder(), file=_file(post, "post.md"))

    assert result.ok
    assert repo.get_file(result.file_id).meta_dict == {"date": "2024-01-01", "title": "Hello"}
    assert repo.list_sections(result.file_id)[0].cf_file_meta["date"] == "2024-01-01"


def test_unexpected_store_failure_reverts_and_releases_quota(repo, fake_embedder, monkeypatch):
    def _disk_full(*args, **kwargs):
        raise RuntimeError("disk full")

    ledger, quota = _quota(10)
    with monkeypatch.context() as m:
        m.setattr(repo, "update_file_token_count", _disk_full)
        result = _write(repo, fake_embedder(tokens=4), quota=quota)

    assert [e.message for e in result.errors] == ["Unable to process file: disk full"]
    assert repo.list_files() == []
    assert repo.count_sections() == 0

    # The failed file's 8 tokens no longer hold back the rest of the batch
    retry = _write(repo, fake_embedder(tokens=4), quota=FileQuota(ledger))
    assert retry.ok
    assert ledger.committed_tokens == 8


def test_failed_row_update_on_reembed_removes_file(repo, fake_embedder, monkeypatch):
    _write(repo, fake_embedder())

    def _broken_update(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repo, "update_file", _broken_update)
    result = _write(repo, fake_embedder(), file=_file("# Guide\n\nChanged body text.\n"))

    assert not result.ok
    assert repo.get_checksums("src-1") == {}
    assert repo.count_sections() == 0
