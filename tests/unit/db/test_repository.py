"""Tests for the Repository pattern."""

from __future__ import annotations

import json
import sqlite3

import pytest

from docembed.db.models import SectionRecord, SourceRecord
from docembed.db.repository import Repository


def _file(repo: Repository, path: str = "docs/a.md", checksum: str = "c1", **kw) -> int:
    return repo.create_file(
        source_id=kw.get("source_id", "src-1"),
        project_id=kw.get("project_id", "proj-1"),
        path=path,
        checksum=checksum,
        meta=kw.get("meta", {"title": "A"}),
        raw_content=kw.get("raw_content", "# A"),
    )


def _section(file_id: int, content: str = "hello", embedding=None, tokens: int = 3) -> SectionRecord:
    return SectionRecord(
        file_id=file_id,
        content=content,
        embedding=embedding or [0.1, 0.2, 0.3],
        token_count=tokens,
        cf_project_id="proj-1",
        meta={"leadHeading": {"value": "A", "depth": 1}},
        cf_file_meta={"title": "A"},
    )


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------


def test_add_and_get_source(tmp_db):
    repo = Repository(tmp_db)
    repo.add_source(SourceRecord(id="s", project_id="p"))
    source = repo.get_source("s")
    assert source is not None
    assert source.project_id == "p"
    assert source.type == "files"


def test_get_source_not_found(tmp_db):
    assert Repository(tmp_db).get_source("missing") is None


def test_ensure_source_is_idempotent(tmp_db):
    repo = Repository(tmp_db)
    first = repo.ensure_source("s", "p", data={"root": "docs"})
    second = repo.ensure_source("s", "other")
    assert first.id == second.id
    assert second.project_id == "p"
    assert json.loads(second.data) == {"root": "docs"}
    assert len(repo.list_sources()) == 1


def test_list_sources_by_project(tmp_db):
    repo = Repository(tmp_db)
    repo.ensure_source("a", "p1")
    repo.ensure_source("b", "p2")
    assert [s.id for s in repo.list_sources("p2")] == ["b"]


# ------------------------------------------------------------------
# Files
# ------------------------------------------------------------------


def test_create_and_get_file(repo):
    file_id = _file(repo)
    record = repo.get_file(file_id)
    assert record is not None
    assert record.path == "docs/a.md"
    assert record.checksum == "c1"
    assert record.title == "A"
    assert record.token_count == 0


def test_get_file_id_at_path(repo):
    file_id = _file(repo)
    assert repo.get_file_id_at_path("src-1", "docs/a.md") == file_id
    assert repo.get_file_id_at_path("src-1", "docs/other.md") is None


def test_path_unique_per_source(repo):
    _file(repo)
    with pytest.raises(sqlite3.IntegrityError):
        _file(repo)


def test_update_file(repo):
    file_id = _file(repo)
    repo.update_file(file_id, checksum="c2", meta={"title": "B"}, raw_content="# B")
    record = repo.get_file(file_id)
    assert record.checksum == "c2"
    assert record.meta_dict == {"title": "B"}
    assert record.raw_content == "# B"


def test_update_token_count_with_checksum(repo):
    file_id = _file(repo, checksum="")
    repo.update_file_token_count(file_id, 42, checksum="final")
    record = repo.get_file(file_id)
    assert record.token_count == 42
    assert record.checksum == "final"


def test_get_checksums(repo):
    _file(repo, "a.md", "x")
    _file(repo, "b.md", "y")
    assert repo.get_checksums("src-1") == {"a.md": "x", "b.md": "y"}


def test_list_files_filters(repo):
    repo.ensure_source("src-2", "proj-2")
    _file(repo, "a.md")
    _file(repo, "b.md", source_id="src-2", project_id="proj-2")
    assert [f.path for f in repo.list_files(project_id="proj-1")] == ["a.md"]
    assert [f.path for f in repo.list_files(source_id="src-2")] == ["b.md"]
    assert len(repo.list_files()) == 2


def test_sum_token_count(repo):
    a = _file(repo, "a.md")
    b = _file(repo, "b.md")
    repo.update_file_token_count(a, 10)
    repo.update_file_token_count(b, 5)
    assert repo.sum_token_count("proj-1") == 15
    assert repo.sum_token_count("nobody") == 0


# ------------------------------------------------------------------
# Sections
# ------------------------------------------------------------------


def test_insert_and_list_sections(repo):
    file_id = _file(repo)
    ids = repo.insert_sections([_section(file_id, "one"), _section(file_id, "two")])
    assert len(ids) == 2
    sections = repo.list_sections(file_id)
    assert [s.content for s in sections] == ["one", "two"]
    assert sections[0].meta == {"leadHeading": {"value": "A", "depth": 1}}
    assert sections[0].cf_file_meta == {"title": "A"}
    assert sections[0].embedding == pytest.approx([0.1, 0.2, 0.3])


def test_delete_file_cascades_to_sections(repo):
    file_id = _file(repo)
    repo.insert_sections([_section(file_id)])
    repo.delete_file(file_id)
    assert repo.get_file(file_id) is None
    assert repo.count_sections() == 0


def test_delete_source_cascades_to_files(repo, tmp_db):
    file_id = _file(repo)
    repo.insert_sections([_section(file_id)])
    tmp_db.execute("DELETE FROM sources WHERE id = 'src-1'")
    tmp_db.commit()
    assert repo.list_files() == []
    assert repo.count_sections() == 0


def test_delete_sections_for_file(repo):
    file_id = _file(repo)
    repo.insert_sections([_section(file_id), _section(file_id)])
    repo.delete_sections_for_file(file_id)
    assert repo.count_sections(file_id=file_id) == 0
    assert repo.get_file(file_id) is not None


def test_insert_sections_rejects_wrong_dimensions(repo):
    file_id = _file(repo)
    with pytest.raises(ValueError, match="dimensions"):
        repo.insert_sections([_section(file_id, embedding=[0.1, 0.2])])


def test_insert_sections_is_all_or_nothing(repo):
    file_id = _file(repo)
    good = _section(file_id, "good")
    bad = _section(file_id, "bad", embedding=[1.0])
    with pytest.raises(ValueError):
        repo.insert_sections([good, bad])
    assert repo.count_sections(file_id=file_id) == 0


def test_insert_section_single(repo):
    file_id = _file(repo)
    section = _section(file_id)
    new_id = repo.insert_section(section)
    assert section.id == new_id
    assert repo.count_sections(project_id="proj-1") == 1


def test_search_sections_orders_by_cosine_distance(repo):
    file_id = _file(repo)
    repo.insert_sections(
        [
            _section(file_id, "x-axis", embedding=[1.0, 0.0, 0.0]),
            _section(file_id, "y-axis", embedding=[0.0, 1.0, 0.0]),
        ]
    )
    results = repo.search_sections([0.9, 0.1, 0.0], "proj-1", limit=2)
    assert [s.content for s, _ in results] == ["x-axis", "y-axis"]
    assert results[0][1] < results[1][1]


def test_search_sections_scoped_to_project(repo):
    file_id = _file(repo)
    repo.insert_sections([_section(file_id)])
    assert repo.search_sections([0.1, 0.2, 0.3], "other-project") == []
