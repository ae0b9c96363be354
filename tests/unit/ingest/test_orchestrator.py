"""Tests for the training orchestrator and job state machine."""

from __future__ import annotations

import pytest

from docembed.config import DocembedConfig, QuotaCfg, TrainingCfg
from docembed.ingest.errors import API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED, EmbeddingsError
from docembed.ingest.orchestrator import (
    Orchestrator,
    TrainingJob,
    TrainingState,
    TrainingSummary,
)
from docembed.ingest.quota import TokenAllowanceInfo
from docembed.ingest.sources import DirectorySource, InMemorySource
from docembed.ingest.types import FileData


def _files(n: int = 3, prefix: str = "doc") -> list[FileData]:
    return [
        FileData(path=f"{prefix}{i}.md", name=f"{prefix}{i}.md", content=f"# Doc {i}\n\nBody {i}.\n")
        for i in range(n)
    ]


def _docs(n: int = 3, prefix: str = "doc") -> InMemorySource:
    return InMemorySource(_files(n, prefix))


def _orchestrator(repo, embedder, **kw) -> Orchestrator:
    kw.setdefault("project_id", "proj-1")
    return Orchestrator(repo, embedder, **kw)


# ------------------------------------------------------------------
# Training runs
# ------------------------------------------------------------------


def test_train_processes_all_files(repo, fake_embedder):
    summary = _orchestrator(repo, fake_embedder(tokens=3)).train("docs", _docs())

    assert summary.processed == 3
    assert summary.skipped == 0
    assert summary.errors == []
    assert summary.token_count == 9
    assert summary.cancelled is False
    assert sorted(f.path for f in repo.list_files(source_id="docs")) == [
        "doc0.md",
        "doc1.md",
        "doc2.md",
    ]
    assert repo.get_source("docs").project_id == "proj-1"


def test_second_run_skips_unchanged(repo, fake_embedder):
    _orchestrator(repo, fake_embedder()).train("docs", _docs())

    embedder = fake_embedder()
    summary = _orchestrator(repo, embedder).train("docs", _docs())

    assert summary.skipped == 3
    assert summary.processed == 0
    assert embedder.calls == []


def test_changed_file_is_reprocessed(repo, fake_embedder):
    _orchestrator(repo, fake_embedder()).train("docs", _docs())

    files = _files()
    files[1] = FileData(path="doc1.md", name="doc1.md", content="# Doc 1\n\nEdited.\n")
    source = InMemorySource(files)
    summary = _orchestrator(repo, fake_embedder()).train("docs", source)

    assert summary.processed == 1
    assert summary.skipped == 2


def test_force_reprocesses_unchanged(repo, fake_embedder):
    _orchestrator(repo, fake_embedder()).train("docs", _docs())
    summary = _orchestrator(repo, fake_embedder()).train("docs", _docs(), force=True)
    assert summary.processed == 3


def test_directory_source_skip_uses_content_checksum(repo, fake_embedder, tmp_path):
    root = tmp_path / "docs"
    root.mkdir()
    (root / "a.md").write_text("# A\n\nAlpha text.\n", encoding="utf-8")
    (root / "image.png").write_bytes(b"\x89PNG")

    first = _orchestrator(repo, fake_embedder()).train("dir", DirectorySource(root))
    second = _orchestrator(repo, fake_embedder()).train("dir", DirectorySource(root))

    assert first.processed == 1
    assert second.skipped == 1


def test_include_exclude_globs(repo, fake_embedder):
    config = DocembedConfig(training=TrainingCfg(include=["**/*.md"], exclude=["doc1.md"]))
    source = InMemorySource(
        _files() + [FileData(path="notes.txt", name="notes.txt", content="plain notes")]
    )
    summary = _orchestrator(repo, fake_embedder(), config=config).train("docs", source)

    assert summary.processed == 2
    assert sorted(f.path for f in repo.list_files()) == ["doc0.md", "doc2.md"]


def test_parallel_workers(repo, fake_embedder):
    summary = _orchestrator(repo, fake_embedder(), max_workers=4).train("docs", _docs(20))
    assert summary.processed == 20
    assert len(repo.list_files()) == 20


def test_empty_source(repo, fake_embedder):
    summary = _orchestrator(repo, fake_embedder()).train("docs", InMemorySource([]))
    assert summary == TrainingSummary()


def test_train_all_merges_sources(repo, fake_embedder):
    summary = _orchestrator(repo, fake_embedder()).train_all(
        [("a", _docs(2, "a")), ("b", _docs(3, "b"))]
    )
    assert summary.processed == 5
    assert len(repo.list_sources()) == 3  # src-1 from the fixture, a, b


# ------------------------------------------------------------------
# Errors and quota
# ------------------------------------------------------------------


def test_missing_api_key_raises_before_any_file(repo, fake_embedder):
    with pytest.raises(EnvironmentError):
        _orchestrator(repo, fake_embedder(api_key_error=True)).train("docs", _docs())
    assert repo.list_files() == []


def test_file_errors_are_collected_not_raised(repo, fake_embedder):
    summary = _orchestrator(repo, fake_embedder(fail_on="Body 1")).train("docs", _docs())

    assert summary.processed == 3
    assert [e.path for e in summary.errors] == ["doc1.md"]
    assert sorted(f.path for f in repo.list_files()) == ["doc0.md", "doc2.md"]


def test_unexpected_exception_becomes_file_error(repo, fake_embedder):
    class _BrokenSource:
        def __len__(self):
            return 1

        def get_file_path(self, index):
            return "broken.md"

        def get_file_name_content(self, index):
            raise OSError("disk vanished")

    summary = _orchestrator(repo, fake_embedder()).train("docs", _BrokenSource())

    assert summary.errors == [
        EmbeddingsError(path="broken.md", message="Unable to process file: disk vanished")
    ]


def test_quota_stops_files_past_allowance(repo, fake_embedder):
    def allowance(project_id):
        return TokenAllowanceInfo(token_allowance=12, used_tokens=0)

    summary = _orchestrator(
        repo, fake_embedder(tokens=5), allowance_provider=allowance, max_workers=1
    ).train("docs", _docs())

    assert [e.id for e in summary.errors] == [API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED]
    assert summary.token_count == 10
    assert len(repo.list_files()) == 2


def test_quota_from_config_counts_stored_tokens(repo, fake_embedder):
    config = DocembedConfig(quota=QuotaCfg(token_allowance=8))
    _orchestrator(repo, fake_embedder(tokens=5), config=config).train("docs", _docs(1))
    summary = _orchestrator(repo, fake_embedder(tokens=5), config=config).train(
        "more", _docs(1, "more")
    )

    assert summary.errors[0].id == API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED


# ------------------------------------------------------------------
# Job state machine
# ------------------------------------------------------------------


def test_state_transitions(repo, fake_embedder):
    seen = []
    orch = _orchestrator(repo, fake_embedder(), on_state_change=seen.append, max_workers=1)
    orch.train("docs", _docs(2))

    states = [s.state for s in seen]
    assert states == [
        TrainingState.FETCHING_DATA,
        TrainingState.LOADING,
        TrainingState.LOADING,
        TrainingState.COMPLETE,
        TrainingState.IDLE,
    ]
    loading = [s for s in seen if s.state is TrainingState.LOADING]
    assert [(s.progress, s.total, s.filename) for s in loading] == [
        (1, 2, "doc0.md"),
        (2, 2, "doc1.md"),
    ]


def test_train_all_progress_restarts_per_source(repo, fake_embedder):
    seen = []
    orch = _orchestrator(repo, fake_embedder(), on_state_change=seen.append, max_workers=1)
    orch.train_all([("docs", _docs(3)), ("blog", _docs(2, prefix="post"))])

    loading = [(s.progress, s.total) for s in seen if s.state is TrainingState.LOADING]
    assert loading == [(1, 3), (2, 3), (3, 3), (1, 2), (2, 2)]
    assert all(progress <= total for progress, total in loading)


def test_complete_carries_errors(repo, fake_embedder):
    seen = []
    orch = _orchestrator(repo, fake_embedder(fail_on="Body"), on_state_change=seen.append)
    orch.train("docs", _docs(2))

    complete = next(s for s in seen if s.state is TrainingState.COMPLETE)
    assert len(complete.errors) == 2


def test_cancel_mid_run_finishes_file_in_flight(repo, fake_embedder):
    seen = []
    orch = _orchestrator(repo, fake_embedder(), max_workers=1)

    def on_change(status):
        seen.append(status.state)
        if status.state is TrainingState.LOADING:
            job.request_cancel()

    job = TrainingJob(on_change=on_change)
    summary = orch.train("docs", _docs(5), job=job)

    assert summary.cancelled is True
    assert summary.processed == 1
    assert len(repo.list_files()) == 1
    assert TrainingState.CANCEL_REQUESTED in seen
    assert TrainingState.COMPLETE not in seen
    assert job.status.state is TrainingState.IDLE


def test_cancel_before_run(repo, fake_embedder):
    orch = _orchestrator(repo, fake_embedder())
    job = orch.new_job()
    job.request_cancel()
    summary = orch.train("docs", _docs(), job=job)

    assert summary.cancelled is True
    assert summary.processed == 0


def test_request_cancel_when_idle_keeps_state():
    job = TrainingJob()
    job.request_cancel()
    assert job.token.cancelled
    assert job.status.state is TrainingState.IDLE


def test_file_started_ignored_after_cancel():
    job = TrainingJob()
    job.fetching()
    job.request_cancel()
    job.file_started("a.md", 3)
    assert job.status.state is TrainingState.CANCEL_REQUESTED


def test_summary_merge():
    a = TrainingSummary(processed=1, token_count=5, warnings=["w"])
    b = TrainingSummary(skipped=2, cancelled=True, errors=[EmbeddingsError("p", "m")])
    merged = a.merge(b)
    assert (merged.processed, merged.skipped, merged.token_count) == (1, 2, 5)
    assert merged.cancelled is True
    assert merged.warnings == ["w"]
    assert len(merged.errors) == 1
