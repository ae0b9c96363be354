"""Training orchestrator — runs the per-file pipeline over a source with a worker pool.

State machine of a ``TrainingJob``::

    idle -> fetching_data -> loading(progress, total, filename)
         -> complete(errors) -> idle
         -> cancel_requested -> idle

Cancellation is cooperative: workers check the job's token before taking the
next file, and files already in flight run to completion.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable

from docembed.config import DocembedConfig
from docembed.db.repository import Repository
from docembed.ingest.checksum import ChecksumIndex, create_checksum
from docembed.ingest.embeddings import EmbeddingGenerator
from docembed.ingest.errors import EmbeddingsError
from docembed.ingest.file_embeddings import (
    FileResult,
    WriterOptions,
    generate_file_embeddings_and_save_file,
)
from docembed.ingest.globs import should_include_file_with_path
from docembed.ingest.quota import (
    AllowanceProvider,
    FileQuota,
    QuotaLedger,
    config_allowance_provider,
)
from docembed.ingest.sources import FileSource
from docembed.ingest.tokens import max_chunk_length
from docembed.ingest.types import FileData

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Job state
# ---------------------------------------------------------------------------


class TrainingState(str, Enum):
    IDLE = "idle"
    FETCHING_DATA = "fetching_data"
    LOADING = "loading"
    CANCEL_REQUESTED = "cancel_requested"
    COMPLETE = "complete"


@dataclass(frozen=True)
class TrainingStatus:
    state: TrainingState = TrainingState.IDLE
    progress: int = 0
    total: int = 0
    filename: str | None = None
    errors: tuple[EmbeddingsError, ...] = ()


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class TrainingJob:
    """Explicit, thread-safe training job value.

    Args:
        on_change: Called with every new ``TrainingStatus``. Runs on whichever
            thread caused the transition, outside the job lock.
    """

    def __init__(self, on_change: Callable[[TrainingStatus], None] | None = None) -> None:
        self.token = CancellationToken()
        self._on_change = on_change
        self._lock = threading.Lock()
        self._status = TrainingStatus()
        self._errors: list[EmbeddingsError] = []
        self._progress = 0

    @property
    def status(self) -> TrainingStatus:
        with self._lock:
            return self._status

    @property
    def errors(self) -> list[EmbeddingsError]:
        with self._lock:
            return list(self._errors)

    def request_cancel(self) -> None:
        """Stop handing out new files; files in flight still finish."""
        self.token.cancel()
        with self._lock:
            if self._status.state not in (TrainingState.LOADING, TrainingState.FETCHING_DATA):
                return
        self._set(TrainingStatus(state=TrainingState.CANCEL_REQUESTED))

    def add_errors(self, errors: list[EmbeddingsError]) -> None:
        with self._lock:
            self._errors.extend(errors)

    def fetching(self) -> None:
        self._set(TrainingStatus(state=TrainingState.FETCHING_DATA))

    def source_started(self) -> None:
        """Restart the file count; ``total`` is per source."""
        with self._lock:
            self._progress = 0

    def file_started(self, filename: str, total: int) -> None:
        with self._lock:
            if self.token.cancelled:
                return
            self._progress += 1
            status = TrainingStatus(
                state=TrainingState.LOADING, progress=self._progress, total=total, filename=filename
            )
            self._status = status
        self._notify(status)

    def finish(self) -> None:
        """Pass through ``complete(errors)`` (unless cancelled), then back to idle."""
        if not self.token.cancelled:
            self._set(TrainingStatus(state=TrainingState.COMPLETE, errors=tuple(self.errors)))
        self._set(TrainingStatus(state=TrainingState.IDLE))

    def _set(self, status: TrainingStatus) -> None:
        with self._lock:
            self._status = status
        self._notify(status)

    def _notify(self, status: TrainingStatus) -> None:
        if self._on_change is not None:
            self._on_change(status)


@dataclass
class TrainingSummary:
    processed: int = 0
    skipped: int = 0
    errors: list[EmbeddingsError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False
    token_count: int = 0

    def merge(self, other: TrainingSummary) -> TrainingSummary:
        return replace(
            self,
            processed=self.processed + other.processed,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
            cancelled=self.cancelled or other.cancelled,
            token_count=self.token_count + other.token_count,
        )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """Coordinate glob filtering, change detection, quota and persistence.

    Args:
        repo:               Open Repository.
        embedder:           Embedding generator shared by all workers.
        config:             Loaded configuration (chunking, training, processor, quota).
        allowance_provider: Supplies the project's token allowance. Defaults to
                            ``quota.token_allowance`` with usage read from *repo*.
        project_id:         Project that owns the trained sources.
        max_workers:        Worker pool size. Defaults to ``training.max_workers``.
        on_state_change:    Receives every status transition of jobs created here.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingGenerator,
        config: DocembedConfig | None = None,
        allowance_provider: AllowanceProvider | None = None,
        *,
        project_id: str = "default",
        max_workers: int | None = None,
        on_state_change: Callable[[TrainingStatus], None] | None = None,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._config = config or DocembedConfig()
        self._allowance_provider = allowance_provider or config_allowance_provider(
            repo, self._config.quota
        )
        self._project_id = project_id
        self._max_workers = max(1, max_workers or self._config.training.max_workers)
        self._on_state_change = on_state_change
        self._options = WriterOptions(
            max_length=max_chunk_length(self._config.chunking),
            min_content_length=self._config.chunking.min_content_length,
            processor=self._config.processor,
        )

    def new_job(self) -> TrainingJob:
        return TrainingJob(on_change=self._on_state_change)

    def train(
        self,
        source_id: str,
        source: FileSource,
        job: TrainingJob | None = None,
        force: bool = False,
    ) -> TrainingSummary:
        """Train one source. Per-file errors are returned, never raised.

        Raises:
            EnvironmentError: If the embedding provider's API key is missing.
                Raised before any file is touched.
        """
        return self.train_all([(source_id, source)], job=job, force=force)

    def train_all(
        self,
        sources: list[tuple[str, FileSource]],
        job: TrainingJob | None = None,
        force: bool = False,
    ) -> TrainingSummary:
        """Train several sources in sequence under one job."""
        self._embedder.check_api_key()
        job = job or self.new_job()
        summary = TrainingSummary()
        job.fetching()
        try:
            for source_id, source in sources:
                if job.token.cancelled:
                    break
                summary = summary.merge(self._train_source(source_id, source, job, force))
        finally:
            summary.cancelled = job.token.cancelled
            job.finish()
        return summary

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _train_source(
        self, source_id: str, source: FileSource, job: TrainingJob, force: bool
    ) -> TrainingSummary:
        self._repo.ensure_source(source_id, self._project_id)

        training = self._config.training
        indices = [
            i
            for i in range(len(source))
            if should_include_file_with_path(
                source.get_file_path(i), training.include, training.exclude
            )
        ]
        total = len(indices)
        logger.info("Source %s: %d of %d files selected", source_id, total, len(source))

        checksums = ChecksumIndex(self._repo.get_checksums(source_id))
        ledger = QuotaLedger(self._allowance_provider(self._project_id))
        job.source_started()

        work: queue.Queue[int] = queue.Queue()
        for i in indices:
            work.put(i)

        summary = TrainingSummary()
        lock = threading.Lock()

        def record(result: FileResult) -> None:
            with lock:
                if result.skipped:
                    summary.skipped += 1
                else:
                    summary.processed += 1
                summary.errors.extend(result.errors)
                summary.warnings.extend(result.warnings)
                summary.token_count += 0 if result.errors else result.token_count
            job.add_errors(result.errors)

        def worker() -> None:
            while not job.token.cancelled:
                try:
                    index = work.get_nowait()
                except queue.Empty:
                    return
                path = source.get_file_path(index)
                job.file_started(path, total)
                record(self._process_file(source_id, source, index, path, checksums, ledger, force))

        workers = min(self._max_workers, total) or 1
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="docembed") as pool:
            futures = [pool.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

        return summary

    def _process_file(
        self,
        source_id: str,
        source: FileSource,
        index: int,
        path: str,
        checksums: ChecksumIndex,
        ledger: QuotaLedger,
        force: bool,
    ) -> FileResult:
        try:
            if not force and hasattr(source, "get_file_checksum"):
                if checksums.is_unchanged(path, source.get_file_checksum(index)):
                    logger.info("Skipping unchanged file %s", path)
                    return FileResult(path=path, skipped=True)

            file = self._load_file(source, index, path)
            if not force and checksums.is_unchanged(path, create_checksum(file.content)):
                logger.info("Skipping unchanged file %s", path)
                return FileResult(path=path, skipped=True)

            return generate_file_embeddings_and_save_file(
                self._repo,
                file,
                project_id=self._project_id,
                source_id=source_id,
                embedder=self._embedder,
                quota=FileQuota(ledger),
                options=self._options,
            )
        except Exception as exc:
            logger.exception("Unexpected failure while processing %s", path)
            return FileResult(
                path=path,
                errors=[EmbeddingsError(path=path, message=f"Unable to process file: {exc}")],
            )

    @staticmethod
    def _load_file(source: FileSource, index: int, path: str) -> FileData:
        get_file_data = getattr(source, "get_file_data", None)
        if get_file_data is not None:
            return get_file_data(index)
        name, content = source.get_file_name_content(index)
        return FileData(path=path, name=name, content=content)
