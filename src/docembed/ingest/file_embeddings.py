"""Persistence writer — embed one file's sections and store them as a unit.

Flow for one file:
1. Convert, split and chunk the content.
2. Upsert the file row by path, clearing previous sections. The checksum
   column stays empty until the file is fully stored, so an interrupted run
   is always re-embedded.
3. Embed each chunk (chunk failures are recorded, siblings continue) and
   charge its tokens to the file's quota before keeping it.
4. Insert all sections in one transaction, falling back to row-by-row.
5. On any error delete the file (sections cascade) and release the quota;
   otherwise record token count and checksum, and commit the quota.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from docembed.config import ProcessorCfg
from docembed.db.models import SectionRecord
from docembed.db.repository import Repository
from docembed.ingest.checksum import create_checksum
from docembed.ingest.embeddings import EmbeddingGenerator
from docembed.ingest.errors import (
    EmbeddingProviderError,
    EmbeddingsError,
    PersistenceError,
    QuotaExceededError,
)
from docembed.ingest.formats import detect_content_type, process_file_data
from docembed.ingest.quota import FileQuota
from docembed.ingest.tokens import max_chunk_length
from docembed.ingest.types import FileData, FileSectionsData

logger = logging.getLogger(__name__)

_PENDING_CHECKSUM = ""


@dataclass
class WriterOptions:
    max_length: int = field(default_factory=max_chunk_length)
    min_content_length: int = 5
    processor: ProcessorCfg | None = None


@dataclass
class FileResult:
    """Outcome of processing one file."""

    path: str
    errors: list[EmbeddingsError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    token_count: int = 0
    sections: int = 0
    file_id: int | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors


def generate_file_embeddings_and_save_file(
    repo: Repository,
    file: FileData,
    *,
    project_id: str,
    source_id: str,
    embedder: EmbeddingGenerator,
    quota: FileQuota,
    options: WriterOptions | None = None,
) -> FileResult:
    """Embed *file* and replace its stored sections.

    Never raises for embedding, quota or storage failures; they are returned
    as ``EmbeddingsError`` entries and the file is left absent from the store.
    """
    options = options or WriterOptions()

    data = process_file_data(file, options.max_length, options.processor)
    checksum = create_checksum(file.content)
    internal_metadata = {
        "content_type": detect_content_type(file.name or file.path, file.content_type).value
    }

    file_id = repo.get_file_id_at_path(source_id, file.path)
    try:
        if file_id is not None:
            repo.delete_sections_for_file(file_id)
            repo.update_file(
                file_id,
                checksum=_PENDING_CHECKSUM,
                meta=data.meta,
                raw_content=file.content,
                internal_metadata=internal_metadata,
            )
        else:
            file_id = repo.create_file(
                source_id=source_id,
                project_id=project_id,
                path=file.path,
                checksum=_PENDING_CHECKSUM,
                meta=data.meta,
                raw_content=file.content,
                internal_metadata=internal_metadata,
            )
        return _embed_and_store(
            repo, file, data, file_id, checksum,
            project_id=project_id, embedder=embedder, quota=quota, options=options,
        )
    except Exception as exc:
        logger.exception("Unable to store %s", file.path)
        if file_id is not None:
            _revert(repo, file_id, quota, file.path)
        else:
            quota.release()
        return FileResult(
            path=file.path,
            errors=[EmbeddingsError(path=file.path, message=f"Unable to process file: {exc}")],
        )


def _embed_and_store(
    repo: Repository,
    file: FileData,
    data: FileSectionsData,
    file_id: int,
    checksum: str,
    *,
    project_id: str,
    embedder: EmbeddingGenerator,
    quota: FileQuota,
    options: WriterOptions,
) -> FileResult:
    result = FileResult(path=file.path, file_id=file_id)

    records: list[SectionRecord] = []
    for section in data.sections:
        text = section.content
        if len(text) < options.min_content_length:
            continue

        try:
            embedded = embedder.embed(text)
        except EmbeddingProviderError as exc:
            snippet = text[:20]
            logger.error(
                "Unable to generate embeddings for section starting with '%s...': %s",
                snippet,
                exc,
            )
            result.errors.append(
                EmbeddingsError(
                    path=file.path,
                    message=(
                        f"Unable to generate embeddings for section starting with "
                        f"'{snippet}...': {exc}"
                    ),
                )
            )
            continue

        try:
            quota.charge(embedded.token_count)
        except QuotaExceededError as exc:
            _revert(repo, file_id, quota, file.path)
            return FileResult(
                path=file.path,
                errors=[
                    EmbeddingsError(
                        path=file.path,
                        message=str(exc),
                        id=exc.error_id,
                        attempted_tokens=exc.attempted_tokens,
                    )
                ],
                token_count=exc.attempted_tokens,
            )

        records.append(
            SectionRecord(
                file_id=file_id,
                content=text,
                meta=_section_meta(section.lead_heading),
                embedding=embedded.embedding,
                token_count=embedded.token_count,
                cf_project_id=project_id,
                cf_file_meta=data.meta,
            )
        )

    if records:
        try:
            repo.insert_sections(records)
        except (sqlite3.Error, ValueError) as exc:
            message = f"Error storing embeddings in bulk: {exc} - Storing one by one instead"
            logger.warning("%s: %s", file.path, message)
            result.warnings.append(message)
            try:
                _insert_one_by_one(repo, records)
            except PersistenceError as row_exc:
                result.errors.append(EmbeddingsError(path=file.path, message=str(row_exc)))

    if result.errors:
        _revert(repo, file_id, quota, file.path)
        result.file_id = None
        return result

    result.token_count = sum(r.token_count for r in records)
    result.sections = len(records)
    repo.update_file_token_count(file_id, result.token_count, checksum=checksum)
    quota.commit()
    logger.debug("Stored %s: %d sections, %d tokens", file.path, result.sections, result.token_count)
    return result


def _section_meta(lead_heading: Any) -> dict[str, Any] | None:
    if lead_heading is None:
        return None
    return {"leadHeading": lead_heading.to_dict()}


def _insert_one_by_one(repo: Repository, records: list[SectionRecord]) -> None:
    """Insert each record separately; raise PersistenceError if any row failed."""
    failures: list[str] = []
    for record in records:
        try:
            repo.insert_section(record)
        except (sqlite3.Error, ValueError) as exc:
            failures.append(f"'{record.content[:20]}...': {exc}")
    if failures:
        raise PersistenceError(
            f"Unable to store {len(failures)} of {len(records)} sections: "
            + "; ".join(failures)
        )


def _revert(repo: Repository, file_id: int, quota: FileQuota, path: str) -> None:
    logger.warning("Reverting %s; file will be processed again on the next run", path)
    repo.delete_file(file_id)
    quota.release()
