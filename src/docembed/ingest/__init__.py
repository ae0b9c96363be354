"""docembed ingest pipeline — converters, splitter, chunker, embeddings, orchestrator."""

from docembed.ingest.chunker import chunk, chunk_sections
from docembed.ingest.embeddings import EmbeddingGenerator, EmbeddingResult
from docembed.ingest.file_embeddings import (
    FileResult,
    WriterOptions,
    generate_file_embeddings_and_save_file,
)
from docembed.ingest.formats import ContentType, process_file_data
from docembed.ingest.html import html_to_markdown
from docembed.ingest.markdown import markdown_to_file_section_data
from docembed.ingest.orchestrator import (
    Orchestrator,
    TrainingJob,
    TrainingState,
    TrainingStatus,
    TrainingSummary,
)
from docembed.ingest.sources import DirectorySource, FileSource, InMemorySource
from docembed.ingest.types import FileData, LeadHeading, Section

__all__ = [
    "ContentType",
    "DirectorySource",
    "EmbeddingGenerator",
    "EmbeddingResult",
    "FileData",
    "FileResult",
    "FileSource",
    "InMemorySource",
    "LeadHeading",
    "Orchestrator",
    "Section",
    "TrainingJob",
    "TrainingState",
    "TrainingStatus",
    "TrainingSummary",
    "WriterOptions",
    "chunk",
    "chunk_sections",
    "generate_file_embeddings_and_save_file",
    "html_to_markdown",
    "markdown_to_file_section_data",
    "process_file_data",
]
